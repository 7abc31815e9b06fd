"""
test_alert_workflow.py — Tests for alert creation orchestration.

Covers:
    • Authorization and validation happen before any side effect
    • Village scoping (village admin narrowed, system admin honoured)
    • Recipient resolution and delivery-ledger population
    • SMS fan-out and the persisted SmsAlert status
    • alert_created / sms_alert_sent broadcasts
    • Alert lifecycle (active → resolved)
    • SmsAlert status is set once and never overwritten
    • A stalled live client cannot hold up alert creation
    • End-to-end flood-warning scenario

Run with:
    pytest tests/test_alert_workflow.py -v
"""

from __future__ import annotations

import asyncio

import pytest

from backend.app.alerts.alert_service import (
    AlertWorkflow,
    effective_target_villages,
    validate_alert_request,
)
from backend.app.alerts.models import (
    AlertRequest,
    AlertType,
    SmsAlertRequest,
    SmsDeliveryStatus,
    SmsPriority,
)
from backend.app.alerts.sms_dispatcher import SmsDispatcher
from backend.app.core.errors import (
    AuthorizationError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)
from backend.app.realtime.hub import BroadcastHub
from backend.app.storage.repository import AlertStorage
from backend.app.storage.tables import User

from tests.fakes import FakeConnection, RecordingTransport, StalledConnection


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

_phone_counter = iter(range(1, 10_000))


async def _make_user(
    storage,
    village_id=None,
    *,
    verified: bool = True,
    phone="auto",
    village_admin: bool = False,
    system_admin: bool = False,
) -> User:
    if phone == "auto":
        phone = f"+357990{next(_phone_counter):05d}"
    return await storage.create_user(
        village_id=village_id,
        phone=phone,
        phone_verified=verified,
        is_village_admin=village_admin,
        is_system_admin=system_admin,
    )


def _make_request(
    targets=(),
    *,
    send_sms: bool = False,
    message: str = "Flood warning",
    title: str = "Flood",
    type=AlertType.WARNING,
) -> AlertRequest:
    return AlertRequest(
        type=type, title=title, message=message,
        target_villages=list(targets), send_sms=send_sms,
    )


@pytest.fixture
async def live(hub):
    conn = FakeConnection()
    await hub.register(conn)
    return conn


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Scoping Rules
# ═══════════════════════════════════════════════════════════════════════════

class TestEffectiveTargetVillages:

    def test_village_admin_is_narrowed_to_own_village(self):
        admin = User(id="a", village_id="V1", is_village_admin=True, is_system_admin=False)
        assert effective_target_villages(admin, ["V2", "V3"]) == ["V1"]
        assert effective_target_villages(admin, []) == ["V1"]

    def test_system_admin_list_is_honoured_and_deduplicated(self):
        admin = User(id="a", village_id="V1", is_village_admin=False, is_system_admin=True)
        assert effective_target_villages(admin, ["V2", "V3", "V2", ""]) == ["V2", "V3"]

    def test_system_admin_who_is_also_village_admin(self):
        admin = User(id="a", village_id="V1", is_village_admin=True, is_system_admin=True)
        assert effective_target_villages(admin, ["V2"]) == ["V2"]

    def test_village_admin_without_village(self):
        admin = User(id="a", village_id=None, is_village_admin=True, is_system_admin=False)
        with pytest.raises(AuthorizationError):
            effective_target_villages(admin, ["V1"])


class TestValidation:

    def test_normalises_type_and_whitespace(self):
        request = validate_alert_request(_make_request(type="emergency", title="  Fire  "))
        assert request.type is AlertType.EMERGENCY
        assert request.title == "Fire"

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"title": ""}, "title"),
            ({"title": "x" * 121}, "title"),
            ({"message": "   "}, "message"),
            ({"message": "x" * 281}, "message"),
            ({"message": "x" * 161, "send_sms": True}, "message"),
            ({"type": "tsunami"}, "type"),
        ],
    )
    def test_rejects(self, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_alert_request(_make_request(**overrides))
        assert exc_info.value.details["field"] == field

    def test_limits_are_inclusive(self):
        validate_alert_request(_make_request(title="x" * 120, message="x" * 280))
        validate_alert_request(_make_request(message="x" * 160, send_sms=True))


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Guard Rails (no side effects)
# ═══════════════════════════════════════════════════════════════════════════

class TestGuardRails:

    async def test_resident_cannot_send(self, storage, workflow, transport, live):
        resident = await _make_user(storage, "V1")

        with pytest.raises(AuthorizationError):
            await workflow.create_alert(resident, _make_request(["V1"], send_sms=True))

        assert await storage.get_active_alerts_for_village("V1") == []
        assert await storage.get_user_alert_deliveries(resident.id) == []
        assert await storage.list_sms_alerts() == []
        assert transport.sent == []
        assert live.frames == []

    async def test_invalid_alert_writes_nothing(self, storage, workflow, live):
        admin = await _make_user(storage, "V1", village_admin=True)

        with pytest.raises(ValidationError):
            await workflow.create_alert(admin, _make_request(["V1"], title=""))

        assert await storage.get_active_alerts_for_village("V1") == []
        assert live.frames == []

    async def test_resident_cannot_send_sms_alert(self, storage, workflow, transport):
        resident = await _make_user(storage, "V1")
        with pytest.raises(AuthorizationError):
            await workflow.send_sms_alert(resident, SmsAlertRequest(message="hi"))
        assert transport.sent == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: In-app Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestCreateAlert:

    async def test_village_admin_reaches_only_own_village(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        neighbour = await _make_user(storage, "V1")
        outsider = await _make_user(storage, "V2")

        outcome = await workflow.create_alert(admin, _make_request(["V1", "V2"]))

        assert outcome.alert.target_villages == ["V1"]
        assert set(outcome.recipient_ids) == {admin.id, neighbour.id}
        assert await storage.get_user_alert_deliveries(outsider.id) == []

    async def test_village_admin_targeting_other_village_still_gets_own(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        await _make_user(storage, "V2")

        outcome = await workflow.create_alert(admin, _make_request(["V2"]))

        assert outcome.alert.target_villages == ["V1"]
        assert outcome.recipient_ids == [admin.id]

    async def test_system_admin_reaches_every_target(self, storage, workflow):
        admin = await _make_user(storage, None, system_admin=True)
        a = await _make_user(storage, "V1")
        b = await _make_user(storage, "V2")
        await _make_user(storage, "V3")

        outcome = await workflow.create_alert(admin, _make_request(["V1", "V2", "V1"]))

        assert outcome.alert.target_villages == ["V1", "V2"]
        assert sorted(outcome.recipient_ids) == sorted([a.id, b.id])
        assert outcome.ledger.recorded == 2

    async def test_empty_village_is_not_an_error(self, storage, workflow, live):
        admin = await _make_user(storage, None, system_admin=True)

        outcome = await workflow.create_alert(admin, _make_request(["EMPTY"]))

        assert outcome.recipient_ids == []
        assert outcome.ledger.recorded == 0
        assert outcome.alert.status == "active"
        assert live.types() == ["alert_created"]

    async def test_one_ledger_row_per_recipient(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        residents = [await _make_user(storage, "V1") for _ in range(3)]

        outcome = await workflow.create_alert(admin, _make_request())

        rows = await storage.get_alert_deliveries(outcome.alert.id)
        assert sorted(r.user_id for r in rows) == sorted([admin.id] + [r.id for r in residents])
        assert all(r.read_at is None for r in rows)

    async def test_broadcast_carries_alert_and_recipients(self, storage, workflow, live):
        admin = await _make_user(storage, "V1", village_admin=True)
        resident = await _make_user(storage, "V1")

        outcome = await workflow.create_alert(admin, _make_request())

        [message] = live.messages
        assert message["type"] == "alert_created"
        assert message["data"]["alert"]["id"] == outcome.alert.id
        assert set(message["data"]["target_users"]) == {admin.id, resident.id}

    async def test_broadcast_failure_does_not_fail_alert(self, storage, hub, workflow):
        await hub.register(FakeConnection(fail=True))
        admin = await _make_user(storage, "V1", village_admin=True)

        outcome = await workflow.create_alert(admin, _make_request())

        assert outcome.alert.status == "active"
        assert hub.connection_count == 0

    async def test_no_sms_without_flag(self, storage, workflow, transport):
        admin = await _make_user(storage, "V1", village_admin=True)
        outcome = await workflow.create_alert(admin, _make_request())
        assert outcome.sms_alert is None
        assert outcome.dispatch is None
        assert transport.sent == []

    async def test_companion_sms_priority_follows_type(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        outcome = await workflow.create_alert(
            admin, _make_request(type=AlertType.EMERGENCY, send_sms=True),
        )
        assert outcome.sms_alert.priority == "urgent"
        assert outcome.sms_alert.alert_type == "emergency"


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: End-to-end Scenario
# ═══════════════════════════════════════════════════════════════════════════

class TestFloodWarningScenario:
    """
    Village admin of V1 targets [V1, V2] with SMS. V1 holds the admin
    (verified phone) and one resident without a verified phone.
    """

    async def test_scenario(self, storage, workflow, transport, live):
        admin = await _make_user(storage, "V1", phone="+35799000001", verified=True,
                                 village_admin=True)
        resident = await _make_user(storage, "V1", phone="+35799000002", verified=False)
        await _make_user(storage, "V2", phone="+35799000003", verified=True)

        outcome = await workflow.create_alert(
            admin, _make_request(["V1", "V2"], send_sms=True, message="Flood warning"),
        )

        # scope
        assert outcome.alert.target_villages == ["V1"]

        # ledger
        rows = await storage.get_alert_deliveries(outcome.alert.id)
        assert sorted(r.user_id for r in rows) == sorted([admin.id, resident.id])

        # sms
        assert transport.sent == [("+35799000001", "Flood warning")]
        assert outcome.dispatch.success_count == 1
        assert outcome.dispatch.failure_count == 1
        assert outcome.dispatch.skipped_count == 1
        assert outcome.dispatch.status is SmsDeliveryStatus.PARTIALLY_SENT

        stored = await storage.get_sms_alert(outcome.sms_alert.id)
        assert stored.delivery_status == "partially_sent"
        assert stored.recipient_count == 2
        assert stored.target_villages == ["V1"]

        # broadcast
        [message] = live.messages
        assert message["type"] == "alert_created"
        assert message["data"]["dispatch"]["status"] == "partially_sent"

    async def test_all_verified_is_sent(self, storage, workflow, transport):
        admin = await _make_user(storage, "V1", village_admin=True)
        await _make_user(storage, "V1")

        outcome = await workflow.create_alert(admin, _make_request(send_sms=True))

        assert len(transport.sent) == 2
        assert outcome.dispatch.status is SmsDeliveryStatus.SENT
        stored = await storage.get_sms_alert(outcome.sms_alert.id)
        assert stored.delivery_status == "sent"

    async def test_transport_down_is_failed_but_alert_stands(self, storage, hub):
        admin = await _make_user(storage, "V1", phone="+35799500001", village_admin=True)
        transport = RecordingTransport(fail_numbers={"+35799500001"})
        workflow = AlertWorkflow(storage, hub, SmsDispatcher(transport))

        outcome = await workflow.create_alert(admin, _make_request(send_sms=True))

        assert outcome.dispatch.status is SmsDeliveryStatus.FAILED
        assert outcome.alert.status == "active"
        assert outcome.ledger.recorded == 1


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Standalone SMS Alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestSendSmsAlert:

    async def test_sms_only_flow(self, storage, workflow, transport, live):
        admin = await _make_user(storage, "V1", village_admin=True)
        resident = await _make_user(storage, "V1")

        outcome = await workflow.send_sms_alert(
            admin, SmsAlertRequest(message="Road closed", priority=SmsPriority.LOW,
                                   target_villages=["V9"]),
        )

        assert outcome.sms_alert.target_villages == ["V1"]
        assert outcome.sms_alert.priority == "low"
        assert outcome.sms_alert.delivery_status == "sent"
        assert len(transport.sent) == 2
        # SMS-only: no in-app alert, no ledger rows
        assert await storage.get_user_alert_deliveries(resident.id) == []
        assert live.types() == ["sms_alert_sent"]

    async def test_sms_message_limit(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        with pytest.raises(ValidationError):
            await workflow.send_sms_alert(admin, SmsAlertRequest(message="x" * 161))

    async def test_nobody_to_reach_is_failed(self, storage, workflow):
        admin = await _make_user(storage, None, system_admin=True)
        outcome = await workflow.send_sms_alert(
            admin, SmsAlertRequest(message="hello", target_villages=["EMPTY"]),
        )
        assert outcome.sms_alert.recipient_count == 0
        assert outcome.sms_alert.delivery_status == "failed"

    async def test_history_visibility(self, storage, workflow):
        system = await _make_user(storage, None, system_admin=True)
        admin_1 = await _make_user(storage, "V1", village_admin=True)
        admin_2 = await _make_user(storage, "V2", village_admin=True)
        await workflow.send_sms_alert(admin_1, SmsAlertRequest(message="one"))
        await workflow.send_sms_alert(admin_2, SmsAlertRequest(message="two"))

        assert len(await workflow.list_sms_alerts(system)) == 2
        [own] = await workflow.list_sms_alerts(admin_1)
        assert own.message == "one"


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Lifecycle & Recipient Views
# ═══════════════════════════════════════════════════════════════════════════

class TestResolveAlert:

    async def test_resolve(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        outcome = await workflow.create_alert(admin, _make_request())

        resolved = await workflow.resolve_alert(admin, outcome.alert.id)

        assert resolved.status == "resolved"
        assert await storage.get_active_alerts_for_village("V1") == []

    async def test_resolve_twice_is_rejected(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        outcome = await workflow.create_alert(admin, _make_request())
        await workflow.resolve_alert(admin, outcome.alert.id)

        with pytest.raises(InvalidStateTransitionError):
            await workflow.resolve_alert(admin, outcome.alert.id)

    async def test_unknown_alert(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        with pytest.raises(NotFoundError):
            await workflow.resolve_alert(admin, "missing")

    async def test_other_village_admin_cannot_resolve(self, storage, workflow):
        owner = await _make_user(storage, "V1", village_admin=True)
        other = await _make_user(storage, "V2", village_admin=True)
        outcome = await workflow.create_alert(owner, _make_request())

        with pytest.raises(AuthorizationError):
            await workflow.resolve_alert(other, outcome.alert.id)


class TestRecipientViews:

    async def test_list_alerts_for_village(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        resident = await _make_user(storage, "V1")
        outsider = await _make_user(storage, "V2")
        homeless = await _make_user(storage, None)
        outcome = await workflow.create_alert(admin, _make_request())

        assert [a.id for a in await workflow.list_alerts_for(resident)] == [outcome.alert.id]
        assert await workflow.list_alerts_for(outsider) == []
        assert await workflow.list_alerts_for(homeless) == []

    async def test_mark_read_and_list(self, storage, workflow):
        admin = await _make_user(storage, "V1", village_admin=True)
        resident = await _make_user(storage, "V1")
        outcome = await workflow.create_alert(admin, _make_request())

        assert await workflow.mark_read(resident, outcome.alert.id) is True
        assert await workflow.mark_read(resident, outcome.alert.id) is False

        [row] = await workflow.list_my_deliveries(resident)
        assert row.alert_id == outcome.alert.id
        assert row.read_at is not None


# ═══════════════════════════════════════════════════════════════════════════
# Section 7: SmsAlert Status Finality
# ═══════════════════════════════════════════════════════════════════════════

class _PreFinalizingStorage(AlertStorage):
    """Moves every SmsAlert to ``failed`` before the workflow records its own status."""

    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.update_results = []

    async def update_sms_alert_delivery_status(self, sms_alert_id, status):
        await super().update_sms_alert_delivery_status(sms_alert_id, "failed")
        result = await super().update_sms_alert_delivery_status(sms_alert_id, status)
        self.update_results.append(result)
        return result


class TestSmsAlertStatusFinality:

    async def test_terminal_status_is_never_overwritten(self, storage):
        sms = await storage.create_sms_alert(
            sender_id="admin", message="hi", alert_type="info",
            target_villages=["V1"], recipient_count=1,
        )
        assert sms.delivery_status == "pending"

        first = await storage.update_sms_alert_delivery_status(sms.id, "sent")
        second = await storage.update_sms_alert_delivery_status(sms.id, "failed")

        assert first.delivery_status == "sent"
        assert second is None
        assert (await storage.get_sms_alert(sms.id)).delivery_status == "sent"

    async def test_unknown_sms_alert(self, storage):
        assert await storage.update_sms_alert_delivery_status("missing", "sent") is None

    async def test_workflow_reports_stored_status_when_already_final(self, storage, hub, transport):
        wrapped = _PreFinalizingStorage(storage._session_factory)
        workflow = AlertWorkflow(wrapped, hub, SmsDispatcher(transport))
        admin = await _make_user(wrapped, "V1", village_admin=True)

        outcome = await workflow.send_sms_alert(admin, SmsAlertRequest(message="Road closed"))

        # the dispatch succeeded, but the stored row had already gone terminal
        assert outcome.dispatch.status is SmsDeliveryStatus.SENT
        assert wrapped.update_results == [None]
        assert outcome.sms_alert.delivery_status == "failed"
        assert (await storage.get_sms_alert(outcome.sms_alert.id)).delivery_status == "failed"


# ═══════════════════════════════════════════════════════════════════════════
# Section 8: Stalled Live Clients
# ═══════════════════════════════════════════════════════════════════════════

class TestStalledLiveClient:

    async def test_create_alert_returns_despite_stalled_client(self, storage, transport):
        hub = BroadcastHub(send_timeout=0.05)
        workflow = AlertWorkflow(storage, hub, SmsDispatcher(transport))
        healthy = FakeConnection()
        await hub.register(StalledConnection())
        await hub.register(healthy)
        admin = await _make_user(storage, "V1", village_admin=True)

        first = await asyncio.wait_for(workflow.create_alert(admin, _make_request()), 2.0)
        second = await asyncio.wait_for(workflow.create_alert(admin, _make_request()), 2.0)

        assert first.alert.id != second.alert.id
        assert hub.connection_count == 1
        assert healthy.types() == ["alert_created", "alert_created"]
