"""
alerts — Village alert creation and SMS broadcasting.

Sub-modules:
    channels/        — SMS transports (simulation, HTTP carrier gateway)
    alert_service    — AlertWorkflow: authorization, scoping, fan-out
    delivery_ledger  — per-recipient delivery and read receipts
    sms_dispatcher   — per-recipient SMS loop and status rollup
    models           — data structures shared across the system
"""
