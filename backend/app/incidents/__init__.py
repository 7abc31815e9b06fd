"""
incidents — Map incident (emergency pin) reporting.

Modules:
    models           — incident type / status enums
    incident_service — verified-reporter gate, persistence, live events
"""
