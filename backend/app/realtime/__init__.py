"""
realtime — Live push to connected browsers.

Modules:
    events — typed event variants and their {"type", "data"} wire form
    hub    — BroadcastHub: connection registry + best-effort fan-out
"""
