"""
emergency_services — Emergency phone directory and the log of calls made from the app.

Modules:
    models    — service types, call-log limits
    directory — list / add services, log and list calls
"""
