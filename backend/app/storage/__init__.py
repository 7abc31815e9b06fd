"""
storage — Persistence collaborator.

Modules:
    tables      — SQLAlchemy ORM entities (users, villages, alerts, ledger, SMS, pins)
    repository  — AlertStorage: single-row async CRUD used by the core
"""
