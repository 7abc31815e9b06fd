"""
residents — Resident accounts: profile, village membership and phone verification.

Modules:
    models             — editable profile fields, limits, phone format
    profile_service    — profile updates and village assignment
    phone_verification — SMS code issue / confirm
"""
