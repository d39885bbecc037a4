"""Core Layer: value types, errors and pure policy logic, no IO.

Invariants:
    - No module in core/ imports from services/, api/ or infrastructure/
    - Policy and classification functions are pure; rate-limit clocks are passed in

Design Decisions:
    - Functional core separated from the imperative shell (services, api)
"""
