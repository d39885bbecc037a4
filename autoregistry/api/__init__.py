"""API Layer: FastAPI routes, middleware and error handlers.

Invariants:
    - Routes registered explicitly in main.py
    - Every endpoint answers with the JSON envelope from api/envelope.py

Design Decisions:
    - Thin routes delegate to the Framework's services
"""
