"""Services Layer: registry, request pipeline, execution context, dispatch, error monitor.

Invariants:
    - Services receive collaborators through constructors, never global lookup
    - Pipeline gates and module dispatch are separate steps

Design Decisions:
    - One file per component for locality
"""
