"""FastAPI dependencies shared by route modules."""

from fastapi import Request

from autoregistry.framework import Framework


def get_framework(request: Request) -> Framework:
    return request.app.state.framework


def get_request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)
