"""Multi-test batch engine package.

``app.app`` resolves to the FastAPI application on first access, so the
engine modules can be imported without building the HTTP surface."""

from __future__ import annotations

__all__ = ["app"]


def __getattr__(name: str):
    if name == "app":
        from .main import app as fastapi_app
        return fastapi_app
    raise AttributeError(f"module {__name__} has no attribute {name!r}")
