"""Didit identity verification provider integration."""

from app.infrastructure.didit.client import DiditClient
from app.infrastructure.didit.config import didit_settings

__all__ = [
    "DiditClient",
    "didit_settings",
]
