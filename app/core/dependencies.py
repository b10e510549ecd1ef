"""Dependances FastAPI pour l'injection de services."""

from typing import Any

from fastapi import Request

from app.infrastructure.didit.client import DiditClient
from app.infrastructure.registry.browser_pool import BrowserPagePool
from app.services.credential_verification import CredentialVerificationOrchestrator
from app.services.verification_sessions import VerificationSessionManager


def _get_state(request: Request, name: str) -> Any:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise RuntimeError(
            f"{name} not initialized. "
            f"Ensure the application lifespan properly initializes app.state.{name}"
        )
    return value


def get_credential_orchestrator(request: Request) -> CredentialVerificationOrchestrator:
    """
    Recupere l'orchestrateur de verification depuis l'etat de l'application.

    L'orchestrateur est initialise dans le lifespan de l'application (main.py)
    et stocke dans app.state.credential_orchestrator.

    Raises:
        RuntimeError: Si l'orchestrateur n'est pas initialise
    """
    return _get_state(request, "credential_orchestrator")


def get_session_manager(request: Request) -> VerificationSessionManager:
    """Recupere le gestionnaire de sessions biometriques (app.state.session_manager)."""
    return _get_state(request, "session_manager")


def get_didit_client(request: Request) -> DiditClient:
    """Recupere le client du fournisseur biometrique (app.state.didit_client)."""
    return _get_state(request, "didit_client")


def get_browser_pool(request: Request) -> BrowserPagePool | None:
    """Pool de navigateurs, None s'il n'est pas initialise (health check)."""
    return getattr(request.app.state, "browser_pool", None)
