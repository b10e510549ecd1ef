"""Endpoints API pour les sessions de vérification biométrique.

Le client démarre une session, redirige l'utilisateur vers l'URL du
fournisseur, puis consulte l'état de la session jusqu'à un état terminal.
Les mises à jour arrivent par polling serveur et par webhook.
"""

import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi_errors_rfc9457 import create_responses

from app.core.dependencies import get_session_manager
from app.core.exceptions import (
    IdentityProviderUnavailableError,
    IdentitySessionRejectedError,
    VerificationSessionExpiredError,
    VerificationSessionNotFoundError,
)
from app.infrastructure.didit.exceptions import (
    DiditError,
    DiditOperationError,
    DiditServerError,
)
from app.schemas.identity import (
    ExpectedDetails,
    IdentitySessionResponse,
    IdentitySessionStartRequest,
    SessionStatus,
)
from app.services.verification_sessions import VerificationSessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=IdentitySessionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Démarrer une session de vérification",
    description="Crée une session chez le fournisseur et retourne l'URL de redirection",
    responses=create_responses(),
)
async def start_identity_session(
    request: IdentitySessionStartRequest,
    manager: VerificationSessionManager = Depends(get_session_manager),
) -> IdentitySessionResponse:
    """
    Démarre une session de vérification biométrique.

    Raises:
        IdentityProviderUnavailableError: 503 si le fournisseur ne répond pas
        IdentitySessionRejectedError: 422 si le fournisseur refuse la requête (4xx)
    """
    expected_details = ExpectedDetails(
        first_name=request.first_name,
        last_name=request.last_name,
        date_of_birth=request.date_of_birth,
        identification_number=request.document_number,
    )
    try:
        session = await manager.start_session(
            request.subject_id,
            expected_details=expected_details,
            callback_url=request.callback_url,
            metadata=request.metadata,
        )
    except DiditError as e:
        # 5xx et 429 restent des indisponibilités, les autres 4xx sont terminaux
        if isinstance(e, DiditOperationError) and not isinstance(e, DiditServerError):
            raise IdentitySessionRejectedError(e.status_code, e.message) from e
        raise IdentityProviderUnavailableError(
            detail=f"Cannot create verification session: {e.message}",
            instance="/api/v1/identity-sessions",
        ) from e

    return IdentitySessionResponse(session=session, redirect_url=session.session_url)


@router.get(
    "/{session_id}",
    response_model=IdentitySessionResponse,
    summary="État d'une session de vérification",
    description="Retourne l'état courant de la session et sa décision si elle est terminée",
)
async def get_identity_session(
    session_id: str,
    manager: VerificationSessionManager = Depends(get_session_manager),
) -> IdentitySessionResponse:
    """
    Récupère une session.

    Raises:
        VerificationSessionNotFoundError: 404 si la session est inconnue
        VerificationSessionExpiredError: 410 si la session a expiré
    """
    session = manager.get_session(session_id)
    if session is None:
        raise VerificationSessionNotFoundError(session_id)
    if session.status == SessionStatus.EXPIRED:
        raise VerificationSessionExpiredError(session_id)

    redirect_url = None if session.status.is_terminal else session.session_url
    return IdentitySessionResponse(session=session, redirect_url=redirect_url)


@router.delete(
    "/{session_id}",
    response_model=IdentitySessionResponse,
    summary="Arrêter une session de vérification",
    description="Arrête le suivi de la session (navigation quittée, annulation utilisateur)",
)
async def stop_identity_session(
    session_id: str,
    cancel_remote: bool = Query(False, description="Annuler aussi la session chez le fournisseur"),
    manager: VerificationSessionManager = Depends(get_session_manager),
) -> IdentitySessionResponse:
    """
    Arrête une session et annule son timer de polling.

    Raises:
        VerificationSessionNotFoundError: 404 si la session est inconnue
    """
    session = await manager.stop_session(session_id, cancel_remote=cancel_remote)
    if session is None:
        raise VerificationSessionNotFoundError(session_id)

    logger.info(f"Session {session_id} arrêtée via l'API (statut {session.status.value})")
    return IdentitySessionResponse(session=session, redirect_url=None)
