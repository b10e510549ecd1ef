"""Endpoints API pour la vérification des licences professionnelles."""

from fastapi import APIRouter, Depends
from fastapi_errors_rfc9457 import create_responses

from app.core.dependencies import get_credential_orchestrator, get_session_manager
from app.core.exceptions import VerificationSessionNotFoundError
from app.schemas.credentials import (
    CredentialVerificationRequest,
    FullVerificationRequest,
    FullVerificationResult,
    LicenseVerificationResult,
)
from app.services.credential_verification import CredentialVerificationOrchestrator
from app.services.verification_sessions import VerificationSessionManager

router = APIRouter()


@router.post(
    "/verify",
    response_model=LicenseVerificationResult,
    summary="Vérifier une licence professionnelle",
    description=(
        "Valide le document puis recherche le professionnel dans le registre SACS. "
        "Les indisponibilités du registre sont encodées dans verification_source."
    ),
)
async def verify_credential(
    request: CredentialVerificationRequest,
    orchestrator: CredentialVerificationOrchestrator = Depends(get_credential_orchestrator),
) -> LicenseVerificationResult:
    """
    Vérifie une licence professionnelle.

    - is_valid: le document est bien formé
    - is_verified: le registre confirme exactement cette cédula
    """
    return await orchestrator.verify(
        request.document_type,
        request.document_number,
        first_name=request.first_name,
        last_name=request.last_name,
    )


@router.post(
    "/full-verification",
    response_model=FullVerificationResult,
    summary="Décision combinée licence + identité",
    description=(
        "Vérifie la licence puis la combine avec l'état de la session biométrique. "
        "Succès complet uniquement si les deux volets ont réussi."
    ),
    responses=create_responses(),
)
async def full_verification(
    request: FullVerificationRequest,
    orchestrator: CredentialVerificationOrchestrator = Depends(get_credential_orchestrator),
    manager: VerificationSessionManager = Depends(get_session_manager),
) -> FullVerificationResult:
    """
    Décision "professionnel réel, inscrit et présent".

    Raises:
        VerificationSessionNotFoundError: 404 si la session biométrique est inconnue
    """
    session = manager.get_session(request.session_id)
    if session is None:
        raise VerificationSessionNotFoundError(request.session_id)

    license_result = await orchestrator.verify(
        request.document_type,
        request.document_number,
        first_name=request.first_name,
        last_name=request.last_name,
    )
    return orchestrator.full_decision(license_result, session)
