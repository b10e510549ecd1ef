"""
RFC 9457 Problem Details pour HTTP APIs - Exceptions de vérification.

Ce module réexporte les exceptions du module fastapi-errors-rfc9457 et
définit les erreurs spécifiques aux sessions de vérification biométrique.
"""

from fastapi_errors_rfc9457 import (
    InternalServerError,
    NotFoundError,
    ProblemDetail,
    RFC9457Exception,
    ServiceUnavailableError,
    ValidationError,
)


class IdentityProviderUnavailableError(ServiceUnavailableError):
    """
    Exception levée lorsque le fournisseur de vérification biométrique est indisponible.

    Utilisée lorsque la création d'une session échoue après épuisement des retries
    (erreurs réseau, 5xx, 429).

    Attributes:
        status_code: Code HTTP 503 (Service Unavailable)
        problem_detail: Détails de l'erreur au format RFC 9457

    Example:
        ```python
        try:
            created = await client.create_session(request)
        except DiditServerError as e:
            raise IdentityProviderUnavailableError(
                detail="Cannot create verification session",
                instance="/api/v1/identity-sessions",
            ) from e
        ```
    """

    def __init__(
        self,
        detail: str = "Identity verification provider is unavailable",
        instance: str | None = None,
        retry_after: int | None = None,
    ):
        """
        Initialise une exception fournisseur avec détails RFC 9457.

        Args:
            detail: Description détaillée de l'erreur
            instance: URI identifiant l'occurrence spécifique de l'erreur
            retry_after: Nombre de secondes avant de réessayer (optionnel)
        """
        super().__init__(
            detail=detail,
            retry_after=retry_after,
            instance=instance,
        )


class IdentitySessionRejectedError(RFC9457Exception):
    """
    Exception levée lorsque le fournisseur refuse la création d'une session (4xx).

    Erreur terminale: la requête ne sera pas rejouée, le message du fournisseur
    est transmis tel quel.

    Attributes:
        status_code: Code HTTP 422 (Unprocessable Entity)
        problem_detail: Détails de l'erreur au format RFC 9457
    """

    def __init__(self, provider_status: int, reason: str):
        """
        Initialise l'exception de refus avec détails RFC 9457.

        Args:
            provider_status: Code HTTP renvoyé par le fournisseur
            reason: Message d'erreur du fournisseur
        """
        self.provider_status = provider_status
        super().__init__(
            status_code=422,
            title="Verification Session Rejected",
            detail=f"Verification provider rejected the session request ({provider_status}): "
            f"{reason}",
            type="https://credentials.medical.local/errors/session-rejected",
            instance="/api/v1/identity-sessions",
        )


class VerificationSessionNotFoundError(NotFoundError):
    """Exception levée lorsqu'une session de vérification n'est pas suivie."""

    def __init__(self, session_id: str):
        """
        Initialise l'exception avec l'identifiant de session inconnu.

        Args:
            session_id: Identifiant de session partagé avec le fournisseur
        """
        self.session_id = session_id
        super().__init__(
            detail=f"Verification session {session_id} not found",
            resource_type="verification_session",
            resource_id=session_id,
            instance=f"/api/v1/identity-sessions/{session_id}",
        )


class VerificationSessionExpiredError(RFC9457Exception):
    """
    Exception levée lorsqu'une session de vérification a expiré.

    Le message est destiné à l'utilisateur final: la session ne peut plus
    recevoir de mise à jour et doit être recréée.

    Attributes:
        status_code: Code HTTP 410 (Gone)
        problem_detail: Détails de l'erreur au format RFC 9457

    Example:
        ```python
        if session.status == SessionStatus.EXPIRED:
            raise VerificationSessionExpiredError(session.session_id)
        ```
    """

    def __init__(self, session_id: str):
        """
        Initialise l'exception d'expiration avec détails RFC 9457.

        Args:
            session_id: Identifiant de la session expirée
        """
        self.session_id = session_id
        super().__init__(
            status_code=410,  # Gone
            title="Verification Session Expired",
            detail="Verification session expired, please restart",
            type="https://credentials.medical.local/errors/session-expired",
            instance=f"/api/v1/identity-sessions/{session_id}",
        )


__all__ = [
    "IdentityProviderUnavailableError",
    "IdentitySessionRejectedError",
    "InternalServerError",
    "NotFoundError",
    "ProblemDetail",
    "RFC9457Exception",
    "ServiceUnavailableError",
    "ValidationError",
    "VerificationSessionExpiredError",
    "VerificationSessionNotFoundError",
]
