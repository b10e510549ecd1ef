"""Schémas Pydantic pour les sessions de vérification biométrique (Didit v2).

Le fournisseur expose une session par sujet: capture du document, preuve de
vie, comparaison faciale et criblage AML. La décision arrive par polling
(GET /session/{id}/decision/) ou par webhook, au moins une fois et
potentiellement dans le désordre.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, computed_field

SCORE_PER_CHECK = 25
SUCCESS_SCORE_THRESHOLD = 75


class SessionStatus(str, Enum):
    """États internes d'une session de vérification."""

    IDLE = "idle"
    CREATED = "created"
    LISTENING = "listening"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        """Indique si aucune transition n'est plus possible."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.EXPIRED}
)


class ProviderStatus(str, Enum):
    """Statuts globaux renvoyés par le fournisseur."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    IN_REVIEW = "In Review"
    APPROVED = "Approved"
    DECLINED = "Declined"
    ABANDONED = "Abandoned"
    EXPIRED = "Expired"


# ============================================================================
# Modèles du fournisseur
# ============================================================================


class ProviderCheck(BaseModel):
    """Sous-vérification générique (id_verification, liveness, face_match, ip_analysis)."""

    status: str | None = None
    score: float | None = None
    warnings: list[dict[str, Any]] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class AmlCheck(ProviderCheck):
    """Criblage AML (listes de surveillance)."""

    total_hits: int | None = None
    hits: list[dict[str, Any]] = Field(default_factory=list)


class ProviderReview(BaseModel):
    """Revue manuelle appliquée par un opérateur du fournisseur."""

    user: str | None = None
    new_status: str | None = None
    comment: str | None = None
    created_at: str | None = None

    model_config = {"extra": "allow"}


class ProviderDecision(BaseModel):
    """Décision complète d'une session, telle que renvoyée par le fournisseur."""

    session_id: str
    status: str
    session_number: int | None = None
    session_url: str | None = None
    workflow_id: str | None = None
    vendor_data: str | None = None
    features: list[str] = Field(default_factory=list)
    id_verification: ProviderCheck | None = None
    liveness: ProviderCheck | None = None
    face_match: ProviderCheck | None = None
    aml: AmlCheck | None = None
    ip_analysis: ProviderCheck | None = None
    reviews: list[ProviderReview] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class ExpectedDetails(BaseModel):
    """Données attendues transmises au fournisseur pour recoupement."""

    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: date | None = None
    nationality: str = "VEN"
    country: str = "VEN"
    identification_number: str | None = None


class ProviderSessionCreated(BaseModel):
    """Réponse du fournisseur à la création d'une session."""

    session_id: str
    session_url: str
    session_token: str | None = None
    session_number: int | None = None
    status: str = ProviderStatus.NOT_STARTED.value
    workflow_id: str | None = None
    features: list[str] = Field(default_factory=list)

    model_config = {"extra": "allow"}


class DiditWebhookPayload(BaseModel):
    """Payload du webhook fournisseur (même forme de décision que le polling)."""

    session_id: str
    status: str
    # Types inconnus acceptés ici, ignorés par le routage (200, pas de relivraison)
    webhook_type: str = "status.updated"
    created_at: int | None = None
    timestamp: int | None = None
    workflow_id: str | None = None
    vendor_data: str | None = None
    metadata: dict[str, Any] | None = None
    decision: ProviderDecision | None = None

    model_config = {"extra": "allow"}

    def to_provider_decision(self) -> ProviderDecision:
        """Retourne la décision embarquée, ou une décision réduite au statut."""
        if self.decision is not None:
            return self.decision
        return ProviderDecision(
            session_id=self.session_id,
            status=self.status,
            workflow_id=self.workflow_id,
            vendor_data=self.vendor_data,
        )


# ============================================================================
# Modèles internes
# ============================================================================


class VerificationDecision(BaseModel):
    """Décision terminale composite, calculée une seule fois."""

    session_id: str
    provider_status: str
    document_verified: bool
    identity_verified: bool
    liveness_verified: bool
    aml_cleared: bool
    reviews: list[ProviderReview] = Field(default_factory=list)
    decided_at: datetime

    @computed_field
    @property
    def score(self) -> int:
        """Chaque sous-vérification positive vaut 25 points."""
        flags = (
            self.document_verified,
            self.identity_verified,
            self.liveness_verified,
            self.aml_cleared,
        )
        return SCORE_PER_CHECK * sum(flags)

    @computed_field
    @property
    def is_successful(self) -> bool:
        """Vérification réussie si le score atteint 75."""
        return self.score >= SUCCESS_SCORE_THRESHOLD


class VerificationSession(BaseModel):
    """Unité de travail de vérification biométrique, clé partagée avec le fournisseur."""

    session_id: str
    subject_id: str
    status: SessionStatus = SessionStatus.IDLE
    provider_status: str | None = None
    session_url: str | None = None
    created_at: datetime
    expires_at: datetime
    features: list[str] = Field(default_factory=list)
    last_polled_at: datetime | None = None
    poll_count: int = 0
    consecutive_failures: int = 0
    failure_reason: str | None = None
    decision: VerificationDecision | None = None


# ============================================================================
# API
# ============================================================================


class IdentitySessionStartRequest(BaseModel):
    """Requête de démarrage d'une session de vérification."""

    subject_id: str = Field(..., description="Identifiant du professionnel (vendor_data)")
    first_name: str | None = None
    last_name: str | None = None
    date_of_birth: date | None = None
    document_number: str | None = None
    callback_url: str | None = None
    metadata: dict[str, Any] | None = None


class IdentitySessionResponse(BaseModel):
    """Session exposée par l'API."""

    session: VerificationSession
    redirect_url: str | None = None


class WebhookSignature(BaseModel):
    """En-têtes de signature extraits d'un webhook."""

    signature: str
    timestamp: str


class WebhookVerificationResponse(BaseModel):
    """Résultat de la vérification d'une signature webhook."""

    verified: bool
    reason: str | None = None


class WebhookProcessingResult(BaseModel):
    """Résultat du routage d'un webhook vers le gestionnaire de sessions."""

    session_id: str
    webhook_type: str
    applied: bool
    status: SessionStatus | None = None
    message: str


class WebhookHealthCheck(BaseModel):
    """État de santé du endpoint webhook."""

    status: Literal["healthy", "degraded", "unhealthy"]
    webhook_endpoint: str
    last_event_received: datetime | None = None
    total_events_processed: int = 0
    failed_events_count: int = 0
