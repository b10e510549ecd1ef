"""Schemas Pydantic pour validation des donnees."""

from app.schemas.credentials import (
    CredentialVerificationRequest,
    LicenseVerificationResult,
    RegistryCandidate,
    RegistryLookupResult,
    SpecialtyAnalysis,
    SpecialtyOutcome,
    VerificationSource,
)
from app.schemas.documents import (
    Confidence,
    DocumentIdentifier,
    DocumentType,
    DocumentValidationRequest,
    DocumentValidationResult,
)
from app.schemas.identity import (
    DiditWebhookPayload,
    ProviderDecision,
    SessionStatus,
    VerificationDecision,
    VerificationSession,
    WebhookHealthCheck,
    WebhookSignature,
    WebhookVerificationResponse,
)

__all__ = [
    "Confidence",
    "CredentialVerificationRequest",
    "DiditWebhookPayload",
    "DocumentIdentifier",
    "DocumentType",
    "DocumentValidationRequest",
    "DocumentValidationResult",
    "LicenseVerificationResult",
    "ProviderDecision",
    "RegistryCandidate",
    "RegistryLookupResult",
    "SessionStatus",
    "SpecialtyAnalysis",
    "SpecialtyOutcome",
    "VerificationDecision",
    "VerificationSession",
    "VerificationSource",
    "WebhookHealthCheck",
    "WebhookSignature",
    "WebhookVerificationResponse",
]
