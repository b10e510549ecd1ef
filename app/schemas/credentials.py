"""Schémas Pydantic pour la vérification des licences professionnelles.

Le registre SACS (Servicio Autónomo de Contraloría Sanitaria) n'expose pas
d'API: les candidats sont extraits de pages HTML et tous les champs sont
traités comme du texte au mieux.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.schemas.documents import DocumentType, DocumentValidationResult
from app.schemas.identity import VerificationSession


class VerificationSource(str, Enum):
    """Origine du résultat de vérification."""

    REGISTRY_SCRAPE = "registry_scrape"
    NOT_FOUND = "not_found"
    ERROR = "error"
    NOT_ATTEMPTED = "not_attempted"


class SpecialtyOutcome(str, Enum):
    """Issue explicite de l'analyse des spécialités."""

    NONE = "none"
    SINGLE = "single"
    MULTIPLE = "multiple"


class SpecialtyAnalysis(BaseModel):
    """Spécialités extraites d'un texte libre du registre."""

    specialties: list[str] = Field(default_factory=list)
    outcome: SpecialtyOutcome = SpecialtyOutcome.NONE
    parse_failed: bool = False
    diagnostic: str | None = None


class ProfessionalRegistration(BaseModel):
    """Ligne d'inscription professionnelle d'un candidat."""

    profession: str
    license_number: str | None = None
    registration_date: str | None = None
    volume: str | None = None
    folio: str | None = None
    has_postgraduate: bool = False


class RegistryCandidate(BaseModel):
    """Profil candidat extrait d'une page de résultats du registre."""

    document_number: str | None = None
    full_name: str | None = None
    profession: str | None = None
    license_number: str | None = None
    license_status: str | None = None
    specialty_text: str = ""
    registrations: list[ProfessionalRegistration] = Field(default_factory=list)


class RegistryLookupStatus(str, Enum):
    """Issue d'une recherche dans le registre."""

    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


class RegistryLookupResult(BaseModel):
    """Résultat d'une recherche dans le registre, avant composition métier."""

    status: RegistryLookupStatus
    document_number: str
    candidate: RegistryCandidate | None = None
    specialty_analysis: SpecialtyAnalysis = Field(default_factory=SpecialtyAnalysis)
    raw_match_count: int = 0
    attempts: int = 0
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


class NameMatch(BaseModel):
    """Comparaison souple entre le nom fourni et le nom du registre."""

    supplied_name: str
    registry_name: str
    similarity: float
    matches: bool


class LicenseVerificationResult(BaseModel):
    """Résultat de vérification d'une licence, recalculé à chaque requête."""

    is_valid: bool
    is_verified: bool
    document_type: DocumentType
    document_number: str
    doctor_name: str | None = None
    profession: str | None = None
    specialty: str | None = None
    specialties: list[str] = Field(default_factory=list)
    specialty_outcome: SpecialtyOutcome = SpecialtyOutcome.NONE
    license_number: str | None = None
    license_status: str | None = None
    verification_source: VerificationSource
    raw_match_count: int = 0
    name_match: NameMatch | None = None
    document_validation: DocumentValidationResult | None = None
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    verified_at: datetime


class CredentialVerificationRequest(BaseModel):
    """Requête de vérification d'une licence professionnelle via l'API."""

    document_number: str = Field(..., description="Cédula du professionnel, ex: V-13266929")
    document_type: DocumentType = DocumentType.PROFESSIONAL_LICENSE
    first_name: str | None = None
    last_name: str | None = None


class FullVerificationStatus(str, Enum):
    """Issue de la décision combinée licence + identité biométrique."""

    VERIFIED = "verified"
    PENDING = "pending"
    REJECTED = "rejected"


class FullVerificationResult(BaseModel):
    """
    Décision "professionnel réel, inscrit et présent".

    ``is_fully_verified`` exige une licence confirmée par le registre ET une
    session biométrique terminée avec succès. Tant que la session n'est pas
    terminale, ou que le registre est indisponible, le statut reste pending.
    """

    status: FullVerificationStatus
    is_fully_verified: bool
    license: LicenseVerificationResult
    session: VerificationSession | None = None
    reasons: list[str] = Field(default_factory=list)


class FullVerificationRequest(CredentialVerificationRequest):
    """Requête de décision combinée: licence + session biométrique existante."""

    session_id: str = Field(..., description="Session biométrique du professionnel")
