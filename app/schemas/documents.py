"""Schémas Pydantic pour la validation des documents d'identité vénézuéliens.

Types de documents supportés:
- cedula_identidad: Cédula d'identité (V-, J-, E-, G- + 7/8 chiffres)
- cedula_extranjeria: Cédula d'étranger (E- + 8 chiffres)
- pasaporte: Passeport (VE + 7 chiffres)
- cedula_profesional: Cédula professionnelle (même format que la cédula d'identité)
- licencia_conducir: Permis de conduire (LC + 8 chiffres)
- partida_nacimiento / certificado_nacimiento: Actes de naissance (PN/CN + 10 chiffres)
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class DocumentType(str, Enum):
    """Types de documents reconnus par le validateur."""

    NATIONAL_ID = "cedula_identidad"
    FOREIGN_NATIONAL_ID = "cedula_extranjeria"
    PASSPORT = "pasaporte"
    PROFESSIONAL_LICENSE = "cedula_profesional"
    DRIVER_LICENSE = "licencia_conducir"
    BIRTH_RECORD = "partida_nacimiento"
    BIRTH_CERTIFICATE = "certificado_nacimiento"


class CheckDigitAlgorithm(str, Enum):
    """Algorithmes de chiffre de contrôle par famille de document."""

    DESCENDING_WEIGHTS = "descending_weights"
    ASCENDING_WEIGHTS = "ascending_weights"
    PASSPORT_SUM = "passport_sum"
    NONE = "none"


class Confidence(str, Enum):
    """Niveau de confiance d'une validation (fonction pure du résultat)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DocumentFormat(BaseModel):
    """Description du format attendu pour un type de document."""

    document_type: DocumentType
    pattern: str = Field(..., description="Expression régulière du format normalisé")
    example: str
    description: str
    issuing_authority: str
    check_digit_algorithm: CheckDigitAlgorithm
    expires: bool = Field(default=False, description="Le document porte une date d'expiration")

    model_config = {"frozen": True}


class DocumentIdentifier(BaseModel):
    """Identifiant de document immuable, normalisé (majuscules, sans espaces)."""

    document_type: DocumentType
    raw_value: str

    model_config = {"frozen": True}

    @field_validator("raw_value", mode="before")
    @classmethod
    def normalize_raw_value(cls, v: str) -> str:
        """Normalise la valeur brute avant validation."""
        if not isinstance(v, str):
            raise ValueError("document number must be a string")
        return "".join(v.split()).upper()


class DocumentValidationResult(BaseModel):
    """Résultat dérivé (non persisté) de la validation d'un document."""

    document_type: DocumentType
    normalized_value: str
    is_valid: bool
    check_digit_valid: bool
    format_valid: bool = False
    confidence: Confidence
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    age: int | None = None
    is_expired: bool = False
    type_inferred: bool = Field(
        default=False, description="Le type a été déduit du préfixe du numéro"
    )
    issuing_authority: str | None = None


class DocumentValidationRequest(BaseModel):
    """Requête de validation d'un document via l'API."""

    document_number: str = Field(..., description="Numéro de document tel que saisi")
    document_type: str | None = Field(
        None, description="Type de document (déduit du préfixe si absent)"
    )
    birth_date: date | None = None
    expiration_date: date | None = None
