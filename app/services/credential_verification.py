"""Orchestration de la vérification d'une licence professionnelle.

Composition: validation du document, puis recherche dans le registre SACS
seulement si le document est valide. ``is_valid`` reflète le document,
``is_verified`` exige en plus une correspondance exacte dans le registre.
"""

import logging
import unicodedata
from datetime import UTC, datetime
from difflib import SequenceMatcher

from opentelemetry import trace

from app.core.config import settings
from app.schemas.credentials import (
    FullVerificationResult,
    FullVerificationStatus,
    LicenseVerificationResult,
    NameMatch,
    RegistryLookupResult,
    RegistryLookupStatus,
    SpecialtyOutcome,
    VerificationSource,
)
from app.schemas.documents import DocumentType, DocumentValidationResult
from app.schemas.identity import SessionStatus, VerificationSession
from app.services import document_validator
from app.services.license_registry import LicenseRegistryLookup

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

# Types recherchables par cédula dans le registre
REGISTRY_SEARCHABLE_TYPES = frozenset(
    {
        DocumentType.NATIONAL_ID,
        DocumentType.FOREIGN_NATIONAL_ID,
        DocumentType.PROFESSIONAL_LICENSE,
    }
)

_COURTESY_TITLES = frozenset({"DR", "DRA", "DOCTOR", "DOCTORA", "LIC", "LICDA", "LCDO", "LCDA"})


def normalize_name(name: str) -> list[str]:
    """Tokens d'un nom: sans accents, majuscules, titres de courtoisie retirés."""
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    cleaned = "".join(c if c.isalpha() else " " for c in stripped.upper())
    tokens = cleaned.split()
    while tokens and tokens[0] in _COURTESY_TITLES:
        tokens.pop(0)
    return tokens


def match_names(
    supplied_name: str, registry_name: str, threshold: float | None = None
) -> NameMatch:
    """
    Compare un nom saisi et le nom du registre, sans tenir compte de la casse,
    des accents ni de l'ordre des mots.

    Les tokens saisis tous présents dans le nom du registre suffisent
    (deuxièmes prénoms et noms omis). Sinon, le ratio SequenceMatcher des
    tokens triés doit atteindre le seuil.
    """
    threshold = settings.NAME_MATCH_THRESHOLD if threshold is None else threshold
    supplied_tokens = normalize_name(supplied_name)
    registry_tokens = normalize_name(registry_name)

    if not supplied_tokens or not registry_tokens:
        similarity = 0.0
    elif set(supplied_tokens) <= set(registry_tokens):
        similarity = 1.0
    else:
        similarity = SequenceMatcher(
            None, " ".join(sorted(supplied_tokens)), " ".join(sorted(registry_tokens))
        ).ratio()

    return NameMatch(
        supplied_name=supplied_name,
        registry_name=registry_name,
        similarity=round(similarity, 3),
        matches=similarity >= threshold,
    )


class CredentialVerificationOrchestrator:
    """Compose validation de format et recherche registre en un seul résultat."""

    def __init__(self, registry_lookup: LicenseRegistryLookup):
        self._registry_lookup = registry_lookup

    async def verify(
        self,
        document_type: DocumentType | str | None,
        document_number: str,
        first_name: str | None = None,
        last_name: str | None = None,
    ) -> LicenseVerificationResult:
        """
        Vérifie une licence professionnelle.

        Args:
            document_type: Type de document (cédula professionnelle par défaut)
            document_number: Numéro saisi
            first_name: Prénom(s) déclaré(s), optionnel
            last_name: Nom(s) déclaré(s), optionnel

        Returns:
            LicenseVerificationResult, jamais d'exception pour une entrée invalide
        """
        with tracer.start_as_current_span("verify_professional_credential") as span:
            validation = document_validator.validate(
                document_number, document_type or DocumentType.PROFESSIONAL_LICENSE
            )
            span.set_attribute("credential.document_type", validation.document_type.value)
            span.set_attribute("credential.format_valid", validation.is_valid)

            if not validation.is_valid:
                span.add_event("Registry lookup skipped: invalid document")
                return self._not_attempted(validation, list(validation.errors))

            if validation.document_type not in REGISTRY_SEARCHABLE_TYPES:
                span.add_event("Registry lookup skipped: document type not searchable")
                return self._not_attempted(
                    validation,
                    [],
                    [f"{validation.document_type.value} cannot be checked against the registry"],
                )

            lookup = await self._registry_lookup.lookup(validation.normalized_value)
            result = self._compose(validation, lookup)

            supplied_name = " ".join(part for part in (first_name, last_name) if part)
            if supplied_name and result.doctor_name:
                result.name_match = match_names(supplied_name, result.doctor_name)
                if not result.name_match.matches:
                    result.warnings.append(
                        f"Supplied name does not match registry name "
                        f"(similarity {result.name_match.similarity})"
                    )

            span.set_attribute("credential.verified", result.is_verified)
            span.set_attribute("credential.source", result.verification_source.value)
            logger.info(
                f"Vérification licence: source={result.verification_source.value}, "
                f"verified={result.is_verified}, matches={result.raw_match_count}"
            )
            return result

    @staticmethod
    def full_decision(
        license_result: LicenseVerificationResult, session: VerificationSession | None
    ) -> FullVerificationResult:
        """
        Combine la vérification de licence et la session biométrique.

        Succès complet seulement si le registre confirme la licence ET la
        session est terminée avec une décision réussie (score >= 75). Une
        session en cours, absente ou un registre indisponible donnent pending;
        un refus de l'un des deux volets donne rejected.

        Args:
            license_result: Résultat de ``verify``
            session: Session biométrique du même professionnel, si démarrée

        Returns:
            FullVerificationResult avec les raisons d'un résultat non vérifié
        """
        reasons: list[str] = []
        rejected = False

        if not license_result.is_verified:
            source = license_result.verification_source
            if source == VerificationSource.ERROR:
                reasons.append("license registry unavailable, verification must be retried")
            else:
                rejected = True
                reasons.append(f"license not verified ({source.value})")

        if session is None:
            reasons.append("no identity verification session")
        elif not session.status.is_terminal:
            reasons.append(f"identity verification {session.status.value}")
        elif session.status != SessionStatus.COMPLETED:
            rejected = True
            reason = session.failure_reason or session.status.value
            reasons.append(f"identity verification {session.status.value}: {reason}")
        elif session.decision is None or not session.decision.is_successful:
            rejected = True
            score = session.decision.score if session.decision else 0
            reasons.append(f"identity verification score {score} below threshold")

        if rejected:
            status = FullVerificationStatus.REJECTED
        elif reasons:
            status = FullVerificationStatus.PENDING
        else:
            status = FullVerificationStatus.VERIFIED

        return FullVerificationResult(
            status=status,
            is_fully_verified=status == FullVerificationStatus.VERIFIED,
            license=license_result,
            session=session,
            reasons=reasons,
        )

    def _not_attempted(
        self,
        validation: DocumentValidationResult,
        errors: list[str],
        warnings: list[str] | None = None,
    ) -> LicenseVerificationResult:
        return LicenseVerificationResult(
            is_valid=validation.is_valid,
            is_verified=False,
            document_type=validation.document_type,
            document_number=validation.normalized_value,
            verification_source=VerificationSource.NOT_ATTEMPTED,
            document_validation=validation,
            errors=errors,
            warnings=list(validation.warnings) + (warnings or []),
            verified_at=datetime.now(UTC),
        )

    def _compose(
        self, validation: DocumentValidationResult, lookup: RegistryLookupResult
    ) -> LicenseVerificationResult:
        result = LicenseVerificationResult(
            is_valid=validation.is_valid,
            is_verified=False,
            document_type=validation.document_type,
            document_number=validation.normalized_value,
            verification_source=VerificationSource.NOT_FOUND,
            raw_match_count=lookup.raw_match_count,
            document_validation=validation,
            warnings=list(validation.warnings) + list(lookup.warnings),
            verified_at=datetime.now(UTC),
        )

        if lookup.status == RegistryLookupStatus.ERROR:
            result.verification_source = VerificationSource.ERROR
            result.errors.append(f"Registry unavailable: {lookup.error}")
            return result

        if lookup.status == RegistryLookupStatus.NOT_FOUND or lookup.candidate is None:
            return result

        candidate = lookup.candidate
        analysis = lookup.specialty_analysis
        result.verification_source = VerificationSource.REGISTRY_SCRAPE
        result.is_verified = validation.is_valid
        result.doctor_name = candidate.full_name
        result.profession = candidate.profession
        result.license_number = candidate.license_number
        result.license_status = candidate.license_status
        result.specialties = list(analysis.specialties)
        result.specialty_outcome = analysis.outcome
        if analysis.outcome == SpecialtyOutcome.SINGLE:
            result.specialty = analysis.specialties[0]
        elif analysis.outcome == SpecialtyOutcome.MULTIPLE:
            result.warnings.append(
                f"{len(analysis.specialties)} specialties registered, see specialties"
            )
        return result
