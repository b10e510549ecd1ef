"""Recherche d'une licence professionnelle dans le registre SACS.

Règles sur les résultats:
    - aucun candidat: statut NOT_FOUND
    - un seul candidat: correspondance directe
    - plusieurs candidats: premier candidat dont la cédula correspond
      exactement; jamais de choix "au plus probable" sur le nom
    - timeouts / navigation: retry borné avec backoff exponentiel, puis
      statut ERROR sans données partielles
"""

import logging
import re

from opentelemetry import trace

from app.core.retry import retry_async_operation
from app.infrastructure.registry.base import RegistrySearcher
from app.infrastructure.registry.config import RegistrySettings, registry_settings
from app.infrastructure.registry.exceptions import RegistryError, RegistryTransientError
from app.schemas.credentials import (
    RegistryCandidate,
    RegistryLookupResult,
    RegistryLookupStatus,
    SpecialtyAnalysis,
)
from app.services.specialty_analyzer import SpecialtyTextAnalyzer

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_LICENSE_STATUS = "active"


def document_digits(document_number: str | None) -> str:
    """Chiffres d'un numéro de document (préfixe de nationalité ignoré)."""
    return re.sub(r"\D", "", document_number or "")


def select_exact_match(
    candidates: list[RegistryCandidate], document_number: str
) -> RegistryCandidate | None:
    """
    Sélectionne le candidat correspondant exactement à la cédula recherchée.

    Un candidat sans cédula affichée n'est accepté que s'il est seul.

    Args:
        candidates: Candidats extraits du registre, dans l'ordre de la page
        document_number: Cédula recherchée

    Returns:
        Le premier candidat exact, ou None
    """
    wanted = document_digits(document_number)
    for candidate in candidates:
        if candidate.document_number and document_digits(candidate.document_number) == wanted:
            return candidate

    if len(candidates) == 1 and not candidates[0].document_number:
        return candidates[0]
    return None


class LicenseRegistryLookup:
    """Recherche de licence avec retry et analyse des spécialités."""

    def __init__(
        self,
        searcher: RegistrySearcher,
        analyzer: SpecialtyTextAnalyzer | None = None,
        settings: RegistrySettings | None = None,
    ):
        """
        Initialise le service de recherche.

        Args:
            searcher: Moteur de recherche du registre (Playwright ou factice)
            analyzer: Analyseur de spécialités
            settings: Paramètres du registre (retries, backoff)
        """
        self._searcher = searcher
        self._analyzer = analyzer or SpecialtyTextAnalyzer()
        self._settings = settings or registry_settings

    async def lookup(self, document_number: str) -> RegistryLookupResult:
        """
        Recherche une cédula dans le registre.

        Args:
            document_number: Cédula normalisée (ex: V-13266929)

        Returns:
            RegistryLookupResult; les erreurs sont encodées dans le statut
        """
        with tracer.start_as_current_span("license_registry_lookup") as span:
            attempts = 0

            async def search_once() -> list[RegistryCandidate]:
                nonlocal attempts
                attempts += 1
                return await self._searcher.search(document_number)

            try:
                candidates = await retry_async_operation(
                    search_once,
                    max_attempts=self._settings.REGISTRY_RETRY_ATTEMPTS + 1,
                    min_wait_seconds=self._settings.REGISTRY_RETRY_MIN_WAIT,
                    max_wait_seconds=self._settings.REGISTRY_RETRY_MAX_WAIT,
                    exceptions=(RegistryTransientError,),
                )
            except RegistryError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                logger.error(f"Recherche registre échouée après {attempts} tentative(s): {e}")
                return RegistryLookupResult(
                    status=RegistryLookupStatus.ERROR,
                    document_number=document_number,
                    attempts=attempts,
                    error=e.message,
                )

            span.set_attribute("registry.attempts", attempts)
            span.set_attribute("registry.raw_match_count", len(candidates))

            if not candidates:
                span.add_event("No registry match")
                return RegistryLookupResult(
                    status=RegistryLookupStatus.NOT_FOUND,
                    document_number=document_number,
                    attempts=attempts,
                )

            warnings: list[str] = []
            match = select_exact_match(candidates, document_number)
            if match is None:
                logger.warning(
                    f"Registre: {len(candidates)} candidat(s) sans correspondance exacte de cédula"
                )
                return RegistryLookupResult(
                    status=RegistryLookupStatus.NOT_FOUND,
                    document_number=document_number,
                    raw_match_count=len(candidates),
                    attempts=attempts,
                    warnings=[
                        f"{len(candidates)} registry result(s) without an exact document match"
                    ],
                )

            if len(candidates) > 1:
                warnings.append(
                    f"{len(candidates)} registry results, using the exact document match"
                )

            if match.license_status is None and match.registrations:
                match.license_status = DEFAULT_LICENSE_STATUS

            analysis = self._analyze_specialties(match)
            if analysis.parse_failed:
                warnings.append("Specialty text could not be parsed")

            span.set_attribute("registry.specialty_outcome", analysis.outcome.value)
            return RegistryLookupResult(
                status=RegistryLookupStatus.FOUND,
                document_number=document_number,
                candidate=match,
                specialty_analysis=analysis,
                raw_match_count=len(candidates),
                attempts=attempts,
                warnings=warnings,
            )

    def _analyze_specialties(self, candidate: RegistryCandidate) -> SpecialtyAnalysis:
        analysis = self._analyzer.analyze(candidate.specialty_text)
        if analysis.parse_failed:
            logger.warning(f"Diagnostic analyse spécialités: {analysis.diagnostic}")
        return analysis
