"""Tests unitaires pour la recherche de licence dans le registre."""

import pytest

from app.infrastructure.registry.base import RegistrySearcher
from app.infrastructure.registry.config import RegistrySettings
from app.infrastructure.registry.exceptions import (
    RegistryNavigationError,
    RegistryParseError,
    RegistryTimeoutError,
)
from app.schemas.credentials import (
    ProfessionalRegistration,
    RegistryCandidate,
    RegistryLookupStatus,
    SpecialtyOutcome,
)
from app.services.license_registry import LicenseRegistryLookup, select_exact_match

FAST_RETRY = RegistrySettings(
    REGISTRY_RETRY_ATTEMPTS=2,
    REGISTRY_RETRY_MIN_WAIT=0,
    REGISTRY_RETRY_MAX_WAIT=0,
)


class FakeSearcher:
    """Moteur de recherche factice: rejoue une suite de résultats ou d'exceptions."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[str] = []

    async def search(self, document_number: str) -> list[RegistryCandidate]:
        self.calls.append(document_number)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def doctor(document_number="V-13266929", specialty_text="", **kwargs) -> RegistryCandidate:
    return RegistryCandidate(
        document_number=document_number,
        full_name=kwargs.pop("full_name", "MARIA JOSE PEREZ GONZALEZ"),
        profession=kwargs.pop("profession", "MÉDICO CIRUJANO"),
        license_number=kwargs.pop("license_number", "MPPS-12345"),
        specialty_text=specialty_text,
        **kwargs,
    )


class TestSelectExactMatch:
    """Tests pour la sélection du candidat exact."""

    def test_digits_comparison_ignores_prefix(self):
        """Test comparaison sur les chiffres seuls."""
        candidates = [doctor("V-1111111"), doctor("13266929")]

        assert select_exact_match(candidates, "V-13266929") is candidates[1]

    def test_no_fuzzy_pick(self):
        """Test aucun choix approximatif parmi plusieurs candidats."""
        candidates = [doctor("V-1326692"), doctor("V-132669290")]

        assert select_exact_match(candidates, "V-13266929") is None

    def test_single_candidate_without_document(self):
        """Test candidat unique sans cédula affichée accepté."""
        candidate = doctor(document_number=None)

        assert select_exact_match([candidate], "V-13266929") is candidate

    def test_protocol_is_runtime_checkable(self):
        """Test que le moteur factice satisfait le protocole."""
        assert isinstance(FakeSearcher([]), RegistrySearcher)


class TestLicenseRegistryLookup:
    """Tests pour LicenseRegistryLookup.lookup."""

    @pytest.mark.asyncio
    async def test_found_with_single_specialty(self):
        """Test correspondance directe avec une spécialité."""
        searcher = FakeSearcher([doctor(specialty_text="ESPECIALISTA EN PEDIATRIA")])
        result = await LicenseRegistryLookup(searcher, settings=FAST_RETRY).lookup("V-13266929")

        assert result.status == RegistryLookupStatus.FOUND
        assert result.candidate.full_name == "MARIA JOSE PEREZ GONZALEZ"
        assert result.specialty_analysis.specialties == ["ESPECIALISTA EN PEDIATRIA"]
        assert result.specialty_analysis.outcome == SpecialtyOutcome.SINGLE
        assert result.raw_match_count == 1
        assert result.attempts == 1
        assert result.warnings == []

    @pytest.mark.asyncio
    async def test_not_found(self):
        """Test aucun résultat: NOT_FOUND sans erreur."""
        searcher = FakeSearcher([])
        result = await LicenseRegistryLookup(searcher, settings=FAST_RETRY).lookup("V-99999999")

        assert result.status == RegistryLookupStatus.NOT_FOUND
        assert result.candidate is None
        assert result.error is None

    @pytest.mark.asyncio
    async def test_multiple_candidates_uses_exact_match(self):
        """Test plusieurs candidats: le premier exact, avec avertissement."""
        searcher = FakeSearcher(
            [
                doctor("V-1326692", full_name="OTRO MEDICO DISTINTO"),
                doctor("V-13266929"),
                doctor("V-13266929", full_name="DUPLICADO POSTERIOR"),
            ]
        )
        result = await LicenseRegistryLookup(searcher, settings=FAST_RETRY).lookup("V-13266929")

        assert result.status == RegistryLookupStatus.FOUND
        assert result.candidate.full_name == "MARIA JOSE PEREZ GONZALEZ"
        assert result.raw_match_count == 3
        assert len(result.warnings) == 1

    @pytest.mark.asyncio
    async def test_multiple_candidates_without_exact_match(self):
        """Test plusieurs candidats sans correspondance exacte: NOT_FOUND."""
        searcher = FakeSearcher([doctor("V-1111111"), doctor("V-2222222")])
        result = await LicenseRegistryLookup(searcher, settings=FAST_RETRY).lookup("V-13266929")

        assert result.status == RegistryLookupStatus.NOT_FOUND
        assert result.raw_match_count == 2
        assert result.warnings

    @pytest.mark.asyncio
    async def test_retries_transient_errors(self):
        """Test retry sur timeout puis succès."""
        searcher = FakeSearcher(
            RegistryTimeoutError("13266929", 20000),
            RegistryNavigationError("page crashed"),
            [doctor()],
        )
        result = await LicenseRegistryLookup(searcher, settings=FAST_RETRY).lookup("V-13266929")

        assert result.status == RegistryLookupStatus.FOUND
        assert result.attempts == 3
        assert len(searcher.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_report_error(self):
        """Test échec après épuisement des retries: ERROR sans données partielles."""
        searcher = FakeSearcher(RegistryTimeoutError("13266929", 20000))
        result = await LicenseRegistryLookup(searcher, settings=FAST_RETRY).lookup("V-13266929")

        assert result.status == RegistryLookupStatus.ERROR
        assert result.candidate is None
        assert result.attempts == FAST_RETRY.REGISTRY_RETRY_ATTEMPTS + 1
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_parse_errors_are_not_retried(self):
        """Test erreur de parsing: pas de retry."""
        searcher = FakeSearcher(RegistryParseError("unreadable table"))
        result = await LicenseRegistryLookup(searcher, settings=FAST_RETRY).lookup("V-13266929")

        assert result.status == RegistryLookupStatus.ERROR
        assert result.attempts == 1

    @pytest.mark.asyncio
    async def test_default_status_when_registered(self):
        """Test statut "active" par défaut pour un professionnel inscrit."""
        candidate = doctor(
            registrations=[ProfessionalRegistration(profession="MÉDICO CIRUJANO")]
        )
        result = await LicenseRegistryLookup(
            FakeSearcher([candidate]), settings=FAST_RETRY
        ).lookup("V-13266929")

        assert result.candidate.license_status == "active"

    @pytest.mark.asyncio
    async def test_general_practitioner_has_no_specialty(self):
        """Test aucun texte de spécialité: issue NONE."""
        result = await LicenseRegistryLookup(
            FakeSearcher([doctor()]), settings=FAST_RETRY
        ).lookup("V-13266929")

        assert result.specialty_analysis.outcome == SpecialtyOutcome.NONE
        assert result.specialty_analysis.specialties == []
