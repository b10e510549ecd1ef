"""Tests unitaires pour le gestionnaire de sessions de vérification biométrique."""

import asyncio
import itertools
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from app.infrastructure.didit.exceptions import (
    DiditConnectionError,
    DiditOperationError,
    DiditResponseError,
    DiditServerError,
    DiditSessionNotFoundError,
)
from app.schemas.identity import (
    AmlCheck,
    ProviderCheck,
    ProviderDecision,
    ProviderSessionCreated,
    SessionStatus,
)
from app.services.verification_sessions import (
    VerificationSessionManager,
    compute_decision,
    map_provider_status,
)

START = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def make_decision(
    session_id: str = "sess-1",
    status: str = "Approved",
    document: bool = True,
    identity: bool = True,
    liveness: bool = True,
    aml: bool = True,
) -> ProviderDecision:
    """Décision fournisseur avec chaque sous-vérification positive ou négative."""
    return ProviderDecision(
        session_id=session_id,
        status=status,
        id_verification=ProviderCheck(status="Approved" if document else "Declined"),
        face_match=ProviderCheck(status="match" if identity else "no_match", score=91.5),
        liveness=ProviderCheck(status="live" if liveness else "spoof"),
        aml=AmlCheck(status="clear" if aml else "hits", total_hits=0 if aml else 2),
    )


class FakeClock:
    """Horloge contrôlée par le test."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def client():
    """Client fournisseur simulé."""
    mock = AsyncMock()
    mock.create_session.side_effect = lambda **kwargs: ProviderSessionCreated(
        session_id=f"sess-{mock.create_session.call_count}",
        session_url=f"https://verify.didit.me/session/{mock.create_session.call_count}",
    )
    mock.get_decision.return_value = make_decision()
    return mock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def manager(client, clock):
    """Gestionnaire sans timer automatique par défaut (start_polling=False dans les tests)."""
    manager = VerificationSessionManager(
        client,
        poll_interval=0.01,
        session_max_age=1800,
        max_poll_failures=3,
        archive_size=10,
        clock=clock,
    )
    yield manager
    await manager.close()


class TestScoring:
    """Tests pour le calcul de la décision composite."""

    @pytest.mark.parametrize("flags", list(itertools.product([True, False], repeat=4)))
    def test_score_is_25_per_positive_check(self, flags):
        """Test score = 25 × vérifications positives, succès à partir de 75."""
        document, identity, liveness, aml = flags
        decision = compute_decision(
            make_decision(document=document, identity=identity, liveness=liveness, aml=aml),
            START,
        )

        assert decision.score == 25 * sum(flags)
        assert decision.is_successful is (sum(flags) >= 3)

    def test_missing_checks_count_as_negative(self):
        """Test décision sans sous-vérifications: score nul."""
        decision = compute_decision(ProviderDecision(session_id="s", status="Approved"), START)

        assert decision.score == 0
        assert decision.is_successful is False

    def test_aml_without_hits_is_cleared(self):
        """Test AML sans statut mais sans résultat sur les listes."""
        raw = make_decision()
        raw.aml = AmlCheck(status=None, total_hits=0)

        assert compute_decision(raw, START).aml_cleared is True

    def test_statuses_are_case_insensitive(self):
        """Test statuts de sous-vérification insensibles à la casse."""
        raw = make_decision()
        raw.liveness = ProviderCheck(status="LIVE")
        raw.face_match = ProviderCheck(status="Match")

        assert compute_decision(raw, START).score == 100

    @pytest.mark.parametrize(
        "provider_status,expected",
        [
            ("Not Started", SessionStatus.PROCESSING),
            ("In Progress", SessionStatus.PROCESSING),
            ("IN_REVIEW", SessionStatus.PROCESSING),
            ("Approved", SessionStatus.COMPLETED),
            ("Declined", SessionStatus.COMPLETED),
            ("Abandoned", SessionStatus.FAILED),
            ("Expired", SessionStatus.EXPIRED),
            ("Something Else", None),
            (None, None),
        ],
    )
    def test_provider_status_mapping(self, provider_status, expected):
        """Test correspondance statut fournisseur → statut interne."""
        assert map_provider_status(provider_status) == expected


class TestStartSession:
    """Tests pour start_session."""

    @pytest.mark.asyncio
    async def test_session_is_listening(self, manager, client, clock):
        """Test création: état listening, URL de redirection, expiration locale."""
        session = await manager.start_session("professional-42", start_polling=False)

        assert session.session_id == "sess-1"
        assert session.subject_id == "professional-42"
        assert session.status == SessionStatus.LISTENING
        assert session.session_url == "https://verify.didit.me/session/1"
        assert session.created_at == START
        assert session.expires_at == START + timedelta(seconds=1800)
        client.create_session.assert_awaited_once()
        assert client.create_session.call_args.kwargs["vendor_data"] == "professional-42"

    @pytest.mark.asyncio
    async def test_polling_timer_started(self, manager):
        """Test qu'un timer de polling est démarré."""
        session = await manager.start_session("professional-42")

        assert manager.is_polling(session.session_id) is True

    @pytest.mark.asyncio
    async def test_provider_failure_propagates(self, manager, client):
        """Test échec de création: exception, aucune session suivie."""
        client.create_session.side_effect = DiditConnectionError("unreachable")

        with pytest.raises(DiditConnectionError):
            await manager.start_session("professional-42")

        assert manager.stats()["active_sessions"] == 0

    @pytest.mark.asyncio
    async def test_returned_snapshot_is_a_copy(self, manager):
        """Test que l'instantané retourné ne modifie pas l'état suivi."""
        session = await manager.start_session("professional-42", start_polling=False)
        session.status = SessionStatus.COMPLETED

        assert manager.get_session("sess-1").status == SessionStatus.LISTENING


class TestPolling:
    """Tests pour poll_once et le timer."""

    @pytest.mark.asyncio
    async def test_approved_decision_completes(self, manager, client):
        """Test décision approuvée: completed, score 100, session archivée."""
        await manager.start_session("professional-42", start_polling=False)

        session = await manager.poll_once("sess-1")

        assert session.status == SessionStatus.COMPLETED
        assert session.decision.score == 100
        assert session.decision.is_successful is True
        assert session.poll_count == 1
        assert manager.get_decision("sess-1").score == 100
        assert manager.stats()["active_sessions"] == 0
        assert manager.stats()["archived_sessions"] == 1

    @pytest.mark.asyncio
    async def test_in_progress_keeps_processing(self, manager, client):
        """Test statut en cours: processing, toujours suivi."""
        client.get_decision.return_value = make_decision(status="In Progress")
        await manager.start_session("professional-42", start_polling=False)

        session = await manager.poll_once("sess-1")

        assert session.status == SessionStatus.PROCESSING
        assert session.provider_status == "In Progress"
        assert session.decision is None
        assert manager.stats()["active_sessions"] == 1

    @pytest.mark.asyncio
    async def test_session_not_found_expires_and_stops_polling(self, manager, client):
        """Test 404 du fournisseur: expired, timer annulé, plus aucun appel."""
        client.get_decision.side_effect = DiditSessionNotFoundError("sess-1")
        await manager.start_session("professional-42")

        for _ in range(50):
            await asyncio.sleep(0.01)
            if manager.get_session("sess-1").status.is_terminal:
                break

        session = manager.get_session("sess-1")
        assert session.status == SessionStatus.EXPIRED
        assert manager.is_polling("sess-1") is False

        calls = client.get_decision.await_count
        await asyncio.sleep(0.05)
        await manager.poll_once("sess-1")
        assert client.get_decision.await_count == calls == 1

    @pytest.mark.asyncio
    async def test_in_progress_then_not_found_expires_under_timer(self, manager, client):
        """Test timer actif: In Progress puis 404, expired, deux appels seulement."""
        responses = [make_decision(status="In Progress"), DiditSessionNotFoundError("sess-1")]
        seen_states: list[SessionStatus] = []

        async def answer(session_id: str) -> ProviderDecision:
            seen_states.append(manager.get_session(session_id).status)
            outcome = responses.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        client.get_decision.side_effect = answer
        await manager.start_session("professional-42")

        for _ in range(100):
            await asyncio.sleep(0.01)
            if manager.get_session("sess-1").status.is_terminal:
                break

        assert seen_states == [SessionStatus.LISTENING, SessionStatus.PROCESSING]
        session = manager.get_session("sess-1")
        assert session.status == SessionStatus.EXPIRED
        assert session.failure_reason == "session not found"
        assert manager.is_polling("sess-1") is False

        await asyncio.sleep(0.05)
        assert client.get_decision.await_count == 2

    @pytest.mark.asyncio
    async def test_local_expiry_is_detected_before_polling(self, manager, client, clock):
        """Test expiration locale: aucun appel au fournisseur."""
        await manager.start_session("professional-42", start_polling=False)
        clock.advance(1801)

        session = await manager.poll_once("sess-1")

        assert session.status == SessionStatus.EXPIRED
        assert session.failure_reason == "session max age reached"
        client.get_decision.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_failures_fail_after_threshold(self, manager, client):
        """Test erreurs transitoires: failed après 3 échecs consécutifs."""
        client.get_decision.side_effect = DiditServerError(503, "unavailable")
        await manager.start_session("professional-42", start_polling=False)

        first = await manager.poll_once("sess-1")
        second = await manager.poll_once("sess-1")
        assert first.consecutive_failures == 1
        assert second.status == SessionStatus.LISTENING

        third = await manager.poll_once("sess-1")
        assert third.status == SessionStatus.FAILED
        assert third.failure_reason.startswith("provider unavailable")

    @pytest.mark.asyncio
    async def test_successful_poll_resets_failure_counter(self, manager, client):
        """Test qu'un polling réussi remet le compteur d'échecs à zéro."""
        client.get_decision.side_effect = [
            DiditConnectionError("timeout"),
            DiditConnectionError("timeout"),
            make_decision(status="In Progress"),
            DiditConnectionError("timeout"),
        ]
        await manager.start_session("professional-42", start_polling=False)

        for _ in range(4):
            session = await manager.poll_once("sess-1")

        assert session.status == SessionStatus.PROCESSING
        assert session.consecutive_failures == 1

    @pytest.mark.parametrize(
        "error",
        [DiditOperationError(401, "unauthorized"), DiditResponseError("malformed decision")],
    )
    @pytest.mark.asyncio
    async def test_non_transient_errors_fail(self, manager, client, error):
        """Test erreurs non transitoires: failed immédiatement."""
        client.get_decision.side_effect = error
        await manager.start_session("professional-42", start_polling=False)

        session = await manager.poll_once("sess-1")

        assert session.status == SessionStatus.FAILED
        assert session.failure_reason == error.message

    @pytest.mark.asyncio
    async def test_single_request_in_flight(self, manager, client):
        """Test qu'un tick est ignoré si une requête est déjà en vol."""
        release = asyncio.Event()

        async def slow_decision(session_id):
            await release.wait()
            return make_decision(session_id, status="In Progress")

        client.get_decision.side_effect = slow_decision
        await manager.start_session("professional-42", start_polling=False)

        first = asyncio.create_task(manager.poll_once("sess-1"))
        await asyncio.sleep(0.01)
        skipped = await manager.poll_once("sess-1")
        release.set()
        await first

        assert skipped.status == SessionStatus.LISTENING
        assert client.get_decision.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_session(self, manager):
        """Test polling d'une session inconnue."""
        assert await manager.poll_once("missing") is None


class TestApplyStatusEvent:
    """Tests pour la transition unique partagée par polling et webhook."""

    @pytest.mark.asyncio
    async def test_terminal_state_is_idempotent(self, manager, client):
        """Test événement tardif après completed: ni état ni score modifiés."""
        await manager.start_session("professional-42", start_polling=False)
        completed = await manager.poll_once("sess-1")

        late = await manager.apply_status_event(
            "sess-1",
            make_decision(status="Declined", document=False, identity=False),
            source="webhook",
        )

        assert late.status == SessionStatus.COMPLETED
        assert late.decision.score == completed.decision.score == 100
        assert late.provider_status == "Approved"

        await manager.poll_once("sess-1")
        assert client.get_decision.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_events_apply_once(self, manager):
        """Test deux événements simultanés: une seule décision retenue."""
        await manager.start_session("professional-42", start_polling=False)

        results = await asyncio.gather(
            manager.apply_status_event("sess-1", make_decision(status="Approved")),
            manager.apply_status_event(
                "sess-1", make_decision(status="Declined", document=False, aml=False)
            ),
        )

        final = manager.get_session("sess-1")
        assert final.status == SessionStatus.COMPLETED
        assert all(r.decision.score == final.decision.score for r in results)

    @pytest.mark.asyncio
    async def test_webhook_completion_cancels_timer(self, manager):
        """Test completion par webhook: le timer est annulé."""
        await manager.start_session("professional-42")
        assert manager.is_polling("sess-1") is True

        await manager.apply_status_event("sess-1", make_decision(), source="webhook")

        assert manager.is_polling("sess-1") is False

    @pytest.mark.parametrize(
        "provider_status,expected",
        [
            ("Abandoned", SessionStatus.FAILED),
            ("Expired", SessionStatus.EXPIRED),
            ("Unexpected", SessionStatus.FAILED),
        ],
    )
    @pytest.mark.asyncio
    async def test_terminal_provider_statuses(self, manager, provider_status, expected):
        """Test statuts fournisseur terminaux sans décision."""
        await manager.start_session("professional-42", start_polling=False)

        session = await manager.apply_status_event(
            "sess-1", ProviderDecision(session_id="sess-1", status=provider_status)
        )

        assert session.status == expected
        assert session.decision is None

    @pytest.mark.asyncio
    async def test_event_after_local_deadline_expires(self, manager, client, clock):
        """Test webhook Approved arrivé après l'échéance locale: expired, pas de score."""
        await manager.start_session("professional-42", start_polling=False)
        clock.advance(3600)

        session = await manager.apply_status_event("sess-1", make_decision(), source="webhook")

        assert session.status == SessionStatus.EXPIRED
        assert session.failure_reason == "session max age reached"
        assert session.decision is None
        assert manager.is_polling("sess-1") is False

    @pytest.mark.asyncio
    async def test_unknown_session_returns_none(self, manager):
        """Test événement pour une session inconnue."""
        assert await manager.apply_status_event("missing", make_decision("missing")) is None


class TestStopAndBookkeeping:
    """Tests pour l'arrêt explicite, l'archive et les statistiques."""

    @pytest.mark.asyncio
    async def test_stop_session(self, manager, client):
        """Test arrêt explicite: failed/cancelled, timer annulé."""
        await manager.start_session("professional-42")

        session = await manager.stop_session("sess-1")

        assert session.status == SessionStatus.FAILED
        assert session.failure_reason == "cancelled"
        assert manager.is_polling("sess-1") is False
        client.cancel_session.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_session_cancels_remote(self, manager, client):
        """Test annulation distante, erreur fournisseur tolérée."""
        client.cancel_session.side_effect = DiditConnectionError("unreachable")
        await manager.start_session("professional-42", start_polling=False)

        session = await manager.stop_session("sess-1", cancel_remote=True)

        assert session.status == SessionStatus.FAILED
        client.cancel_session.assert_awaited_once_with("sess-1")

    @pytest.mark.asyncio
    async def test_stop_unknown_session(self, manager):
        """Test arrêt d'une session inconnue."""
        assert await manager.stop_session("missing") is None

    @pytest.mark.asyncio
    async def test_archive_is_bounded(self, client, clock):
        """Test archive bornée: les plus anciennes sessions sont oubliées."""
        manager = VerificationSessionManager(client, archive_size=2, clock=clock)
        for _ in range(3):
            session = await manager.start_session("professional-42", start_polling=False)
            await manager.stop_session(session.session_id)

        assert manager.get_session("sess-1") is None
        assert manager.get_session("sess-3").status == SessionStatus.FAILED
        assert manager.stats()["archived_sessions"] == 2

    @pytest.mark.asyncio
    async def test_stats(self, manager, client):
        """Test statistiques par statut."""
        client.get_decision.return_value = make_decision(status="In Progress")
        await manager.start_session("professional-42", start_polling=False)
        await manager.start_session("professional-43", start_polling=False)
        await manager.poll_once("sess-1")

        stats = manager.stats()

        assert stats["active_sessions"] == 2
        assert stats["by_status"] == {"processing": 1, "listening": 1}
        assert stats["polling_timers"] == 0

    @pytest.mark.asyncio
    async def test_close_cancels_timers(self, client, clock):
        """Test arrêt du gestionnaire: timers annulés."""
        manager = VerificationSessionManager(client, poll_interval=60, clock=clock)
        await manager.start_session("professional-42")

        await manager.close()

        assert manager.is_polling("sess-1") is False
        assert manager.stats()["active_sessions"] == 0
