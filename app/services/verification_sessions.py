"""Gestion du cycle de vie des sessions de vérification biométrique.

Machine à états par session:

    idle → created → listening → processing → {completed | failed | expired}

Deux déclencheurs alimentent une seule fonction de transition
(``apply_status_event``): le timer de polling et la livraison de webhook.
Les écritures sont sérialisées par un verrou propre à chaque session; un
état terminal n'est plus jamais modifié, même par un webhook tardif.

Chaque session suivie possède au plus un timer (tâche asyncio) et au plus
une requête de statut en vol. Le timer est annulé dès l'état terminal ou
l'arrêt explicite, et la session quitte alors le suivi actif pour une
archive bornée (lecture seule).
"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from opentelemetry import trace

from app.core.config import settings
from app.infrastructure.didit.client import DiditClient
from app.infrastructure.didit.exceptions import (
    DiditConnectionError,
    DiditError,
    DiditOperationError,
    DiditResponseError,
    DiditServerError,
    DiditSessionNotFoundError,
)
from app.schemas.identity import (
    ExpectedDetails,
    ProviderCheck,
    ProviderDecision,
    ProviderStatus,
    SessionStatus,
    VerificationDecision,
    VerificationSession,
)

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_PROVIDER_STATUS_MAP: dict[str, SessionStatus] = {
    ProviderStatus.NOT_STARTED.value.lower(): SessionStatus.PROCESSING,
    ProviderStatus.IN_PROGRESS.value.lower(): SessionStatus.PROCESSING,
    ProviderStatus.IN_REVIEW.value.lower(): SessionStatus.PROCESSING,
    ProviderStatus.APPROVED.value.lower(): SessionStatus.COMPLETED,
    ProviderStatus.DECLINED.value.lower(): SessionStatus.COMPLETED,
    ProviderStatus.ABANDONED.value.lower(): SessionStatus.FAILED,
    ProviderStatus.EXPIRED.value.lower(): SessionStatus.EXPIRED,
}

_ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.IDLE: frozenset({SessionStatus.CREATED, SessionStatus.FAILED}),
    SessionStatus.CREATED: frozenset(
        {SessionStatus.LISTENING, SessionStatus.FAILED, SessionStatus.EXPIRED}
    ),
    SessionStatus.LISTENING: frozenset(
        {
            SessionStatus.PROCESSING,
            SessionStatus.COMPLETED,
            SessionStatus.FAILED,
            SessionStatus.EXPIRED,
        }
    ),
    SessionStatus.PROCESSING: frozenset(
        {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.EXPIRED}
    ),
}


def map_provider_status(status: str | None) -> SessionStatus | None:
    """Statut interne correspondant au statut fournisseur, None si inconnu."""
    if not status:
        return None
    return _PROVIDER_STATUS_MAP.get(status.replace("_", " ").strip().lower())


def _check_status(check: ProviderCheck | None) -> str:
    return (check.status or "").strip().lower() if check else ""


def compute_decision(decision: ProviderDecision, decided_at: datetime) -> VerificationDecision:
    """
    Construit la décision terminale à partir des sous-vérifications.

    - document: id_verification "Approved"
    - identité: face_match "match"
    - preuve de vie: liveness "live"
    - AML: "clear", ou aucun résultat sur les listes de surveillance
    """
    aml = decision.aml
    aml_cleared = aml is not None and (_check_status(aml) == "clear" or aml.total_hits == 0)

    return VerificationDecision(
        session_id=decision.session_id,
        provider_status=decision.status,
        document_verified=_check_status(decision.id_verification) == "approved",
        identity_verified=_check_status(decision.face_match) == "match",
        liveness_verified=_check_status(decision.liveness) == "live",
        aml_cleared=aml_cleared,
        reviews=list(decision.reviews),
        decided_at=decided_at,
    )


@dataclass
class _TrackedSession:
    """Enregistrement de suivi d'une session active."""

    session: VerificationSession
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    timer: asyncio.Task | None = None
    poll_in_flight: bool = False


class VerificationSessionManager:
    """
    Propriétaire unique des sessions de vérification biométrique.

    Example:
        ```python
        manager = VerificationSessionManager(DiditClient())
        session = await manager.start_session("professional-42")
        # rediriger l'utilisateur vers session.session_url
        ...
        await manager.close()
        ```
    """

    def __init__(
        self,
        client: DiditClient,
        poll_interval: float | None = None,
        session_max_age: float | None = None,
        max_poll_failures: int | None = None,
        archive_size: int | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialise le gestionnaire.

        Args:
            client: Client du fournisseur biométrique
            poll_interval: Intervalle de polling en secondes
            session_max_age: Durée de vie locale d'une session en secondes
            max_poll_failures: Échecs transitoires consécutifs avant état failed
            archive_size: Nombre de sessions terminées conservées en lecture
            clock: Horloge injectable (tests)
        """
        self._client = client
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.SESSION_POLL_INTERVAL_SECONDS
        )
        self._session_max_age = timedelta(
            seconds=session_max_age
            if session_max_age is not None
            else settings.SESSION_MAX_AGE_SECONDS
        )
        self._max_poll_failures = max_poll_failures or settings.SESSION_MAX_POLL_FAILURES
        self._archive_size = archive_size or settings.SESSION_ARCHIVE_SIZE
        self._clock = clock or (lambda: datetime.now(UTC))
        self._active: dict[str, _TrackedSession] = {}
        self._archive: OrderedDict[str, VerificationSession] = OrderedDict()

    # ========================================================================
    # Démarrage / arrêt
    # ========================================================================

    async def start_session(
        self,
        subject_id: str,
        expected_details: ExpectedDetails | None = None,
        callback_url: str | None = None,
        metadata: dict[str, Any] | None = None,
        start_polling: bool = True,
    ) -> VerificationSession:
        """
        Crée une session chez le fournisseur et commence à l'écouter.

        Args:
            subject_id: Identifiant du sujet (transmis comme vendor_data)
            expected_details: Données déclarées pour recoupement
            callback_url: URL de webhook spécifique
            metadata: Métadonnées libres
            start_polling: Démarre le timer de polling

        Returns:
            Instantané de la session (état listening) avec son URL de redirection

        Raises:
            DiditError: Si le fournisseur refuse ou est injoignable
        """
        with tracer.start_as_current_span("start_verification_session") as span:
            span.set_attribute("session.subject_id", subject_id)
            try:
                created = await self._client.create_session(
                    vendor_data=subject_id,
                    expected_details=expected_details,
                    callback_url=callback_url,
                    metadata=metadata,
                )
            except DiditError as e:
                span.record_exception(e)
                span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                logger.error(f"Création de session impossible pour {subject_id}: {e}")
                raise

            now = self._clock()
            tracked = _TrackedSession(
                session=VerificationSession(
                    session_id=created.session_id,
                    subject_id=subject_id,
                    provider_status=created.status,
                    session_url=created.session_url,
                    created_at=now,
                    expires_at=now + self._session_max_age,
                    features=list(created.features),
                )
            )
            self._active[created.session_id] = tracked
            self._transition(tracked, SessionStatus.CREATED)
            self._transition(tracked, SessionStatus.LISTENING)

            if start_polling:
                self._start_timer(tracked)

            span.set_attribute("session.id", created.session_id)
            logger.info(f"Session de vérification {created.session_id} créée pour {subject_id}")
            return tracked.session.model_copy(deep=True)

    async def stop_session(
        self, session_id: str, cancel_remote: bool = False
    ) -> VerificationSession | None:
        """
        Arrête explicitement une session (navigation quittée, annulation).

        Le timer est annulé et la session quitte le suivi actif; une session
        non terminale passe en failed avec la raison "cancelled".

        Returns:
            Instantané final, ou None si la session est inconnue
        """
        tracked = self._active.get(session_id)
        if tracked is None:
            archived = self._archive.get(session_id)
            return archived.model_copy(deep=True) if archived else None

        await self._finish(tracked, SessionStatus.FAILED, "cancelled")

        if cancel_remote:
            try:
                await self._client.cancel_session(session_id)
            except DiditError as e:
                logger.warning(f"Annulation distante de la session {session_id} échouée: {e}")

        return self.get_session(session_id)

    async def close(self) -> None:
        """Annule tous les timers et vide le suivi actif."""
        timers = [t.timer for t in self._active.values() if t.timer and not t.timer.done()]
        for timer in timers:
            timer.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._active.clear()
        logger.info(f"Gestionnaire de sessions arrêté ({len(timers)} timer(s) annulé(s))")

    # ========================================================================
    # Polling
    # ========================================================================

    def _start_timer(self, tracked: _TrackedSession) -> None:
        if tracked.timer is not None and not tracked.timer.done():
            return
        session_id = tracked.session.session_id
        tracked.timer = asyncio.create_task(
            self._poll_loop(session_id), name=f"verification-poll-{session_id}"
        )

    async def _poll_loop(self, session_id: str) -> None:
        while True:
            await asyncio.sleep(self._poll_interval)
            try:
                session = await self.poll_once(session_id)
            except Exception as e:
                logger.error(f"Erreur inattendue de polling ({session_id}): {e}", exc_info=True)
                tracked = self._active.get(session_id)
                if tracked is not None:
                    await self._finish(tracked, SessionStatus.FAILED, f"polling error: {e}")
                return
            if session is None or session.status.is_terminal:
                return

    async def poll_once(self, session_id: str) -> VerificationSession | None:
        """
        Effectue un tick de polling pour une session.

        Vérifie d'abord l'expiration locale, puis interroge le fournisseur si
        aucune requête n'est déjà en vol pour cette session.

        Returns:
            Instantané de la session après le tick, ou None si inconnue
        """
        tracked = self._active.get(session_id)
        if tracked is None:
            return self.get_session(session_id)

        session = tracked.session
        if session.status.is_terminal:
            return session.model_copy(deep=True)

        now = self._clock()
        if now >= session.expires_at:
            await self._finish(tracked, SessionStatus.EXPIRED, "session max age reached")
            return self.get_session(session_id)

        if tracked.poll_in_flight:
            logger.debug(f"Polling déjà en cours pour {session_id}, tick ignoré")
            return session.model_copy(deep=True)

        tracked.poll_in_flight = True
        try:
            async with tracked.lock:
                session.last_polled_at = now
                session.poll_count += 1

            with tracer.start_as_current_span("poll_verification_session") as span:
                span.set_attribute("session.id", session_id)
                span.set_attribute("session.poll_count", session.poll_count)
                try:
                    decision = await self._client.get_decision(session_id)
                except DiditSessionNotFoundError:
                    span.add_event("Session not found, expiring")
                    await self._finish(tracked, SessionStatus.EXPIRED, "session not found")
                    return self.get_session(session_id)
                except (DiditConnectionError, DiditServerError) as e:
                    span.record_exception(e)
                    return await self._record_transient_failure(tracked, e)
                except (DiditResponseError, DiditOperationError) as e:
                    span.record_exception(e)
                    span.set_status(trace.Status(trace.StatusCode.ERROR, e.message))
                    await self._finish(tracked, SessionStatus.FAILED, e.message)
                    return self.get_session(session_id)
        finally:
            tracked.poll_in_flight = False

        return await self.apply_status_event(session_id, decision, source="poll")

    async def _record_transient_failure(
        self, tracked: _TrackedSession, error: DiditError
    ) -> VerificationSession | None:
        session_id = tracked.session.session_id
        async with tracked.lock:
            tracked.session.consecutive_failures += 1
            failures = tracked.session.consecutive_failures

        logger.warning(
            f"Polling {session_id} en échec ({failures}/{self._max_poll_failures}): {error}"
        )
        if failures >= self._max_poll_failures:
            await self._finish(
                tracked, SessionStatus.FAILED, f"provider unavailable: {error.message}"
            )
        return self.get_session(session_id)

    # ========================================================================
    # Transitions
    # ========================================================================

    async def apply_status_event(
        self, session_id: str, decision: ProviderDecision, source: str = "webhook"
    ) -> VerificationSession | None:
        """
        Applique un événement de statut (polling ou webhook) à une session.

        Idempotent: un événement reçu pour une session terminale ou archivée
        ne modifie ni l'état ni le score.

        Args:
            session_id: Identifiant de la session
            decision: Décision (complète ou réduite au statut) du fournisseur
            source: "poll" ou "webhook"

        Returns:
            Instantané de la session, ou None si elle est inconnue
        """
        tracked = self._active.get(session_id)
        if tracked is None:
            archived = self._archive.get(session_id)
            if archived is not None:
                logger.info(
                    f"Événement {source} ignoré: session {session_id} "
                    f"déjà {archived.status.value}"
                )
                return archived.model_copy(deep=True)
            logger.warning(f"Événement {source} pour une session inconnue: {session_id}")
            return None

        with tracer.start_as_current_span("apply_session_status_event") as span:
            span.set_attribute("session.id", session_id)
            span.set_attribute("session.event_source", source)
            span.set_attribute("session.provider_status", decision.status)

            async with tracked.lock:
                session = tracked.session
                if session.status.is_terminal:
                    span.add_event("Event ignored: terminal session")
                    logger.info(
                        f"Événement {source} ignoré: session {session_id} déjà "
                        f"{session.status.value}"
                    )
                    return session.model_copy(deep=True)

                target = map_provider_status(decision.status)
                if source == "poll":
                    session.consecutive_failures = 0

                if self._clock() >= session.expires_at:
                    # Échéance locale dépassée: l'événement tardif ne peut plus conclure
                    span.add_event("Event after local deadline, expiring")
                    self._transition(tracked, SessionStatus.EXPIRED, "session max age reached")
                elif target is None:
                    self._transition(
                        tracked, SessionStatus.FAILED, f"unknown provider status: {decision.status}"
                    )
                else:
                    session.provider_status = decision.status
                    if target == SessionStatus.COMPLETED:
                        session.decision = compute_decision(decision, self._clock())
                        span.set_attribute("session.score", session.decision.score)
                    self._transition(
                        tracked,
                        target,
                        None if target != SessionStatus.FAILED else decision.status.lower(),
                    )

                terminal = session.status.is_terminal
                snapshot = session.model_copy(deep=True)

            if terminal:
                self._release(tracked)
            return snapshot

    def _transition(
        self, tracked: _TrackedSession, target: SessionStatus, reason: str | None = None
    ) -> bool:
        """Applique une transition autorisée; l'appelant détient le verrou si nécessaire."""
        session = tracked.session
        current = session.status
        if current == target:
            return False
        if target not in _ALLOWED_TRANSITIONS.get(current, frozenset()):
            logger.warning(
                f"Transition refusée pour {session.session_id}: {current.value} → {target.value}"
            )
            return False

        session.status = target
        if reason:
            session.failure_reason = reason
        logger.info(f"Session {session.session_id}: {current.value} → {target.value}")
        return True

    async def _finish(
        self, tracked: _TrackedSession, target: SessionStatus, reason: str
    ) -> None:
        async with tracked.lock:
            if tracked.session.status.is_terminal:
                return
            self._transition(tracked, target, reason)
        self._release(tracked)

    def _release(self, tracked: _TrackedSession) -> None:
        """Annule le timer et déplace la session vers l'archive."""
        timer = tracked.timer
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()
        tracked.timer = None

        session_id = tracked.session.session_id
        if self._active.get(session_id) is tracked:
            del self._active[session_id]
        self._archive[session_id] = tracked.session
        self._archive.move_to_end(session_id)
        while len(self._archive) > self._archive_size:
            self._archive.popitem(last=False)

    # ========================================================================
    # Lecture
    # ========================================================================

    def get_session(self, session_id: str) -> VerificationSession | None:
        """Instantané d'une session active ou archivée."""
        tracked = self._active.get(session_id)
        if tracked is not None:
            return tracked.session.model_copy(deep=True)
        archived = self._archive.get(session_id)
        return archived.model_copy(deep=True) if archived else None

    def get_decision(self, session_id: str) -> VerificationDecision | None:
        """Décision terminale d'une session, si elle existe."""
        session = self.get_session(session_id)
        return session.decision if session else None

    def is_polling(self, session_id: str) -> bool:
        """True si un timer de polling est actif pour la session."""
        tracked = self._active.get(session_id)
        return bool(tracked and tracked.timer and not tracked.timer.done())

    def stats(self) -> dict[str, Any]:
        """Statistiques pour le health check."""
        by_status: dict[str, int] = {}
        for tracked in self._active.values():
            key = tracked.session.status.value
            by_status[key] = by_status.get(key, 0) + 1
        return {
            "active_sessions": len(self._active),
            "archived_sessions": len(self._archive),
            "polling_timers": sum(1 for sid in self._active if self.is_polling(sid)),
            "by_status": by_status,
        }
