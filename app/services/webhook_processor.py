"""
Processeur des webhooks du fournisseur de vérification biométrique.

Le webhook est un second déclencheur de la même transition que le polling:
il est livré au moins une fois, éventuellement dans le désordre, et route
vers ``VerificationSessionManager.apply_status_event``.

Types supportés:
    - status.updated: changement de statut global de la session
    - data.updated: mise à jour des données de décision (revue manuelle, etc.)
"""

import logging

from opentelemetry import trace

from app.infrastructure.didit.client import DiditClient
from app.infrastructure.didit.exceptions import DiditError
from app.schemas.identity import (
    DiditWebhookPayload,
    ProviderDecision,
    SessionStatus,
    WebhookProcessingResult,
)
from app.services.verification_sessions import VerificationSessionManager, map_provider_status

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

SUPPORTED_WEBHOOK_TYPES = frozenset({"status.updated", "data.updated"})


async def _resolve_decision(
    payload: DiditWebhookPayload, client: DiditClient | None
) -> ProviderDecision | None:
    """
    Décision à appliquer pour un webhook.

    Un statut terminal "completed" sans corps de décision exige la décision
    complète (sinon le score serait calculé sur des sous-vérifications vides).
    Retourne None si elle ne peut pas être obtenue.
    """
    if payload.decision is not None:
        return payload.decision

    if map_provider_status(payload.status) != SessionStatus.COMPLETED:
        return payload.to_provider_decision()

    if client is None:
        logger.warning(
            f"Statut {payload.status} sans décision pour {payload.session_id}, "
            f"aucun client pour la récupérer"
        )
        return None

    try:
        return await client.get_decision(payload.session_id)
    except DiditError as e:
        logger.warning(f"Récupération de la décision {payload.session_id} échouée: {e}")
        return None


async def route_webhook_event(
    manager: VerificationSessionManager,
    payload: DiditWebhookPayload,
    client: DiditClient | None = None,
) -> WebhookProcessingResult:
    """
    Route un webhook vers le gestionnaire de sessions.

    Args:
        manager: Gestionnaire propriétaire des sessions
        payload: Webhook désérialisé
        client: Client fournisseur, pour récupérer une décision absente

    Returns:
        WebhookProcessingResult; ``applied`` indique un changement d'état

    Example:
        >>> result = await route_webhook_event(manager, payload, client)
        >>> result.status
        <SessionStatus.COMPLETED: 'completed'>
    """
    with tracer.start_as_current_span("route_webhook_event") as span:
        span.set_attribute("webhook.type", payload.webhook_type)
        span.set_attribute("webhook.session_id", payload.session_id)
        span.set_attribute("webhook.status", payload.status)

        def result(applied: bool, status: SessionStatus | None, message: str):
            return WebhookProcessingResult(
                session_id=payload.session_id,
                webhook_type=payload.webhook_type,
                applied=applied,
                status=status,
                message=message,
            )

        if payload.webhook_type not in SUPPORTED_WEBHOOK_TYPES:
            span.set_status(trace.Status(trace.StatusCode.ERROR, "unsupported webhook type"))
            return result(False, None, f"Unsupported webhook type: {payload.webhook_type}")

        before = manager.get_session(payload.session_id)
        if before is None:
            logger.warning(f"Webhook pour une session inconnue: {payload.session_id}")
            span.add_event("Unknown session")
            return result(False, None, "Unknown session")

        if before.status.is_terminal:
            logger.info(
                f"Webhook {payload.webhook_type} ignoré: session {payload.session_id} "
                f"déjà {before.status.value}"
            )
            return result(False, before.status, f"Session already {before.status.value}")

        if payload.webhook_type == "data.updated" and payload.decision is None:
            return result(False, before.status, "No decision data in update")

        decision = await _resolve_decision(payload, client)
        if decision is None:
            span.add_event("Decision unavailable, waiting for polling")
            return result(False, before.status, "Decision unavailable, awaiting polling")

        after = await manager.apply_status_event(payload.session_id, decision, source="webhook")
        if after is None:
            return result(False, None, "Unknown session")

        applied = after.status != before.status or after.provider_status != before.provider_status
        span.set_attribute("session.status", after.status.value)
        logger.info(
            f"Webhook {payload.webhook_type} appliqué: session={payload.session_id}, "
            f"{before.status.value} → {after.status.value}"
        )
        return result(applied, after.status, f"Session {after.status.value}")
