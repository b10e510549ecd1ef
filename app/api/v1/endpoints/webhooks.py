"""Endpoint webhook pour les décisions du fournisseur biométrique.

Ce module expose l'endpoint qui reçoit les callbacks Didit et les applique
directement au gestionnaire de sessions.

Garanties:
    - Signature HMAC-SHA256 vérifiée avant toute lecture du payload
    - Livraison au moins une fois: le traitement est idempotent
    - Réponse 200 même pour une session inconnue ou déjà terminée,
      pour que le fournisseur cesse de relivrer l'événement
"""

import logging
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Body, Depends, status
from fastapi_errors_rfc9457 import create_responses
from opentelemetry import trace

from app.core.dependencies import get_didit_client, get_session_manager
from app.core.webhook_security import verify_webhook_request
from app.infrastructure.didit.client import DiditClient
from app.schemas.identity import (
    DiditWebhookPayload,
    WebhookHealthCheck,
    WebhookProcessingResult,
    WebhookSignature,
)
from app.services.verification_sessions import VerificationSessionManager
from app.services.webhook_processor import route_webhook_event

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

router = APIRouter()

# Stats pour health check (en mémoire, réinitialisées au redémarrage)
webhook_stats = {
    "last_event_received": None,
    "total_events_received": 0,
    "total_events_applied": 0,
    "failed_events_count": 0,
}


@router.post(
    "/didit",
    response_model=WebhookProcessingResult,
    status_code=status.HTTP_200_OK,
    summary="Webhook Didit",
    description="Reçoit, authentifie et applique les changements de statut des sessions",
    responses={
        200: {"description": "Événement traité (appliqué ou ignoré de façon idempotente)"},
        **create_responses(),
    },
)
async def receive_didit_webhook(
    payload: Annotated[DiditWebhookPayload, Body()],
    signature: WebhookSignature = Depends(verify_webhook_request),
    manager: VerificationSessionManager = Depends(get_session_manager),
    client: DiditClient = Depends(get_didit_client),
) -> WebhookProcessingResult:
    """
    Endpoint webhook pour les événements Didit.

    Args:
        payload: Webhook validé par Pydantic
        signature: En-têtes de signature vérifiés
        manager: Gestionnaire de sessions
        client: Client fournisseur (récupération d'une décision absente)

    Returns:
        WebhookProcessingResult décrivant l'effet de l'événement
    """
    with tracer.start_as_current_span("receive_didit_webhook") as span:
        span.set_attribute("webhook.session_id", payload.session_id)
        span.set_attribute("webhook.type", payload.webhook_type)
        span.set_attribute("webhook.timestamp", signature.timestamp)

        logger.info(
            f"Webhook reçu: type={payload.webhook_type}, "
            f"session={payload.session_id}, status={payload.status}"
        )
        webhook_stats["last_event_received"] = datetime.now(UTC)
        webhook_stats["total_events_received"] += 1

        try:
            result = await route_webhook_event(manager, payload, client)
        except Exception as e:
            span.record_exception(e)
            span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
            webhook_stats["failed_events_count"] += 1
            logger.error(f"Erreur lors du traitement webhook: {e}", exc_info=True)
            raise

        if result.applied:
            webhook_stats["total_events_applied"] += 1
        span.set_attribute("webhook.applied", result.applied)
        return result


@router.get(
    "/didit/health",
    response_model=WebhookHealthCheck,
    summary="Health check du webhook",
    description="Vérifie l'état de santé du webhook endpoint et retourne des statistiques",
)
async def webhook_health_check() -> WebhookHealthCheck:
    """
    Health check du webhook endpoint.

    Returns:
        WebhookHealthCheck avec status et métriques
    """
    total = webhook_stats["total_events_received"]
    failed = webhook_stats["failed_events_count"]

    if total == 0:
        health_status = "healthy"  # Aucun événement encore
    elif failed / total < 0.1:
        health_status = "healthy"
    elif failed / total < 0.5:
        health_status = "degraded"
    else:
        health_status = "unhealthy"

    return WebhookHealthCheck(
        status=health_status,
        webhook_endpoint="/api/v1/webhooks/didit",
        last_event_received=webhook_stats["last_event_received"],
        total_events_processed=webhook_stats["total_events_applied"],
        failed_events_count=failed,
    )
