"""Module de sécurité pour la vérification des webhooks Didit.

Ce module implémente la vérification de signature HMAC-SHA256 pour
garantir l'authenticité et l'intégrité des événements webhook reçus.

Le fournisseur signe le corps brut de la requête (en-tête ``X-Signature``)
et horodate l'envoi (``X-Timestamp``, secondes Unix). La forme signée
``timestamp.body`` est également acceptée.
"""

import hashlib
import hmac
import logging
import time

from fastapi import HTTPException, Request

from app.core.config import settings
from app.schemas.identity import WebhookSignature, WebhookVerificationResponse

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Signature"
TIMESTAMP_HEADER = "X-Timestamp"


def compute_signature(payload: bytes, secret: str, timestamp: str | None = None) -> str:
    """
    Calcule la signature HMAC-SHA256 d'un payload webhook.

    Args:
        payload: Corps brut de la requête webhook (bytes)
        secret: Secret partagé avec le fournisseur
        timestamp: Si fourni, le message signé est ``timestamp.payload``

    Returns:
        Signature hexadécimale (64 caractères)
    """
    signed_payload = payload if timestamp is None else f"{timestamp}.".encode() + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    signature: str,
    timestamp: str,
    secret: str | None = None,
    tolerance: int | None = None,
) -> WebhookVerificationResponse:
    """
    Vérifie la signature d'un webhook Didit.

    Args:
        payload: Corps brut de la requête webhook (bytes)
        signature: Signature fournie dans les headers (préfixe "sha256=" toléré)
        timestamp: Timestamp fourni dans les headers
        secret: Secret partagé (utilise settings.DIDIT_WEBHOOK_SECRET par défaut)
        tolerance: Tolérance timestamp en secondes (utilise settings par défaut)

    Returns:
        WebhookVerificationResponse avec verified=True si valide
    """
    secret = secret or settings.DIDIT_WEBHOOK_SECRET
    tolerance = tolerance or settings.WEBHOOK_SIGNATURE_TOLERANCE

    try:
        sent_at = int(timestamp)
    except ValueError:
        logger.warning(f"X-Timestamp non numérique: {timestamp!r}")
        return WebhookVerificationResponse(
            verified=False, reason=f"Timestamp invalide: {timestamp}"
        )

    # Fenêtre symétrique: rejette les rejeux anciens comme les horloges en avance
    skew = int(time.time()) - sent_at
    if skew > tolerance:
        logger.warning(f"Webhook rejeté, envoyé il y a {skew}s (tolérance {tolerance}s)")
        return WebhookVerificationResponse(verified=False, reason=f"Webhook expiré (>{tolerance}s)")
    if -skew > tolerance:
        logger.warning(f"Webhook rejeté, horodaté {-skew}s dans le futur")
        return WebhookVerificationResponse(verified=False, reason="Timestamp dans le futur")

    provided = signature.strip().lower().removeprefix("sha256=")
    body_only = compute_signature(payload, secret)
    timestamped = compute_signature(payload, secret, timestamp)
    # Les deux comparaisons sont toujours évaluées (temps constant)
    body_ok = hmac.compare_digest(provided, body_only)
    timestamped_ok = hmac.compare_digest(provided, timestamped)

    if not (body_ok or timestamped_ok):
        logger.warning(f"Signature webhook invalide (préfixe reçu {provided[:10]}...)")
        return WebhookVerificationResponse(verified=False, reason="Signature invalide")

    logger.debug("Signature webhook vérifiée")
    return WebhookVerificationResponse(verified=True, reason=None)


async def verify_webhook_request(request: Request) -> WebhookSignature:
    """
    Extrait et vérifie la signature d'une requête webhook FastAPI.

    Args:
        request: Objet Request FastAPI

    Returns:
        WebhookSignature avec signature et timestamp

    Raises:
        HTTPException: 400 si headers manquants, 401 si signature invalide
    """
    signature = request.headers.get(SIGNATURE_HEADER)
    timestamp = request.headers.get(TIMESTAMP_HEADER)

    if not signature:
        logger.error(f"Header {SIGNATURE_HEADER} manquant")
        raise HTTPException(status_code=400, detail=f"Missing {SIGNATURE_HEADER} header")

    if not timestamp:
        logger.error(f"Header {TIMESTAMP_HEADER} manquant")
        raise HTTPException(status_code=400, detail=f"Missing {TIMESTAMP_HEADER} header")

    body = await request.body()
    verification = verify_signature(payload=body, signature=signature, timestamp=timestamp)

    if not verification.verified:
        logger.error(f"Webhook signature invalide: {verification.reason}")
        raise HTTPException(
            status_code=401, detail=f"Invalid webhook signature: {verification.reason}"
        )

    return WebhookSignature(signature=signature, timestamp=timestamp)


def generate_test_signature(payload: str, secret: str | None = None) -> tuple[str, str]:
    """
    Génère une signature de test pour les tests unitaires.

    Args:
        payload: Corps du webhook (string JSON)
        secret: Secret à utiliser (défaut: settings.DIDIT_WEBHOOK_SECRET)

    Returns:
        Tuple (signature, timestamp)
    """
    secret = secret or settings.DIDIT_WEBHOOK_SECRET
    timestamp = str(int(time.time()))

    signature = compute_signature(payload.encode("utf-8"), secret)

    return signature, timestamp
