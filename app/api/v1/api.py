from fastapi import APIRouter
from fastapi_errors_rfc9457 import COMMON_RESPONSES

from app.api.v1 import health
from app.api.v1.endpoints import credentials, documents, identity_sessions, webhooks

# Router principal avec réponses RFC 9457 par défaut
router = APIRouter(responses=COMMON_RESPONSES)

router.include_router(health.router, tags=["health"])
router.include_router(documents.router, prefix="/documents", tags=["documents"])
router.include_router(credentials.router, prefix="/credentials", tags=["credentials"])
router.include_router(
    identity_sessions.router, prefix="/identity-sessions", tags=["identity-sessions"]
)
router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
