from opentelemetry.instrumentation import auto_instrumentation

auto_instrumentation.initialize()

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi_errors_rfc9457 import RFC9457Config, setup_rfc9457_handlers

from app.api.v1 import api as api_v1
from app.core.config import settings
from app.infrastructure.didit.client import DiditClient
from app.infrastructure.registry.browser_pool import BrowserPagePool
from app.infrastructure.registry.sacs_searcher import PlaywrightRegistrySearcher
from app.services.credential_verification import CredentialVerificationOrchestrator
from app.services.license_registry import LicenseRegistryLookup
from app.services.verification_sessions import VerificationSessionManager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Gère le cycle de vie de l'application:
    - Crée le pool de pages du registre (navigateur lancé au premier emprunt).
    - Compose la recherche registre et l'orchestrateur de vérification.
    - Crée le client du fournisseur biométrique et le gestionnaire de sessions.
    - Arrête proprement les timers, le client HTTP et le navigateur.
    """
    logger.info(
        f"=== Application Startup: {settings.OTEL_SERVICE_NAME} "
        f"({settings.ENVIRONMENT}, OTLP: {settings.OTEL_EXPORTER_OTLP_ENDPOINT or 'disabled'}) ==="
    )

    # 1. Registre professionnel (Playwright)
    browser_pool = BrowserPagePool()
    searcher = PlaywrightRegistrySearcher(browser_pool)
    app.state.browser_pool = browser_pool
    app.state.credential_orchestrator = CredentialVerificationOrchestrator(
        LicenseRegistryLookup(searcher)
    )
    logger.info(f"Pool de pages du registre prêt (taille {browser_pool.size})")

    # 2. Fournisseur biométrique et sessions
    didit_client = DiditClient()
    app.state.didit_client = didit_client
    app.state.session_manager = VerificationSessionManager(didit_client)
    logger.info(f"Client Didit initialisé: {didit_client.base_url}")

    logger.info("=== Application Startup Complete ===")
    try:
        yield
    finally:
        logger.info("=== Application Shutdown ===")
        await app.state.session_manager.close()
        await didit_client.close()
        logger.info("Client Didit fermé")
        await browser_pool.close()
        logger.info("=== Application Shutdown Complete ===")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description=settings.DESCRIPTION,
    lifespan=lifespan,
    openapi_url=f"{settings.get_api_prefix()}/openapi.json",
    docs_url="/docs",
    redoc_url="/redoc",
)

# Exception handlers RFC 9457 Problem Details
config_rfc9457 = RFC9457Config(
    base_url="about:blank",  # Auto-detect request domain
    include_trace_id=True,  # Include OpenTelemetry trace_id
    expose_internal_errors=settings.DEBUG,  # Show detailed errors in dev
    include_error_pages=False,
)
setup_rfc9457_handlers(app, config=config_rfc9457)

# Middleware CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(origin) for origin in settings.ALLOWED_ORIGINS],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Middleware Trusted Hosts
if settings.ENVIRONMENT != "development":
    app.add_middleware(
        TrustedHostMiddleware,
        allowed_hosts=settings.TRUSTED_HOSTS,
    )

# Include API v1 (current version)
app.include_router(api_v1.router, prefix=settings.get_api_prefix("v1"))
