"""
main.py — Bharat-ID Entry Point
================================
This is the file you run to start the entire system.
It does 4 things in order:
    1. Creates the FastAPI app
    2. Connects the DID registry backend
    3. Loads the issuer signing key and publishes the issuer DID
       (and warns about service scopes left without an API key)
    4. Registers all API route modules

Run with:
    uvicorn main:app --reload --host 0.0.0.0 --port 8000

Or simply:
    python main.py
"""

import logging
import uvicorn
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware

from config import settings

# ── Core systems ──────────────────────────────────────────────────────────────
from core.registry import registry              # DID registry + revocation list
from core.crypto import crypto_engine           # issuer key + session tokens
from core.identity import short_did
from modules.credentials import register_issuer_did

# ── API Routers (one per area) ────────────────────────────────────────────────
from api.errors import register_exception_handlers
from api.routes_enrollment import router as enrollment_router
from api.routes_did import router as did_router
from api.routes_credentials import router as credentials_router
from api.routes_consent import router as consent_router
from api.routes_verify import router as verify_router
from api.routes_auth import router as auth_router


# ── Logging setup ─────────────────────────────────────────────────────────────
_handlers = [logging.StreamHandler()]                    # print to terminal
if settings.LOG_FILE:
    _handlers.append(logging.FileHandler(settings.LOG_FILE))   # also save to file

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    handlers=_handlers,
)
logger = logging.getLogger("bharatid.main")


# ── Lifespan: runs on startup and shutdown ────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Everything BEFORE yield → runs on startup.
    Everything AFTER yield  → runs on shutdown.
    """

    # ── STARTUP ──────────────────────────────────────────────────────────
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")

    # 1. Connect the DID registry
    logger.info(f"Connecting to DID registry ({settings.REGISTRY_BACKEND})...")
    await registry.connect()
    logger.info("✓ Registry ready")

    # 2. Load the issuer signing key
    logger.info("Initializing crypto engine...")
    crypto_engine.initialize()
    logger.info("✓ Crypto engine ready")

    # 3. Publish the issuer DID so credentials can be verified
    issuer_did = await register_issuer_did()
    logger.info(f"✓ Issuer DID: {short_did(issuer_did)}")

    # 4. Service scopes need an API key to be obtainable
    for key_name in ("ISSUER_API_KEY", "ADMIN_API_KEY"):
        if not getattr(settings, key_name):
            logger.warning(f"{key_name} is not set; /auth/token will refuse that scope")

    logger.info("=" * 50)
    logger.info(f"  {settings.APP_NAME} is LIVE on port {settings.PORT}")
    logger.info("=" * 50)

    yield   # ← App runs here (handles all requests)

    # ── SHUTDOWN ──────────────────────────────────────────────────────────
    logger.info("Shutting down — closing connections...")
    await registry.disconnect()
    logger.info("✓ Shutdown complete")


# ── Create the FastAPI app ────────────────────────────────────────────────────
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Decentralized identity: device-bound DIDs and verifiable credentials",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Only accept requests from known hosts in production
if settings.ENVIRONMENT == "production":
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)


# ── Errors → {code, message} ──────────────────────────────────────────────────
register_exception_handlers(app)


# ── Register all routers ──────────────────────────────────────────────────────
app.include_router(enrollment_router,  prefix="/enrollment",  tags=["Enrollment"])
app.include_router(did_router,         prefix="/did",         tags=["DID Registry"])
app.include_router(credentials_router, prefix="/credentials", tags=["Credentials"])
app.include_router(consent_router,     prefix="/consent",     tags=["Consent"])
app.include_router(verify_router,      prefix="/verify",      tags=["Verification"])
app.include_router(auth_router,        prefix="/auth",        tags=["Auth"])


# ── Root endpoint ─────────────────────────────────────────────────────────────
@app.get("/", tags=["Status"])
async def root():
    """Confirms the API is running."""
    return {
        "system": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "operational",
        "registry": settings.REGISTRY_BACKEND,
        "docs": "/docs",
    }


@app.get("/health-check", tags=["Status"])
async def health_check():
    """Deep health check — confirms the registry and crypto engine are ready."""
    return {
        "api": "ok",
        "registry": await registry.ping(),
        "crypto": crypto_engine.is_ready(),
    }


# ── Run directly ──────────────────────────────────────────────────────────────
if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
