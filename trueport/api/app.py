"""
FastAPI application for the TruePort platform.

This is the HTTP API the web client talks to. Run it with:

    uvicorn trueport.api.app:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from trueport.auth.routes import oauth_router
from trueport.auth.routes import router as auth_router
from trueport.auth.users import UserDirectory
from trueport.config import get_settings
from trueport.core.events import EventBus
from trueport.integrations.email import EmailService
from trueport.integrations.oauth import OAuthManager
from trueport.integrations.sentry import init_sentry
from trueport.services.notification import NotificationService
from trueport.storage import StorageProvider, create_local_storage
from trueport.workflows.association import AssociationWorkflow
from trueport.workflows.claims import ClaimStore
from trueport.workflows.routes import routers as workflow_routers
from trueport.workflows.verification import VerificationWorkflow

logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan
# =============================================================================


def init_state(app: FastAPI, storage: StorageProvider | None = None) -> None:
    """Wire storage, directory, workflows and subscribers onto app.state."""
    settings = get_settings()
    state = app.state

    state.storage = storage or create_local_storage()
    state.users = UserDirectory(state.storage.metadata)
    state.claims = ClaimStore(state.storage.metadata)
    state.event_bus = EventBus()
    state.oauth = OAuthManager(state.storage.cache)

    state.verification = VerificationWorkflow(
        state.storage, state.users, state.event_bus, claims=state.claims, settings=settings
    )
    state.association = AssociationWorkflow(state.storage, state.users, state.event_bus)

    state.notifications = NotificationService(
        state.storage.metadata, state.users, EmailService(settings)
    )
    state.notifications.register(state.event_bus)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup app resources."""
    settings = get_settings()

    if init_sentry():
        logger.info("Sentry error tracking enabled")

    # Tests may wire their own state before startup
    if not hasattr(app.state, "storage"):
        init_state(app)

    logger.info(f"TruePort API starting in {settings.environment} mode")

    yield

    logger.info("TruePort API shutting down")


# =============================================================================
# App Setup
# =============================================================================


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title="TruePort API",
        description="Verified portfolios: claims, verifiers and institutions",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Credentials are required for the HTTP-only session cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)
    app.include_router(oauth_router)
    for router in workflow_routers:
        app.include_router(router)

    @app.get("/health")
    async def health():
        return {"status": "healthy", "environment": settings.environment}

    return app


app = create_app()
