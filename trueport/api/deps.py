"""
FastAPI dependencies shared by every router.

Everything is created once in the app lifespan and hung off `app.state`;
these functions only hand it to route handlers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Request

if TYPE_CHECKING:
    from trueport.auth.users import UserDirectory
    from trueport.core.events import EventBus
    from trueport.integrations.oauth import OAuthManager
    from trueport.storage import StorageProvider
    from trueport.workflows.association import AssociationWorkflow
    from trueport.workflows.verification import VerificationWorkflow


def get_storage(request: Request) -> StorageProvider:
    return request.app.state.storage


def get_users(request: Request) -> UserDirectory:
    return request.app.state.users


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.event_bus


def get_oauth_manager(request: Request) -> OAuthManager:
    return request.app.state.oauth


def get_verification_workflow(request: Request) -> VerificationWorkflow:
    return request.app.state.verification


def get_association_workflow(request: Request) -> AssociationWorkflow:
    return request.app.state.association
