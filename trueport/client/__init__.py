"""
Headless client side of sign-in.

- exchange: Credential Exchange Client and its tagged results
- reconciler: Session Reconciler (the only session writer)
- router: Role Router and login surfaces
- guard: Access Guard
- messages: popup message channel with origin allowlist
- ports: window, opener and browser storage interfaces
"""

from trueport.client.exchange import (
    AuthFailure,
    CookieAuth,
    CredentialExchangeClient,
    TokenAuth,
)
from trueport.client.guard import AccessGuard, GuardStatus
from trueport.client.messages import AuthMessage, MessageChannel
from trueport.client.ports import (
    BrowserStore,
    InMemoryBrowserStore,
    InMemoryWindow,
    Opener,
    RecordingOpener,
    Window,
)
from trueport.client.reconciler import (
    CallbackSignals,
    ReconcileOutcome,
    ReconcileStatus,
    SessionReconciler,
)
from trueport.client.router import login_path, route
from trueport.client.session import Session, SessionStore
from trueport.client.workflow_client import WorkflowClient, WorkflowClientError

__all__ = [
    # Exchange
    "AuthFailure",
    "CookieAuth",
    "CredentialExchangeClient",
    "TokenAuth",
    # Session
    "Session",
    "SessionStore",
    "SessionReconciler",
    "CallbackSignals",
    "ReconcileOutcome",
    "ReconcileStatus",
    # Routing and guarding
    "route",
    "login_path",
    "AccessGuard",
    "GuardStatus",
    # Messaging
    "AuthMessage",
    "MessageChannel",
    # Ports
    "BrowserStore",
    "InMemoryBrowserStore",
    "InMemoryWindow",
    "Opener",
    "RecordingOpener",
    "Window",
    # Workflows
    "WorkflowClient",
    "WorkflowClientError",
]
