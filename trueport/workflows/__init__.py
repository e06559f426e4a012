"""
Approval workflows.

- engine: the shared PENDING -> APPROVED/REJECTED machinery and errors
- verification: a named verifier approves a claim via capability link
- association: a user joins an institute under a verifier's approval

The routers live in `trueport.workflows.routes` and are mounted by the app.
"""

from trueport.workflows.association import AssociationWorkflow
from trueport.workflows.claims import ClaimStore
from trueport.workflows.engine import (
    Actor,
    AlreadyResolvedError,
    ApprovalEngine,
    DuplicateRequestError,
    ForbiddenError,
    NoEligibleApproverError,
    NotOwnerError,
    RequestNotFoundError,
    WorkflowError,
)
from trueport.workflows.verification import VerificationWorkflow

__all__ = [
    "Actor",
    "ApprovalEngine",
    "AssociationWorkflow",
    "ClaimStore",
    "VerificationWorkflow",
    # Errors
    "WorkflowError",
    "AlreadyResolvedError",
    "DuplicateRequestError",
    "ForbiddenError",
    "NoEligibleApproverError",
    "NotOwnerError",
    "RequestNotFoundError",
]
