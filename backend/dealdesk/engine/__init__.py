"""Deal negotiation engine (client side)."""

from .state_machine import apply_command, can_transition, validate_terms
from .store import DealStore
from .http_store import HTTPDealStore
from .reconciliation import DealReconciler, LocalDealView, SupersededProposal, reconcile
from .notifications import MarkAllSeenResult, NotificationTracker
from .cleanup import CleanupCoordinator, CleanupReport, LocalListingView
from .client import NegotiationClient

__all__ = [
    "apply_command",
    "can_transition",
    "validate_terms",
    "DealStore",
    "HTTPDealStore",
    "DealReconciler",
    "LocalDealView",
    "SupersededProposal",
    "reconcile",
    "MarkAllSeenResult",
    "NotificationTracker",
    "CleanupCoordinator",
    "CleanupReport",
    "LocalListingView",
    "NegotiationClient",
]
