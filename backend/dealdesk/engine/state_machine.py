"""
Deal state machine.

WHAT: Pure transition logic for Accept / Reject / Counter / MarkSeen
WHY: Store service and clients must agree on exactly which writes are legal
HOW: Transition table over DealStatus; commands produce a new Deal or raise

    pending ── Accept ──► accepted   (terminal)
       │  └─── Reject ──► rejected   (terminal)
       └────── Counter ─► pending    (terms replaced, other party unseen)

MarkSeen is legal from every state and only touches the actor's seen flag.
"""

import math
from datetime import datetime
from typing import Optional

from ..models.deal import (
    Accept,
    ActorRole,
    Counter,
    Deal,
    DealCommand,
    DealStatus,
    MarkSeen,
    Reject,
    utc_now,
)
from ..utils.exceptions import PreconditionFailedError, ValidationFailedError

TRANSITIONS = {
    DealStatus.PENDING: {DealStatus.PENDING, DealStatus.ACCEPTED, DealStatus.REJECTED},
    DealStatus.ACCEPTED: set(),
    DealStatus.REJECTED: set(),
}


def can_transition(from_status: DealStatus, to_status: DealStatus) -> bool:
    return to_status in TRANSITIONS[from_status]


def require_participant(deal: Deal, actor_id: str) -> ActorRole:
    """Return the actor's role, or raise if the actor is not seller or buyer."""
    role = deal.role_of(actor_id)
    if role is None:
        raise PreconditionFailedError.not_participant(deal.id, actor_id)
    return role


def is_positive_amount(value) -> bool:
    """True for finite numbers above zero; NaN and infinities never qualify."""
    return value is not None and math.isfinite(value) and value > 0


def validate_terms(quantity: float, price: float) -> None:
    """Offered quantity and price must both be finite and strictly positive."""
    field_errors = []
    if not is_positive_amount(quantity):
        field_errors.append({"field": "quantity", "message": "must be a finite number greater than 0"})
    if not is_positive_amount(price):
        field_errors.append({"field": "price", "message": "must be a finite number greater than 0"})
    if field_errors:
        raise ValidationFailedError(
            message=f"Invalid offer terms: quantity={quantity}, price={price}",
            details={"field_errors": field_errors},
        )


def _fresh_timestamp(deal: Deal, now: Optional[datetime]) -> datetime:
    # updated_at never goes backwards, even with a skewed clock
    stamp = now or utc_now()
    return max(stamp, deal.updated_at)


def _transition(deal: Deal, actor_id: str, target: DealStatus, now: Optional[datetime]) -> Deal:
    require_participant(deal, actor_id)
    if not can_transition(deal.status, target):
        raise PreconditionFailedError.terminal(deal.id, deal.status.value)
    return deal.model_copy(update={"status": target, "updated_at": _fresh_timestamp(deal, now)})


def accept(deal: Deal, actor_id: str, now: Optional[datetime] = None) -> Deal:
    """Last proposed terms become the agreed terms; only status/timestamp change."""
    return _transition(deal, actor_id, DealStatus.ACCEPTED, now)


def reject(deal: Deal, actor_id: str, now: Optional[datetime] = None) -> Deal:
    return _transition(deal, actor_id, DealStatus.REJECTED, now)


def counter(
    deal: Deal,
    actor_id: str,
    quantity: float,
    price: float,
    now: Optional[datetime] = None,
) -> Deal:
    """
    Replace the offered terms and surface them to the other party.

    Preconditions are checked before terms, so a counter on a terminal deal
    reports PreconditionFailed even when the terms are also invalid.
    """
    role = require_participant(deal, actor_id)
    if not can_transition(deal.status, DealStatus.PENDING):
        raise PreconditionFailedError.terminal(deal.id, deal.status.value)
    validate_terms(quantity, price)

    update = {
        "offer_quantity": float(quantity),
        "offer_price": float(price),
        "updated_at": _fresh_timestamp(deal, now),
    }
    if role is ActorRole.BUYER:
        update["seller_seen"] = False
    else:
        update["buyer_seen"] = False
    return deal.model_copy(update=update)


def mark_seen(deal: Deal, actor_id: str) -> Deal:
    """Set the actor's own seen flag. Idempotent; never touches status, terms or updated_at."""
    role = require_participant(deal, actor_id)
    if deal.seen_by(role):
        return deal
    field = "seller_seen" if role is ActorRole.SELLER else "buyer_seen"
    return deal.model_copy(update={field: True})


def apply_command(deal: Deal, command: DealCommand, now: Optional[datetime] = None) -> Deal:
    """Dispatch a command object to its transition function."""
    if isinstance(command, Accept):
        return accept(deal, command.actor_id, now)
    if isinstance(command, Reject):
        return reject(deal, command.actor_id, now)
    if isinstance(command, Counter):
        return counter(deal, command.actor_id, command.quantity, command.price, now)
    if isinstance(command, MarkSeen):
        return mark_seen(deal, command.actor_id)
    raise TypeError(f"Unknown deal command: {command!r}")
