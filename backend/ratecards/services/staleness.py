"""
Card status state machine.

    active   -> stale      parent published a revision, or own rule set changed
    stale    -> active     successful derivation
    active   -> inactive   administrator
    stale    -> inactive   administrator
    inactive -> active     administrator

Setting a card to the state it already has is a no-op, which keeps the
publish fan-out safe to replay. Inactive cards are skipped by the fan-out.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet

from django.utils.timezone import now

from ..dataclasses import CardStatus, CardType, Violation
from ..models import RateCard
from .errors import PreconditionError
from .profit_rules import rule_set_digest
from .revision_store import get_latest_revision

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    CardStatus.ACTIVE: frozenset({CardStatus.STALE, CardStatus.INACTIVE}),
    CardStatus.STALE: frozenset({CardStatus.ACTIVE, CardStatus.INACTIVE}),
    CardStatus.INACTIVE: frozenset({CardStatus.ACTIVE}),
}


def can_transition(current: str, target: str) -> bool:
    if current == target:
        return True
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(card: RateCard, target: str) -> bool:
    """
    Move `card` to `target`. Returns True when the status actually changed.

    The update is conditional on the status the caller saw, so a concurrent
    change makes this a no-op rather than a lost update.
    """
    current = card.status
    if current == target:
        return False
    if not can_transition(current, target):
        raise PreconditionError(
            f"Card {card.code} cannot go from {current} to {target}",
            [Violation(None, "status", current, f"Transition {current} -> {target} is not allowed")],
        )
    if target == CardStatus.STALE and card.card_type != CardType.CUSTOMER:
        raise PreconditionError(
            f"Card {card.code} is a carrier card and cannot become stale",
            [Violation(None, "card_type", card.card_type, "Only customer cards are derived")],
        )
    ts = now()
    changed = RateCard.objects.filter(pk=card.pk, status=current).update(status=target, updated_at=ts)
    if changed:
        card.status = target
        card.updated_at = ts
        logger.info("Card %s: %s -> %s", card.code, current, target)
    return bool(changed)


def mark_dependents_stale(carrier: RateCard) -> int:
    """Fan-out after a carrier publish: every active dependent becomes stale."""
    count = (
        RateCard.objects
        .filter(parent_id=carrier.pk, card_type=CardType.CUSTOMER, status=CardStatus.ACTIVE)
        .update(status=CardStatus.STALE, updated_at=now())
    )
    logger.info("Carrier %s published; %d dependent card(s) marked stale", carrier.code, count)
    return count


def mark_stale(card: RateCard) -> bool:
    """Rule-set change on a customer card. Stale and inactive cards are left alone."""
    if card.status != CardStatus.ACTIVE:
        return False
    return transition(card, CardStatus.STALE)


def deactivate(card: RateCard) -> bool:
    return transition(card, CardStatus.INACTIVE)


def reactivate(card: RateCard) -> bool:
    """inactive -> active, then straight to stale if the card fell behind while disabled."""
    if card.status != CardStatus.INACTIVE:
        raise PreconditionError(
            f"Card {card.code} is not inactive",
            [Violation(None, "status", card.status, "Only inactive cards can be reactivated")],
        )
    transition(card, CardStatus.ACTIVE)
    if card.card_type == CardType.CUSTOMER and is_out_of_date(card):
        transition(card, CardStatus.STALE)
    return True


def is_out_of_date(card: RateCard) -> bool:
    """
    True when a customer card's latest revision was not built from its parent's
    latest revision and its current rules.
    """
    if card.card_type != CardType.CUSTOMER or card.parent_id is None:
        return False
    latest = get_latest_revision(card)
    if latest is None:
        return True
    parent_latest = get_latest_revision(card.parent)
    if parent_latest is None or latest.source_revision_id != parent_latest.pk:
        return True
    current_digest = rule_set_digest(r.to_data() for r in card.profit_rules.all())
    return latest.rule_set_digest != current_digest
