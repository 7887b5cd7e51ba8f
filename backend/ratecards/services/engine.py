"""
Rate card engine: the operations the admin and billing applications call.

Each public function takes a card id, works on one card (plus, for a carrier
publish, the status of its dependents) and either returns a value or raises a
RateEngineError subclass. Nothing here is process-fatal; a failure leaves the
card as it was.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple

from django.db import connection, transaction
from django.utils.timezone import now

from ..dataclasses import (
    CardSettings,
    CardStatus,
    CardStatusInfo,
    CardType,
    Direction,
    RateEntryData,
    RateTableSnapshot,
    RebuildReport,
    RevisionInfo,
    RevisionOrigin,
    ProfitRuleData,
    Violation,
)
from ..models import ProfitRule, RateCard, RateEntry, RateRevision
from . import revision_store, staleness
from .derivation import derive_entries
from .errors import (
    CardNotFound,
    ConcurrencyError,
    DependencyError,
    PreconditionError,
    RateEngineError,
    RateNotFound,
    ValidationError,
)
from .prefix_index import PrefixIndex
from .profit_rules import ProfitRuleSet, rule_set_digest, validate_rule_set
from .utils import engine_setting, normalize_number

logger = logging.getLogger(__name__)


def get_card(card_id) -> RateCard:
    card = RateCard.objects.select_related("parent").filter(pk=card_id).first()
    if card is None:
        raise CardNotFound(
            f"Rate card {card_id} does not exist",
            [Violation(None, "card_id", card_id, "No such card")],
        )
    return card


def _require_not_inactive(card: RateCard, action: str) -> None:
    if card.is_inactive:
        raise PreconditionError(
            f"Cannot {action} inactive card {card.code}",
            [Violation(None, "status", card.status, "Card is inactive")],
        )


def _require_type(card: RateCard, card_type: str, action: str) -> None:
    if card.card_type != card_type:
        raise PreconditionError(
            f"Cannot {action} {card.card_type} card {card.code}",
            [Violation(None, "card_type", card.card_type, f"Only {card_type} cards support this")],
        )


def _current_rules(card: RateCard) -> List[ProfitRuleData]:
    return [r.to_data() for r in ProfitRule.objects.filter(card_id=card.pk).order_by("position", "id")]


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

def create_card(
    code: str,
    card_type: str,
    *,
    name: str = "",
    currency: str = "USD",
    direction: str = Direction.TERMINATION,
    billing_precision: Optional[int] = None,
    parent_id: Optional[int] = None,
    tech_prefix: str = "",
    profit_assurance: bool = True,
) -> RateCard:
    """
    Create a rate card after checking every card-level invariant.

    A customer card with a parent starts out `stale`: it has no derived
    revision yet, so "rebuild stale cards" picks it up.
    """
    if billing_precision is None:
        billing_precision = engine_setting("DEFAULT_BILLING_PRECISION")
    card = RateCard(
        code=(code or "").strip(),
        name=name or "",
        card_type=card_type,
        currency=(currency or "").strip().upper(),
        direction=direction,
        billing_precision=billing_precision,
        tech_prefix=tech_prefix or "",
        profit_assurance=profit_assurance,
    )

    violations: List[Violation] = []
    if not card.code:
        violations.append(Violation(None, "code", code, "Code is required"))
    elif RateCard.objects.filter(code=card.code).exists():
        violations.append(Violation(None, "code", card.code, "A card with this code already exists"))
    if len(card.currency) != 3 or not card.currency.isalpha():
        violations.append(Violation(None, "currency", currency, "Currency must be a 3-letter code"))
    if direction not in (Direction.TERMINATION, Direction.ORIGINATION):
        violations.append(Violation(None, "direction", direction, "Direction must be termination or origination"))
    if parent_id is not None:
        parent = RateCard.objects.filter(pk=parent_id).first()
        if parent is None:
            violations.append(Violation(None, "parent", parent_id, "Parent card does not exist"))
        else:
            card.parent = parent
    violations.extend(card.card_violations())
    if violations:
        logger.warning("Rejected new card %r with %d problem(s)", code, len(violations))
        raise ValidationError("Invalid rate card", violations)

    if card.is_customer and card.parent_id is not None:
        card.status = CardStatus.STALE
    card.save()
    logger.info("Created %s card %s", card.card_type, card.code)
    return card


def get_card_status(card_id) -> CardStatusInfo:
    card = get_card(card_id)
    active = revision_store.get_active_revision(card)
    return CardStatusInfo(
        status=card.status,
        revision_count=card.revision_count,
        last_updated=card.updated_at,
        active_revision_no=active.revision_no if active else None,
    )


def deactivate_card(card_id) -> CardStatusInfo:
    card = get_card(card_id)
    staleness.deactivate(card)
    return get_card_status(card.pk)


def reactivate_card(card_id) -> CardStatusInfo:
    card = get_card(card_id)
    staleness.reactivate(card)
    return get_card_status(card.pk)


# ---------------------------------------------------------------------------
# Revisions
# ---------------------------------------------------------------------------

def publish_carrier_revision(card_id, entries: Sequence[RateEntryData], effective_at: Optional[datetime] = None) -> int:
    """
    Store a new carrier revision and mark every active dependent card stale.

    The revision and the fan-out commit together. With AUTO_REBUILD_ON_PUBLISH
    the dependents are re-derived right after; a dependent that fails to
    derive stays stale and is logged.
    """
    card = get_card(card_id)
    _require_type(card, CardType.CARRIER, "publish rates to")
    _require_not_inactive(card, "publish rates to")

    with transaction.atomic():
        revision = revision_store.create_revision(card, entries, effective_at, origin=RevisionOrigin.UPLOAD)
        marked = staleness.mark_dependents_stale(card)

    if marked and engine_setting("AUTO_REBUILD_ON_PUBLISH"):
        report = rebuild_stale_cards(parent_id=card.pk)
        if not report.ok:
            logger.warning("Auto rebuild after publish on %s left %d card(s) stale", card.code, len(report.failed))
    return revision.pk


def derive_customer_card(card_id) -> int:
    """
    Re-derive a customer card from its parent's latest revision and its current
    profit rules. Returns the new revision id; the card ends up `active`.

    Raises:
        PreconditionError: the card is inactive or not a customer card.
        DependencyError: no parent card, or the parent has no revision.
        ConfigurationError: the rule set is incomplete or ambiguous.
        ConcurrencyError: the parent or the rules changed during the run.
    """
    card = get_card(card_id)
    _require_type(card, CardType.CUSTOMER, "derive")
    _require_not_inactive(card, "derive")
    if card.parent_id is None:
        raise DependencyError(
            f"Card {card.code} has no parent card",
            [Violation(None, "parent", None, "A parent carrier card is required for derivation")],
        )
    parent = card.parent
    parent_rev = revision_store.get_latest_revision(parent)
    if parent_rev is None:
        raise DependencyError(
            f"Parent card {parent.code} has no revision to derive from",
            [Violation(None, "parent", parent.code, "Parent card has no published revision")],
        )

    rules = ProfitRuleSet(_current_rules(card))
    card_settings = CardSettings(billing_precision=card.billing_precision, profit_assurance=card.profit_assurance)
    result = derive_entries(revision_store.load_entries(parent_rev), rules, card_settings)
    digest = rules.digest()

    effective_at = parent_rev.effective_at if parent_rev.effective_at and parent_rev.effective_at > now() else None
    # A parent publish that lands after the lock fans out once we commit
    with transaction.atomic():
        locked = RateCard.objects.select_for_update().get(pk=card.pk)
        _require_not_inactive(locked, "derive")
        latest_parent = revision_store.get_latest_revision(parent)
        if latest_parent is None or latest_parent.pk != parent_rev.pk:
            raise ConcurrencyError(
                f"Parent card {parent.code} published while {card.code} was being derived",
                [Violation(None, "parent", parent.code, "Parent revision changed; derive again")],
            )
        if rule_set_digest(_current_rules(locked)) != digest:
            raise ConcurrencyError(
                f"Profit rules of {card.code} changed during derivation",
                [Violation(None, "profit_rules", card.code, "Rule set changed; derive again")],
            )
        revision = revision_store.create_revision(
            locked,
            result.rate_entries,
            effective_at,
            origin=RevisionOrigin.DERIVATION,
            source_revision=parent_rev,
            rule_set_digest=digest,
        )
        staleness.transition(locked, CardStatus.ACTIVE)

    logger.info(
        "Derived %s r%d from %s r%d: %d active, %d blocked",
        card.code, revision.revision_no, parent.code, parent_rev.revision_no,
        result.active_count, len(result.blocked_prefixes),
    )
    return revision.pk


def list_revisions(card_id) -> List[RevisionInfo]:
    return revision_store.list_revisions(get_card(card_id))


def describe_revision(revision_id) -> RevisionInfo:
    revision = RateRevision.objects.select_related("source_revision").get(pk=revision_id)
    return revision_store.revision_info(revision)


def get_revision_snapshot(card_id, revision_no: Optional[int] = None) -> RateTableSnapshot:
    """Entries of one revision; without a number, the revision in effect now."""
    card = get_card(card_id)
    if revision_no is None:
        revision = revision_store.get_active_revision(card)
    else:
        revision = revision_store.get_revision(card, revision_no)
    if revision is None:
        raise RateNotFound(
            f"Card {card.code} has no revision {revision_no if revision_no is not None else 'in effect'}",
            [Violation(None, "revision_no", revision_no, "No such revision")],
        )
    return revision_store.snapshot(revision)


def rollback(card_id, revision_no: int) -> int:
    """
    Re-publish the entries of an earlier revision as a new revision.

    History is never rewritten: the copy gets the next revision number and
    takes effect immediately.
    """
    card = get_card(card_id)
    _require_not_inactive(card, "roll back")
    target = revision_store.get_revision(card, revision_no)
    if target is None:
        raise ValidationError(
            f"Card {card.code} has no revision {revision_no}",
            [Violation(None, "revision_no", revision_no, "No such revision")],
        )

    with transaction.atomic():
        revision = revision_store.create_revision(
            card,
            revision_store.load_entries(target),
            None,
            origin=RevisionOrigin.ROLLBACK,
            source_revision=target.source_revision,
            rule_set_digest=target.rule_set_digest,
            rolled_back_from=target.revision_no,
        )
        if card.is_carrier:
            staleness.mark_dependents_stale(card)
        elif staleness.is_out_of_date(card):
            staleness.mark_stale(card)

    logger.info("Rolled back %s to r%d as r%d", card.code, target.revision_no, revision.revision_no)
    return revision.pk


# ---------------------------------------------------------------------------
# Profit rules
# ---------------------------------------------------------------------------

def replace_profit_rules(card_id, rules: Sequence[ProfitRuleData]) -> List[ProfitRule]:
    """
    Swap a customer card's whole rule set.

    The new set must validate as a whole; an empty set (all rules removed) is
    allowed, but such a card cannot be derived until rules are added. An active
    card with a parent becomes stale when the active rules actually changed.
    """
    card = get_card(card_id)
    _require_type(card, CardType.CUSTOMER, "set profit rules on")
    rules = list(rules)
    validate_rule_set(rules, allow_empty=True)
    new_digest = rule_set_digest(rules)

    with transaction.atomic():
        locked = RateCard.objects.select_for_update().get(pk=card.pk)
        old_digest = rule_set_digest(_current_rules(locked))
        ProfitRule.objects.filter(card_id=locked.pk).delete()
        created = ProfitRule.objects.bulk_create([
            ProfitRule(
                card=locked,
                position=i,
                match_prefix=r.match_prefix,
                profit_type=r.profit_type,
                profit_value=r.profit_value,
                apply_to=r.apply_to,
                status=r.status,
                bypass_assurance=r.bypass_assurance,
            )
            for i, r in enumerate(rules)
        ])
        # A card without a parent has nothing to be re-derived from
        if old_digest != new_digest and locked.parent_id is not None:
            staleness.mark_stale(locked)

    card.status = locked.status
    logger.info("Replaced profit rules on %s (%d rules)", card.code, len(created))
    return list(ProfitRule.objects.filter(card_id=card.pk).order_by("position", "id"))


# ---------------------------------------------------------------------------
# Rating
# ---------------------------------------------------------------------------

@lru_cache(maxsize=64)
def _revision_index(revision_id: int, created_at: datetime) -> Tuple[PrefixIndex, Dict[str, RateEntryData]]:
    # created_at is part of the key: ids can be reused after a rolled back transaction
    entries = {e.prefix: e.to_data() for e in RateEntry.objects.filter(revision_id=revision_id)}
    return PrefixIndex(entries.keys(), allow_empty=False), entries


def rate_lookup(card_id, number: str, at: Optional[datetime] = None) -> RateEntryData:
    """
    Price lookup for a dialed number against the revision in effect at `at`.

    A blocked match is not rated, and no shorter prefix is tried in its place.
    """
    card = get_card(card_id)
    _require_not_inactive(card, "rate calls on")
    digits = normalize_number(number)
    if not digits.isdigit():
        raise ValidationError(
            f"Not a dialable number: {number!r}",
            [Violation(None, "number", number, "Number must contain digits only")],
        )

    revision = revision_store.get_active_revision(card, at)
    if revision is None:
        raise RateNotFound(
            f"Card {card.code} has no revision in effect",
            [Violation(None, "revision", None, "No active revision")],
        )
    index, entries = _revision_index(revision.pk, revision.created_at)
    match = index.longest_match(digits)
    if match is None:
        raise RateNotFound(
            f"No rate for {digits} on {card.code} r{revision.revision_no}",
            [Violation(None, "number", digits, "No matching prefix")],
        )
    entry = entries[match]
    if entry.is_blocked:
        raise RateNotFound(
            f"Destination {match} is blocked on {card.code} r{revision.revision_no}",
            [Violation(None, "prefix", match, "Destination is blocked")],
        )
    return entry


# ---------------------------------------------------------------------------
# Batch rebuild
# ---------------------------------------------------------------------------

def _rebuild_one(card_id) -> Tuple[Optional[int], Optional[str]]:
    try:
        return derive_customer_card(card_id), None
    except RateEngineError as exc:
        logger.warning("Rebuild of card %s failed: %s", card_id, exc.message)
        return None, str(exc)
    except Exception as exc:
        logger.exception("Rebuild of card %s crashed", card_id)
        return None, f"{type(exc).__name__}: {exc}"


def _rebuild_in_thread(card_id) -> Tuple[Optional[int], Optional[str]]:
    try:
        return _rebuild_one(card_id)
    finally:
        connection.close()


def stale_card_ids(parent_id: Optional[int] = None) -> List[int]:
    qs = RateCard.objects.filter(card_type=CardType.CUSTOMER, status=CardStatus.STALE)
    if parent_id is not None:
        qs = qs.filter(parent_id=parent_id)
    return list(qs.order_by("id").values_list("id", flat=True))


def rebuild_stale_cards(
    parent_id: Optional[int] = None,
    max_workers: Optional[int] = None,
    card_ids: Optional[Sequence[int]] = None,
) -> RebuildReport:
    """
    Derive every stale customer card (optionally only one parent's, or only
    the given ids). Cards are independent units: a failure is recorded in the
    report and the rest carry on.
    """
    if card_ids is None:
        card_ids = stale_card_ids(parent_id)
    workers = max_workers or engine_setting("REBUILD_MAX_WORKERS")
    report = RebuildReport()

    if workers <= 1 or len(card_ids) <= 1:
        for cid in card_ids:
            revision_id, error = _rebuild_one(cid)
            if error is None:
                report.rebuilt[cid] = revision_id
            else:
                report.failed[cid] = error
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(_rebuild_in_thread, cid): cid for cid in card_ids}
            for future in as_completed(futures):
                cid = futures[future]
                revision_id, error = future.result()
                if error is None:
                    report.rebuilt[cid] = revision_id
                else:
                    report.failed[cid] = error

    logger.info("Rebuilt %d stale card(s), %d failed", len(report.rebuilt), len(report.failed))
    return report
