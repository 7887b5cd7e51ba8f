"""
Append-only revision store for rate tables.

A card id indexes a list of immutable revisions. Revision numbers are assigned
under a row lock on the card so that concurrent writers for the same card get
consecutive numbers; the (card, revision_no) unique constraint is the backstop.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from django.db import IntegrityError, transaction
from django.db.models import Count, Q
from django.utils.timezone import now

from ..dataclasses import (
    EntryStatus,
    RateEntryData,
    RateTableSnapshot,
    RevisionInfo,
    RevisionOrigin,
    Violation,
)
from ..models import RateCard, RateEntry, RateRevision
from .errors import ConcurrencyError, ValidationError
from .utils import PREFIX_RE, ZERO

logger = logging.getLogger(__name__)

MAX_DECIMAL_PLACES = 8
MAX_WHOLE_DIGITS = 10
ENTRY_STATUSES = {EntryStatus.ACTIVE, EntryStatus.BLOCKED}


def _decimal_problem(value) -> Optional[str]:
    if not isinstance(value, Decimal) or not value.is_finite():
        return "must be a decimal number"
    if value < ZERO:
        return "must not be negative"
    if value.adjusted() >= MAX_WHOLE_DIGITS:
        return f"must be below 10^{MAX_WHOLE_DIGITS}"
    exponent = value.as_tuple().exponent
    if exponent < -MAX_DECIMAL_PLACES and value != value.quantize(Decimal(1).scaleb(-MAX_DECIMAL_PLACES)):
        return f"must have at most {MAX_DECIMAL_PLACES} decimal places"
    return None


def entry_violations(entries: Sequence[RateEntryData]) -> List[Violation]:
    """Every problem in a proposed entry set, in row order."""
    violations: List[Violation] = []
    seen = {}
    for row, e in enumerate(entries, start=1):
        if not isinstance(e.prefix, str) or not PREFIX_RE.match(e.prefix):
            violations.append(Violation(row, "prefix", e.prefix, "Prefix must be 1-15 digits"))
        elif e.prefix in seen:
            violations.append(Violation(row, "prefix", e.prefix, f"Duplicate prefix (first seen in row {seen[e.prefix]})"))
        else:
            seen[e.prefix] = row

        problem = _decimal_problem(e.rate)
        if problem:
            violations.append(Violation(row, "rate", e.rate, f"Rate {problem}"))
        problem = _decimal_problem(e.connection_fee)
        if problem:
            violations.append(Violation(row, "connection_fee", e.connection_fee, f"Connection fee {problem}"))

        if not isinstance(e.billing_increment, int) or isinstance(e.billing_increment, bool) or e.billing_increment <= 0:
            violations.append(Violation(row, "billing_increment", e.billing_increment,
                                        "Billing increment must be a positive number of seconds"))
        if not isinstance(e.min_duration, int) or isinstance(e.min_duration, bool) or e.min_duration < 0:
            violations.append(Violation(row, "min_duration", e.min_duration,
                                        "Minimum duration must be zero or more seconds"))
        if e.status not in ENTRY_STATUSES:
            violations.append(Violation(row, "status", e.status, "Status must be active or blocked"))
        if e.destination is not None and len(e.destination) > 255:
            violations.append(Violation(row, "destination", e.destination[:32] + "...",
                                        "Destination must be at most 255 characters"))
    return violations


def validate_entries(entries: Sequence[RateEntryData]) -> None:
    violations = entry_violations(entries)
    if violations:
        logger.warning("Rejected rate entries with %d problem(s)", len(violations))
        raise ValidationError("Invalid rate entries", violations)


def create_revision(
    card: RateCard,
    entries: Sequence[RateEntryData],
    effective_at: Optional[datetime] = None,
    *,
    origin: str = RevisionOrigin.UPLOAD,
    source_revision: Optional[RateRevision] = None,
    rule_set_digest: str = "",
    rolled_back_from: Optional[int] = None,
) -> RateRevision:
    """
    Validate `entries` and append them as the card's next revision.

    Raises:
        ValidationError: with every offending entry; nothing is written.
        ConcurrencyError: when the revision number was taken by another writer.
    """
    entries = list(entries)
    validate_entries(entries)

    try:
        with transaction.atomic():
            # Lock the card row to assign the next revision number safely
            locked = RateCard.objects.select_for_update().get(pk=card.pk)
            next_no = locked.revision_count + 1
            revision = RateRevision.objects.create(
                card=locked,
                revision_no=next_no,
                effective_at=effective_at,
                origin=origin,
                source_revision=source_revision,
                rule_set_digest=rule_set_digest,
                rolled_back_from=rolled_back_from,
            )
            RateEntry.objects.bulk_create([
                RateEntry(
                    revision=revision,
                    prefix=e.prefix,
                    destination=e.destination or "",
                    rate=e.rate,
                    connection_fee=e.connection_fee,
                    billing_increment=e.billing_increment,
                    min_duration=e.min_duration,
                    status=e.status,
                )
                for e in entries
            ])
            locked.revision_count = next_no
            locked.save(update_fields=["revision_count", "updated_at"])
    except IntegrityError as exc:
        raise ConcurrencyError(
            f"Revision number collision on card {card.code}",
            [Violation(None, "revision_no", getattr(card, "revision_count", None), str(exc))],
        ) from exc

    card.revision_count = locked.revision_count
    card.updated_at = locked.updated_at
    logger.info(
        "Created %s revision %d for card %s (%d entries, effective_at=%s)",
        origin, revision.revision_no, card.code, len(entries), effective_at,
    )
    return revision


def _revisions(card: RateCard):
    return RateRevision.objects.filter(card_id=card.pk)


def get_active_revision(card: RateCard, at: Optional[datetime] = None) -> Optional[RateRevision]:
    """Latest revision already in effect at `at` (default: now); future-dated ones are skipped."""
    at = at or now()
    return (
        _revisions(card)
        .filter(Q(effective_at__isnull=True) | Q(effective_at__lte=at))
        .order_by("-revision_no")
        .first()
    )


def get_latest_revision(card: RateCard) -> Optional[RateRevision]:
    """Highest-numbered committed revision, whether or not it is in effect yet."""
    return _revisions(card).order_by("-revision_no").first()


def get_revision(card: RateCard, revision_no: int) -> Optional[RateRevision]:
    return _revisions(card).filter(revision_no=revision_no).first()


def load_entries(revision: RateRevision) -> Tuple[RateEntryData, ...]:
    return tuple(e.to_data() for e in RateEntry.objects.filter(revision_id=revision.pk).order_by("prefix"))


def revision_info(revision: RateRevision, entry_count: Optional[int] = None) -> RevisionInfo:
    if entry_count is None:
        entry_count = RateEntry.objects.filter(revision_id=revision.pk).count()
    source_no = revision.source_revision.revision_no if revision.source_revision_id else None
    return RevisionInfo(
        card_id=revision.card_id,
        revision_id=revision.pk,
        revision_no=revision.revision_no,
        created_at=revision.created_at,
        effective_at=revision.effective_at,
        origin=revision.origin,
        entry_count=entry_count,
        source_revision_no=source_no,
        rolled_back_from=revision.rolled_back_from,
    )


def snapshot(revision: RateRevision) -> RateTableSnapshot:
    entries = load_entries(revision)
    return RateTableSnapshot(info=revision_info(revision, len(entries)), entries=entries)


def list_revisions(card: RateCard) -> List[RevisionInfo]:
    """Revision metadata, newest first. Read-only."""
    rows = (
        _revisions(card)
        .select_related("source_revision")
        .annotate(n_entries=Count("entries"))
        .order_by("-revision_no")
    )
    return [revision_info(r, r.n_entries) for r in rows]
