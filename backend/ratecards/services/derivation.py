"""
Derivation pipeline: carrier cost entries + profit rules -> customer sell entries.

Per parent entry:
  1. resolve the applicable profit rule (longest match prefix wins)
  2. apply the margin to the per-minute rate and/or the connection fee
  3. round both to the card's billing precision (round-half-up)
  4. carry billing increment and minimum duration through unchanged
  5. with profit assurance on, mark entries that do not make money `blocked`

This module is pure: it takes immutable inputs and returns new values. Writing
the result as a revision is the revision store's job.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, List, Tuple

from ..dataclasses import (
    ApplyTo,
    CardSettings,
    DerivationResult,
    DerivedEntry,
    EntryStatus,
    ProfitRuleData,
    ProfitType,
    RateEntryData,
    Violation,
)
from .errors import ConfigurationError
from .profit_rules import ProfitRuleSet
from .utils import ONE, ZERO, d, round_half_up, validate_precision

logger = logging.getLogger(__name__)


def apply_margin(rate: Decimal, connection_fee: Decimal, rule: ProfitRuleData) -> Tuple[Decimal, Decimal]:
    """Return (rate, connection_fee) after the rule's margin, before rounding."""
    value = d(rule.profit_value)
    touches_rate = rule.apply_to in (ApplyTo.ALL, ApplyTo.PER_MINUTE)

    if rule.profit_type == ProfitType.PERCENTAGE:
        multiplier = ONE + value
        new_rate = rate * multiplier if touches_rate else rate
        # A multiplier is proportional, so "all" marks up the setup charge too.
        touches_fee = rule.apply_to in (ApplyTo.ALL, ApplyTo.SETUP)
        new_fee = connection_fee * multiplier if touches_fee else connection_fee
        return new_rate, new_fee

    if rule.profit_type == ProfitType.FIXED:
        if touches_rate:
            return rate + value, connection_fee
        return rate, connection_fee + value

    raise ValueError(f"Unknown profit type: {rule.profit_type}")


def violates_assurance(cost_rate: Decimal, cost_fee: Decimal, sell_rate: Decimal, sell_fee: Decimal) -> bool:
    """True when the per-minute rate does not exceed cost, or the connection fee drops below it."""
    return sell_rate <= cost_rate or sell_fee < cost_fee


def derive_entry(parent: RateEntryData, rule: ProfitRuleData, card: CardSettings) -> DerivedEntry:
    cost_rate = d(parent.rate)
    cost_fee = d(parent.connection_fee)
    raw_rate, raw_fee = apply_margin(cost_rate, cost_fee, rule)
    sell_rate = round_half_up(raw_rate, card.billing_precision)
    sell_fee = round_half_up(raw_fee, card.billing_precision)

    status = EntryStatus.ACTIVE
    if parent.is_blocked:
        status = EntryStatus.BLOCKED
    elif card.profit_assurance and not rule.bypass_assurance:
        if violates_assurance(cost_rate, cost_fee, sell_rate, sell_fee):
            status = EntryStatus.BLOCKED

    if status == EntryStatus.BLOCKED and (sell_rate < ZERO or sell_fee < ZERO):
        # Never store a negative price, even on an unrated entry
        sell_rate = round_half_up(cost_rate, card.billing_precision)
        sell_fee = round_half_up(cost_fee, card.billing_precision)

    entry = RateEntryData(
        prefix=parent.prefix,
        destination=parent.destination,
        rate=sell_rate,
        connection_fee=sell_fee,
        billing_increment=parent.billing_increment,
        min_duration=parent.min_duration,
        status=status,
    )
    return DerivedEntry(entry=entry, rule=rule, cost_rate=cost_rate, cost_connection_fee=cost_fee)


def derive_entries(parent_entries: Iterable[RateEntryData], rules: ProfitRuleSet, card: CardSettings) -> DerivationResult:
    """
    Run the pipeline over a full parent revision.

    Raises ConfigurationError if any prefix cannot be resolved, or if a rule
    drives an unblocked entry below zero (assurance off or bypassed); in that
    case no partial result is returned.
    """
    validate_precision(card.billing_precision)
    result = DerivationResult()
    violations: List[Violation] = []
    for row, parent in enumerate(parent_entries, start=1):
        rule = rules.resolve(parent.prefix)
        derived = derive_entry(parent, rule, card)
        out = derived.entry
        if not out.is_blocked and (out.rate < ZERO or out.connection_fee < ZERO):
            violations.append(Violation(
                row, "match_prefix", rule.match_prefix,
                f"Rule drives prefix {out.prefix} below zero (rate {out.rate}, connection fee {out.connection_fee})",
            ))
        result.entries.append(derived)

    if violations:
        logger.warning("Derivation produced %d negative price(s)", len(violations))
        raise ConfigurationError("Profit rules produce negative prices", violations)

    blocked = result.blocked_prefixes
    if blocked:
        logger.warning(
            "Profit assurance blocked %d of %d entries: %s",
            len(blocked), len(result.entries), ", ".join(blocked[:20]),
        )
    return result
