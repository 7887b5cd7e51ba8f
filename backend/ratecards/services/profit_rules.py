"""
Profit rule validation and resolution.

A customer card carries a set of prefix-keyed margin rules. For a destination
prefix the applicable rule is the active rule with the longest match prefix;
the empty match prefix is the catch-all. Ties cannot happen because a set with
two active rules on the same match prefix never validates.
"""

from __future__ import annotations

import hashlib
import json
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from ..dataclasses import ApplyTo, ProfitRuleData, ProfitType, RuleStatus, Violation
from .errors import ConfigurationError, ValidationError
from .prefix_index import PrefixIndex
from .utils import PREFIX_RE

logger = logging.getLogger(__name__)

PROFIT_TYPES = {ProfitType.PERCENTAGE, ProfitType.FIXED}
APPLY_TO_VALUES = {ApplyTo.ALL, ApplyTo.SETUP, ApplyTo.PER_MINUTE}
RULE_STATUSES = {RuleStatus.ACTIVE, RuleStatus.INACTIVE}


def validate_rule_set(rules: Sequence[ProfitRuleData], allow_empty: bool = False) -> None:
    """
    Validate that a rule set is complete and unambiguous.

    With `allow_empty`, a set that has no active rule at all is accepted (a card
    whose rules were cleared); any set with active rules still needs a catch-all.

    Raises:
        ConfigurationError: listing every problem found, when the set has no
            active catch-all, has two active rules on one match prefix, or
            contains malformed rules.
    """
    violations: List[Violation] = []
    first_seen: Dict[str, int] = {}
    has_catch_all = False

    for row, rule in enumerate(rules, start=1):
        if rule.profit_type not in PROFIT_TYPES:
            violations.append(Violation(row, "profit_type", rule.profit_type,
                                        f"Profit type must be one of {', '.join(sorted(PROFIT_TYPES))}"))
        if rule.apply_to not in APPLY_TO_VALUES:
            violations.append(Violation(row, "apply_to", rule.apply_to,
                                        f"Apply-to must be one of {', '.join(sorted(APPLY_TO_VALUES))}"))
        if rule.status not in RULE_STATUSES:
            violations.append(Violation(row, "status", rule.status, "Status must be active or inactive"))
        if not isinstance(rule.profit_value, Decimal) or not rule.profit_value.is_finite():
            violations.append(Violation(row, "profit_value", rule.profit_value, "Profit value must be a decimal number"))
        if rule.match_prefix and not PREFIX_RE.match(rule.match_prefix):
            violations.append(Violation(row, "match_prefix", rule.match_prefix,
                                        "Match prefix must be empty or 1-15 digits"))
        if not rule.is_active:
            continue
        if rule.is_catch_all:
            has_catch_all = True
        if rule.match_prefix in first_seen:
            violations.append(Violation(
                row, "match_prefix", rule.match_prefix,
                f"Ambiguous: rule {first_seen[rule.match_prefix]} is also active on this match prefix",
            ))
        else:
            first_seen[rule.match_prefix] = row

    if not has_catch_all and not (allow_empty and not first_seen):
        violations.append(Violation(None, "match_prefix", "",
                                    "An active catch-all rule (empty match prefix) is required"))

    if violations:
        logger.warning("Profit rule set rejected with %d problem(s)", len(violations))
        raise ConfigurationError("Invalid profit rule set", violations)


class ProfitRuleSet:
    """An immutable, validated snapshot of a card's profit rules."""

    def __init__(self, rules: Iterable[ProfitRuleData]):
        self.rules = tuple(rules)
        validate_rule_set(self.rules)
        self._by_prefix = {r.match_prefix: r for r in self.rules if r.is_active}
        try:
            self._index = PrefixIndex(self._by_prefix.keys())
        except ValidationError as exc:
            raise ConfigurationError("Invalid profit rule set", exc.violations) from exc

    def resolve(self, destination_prefix: str) -> ProfitRuleData:
        match = self._index.longest_match(destination_prefix)
        if match is None:
            # Unreachable while the catch-all invariant holds.
            raise ConfigurationError(
                f"No profit rule matches prefix {destination_prefix!r}",
                [Violation(None, "match_prefix", destination_prefix, "No matching rule")],
            )
        rule = self._by_prefix[match]
        logger.debug("Prefix %s resolved to rule %r", destination_prefix, rule.match_prefix)
        return rule

    @property
    def active_rules(self) -> List[ProfitRuleData]:
        return list(self._by_prefix.values())

    def digest(self) -> str:
        return rule_set_digest(self.rules)


def rule_set_digest(rules: Iterable[ProfitRuleData]) -> str:
    """Stable fingerprint of the active rules; order and inactive rules do not matter."""
    canon = sorted(
        [r.match_prefix, r.profit_type, str(r.profit_value.normalize()), r.apply_to, bool(r.bypass_assurance)]
        for r in rules
        if r.is_active
    )
    blob = json.dumps(canon, separators=(",", ":"))
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()
