from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .services.utils import ZERO


class CardType:
    CUSTOMER = "customer"
    CARRIER = "carrier"
    CHOICES = [(CUSTOMER, "Customer"), (CARRIER, "Carrier")]


class Direction:
    TERMINATION = "termination"
    ORIGINATION = "origination"
    CHOICES = [(TERMINATION, "Termination"), (ORIGINATION, "Origination")]


class CardStatus:
    ACTIVE = "active"
    STALE = "stale"
    INACTIVE = "inactive"
    CHOICES = [(ACTIVE, "Active"), (STALE, "Stale"), (INACTIVE, "Inactive")]


class EntryStatus:
    ACTIVE = "active"
    BLOCKED = "blocked"
    CHOICES = [(ACTIVE, "Active"), (BLOCKED, "Blocked")]


class ProfitType:
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    CHOICES = [(PERCENTAGE, "Percentage"), (FIXED, "Fixed")]


class ApplyTo:
    ALL = "all"
    SETUP = "setup"
    PER_MINUTE = "perMinute"
    CHOICES = [(ALL, "All"), (SETUP, "Setup"), (PER_MINUTE, "Per Minute")]


class RuleStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    CHOICES = [(ACTIVE, "Active"), (INACTIVE, "Inactive")]


class RevisionOrigin:
    UPLOAD = "upload"
    DERIVATION = "derivation"
    ROLLBACK = "rollback"
    CHOICES = [(UPLOAD, "Upload"), (DERIVATION, "Derivation"), (ROLLBACK, "Rollback")]


@dataclass(frozen=True)
class Violation:
    """One offending record. `row` is 1-based, or None for card-level problems."""
    row: Optional[int]
    field: str
    value: Any
    message: str

    def render(self) -> str:
        where = f"Row {self.row}" if self.row is not None else "Card"
        return f"{where}: {self.field} - {self.message}"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "value": "" if self.value is None else str(self.value),
            "message": self.message,
        }


@dataclass(frozen=True)
class RateEntryData:
    prefix: str
    rate: Decimal
    destination: str = ""
    connection_fee: Decimal = ZERO
    billing_increment: int = 60
    min_duration: int = 0
    status: str = EntryStatus.ACTIVE

    @property
    def is_blocked(self) -> bool:
        return self.status == EntryStatus.BLOCKED

    def with_status(self, status: str) -> "RateEntryData":
        return replace(self, status=status)


@dataclass(frozen=True)
class ProfitRuleData:
    match_prefix: str
    profit_type: str
    profit_value: Decimal
    apply_to: str = ApplyTo.ALL
    status: str = RuleStatus.ACTIVE
    bypass_assurance: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == RuleStatus.ACTIVE

    @property
    def is_catch_all(self) -> bool:
        return self.match_prefix == ""


@dataclass(frozen=True)
class CardSettings:
    """Card-level knobs the derivation pipeline needs."""
    billing_precision: int = 4
    profit_assurance: bool = True


@dataclass(frozen=True)
class DerivedEntry:
    """A derived entry plus the bookkeeping the pipeline keeps about it."""
    entry: RateEntryData
    rule: ProfitRuleData
    cost_rate: Decimal
    cost_connection_fee: Decimal


@dataclass
class DerivationResult:
    entries: List[DerivedEntry] = field(default_factory=list)

    @property
    def rate_entries(self) -> List[RateEntryData]:
        return [de.entry for de in self.entries]

    @property
    def blocked_prefixes(self) -> List[str]:
        return [de.entry.prefix for de in self.entries if de.entry.is_blocked]

    @property
    def active_count(self) -> int:
        return sum(1 for de in self.entries if not de.entry.is_blocked)


@dataclass(frozen=True)
class RevisionInfo:
    """Metadata of one stored revision (entries excluded)."""
    card_id: int
    revision_id: int
    revision_no: int
    created_at: datetime
    effective_at: Optional[datetime]
    origin: str
    entry_count: int
    source_revision_no: Optional[int] = None
    rolled_back_from: Optional[int] = None


@dataclass(frozen=True)
class RateTableSnapshot:
    info: RevisionInfo
    entries: Tuple[RateEntryData, ...]


@dataclass(frozen=True)
class CardStatusInfo:
    status: str
    revision_count: int
    last_updated: datetime
    active_revision_no: Optional[int] = None


@dataclass
class RebuildReport:
    """Outcome of a batch rebuild: card id -> revision id, or card id -> error text."""
    rebuilt: Dict[int, int] = field(default_factory=dict)
    failed: Dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
