"""
Carrier rate sheet import.

Turns CSV rows (or already-parsed dict rows from the API) into RateEntryData.
Every row is checked and every problem reported, with spreadsheet row numbers
(header = row 1), so an upload can be corrected in one pass.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import IO, Any, Dict, Iterable, List, Mapping, Optional, Union

from ..dataclasses import EntryStatus, RateEntryData, Violation
from .billing_increment import normalize_billing_increment, split_increment
from .errors import ValidationError
from .revision_store import entry_violations
from .utils import ZERO, engine_setting, parse_decimal

logger = logging.getLogger(__name__)

HEADER_ROW = 1

COLUMN_ALIASES = {
    "code": "prefix",
    "dial_code": "prefix",
    "destination_name": "destination",
    "zone": "destination",
    "connection_charge": "connection_fee",
    "setup_fee": "connection_fee",
    "interval": "billing_increment",
    "increment": "billing_increment",
    "min_duration_seconds": "min_duration",
    "minimum_duration": "min_duration",
}

REQUIRED_COLUMNS = ("prefix", "rate")


def _canon_key(key: str) -> str:
    k = (key or "").strip().lower().replace(" ", "_").replace("-", "_")
    return COLUMN_ALIASES.get(k, k)


def _canon_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in row.items():
        if k is None:
            continue
        out[_canon_key(k)] = v.strip() if isinstance(v, str) else v
    return out


def _clean_prefix(raw) -> str:
    text = "" if raw is None else str(raw).strip()
    if text.startswith("+"):
        text = text[1:]
    return text.replace(" ", "")


def _parse_status(raw) -> Optional[str]:
    text = ("" if raw is None else str(raw)).strip().lower()
    if not text or text == EntryStatus.ACTIVE:
        return EntryStatus.ACTIVE
    if text in (EntryStatus.BLOCKED, "block", "yes", "true", "1"):
        return EntryStatus.BLOCKED
    return None


def parse_rate_rows(rows: Iterable[Mapping[str, Any]], default_increment: Optional[str] = None) -> List[RateEntryData]:
    """
    Convert rows to entries.

    Raises:
        ValidationError: listing every bad cell in every row.
    """
    default_increment = default_increment or engine_setting("IMPORT_DEFAULT_BILLING_INCREMENT")
    entries: List[RateEntryData] = []
    sheet_rows: List[int] = []
    violations: List[Violation] = []

    for i, raw in enumerate(rows):
        sheet_row = HEADER_ROW + 1 + i
        row = _canon_row(raw)
        row_ok = True

        prefix = _clean_prefix(row.get("prefix"))
        if not prefix:
            violations.append(Violation(sheet_row, "prefix", "", "Prefix is required"))
            row_ok = False

        rate = parse_decimal(row.get("rate"))
        if rate is None:
            violations.append(Violation(sheet_row, "rate", row.get("rate"), "Rate must be a decimal number"))
            row_ok = False

        fee_raw = row.get("connection_fee")
        fee = ZERO if fee_raw in (None, "") else parse_decimal(fee_raw)
        if fee is None:
            violations.append(Violation(sheet_row, "connection_fee", fee_raw, "Connection fee must be a decimal number"))
            row_ok = False

        inc = normalize_billing_increment(row.get("billing_increment"), default=default_increment)
        if not inc.ok:
            violations.append(Violation(sheet_row, "billing_increment", row.get("billing_increment"), inc.error))
            row_ok = False
            min_duration, increment = 0, 0
        else:
            min_duration, increment = split_increment(inc.value)

        md_raw = row.get("min_duration")
        if md_raw not in (None, ""):
            try:
                min_duration = int(str(md_raw).strip())
            except ValueError:
                violations.append(Violation(sheet_row, "min_duration", md_raw, "Minimum duration must be whole seconds"))
                row_ok = False

        status = _parse_status(row.get("status"))
        if status is None:
            violations.append(Violation(sheet_row, "status", row.get("status"), "Status must be active or blocked"))
            row_ok = False

        if not row_ok:
            continue
        entries.append(RateEntryData(
            prefix=prefix,
            destination=str(row.get("destination") or ""),
            rate=rate,
            connection_fee=fee,
            billing_increment=increment,
            min_duration=min_duration,
            status=status,
        ))
        sheet_rows.append(sheet_row)

    # Entry-level rules (prefix shape, duplicates, negatives) on the rows that parsed
    for v in entry_violations(entries):
        violations.append(Violation(sheet_rows[v.row - 1], v.field, v.value, v.message))

    if violations:
        violations.sort(key=lambda v: (v.row or 0))
        logger.warning("Rate import rejected: %d problem(s)", len(violations))
        raise ValidationError("Rate sheet has errors", violations)
    return entries


def read_rate_csv(source: Union[str, IO[str]], default_increment: Optional[str] = None) -> List[RateEntryData]:
    """Parse CSV text or a text file object with a header row."""
    handle = io.StringIO(source) if isinstance(source, str) else source
    reader = csv.DictReader(handle)
    headers = {_canon_key(h) for h in (reader.fieldnames or [])}
    missing = [c for c in REQUIRED_COLUMNS if c not in headers]
    if missing:
        raise ValidationError(
            "Rate sheet is missing required columns",
            [Violation(HEADER_ROW, col, "", "Column is required") for col in missing],
        )
    return parse_rate_rows(reader, default_increment=default_increment)
