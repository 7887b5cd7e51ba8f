from decimal import Decimal

import pytest

from ..dataclasses import EntryStatus
from ..services.errors import ValidationError
from ..services.rate_import import parse_rate_rows, read_rate_csv

SHEET = """Code,Destination,Rate,Connection Charge,Interval,Status
+1,USA,0.0120,,60/60,
44,UK,0.0250,0.01,30/6,
4420,UK London,0.0200,0,6,blocked
"""


class TestReadRateCsv:
    def test_parses_aliases_and_increments(self):
        entries = read_rate_csv(SHEET)
        by_prefix = {e.prefix: e for e in entries}
        assert list(by_prefix) == ["1", "44", "4420"]
        assert by_prefix["1"].rate == Decimal("0.0120")
        assert by_prefix["1"].connection_fee == Decimal("0")
        assert (by_prefix["1"].min_duration, by_prefix["1"].billing_increment) == (60, 60)
        assert (by_prefix["44"].min_duration, by_prefix["44"].billing_increment) == (30, 6)
        assert by_prefix["44"].connection_fee == Decimal("0.01")
        assert (by_prefix["4420"].min_duration, by_prefix["4420"].billing_increment) == (6, 6)
        assert by_prefix["4420"].status == EntryStatus.BLOCKED
        assert by_prefix["4420"].destination == "UK London"

    def test_missing_required_columns(self):
        with pytest.raises(ValidationError) as exc:
            read_rate_csv("destination,price\nUK,0.1\n")
        assert {v.field for v in exc.value.violations} == {"prefix", "rate"}
        assert all(v.row == 1 for v in exc.value.violations)

    def test_rows_use_spreadsheet_numbering(self):
        sheet = (
            "prefix,rate,billing_increment\n"
            "1,0.01,60/60\n"
            "44,abc,60/60\n"
            "49,0.02,45/15\n"
            "1,0.03,\n"
            ",0.04,\n"
        )
        with pytest.raises(ValidationError) as exc:
            read_rate_csv(sheet)
        found = [(v.row, v.field) for v in exc.value.violations]
        assert found == [(3, "rate"), (4, "billing_increment"), (5, "prefix"), (6, "prefix")]

    def test_default_increment_for_blank_cells(self):
        (e,) = read_rate_csv("prefix,rate\n1,0.01\n", default_increment="30/6")
        assert (e.min_duration, e.billing_increment) == (30, 6)


class TestParseRateRows:
    def test_explicit_min_duration_overrides_increment(self):
        (e,) = parse_rate_rows([{"prefix": "1", "rate": "0.01", "billing_increment": "60/1", "min_duration": "0"}])
        assert (e.min_duration, e.billing_increment) == (0, 1)

    def test_negative_rate_reported_against_sheet_row(self):
        with pytest.raises(ValidationError) as exc:
            parse_rate_rows([{"prefix": "1", "rate": "0.01"}, {"prefix": "2", "rate": "-0.01"}])
        (v,) = exc.value.violations
        assert (v.row, v.field) == (3, "rate")

    def test_bad_status(self):
        with pytest.raises(ValidationError) as exc:
            parse_rate_rows([{"prefix": "1", "rate": "0.01", "status": "maybe"}])
        assert exc.value.violations[0].field == "status"
