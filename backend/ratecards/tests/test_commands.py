from decimal import Decimal
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from ..dataclasses import CardStatus, CardType, ProfitType
from ..models import RateCard
from ..services import engine, revision_store
from .factories import rule

pytestmark = pytest.mark.django_db


def _write_sheet(tmp_path, text, name="rates.csv"):
    path = tmp_path / name
    path.write_text(text, encoding="utf-8")
    return str(path)


class TestImportCarrierRates:
    def test_import_publishes_and_marks_dependents(self, tmp_path, derived_customer, carrier):
        path = _write_sheet(tmp_path, "Code,Destination,Rate,Interval\n1,USA,0.0140,60/1\n44,UK,0.0260,30/6\n")
        out = StringIO()
        call_command("import_carrier_rates", carrier.code, path, stdout=out)
        assert "Published r2" in out.getvalue()
        assert "1 dependent card(s) stale" in out.getvalue()

        rev = revision_store.get_latest_revision(carrier)
        entries = {e.prefix: e for e in revision_store.load_entries(rev)}
        assert entries["1"].rate == Decimal("0.0140")
        assert (entries["44"].min_duration, entries["44"].billing_increment) == (30, 6)
        assert RateCard.objects.get(pk=derived_customer.pk).status == CardStatus.STALE

    def test_rejected_sheet_lists_rows(self, tmp_path, carrier):
        path = _write_sheet(tmp_path, "prefix,rate\n1,0.01\n1,0.02\n44,x\n")
        out = StringIO()
        with pytest.raises(CommandError):
            call_command("import_carrier_rates", carrier.code, path, stdout=out)
        text = out.getvalue()
        assert "Row 3: prefix" in text
        assert "Row 4: rate" in text
        carrier.refresh_from_db()
        assert carrier.revision_count == 1

    def test_dry_run_publishes_nothing(self, tmp_path, carrier):
        path = _write_sheet(tmp_path, "prefix,rate\n1,0.01\n")
        out = StringIO()
        call_command("import_carrier_rates", carrier.code, path, "--dry-run", stdout=out)
        assert "dry run" in out.getvalue()
        carrier.refresh_from_db()
        assert carrier.revision_count == 1

    def test_effective_at_and_default_increment(self, tmp_path, carrier):
        path = _write_sheet(tmp_path, "prefix,rate\n1,0.01\n")
        call_command(
            "import_carrier_rates", carrier.code, path,
            "--effective-at", "2031-01-01T00:00:00", "--default-increment", "30-6",
            stdout=StringIO(),
        )
        rev = revision_store.get_latest_revision(carrier)
        assert rev.effective_at.year == 2031
        (e,) = revision_store.load_entries(rev)
        assert (e.min_duration, e.billing_increment) == (30, 6)
        assert revision_store.get_active_revision(carrier).revision_no == 1

    def test_unknown_card(self, tmp_path):
        path = _write_sheet(tmp_path, "prefix,rate\n1,0.01\n")
        with pytest.raises(CommandError):
            call_command("import_carrier_rates", "NOPE", path)

    def test_customer_card_is_refused(self, tmp_path, customer):
        path = _write_sheet(tmp_path, "prefix,rate\n1,0.01\n")
        with pytest.raises(CommandError):
            call_command("import_carrier_rates", customer.code, path, stdout=StringIO())


class TestRebuildStaleCards:
    def test_rebuilds_and_reports_failures(self, customer, carrier):
        broken = engine.create_card("BROKEN", CardType.CUSTOMER, parent_id=carrier.pk)
        out = StringIO()
        call_command("rebuild_stale_cards", stdout=out)
        text = out.getvalue()
        assert f"Rebuilt {customer.code}" in text
        assert f"{broken.code} failed" in text
        assert "Rebuilt 1, failed 1" in text
        assert RateCard.objects.get(pk=customer.pk).status == CardStatus.ACTIVE

    def test_parent_filter(self, customer):
        other = engine.create_card("CARRIER-B", CardType.CARRIER)
        out = StringIO()
        call_command("rebuild_stale_cards", "--parent", other.code, stdout=out)
        assert "No stale cards" in out.getvalue()
        assert RateCard.objects.get(pk=customer.pk).status == CardStatus.STALE

    def test_unknown_parent(self):
        with pytest.raises(CommandError):
            call_command("rebuild_stale_cards", "--parent", "NOPE")

    def test_nothing_stale(self, derived_customer):
        out = StringIO()
        call_command("rebuild_stale_cards", "--workers", "1", stdout=out)
        assert "No stale cards" in out.getvalue()

    def test_rule_fix_then_rebuild(self, carrier):
        card = engine.create_card("LATE", CardType.CUSTOMER, parent_id=carrier.pk)
        call_command("rebuild_stale_cards", stdout=StringIO())
        assert RateCard.objects.get(pk=card.pk).status == CardStatus.STALE
        engine.replace_profit_rules(card.pk, [rule("", ProfitType.PERCENTAGE, "0.05")])
        call_command("rebuild_stale_cards", stdout=StringIO())
        assert RateCard.objects.get(pk=card.pk).status == CardStatus.ACTIVE
