from django.core.management.base import BaseCommand, CommandError
from django.utils.dateparse import parse_datetime
from django.utils.timezone import get_current_timezone, is_naive, make_aware

from ratecards.dataclasses import CardStatus
from ratecards.models import RateCard
from ratecards.services.billing_increment import normalize_billing_increment
from ratecards.services.engine import publish_carrier_revision
from ratecards.services.errors import RateEngineError
from ratecards.services.rate_import import read_rate_csv


class Command(BaseCommand):
    help = "Import a carrier rate sheet (CSV) as a new revision of a carrier card and mark its dependents stale."

    def add_arguments(self, parser):
        parser.add_argument("card_code", help="Code of the carrier card to publish to")
        parser.add_argument("csv_path", help="Path to the CSV file (header row required)")
        parser.add_argument(
            "--effective-at",
            default=None,
            help="ISO timestamp the revision takes effect (default: immediately)",
        )
        parser.add_argument(
            "--default-increment",
            default=None,
            help='Billing increment for rows that leave it blank, e.g. "60/60" or "30/6"',
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            default=False,
            help="Validate the sheet without publishing",
        )

    def handle(self, *args, **options):
        code = options["card_code"]
        card = RateCard.objects.filter(code=code).first()
        if card is None:
            raise CommandError(f"Rate card '{code}' does not exist.")

        effective_at = None
        if options.get("effective_at"):
            effective_at = parse_datetime(options["effective_at"])
            if effective_at is None:
                raise CommandError(f"Invalid --effective-at '{options['effective_at']}'. Use ISO 8601.")
            if is_naive(effective_at):
                effective_at = make_aware(effective_at, get_current_timezone())

        default_increment = options.get("default_increment")
        if default_increment:
            result = normalize_billing_increment(default_increment)
            if not result.ok:
                raise CommandError(result.error)
            default_increment = result.value

        try:
            with open(options["csv_path"], newline="", encoding="utf-8-sig") as fh:
                entries = read_rate_csv(fh, default_increment=default_increment)
        except OSError as exc:
            raise CommandError(f"Cannot read {options['csv_path']}: {exc}")
        except RateEngineError as exc:
            self.stdout.write(self.style.ERROR(str(exc)))
            raise CommandError(f"Rate sheet rejected with {len(exc.violations)} problem(s).")

        if options["dry_run"]:
            self.stdout.write(self.style.SUCCESS(f"Sheet OK: {len(entries)} entries (dry run, nothing published)."))
            return

        try:
            revision_id = publish_carrier_revision(card.pk, entries, effective_at)
        except RateEngineError as exc:
            self.stdout.write(self.style.ERROR(str(exc)))
            raise CommandError(exc.message)

        card.refresh_from_db()
        stale = card.children.filter(status=CardStatus.STALE).count()
        self.stdout.write(self.style.SUCCESS(
            f"Published r{card.revision_count} (id {revision_id}) on {card.code} with {len(entries)} entries; "
            f"{stale} dependent card(s) stale."
        ))
