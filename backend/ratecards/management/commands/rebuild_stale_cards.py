from django.core.management.base import BaseCommand, CommandError

from ratecards.models import RateCard
from ratecards.services.engine import rebuild_stale_cards, stale_card_ids


class Command(BaseCommand):
    help = "Re-derive every stale customer card (optionally only the dependents of one carrier card)."

    def add_arguments(self, parser):
        parser.add_argument("--parent", default=None, help="Code of a carrier card; only its dependents are rebuilt")
        parser.add_argument("--workers", type=int, default=None, help="Worker pool size (default: settings)")

    def handle(self, *args, **options):
        parent_id = None
        if options.get("parent"):
            parent = RateCard.objects.filter(code=options["parent"]).first()
            if parent is None:
                raise CommandError(f"Rate card '{options['parent']}' does not exist.")
            parent_id = parent.pk

        workers = options.get("workers")
        if workers is not None and workers < 1:
            raise CommandError("--workers must be at least 1")

        if not stale_card_ids(parent_id):
            self.stdout.write(self.style.WARNING("No stale cards to rebuild."))
            return

        report = rebuild_stale_cards(parent_id=parent_id, max_workers=workers)
        codes = dict(RateCard.objects.filter(pk__in=list(report.rebuilt) + list(report.failed))
                     .values_list("id", "code"))
        for card_id in sorted(report.rebuilt):
            self.stdout.write(self.style.SUCCESS(f"Rebuilt {codes.get(card_id, card_id)}"))
        for card_id in sorted(report.failed):
            self.stdout.write(self.style.WARNING(f"--- {codes.get(card_id, card_id)} failed ---"))
            self.stdout.write(f"  {report.failed[card_id]}")

        summary = f"Done. Rebuilt {len(report.rebuilt)}, failed {len(report.failed)}."
        if report.ok:
            self.stdout.write(self.style.SUCCESS(summary))
        else:
            self.stdout.write(self.style.ERROR(summary))
