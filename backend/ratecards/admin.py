from django.contrib import admin, messages

from .dataclasses import CardStatus, CardType
from .models import ProfitRule, RateCard, RateEntry, RateRevision
from .services.engine import rebuild_stale_cards


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request): return False
    def has_change_permission(self, request, obj=None): return False
    def has_delete_permission(self, request, obj=None): return False


class ProfitRuleInline(admin.TabularInline):
    model = ProfitRule
    extra = 0
    fields = ("position", "match_prefix", "profit_type", "profit_value", "apply_to", "status", "bypass_assurance")
    ordering = ("position", "id")

    def has_add_permission(self, request, obj=None): return False
    def has_change_permission(self, request, obj=None): return False
    def has_delete_permission(self, request, obj=None): return False


@admin.register(RateCard)
class RateCardAdmin(ReadOnlyAdmin):
    list_display = ("id", "code", "name", "card_type", "currency", "direction", "billing_precision",
                    "parent", "status", "revision_count", "updated_at")
    list_filter = ("card_type", "status", "direction", "currency")
    search_fields = ("code", "name")
    inlines = [ProfitRuleInline]
    actions = ["rebuild_selected"]

    def rebuild_selected(self, request, queryset):
        ids = list(
            queryset.filter(card_type=CardType.CUSTOMER, status=CardStatus.STALE)
            .order_by("id").values_list("id", flat=True)
        )
        if not ids:
            messages.info(request, "No stale customer cards selected.")
            return
        report = rebuild_stale_cards(card_ids=ids)
        for card_id, error in report.failed.items():
            messages.warning(request, f"Card {card_id}: {error}")
        if report.rebuilt:
            messages.success(request, f"Rebuilt {len(report.rebuilt)} card(s).")
    rebuild_selected.short_description = "Rebuild selected stale cards"


@admin.register(RateRevision)
class RateRevisionAdmin(ReadOnlyAdmin):
    list_display = ("id", "card", "revision_no", "origin", "created_at", "effective_at", "source_revision",
                    "rolled_back_from")
    list_filter = ("origin", "card")
    search_fields = ("card__code",)


@admin.register(RateEntry)
class RateEntryAdmin(ReadOnlyAdmin):
    list_display = ("id", "revision", "prefix", "destination", "rate", "connection_fee", "billing_increment",
                    "min_duration", "status")
    list_filter = ("status",)
    search_fields = ("prefix", "destination")
