from __future__ import annotations

from rest_framework import serializers

from .dataclasses import (
    ApplyTo,
    CardType,
    Direction,
    EntryStatus,
    ProfitRuleData,
    ProfitType,
    RateEntryData,
    RuleStatus,
)
from .models import ProfitRule, RateCard
from .services.billing_increment import normalize_billing_increment, split_increment
from .services.utils import MAX_PRECISION, MIN_PRECISION, ZERO


class RateCardSerializer(serializers.ModelSerializer):
    parent_code = serializers.CharField(source="parent.code", read_only=True, default=None)

    class Meta:
        model = RateCard
        fields = (
            "id", "code", "name", "card_type", "currency", "direction", "billing_precision",
            "parent", "parent_code", "tech_prefix", "profit_assurance", "status",
            "revision_count", "created_at", "updated_at",
        )
        read_only_fields = ("status", "revision_count", "created_at", "updated_at")


class RateCardCreateSerializer(serializers.Serializer):
    """Shape checks only; card invariants are enforced by the engine."""
    code = serializers.CharField(max_length=64)
    name = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    card_type = serializers.ChoiceField(choices=(CardType.CUSTOMER, CardType.CARRIER))
    currency = serializers.CharField(max_length=3, required=False, default="USD")
    direction = serializers.ChoiceField(
        choices=(Direction.TERMINATION, Direction.ORIGINATION), required=False, default=Direction.TERMINATION,
    )
    billing_precision = serializers.IntegerField(
        min_value=MIN_PRECISION, max_value=MAX_PRECISION, required=False, allow_null=True, default=None,
    )
    parent_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    tech_prefix = serializers.CharField(max_length=32, required=False, allow_blank=True, default="")
    profit_assurance = serializers.BooleanField(required=False, default=True)

    def validate_currency(self, value: str) -> str:
        return (value or "").strip().upper()


class RateEntryInputSerializer(serializers.Serializer):
    """
    One uploaded entry. `billing_increment` accepts seconds ("60") or the
    carrier notation ("30/6"); in the latter form the first number becomes the
    minimum duration unless `min_duration` is given explicitly.

    Prefix and amount rules are not checked here: the revision store reports
    every bad entry of an upload at once.
    """
    prefix = serializers.CharField(max_length=32, trim_whitespace=True)
    destination = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    rate = serializers.DecimalField(max_digits=30, decimal_places=12)
    connection_fee = serializers.DecimalField(max_digits=30, decimal_places=12, required=False, default=None)
    billing_increment = serializers.CharField(max_length=16, required=False, allow_blank=True, default="")
    min_duration = serializers.IntegerField(required=False, allow_null=True, default=None)
    status = serializers.ChoiceField(
        choices=(EntryStatus.ACTIVE, EntryStatus.BLOCKED), required=False, default=EntryStatus.ACTIVE,
    )

    def validate(self, attrs):
        raw = attrs.get("billing_increment")
        if raw and "/" not in raw and raw.strip().isdigit():
            increment, min_duration = int(raw), 0
        else:
            result = normalize_billing_increment(raw)
            if not result.ok:
                raise serializers.ValidationError({"billing_increment": result.error})
            min_duration, increment = split_increment(result.value)
        attrs["billing_increment"] = increment
        if attrs.get("min_duration") is None:
            attrs["min_duration"] = min_duration
        return attrs

    def to_entry(self, attrs) -> RateEntryData:
        fee = attrs.get("connection_fee")
        return RateEntryData(
            prefix=attrs["prefix"].lstrip("+").replace(" ", ""),
            destination=attrs.get("destination") or "",
            rate=attrs["rate"],
            connection_fee=fee if fee is not None else ZERO,
            billing_increment=attrs["billing_increment"],
            min_duration=attrs["min_duration"],
            status=attrs["status"],
        )


class PublishRevisionSerializer(serializers.Serializer):
    entries = RateEntryInputSerializer(many=True, allow_empty=True)
    effective_at = serializers.DateTimeField(required=False, allow_null=True, default=None)

    def rate_entries(self):
        child = self.fields["entries"].child
        return [child.to_entry(e) for e in self.validated_data["entries"]]


class RateEntrySerializer(serializers.Serializer):
    prefix = serializers.CharField()
    destination = serializers.CharField()
    rate = serializers.DecimalField(max_digits=18, decimal_places=8, coerce_to_string=True)
    connection_fee = serializers.DecimalField(max_digits=18, decimal_places=8, coerce_to_string=True)
    billing_increment = serializers.IntegerField()
    min_duration = serializers.IntegerField()
    status = serializers.CharField()


class RevisionInfoSerializer(serializers.Serializer):
    card_id = serializers.IntegerField()
    revision_id = serializers.IntegerField()
    revision_no = serializers.IntegerField()
    created_at = serializers.DateTimeField()
    effective_at = serializers.DateTimeField(allow_null=True)
    origin = serializers.CharField()
    entry_count = serializers.IntegerField()
    source_revision_no = serializers.IntegerField(allow_null=True)
    rolled_back_from = serializers.IntegerField(allow_null=True)


class CardStatusSerializer(serializers.Serializer):
    status = serializers.CharField()
    revision_count = serializers.IntegerField()
    last_updated = serializers.DateTimeField()
    active_revision_no = serializers.IntegerField(allow_null=True)


class ProfitRuleSerializer(serializers.ModelSerializer):
    match_prefix = serializers.CharField(max_length=15, required=False, allow_blank=True, default="")
    profit_type = serializers.ChoiceField(choices=(ProfitType.PERCENTAGE, ProfitType.FIXED))
    apply_to = serializers.ChoiceField(
        choices=(ApplyTo.ALL, ApplyTo.SETUP, ApplyTo.PER_MINUTE), required=False, default=ApplyTo.ALL,
    )
    status = serializers.ChoiceField(
        choices=(RuleStatus.ACTIVE, RuleStatus.INACTIVE), required=False, default=RuleStatus.ACTIVE,
    )
    bypass_assurance = serializers.BooleanField(required=False, default=False)

    class Meta:
        model = ProfitRule
        fields = ("id", "position", "match_prefix", "profit_type", "profit_value", "apply_to", "status",
                  "bypass_assurance")
        read_only_fields = ("id", "position")

    def validate_match_prefix(self, value: str) -> str:
        return (value or "").strip()

    @staticmethod
    def to_rule(attrs) -> ProfitRuleData:
        return ProfitRuleData(
            match_prefix=attrs.get("match_prefix", ""),
            profit_type=attrs["profit_type"],
            profit_value=attrs["profit_value"],
            apply_to=attrs.get("apply_to", ApplyTo.ALL),
            status=attrs.get("status", RuleStatus.ACTIVE),
            bypass_assurance=bool(attrs.get("bypass_assurance", False)),
        )


class RollbackSerializer(serializers.Serializer):
    revision_no = serializers.IntegerField(min_value=1)


class RebuildStaleSerializer(serializers.Serializer):
    parent_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    max_workers = serializers.IntegerField(required=False, allow_null=True, default=None, min_value=1)
