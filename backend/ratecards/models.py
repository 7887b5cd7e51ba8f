from typing import List

from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

from .dataclasses import (
    ApplyTo,
    CardStatus,
    CardType,
    Direction,
    EntryStatus,
    ProfitRuleData,
    ProfitType,
    RateEntryData,
    RevisionOrigin,
    RuleStatus,
    Violation,
)
from .services.utils import MAX_PRECISION, MIN_PRECISION


class RateCard(models.Model):
    id = models.BigAutoField(primary_key=True)
    code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255, blank=True, default="")
    card_type = models.CharField(max_length=16, choices=CardType.CHOICES)
    currency = models.CharField(max_length=3, default="USD")
    direction = models.CharField(max_length=16, choices=Direction.CHOICES, default=Direction.TERMINATION)
    billing_precision = models.PositiveSmallIntegerField(
        default=4,
        validators=[MinValueValidator(MIN_PRECISION), MaxValueValidator(MAX_PRECISION)],
        help_text="Decimal digits derived rates are rounded to (2-6)",
    )
    # Customer cards only: the carrier card sell rates are derived from
    parent = models.ForeignKey(
        "self", on_delete=models.PROTECT, related_name="children", blank=True, null=True,
    )
    # Carrier cards only
    tech_prefix = models.CharField(max_length=32, blank=True, default="")
    profit_assurance = models.BooleanField(
        default=True,
        help_text="Block derived entries that would not exceed their cost instead of publishing them",
    )
    status = models.CharField(max_length=16, choices=CardStatus.CHOICES, default=CardStatus.ACTIVE)
    revision_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "rate_cards"
        indexes = [
            models.Index(fields=["card_type", "status"], name="rate_cards_type_status_idx"),
            models.Index(fields=["parent", "status"], name="rate_cards_parent_status_idx"),
        ]

    def __str__(self):
        return f"{self.code} ({self.card_type})"

    @property
    def is_customer(self) -> bool:
        return self.card_type == CardType.CUSTOMER

    @property
    def is_carrier(self) -> bool:
        return self.card_type == CardType.CARRIER

    @property
    def is_inactive(self) -> bool:
        return self.status == CardStatus.INACTIVE

    def card_violations(self) -> List[Violation]:
        """Card-level invariant problems; empty when the card is consistent."""
        problems: List[Violation] = []
        if self.billing_precision is None or not (MIN_PRECISION <= self.billing_precision <= MAX_PRECISION):
            problems.append(Violation(None, "billing_precision", self.billing_precision,
                                      f"Billing precision must be between {MIN_PRECISION} and {MAX_PRECISION}"))
        if self.is_carrier:
            if self.parent_id is not None:
                problems.append(Violation(None, "parent", self.parent_id, "A carrier card cannot have a parent"))
        elif self.is_customer:
            if self.tech_prefix:
                problems.append(Violation(None, "tech_prefix", self.tech_prefix,
                                          "Tech prefix is only valid on carrier cards"))
            if self.parent_id is not None:
                parent = self.parent
                if parent.card_type != CardType.CARRIER:
                    problems.append(Violation(None, "parent", parent.code, "Parent must be a carrier card"))
                if parent.currency != self.currency:
                    problems.append(Violation(None, "currency", self.currency,
                                              f"Currency must match parent card ({parent.currency})"))
                if parent.direction != self.direction:
                    problems.append(Violation(None, "direction", self.direction,
                                              f"Direction must match parent card ({parent.direction})"))
        else:
            problems.append(Violation(None, "card_type", self.card_type, "Card type must be customer or carrier"))
        return problems

    def clean(self):
        self.currency = (self.currency or "").upper()
        problems = self.card_violations()
        if problems:
            raise ValidationError({p.field: p.message for p in problems})


class RateRevision(models.Model):
    """An immutable snapshot of one card's entries."""
    id = models.BigAutoField(primary_key=True)
    card = models.ForeignKey(RateCard, on_delete=models.PROTECT, related_name="revisions")
    revision_no = models.PositiveIntegerField()
    created_at = models.DateTimeField(default=timezone.now)
    effective_at = models.DateTimeField(blank=True, null=True)
    origin = models.CharField(max_length=16, choices=RevisionOrigin.CHOICES, default=RevisionOrigin.UPLOAD)
    # Derived revisions: which parent revision and which rule set produced them
    source_revision = models.ForeignKey(
        "self", on_delete=models.PROTECT, related_name="derived_revisions", blank=True, null=True,
    )
    rule_set_digest = models.CharField(max_length=64, blank=True, default="")
    rolled_back_from = models.PositiveIntegerField(blank=True, null=True)

    class Meta:
        db_table = "rate_revisions"
        ordering = ["-revision_no"]
        constraints = [
            models.UniqueConstraint(fields=["card", "revision_no"], name="rate_revisions_card_revision_unique"),
        ]
        indexes = [
            models.Index(fields=["card", "-revision_no"], name="rate_revisions_card_no_idx"),
        ]

    def __str__(self):
        return f"{self.card.code} r{self.revision_no}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Rate revisions are immutable; publish a new revision instead.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Rate revisions are append-only and cannot be deleted.")

    def is_effective(self, at) -> bool:
        return self.effective_at is None or self.effective_at <= at


class RateEntry(models.Model):
    id = models.BigAutoField(primary_key=True)
    revision = models.ForeignKey(RateRevision, on_delete=models.PROTECT, related_name="entries")
    prefix = models.CharField(max_length=15)
    destination = models.CharField(max_length=255, blank=True, default="")
    rate = models.DecimalField(max_digits=18, decimal_places=8)
    connection_fee = models.DecimalField(max_digits=18, decimal_places=8, default=0)
    billing_increment = models.PositiveIntegerField(default=60)
    min_duration = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=16, choices=EntryStatus.CHOICES, default=EntryStatus.ACTIVE)

    class Meta:
        db_table = "rate_entries"
        ordering = ["prefix"]
        constraints = [
            models.UniqueConstraint(fields=["revision", "prefix"], name="rate_entries_revision_prefix_unique"),
        ]

    def __str__(self):
        return f"{self.prefix} {self.destination} @ {self.rate}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValidationError("Rate entries belong to an immutable revision and cannot be modified.")
        return super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Rate entries belong to an immutable revision and cannot be deleted.")

    def to_data(self) -> RateEntryData:
        return RateEntryData(
            prefix=self.prefix,
            destination=self.destination,
            rate=self.rate,
            connection_fee=self.connection_fee,
            billing_increment=self.billing_increment,
            min_duration=self.min_duration,
            status=self.status,
        )


class ProfitRule(models.Model):
    id = models.BigAutoField(primary_key=True)
    card = models.ForeignKey(RateCard, on_delete=models.CASCADE, related_name="profit_rules")
    position = models.PositiveIntegerField(default=0)
    # Empty string is the catch-all
    match_prefix = models.CharField(max_length=15, blank=True, default="")
    profit_type = models.CharField(max_length=16, choices=ProfitType.CHOICES, default=ProfitType.PERCENTAGE)
    # percentage: multiplier (0.15 = 15%); fixed: absolute currency amount
    profit_value = models.DecimalField(max_digits=14, decimal_places=8)
    apply_to = models.CharField(max_length=16, choices=ApplyTo.CHOICES, default=ApplyTo.ALL)
    status = models.CharField(max_length=16, choices=RuleStatus.CHOICES, default=RuleStatus.ACTIVE)
    bypass_assurance = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "profit_rules"
        ordering = ["position", "id"]

    def __str__(self):
        return f"^{self.match_prefix} {self.profit_type} {self.profit_value} ({self.apply_to})"

    def to_data(self) -> ProfitRuleData:
        return ProfitRuleData(
            match_prefix=self.match_prefix,
            profit_type=self.profit_type,
            profit_value=self.profit_value,
            apply_to=self.apply_to,
            status=self.status,
            bypass_assurance=self.bypass_assurance,
        )
