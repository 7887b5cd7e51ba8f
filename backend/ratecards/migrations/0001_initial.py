import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="RateCard",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("code", models.CharField(max_length=64, unique=True)),
                ("name", models.CharField(blank=True, default="", max_length=255)),
                ("card_type", models.CharField(choices=[("customer", "Customer"), ("carrier", "Carrier")], max_length=16)),
                ("currency", models.CharField(default="USD", max_length=3)),
                ("direction", models.CharField(choices=[("termination", "Termination"), ("origination", "Origination")], default="termination", max_length=16)),
                ("billing_precision", models.PositiveSmallIntegerField(
                    default=4,
                    help_text="Decimal digits derived rates are rounded to (2-6)",
                    validators=[django.core.validators.MinValueValidator(2), django.core.validators.MaxValueValidator(6)],
                )),
                ("tech_prefix", models.CharField(blank=True, default="", max_length=32)),
                ("profit_assurance", models.BooleanField(
                    default=True,
                    help_text="Block derived entries that would not exceed their cost instead of publishing them",
                )),
                ("status", models.CharField(choices=[("active", "Active"), ("stale", "Stale"), ("inactive", "Inactive")], default="active", max_length=16)),
                ("revision_count", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("parent", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="children", to="ratecards.ratecard")),
            ],
            options={
                "db_table": "rate_cards",
            },
        ),
        migrations.CreateModel(
            name="RateRevision",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("revision_no", models.PositiveIntegerField()),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("effective_at", models.DateTimeField(blank=True, null=True)),
                ("origin", models.CharField(choices=[("upload", "Upload"), ("derivation", "Derivation"), ("rollback", "Rollback")], default="upload", max_length=16)),
                ("rule_set_digest", models.CharField(blank=True, default="", max_length=64)),
                ("rolled_back_from", models.PositiveIntegerField(blank=True, null=True)),
                ("card", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="revisions", to="ratecards.ratecard")),
                ("source_revision", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="derived_revisions", to="ratecards.raterevision")),
            ],
            options={
                "db_table": "rate_revisions",
                "ordering": ["-revision_no"],
            },
        ),
        migrations.CreateModel(
            name="RateEntry",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("prefix", models.CharField(max_length=15)),
                ("destination", models.CharField(blank=True, default="", max_length=255)),
                ("rate", models.DecimalField(decimal_places=8, max_digits=18)),
                ("connection_fee", models.DecimalField(decimal_places=8, default=0, max_digits=18)),
                ("billing_increment", models.PositiveIntegerField(default=60)),
                ("min_duration", models.PositiveIntegerField(default=0)),
                ("status", models.CharField(choices=[("active", "Active"), ("blocked", "Blocked")], default="active", max_length=16)),
                ("revision", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="entries", to="ratecards.raterevision")),
            ],
            options={
                "db_table": "rate_entries",
                "ordering": ["prefix"],
            },
        ),
        migrations.CreateModel(
            name="ProfitRule",
            fields=[
                ("id", models.BigAutoField(primary_key=True, serialize=False)),
                ("position", models.PositiveIntegerField(default=0)),
                ("match_prefix", models.CharField(blank=True, default="", max_length=15)),
                ("profit_type", models.CharField(choices=[("percentage", "Percentage"), ("fixed", "Fixed")], default="percentage", max_length=16)),
                ("profit_value", models.DecimalField(decimal_places=8, max_digits=14)),
                ("apply_to", models.CharField(choices=[("all", "All"), ("setup", "Setup"), ("perMinute", "Per Minute")], default="all", max_length=16)),
                ("status", models.CharField(choices=[("active", "Active"), ("inactive", "Inactive")], default="active", max_length=16)),
                ("bypass_assurance", models.BooleanField(default=False)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("card", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="profit_rules", to="ratecards.ratecard")),
            ],
            options={
                "db_table": "profit_rules",
                "ordering": ["position", "id"],
            },
        ),
        migrations.AddIndex(
            model_name="ratecard",
            index=models.Index(fields=["card_type", "status"], name="rate_cards_type_status_idx"),
        ),
        migrations.AddIndex(
            model_name="ratecard",
            index=models.Index(fields=["parent", "status"], name="rate_cards_parent_status_idx"),
        ),
        migrations.AddIndex(
            model_name="raterevision",
            index=models.Index(fields=["card", "-revision_no"], name="rate_revisions_card_no_idx"),
        ),
        migrations.AddConstraint(
            model_name="raterevision",
            constraint=models.UniqueConstraint(fields=("card", "revision_no"), name="rate_revisions_card_revision_unique"),
        ),
        migrations.AddConstraint(
            model_name="rateentry",
            constraint=models.UniqueConstraint(fields=("revision", "prefix"), name="rate_entries_revision_prefix_unique"),
        ),
    ]
