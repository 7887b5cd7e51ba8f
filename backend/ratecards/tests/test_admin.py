from django.contrib.auth import get_user_model
from django.test import TestCase
from django.urls import reverse

from ..dataclasses import CardStatus, CardType, ProfitType
from ..models import RateCard
from ..services import engine
from .factories import entry, rule


class RateCardAdminTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.admin = User.objects.create_superuser(username="admin", email="admin@example.com", password="pass")
        self.client.force_login(self.admin)
        self.carrier = engine.create_card("CARRIER-ADM", CardType.CARRIER)
        engine.publish_carrier_revision(self.carrier.pk, [entry("1", "0.0120")])
        self.customer = engine.create_card("CUST-ADM", CardType.CUSTOMER, parent_id=self.carrier.pk)
        engine.replace_profit_rules(self.customer.pk, [rule("", ProfitType.PERCENTAGE, "0.1")])

    def test_changelist_renders(self):
        resp = self.client.get(reverse("admin:ratecards_ratecard_changelist"))
        self.assertEqual(resp.status_code, 200)
        self.assertContains(resp, "CUST-ADM")

    def test_revisions_are_read_only(self):
        resp = self.client.get(reverse("admin:ratecards_raterevision_add"))
        self.assertEqual(resp.status_code, 403)

    def test_rebuild_action(self):
        resp = self.client.post(
            reverse("admin:ratecards_ratecard_changelist"),
            {"action": "rebuild_selected", "_selected_action": [self.customer.pk, self.carrier.pk]},
        )
        self.assertEqual(resp.status_code, 302)
        self.assertEqual(RateCard.objects.get(pk=self.customer.pk).status, CardStatus.ACTIVE)
        self.assertEqual(RateCard.objects.get(pk=self.customer.pk).revision_count, 1)
