import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from ratecards.dataclasses import CardType, ProfitType
from ratecards.services import engine
from ratecards.tests.factories import entry, rule


@pytest.fixture
def carrier(db):
    """Carrier card with the two-entry sheet used across the suite (r1)."""
    card = engine.create_card("CARRIER-A", CardType.CARRIER, name="Carrier A", currency="USD")
    engine.publish_carrier_revision(card.pk, [entry("1", "0.0120"), entry("44", "0.0250")])
    card.refresh_from_db()
    return card


@pytest.fixture
def customer(carrier):
    """Customer card on `carrier` with a 10% catch-all and a fixed +0.0050 on 44. Not yet derived."""
    card = engine.create_card("CUST-A", CardType.CUSTOMER, parent_id=carrier.pk, billing_precision=4)
    engine.replace_profit_rules(card.pk, [
        rule("", ProfitType.PERCENTAGE, "0.10"),
        rule("44", ProfitType.FIXED, "0.0050"),
    ])
    card.refresh_from_db()
    return card


@pytest.fixture
def derived_customer(customer):
    engine.derive_customer_card(customer.pk)
    customer.refresh_from_db()
    return customer


@pytest.fixture
def api_client(db):
    User = get_user_model()
    user = User.objects.create_user(username="rates_admin", email="rates@example.com", password="pass", is_staff=True)
    client = APIClient()
    client.force_authenticate(user=user)
    return client
