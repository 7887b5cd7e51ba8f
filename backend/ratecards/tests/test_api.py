from decimal import Decimal

import pytest
from rest_framework.test import APIClient

from ..dataclasses import CardStatus, CardType
from ..models import RateCard

pytestmark = pytest.mark.django_db

BASE = "/api/rate-cards/"


def _dec(x) -> Decimal:
    return Decimal(str(x))


def test_requires_authentication(carrier):
    resp = APIClient().get(f"{BASE}{carrier.pk}/status/")
    assert resp.status_code in (401, 403)


def test_create_and_list_cards(api_client):
    resp = api_client.post(BASE, {"code": "CARR", "card_type": CardType.CARRIER, "currency": "eur"}, format="json")
    assert resp.status_code == 201, resp.data
    carrier_id = resp.data["id"]
    assert resp.data["currency"] == "EUR"

    resp = api_client.post(
        BASE,
        {"code": "CUST", "card_type": CardType.CUSTOMER, "currency": "EUR", "parent_id": carrier_id},
        format="json",
    )
    assert resp.status_code == 201, resp.data
    assert resp.data["status"] == CardStatus.STALE
    assert resp.data["parent_code"] == "CARR"

    resp = api_client.get(BASE, {"card_type": CardType.CUSTOMER})
    assert resp.status_code == 200
    assert [c["code"] for c in resp.data["results"]] == ["CUST"]


def test_create_card_reports_every_problem(api_client, carrier):
    resp = api_client.post(
        BASE,
        {"code": "BAD", "card_type": CardType.CUSTOMER, "currency": "GBP", "parent_id": carrier.pk,
         "tech_prefix": "77"},
        format="json",
    )
    assert resp.status_code == 400
    assert {e["field"] for e in resp.data["errors"]} == {"currency", "tech_prefix"}
    assert resp.data["detail"] == "Invalid rate card"


def test_full_cycle(api_client, carrier):
    resp = api_client.post(BASE, {"code": "CUST", "card_type": CardType.CUSTOMER, "parent_id": carrier.pk},
                           format="json")
    card_id = resp.data["id"]

    resp = api_client.put(f"{BASE}{card_id}/profit-rules/", [
        {"match_prefix": "", "profit_type": "percentage", "profit_value": "0.10"},
        {"match_prefix": "44", "profit_type": "fixed", "profit_value": "0.0050", "apply_to": "perMinute"},
    ], format="json")
    assert resp.status_code == 200, resp.data
    assert [r["match_prefix"] for r in resp.data] == ["", "44"]

    resp = api_client.post(f"{BASE}{card_id}/derive/")
    assert resp.status_code == 201, resp.data
    assert resp.data["revision"]["revision_no"] == 1
    assert resp.data["revision"]["origin"] == "derivation"

    resp = api_client.get(f"{BASE}{card_id}/lookup/", {"number": "+44 20 7946 0000"})
    assert resp.status_code == 200
    assert _dec(resp.data["rate"]) == Decimal("0.0300")
    assert resp.data["prefix"] == "44"

    resp = api_client.get(f"{BASE}{card_id}/status/")
    assert resp.data["status"] == CardStatus.ACTIVE
    assert resp.data["revision_count"] == 1
    assert resp.data["active_revision_no"] == 1

    resp = api_client.get(f"{BASE}{card_id}/revisions/active/")
    assert resp.status_code == 200
    assert {e["prefix"]: _dec(e["rate"]) for e in resp.data["entries"]} == {
        "1": Decimal("0.0132"), "44": Decimal("0.0300"),
    }


def test_publish_revision_and_fan_out(api_client, derived_customer, carrier):
    resp = api_client.post(f"{BASE}{carrier.pk}/revisions/", {
        "entries": [
            {"prefix": "+1", "rate": "0.0130", "billing_increment": "6"},
            {"prefix": "44", "rate": "0.0260", "connection_fee": "0.01", "billing_increment": "30/6"},
        ],
    }, format="json")
    assert resp.status_code == 201, resp.data
    assert resp.data["revision_no"] == 2
    assert resp.data["entry_count"] == 2

    resp = api_client.get(f"{BASE}{carrier.pk}/revisions/2/")
    entries = {e["prefix"]: e for e in resp.data["entries"]}
    assert (entries["1"]["billing_increment"], entries["1"]["min_duration"]) == (6, 0)
    assert (entries["44"]["billing_increment"], entries["44"]["min_duration"]) == (6, 30)

    assert RateCard.objects.get(pk=derived_customer.pk).status == CardStatus.STALE

    resp = api_client.get(f"{BASE}{carrier.pk}/revisions/")
    assert [r["revision_no"] for r in resp.data] == [2, 1]


def test_publish_reports_every_bad_entry(api_client, carrier):
    resp = api_client.post(f"{BASE}{carrier.pk}/revisions/", {
        "entries": [
            {"prefix": "1", "rate": "0.01"},
            {"prefix": "1", "rate": "0.02"},
            {"prefix": "44", "rate": "-1"},
        ],
    }, format="json")
    assert resp.status_code == 400
    assert [(e["row"], e["field"]) for e in resp.data["errors"]] == [(2, "prefix"), (3, "rate")]


def test_bad_billing_increment_is_rejected(api_client, carrier):
    resp = api_client.post(f"{BASE}{carrier.pk}/revisions/", {
        "entries": [{"prefix": "1", "rate": "0.01", "billing_increment": "45/15"}],
    }, format="json")
    assert resp.status_code == 400


@pytest.mark.parametrize("path, method, expected", [
    ("derive/", "post", 409),
    ("lookup/?number=44", "get", 409),
])
def test_inactive_card_conflicts(api_client, derived_customer, path, method, expected):
    assert api_client.post(f"{BASE}{derived_customer.pk}/deactivate/").data["status"] == CardStatus.INACTIVE
    resp = getattr(api_client, method)(f"{BASE}{derived_customer.pk}/{path}")
    assert resp.status_code == expected
    assert resp.data["errors"][0]["field"] == "status"


def test_reactivate(api_client, derived_customer):
    api_client.post(f"{BASE}{derived_customer.pk}/deactivate/")
    resp = api_client.post(f"{BASE}{derived_customer.pk}/reactivate/")
    assert resp.status_code == 200
    assert resp.data["status"] == CardStatus.ACTIVE


def test_derive_without_catch_all_is_bad_request(api_client, carrier):
    resp = api_client.post(BASE, {"code": "C", "card_type": CardType.CUSTOMER, "parent_id": carrier.pk},
                           format="json")
    resp = api_client.post(f"{BASE}{resp.data['id']}/derive/")
    assert resp.status_code == 400
    assert resp.data["errors"][0]["row"] is None


def test_ambiguous_rules_are_rejected(api_client, customer):
    resp = api_client.put(f"{BASE}{customer.pk}/profit-rules/", [
        {"match_prefix": "", "profit_type": "percentage", "profit_value": "0.10"},
        {"match_prefix": "44", "profit_type": "fixed", "profit_value": "0.01"},
        {"match_prefix": "44", "profit_type": "fixed", "profit_value": "0.02"},
    ], format="json")
    assert resp.status_code == 400
    assert resp.data["errors"][0]["row"] == 3


def test_lookup_not_found(api_client, derived_customer):
    resp = api_client.get(f"{BASE}{derived_customer.pk}/lookup/", {"number": "33123"})
    assert resp.status_code == 404
    resp = api_client.get(f"{BASE}{derived_customer.pk}/lookup/")
    assert resp.status_code == 400


def test_unknown_card_is_404(api_client):
    assert api_client.get(f"{BASE}987654/status/").status_code == 404
    assert api_client.post(f"{BASE}987654/derive/").status_code == 404


def test_rollback(api_client, carrier):
    api_client.post(f"{BASE}{carrier.pk}/revisions/", {"entries": [{"prefix": "1", "rate": "0.09"}]}, format="json")
    resp = api_client.post(f"{BASE}{carrier.pk}/rollback/", {"revision_no": 1}, format="json")
    assert resp.status_code == 201, resp.data
    assert resp.data["revision"]["revision_no"] == 3
    assert resp.data["revision"]["rolled_back_from"] == 1
    resp = api_client.post(f"{BASE}{carrier.pk}/rollback/", {"revision_no": 12}, format="json")
    assert resp.status_code == 400


def test_rebuild_stale(api_client, derived_customer, carrier):
    api_client.post(f"{BASE}{carrier.pk}/revisions/", {"entries": [{"prefix": "1", "rate": "0.02"}]}, format="json")
    resp = api_client.post(f"{BASE}rebuild-stale/", {}, format="json")
    assert resp.status_code == 200
    assert list(resp.data["rebuilt"]) == [str(derived_customer.pk)]
    assert resp.data["failed"] == {}
