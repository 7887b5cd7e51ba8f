from __future__ import annotations

import logging

from rest_framework import generics, status, views
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from .models import ProfitRule, RateCard
from .serializers import (
    CardStatusSerializer,
    ProfitRuleSerializer,
    PublishRevisionSerializer,
    RateCardCreateSerializer,
    RateCardSerializer,
    RateEntrySerializer,
    RebuildStaleSerializer,
    RevisionInfoSerializer,
    RollbackSerializer,
)
from .services import engine
from .services.errors import (
    CardNotFound,
    ConcurrencyError,
    ConfigurationError,
    DependencyError,
    PreconditionError,
    RateEngineError,
    RateNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ConfigurationError: status.HTTP_400_BAD_REQUEST,
    DependencyError: status.HTTP_409_CONFLICT,
    PreconditionError: status.HTTP_409_CONFLICT,
    ConcurrencyError: status.HTTP_409_CONFLICT,
    RateNotFound: status.HTTP_404_NOT_FOUND,
    CardNotFound: status.HTTP_404_NOT_FOUND,
}


def error_response(exc: RateEngineError) -> Response:
    code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return Response(exc.as_dict(), status=code)


class EngineAPIView(views.APIView):
    """APIView that turns engine errors into {"detail", "errors"} responses."""
    permission_classes = [IsAuthenticated]

    def handle_exception(self, exc):
        if isinstance(exc, RateEngineError):
            return error_response(exc)
        return super().handle_exception(exc)


class RateCardPagination(PageNumberPagination):
    page_size = 50
    page_size_query_param = "page_size"
    max_page_size = 500


class RateCardListCreateView(EngineAPIView, generics.ListAPIView):
    serializer_class = RateCardSerializer
    pagination_class = RateCardPagination

    def get_queryset(self):
        qs = RateCard.objects.select_related("parent").order_by("code")
        params = self.request.query_params
        if params.get("card_type"):
            qs = qs.filter(card_type=params["card_type"])
        if params.get("status"):
            qs = qs.filter(status=params["status"])
        if params.get("parent"):
            qs = qs.filter(parent_id=params["parent"])
        return qs

    def post(self, request):
        ser = RateCardCreateSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        card = engine.create_card(**ser.validated_data)
        return Response(RateCardSerializer(card).data, status=status.HTTP_201_CREATED)


class RateCardDetailView(EngineAPIView):
    def get(self, request, card_id):
        card = engine.get_card(card_id)
        return Response(RateCardSerializer(card).data)


class CardStatusView(EngineAPIView):
    def get(self, request, card_id):
        return Response(CardStatusSerializer(engine.get_card_status(card_id)).data)


class CardDeactivateView(EngineAPIView):
    def post(self, request, card_id):
        info = engine.deactivate_card(card_id)
        return Response(CardStatusSerializer(info).data)


class CardReactivateView(EngineAPIView):
    def post(self, request, card_id):
        info = engine.reactivate_card(card_id)
        return Response(CardStatusSerializer(info).data)


class RevisionListCreateView(EngineAPIView):
    """GET lists revisions newest first; POST publishes a carrier revision."""

    def get(self, request, card_id):
        infos = engine.list_revisions(card_id)
        return Response(RevisionInfoSerializer(infos, many=True).data)

    def post(self, request, card_id):
        ser = PublishRevisionSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        revision_id = engine.publish_carrier_revision(
            card_id, ser.rate_entries(), ser.validated_data.get("effective_at"),
        )
        info = engine.describe_revision(revision_id)
        logger.info("Published r%d on card %s via API", info.revision_no, card_id)
        return Response(RevisionInfoSerializer(info).data, status=status.HTTP_201_CREATED)


class RevisionDetailView(EngineAPIView):
    def get(self, request, card_id, revision_no=None):
        snap = engine.get_revision_snapshot(card_id, revision_no)
        return Response({
            "revision": RevisionInfoSerializer(snap.info).data,
            "entries": RateEntrySerializer(snap.entries, many=True).data,
        })


class DeriveView(EngineAPIView):
    def post(self, request, card_id):
        revision_id = engine.derive_customer_card(card_id)
        info = engine.describe_revision(revision_id)
        return Response(
            {"revision_id": revision_id, "revision": RevisionInfoSerializer(info).data},
            status=status.HTTP_201_CREATED,
        )


class RollbackView(EngineAPIView):
    def post(self, request, card_id):
        ser = RollbackSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        revision_id = engine.rollback(card_id, ser.validated_data["revision_no"])
        info = engine.describe_revision(revision_id)
        return Response(
            {"revision_id": revision_id, "revision": RevisionInfoSerializer(info).data},
            status=status.HTTP_201_CREATED,
        )


class RateLookupView(EngineAPIView):
    def get(self, request, card_id):
        number = request.query_params.get("number")
        if not number:
            return Response({"detail": "number is required", "errors": []}, status=status.HTTP_400_BAD_REQUEST)
        entry = engine.rate_lookup(card_id, number)
        return Response(RateEntrySerializer(entry).data)


class ProfitRulesView(EngineAPIView):
    """GET the card's rules; PUT replaces the whole set."""

    def get(self, request, card_id):
        card = engine.get_card(card_id)
        rules = ProfitRule.objects.filter(card=card).order_by("position", "id")
        return Response(ProfitRuleSerializer(rules, many=True).data)

    def put(self, request, card_id):
        ser = ProfitRuleSerializer(data=request.data, many=True)
        ser.is_valid(raise_exception=True)
        rules = [ProfitRuleSerializer.to_rule(attrs) for attrs in ser.validated_data]
        created = engine.replace_profit_rules(card_id, rules)
        return Response(ProfitRuleSerializer(created, many=True).data)


class RebuildStaleView(EngineAPIView):
    def post(self, request):
        ser = RebuildStaleSerializer(data=request.data)
        ser.is_valid(raise_exception=True)
        report = engine.rebuild_stale_cards(
            parent_id=ser.validated_data.get("parent_id"),
            max_workers=ser.validated_data.get("max_workers"),
        )
        return Response({
            "rebuilt": {str(k): v for k, v in report.rebuilt.items()},
            "failed": {str(k): v for k, v in report.failed.items()},
        })
