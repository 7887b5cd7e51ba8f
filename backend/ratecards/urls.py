from django.urls import path

from .views import (
    CardDeactivateView,
    CardReactivateView,
    CardStatusView,
    DeriveView,
    ProfitRulesView,
    RateCardDetailView,
    RateCardListCreateView,
    RateLookupView,
    RebuildStaleView,
    RevisionDetailView,
    RevisionListCreateView,
    RollbackView,
)

app_name = 'ratecards'

urlpatterns = [
    path('rate-cards/', RateCardListCreateView.as_view(), name='card-list'),
    path('rate-cards/rebuild-stale/', RebuildStaleView.as_view(), name='rebuild-stale'),
    path('rate-cards/<int:card_id>/', RateCardDetailView.as_view(), name='card-detail'),
    path('rate-cards/<int:card_id>/status/', CardStatusView.as_view(), name='card-status'),
    path('rate-cards/<int:card_id>/deactivate/', CardDeactivateView.as_view(), name='card-deactivate'),
    path('rate-cards/<int:card_id>/reactivate/', CardReactivateView.as_view(), name='card-reactivate'),
    path('rate-cards/<int:card_id>/revisions/', RevisionListCreateView.as_view(), name='revision-list'),
    path('rate-cards/<int:card_id>/revisions/active/', RevisionDetailView.as_view(), name='revision-active'),
    path('rate-cards/<int:card_id>/revisions/<int:revision_no>/', RevisionDetailView.as_view(), name='revision-detail'),
    path('rate-cards/<int:card_id>/derive/', DeriveView.as_view(), name='card-derive'),
    path('rate-cards/<int:card_id>/rollback/', RollbackView.as_view(), name='card-rollback'),
    path('rate-cards/<int:card_id>/lookup/', RateLookupView.as_view(), name='rate-lookup'),
    path('rate-cards/<int:card_id>/profit-rules/', ProfitRulesView.as_view(), name='profit-rules'),
]
