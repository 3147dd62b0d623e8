"""
URL configuration for the escrow app.

Mounted at /api/v1/escrow/ (see config/urls.py).
"""

from django.urls import path

from escrow import views
from escrow.webhooks.views import stripe_webhook

app_name = "escrow"

urlpatterns = [
    # Webhooks
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    # Cases
    path("cases/<uuid:case_id>/fund/", views.FundCaseView.as_view(), name="case_fund"),
    path("cases/<uuid:case_id>/release/", views.ReleaseFundsView.as_view(), name="case_release"),
    path("cases/<uuid:case_id>/close/", views.CloseCaseView.as_view(), name="case_close"),
    path(
        "cases/<uuid:case_id>/workspace/",
        views.CaseWorkspaceView.as_view(),
        name="case_workspace",
    ),
    path("cases/<uuid:case_id>/state/", views.CaseStateView.as_view(), name="case_state"),
    # Disputes
    path(
        "cases/<uuid:case_id>/disputes/",
        views.DisputeCreateView.as_view(),
        name="dispute_create",
    ),
    path(
        "cases/<uuid:case_id>/disputes/<uuid:dispute_id>/admin-notes/",
        views.DisputeAdminNotesView.as_view(),
        name="dispute_admin_notes",
    ),
    path(
        "cases/<uuid:case_id>/disputes/<uuid:dispute_id>/settle/",
        views.SettleDisputeView.as_view(),
        name="dispute_settle",
    ),
    # Admin
    path(
        "admin/cases/<uuid:case_id>/status/",
        views.AdminCaseStatusView.as_view(),
        name="admin_case_status",
    ),
    path(
        "admin/cases/<uuid:case_id>/assign/",
        views.AdminAssignParalegalView.as_view(),
        name="admin_case_assign",
    ),
    path(
        "admin/cases/<uuid:case_id>/archive/",
        views.AdminArchiveCaseView.as_view(),
        name="admin_case_archive",
    ),
    path("admin/disputes/", views.AdminOpenDisputesView.as_view(), name="admin_disputes"),
    # Connect
    path("connect/onboard/", views.ConnectOnboardingView.as_view(), name="connect_onboard"),
]
