"""
URL configuration for the Django application.

The `urlpatterns` list routes URLs to views. This is the root URL configuration
that includes all app-specific routes.

URL Structure:
    /                              - ReDoc API documentation
    /admin/                        - Django admin interface
    /health/                       - Health check endpoint (for load balancers, Docker)
    /schema/                       - OpenAPI schema (YAML)
    /api/v1/auth/                  - Authentication endpoints (simplejwt)
        token/                     - Obtain access/refresh pair
        token/refresh/             - Refresh access token
        me/                        - Current user
    /api/v1/escrow/                - Escrow endpoints
        webhooks/stripe/           - Stripe webhook endpoint (POST)
        cases/{id}/fund/           - Create escrow payment intent
        cases/{id}/release/        - Release funds to the paralegal
        cases/{id}/close/          - Close and archive a completed case
        cases/{id}/workspace/      - Work gate (funded cases only)
        cases/{id}/state/          - Case with display state
        cases/{id}/disputes/       - Raise a dispute
        cases/{id}/disputes/{pk}/admin-notes/ - Admin notes
        cases/{id}/disputes/{pk}/settle/      - Settle a dispute
        admin/cases/{id}/status/   - Admin status change
        admin/cases/{id}/assign/   - Admin paralegal assignment
        admin/cases/{id}/archive/  - Admin archive flag
        admin/disputes/            - Open disputes
        connect/onboard/           - Paralegal payout onboarding link

For more information, see:
https://docs.djangoproject.com/en/5.2/topics/http/urls/
"""

from django.contrib import admin
from django.urls import include, path
from drf_spectacular.views import SpectacularAPIView, SpectacularRedocView

from core.views import health_check

# =============================================================================
# API v1 Routes
# =============================================================================
# All routes here are prefixed with /api/v1/ automatically
api_v1_patterns = [
    # Authentication (simplejwt)
    path("auth/", include("authentication.urls")),
    # Escrow
    path("escrow/", include("escrow.urls")),
]

urlpatterns = [
    # Documentation
    path("", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
    path("schema/", SpectacularAPIView.as_view(), name="schema"),
    # Admin
    path("admin/", admin.site.urls),
    # Health check (Docker, Kubernetes, load balancers)
    path("health/", health_check, name="health_check"),
    # API v1
    path("api/v1/", include(api_v1_patterns)),
]

# =============================================================================
# Admin Site Customization
# =============================================================================
admin.site.site_header = "Escrow Admin"
admin.site.site_title = "Escrow Admin Portal"
admin.site.index_title = "Case escrow administration"
