"""
Escrow admin configuration.

Money and status fields are read-only here: status changes go through
CaseStateMachine and money moves through the service layer.
"""

from django.contrib import admin

from escrow.models import (
    AuditLog,
    Case,
    ConnectedAccount,
    Dispute,
    DisputeSettlement,
    Payout,
    PlatformIncome,
    WebhookEvent,
)


@admin.register(Case)
class CaseAdmin(admin.ModelAdmin):
    """
    Admin configuration for Case.

    Status, escrow and payout fields are read-only.
    """

    list_display = [
        "id",
        "title",
        "attorney",
        "paralegal",
        "status",
        "escrow_status",
        "amount_display",
        "archived",
        "created_at",
    ]
    list_filter = ["status", "escrow_status", "archived", "payment_released"]
    search_fields = ["id", "title", "attorney__email", "paralegal__email", "escrow_intent_id"]
    readonly_fields = [
        "id",
        "status",
        "escrow_status",
        "escrow_intent_id",
        "escrow_session_id",
        "payment_intent_id",
        "payment_status",
        "locked_total_amount_cents",
        "payment_released",
        "payout_transfer_id",
        "paid_out_at",
        "completed_at",
        "closed_at",
        "archive_zip_key",
        "archive_ready_at",
        "purge_scheduled_for",
        "purged_at",
        "version",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "title", "description", "attorney", "paralegal", "status"),
            },
        ),
        (
            "Escrow",
            {
                "fields": (
                    "total_amount_cents",
                    "locked_total_amount_cents",
                    "currency",
                    "escrow_status",
                    "escrow_intent_id",
                    "escrow_session_id",
                    "payment_intent_id",
                    "payment_status",
                ),
            },
        ),
        (
            "Payout",
            {
                "fields": ("payment_released", "payout_transfer_id", "paid_out_at"),
            },
        ),
        (
            "Archive",
            {
                "fields": (
                    "archived",
                    "archive_zip_key",
                    "archive_ready_at",
                    "purge_scheduled_for",
                    "purged_at",
                ),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("completed_at", "closed_at", "created_at", "updated_at", "version"),
            },
        ),
    )

    def amount_display(self, obj: Case) -> str:
        """Display the amount formatted as currency."""
        return f"${obj.settlement_amount_cents / 100:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Amount"

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Dispute)
class DisputeAdmin(admin.ModelAdmin):
    list_display = ["id", "case", "raised_by", "status", "created_at", "resolved_at"]
    list_filter = ["status"]
    search_fields = ["id", "case__id", "raised_by__email"]
    readonly_fields = ["id", "case", "raised_by", "message", "status", "resolved_at", "created_at"]
    ordering = ["-created_at"]


@admin.register(DisputeSettlement)
class DisputeSettlementAdmin(admin.ModelAdmin):
    """Settlements are written by DisputeService only."""

    list_display = [
        "id",
        "case",
        "action",
        "status",
        "gross_amount_cents",
        "refund_amount_cents",
        "attempts",
        "settled_at",
    ]
    list_filter = ["action", "status"]
    search_fields = ["id", "case__id", "transfer_id", "refund_id"]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Payout)
class PayoutAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "case",
        "paralegal",
        "amount_paid_cents",
        "gross_amount_cents",
        "transfer_id",
        "created_at",
    ]
    search_fields = ["id", "case__id", "transfer_id", "paralegal__email"]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(PlatformIncome)
class PlatformIncomeAdmin(admin.ModelAdmin):
    list_display = ["id", "case", "fee_amount_cents", "currency", "created_at"]
    search_fields = ["id", "case__id"]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ConnectedAccount)
class ConnectedAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for ConnectedAccount.

    Provides visibility into Stripe Connect account status.
    """

    list_display = [
        "id",
        "user",
        "stripe_account_id",
        "onboarding_status",
        "payouts_enabled",
        "charges_enabled",
        "created_at",
    ]
    list_filter = ["onboarding_status", "payouts_enabled", "charges_enabled"]
    search_fields = ["id", "stripe_account_id", "user__email"]
    readonly_fields = ["id", "created_at", "updated_at", "version"]
    ordering = ["-created_at"]


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "event_id",
        "event_type",
        "status",
        "attempts",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "event_id",
        "event_type",
        "account_id",
        "payload",
        "attempts",
        "last_error",
        "last_attempt_at",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Audit entries are append-only."""

    list_display = ["created_at", "action", "actor", "actor_role", "target_type", "target_id"]
    list_filter = ["action", "actor_role", "target_type"]
    search_fields = ["action", "target_id", "actor__email", "case__id"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False
