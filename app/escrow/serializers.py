"""
Serializers for the escrow API.

Request serializers validate input shape only; business rules (allowed
transitions, amounts against the case total) live in the services.
"""

from __future__ import annotations

from rest_framework import serializers

from escrow.models import Case, CaseFile, CaseMessage, Dispute, DisputeSettlement, Payout
from escrow.services.case_service import resolve_case_state
from escrow.state_machines import CaseStatus, SettlementAction


# =============================================================================
# Model Serializers
# =============================================================================


class CaseSerializer(serializers.ModelSerializer):
    """Case with its display state."""

    state = serializers.SerializerMethodField()

    class Meta:
        model = Case
        fields = [
            "id",
            "title",
            "attorney",
            "paralegal",
            "status",
            "state",
            "total_amount_cents",
            "locked_total_amount_cents",
            "currency",
            "escrow_status",
            "payment_released",
            "archived",
            "completed_at",
            "closed_at",
            "purge_scheduled_for",
            "purged_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields

    def get_state(self, obj: Case) -> str:
        return resolve_case_state(obj)


class DisputeSerializer(serializers.ModelSerializer):
    class Meta:
        model = Dispute
        fields = [
            "id",
            "case",
            "raised_by",
            "message",
            "status",
            "admin_notes",
            "resolved_at",
            "created_at",
        ]
        read_only_fields = fields


class DisputeSettlementSerializer(serializers.ModelSerializer):
    class Meta:
        model = DisputeSettlement
        fields = [
            "id",
            "case",
            "dispute",
            "action",
            "status",
            "gross_amount_cents",
            "refund_amount_cents",
            "payout_amount_cents",
            "fee_amount_cents",
            "refund_id",
            "transfer_id",
            "settled_at",
            "settled_by",
        ]
        read_only_fields = fields


class PayoutSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payout
        fields = [
            "id",
            "case",
            "paralegal",
            "amount_paid_cents",
            "gross_amount_cents",
            "currency",
            "transfer_id",
            "created_at",
        ]
        read_only_fields = fields


class CaseFileSerializer(serializers.ModelSerializer):
    class Meta:
        model = CaseFile
        fields = ["id", "original_name", "mime_type", "size_bytes", "uploaded_by", "created_at"]
        read_only_fields = fields


class CaseMessageSerializer(serializers.ModelSerializer):
    class Meta:
        model = CaseMessage
        fields = ["id", "sender", "body", "attachment_name", "created_at"]
        read_only_fields = fields


# =============================================================================
# Request Serializers
# =============================================================================


class CaseStatusUpdateSerializer(serializers.Serializer):
    """Raw status string; normalized by CaseStatus.normalize()."""

    status = serializers.CharField(max_length=50)

    def validate_status(self, value: str) -> str:
        return CaseStatus.normalize(value).value


class AssignParalegalSerializer(serializers.Serializer):
    paralegal_id = serializers.CharField(max_length=64)


class ArchiveFlagSerializer(serializers.Serializer):
    archived = serializers.BooleanField()


class DisputeCreateSerializer(serializers.Serializer):
    message = serializers.CharField(max_length=5000, trim_whitespace=True)


class AdminNotesSerializer(serializers.Serializer):
    admin_notes = serializers.CharField(max_length=10000, allow_blank=True)


class SettleDisputeSerializer(serializers.Serializer):
    """
    Settlement request.

    gross_amount_cents is required for release_partial and ignored
    otherwise.
    """

    action = serializers.ChoiceField(choices=SettlementAction.choices)
    gross_amount_cents = serializers.IntegerField(required=False, allow_null=True, min_value=1)

    def validate(self, attrs: dict) -> dict:
        if attrs["action"] == SettlementAction.RELEASE_PARTIAL and not attrs.get(
            "gross_amount_cents"
        ):
            raise serializers.ValidationError(
                {"gross_amount_cents": ["Required for a partial release."]}
            )
        return attrs
