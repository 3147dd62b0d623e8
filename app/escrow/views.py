"""
API views for the escrow app.

Endpoints (mounted under /api/v1/escrow/):
    POST  cases/{id}/fund/                                  Attorney funds escrow
    POST  cases/{id}/release/                               Attorney releases + completes
    POST  cases/{id}/close/                                 Attorney closes + archives
    GET   cases/{id}/workspace/                             Parties, funded cases only
    GET   cases/{id}/state/                                 Parties and admins
    POST  cases/{id}/disputes/                              Party opens dispute
    PATCH cases/{id}/disputes/{dispute_id}/admin-notes/     Admin notes
    POST  cases/{id}/disputes/{dispute_id}/settle/          Admin settlement
    PATCH admin/cases/{id}/status/                          Admin status change
    PATCH admin/cases/{id}/assign/                          Admin assigns paralegal
    PATCH admin/cases/{id}/archive/                         Admin archive flag
    GET   admin/disputes/                                   Admin open disputes
    POST  connect/onboard/                                  Paralegal onboarding link

Service exceptions propagate to core.exception_handler, which renders them
with their own status code (400 / 403 / 404 / 409 / 502).
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import PermissionDeniedError

from escrow.permissions import IsAttorney, IsParalegal, IsPlatformAdmin
from escrow.serializers import (
    AdminNotesSerializer,
    ArchiveFlagSerializer,
    AssignParalegalSerializer,
    CaseFileSerializer,
    CaseMessageSerializer,
    CaseSerializer,
    CaseStatusUpdateSerializer,
    DisputeCreateSerializer,
    DisputeSerializer,
    DisputeSettlementSerializer,
    PayoutSerializer,
    SettleDisputeSerializer,
)
from escrow.services import (
    ArchiveService,
    CaseService,
    ConnectService,
    DisputeService,
    FundingService,
    PayoutService,
    ensure_work_can_begin,
    get_case,
    resolve_case_state,
)


# =============================================================================
# Attorney Case Actions
# =============================================================================


class FundCaseView(APIView):
    """
    Create (or return) the escrow PaymentIntent for a case.

    POST /api/v1/escrow/cases/{id}/fund/
    """

    permission_classes = [IsAuthenticated, IsAttorney]

    @extend_schema(
        operation_id="fund_case",
        summary="Fund case escrow",
        request=None,
        responses={
            200: OpenApiResponse(description="Existing intent returned"),
            201: OpenApiResponse(description="Intent created"),
        },
        tags=["Escrow - Cases"],
    )
    def post(self, request, case_id):
        intent = FundingService.create_escrow_intent(case_id, actor=request.user, request=request)
        return Response(
            {
                "case_id": intent.case_id,
                "intent_id": intent.intent_id,
                "client_secret": intent.client_secret,
                "amount_cents": intent.amount_cents,
                "currency": intent.currency,
            },
            status=status.HTTP_201_CREATED if intent.created else status.HTTP_200_OK,
        )


class ReleaseFundsView(APIView):
    """
    Pay the paralegal out of escrow and complete the case.

    POST /api/v1/escrow/cases/{id}/release/
    """

    permission_classes = [IsAuthenticated, IsAttorney]

    @extend_schema(
        operation_id="release_case_funds",
        summary="Release escrow and complete case",
        request=None,
        responses={200: PayoutSerializer},
        tags=["Escrow - Cases"],
    )
    def post(self, request, case_id):
        result = PayoutService.release_and_complete(case_id, actor=request.user, request=request)
        return Response(
            {
                "ok": True,
                "already_applied": result.already_applied,
                "transfer_id": result.transfer_id,
                "fee_amount_cents": result.fee_amount_cents,
                "payout": PayoutSerializer(result.payout).data,
            }
        )


class CloseCaseView(APIView):
    """
    Close a completed case, archive it and schedule its purge.

    POST /api/v1/escrow/cases/{id}/close/
    """

    permission_classes = [IsAuthenticated, IsAttorney]

    @extend_schema(
        operation_id="close_case",
        summary="Close and archive case",
        request=None,
        responses={200: CaseSerializer},
        tags=["Escrow - Cases"],
    )
    def post(self, request, case_id):
        case = ArchiveService.close_and_archive(case_id, actor=request.user, request=request)
        return Response(CaseSerializer(case).data)


# =============================================================================
# Party Case Views
# =============================================================================


def _get_visible_case(request, case_id):
    case = get_case(case_id)
    if not (case.is_party(request.user) or request.user.is_platform_admin):
        raise PermissionDeniedError(
            "You are not a party to this case",
            details={"case_id": str(case.pk)},
        )
    return case


class CaseWorkspaceView(APIView):
    """
    Messages and files of a case. Available once escrow is funded.

    GET /api/v1/escrow/cases/{id}/workspace/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_case_workspace",
        summary="Get case workspace",
        responses={
            200: OpenApiResponse(description="Messages and files"),
            403: OpenApiResponse(description="Not a party, or payment not secured"),
        },
        tags=["Escrow - Cases"],
    )
    def get(self, request, case_id):
        case = _get_visible_case(request, case_id)
        ensure_work_can_begin(case)
        return Response(
            {
                "case": CaseSerializer(case).data,
                "messages": CaseMessageSerializer(case.messages.all(), many=True).data,
                "files": CaseFileSerializer(case.files.all(), many=True).data,
            }
        )


class CaseStateView(APIView):
    """
    Display state of a case.

    GET /api/v1/escrow/cases/{id}/state/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="get_case_state",
        summary="Get case state",
        tags=["Escrow - Cases"],
    )
    def get(self, request, case_id):
        case = _get_visible_case(request, case_id)
        return Response(
            {
                "case_id": str(case.pk),
                "status": case.status,
                "state": resolve_case_state(case),
                "escrow_status": case.escrow_status,
                "payment_released": case.payment_released,
            }
        )


# =============================================================================
# Dispute Views
# =============================================================================


class DisputeCreateView(APIView):
    """
    Open a dispute on an in-progress case.

    POST /api/v1/escrow/cases/{id}/disputes/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_dispute",
        summary="Open dispute",
        request=DisputeCreateSerializer,
        responses={201: DisputeSerializer},
        tags=["Escrow - Disputes"],
    )
    def post(self, request, case_id):
        serializer = DisputeCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = DisputeService.open_dispute(
            case_id,
            user=request.user,
            message=serializer.validated_data["message"],
            request=request,
        )
        return Response(DisputeSerializer(dispute).data, status=status.HTTP_201_CREATED)


class DisputeAdminNotesView(APIView):
    """
    Edit admin notes on a dispute (allowed after settlement).

    PATCH /api/v1/escrow/cases/{id}/disputes/{dispute_id}/admin-notes/
    """

    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    @extend_schema(
        operation_id="update_dispute_admin_notes",
        summary="Update dispute admin notes",
        request=AdminNotesSerializer,
        responses={200: DisputeSerializer},
        tags=["Escrow - Disputes"],
    )
    def patch(self, request, case_id, dispute_id):
        serializer = AdminNotesSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        dispute = DisputeService.update_admin_notes(
            case_id,
            dispute_id,
            serializer.validated_data["admin_notes"],
            actor=request.user,
            request=request,
        )
        return Response(DisputeSerializer(dispute).data)


class SettleDisputeView(APIView):
    """
    Settle a dispute: refund, release or release_partial.

    POST /api/v1/escrow/cases/{id}/disputes/{dispute_id}/settle/

    Payload:
        action: "refund" | "release" | "release_partial"
        gross_amount_cents: Required for release_partial
    """

    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    @extend_schema(
        operation_id="settle_dispute",
        summary="Settle dispute",
        request=SettleDisputeSerializer,
        responses={
            200: OpenApiResponse(description="Settlement applied (or already applied)"),
            409: OpenApiResponse(description="A different settlement already exists"),
            502: OpenApiResponse(description="Gateway step failed, retry the same action"),
        },
        tags=["Escrow - Disputes"],
    )
    def post(self, request, case_id, dispute_id):
        serializer = SettleDisputeSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        outcome = DisputeService.settle_dispute(
            case_id,
            dispute_id,
            serializer.validated_data["action"],
            serializer.validated_data.get("gross_amount_cents"),
            actor=request.user,
            request=request,
        )
        return Response(
            {
                "ok": True,
                "already_settled": outcome.already_settled,
                "transfer_id": outcome.transfer_id,
                "refund_id": outcome.refund_id,
                "settlement": DisputeSettlementSerializer(outcome.settlement).data,
            }
        )


# =============================================================================
# Admin Views
# =============================================================================


class AdminCaseStatusView(APIView):
    """PATCH /api/v1/escrow/admin/cases/{id}/status/"""

    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    @extend_schema(
        operation_id="admin_update_case_status",
        summary="Update case status",
        request=CaseStatusUpdateSerializer,
        responses={200: CaseSerializer},
        tags=["Escrow - Admin"],
    )
    def patch(self, request, case_id):
        serializer = CaseStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        case = CaseService.update_status(
            case_id,
            serializer.validated_data["status"],
            actor=request.user,
            request=request,
        )
        return Response(CaseSerializer(case).data)


class AdminAssignParalegalView(APIView):
    """PATCH /api/v1/escrow/admin/cases/{id}/assign/"""

    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    @extend_schema(
        operation_id="admin_assign_paralegal",
        summary="Assign paralegal",
        request=AssignParalegalSerializer,
        responses={200: CaseSerializer},
        tags=["Escrow - Admin"],
    )
    def patch(self, request, case_id):
        serializer = AssignParalegalSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        case = CaseService.assign_paralegal(
            case_id,
            serializer.validated_data["paralegal_id"],
            actor=request.user,
            request=request,
        )
        return Response(CaseSerializer(case).data)


class AdminArchiveCaseView(APIView):
    """PATCH /api/v1/escrow/admin/cases/{id}/archive/"""

    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    @extend_schema(
        operation_id="admin_archive_case",
        summary="Set case archived flag",
        request=ArchiveFlagSerializer,
        responses={200: CaseSerializer},
        tags=["Escrow - Admin"],
    )
    def patch(self, request, case_id):
        serializer = ArchiveFlagSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        case = CaseService.set_archived(
            case_id,
            serializer.validated_data["archived"],
            actor=request.user,
            request=request,
        )
        return Response(CaseSerializer(case).data)


class AdminOpenDisputesView(APIView):
    """GET /api/v1/escrow/admin/disputes/"""

    permission_classes = [IsAuthenticated, IsPlatformAdmin]

    @extend_schema(
        operation_id="admin_list_open_disputes",
        summary="List open disputes",
        responses={200: DisputeSerializer(many=True)},
        tags=["Escrow - Admin"],
    )
    def get(self, request):
        disputes = DisputeService.list_open_disputes()
        return Response({"results": DisputeSerializer(disputes, many=True).data})


# =============================================================================
# Connect Views
# =============================================================================


class ConnectOnboardingView(APIView):
    """
    Create a Stripe Connect onboarding link for the current paralegal.

    POST /api/v1/escrow/connect/onboard/
    """

    permission_classes = [IsAuthenticated, IsParalegal]

    @extend_schema(
        operation_id="connect_onboard",
        summary="Start payout onboarding",
        request=None,
        tags=["Escrow - Connect"],
    )
    def post(self, request):
        return Response(ConnectService.create_onboarding_link(request.user, request=request))
