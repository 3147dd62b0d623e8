"""
Permission classes for the escrow API.

- IsPlatformAdmin: admin role or Django staff
- IsAttorney / IsParalegal: marketplace role checks

Case-level ownership (the attorney of this case, a party to this case) is
enforced in the service layer, which raises PermissionDeniedError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rest_framework import permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


class IsPlatformAdmin(permissions.BasePermission):
    """Allows access only to platform administrators."""

    message = "Administrator access required."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_platform_admin)


class IsAttorney(permissions.BasePermission):
    message = "Only attorneys can perform this action."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_attorney)


class IsParalegal(permissions.BasePermission):
    message = "Only paralegals can perform this action."

    def has_permission(self, request: Request, view: APIView) -> bool:
        user = request.user
        return bool(user and user.is_authenticated and user.is_paralegal)
