"""
Small request helpers shared across apps.

Usage:
    from core.helpers import get_client_ip, get_user_agent

    AuditService.record(..., ip=get_client_ip(request))
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest

# Audit rows keep at most this much of the User-Agent header
USER_AGENT_MAX_LENGTH = 512


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    The first address in X-Forwarded-For is the original client.
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        ip = x_forwarded_for.split(",")[0].strip()
    else:
        ip = request.META.get("REMOTE_ADDR", "")
    return ip


def get_user_agent(request: HttpRequest) -> str:
    return request.META.get("HTTP_USER_AGENT", "")[:USER_AGENT_MAX_LENGTH]
