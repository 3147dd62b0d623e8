"""
Authentication application.

Holds the email-based User model and its marketplace role (attorney,
paralegal, admin). Login itself is JWT via djangorestframework-simplejwt.

Usage:
    from authentication.models import User, UserRole
"""
