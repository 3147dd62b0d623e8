"""
Authentication models.

- UserRole: Marketplace role of an account
- User: Custom user model with email-based authentication

Related files:
    - managers.py: Custom user manager for email-based creation
    - escrow.models: Cases reference users as attorney / paralegal
"""

from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.db import models

from authentication.managers import UserManager


class UserRole(models.TextChoices):
    """
    Marketplace role of a user account.

    ATTORNEY: Posts cases and funds escrow
    PARALEGAL: Is hired onto cases and receives payouts
    ADMIN: Resolves disputes and manages case status
    """

    ATTORNEY = "attorney", "Attorney"
    PARALEGAL = "paralegal", "Paralegal"
    ADMIN = "admin", "Admin"


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Fields:
        email: Primary identifier, unique, used for login
        role: Marketplace role (attorney, paralegal, admin)
        first_name / last_name: Display name used in case archives
        is_active: Whether the user account is active
        is_staff: Whether the user can access Django admin
        date_joined: When the user account was created

    Usage:
        attorney = User.objects.create_user(
            email="counsel@example.com",
            password="securepassword",
            role=UserRole.ATTORNEY,
        )
    """

    email = models.EmailField(
        unique=True,
        db_index=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    role = models.CharField(
        max_length=20,
        choices=UserRole.choices,
        default=UserRole.ATTORNEY,
        db_index=True,
        help_text="Marketplace role of this account",
    )
    first_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Given name",
    )
    last_name = models.CharField(
        max_length=150,
        blank=True,
        help_text="Family name",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user account is active. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )

    date_joined = models.DateTimeField(
        auto_now_add=True,
        help_text="When the user account was created",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the user record was last modified",
    )

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email

    def get_full_name(self):
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email

    def get_short_name(self):
        return self.first_name or self.email.split("@")[0]

    @property
    def is_attorney(self) -> bool:
        return self.role == UserRole.ATTORNEY

    @property
    def is_paralegal(self) -> bool:
        return self.role == UserRole.PARALEGAL

    @property
    def is_platform_admin(self) -> bool:
        """Admins by role, plus Django staff accounts."""
        return self.role == UserRole.ADMIN or self.is_staff
