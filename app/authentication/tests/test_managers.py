"""
Tests for UserManager.
"""

import pytest

from authentication.models import User, UserRole


@pytest.mark.django_db
class TestUserManager:
    """Tests for create_user / create_superuser."""

    def test_create_user_normalizes_email(self):
        user = User.objects.create_user(email="Person@EXAMPLE.COM", password="pw12345!")
        assert user.email == "Person@example.com"
        assert user.check_password("pw12345!")

    def test_create_user_requires_email(self):
        with pytest.raises(ValueError):
            User.objects.create_user(email="", password="pw")

    def test_create_user_without_password_is_unusable(self):
        user = User.objects.create_user(email="nopw@example.com")
        assert user.has_usable_password() is False

    def test_create_user_keeps_role_and_names(self):
        user = User.objects.create_user(
            email="pl@example.com",
            password="pw12345!",
            role=UserRole.PARALEGAL,
            first_name="Dana",
        )
        assert user.role == UserRole.PARALEGAL
        assert user.first_name == "Dana"

    def test_create_superuser_is_admin(self):
        user = User.objects.create_superuser(email="ops@example.com", password="pw12345!")
        assert user.is_staff is True
        assert user.is_superuser is True
        assert user.role == UserRole.ADMIN

    def test_create_superuser_rejects_non_staff(self):
        with pytest.raises(ValueError):
            User.objects.create_superuser(
                email="ops@example.com", password="pw", is_staff=False
            )
