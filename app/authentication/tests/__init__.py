"""
Tests for authentication app.

- test_models.py: User role helpers
- test_managers.py: UserManager creation rules
- test_views.py: token and current-user endpoints
"""
