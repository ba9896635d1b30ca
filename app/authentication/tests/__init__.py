"""
Tests for authentication app.

This package contains test modules for:
- test_managers.py: UserManager tests
- test_views.py: Registration, login, current user and user search tests

Usage:
    pytest authentication/tests/
    pytest authentication/tests/test_views.py
"""
