"""
Root pytest configuration for the Django project.

Points pytest-django at the settings module. Test settings overrides and
marker assignment live in app/conftest.py; app-specific fixtures are
defined in each app's tests/conftest.py.
"""

import os

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")
