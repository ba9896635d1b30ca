"""
Tests for chat app.

This package contains test modules for:
- test_models.py: Chat, Participant, Message model and constraint tests
- test_governance.py: GroupService tests
- test_receipts.py: Delivery/read tracking tests
- test_presence.py / test_dedup.py: Live-state tests
- test_middleware.py: WebSocket JWT authentication tests
- test_consumers.py: WebSocket session tests
- test_views.py: REST API endpoint tests

Usage:
    pytest chat/tests/
    pytest chat/tests/test_consumers.py
"""
