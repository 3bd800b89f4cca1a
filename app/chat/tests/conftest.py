"""
Test configuration and fixtures for chat tests.

This module provides:
- Named users (alice, bob, carol, dave) with profile usernames
- Friendship fixtures for single conversations
- A group fixture built through the service layer (alice owns, bob and carol are members)
- A recording publisher that captures fan-out instead of using a channel layer
- A controllable clock for ordering-sensitive scenarios
- API client helpers for authenticated requests

Usage:
    def test_example(group, client_for, bob):
        response = client_for(bob).get(f"/api/v1/chat/conversations/{group.id}/")
        assert response.status_code == 200
"""

import pytest
from freezegun import freeze_time
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken

from authentication.tests.factories import FriendshipFactory, UserFactory
from chat import fanout
from chat.services import ConversationService


# =============================================================================
# Fan-out capture
# =============================================================================


class RecordingPublisher:
    """Stands in for ChannelLayerPublisher and keeps every delivered event."""

    def __init__(self):
        self.events = []
        self.presence = []

    def deliver(self, event):
        self.events.append(event)

    def publish_presence(self, snapshot):
        self.presence.append(snapshot)
        return True

    def of_type(self, event_type):
        return [event for event in self.events if event.type == event_type]

    def types(self):
        return [event.type for event in self.events]

    def clear(self):
        self.events.clear()
        self.presence.clear()


@pytest.fixture
def publisher():
    """Install a RecordingPublisher for the duration of the test."""
    recorder = RecordingPublisher()
    fanout.set_publisher(recorder)
    yield recorder
    fanout.set_publisher(None)


@pytest.fixture
def commit(django_capture_on_commit_callbacks, publisher):
    """
    Run a block and publish what it emitted.

    Usage:
        with commit():
            MessageService.send_message(...)
        assert publisher.of_type("new_message")
    """

    def _commit():
        return django_capture_on_commit_callbacks(execute=True)

    return _commit


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def clock():
    """
    Frozen time that only moves when the test says so.

    Usage:
        clock.tick(60)  # advance one minute
    """
    with freeze_time("2026-03-01 12:00:00", tz_offset=0) as frozen:
        yield frozen


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def alice(db):
    return UserFactory(username="alice")


@pytest.fixture
def bob(db):
    return UserFactory(username="bob")


@pytest.fixture
def carol(db):
    return UserFactory(username="carol")


@pytest.fixture
def dave(db):
    return UserFactory(username="dave")


@pytest.fixture
def friends(alice, bob):
    """Accepted friendship between alice and bob."""
    return FriendshipFactory.accepted(alice, bob)


# =============================================================================
# Conversation Fixtures
# =============================================================================


@pytest.fixture
def single(alice, bob, friends):
    """Single conversation opened by alice (bob starts hidden)."""
    conversation, _ = ConversationService.get_or_create_single(alice, bob.id)
    return conversation


@pytest.fixture
def group(alice, bob, carol):
    """Group owned by alice with bob and carol as members."""
    return ConversationService.create_group(alice, [bob.id, carol.id], name="Team")


# =============================================================================
# API Client Fixtures
# =============================================================================


@pytest.fixture
def client_for():
    """Build an API client carrying a JWT for the given user."""

    def _client(user):
        client = APIClient()
        refresh = RefreshToken.for_user(user)
        client.credentials(HTTP_AUTHORIZATION=f"Bearer {refresh.access_token}")
        return client

    return _client
