"""
Factory Boy factories for chat models.

Provides test data generation for:
- Conversation: Single and group conversations (no memberships)
- Membership: A user's membership in a conversation
- Message: Text and system messages

These bypass the service layer. Use them to set up state the services
would not produce directly (old messages, odd policies, stale markers).

Usage:
    from chat.tests.factories import ConversationFactory, MembershipFactory, MessageFactory

    conversation = ConversationFactory()
    MembershipFactory(conversation=conversation, user=user, role=MemberRole.OWNER)
    message = MessageFactory(conversation=conversation, sender=user)
"""

import json

import factory

from authentication.tests.factories import UserFactory
from chat.models import (
    Conversation,
    ConversationType,
    MemberRole,
    Membership,
    Message,
    MessageType,
    SystemMessageEvent,
)


class ConversationFactory(factory.django.DjangoModelFactory):
    """
    Factory for Conversation model.

    Creates a group conversation by default.

    Examples:
        conversation = ConversationFactory()
        conversation = ConversationFactory(conversation_type=ConversationType.SINGLE, name="")
    """

    class Meta:
        model = Conversation

    conversation_type = ConversationType.GROUP
    name = factory.Sequence(lambda n: f"Group Chat {n}")
    created_by = factory.SubFactory(UserFactory)


class MembershipFactory(factory.django.DjangoModelFactory):
    """Active member by default."""

    class Meta:
        model = Membership

    conversation = factory.SubFactory(ConversationFactory)
    user = factory.SubFactory(UserFactory)
    role = MemberRole.MEMBER


class MessageFactory(factory.django.DjangoModelFactory):
    """
    Factory for user messages.

    Examples:
        message = MessageFactory(conversation=conversation, sender=user)
        system = SystemMessageFactory(conversation=conversation)
    """

    class Meta:
        model = Message

    conversation = factory.SubFactory(ConversationFactory)
    sender = factory.SubFactory(UserFactory)
    message_type = MessageType.TEXT
    content = factory.Sequence(lambda n: f"Message {n}")


class SystemMessageFactory(MessageFactory):
    sender = None
    message_type = MessageType.SYSTEM
    content = factory.LazyFunction(
        lambda: json.dumps({"event": SystemMessageEvent.GROUP_UPDATED, "data": {}})
    )
