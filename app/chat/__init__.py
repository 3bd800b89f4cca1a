"""
Chat app for real-time messaging.

This app handles:
- Conversations (single and group) and per-member membership state
- Message sending, history and read markers
- System messages for group lifecycle events
- WebSocket real-time updates and presence

Related apps:
    - authentication: User, Profile presence, Friendship

WebSocket Support:
    Uses Django Channels for real-time communication.
    See consumers.py for WebSocket handlers.
    See routing.py for WebSocket URL patterns.

Usage:
    from chat.services import ConversationService, MessageService

    conversation, _ = ConversationService.get_or_create_single(user, friend.id)

    message, _ = MessageService.send_message(conversation.id, user, "Hello!")
"""
