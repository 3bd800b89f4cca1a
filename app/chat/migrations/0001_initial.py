"""
Initial chat schema.

Changes:
    - Conversation with group policies and disband marker
    - Message ordered by (created_at, id), soft deleted
    - Membership with visibility floor, read marker, pin and mute state
    - DeliveryStatus read receipts
"""

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Conversation",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("conversation_type", models.CharField(choices=[("single", "Single"), ("group", "Group")], db_index=True, default="group", help_text="Type of conversation (single or group)", max_length=10)),
                ("name", models.CharField(blank=True, default="", help_text="Name for group conversations (empty for single)", max_length=100)),
                ("avatar_url", models.URLField(blank=True, default="", help_text="Avatar for group conversations", max_length=500)),
                ("message_send_policy", models.CharField(choices=[("all_members", "All members"), ("admin_only", "Admins only"), ("owner_only", "Owner only")], default="all_members", help_text="Who may send messages (groups only)", max_length=20)),
                ("member_add_policy", models.CharField(choices=[("all_members", "All members"), ("admin_only", "Admins only"), ("owner_only", "Owner only")], default="admin_only", help_text="Who may add members (groups only)", max_length=20)),
                ("require_approval", models.BooleanField(default=False, help_text="Whether new members need admin approval (groups only)")),
                ("disbanded_at", models.DateTimeField(blank=True, help_text="When the group was disbanded (null while active)", null=True)),
                ("last_message_at", models.DateTimeField(blank=True, db_index=True, help_text="Timestamp of most recent message (for sorting conversation lists)", null=True)),
                ("created_by", models.ForeignKey(blank=True, help_text="User who created this conversation", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="created_conversations", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_conversation",
                "ordering": ["-last_message_at", "-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("message_type", models.CharField(choices=[("text", "Text"), ("image", "Image"), ("video", "Video"), ("voice", "Voice"), ("file", "File"), ("system", "System")], default="text", help_text="Type of message content", max_length=10)),
                ("content", models.TextField(help_text="Message text or system event JSON")),
                ("edited_at", models.DateTimeField(blank=True, help_text="When the message was last edited", null=True)),
                ("deleted_at", models.DateTimeField(blank=True, db_index=True, help_text="When the message was deleted or recalled", null=True)),
                ("is_forwarded", models.BooleanField(default=False, help_text="Whether the message was forwarded")),
                ("conversation", models.ForeignKey(help_text="Conversation this message belongs to", on_delete=django.db.models.deletion.CASCADE, related_name="messages", to="chat.conversation")),
                ("reply_to", models.ForeignKey(blank=True, help_text="Message this one replies to", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="replies", to="chat.message")),
                ("sender", models.ForeignKey(blank=True, help_text="User who sent this message (null for system messages)", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="sent_messages", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_message",
                "ordering": ["created_at", "id"],
                "indexes": [
                    models.Index(fields=["conversation", "created_at", "id"], name="chat_msg_conv_created_idx"),
                    models.Index(fields=["sender", "created_at"], name="chat_msg_sender_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Membership",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True, help_text="Timestamp when this record was created")),
                ("updated_at", models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified")),
                ("role", models.CharField(choices=[("owner", "Owner"), ("admin", "Admin"), ("member", "Member")], db_index=True, default="member", help_text="Role in the conversation", max_length=10)),
                ("joined_at", models.DateTimeField(default=django.utils.timezone.now, help_text="When the user joined or was re-admitted")),
                ("muted_until", models.DateTimeField(blank=True, help_text="Muted until this instant (far-future value means indefinitely)", null=True)),
                ("deleted_at", models.DateTimeField(blank=True, db_index=True, help_text="When the member hid, left or was removed (null if active)", null=True)),
                ("hidden_until", models.DateTimeField(blank=True, help_text="Messages created at or before this instant are invisible to the member", null=True)),
                ("is_pinned", models.BooleanField(default=False, help_text="Whether the member pinned this conversation")),
                ("pinned_at", models.DateTimeField(blank=True, help_text="When the conversation was pinned", null=True)),
                ("conversation", models.ForeignKey(help_text="Conversation this membership belongs to", on_delete=django.db.models.deletion.CASCADE, related_name="memberships", to="chat.conversation")),
                ("last_read_message", models.ForeignKey(blank=True, help_text="Most recent message this member has read", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="+", to="chat.message")),
                ("removed_by", models.ForeignKey(blank=True, help_text="User who removed this member (if removed by someone)", null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="removed_memberships", to=settings.AUTH_USER_MODEL)),
                ("user", models.ForeignKey(help_text="Member of the conversation", on_delete=django.db.models.deletion.CASCADE, related_name="chat_memberships", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_membership",
                "ordering": ["joined_at"],
                "indexes": [
                    models.Index(fields=["conversation", "deleted_at"], name="chat_member_conv_active_idx"),
                    models.Index(fields=["user", "deleted_at"], name="chat_member_user_active_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=("conversation", "user"), name="unique_conversation_membership"),
                    models.UniqueConstraint(condition=models.Q(("role", "owner")), fields=("conversation",), name="unique_conversation_owner"),
                ],
            },
        ),
        migrations.CreateModel(
            name="DeliveryStatus",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("status", models.CharField(choices=[("sent", "Sent"), ("delivered", "Delivered"), ("read", "Read")], default="sent", help_text="Delivery progress", max_length=10)),
                ("status_at", models.DateTimeField(default=django.utils.timezone.now, help_text="When the current status was reached")),
                ("message", models.ForeignKey(help_text="Message this receipt is for", on_delete=django.db.models.deletion.CASCADE, related_name="delivery_statuses", to="chat.message")),
                ("user", models.ForeignKey(help_text="Recipient of the message", on_delete=django.db.models.deletion.CASCADE, related_name="message_delivery_statuses", to=settings.AUTH_USER_MODEL)),
            ],
            options={
                "db_table": "chat_delivery_status",
                "constraints": [
                    models.UniqueConstraint(fields=("message", "user"), name="unique_message_delivery_status"),
                ],
            },
        ),
    ]
