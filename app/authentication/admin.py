"""
Django admin configuration for authentication models.

Registers User, Profile and Friendship with the Django admin site.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from authentication.models import Friendship, Profile, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Admin configuration for User model.

    Customized for email-based authentication. Display data and presence
    are managed via ProfileAdmin.
    """

    list_display = ("email", "is_active", "is_staff", "date_joined")
    list_filter = ("is_active", "is_staff", "is_superuser", "date_joined")
    search_fields = ("email",)
    ordering = ("-date_joined",)

    fieldsets = (
        (None, {"fields": ("email", "password")}),
        ("Status", {"fields": ("is_active", "is_staff", "is_superuser")}),
        ("Permissions", {"fields": ("groups", "user_permissions")}),
        ("Important dates", {"fields": ("date_joined", "last_login")}),
    )

    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "password1", "password2"),
            },
        ),
    )

    readonly_fields = ("date_joined", "last_login")


@admin.register(Profile)
class ProfileAdmin(admin.ModelAdmin):
    list_display = ("user", "username", "show_last_seen", "is_online", "last_seen_at")
    list_filter = ("show_last_seen", "is_online")
    search_fields = ("user__email", "username")
    ordering = ("-created_at",)
    raw_id_fields = ("user",)
    readonly_fields = ("is_online", "last_seen_at", "created_at", "updated_at")


@admin.register(Friendship)
class FriendshipAdmin(admin.ModelAdmin):
    list_display = ("user_lower", "user_higher", "requested_by", "status", "accepted_at")
    list_filter = ("status",)
    search_fields = ("user_lower__email", "user_higher__email")
    raw_id_fields = ("user_lower", "user_higher", "requested_by")
    readonly_fields = ("created_at", "updated_at")
