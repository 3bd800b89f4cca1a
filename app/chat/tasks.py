"""
Celery tasks for chat app.

This module defines periodic tasks for:
- Clearing elapsed conversation mutes

Related files:
    - models.py: Membership.muted_until
    - config/celery.py: Beat schedule

Usage:
    from chat.tasks import clear_expired_mutes

    clear_expired_mutes.delay()
"""

import logging

from celery import shared_task
from django.utils import timezone

from chat.constants import MEMBERSHIP_CONFIG

logger = logging.getLogger(__name__)


@shared_task
def clear_expired_mutes() -> int:
    """
    Reset muted_until on memberships whose mute has elapsed.

    Indefinite mutes (the INDEFINITE_MUTE_UNTIL sentinel) are never cleared.

    Returns:
        Number of memberships unmuted
    """
    from chat.models import Membership

    now = timezone.now()
    cleared = (
        Membership.objects.filter(muted_until__lt=now)
        .exclude(muted_until=MEMBERSHIP_CONFIG.INDEFINITE_MUTE_UNTIL)
        .update(muted_until=None, updated_at=now)
    )

    if cleared:
        logger.info(f"Cleared {cleared} expired mutes")
    return cleared
