# FILE: /academy/apps/courses/signals.py
"""
Receivers that grant course access once the payments ledger confirms a purchase.
"""
import logging

from django.dispatch import receiver

from academy.apps.payments.signals import purchase_completed
from .models import Enrollment, InstructorEarning

logger = logging.getLogger(__name__)


@receiver(purchase_completed)
def enroll_buyer(sender, purchase, **kwargs):
    """
    Enroll the buyer and credit the instructor share.
    Runs inside the ledger's transaction, so a failure here rolls the
    confirmation back and the provider retries the webhook.
    """
    enrollment, created = Enrollment.objects.get_or_create(
        user_id=purchase.user_id,
        course_id=purchase.course_id,
        defaults={'purchase': purchase},
    )
    if not created:
        logger.warning(
            f"User {purchase.user_id} already enrolled in course {purchase.course_id}; "
            f"purchase {purchase.id} completed anyway"
        )

    InstructorEarning.objects.get_or_create(
        purchase=purchase,
        defaults={
            'instructor_id': purchase.course.instructor_id,
            'amount': purchase.instructor_share,
            'currency': purchase.currency,
        },
    )
