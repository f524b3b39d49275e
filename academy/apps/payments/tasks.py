# FILE: /academy/apps/payments/tasks.py
import logging
from datetime import timedelta

from celery import shared_task, Task
from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string
from django.utils import timezone

logger = logging.getLogger(__name__)


class BaseEmailTask(Task):
    """
    Base task class for email operations with retry logic.
    """
    max_retries = 3
    default_retry_delay = 60  # 1 minute

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {task_id} failed: {exc}")
        super().on_failure(exc, task_id, args, kwargs, einfo)


@shared_task(base=BaseEmailTask, bind=True)
def send_purchase_receipt_email(self, purchase_id):
    """
    Send the buyer a receipt once a purchase is committed as COMPLETED.
    """
    from .models import Purchase
    from .pricing import to_major_units

    try:
        purchase = Purchase.objects.select_related('user', 'course').get(id=purchase_id)
    except Purchase.DoesNotExist:
        logger.error(f"Receipt skipped: purchase {purchase_id} not found")
        return {'status': 'error', 'message': 'Purchase not found'}

    if purchase.status != Purchase.Status.COMPLETED:
        return {'status': 'skipped', 'message': f'Purchase is {purchase.status}'}
    if not purchase.user.email:
        return {'status': 'skipped', 'message': 'User has no email'}

    context = {
        'user': purchase.user,
        'purchase': purchase,
        'course': purchase.course,
        'amount': to_major_units(purchase.amount, purchase.currency),
        'discount': to_major_units(purchase.discount_amount, purchase.currency),
        'charged': to_major_units(purchase.charge_amount, purchase.currency),
        'course_url': f"{settings.FRONTEND_URL}/courses/{purchase.course.slug}",
        'support_email': settings.SUPPORT_EMAIL,
        'current_year': timezone.now().year,
    }

    try:
        html_content = render_to_string('payments/email/receipt.html', context)
        text_content = render_to_string('payments/email/receipt.txt', context)

        email = EmailMultiAlternatives(
            subject=f"Your receipt for {purchase.course.title}",
            body=text_content,
            from_email=settings.DEFAULT_FROM_EMAIL,
            to=[purchase.user.email],
            reply_to=[settings.SUPPORT_EMAIL],
        )
        email.attach_alternative(html_content, "text/html")
        email.send(fail_silently=False)
    except Exception as exc:
        logger.warning(f"Receipt email for purchase {purchase_id} failed, retrying: {exc}")
        raise self.retry(exc=exc)

    logger.info(f"Receipt email sent for purchase {purchase_id}")
    return {
        'status': 'success',
        'message': f"Receipt sent to {purchase.user.email}",
        'purchase_id': str(purchase.id),
    }


@shared_task
def sweep_stale_purchases():
    """
    Fail purchases that stayed PENDING longer than PAYMENTS['PENDING_TIMEOUT_MINUTES'].
    The ledger's compare-and-set means a webhook that lands at the same
    moment wins or loses cleanly.
    """
    from .ledger import PurchaseLedger

    minutes = int(settings.PAYMENTS.get('PENDING_TIMEOUT_MINUTES', 120))
    swept = PurchaseLedger().sweep_stale(timedelta(minutes=minutes))
    logger.info(f"Stale purchase sweep finished: {swept} failed")
    return {'status': 'success', 'failed': swept}
