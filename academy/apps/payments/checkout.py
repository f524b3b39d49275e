# FILE: /academy/apps/payments/checkout.py
"""
Checkout orchestration: course -> quote -> PENDING purchase -> provider session.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError

from academy.apps.courses.models import Course, Enrollment
from academy.core.exceptions import (
    AuthExpired,
    CheckoutNotAllowed,
    CouponInvalid,
    ProviderRejected,
    ProviderUnavailable,
)
from .ledger import PurchaseLedger
from .metadata import CheckoutMetadata
from .models import Coupon, Purchase
from .pricing import SplitConfig, SplitQuote, quote_for_course
from .providers import get_adapter
from .providers.base import CheckoutRequest, ConfirmationStatus, EventKind, PaymentEvent

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    purchase: Purchase
    redirect_url: str


@dataclass
class Quote:
    course: Course
    coupon: Optional[Coupon]
    split: SplitQuote


class CheckoutOrchestrator:
    """
    Starts checkouts and finishes two-phase ones. Collaborators are injected
    so tests can swap the adapter factory or the split configuration.
    """

    def __init__(self, ledger=None, config=None, adapter_factory=get_adapter):
        self.ledger = ledger or PurchaseLedger()
        self.config = config or SplitConfig.from_settings()
        self.adapter_factory = adapter_factory

    # ------------------------------------------------------------------

    def quote(self, user, course_id, coupon_code=None):
        """Price a course for a buyer without creating anything."""
        course = self._get_course(course_id)
        coupon = self._get_coupon(coupon_code, user)
        split = quote_for_course(course, coupon, self.config)
        return Quote(course=course, coupon=coupon, split=split)

    def create_checkout(self, user, course_id, provider, coupon_code=None, phone=None):
        adapter = self.adapter_factory(provider)
        if not adapter.is_enabled:
            raise CheckoutNotAllowed(detail=f"{adapter.label} is not available.", reason='provider_disabled')

        quote = self.quote(user, course_id, coupon_code)
        course = quote.course

        if not adapter.supports_currency(course.currency):
            raise CheckoutNotAllowed(
                detail=f"{adapter.label} does not accept {course.currency}.",
                reason='unsupported_currency',
            )
        if Enrollment.objects.filter(user=user, course=course).exists():
            raise CheckoutNotAllowed(detail="You are already enrolled in this course.", reason='already_enrolled')

        purchase = self.ledger.create_pending(
            user=user,
            course=course,
            provider=adapter.provider,
            quote=quote.split,
            config=self.config,
            coupon=quote.coupon,
        )
        if purchase.charge_amount == 0:
            return self._settle_free(purchase)

        metadata = CheckoutMetadata.for_purchase(purchase)
        request = CheckoutRequest(
            purchase_id=purchase.id,
            amount=purchase.charge_amount,
            currency=purchase.currency,
            description=f"Course: {course.title}",
            buyer_email=user.email,
            buyer_name=user.get_full_name() or user.get_username(),
            buyer_phone=phone,
            success_url=self._return_url('SUCCESS_URL', purchase),
            cancel_url=self._return_url('CANCEL_URL', purchase),
            metadata=metadata,
        )

        try:
            session = adapter.create_checkout(request)
        except (ProviderUnavailable, ProviderRejected, AuthExpired) as exc:
            self.ledger.fail_if_pending(purchase.id, exc.reason)
            logger.warning(f"Checkout for purchase {purchase.id} failed at {adapter.provider}: {exc.reason}")
            raise

        self.ledger.attach_session(purchase, session.session_ref, metadata=metadata.to_dict())
        logger.info(f"Checkout started for purchase {purchase.id} via {adapter.provider}")
        return CheckoutResult(purchase=purchase, redirect_url=session.redirect_url)

    def capture(self, provider, session_ref, user=None):
        """
        Finish a checkout from the redirect-back page. Two-phase providers
        capture; the rest are polled. Returns the purchase as it now stands.
        """
        adapter = self.adapter_factory(provider)
        lookup = PaymentEvent(
            provider=adapter.provider,
            kind=EventKind.IGNORED,
            session_ref=session_ref,
            provider_transaction_id=session_ref,
        )
        try:
            purchase = self.ledger.locate(lookup, lock=False)
        except Purchase.DoesNotExist:
            purchase = None

        if purchase is not None:
            self._check_owner(purchase, user)
            if not purchase.is_pending:
                return purchase

        confirmation = adapter.capture(session_ref)
        event = PaymentEvent.from_confirmation(adapter.provider, confirmation, event_type='capture')
        event.session_ref = event.session_ref or session_ref
        if purchase is None:
            # Some providers redirect back with a transaction id we have not stored yet
            purchase = self.ledger.locate(event, lock=False)
            self._check_owner(purchase, user)
        if event.purchase_id is None:
            event.purchase_id = purchase.id

        if confirmation.status == ConfirmationStatus.SUCCEEDED:
            self.ledger.apply_confirmation(event)
        elif confirmation.status == ConfirmationStatus.FAILED:
            self.ledger.apply_failure(event)

        purchase.refresh_from_db()
        return purchase

    # ------------------------------------------------------------------

    def _settle_free(self, purchase):
        """Nothing to charge: confirm through the ledger without a provider."""
        metadata = CheckoutMetadata.for_purchase(purchase)
        self.ledger.attach_session(purchase, '', metadata=metadata.to_dict())
        event = PaymentEvent(
            provider=purchase.provider,
            kind=EventKind.SUCCEEDED,
            event_type='free_checkout',
            purchase_id=purchase.id,
            provider_transaction_id=f"free-{purchase.id}",
            amount=0,
            currency=purchase.currency,
            raw_status='FREE',
        )
        result = self.ledger.apply_confirmation(event)
        logger.info(f"Free checkout settled purchase {purchase.id}")
        return CheckoutResult(purchase=result.purchase, redirect_url=self._return_url('SUCCESS_URL', purchase))

    def _get_course(self, course_id):
        try:
            course = Course.objects.select_related('instructor').get(pk=course_id)
        except (Course.DoesNotExist, ValueError, DjangoValidationError):
            raise CheckoutNotAllowed(detail="Course not found.", reason='course_unavailable')
        if not course.is_published:
            raise CheckoutNotAllowed(detail="Course is not available for purchase.", reason='course_unavailable')
        return course

    def _get_coupon(self, code, user):
        code = Coupon.normalize_code(code)
        if not code:
            return None
        coupon = Coupon.objects.filter(code__iexact=code).first()
        if coupon is None:
            raise CouponInvalid('not_found')
        redeemed = Purchase.objects.filter(
            user=user,
            coupon=coupon,
            status__in=[Purchase.Status.COMPLETED, Purchase.Status.REFUNDED],
        ).exists()
        if redeemed:
            raise CouponInvalid('already_used')
        return coupon

    @staticmethod
    def _return_url(key, purchase):
        template = settings.PAYMENTS.get(key) or ''
        return template.format(purchase_id=purchase.id, provider=purchase.provider.lower())

    @staticmethod
    def _check_owner(purchase, user):
        if user is not None and not user.is_staff and purchase.user_id != user.pk:
            raise Purchase.DoesNotExist("Purchase belongs to another user")
