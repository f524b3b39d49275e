# FILE: /academy/apps/payments/ledger.py
"""
Purchase ledger: the only code that changes a purchase's status.

States move PENDING -> COMPLETED | FAILED and COMPLETED -> REFUNDED.
Every transition is a conditional UPDATE guarded by the expected current
status, so concurrent webhooks, captures and the sweeper cannot both win.
``(provider, provider_transaction_id)`` is unique and makes confirmations
idempotent.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from django.db import IntegrityError, transaction
from django.db.models import F, Q
from django.utils import timezone

from academy.core.exceptions import CouponExhausted, InvalidStateTransition
from .models import Coupon, Purchase
from .signals import purchase_completed

logger = logging.getLogger(__name__)

Status = Purchase.Status


class Outcome:
    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass
class LedgerResult:
    purchase: Purchase
    outcome: str

    @property
    def is_duplicate(self):
        return self.outcome == Outcome.DUPLICATE


class PurchaseLedger:

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_pending(self, *, user, course, provider, quote, config, coupon=None):
        """Record a checkout attempt before the buyer is redirected."""
        purchase = Purchase.objects.create(
            user=user,
            course=course,
            provider=provider,
            amount=quote.gross,
            currency=course.currency,
            discount_amount=quote.discount_amount,
            charge_amount=quote.charge_amount,
            platform_share=quote.platform_share,
            instructor_share=quote.instructor_share,
            platform_fee_percent=config.platform_fee_percent,
            coupon=coupon,
            status=Status.PENDING,
        )
        logger.info(f"Purchase {purchase.id} created PENDING via {provider} ({quote.charge_amount} {course.currency})")
        return purchase

    def attach_session(self, purchase, session_ref, metadata=None):
        fields = {'provider_session_ref': session_ref or '', 'updated_at': timezone.now()}
        if metadata is not None:
            fields['metadata'] = metadata
        Purchase.objects.filter(pk=purchase.pk, status=Status.PENDING).update(**fields)
        purchase.provider_session_ref = fields['provider_session_ref']
        if metadata is not None:
            purchase.metadata = metadata
        return purchase

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def locate(self, event, lock=True):
        """
        Find the purchase an event refers to: by purchase id echoed in
        metadata, then by session reference, then by transaction id.
        Raises Purchase.DoesNotExist.
        """
        queryset = Purchase.objects.select_for_update() if lock else Purchase.objects.all()
        queryset = queryset.filter(provider=event.provider)
        lookups = []
        if event.purchase_id:
            lookups.append(Q(pk=event.purchase_id))
        if event.session_ref:
            lookups.append(Q(provider_session_ref=event.session_ref))
        if event.provider_transaction_id:
            lookups.append(Q(provider_transaction_id=event.provider_transaction_id))

        for lookup in lookups:
            purchase = queryset.filter(lookup).first()
            if purchase is not None:
                return purchase
        raise Purchase.DoesNotExist(
            f"No {event.provider} purchase for id={event.purchase_id} "
            f"session={event.session_ref} txn={event.provider_transaction_id}"
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def apply_confirmation(self, event):
        """
        PENDING -> COMPLETED for a verified success event.

        Replays of the same transaction id return DUPLICATE with no side
        effects. A coupon that ran out in the meantime fails the purchase and
        raises CouponExhausted once the FAILED state is committed.
        """
        txn_id = event.provider_transaction_id
        if not txn_id:
            raise ValueError("Confirmation without provider transaction id")

        try:
            with transaction.atomic():
                result = self._confirm(event, txn_id)
        except IntegrityError:
            # A concurrent confirmation claimed this transaction id first
            existing = self._by_transaction(event.provider, txn_id)
            if existing is None:
                raise
            logger.info(f"Purchase {existing.id}: concurrent replay of {event.provider} {txn_id}")
            return LedgerResult(existing, Outcome.DUPLICATE)

        lost_coupon = (
            result.outcome == Outcome.APPLIED
            and result.purchase.status == Status.FAILED
            and result.purchase.status_reason == 'coupon_exhausted'
        )
        if lost_coupon:
            raise CouponExhausted(detail=f"Coupon exhausted for purchase {result.purchase.id}.")
        return result

    def _confirm(self, event, txn_id):
        existing = Purchase.objects.select_for_update().filter(
            provider=event.provider, provider_transaction_id=txn_id
        ).first()
        if existing is not None:
            logger.info(f"Purchase {existing.id}: duplicate confirmation {txn_id} (status {existing.status})")
            return LedgerResult(existing, Outcome.DUPLICATE)

        purchase = self.locate(event)
        if purchase.status != Status.PENDING:
            logger.warning(f"Purchase {purchase.id}: refusing {purchase.status} -> COMPLETED for {event.provider} {txn_id}")
            raise InvalidStateTransition(purchase.status, Status.COMPLETED)

        now = timezone.now()
        audit = {
            'provider_transaction_id': txn_id,
            'raw_provider_status': (event.raw_status or '')[:100],
            'payload_hash': event.payload_hash or '',
            'updated_at': now,
        }

        mismatch = self._mismatch_reason(purchase, event)
        if mismatch:
            logger.error(
                f"Purchase {purchase.id}: {mismatch} "
                f"(expected {purchase.charge_amount} {purchase.currency}, got {event.amount} {event.currency})"
            )
            return self._transition(purchase, Status.PENDING, Status.FAILED, status_reason=mismatch, **audit)

        coupon_failure = self._redeem_coupon(purchase) if purchase.coupon_id else None
        if coupon_failure:
            logger.warning(f"Purchase {purchase.id}: coupon {purchase.coupon_id} rejected at confirmation ({coupon_failure})")
            return self._transition(purchase, Status.PENDING, Status.FAILED, status_reason=coupon_failure, **audit)

        result = self._transition(purchase, Status.PENDING, Status.COMPLETED, confirmed_at=now, **audit)
        purchase = result.purchase

        # Receivers write enrollment and earning rows inside this transaction
        purchase_completed.send(sender=Purchase, purchase=purchase)

        from .tasks import send_purchase_receipt_email
        purchase_id = str(purchase.id)
        transaction.on_commit(lambda: send_purchase_receipt_email.delay(purchase_id))

        logger.info(f"Purchase {purchase.id} COMPLETED via {event.provider} {txn_id}")
        return result

    @staticmethod
    def _mismatch_reason(purchase, event):
        if event.currency and event.currency.upper() != purchase.currency.upper():
            return 'currency_mismatch'
        if event.amount is not None and int(event.amount) != purchase.charge_amount:
            return 'amount_mismatch'
        return None

    @staticmethod
    def _redeem_coupon(purchase):
        """
        Increment used_count while a use is left and the coupon had not expired
        when the purchase was quoted. Returns None if this caller won, else the
        failure reason.
        """
        in_window = Q(expiry_date__isnull=True) | Q(expiry_date__gte=purchase.created_at)
        uses_left = Q(max_uses__isnull=True) | Q(used_count__lt=F('max_uses'))
        updated = Coupon.objects.filter(in_window, uses_left, pk=purchase.coupon_id).update(
            used_count=F('used_count') + 1, updated_at=timezone.now()
        )
        if updated == 1:
            return None
        if Coupon.objects.filter(in_window, pk=purchase.coupon_id).exists():
            return 'coupon_exhausted'
        return 'coupon_expired'

    def apply_failure(self, event):
        """PENDING -> FAILED for a verified decline, cancellation or expiry."""
        with transaction.atomic():
            purchase = self.locate(event)
            if purchase.status == Status.FAILED:
                return LedgerResult(purchase, Outcome.DUPLICATE)
            if purchase.status != Status.PENDING:
                logger.warning(f"Purchase {purchase.id}: refusing {purchase.status} -> FAILED ({event.event_type})")
                raise InvalidStateTransition(purchase.status, Status.FAILED)

            fields = {
                'status_reason': (event.reason or event.raw_status or 'declined')[:255],
                'raw_provider_status': (event.raw_status or '')[:100],
                'payload_hash': event.payload_hash or '',
                'updated_at': timezone.now(),
            }
            if event.provider_transaction_id and self._by_transaction(event.provider, event.provider_transaction_id) is None:
                fields['provider_transaction_id'] = event.provider_transaction_id
            result = self._transition(purchase, Status.PENDING, Status.FAILED, **fields)
        logger.info(f"Purchase {purchase.id} FAILED: {fields['status_reason']}")
        return result

    def apply_refund(self, purchase_id, refund_id='', raw_status=''):
        """COMPLETED -> REFUNDED. Shares are kept for audit."""
        with transaction.atomic():
            purchase = Purchase.objects.select_for_update().get(pk=purchase_id)
            if purchase.status == Status.REFUNDED:
                return LedgerResult(purchase, Outcome.DUPLICATE)
            if purchase.status != Status.COMPLETED:
                logger.warning(f"Purchase {purchase.id}: refusing {purchase.status} -> REFUNDED")
                raise InvalidStateTransition(purchase.status, Status.REFUNDED)

            result = self._transition(
                purchase, Status.COMPLETED, Status.REFUNDED,
                refund_id=(refund_id or '')[:255],
                raw_provider_status=(raw_status or purchase.raw_provider_status)[:100],
                refunded_at=timezone.now(),
                updated_at=timezone.now(),
            )
        logger.info(f"Purchase {purchase.id} REFUNDED (refund {refund_id or '-'})")
        return result

    def apply_refund_event(self, event):
        """Provider reported a refund (dashboard refunds included)."""
        purchase = self.locate(event, lock=False)
        return self.apply_refund(purchase.pk, refund_id=event.refund_id, raw_status=event.raw_status)

    def fail_if_pending(self, purchase_id, reason):
        """Compare-and-set PENDING -> FAILED. Returns True if this call made the change."""
        updated = Purchase.objects.filter(pk=purchase_id, status=Status.PENDING).update(
            status=Status.FAILED,
            status_reason=(reason or '')[:255],
            updated_at=timezone.now(),
        )
        if updated:
            logger.info(f"Purchase {purchase_id} FAILED: {reason}")
        return updated == 1

    def sweep_stale(self, older_than: timedelta, reason='timeout'):
        """Fail every purchase still PENDING after ``older_than``. Returns the count."""
        cutoff = timezone.now() - older_than
        stale_ids = list(
            Purchase.objects.filter(status=Status.PENDING, created_at__lt=cutoff).values_list('pk', flat=True)
        )
        swept = sum(1 for purchase_id in stale_ids if self.fail_if_pending(purchase_id, reason))
        if swept:
            logger.info(f"Swept {swept} stale pending purchases (older than {older_than})")
        return swept

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _by_transaction(provider, txn_id):
        return Purchase.objects.filter(provider=provider, provider_transaction_id=txn_id).first()

    @staticmethod
    def _transition(purchase, current, target, **fields):
        if target not in Purchase.STATUS_TRANSITIONS.get(current, []):
            raise InvalidStateTransition(current, target)
        updated = Purchase.objects.filter(pk=purchase.pk, status=current).update(status=target, **fields)
        if updated != 1:
            purchase.refresh_from_db(fields=['status'])
            logger.warning(f"Purchase {purchase.id}: lost race {current} -> {target} (now {purchase.status})")
            raise InvalidStateTransition(purchase.status, target)
        purchase.refresh_from_db()
        return LedgerResult(purchase, Outcome.APPLIED)
