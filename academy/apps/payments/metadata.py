# FILE: /academy/apps/payments/metadata.py
"""
Checkout metadata shared by all providers.

Stripe and Tap accept a flat string map and echo it back verbatim. PayPal
(``custom_id``, 127 chars) and Paymob (``merchant_order_id``) only carry one
string, so the same fields travel there as a compact reference:

    v1:<purchase>:<user>:<course>:<instructor share>:<coupon>

UUIDs are written as unpadded url-safe base64 (22 chars) so that four of
them fit inside PayPal's limit. A user id that is not a UUID is written as is.
"""
import base64
import binascii
import uuid
from dataclasses import dataclass
from typing import Optional

REFERENCE_VERSION = 'v1'
REFERENCE_SEPARATOR = ':'
PAYPAL_CUSTOM_ID_MAX_LENGTH = 127
_COMPACT_UUID_LENGTH = 22


class MetadataError(ValueError):
    """Metadata echoed back by a provider could not be decoded."""


def compact_uuid(value: uuid.UUID) -> str:
    return base64.urlsafe_b64encode(value.bytes).rstrip(b'=').decode('ascii')


def expand_uuid(value: str) -> uuid.UUID:
    if len(value) != _COMPACT_UUID_LENGTH:
        raise ValueError(f"badly sized compact uuid {value!r}")
    try:
        return uuid.UUID(bytes=base64.urlsafe_b64decode(value + '=='))
    except binascii.Error as exc:
        raise ValueError(str(exc)) from exc


def _compact_user(user_id) -> str:
    try:
        return compact_uuid(uuid.UUID(str(user_id)))
    except ValueError:
        return str(user_id)


def _expand_user(value: str) -> str:
    if len(value) == _COMPACT_UUID_LENGTH:
        try:
            return str(expand_uuid(value))
        except ValueError:
            pass
    return value


@dataclass(frozen=True)
class CheckoutMetadata:
    purchase_id: uuid.UUID
    user_id: str
    course_id: uuid.UUID
    instructor_share: int
    coupon_id: Optional[uuid.UUID] = None

    def to_dict(self):
        return {
            'purchase_id': str(self.purchase_id),
            'user_id': str(self.user_id),
            'course_id': str(self.course_id),
            'instructor_share': str(self.instructor_share),
            'coupon_id': str(self.coupon_id) if self.coupon_id else '',
        }

    @classmethod
    def from_dict(cls, data):
        if not isinstance(data, dict):
            raise MetadataError("Metadata must be a mapping")
        try:
            coupon = data.get('coupon_id') or None
            return cls(
                purchase_id=uuid.UUID(str(data['purchase_id'])),
                user_id=str(data['user_id']),
                course_id=uuid.UUID(str(data['course_id'])),
                instructor_share=int(data['instructor_share']),
                coupon_id=uuid.UUID(str(coupon)) if coupon else None,
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise MetadataError(f"Invalid checkout metadata: {exc}") from exc

    def to_reference(self) -> str:
        user = _compact_user(self.user_id)
        if REFERENCE_SEPARATOR in user:
            raise MetadataError(f"User id {self.user_id!r} cannot be encoded")
        reference = REFERENCE_SEPARATOR.join([
            REFERENCE_VERSION,
            compact_uuid(self.purchase_id),
            user,
            compact_uuid(self.course_id),
            str(int(self.instructor_share)),
            compact_uuid(self.coupon_id) if self.coupon_id else '',
        ])
        if len(reference) > PAYPAL_CUSTOM_ID_MAX_LENGTH:
            raise MetadataError(f"Reference too long ({len(reference)} chars)")
        return reference

    @classmethod
    def from_reference(cls, reference):
        parts = (reference or '').split(REFERENCE_SEPARATOR)
        if len(parts) != 6 or parts[0] != REFERENCE_VERSION:
            raise MetadataError(f"Unrecognised metadata reference: {reference!r}")
        _, purchase, user, course, share, coupon = parts
        try:
            return cls(
                purchase_id=expand_uuid(purchase),
                user_id=_expand_user(user),
                course_id=expand_uuid(course),
                instructor_share=int(share),
                coupon_id=expand_uuid(coupon) if coupon else None,
            )
        except ValueError as exc:
            raise MetadataError(f"Invalid metadata reference: {exc}") from exc

    @classmethod
    def for_purchase(cls, purchase):
        return cls(
            purchase_id=purchase.id,
            user_id=str(purchase.user_id),
            course_id=purchase.course_id,
            instructor_share=purchase.instructor_share,
            coupon_id=purchase.coupon_id,
        )


def purchase_id_from_reference(reference):
    """Extract the purchase id from either a compact reference or a bare UUID."""
    try:
        return CheckoutMetadata.from_reference(reference).purchase_id
    except MetadataError:
        try:
            return uuid.UUID(str(reference))
        except (TypeError, ValueError) as exc:
            raise MetadataError(f"No purchase id in reference {reference!r}") from exc
