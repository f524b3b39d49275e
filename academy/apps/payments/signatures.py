# FILE: /academy/apps/payments/signatures.py
"""
Webhook signature verification.

Pure functions: they take the secret explicitly and never touch the
database. Every digest comparison goes through ``hmac.compare_digest``.
"""
import hashlib
import hmac
import logging

import stripe

logger = logging.getLogger(__name__)

# Paymob's transaction-processed callback HMAC covers exactly these fields,
# concatenated in this order. Dotted names reach into nested objects.
PAYMOB_HMAC_FIELDS = (
    'amount_cents',
    'created_at',
    'currency',
    'error_occured',
    'has_parent_transaction',
    'id',
    'integration_id',
    'is_3d_secure',
    'is_auth',
    'is_capture',
    'is_refunded',
    'is_standalone_payment',
    'is_voided',
    'order.id',
    'owner',
    'pending',
    'source_data.pan',
    'source_data.sub_type',
    'source_data.type',
    'success',
)


def _as_bytes(value):
    if isinstance(value, bytes):
        return value
    return (value or '').encode('utf-8')


def _hex_matches(expected: str, received) -> bool:
    """Constant-time compare of a hex digest with caller-supplied text, as bytes."""
    if not isinstance(received, str):
        return False
    received = received.strip().lower().encode('utf-8', 'replace')
    return hmac.compare_digest(expected.encode('ascii'), received)


def _lookup(obj, dotted):
    value = obj
    for part in dotted.split('.'):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def _render(value):
    """Render one field the way Paymob does before hashing."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def paymob_concatenated_string(transaction: dict) -> str:
    return ''.join(_render(_lookup(transaction, field)) for field in PAYMOB_HMAC_FIELDS)


def compute_paymob_hmac(transaction: dict, secret) -> str:
    message = paymob_concatenated_string(transaction)
    return hmac.new(_as_bytes(secret), message.encode('utf-8'), hashlib.sha512).hexdigest()


def verify_paymob_hmac(transaction: dict, received: str, secret) -> bool:
    """HMAC-SHA512 over Paymob's ordered field list (not the raw body)."""
    if not received or not secret or not isinstance(transaction, dict):
        return False
    expected = compute_paymob_hmac(transaction, secret)
    return _hex_matches(expected, received)


def compute_body_hmac_sha256(raw_body: bytes, secret) -> str:
    return hmac.new(_as_bytes(secret), _as_bytes(raw_body), hashlib.sha256).hexdigest()


def verify_body_hmac_sha256(raw_body: bytes, received: str, secret) -> bool:
    """HMAC-SHA256 over the raw request body, hex encoded (Tap ``hashstring``)."""
    if not received or not secret:
        return False
    expected = compute_body_hmac_sha256(raw_body, secret)
    return _hex_matches(expected, received)


def verify_stripe_signature(raw_body: bytes, header: str, secret, tolerance=300) -> bool:
    """Stripe's timestamped ``Stripe-Signature`` scheme, checked by the SDK."""
    if not header or not secret:
        return False
    try:
        payload = raw_body.decode('utf-8') if isinstance(raw_body, bytes) else raw_body
        return stripe.WebhookSignature.verify_header(payload, header, secret, tolerance)
    except stripe.SignatureVerificationError:
        return False
    except UnicodeDecodeError:
        return False


def payload_hash(raw_body) -> str:
    """SHA-256 of the raw payload; the only form in which rejected bodies are logged."""
    return hashlib.sha256(_as_bytes(raw_body)).hexdigest()
