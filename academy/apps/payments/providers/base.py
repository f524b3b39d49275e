# FILE: /academy/apps/payments/providers/base.py
"""
Provider adapter contract shared by all payment networks.

Each network gets one ``ProviderAdapter`` subclass that hides its wire
format, auth scheme and webhook shape. Callers only ever see the
dataclasses below and the exceptions in ``academy.core.exceptions``.
"""
import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from academy.core.exceptions import AuthExpired, ProviderRejected, ProviderUnavailable
from ..metadata import CheckoutMetadata, MetadataError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10  # seconds


class EventKind:
    """Canonical webhook event kinds."""
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    APPROVED = "APPROVED"      # Buyer approved; merchant must capture
    IGNORED = "IGNORED"


class ConfirmationStatus:
    SUCCEEDED = "SUCCEEDED"
    PENDING = "PENDING"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class WebhookPayloadError(ValueError):
    """Verified webhook body is missing fields the ledger needs."""


@dataclass
class CheckoutRequest:
    purchase_id: uuid.UUID
    amount: int
    currency: str
    description: str
    buyer_email: str
    buyer_name: str
    success_url: str
    cancel_url: str
    metadata: CheckoutMetadata
    buyer_phone: Optional[str] = None


@dataclass
class CheckoutSession:
    redirect_url: str
    session_ref: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class Confirmation:
    status: str
    paid_amount: Optional[int]
    currency: Optional[str]
    provider_transaction_id: Optional[str]
    session_ref: Optional[str] = None
    payer_email: Optional[str] = None
    metadata: Optional[CheckoutMetadata] = None
    raw_status: str = ""


@dataclass
class RefundResult:
    refund_id: str
    status: str


@dataclass
class PaymentEvent:
    """A provider callback mapped onto the ledger's vocabulary."""
    provider: str
    kind: str
    event_type: str = ""
    event_id: Optional[str] = None
    purchase_id: Optional[uuid.UUID] = None
    session_ref: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    payer_email: Optional[str] = None
    metadata: Optional[CheckoutMetadata] = None
    raw_status: str = ""
    refund_id: str = ""
    reason: str = ""
    payload_hash: str = ""

    def __post_init__(self):
        if self.purchase_id is None and self.metadata is not None:
            self.purchase_id = self.metadata.purchase_id
        if self.currency:
            self.currency = self.currency.upper()

    @classmethod
    def from_confirmation(cls, provider, confirmation: Confirmation, event_type="confirmation"):
        kind = {
            ConfirmationStatus.SUCCEEDED: EventKind.SUCCEEDED,
            ConfirmationStatus.FAILED: EventKind.FAILED,
            ConfirmationStatus.REFUNDED: EventKind.REFUNDED,
        }.get(confirmation.status, EventKind.IGNORED)
        return cls(
            provider=provider,
            kind=kind,
            event_type=event_type,
            session_ref=confirmation.session_ref,
            provider_transaction_id=confirmation.provider_transaction_id,
            amount=confirmation.paid_amount,
            currency=confirmation.currency,
            payer_email=confirmation.payer_email,
            metadata=confirmation.metadata,
            raw_status=confirmation.raw_status,
            reason=confirmation.raw_status.lower() if kind == EventKind.FAILED else "",
        )


def metadata_from_dict(data):
    """Decode echoed metadata, tolerating providers that drop it."""
    if not data:
        return None
    try:
        return CheckoutMetadata.from_dict(data)
    except MetadataError:
        logger.warning("Ignoring undecodable provider metadata")
        return None


def metadata_from_reference(reference):
    if not reference:
        return None
    try:
        return CheckoutMetadata.from_reference(reference)
    except MetadataError:
        logger.warning("Ignoring undecodable provider reference")
        return None


def split_name(full_name, placeholder="NA"):
    parts = (full_name or "").split()
    first = parts[0] if parts else placeholder
    last = " ".join(parts[1:]) or placeholder
    return first, last


class TokenCache:
    """
    In-process bearer token cache with single-flight refresh.

    The lock is held while fetching, so concurrent callers that find the
    cache empty wait for the one in-flight fetch instead of issuing their own.
    """

    def __init__(self, leeway=60):
        self.leeway = leeway
        self._lock = threading.Lock()
        self._token = None
        self._expires_at = 0.0

    def get(self, fetch):
        """``fetch`` returns ``(token, ttl_seconds)``."""
        with self._lock:
            if self._token and time.monotonic() < self._expires_at:
                return self._token
            token, ttl = fetch()
            self._token = token
            self._expires_at = time.monotonic() + max(0, int(ttl) - self.leeway)
            return token

    def invalidate(self, token=None):
        """Drop the cached token (only if it is still ``token`` when given)."""
        with self._lock:
            if token is None or token == self._token:
                self._token = None
                self._expires_at = 0.0

    def reset(self):
        self.invalidate()


class ProviderAdapter(ABC):
    """
    One payment network. Subclasses set ``provider``, ``label``,
    ``supported_currencies`` and ``settings_name`` and implement the
    abstract methods.
    """
    provider = None
    label = ""
    supported_currencies = ()
    settings_name = None
    requires_capture = False
    refund_requires_amount = False
    required_credentials = ()

    def __init__(self, config=None):
        self.config = config if config is not None else getattr(settings, self.settings_name, {}) or {}
        self.timeout = self.config.get("TIMEOUT") or DEFAULT_TIMEOUT
        self.base_url = (self.config.get("BASE_URL") or "").rstrip("/")

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @property
    def is_configured(self):
        return all(self.config.get(key) for key in self.required_credentials)

    @property
    def is_enabled(self):
        enabled = settings.PAYMENTS.get("ENABLED_PROVIDERS") or []
        return self.provider in enabled and self.is_configured

    def supports_currency(self, currency):
        return (currency or "").upper() in self.supported_currencies

    def describe(self):
        return {
            "provider": self.provider,
            "label": self.label,
            "currencies": list(self.supported_currencies),
            "requires_capture": self.requires_capture,
        }

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abstractmethod
    def create_checkout(self, request: CheckoutRequest) -> CheckoutSession:
        """Create the provider-side session. Never retried internally."""

    @abstractmethod
    def retrieve_confirmation(self, ref) -> Confirmation:
        """Read the provider's view of a payment. Idempotent, safe to retry."""

    @abstractmethod
    def create_refund(self, provider_transaction_id, amount=None, currency=None) -> RefundResult:
        """Refund ``amount`` minor units, or everything when ``amount`` is None."""

    @abstractmethod
    def verify_webhook(self, headers, body: bytes, query=None) -> bool:
        """True only if the callback provably came from the provider."""

    @abstractmethod
    def parse_webhook(self, payload, query=None) -> PaymentEvent:
        """Map a verified, decoded callback onto a ``PaymentEvent``."""

    def capture(self, session_ref) -> Confirmation:
        """Second step of two-phase providers. Others only report status."""
        return self.retrieve_confirmation(session_ref)

    # ------------------------------------------------------------------
    # HTTP helpers
    # ------------------------------------------------------------------

    def _session(self, retry=False):
        session = requests.Session()
        if retry:
            retries = Retry(
                total=3,
                backoff_factor=1,
                status_forcelist=[500, 502, 503, 504],
                allowed_methods=["GET"],
                raise_on_status=False,
            )
            session.mount("https://", HTTPAdapter(max_retries=retries))
        return session

    def _url(self, path):
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(self, method, path, *, retry=False, **kwargs):
        """
        Perform one HTTP call and classify failures.
        Timeouts, connection errors and 5xx raise ProviderUnavailable;
        401 raises AuthExpired; any other 4xx raises ProviderRejected.
        """
        kwargs.setdefault("timeout", self.timeout)
        url = self._url(path)
        try:
            with self._session(retry=retry) as session:
                response = session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            logger.warning(f"{self.provider} {method} {path} failed: {exc.__class__.__name__}")
            raise ProviderUnavailable(detail=f"{self.label} is unreachable.") from exc

        if response.status_code >= 500:
            logger.warning(f"{self.provider} {method} {path} returned {response.status_code}")
            raise ProviderUnavailable(detail=f"{self.label} returned HTTP {response.status_code}.")
        if response.status_code == 401:
            raise AuthExpired()
        if response.status_code >= 400:
            message = self._error_message(response)
            logger.info(f"{self.provider} {method} {path} rejected ({response.status_code}): {message}")
            raise ProviderRejected(detail=message or f"{self.label} rejected the request.")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderUnavailable(detail=f"{self.label} returned an unreadable response.") from exc

    @staticmethod
    def _error_message(response):
        try:
            data = response.json()
        except ValueError:
            return ""
        if isinstance(data, dict):
            for key in ("message", "detail", "error_description", "description"):
                value = data.get(key)
                if isinstance(value, str) and value:
                    return value
            errors = data.get("errors")
            if isinstance(errors, list) and errors and isinstance(errors[0], dict):
                return str(errors[0].get("description") or errors[0].get("message") or "")
        return ""


class TokenAuthMixin:
    """
    Adapters whose calls need a short-lived bearer token.
    Subclasses define a class-level ``token_cache`` and ``_fetch_token()``.
    """
    token_cache: TokenCache = None

    def _fetch_token(self):
        raise NotImplementedError

    def get_token(self):
        return self.token_cache.get(self._fetch_token)

    def _with_token(self, call):
        """Run ``call(token)``; on AuthExpired refresh the token and retry exactly once."""
        token = self.get_token()
        try:
            return call(token)
        except AuthExpired:
            logger.info(f"{self.provider} token refused, refreshing once")
            self.token_cache.invalidate(token)
            return call(self.get_token())
