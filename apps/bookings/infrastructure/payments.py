"""
Payment Coordinator

The only source of truth for "was money actually committed". The booking
row keeps a cached ``payment_status`` for reads; state-changing decisions
always ask the coordinator.

Implementations:
- KaspiPaymentCoordinator: Kaspi.kz gateway over HTTP (requests)
- InMemoryPaymentCoordinator: process-local double for tests and local runs
"""

import hashlib
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal

import requests
from django.conf import settings  # type: ignore
from django.utils.module_loading import import_string  # type: ignore

from apps.bookings.domain.policies import ProviderStatus

logger = logging.getLogger(__name__)


class PaymentGatewayError(Exception):
    """Raised when the payment provider cannot be reached or refuses a request."""


@dataclass(frozen=True)
class PaymentAuthorization:
    ref: str
    client_secret: str
    amount: Decimal
    currency: str

    def to_dict(self) -> dict:
        return {
            "ref": self.ref,
            "client_secret": self.client_secret,
            "amount": str(self.amount),
            "currency": self.currency,
        }


@dataclass(frozen=True)
class PaymentState:
    ref: str
    status: ProviderStatus
    client_secret: str = ""

    @property
    def is_reusable(self) -> bool:
        """Whether the client can still complete this authorization."""
        return self.status not in (
            ProviderStatus.EXPIRED,
            ProviderStatus.CANCELLED,
            ProviderStatus.FAILED,
        )


class PaymentCoordinator(ABC):
    """Payment capability consumed by the booking orchestrator"""

    @abstractmethod
    def authorize(self, amount: Decimal, currency: str, metadata: dict) -> PaymentAuthorization:
        """Create an authorization for ``amount``; raises PaymentGatewayError."""

    @abstractmethod
    def retrieve_status(self, ref: str) -> PaymentState:
        """Current provider state for ``ref``; raises PaymentGatewayError."""


# Kaspi reports statuses in its own vocabulary
KASPI_STATUS_MAP = {
    "SUCCESS": ProviderStatus.SUCCEEDED,
    "PAID": ProviderStatus.SUCCEEDED,
    "PROCESSING": ProviderStatus.PROCESSING,
    "AUTHORIZED": ProviderStatus.REQUIRES_CAPTURE,
    "PENDING": ProviderStatus.REQUIRES_PAYMENT,
    "CREATED": ProviderStatus.REQUIRES_PAYMENT,
    "FAILED": ProviderStatus.FAILED,
    "DECLINED": ProviderStatus.FAILED,
    "EXPIRED": ProviderStatus.EXPIRED,
    "CANCELLED": ProviderStatus.CANCELLED,
    "CANCELED": ProviderStatus.CANCELLED,
}


class KaspiPaymentCoordinator(PaymentCoordinator):
    """Kaspi.kz payment gateway"""

    def __init__(self, api_key=None, merchant_id=None, secret_key=None, base_url=None, timeout=None, session=None):
        self.api_key = api_key if api_key is not None else settings.KASPI_API_KEY
        self.merchant_id = merchant_id if merchant_id is not None else settings.KASPI_MERCHANT_ID
        self.secret_key = secret_key if secret_key is not None else settings.KASPI_SECRET_KEY
        self.base_url = (base_url or settings.KASPI_API_BASE_URL).rstrip("/") + "/"
        self.timeout = timeout or getattr(settings, "KASPI_TIMEOUT_SECONDS", 30)
        self.session = session or requests.Session()

    def generate_signature(self, data: dict) -> str:
        """SHA256 over alphabetically sorted key=value pairs followed by the secret key"""
        sign_string = "&".join(f"{k}={v}" for k, v in sorted(data.items()))
        sign_string += f"&{self.secret_key}"
        return hashlib.sha256(sign_string.encode()).hexdigest()

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def authorize(self, amount, currency, metadata):
        booking_id = metadata.get("booking_id")
        transaction_id = f"booking_{booking_id}_{uuid.uuid4().hex[:8]}"
        payload = {
            "merchant_id": self.merchant_id,
            "order_id": str(booking_id),
            "transaction_id": transaction_id,
            # Kaspi takes amounts in minor units
            "amount": int(Decimal(amount) * 100),
            "currency": currency,
            "description": f"Booking #{booking_id}",
        }
        payload["signature"] = self.generate_signature(payload)

        logger.info(f"Requesting Kaspi authorization for booking {booking_id}, {amount} {currency}")
        try:
            response = self.session.post(
                f"{self.base_url}payments/create",
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Kaspi authorization request failed: {e}")
            raise PaymentGatewayError(f"Kaspi connection error: {e}") from e
        except ValueError as e:
            raise PaymentGatewayError(f"Kaspi returned a malformed response: {e}") from e

        if not isinstance(result, dict):
            raise PaymentGatewayError(f"Kaspi returned an unexpected response: {result!r}")

        if not result.get("success"):
            error_msg = (result.get("error") or {}).get("message", "Unknown error")
            logger.error(f"Kaspi API returned an error: {error_msg}")
            raise PaymentGatewayError(f"Kaspi error: {error_msg}")

        payment_id = result.get("payment_id")
        if not payment_id:
            logger.error(f"Kaspi accepted booking {booking_id} without a payment id")
            raise PaymentGatewayError("Kaspi response is missing payment_id")

        return PaymentAuthorization(
            ref=str(payment_id),
            client_secret=result.get("payment_url") or result.get("client_secret", ""),
            amount=Decimal(amount),
            currency=currency,
        )

    def retrieve_status(self, ref):
        params = {"merchant_id": self.merchant_id, "payment_id": ref}
        params["signature"] = self.generate_signature(params)

        try:
            response = self.session.get(
                f"{self.base_url}payments/{ref}/status",
                params=params,
                headers=self._headers(),
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Kaspi status request for {ref} failed: {e}")
            raise PaymentGatewayError(f"Kaspi status check failed: {e}") from e
        except ValueError as e:
            raise PaymentGatewayError(f"Kaspi returned a malformed response: {e}") from e

        if not isinstance(result, dict):
            raise PaymentGatewayError(f"Kaspi returned an unexpected status response for {ref}")

        raw_status = str(result.get("status") or "").upper()
        status = KASPI_STATUS_MAP.get(raw_status)
        if status is None:
            raise PaymentGatewayError(f"Unknown Kaspi payment status {raw_status!r} for {ref}")

        return PaymentState(ref=ref, status=status, client_secret=result.get("payment_url", ""))


@dataclass
class _StoredPayment:
    authorization: PaymentAuthorization
    status: ProviderStatus = ProviderStatus.REQUIRES_PAYMENT
    metadata: dict = field(default_factory=dict)


class InMemoryPaymentCoordinator(PaymentCoordinator):
    """
    Process-local payment double.

    Tests drive it with ``set_status`` and the ``fail_authorize`` /
    ``fail_retrieve`` switches.
    """

    def __init__(self, default_status=ProviderStatus.REQUIRES_PAYMENT):
        self.default_status = ProviderStatus(default_status)
        self.fail_authorize = False
        self.fail_retrieve = False
        self._payments = {}
        self._lock = threading.Lock()

    def authorize(self, amount, currency, metadata):
        if self.fail_authorize:
            raise PaymentGatewayError("Authorization declined")

        ref = f"pay_{uuid.uuid4().hex[:16]}"
        authorization = PaymentAuthorization(
            ref=ref,
            client_secret=f"{ref}_secret_{uuid.uuid4().hex[:8]}",
            amount=Decimal(amount),
            currency=currency,
        )
        with self._lock:
            self._payments[ref] = _StoredPayment(authorization, self.default_status, dict(metadata))
        return authorization

    def retrieve_status(self, ref):
        if self.fail_retrieve:
            raise PaymentGatewayError("Payment provider unavailable")
        with self._lock:
            stored = self._payments.get(ref)
        if stored is None:
            raise PaymentGatewayError(f"Unknown payment {ref}")
        return PaymentState(ref=ref, status=stored.status, client_secret=stored.authorization.client_secret)

    def set_status(self, ref: str, status) -> None:
        with self._lock:
            self._payments[ref].status = ProviderStatus(status)

    def authorizations(self):
        with self._lock:
            return [stored.authorization for stored in self._payments.values()]

    def reset(self) -> None:
        with self._lock:
            self._payments.clear()
        self.fail_authorize = False
        self.fail_retrieve = False


PAYMENT_COORDINATORS = {
    "kaspi": "apps.bookings.infrastructure.payments.KaspiPaymentCoordinator",
    "memory": "apps.bookings.infrastructure.payments.InMemoryPaymentCoordinator",
}

_coordinator = None
_coordinator_lock = threading.Lock()


def get_payment_coordinator() -> PaymentCoordinator:
    """Process-wide coordinator selected by the PAYMENT_COORDINATOR setting."""
    global _coordinator
    with _coordinator_lock:
        if _coordinator is None:
            backend = getattr(settings, "PAYMENT_COORDINATOR", "kaspi")
            _coordinator = import_string(PAYMENT_COORDINATORS.get(backend, backend))()
        return _coordinator


def reset_payment_coordinator() -> None:
    global _coordinator
    with _coordinator_lock:
        _coordinator = None
