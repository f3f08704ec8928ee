"""
Payments (Stripe)

The payment collaborator is configured once at process start:
- PaymentsEnabled(gateway) when STRIPE_SECRET_KEY is set
- PaymentsDisabled(reason) otherwise

The orchestrators receive this value explicitly; there is no module-level
Stripe client. Every intent is created with the reservation code as its
idempotency key, so retried requests for one reservation map to one intent.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import stripe

from destiine.core.exceptions import UpstreamError

logger = logging.getLogger(__name__)

STRIPE_MINIMUM_CENTS = 50


@dataclass
class PaymentIntentParams:
    amount_cents: int
    currency: str
    customer_id: str
    idempotency_key: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class PaymentIntentResult:
    intent_id: str
    status: str
    client_secret: Optional[str] = None


@dataclass
class PaymentEvent:
    """A verified processor event, reduced to what the booking core reads."""
    event_id: str
    type: str
    intent_id: Optional[str]
    amount_cents: int = 0
    currency: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def reservation_code(self) -> Optional[str]:
        return self.metadata.get("reservation_code")

    @property
    def kind(self) -> Optional[str]:
        return self.metadata.get("kind")


class InvalidWebhookError(Exception):
    """Payload could not be parsed or its signature did not verify."""


class PaymentGateway(ABC):
    @abstractmethod
    async def create_customer(self, name: str, email: str) -> str:
        ...

    @abstractmethod
    async def create_payment_intent(self, params: PaymentIntentParams) -> PaymentIntentResult:
        ...

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: str) -> PaymentEvent:
        ...


class StripeGateway(PaymentGateway):
    """Stripe through an explicit StripeClient (async calls over httpx)."""

    def __init__(self, secret_key: str, webhook_secret: str = "", client: Optional[stripe.StripeClient] = None):
        self.webhook_secret = webhook_secret
        self.client = client or stripe.StripeClient(secret_key, http_client=stripe.HTTPXClient())

    async def create_customer(self, name: str, email: str) -> str:
        """Return the existing customer for this email, or create one."""
        try:
            existing = await self.client.v1.customers.list_async(params={"email": email, "limit": 1})
            if existing.data:
                return existing.data[0].id
            customer = await self.client.v1.customers.create_async(params={"name": name, "email": email})
        except stripe.StripeError as e:
            logger.error(f"Stripe customer creation failed for {email}: {e}")
            raise UpstreamError("Payment provider is unavailable, please try again") from e
        logger.info(f"Created Stripe customer {customer.id} for {email}")
        return customer.id

    async def create_payment_intent(self, params: PaymentIntentParams) -> PaymentIntentResult:
        try:
            intent = await self.client.v1.payment_intents.create_async(
                params={
                    "amount": params.amount_cents,
                    "currency": params.currency,
                    "customer": params.customer_id,
                    "metadata": params.metadata,
                    "automatic_payment_methods": {"enabled": True},
                },
                options={"idempotency_key": params.idempotency_key},
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe payment intent failed (key={params.idempotency_key}): {e}")
            raise UpstreamError("Payment provider is unavailable, please try again") from e
        return PaymentIntentResult(intent_id=intent.id, status=intent.status, client_secret=intent.client_secret)

    def parse_webhook(self, payload: bytes, signature: str) -> PaymentEvent:
        if not self.webhook_secret:
            raise InvalidWebhookError("Webhook secret not configured")
        try:
            event = self.client.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise InvalidWebhookError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            raise InvalidWebhookError("Invalid signature") from e

        obj = event.data.object
        intent_id = obj.get("id") if event.type.startswith("payment_intent.") else None
        return PaymentEvent(
            event_id=event.id,
            type=event.type,
            intent_id=intent_id,
            amount_cents=int(obj.get("amount") or 0),
            currency=str(obj.get("currency") or ""),
            metadata=dict(obj.get("metadata") or {}),
        )


@dataclass
class PaymentsDisabled:
    reason: str


@dataclass
class PaymentsEnabled:
    gateway: PaymentGateway
    currency: str = "usd"
    publishable_key: str = ""


PaymentsConfig = Union[PaymentsDisabled, PaymentsEnabled]


def build_payments_config(settings) -> PaymentsConfig:
    """Created once at process start."""
    if not settings.payments_enabled:
        logger.warning("STRIPE_SECRET_KEY not set - payments disabled")
        return PaymentsDisabled(reason="Stripe credentials not configured")
    return PaymentsEnabled(
        gateway=StripeGateway(settings.STRIPE_SECRET_KEY, settings.STRIPE_WEBHOOK_SECRET),
        currency=(settings.STRIPE_CURRENCY or "usd").lower(),
        publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
    )
