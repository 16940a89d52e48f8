"""
Subscription (Premium) Service

Premium status is owned by the payment provider. It reaches us two ways:
1. Provider webhooks (Stripe or Mercado Pago), mapped here to a flag
2. A trusted fetch of the account row at session start (`refresh`)

CRITICAL: Nothing else writes subscription status. The action executor
only reads it (through the Entity Store cache) to apply free-plan limits.

Signature verification happens before a payload reaches this service.
"""

import asyncio
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

import structlog
from pydantic import BaseModel

from odrna.audit import AuditLogger
from odrna.config import AppSettings, SyncSettings, get_settings
from odrna.models.audit import AuditEventBuilder
from odrna.models.entities import PlanName, SubscriptionStatus
from odrna.services.storage.interface import HostedStoreInterface
from odrna.store import EntityStore


logger = structlog.get_logger(__name__)


class PaymentProvider(str, Enum):
    STRIPE = "stripe"
    MERCADO_PAGO = "mercadopago"


# Stripe event type -> premium flag (None: decided by subscription status)
STRIPE_EVENTS: dict[str, Optional[bool]] = {
    "checkout.session.completed": True,
    "customer.subscription.updated": None,
    "customer.subscription.deleted": False,
    "invoice.payment_succeeded": True,
    "invoice.payment_failed": False,
}

MERCADO_PAGO_NOTIFICATIONS = ("subscription_preapproval", "payment.created")
MERCADO_PAGO_PREMIUM_STATUSES = ("authorized", "approved")
MERCADO_PAGO_FREE_STATUSES = ("paused", "cancelled", "expired", "rejected")


class WebhookOutcome(BaseModel):
    """What handling one webhook payload did."""

    provider: Optional[PaymentProvider] = None
    event_type: Optional[str] = None
    recognized: bool = False
    accepted: bool = True
    email: Optional[str] = None
    is_premium: Optional[bool] = None
    applied: bool = False
    message: str = ""


def _get(payload: Any, *path: str) -> Any:
    """Walk nested dicts; None as soon as a key is missing."""
    current = payload
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _dict_at(payload: Any, *path: str) -> dict:
    """The dict at `path`, or {} when it is missing or not an object."""
    value = _get(payload, *path)
    return value if isinstance(value, dict) else {}


def _epoch_to_date(value: Any) -> Optional[date]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc).date()
    if isinstance(value, str) and len(value) >= 10:
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
    return None


class SubscriptionService:
    """
    Maps payment webhooks to premium status and keeps the local cache fresh.
    """

    def __init__(
        self,
        hosted_store: Optional[HostedStoreInterface],
        app_settings: Optional[AppSettings] = None,
        sync_settings: Optional[SyncSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._hosted = hosted_store
        self._app = app_settings or get_settings().app
        self._sync = sync_settings or get_settings().sync
        self._audit = audit_logger or AuditLogger()

    # -------------------------------------------------------------------------
    # Webhook mapping
    # -------------------------------------------------------------------------

    def _interpret_stripe(self, payload: dict) -> WebhookOutcome:
        event_type = payload.get("type")
        obj = _dict_at(payload, "data", "object")
        outcome = WebhookOutcome(
            provider=PaymentProvider.STRIPE,
            event_type=event_type,
            recognized=True,
        )

        flag = STRIPE_EVENTS[event_type]
        if flag is None:
            flag = obj.get("status") == "active"
        outcome.is_premium = flag

        email = (
            obj.get("customer_email")
            or _get(obj, "customer_details", "email")
            or obj.get("email")
            or payload.get("email")
        )
        outcome.email = email.strip().lower() if isinstance(email, str) and email.strip() else None
        return outcome

    def _interpret_mercado_pago(self, payload: dict) -> WebhookOutcome:
        event_type = payload.get("type") or payload.get("action")
        data = _dict_at(payload, "data")
        status = data.get("status") or payload.get("status")
        outcome = WebhookOutcome(
            provider=PaymentProvider.MERCADO_PAGO,
            event_type=event_type,
            recognized=True,
        )

        if status in MERCADO_PAGO_PREMIUM_STATUSES:
            outcome.is_premium = True
        elif status in MERCADO_PAGO_FREE_STATUSES:
            outcome.is_premium = False
        else:
            outcome.recognized = False
            outcome.message = f"Unhandled Mercado Pago status: {status!r}"

        email = data.get("payer_email") or payload.get("payer_email")
        outcome.email = email.strip().lower() if isinstance(email, str) and email.strip() else None
        return outcome

    def interpret(self, payload: Any) -> WebhookOutcome:
        """Map a provider payload to an outcome without writing anything."""
        if not isinstance(payload, dict):
            return WebhookOutcome(accepted=False, message="Payload must be a JSON object")

        if payload.get("type") in STRIPE_EVENTS:
            return self._interpret_stripe(payload)
        if (
            payload.get("type") in MERCADO_PAGO_NOTIFICATIONS
            or payload.get("action") in MERCADO_PAGO_NOTIFICATIONS
        ):
            return self._interpret_mercado_pago(payload)

        return WebhookOutcome(
            event_type=payload.get("type") or payload.get("action"),
            message="Webhook received",
        )

    def _status_for(self, outcome: WebhookOutcome, payload: dict) -> SubscriptionStatus:
        if not outcome.is_premium:
            return SubscriptionStatus.free()

        obj = _dict_at(payload, "data", "object") or _dict_at(payload, "data")
        renewal = (
            _epoch_to_date(obj.get("current_period_end"))
            or _epoch_to_date(obj.get("next_payment_date"))
        )
        return SubscriptionStatus(
            is_premium=True,
            plan_name=PlanName.PREMIUM,
            price=Decimal(str(self._app.premium_price)),
            start_date=date.today(),
            renewal_date=renewal,
        )

    async def handle_webhook(self, payload: Any) -> WebhookOutcome:
        """
        Apply a payment webhook to the account with the payer's email.

        Unknown events are acknowledged and ignored. A recognized event
        without an email is rejected. Never raises.
        """
        outcome = self.interpret(payload)

        if not outcome.recognized:
            await self._audit.log(AuditEventBuilder.webhook_ignored(
                outcome.event_type or "unknown", outcome.message or "unrecognized event",
            ))
            return outcome

        if not outcome.email:
            outcome.accepted = False
            outcome.message = "Payer email not found"
            await self._audit.log(AuditEventBuilder.webhook_ignored(
                outcome.event_type or "unknown", outcome.message,
            ))
            return outcome

        if self._hosted is None:
            outcome.accepted = False
            outcome.message = "No hosted store configured"
            return outcome

        status = self._status_for(outcome, payload)
        try:
            outcome.applied = await asyncio.wait_for(
                self._hosted.update_subscription(outcome.email, status),
                timeout=self._sync.timeout_seconds,
            )
        except Exception as e:
            outcome.accepted = False
            outcome.message = "Failed to update premium status"
            await self._audit.log(AuditEventBuilder.external_service_error(
                "hosted_store", str(e) or type(e).__name__,
            ))
            return outcome

        outcome.message = (
            "Premium activated" if outcome.is_premium else "Premium cancelled"
        )
        await self._audit.log(AuditEventBuilder.subscription_updated(
            outcome.email,
            bool(outcome.is_premium),
            f"{outcome.provider.value}:{outcome.event_type}",
            outcome.applied,
        ))
        return outcome

    # -------------------------------------------------------------------------
    # Trusted fetch
    # -------------------------------------------------------------------------

    async def refresh(self, email: Optional[str], store: EntityStore) -> SubscriptionStatus:
        """
        Fetch the account's status and cache it locally.

        On any failure (or unknown account) the cached status is kept.
        """
        cached = store.get_subscription()
        if not email or self._hosted is None:
            return cached

        try:
            status = await asyncio.wait_for(
                self._hosted.fetch_subscription(email.strip().lower()),
                timeout=self._sync.timeout_seconds,
            )
        except Exception as e:
            logger.warning("subscription_refresh_failed", error=str(e) or type(e).__name__)
            return cached

        if status is None:
            logger.info("subscription_account_not_found")
            return cached

        store.save_subscription(status)
        return status
