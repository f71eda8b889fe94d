"""Shopify webhook receiver.

WHAT:
    One endpoint per tenant, `POST /webhooks/shopify/{tenant_id}`, for:
    1. customers/create, customers/update
    2. orders/create, orders/updated (and the legacy orders/update)
    3. products/create, products/update
    4. carts/create, carts/update, checkouts/create, checkouts/delete (events)

WHY:
    - Near-real-time updates between scheduled sweeps.
    - Records go through the same reconciliation routine as the sync path,
      so a webhook and a later pull agree on the stored row.
    - Every delivery is answered 200 {"received": true}; rejected deliveries
      are logged and dropped instead of being retried by Shopify.

SECURITY:
    X-Shopify-Hmac-SHA256 is verified against the tenant's webhook secret
    (falling back to SHOPIFY_WEBHOOK_SECRET) before anything is parsed.

REFERENCES:
    - https://shopify.dev/docs/apps/build/webhooks/subscribe/https
    - storepulse/services/reconciliation.py
"""

import json
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from storepulse.config import get_settings
from storepulse.database import get_db
from storepulse.errors import MalformedRecordError, SignatureVerificationError
from storepulse.models import Tenant
from storepulse.schemas import WebhookAck
from storepulse.security import decrypt_secret, verify_webhook_signature
from storepulse.services.reconciliation import reconcile_record, record_event, resolve_topic
from storepulse.telemetry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/shopify", tags=["Shopify Webhooks"])


def _webhook_secret(tenant: Tenant) -> Optional[str]:
    """Tenant secret if one is stored, else the global secret."""
    if tenant.webhook_secret_enc:
        return decrypt_secret(tenant.webhook_secret_enc, context=f"tenant:{tenant.id}:webhook")
    return get_settings().SHOPIFY_WEBHOOK_SECRET


def _load_tenant(db: Session, tenant_id: str) -> Optional[Tenant]:
    try:
        parsed = UUID(tenant_id)
    except ValueError:
        return None
    return db.query(Tenant).filter(Tenant.id == parsed).first()


@router.post("/{tenant_id}", response_model=WebhookAck)
async def receive_webhook(
    tenant_id: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """Verify, parse and apply one webhook delivery.

    RESPONSE:
        Always 200. `error` is set when the delivery was dropped.
    """
    body = await request.body()
    topic = request.headers.get("X-Shopify-Topic")
    hmac_header = request.headers.get("X-Shopify-Hmac-SHA256")

    tenant = _load_tenant(db, tenant_id)
    if not tenant:
        logger.warning(f"[SHOPIFY_WEBHOOK] Webhook received for unknown tenant: {tenant_id}")
        return WebhookAck(received=True, error="Unknown tenant")

    try:
        verify_webhook_signature(body, hmac_header, _webhook_secret(tenant))
    except (SignatureVerificationError, ValueError) as e:
        logger.warning(f"[SHOPIFY_WEBHOOK] {topic} rejected for tenant {tenant.id}: {e}")
        return WebhookAck(received=True, error="Invalid signature")

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.error(f"[SHOPIFY_WEBHOOK] Failed to parse JSON: {e}")
        return WebhookAck(received=True, error="Invalid JSON payload")

    record_kind, event_type = resolve_topic(topic)
    logger.info(f"[SHOPIFY_WEBHOOK] Received {topic} for tenant {tenant.id}")

    try:
        if record_kind is not None:
            reconcile_record(db, tenant.id, record_kind, payload)
        elif event_type is not None:
            record_event(db, tenant.id, event_type, payload)
        else:
            logger.info(f"[SHOPIFY_WEBHOOK] Unhandled webhook topic: {topic}")
    except MalformedRecordError as e:
        logger.warning(f"[SHOPIFY_WEBHOOK] Malformed {topic} payload for tenant {tenant.id}: {e.message}")
        return WebhookAck(received=True, error="Malformed payload")
    except Exception as e:
        db.rollback()
        logger.exception(f"[SHOPIFY_WEBHOOK] Processing error for {topic}: {e}")
        capture_exception(e, extra={"operation": "shopify_webhook", "topic": topic, "tenant_id": str(tenant.id)})
        return WebhookAck(received=True, error="Processing error")

    return WebhookAck(received=True)
