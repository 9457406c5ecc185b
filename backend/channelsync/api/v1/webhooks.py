"""Store webhook receivers.

The store signs each delivery with HMAC-SHA256 over the raw request body,
base64-encoded in the ``X-Shopify-Hmac-SHA256`` header. Unsigned or
mis-signed deliveries are rejected before the body is parsed.
"""

import base64
import hashlib
import hmac
import json

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Request, status

from channelsync.config import settings
from channelsync.core.exceptions import ChannelSyncException
from channelsync.dependencies import get_sync_service
from channelsync.sync.sync_service import ProductSyncService

router = APIRouter()
logger = structlog.get_logger(__name__)

HMAC_HEADER = "X-Shopify-Hmac-SHA256"


def compute_signature(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a delivery's HMAC signature."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(body, secret).encode(), signature.encode())


async def _publish_new_product(service: ProductSyncService, product_id: str) -> None:
    channels = settings.get_default_sales_channels()
    try:
        outcome = await service.bulk_update_sales_channels([product_id], channels)
    except ChannelSyncException as e:
        logger.error("webhook_publish_failed", product_id=product_id, error=e.message)
        return
    logger.info(
        "webhook_product_published",
        product_id=product_id,
        success=outcome.success,
        channels=channels,
    )


@router.post("/product-created")
async def product_created(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_hmac_sha256: str = Header("", alias=HMAC_HEADER),
    service: ProductSyncService = Depends(get_sync_service),
):
    """Publish a newly created product to the default sales channels.

    The delivery is acknowledged right away; publishing runs after the
    response is sent.
    """
    body = await request.body()
    if not verify_signature(body, x_shopify_hmac_sha256, settings.STORE_WEBHOOK_SECRET):
        logger.warning("webhook_signature_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    product_id = None
    if isinstance(payload, dict):
        product_id = payload.get("admin_graphql_api_id") or payload.get("id")
    if not product_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing product id")

    background_tasks.add_task(_publish_new_product, service, str(product_id))
    logger.info("webhook_product_created_received", product_id=str(product_id))
    return {"received": True, "productId": str(product_id)}
