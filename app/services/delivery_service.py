"""
Delivery creation hook for completed POS sales.

Creates a draft Delivery record in the completing transaction, then
notifies registered listeners (e.g. the delivery module's dispatcher).
Listener failures are logged and never fail the sale; the delivery module
owns retries.
"""
import logging
import secrets
from datetime import date
from typing import Callable, List, Optional

from sqlalchemy import select

from app.database import utcnow
from app.models import Delivery
from app.services.sale_aggregate import DeliveryRequest

logger = logging.getLogger(__name__)

# Excludes ambiguous characters (0, O, I, 1)
TRACKING_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
MAX_TRACKING_ATTEMPTS = 5

DeliveryListener = Callable[[Delivery, DeliveryRequest], None]
_listeners: List[DeliveryListener] = []


def register_delivery_listener(listener: DeliveryListener) -> None:
    """Subscribe to delivery creation events."""
    if listener not in _listeners:
        _listeners.append(listener)


def unregister_delivery_listener(listener: DeliveryListener) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def generate_tracking_number(today: Optional[date] = None) -> str:
    """Format: DEL-YYYYMMDD-XXXXXX (e.g. DEL-20250209-A7B9C2)."""
    today = today or utcnow().date()
    random_part = ''.join(secrets.choice(TRACKING_ALPHABET) for _ in range(6))
    return f"DEL-{today.strftime('%Y%m%d')}-{random_part}"


def order_reference_for(sale_id: str) -> str:
    """SALE- followed by the first 8 characters of the sale id, upper-cased."""
    return f"SALE-{sale_id[:8].upper()}"


def create_delivery(session, request: DeliveryRequest) -> str:
    """
    Insert a draft delivery for a completing sale and return its id.

    Does not commit: the sale completion's unit of work does.
    """
    tracking_number = generate_tracking_number()
    for _ in range(MAX_TRACKING_ATTEMPTS):
        taken = session.execute(
            select(Delivery.id).where(Delivery.tracking_number == tracking_number)
        ).scalar()
        if taken is None:
            break
        tracking_number = generate_tracking_number()

    delivery = Delivery(
        sale_id=request.sale_id,
        tracking_number=tracking_number,
        order_reference=order_reference_for(request.sale_id),
        status='draft',
        customer_name=request.customer_name,
        customer_address=request.customer_address,
        customer_phone=request.customer_phone,
        customer_email=request.customer_email,
        notes=request.notes or f'Delivery for sale {request.sale_id}',
        created_at=utcnow()
    )
    session.add(delivery)
    session.flush()
    logger.info(f"Delivery {delivery.id} ({tracking_number}) created for sale {request.sale_id}")

    _notify_listeners(delivery, request)
    return delivery.id


def _notify_listeners(delivery: Delivery, request: DeliveryRequest) -> None:
    for listener in list(_listeners):
        try:
            listener(delivery, request)
        except Exception as e:
            # Log error but don't fail the sale
            logger.error(f"Delivery listener failed for delivery {delivery.id}: {e}", exc_info=True)
