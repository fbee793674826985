"""
Order context as seen by the returns workflow.

Returns never hold an ``Order`` instance across calls; they read an
``OrderSnapshot`` and write back exactly two fields when a refund settles.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from django.utils import timezone

from common.exceptions import OrderNotFoundError
from .models import Order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderItemSnapshot:
    id: int
    product_id: str
    name: str
    category: str
    unit_price: Decimal
    quantity: int


@dataclass(frozen=True)
class OrderSnapshot:
    id: int
    order_number: str
    user_id: int
    status: str
    payment_status: str
    payment_method: str
    payment_id: str
    total_amount: Decimal
    created_at: datetime
    delivered_at: Optional[datetime] = None
    shipping_address: dict = field(default_factory=dict)
    items: List[OrderItemSnapshot] = field(default_factory=list)

    @property
    def categories(self) -> List[str]:
        return sorted({item.category for item in self.items if item.category})

    @property
    def paid_online(self) -> bool:
        return self.payment_method == 'online' and bool(self.payment_id)

    @classmethod
    def from_order(cls, order: Order) -> 'OrderSnapshot':
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            payment_id=order.payment_id,
            total_amount=order.total_amount,
            created_at=order.created_at,
            delivered_at=order.delivered_at,
            shipping_address=dict(order.shipping_address or {}),
            items=[
                OrderItemSnapshot(
                    id=item.id,
                    product_id=item.product_id,
                    name=item.name,
                    category=item.category,
                    unit_price=item.unit_price,
                    quantity=item.quantity,
                )
                for item in order.items.all()
            ],
        )


class OrderService:
    """Read/write seam between returns and orders."""

    @staticmethod
    def find_order_by_id(order_id: int, user=None) -> OrderSnapshot:
        """
        Load an order snapshot.

        Args:
            order_id: Order ID
            user: When given, the order must belong to this user

        Raises:
            OrderNotFoundError: No such order (or not owned by ``user``)
        """
        qs = Order.objects.prefetch_related('items')
        if user is not None:
            qs = qs.filter(user=user)
        order = qs.filter(id=order_id).first()
        if order is None:
            raise OrderNotFoundError(detail=f'Order {order_id} not found')
        return OrderSnapshot.from_order(order)

    @staticmethod
    def update_order_payment_status(order_id: int, payment_status: str, status: Optional[str] = None) -> None:
        """
        Write the payment status (and optionally the order status) of an order.

        Only these two columns are touched, with a single UPDATE.

        Raises:
            ValueError: Unknown payment or order status
            OrderNotFoundError: No such order
        """
        valid_payment = {value for value, _ in Order.PAYMENT_STATUS_CHOICES}
        valid_status = {value for value, _ in Order.STATUS_CHOICES}
        if payment_status not in valid_payment:
            raise ValueError(f'Invalid payment status: {payment_status}')
        if status is not None and status not in valid_status:
            raise ValueError(f'Invalid order status: {status}')

        updates = {'payment_status': payment_status, 'updated_at': timezone.now()}
        if status is not None:
            updates['status'] = status

        updated = Order.objects.filter(id=order_id).update(**updates)
        if not updated:
            raise OrderNotFoundError(detail=f'Order {order_id} not found')

        logger.info(f'Order #{order_id} updated: payment_status={payment_status}, status={status or "-"}')
