from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.utils import timezone

from orders.models import Order, OrderItem
from returns.models import ReturnItem, ReturnRequest, ReturnStatusHistory

ADDRESS = {
    'full_name': 'Asha Rao',
    'phone': '+91 98765 43210',
    'address_line1': '12 MG Road',
    'address_line2': 'Flat 4B',
    'city': 'Pune',
    'state': 'Maharashtra',
    'postal_code': '411001',
    'country': 'India',
}


def make_user(username='buyer', **kwargs):
    return get_user_model().objects.create_user(username=username, password='pass', **kwargs)


def make_order(user, status='delivered', total=Decimal('5000.00'), days_ago=5, category='jewellery',
               payment_method='online', payment_id='pay_ABC123', quantity=2):
    order = Order.objects.create(
        user=user,
        status=status,
        payment_status='paid',
        payment_method=payment_method,
        payment_id=payment_id,
        total_amount=total,
        shipping_address=dict(ADDRESS),
    )
    OrderItem.objects.create(
        order=order,
        product_id='ring-01',
        name='Gold ring',
        category=category,
        unit_price=total / quantity,
        quantity=quantity,
    )
    Order.objects.filter(pk=order.pk).update(created_at=timezone.now() - timedelta(days=days_ago))
    order.refresh_from_db()
    return order


def make_return(order, status='requested', refund_method='original_payment', **fields):
    """Return in ``status`` with a matching history row, as the workflow would leave it."""
    item = order.items.first()
    return_request = ReturnRequest.objects.create(
        order=order,
        user=order.user,
        status=status,
        reason='defective_product',
        original_amount=order.total_amount,
        refund_amount=order.total_amount,
        refund_method=refund_method,
        pickup_address=dict(order.shipping_address),
        **fields,
    )
    ReturnItem.objects.create(
        return_request=return_request,
        order_item=item,
        product_id=item.product_id,
        name=item.name,
        unit_price=item.unit_price,
        quantity=item.quantity,
        return_reason='defective_product',
    )
    ReturnStatusHistory.objects.create(return_request=return_request, status=status, note='fixture')
    return_request.refresh_from_db()
    return return_request


def latest_history_status(return_request):
    return return_request.status_history.order_by('-created_at', '-id').values_list('status', flat=True).first()
