"""
Return lifecycle orchestration: creation, customer cancellation,
warehouse inspection, messages and notes, and the admin status change
entry point that routes to pickup and settlement where those apply.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone
from rest_framework.exceptions import ValidationError

from common.audit_logger import AuditLogger
from common.exceptions import (
    DuplicateReturnError,
    InvalidReturnStateError,
    InvalidTransitionError,
    OrderNotFoundError,
    PersistenceFailureError,
    ReturnNotEligibleError,
    ReturnNotFoundError,
    TransitionNotAllowedError,
)
from common.permissions import is_returns_admin
from .eligibility import MSG_EXISTING_RETURN, evaluate_order_eligibility
from .models import (
    ACTIVE_RETURN_CONSTRAINT,
    INACTIVE_STATUSES,
    ReturnAdminNote,
    ReturnCustomerMessage,
    ReturnItem,
    ReturnRequest,
    ReturnStatusHistory,
)
from .state_machine import ReturnStateMachine, ReturnStatus

logger = logging.getLogger(__name__)

CUSTOMER_CANCEL_NOTE = 'Cancelled by customer'


def _actor(user):
    return user if user is not None and user.is_authenticated else None


def get_return_for_user(return_id: int, user) -> ReturnRequest:
    """Load a return visible to ``user``; other customers' returns look missing."""
    qs = ReturnRequest.objects.select_related('order', 'user')
    if not is_returns_admin(user):
        qs = qs.filter(user=user)
    return_request = qs.filter(pk=return_id).first()
    if return_request is None:
        raise ReturnNotFoundError(detail=f'Return request {return_id} not found')
    return return_request


def _build_items(order, requested_items: Optional[List[Dict[str, Any]]], default_reason: str):
    """
    Resolve requested lines against the order's lines.

    An empty request returns every line of the order in full.
    """
    order_items = {item.id: item for item in order.items.all()}
    if not requested_items:
        return [
            {
                'order_item': item,
                'quantity': item.quantity,
                'return_reason': default_reason,
                'detailed_reason': '',
                'item_condition': 'unused',
            }
            for item in order_items.values()
        ]

    resolved = []
    seen = set()
    for entry in requested_items:
        order_item = order_items.get(entry['order_item_id'])
        if order_item is None:
            raise ValidationError({'items': [f'Order item {entry["order_item_id"]} is not part of this order']})
        if order_item.id in seen:
            raise ValidationError({'items': [f'Order item {order_item.id} listed more than once']})
        seen.add(order_item.id)
        quantity = entry.get('quantity') or order_item.quantity
        if quantity > order_item.quantity:
            raise ValidationError({'items': [f'Cannot return {quantity} of {order_item.name}; {order_item.quantity} ordered']})
        resolved.append({
            'order_item': order_item,
            'quantity': quantity,
            'return_reason': entry.get('return_reason') or default_reason,
            'detailed_reason': entry.get('detailed_reason', ''),
            'item_condition': entry.get('item_condition', 'unused'),
        })
    return resolved


def _duplicate_or_failure(order, exc: IntegrityError):
    """Map an integrity error on insert to the error the caller should see."""
    existing = ReturnRequest.objects.filter(order=order).exclude(status__in=INACTIVE_STATUSES).first()
    if existing is not None or ACTIVE_RETURN_CONSTRAINT in str(exc):
        # Lost the race against a concurrent request for the same order
        logger.warning(f'Duplicate active return rejected for order #{order.pk}')
        return DuplicateReturnError(extra={'existing_return_number': existing.return_number if existing else None})
    logger.error(f'Return insert for order #{order.pk} failed: {exc}')
    return PersistenceFailureError(detail='Failed to save the return request')


def _insert_return(order, operator, lines, history_note: str, message: str = '', message_from_customer: bool = True,
                   **fields) -> ReturnRequest:
    """Write a ``requested`` return with its lines and first history row. Runs inside the caller's transaction."""
    original_amount = sum((line['order_item'].unit_price * line['quantity'] for line in lines), Decimal('0'))
    return_request = ReturnRequest.objects.create(
        order=order,
        user=order.user,
        status=ReturnStatus.REQUESTED.value,
        original_amount=original_amount,
        refund_amount=original_amount,
        **fields,
    )
    ReturnItem.objects.bulk_create([
        ReturnItem(
            return_request=return_request,
            order_item=line['order_item'],
            product_id=line['order_item'].product_id,
            name=line['order_item'].name,
            unit_price=line['order_item'].unit_price,
            quantity=line['quantity'],
            return_reason=line['return_reason'],
            detailed_reason=line['detailed_reason'],
            item_condition=line['item_condition'],
        )
        for line in lines
    ])
    ReturnStatusHistory.objects.create(
        return_request=return_request,
        status=ReturnStatus.REQUESTED.value,
        changed_by=_actor(operator),
        note=history_note,
    )
    if message:
        ReturnCustomerMessage.objects.create(
            return_request=return_request, message=message, is_from_customer=message_from_customer,
        )
    return return_request


def create_return_request(
    user,
    order_id: int,
    items: Optional[List[Dict[str, Any]]] = None,
    reason: str = 'other',
    refund_method: str = 'original_payment',
    special_instructions: str = '',
    message: str = '',
    pickup_address: Optional[dict] = None,
    source: str = 'website',
) -> ReturnRequest:
    """
    Open a return for an eligible order.

    Customers may only return their own orders; admins (``source='admin'``)
    may open a return on behalf of the order's owner.

    Raises:
        OrderNotFoundError
        ReturnNotEligibleError: One or more eligibility checks failed
        DuplicateReturnError: An active return already exists for the order
    """
    from orders.models import Order

    owner_scope = None if source == 'admin' else user
    snapshot, result, existing = evaluate_order_eligibility(order_id, user=owner_scope)

    if not result.is_eligible:
        if result.reasons == [MSG_EXISTING_RETURN]:
            raise DuplicateReturnError(extra={'existing_return_number': existing.return_number if existing else None})
        raise ReturnNotEligibleError(
            detail='; '.join(result.reasons),
            extra={'reasons': result.reasons},
        )

    order = Order.objects.prefetch_related('items').get(pk=snapshot.id)
    lines = _build_items(order, items, reason)

    try:
        with transaction.atomic():
            return_request = _insert_return(
                order,
                user,
                lines,
                history_note='Return request created' if source == 'website' else 'Return created by admin',
                message=message,
                message_from_customer=source == 'website',
                reason=reason,
                source=source,
                allowed_return_days=result.policy.days,
                refund_method=refund_method,
                pickup_address=pickup_address or dict(snapshot.shipping_address),
                special_instructions=special_instructions,
            )
    except IntegrityError as e:
        raise _duplicate_or_failure(order, e)

    AuditLogger.log_return_created(
        return_request.pk, return_request.return_number, order.pk, order.user_id,
        return_request.original_amount, len(lines),
    )
    return return_request


def create_manual_return(
    operator,
    order_id: int,
    customer_id: Optional[int] = None,
    items: Optional[List[Dict[str, Any]]] = None,
    reason: str = 'other',
    refund_method: str = 'original_payment',
    auto_approve: bool = True,
    pickup_required: bool = True,
    notes: str = '',
) -> ReturnRequest:
    """
    Open a return from the back office, e.g. for a return agreed by phone.

    Delivery, window and amount checks are skipped; the order must still
    belong to ``customer_id`` when given, and must have no active return.
    With ``auto_approve`` the return is approved straight away.

    Raises:
        OrderNotFoundError
        ValidationError: The order belongs to another customer
        DuplicateReturnError: An active return already exists for the order
    """
    from orders.models import Order

    order = Order.objects.prefetch_related('items').filter(pk=order_id).first()
    if order is None:
        raise OrderNotFoundError(detail=f'Order {order_id} not found')
    if customer_id is not None and order.user_id != customer_id:
        raise ValidationError({'customer_id': ['Order does not belong to the specified customer']})

    existing = ReturnRequest.objects.filter(order=order).exclude(status__in=INACTIVE_STATUSES).first()
    if existing is not None:
        raise DuplicateReturnError(extra={'existing_return_number': existing.return_number})

    lines = _build_items(order, items, reason)
    note = notes or 'Return created by admin'

    try:
        with transaction.atomic():
            return_request = _insert_return(
                order,
                operator,
                lines,
                history_note='Return created by admin',
                reason=reason,
                source='admin',
                allowed_return_days=getattr(settings, 'RETURN_MANUAL_ALLOWED_DAYS', 30),
                refund_method=refund_method,
                pickup_address=dict(order.shipping_address or {}),
                pickup_status='pending' if pickup_required else 'not_required',
                special_instructions=notes,
            )
            ReturnAdminNote.objects.create(return_request=return_request, note=note, added_by=_actor(operator))
            if auto_approve:
                ReturnStateMachine.transition(
                    return_request,
                    ReturnStatus.APPROVED.value,
                    operator=operator,
                    note='Auto-approved by admin',
                    expected_status=ReturnStatus.REQUESTED.value,
                )
    except IntegrityError as e:
        raise _duplicate_or_failure(order, e)

    AuditLogger.log_return_created(
        return_request.pk, return_request.return_number, order.pk, order.user_id,
        return_request.original_amount, len(lines),
    )
    return return_request


def customer_cancel(return_id: int, user, message: str = '') -> ReturnRequest:
    """
    Cancel a return on the customer's behalf.

    Raises:
        ReturnNotFoundError: Not the caller's return
        TransitionNotAllowedError: The return is past approval
    """
    return_request = (
        ReturnRequest.objects.filter(pk=return_id, user=user).first()
        if user is not None and user.is_authenticated else None
    )
    if return_request is None:
        raise ReturnNotFoundError(detail=f'Return request {return_id} not found')

    current = return_request.status
    if not ReturnStateMachine.is_customer_cancellable(current):
        raise TransitionNotAllowedError(
            detail=f'Return cannot be cancelled in its current status: {current}',
            extra={'current_status': current},
        )

    try:
        ReturnStateMachine.transition(
            return_request,
            ReturnStatus.CANCELLED.value,
            operator=user,
            note=CUSTOMER_CANCEL_NOTE,
            expected_status=current,
        )
    except InvalidTransitionError as e:
        raise TransitionNotAllowedError(
            detail=f'Return cannot be cancelled in its current status: {e.current_status}',
            extra={'current_status': e.current_status},
        )

    if message:
        ReturnCustomerMessage.objects.create(return_request=return_request, message=message, is_from_customer=True)
    return return_request


def admin_transition(return_id: int, new_status: str, operator, note: str = '', **options) -> Dict[str, Any]:
    """
    Admin status change.

    Moves that involve a collaborator go through it: ``pickup_scheduled`` books
    the reverse pickup, ``refund_processed`` settles the refund. Everything
    else is a plain state machine transition.

    Returns:
        dict: {return_request, pickup, refund, warning}
    """
    from .pickup_service import ReversePickupService
    from .settlement_service import RefundSettlementService

    return_request = ReturnRequest.objects.filter(pk=return_id).first()
    if return_request is None:
        raise ReturnNotFoundError(detail=f'Return request {return_id} not found')

    current = return_request.status
    # Settling an already processed but unsettled refund is allowed
    resettle = current == new_status == ReturnStatus.REFUND_PROCESSED.value
    if not resettle and not ReturnStateMachine.can_transition(current, new_status):
        AuditLogger.log_transition_rejected(return_request.pk, current, new_status, operator)
        raise InvalidTransitionError(
            current_status=current,
            target_status=new_status,
            valid_next_statuses=ReturnStateMachine.get_allowed_transitions(current),
        )

    if new_status == ReturnStatus.PICKUP_SCHEDULED.value:
        result = ReversePickupService().schedule_pickup(return_id, operator)
        return {
            'return_request': result.return_request,
            'pickup': result.as_dict(),
            'warning': result.warning or None,
        }

    if new_status == ReturnStatus.REFUND_PROCESSED.value:
        result = RefundSettlementService().settle(
            return_id,
            operator,
            transaction_id=options.get('transaction_id'),
            amount=options.get('amount'),
            note=note,
        )
        return {
            'return_request': result.return_request,
            'refund': result.as_dict(),
            'warning': result.warning or None,
        }

    ReturnStateMachine.transition(
        return_request, new_status, operator=operator, note=note, expected_status=current,
    )
    return {'return_request': return_request}


def record_inspection(
    return_id: int,
    operator,
    condition: str,
    notes: str = '',
    approved: Optional[bool] = None,
    return_shipping_cost=None,
    restocking_fee=None,
) -> ReturnRequest:
    """
    Record the warehouse inspection of a received return.

    A ``received`` return moves to ``inspected``; an ``inspected`` return only
    has its inspection data updated. With a decision (``approved``) it then
    moves on to ``approved_refund`` or ``rejected_refund``.

    Raises:
        InvalidReturnStateError: The return is not at the warehouse
        ValidationError: Deductions exceed the original amount
    """
    return_request = ReturnRequest.objects.filter(pk=return_id).first()
    if return_request is None:
        raise ReturnNotFoundError(detail=f'Return request {return_id} not found')

    if return_request.status not in (ReturnStatus.RECEIVED.value, ReturnStatus.INSPECTED.value):
        raise InvalidReturnStateError(
            detail=f'Only received returns can be inspected (current status: {return_request.status})'
        )

    if return_shipping_cost is not None:
        return_request.return_shipping_cost = return_shipping_cost
    if restocking_fee is not None:
        return_request.restocking_fee = restocking_fee
    try:
        refund_amount = return_request.calculate_refund_amount()
    except ValueError as e:
        raise ValidationError({'refund': [str(e)]})

    fields = {
        'inspection_condition': condition,
        'inspection_notes': notes,
        'inspected_by': _actor(operator),
        'inspected_at': timezone.now(),
        'inspection_approved': approved,
        'return_shipping_cost': return_request.return_shipping_cost,
        'restocking_fee': return_request.restocking_fee,
        'refund_amount': refund_amount,
    }

    with transaction.atomic():
        if return_request.status == ReturnStatus.RECEIVED.value:
            ReturnStateMachine.transition(
                return_request,
                ReturnStatus.INSPECTED.value,
                operator=operator,
                note=f'Inspection recorded: {condition}',
                expected_status=ReturnStatus.RECEIVED.value,
                extra_fields=fields,
            )
        else:
            ReturnRequest.objects.filter(pk=return_request.pk, status=ReturnStatus.INSPECTED.value).update(
                updated_at=timezone.now(), **fields,
            )
            return_request.refresh_from_db()

        if approved is not None:
            decision = ReturnStatus.APPROVED_REFUND if approved else ReturnStatus.REJECTED_REFUND
            ReturnStateMachine.transition(
                return_request,
                decision.value,
                operator=operator,
                note=notes or ('Refund approved after inspection' if approved else 'Refund rejected after inspection'),
                expected_status=ReturnStatus.INSPECTED.value,
            )

    return return_request


def add_customer_message(return_id: int, user, message: str) -> ReturnCustomerMessage:
    return_request = get_return_for_user(return_id, user)
    return ReturnCustomerMessage.objects.create(
        return_request=return_request,
        message=message,
        is_from_customer=return_request.user_id == user.pk,
    )


def add_admin_note(return_id: int, operator, note: str) -> ReturnAdminNote:
    return_request = ReturnRequest.objects.filter(pk=return_id).first()
    if return_request is None:
        raise ReturnNotFoundError(detail=f'Return request {return_id} not found')
    return ReturnAdminNote.objects.create(return_request=return_request, note=note, added_by=_actor(operator))
