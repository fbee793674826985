"""
Refund settlement.

Settling a return is idempotent: the first successful call records the
refund and moves the return to ``refund_processed``; any later call is a
no-op success. The linked order is updated afterwards on a best-effort
basis and its failure never undoes the settled refund.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.utils import timezone

from common.audit_logger import AuditLogger
from common.exceptions import (
    InvalidReturnStateError,
    PaymentGatewayError,
    ReturnNotFoundError,
    SettlementConflictError,
)
from common.utils import parse_decimal
from integrations.razorpay import RazorpayAPI
from orders.services import OrderService
from .models import ReturnAdminNote, ReturnRequest
from .state_machine import ReturnStateMachine, ReturnStatus

logger = logging.getLogger(__name__)

SETTLEABLE_STATUSES = (
    ReturnStatus.APPROVED_REFUND.value,
    ReturnStatus.REFUND_PROCESSED.value,
)


@dataclass
class SettlementResult:
    return_request: ReturnRequest
    already_settled: bool
    amount: Optional[Decimal] = None
    transaction_id: str = ''
    via_gateway: bool = False
    order_updated: bool = False
    warning: str = ''

    def as_dict(self) -> dict:
        return {
            'already_settled': self.already_settled,
            'amount': str(self.amount) if self.amount is not None else None,
            'transaction_id': self.transaction_id,
            'via_gateway': self.via_gateway,
            'order_updated': self.order_updated,
        }


def _actor(operator):
    return operator if operator is not None and operator.is_authenticated else None


class RefundSettlementService:
    def __init__(self, gateway: Optional[RazorpayAPI] = None):
        self.gateway = gateway if gateway is not None else RazorpayAPI.from_settings()

    def settle(self, return_id: int, operator=None, transaction_id: Optional[str] = None,
               amount=None, note: str = '') -> SettlementResult:
        """
        Mark the refund of a return as completed.

        Args:
            return_id: Return ID
            operator: Acting admin
            transaction_id: Reference of a refund already made outside the
                gateway (bank transfer, COD cash refund). Skips the gateway call.
            amount: Refund amount override, defaults to the calculated amount
            note: Extra text for the status history

        Raises:
            ReturnNotFoundError
            InvalidReturnStateError: Not awaiting a refund, or invalid amount
            PaymentGatewayError: Gateway refused the refund; nothing was settled
        """
        try:
            result = self._settle_locked(return_id, operator, transaction_id, amount, note)
        except SettlementConflictError:
            return_request = ReturnRequest.objects.get(pk=return_id)
            logger.info(f'Return {return_request.return_number} already settled, ignoring duplicate settlement')
            return SettlementResult(
                return_request=return_request,
                already_settled=True,
                amount=return_request.refund_amount,
                transaction_id=return_request.refund_transaction_id,
            )
        except PaymentGatewayError as e:
            return_request = ReturnRequest.objects.filter(pk=return_id).first()
            if return_request is not None:
                ReturnAdminNote.objects.create(
                    return_request=return_request,
                    note=f'Refund failed at payment gateway: {e.detail}',
                    added_by=_actor(operator),
                )
                AuditLogger.log_refund_failed(return_request.pk, return_request.return_number, str(e.detail), operator)
            raise

        AuditLogger.log_refund_settled(
            result.return_request.pk, result.return_request.return_number, result.amount,
            result.transaction_id, operator, via_gateway=result.via_gateway,
        )
        self._sync_order(result, operator)
        return result

    def _resolve_amount(self, return_request: ReturnRequest, amount) -> Decimal:
        if amount is None or amount == '':
            try:
                return return_request.calculate_refund_amount()
            except ValueError as e:
                raise InvalidReturnStateError(detail=str(e))

        value = parse_decimal(amount)
        if value is None or value <= 0:
            raise InvalidReturnStateError(detail='Invalid refund amount')
        if value > return_request.order.total_amount:
            raise InvalidReturnStateError(detail='Refund amount cannot exceed order total')
        return value

    def _lock(self, return_id) -> ReturnRequest:
        return_request = (
            ReturnRequest.objects.select_for_update()
            .select_related('order')
            .filter(pk=return_id)
            .first()
        )
        if return_request is None:
            raise ReturnNotFoundError(detail=f'Return request {return_id} not found')
        if return_request.refund_succeeded:
            raise SettlementConflictError()
        if return_request.status not in SETTLEABLE_STATUSES:
            raise InvalidReturnStateError(
                detail=f'Refund can only be completed for returns with an approved refund (current status: {return_request.status})'
            )
        return return_request

    def _obtain_refund(self, return_id, operator, transaction_id, amount):
        """
        Decide how the refund is paid and, for gateway refunds, make it.

        The gateway refund id is committed on its own, before the settlement
        is recorded, so a failure while recording never leads to a second
        gateway refund: the next attempt reuses the stored id.

        Returns:
            tuple: (amount, transaction id, paid through the gateway)
        """
        with transaction.atomic():
            return_request = self._lock(return_id)

            if transaction_id:
                return self._resolve_amount(return_request, amount), transaction_id, False
            if return_request.gateway_refund_id:
                logger.info(
                    f'Return {return_request.return_number}: reusing gateway refund {return_request.gateway_refund_id}'
                )
                return return_request.gateway_refund_amount, return_request.gateway_refund_id, True

            refund_amount = self._resolve_amount(return_request, amount)
            order = return_request.order
            if not (return_request.refund_method == 'original_payment' and order.payment_method == 'online'
                    and order.payment_id):
                return refund_amount, f'MANUAL-{return_request.return_number}', False

            # Called under the row lock so a concurrent settle cannot refund twice
            refund = self.gateway.refund(
                order.payment_id,
                refund_amount,
                notes={
                    'return_number': return_request.return_number or '',
                    'order_number': order.order_number,
                    'processed_by': str(getattr(_actor(operator), 'pk', '') or 'system'),
                },
                receipt=return_request.return_number or '',
            )
            ReturnRequest.objects.filter(pk=return_request.pk).update(
                gateway_refund_id=refund['id'], gateway_refund_amount=refund_amount, updated_at=timezone.now(),
            )
            return refund_amount, refund['id'], True

    def _settle_locked(self, return_id, operator, transaction_id, amount, note) -> SettlementResult:
        refund_amount, transaction_id, via_gateway = self._obtain_refund(return_id, operator, transaction_id, amount)

        with transaction.atomic():
            return_request = self._lock(return_id)

            refund_fields = {
                'refund_succeeded': True,
                'refund_processed_at': timezone.now(),
                'refund_amount': refund_amount,
                'refund_transaction_id': transaction_id,
            }
            source = 'gateway refund' if via_gateway else 'manual refund'
            history_note = f'Refund completed ({source}). Transaction: {transaction_id}'
            if note:
                history_note = f'{history_note}. {note}'

            if return_request.status == ReturnStatus.APPROVED_REFUND.value:
                ReturnStateMachine.transition(
                    return_request,
                    ReturnStatus.REFUND_PROCESSED.value,
                    operator=operator,
                    note=history_note,
                    expected_status=ReturnStatus.APPROVED_REFUND.value,
                    extra_fields=refund_fields,
                )
            else:
                ReturnRequest.objects.filter(pk=return_request.pk).update(updated_at=timezone.now(), **refund_fields)
                ReturnAdminNote.objects.create(return_request=return_request, note=history_note, added_by=_actor(operator))
                return_request.refresh_from_db()

        return SettlementResult(
            return_request=return_request,
            already_settled=False,
            amount=refund_amount,
            transaction_id=transaction_id,
            via_gateway=via_gateway,
        )

    def _sync_order(self, result: SettlementResult, operator) -> None:
        return_request = result.return_request
        try:
            OrderService.update_order_payment_status(
                return_request.order_id, payment_status='refunded', status='returned',
            )
            result.order_updated = True
        except Exception as e:
            # Refund stays settled; the order is reconciled by hand
            logger.error(f'Order #{return_request.order_id} update after refund failed: {e}', exc_info=True)
            AuditLogger.log_order_sync_failed(return_request.pk, return_request.order_id, str(e))
            result.warning = 'Refund recorded but the order could not be updated; update it manually'
            try:
                ReturnAdminNote.objects.create(
                    return_request=return_request,
                    note=f'Warning: order update after refund failed - {e}. Please update the order manually.',
                    added_by=_actor(operator),
                )
            except Exception:
                logger.exception(f'Failed to record order sync warning for return #{return_request.pk}')
