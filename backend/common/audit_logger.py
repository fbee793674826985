"""
Audit logging utilities for the return/refund lifecycle.

Every call writes one line to the ``returns_audit`` logger with a structured
``extra`` payload so that the audit file can be grepped by event name.
"""

from decimal import Decimal
from typing import Optional

from common.logging_config import get_returns_audit_logger

returns_audit_logger = get_returns_audit_logger()


def _actor_id(operator) -> Optional[int]:
    if operator is None or not getattr(operator, 'is_authenticated', False):
        return None
    return operator.pk


class AuditLogger:
    """
    Centralized audit logging for return operations.
    """

    @staticmethod
    def log_return_created(return_id: int, return_number: str, order_id: int, user_id: Optional[int],
                           refund_amount: Decimal, items_count: int):
        returns_audit_logger.info(
            f'Return created: return_number={return_number}, order_id={order_id}, '
            f'refund_amount={refund_amount}, items={items_count}',
            extra={
                'event': 'return_created',
                'return_id': return_id,
                'return_number': return_number,
                'order_id': order_id,
                'user_id': user_id,
                'refund_amount': str(refund_amount),
                'items_count': items_count,
            }
        )

    @staticmethod
    def log_status_changed(return_id: int, return_number: str, old_status: str, new_status: str,
                           operator=None, note: str = ''):
        """
        Log a committed return status transition.

        Args:
            return_id: Return ID
            return_number: Human readable return number
            old_status: Status before the transition
            new_status: Status after the transition
            operator: User performing the change (optional)
            note: Note recorded in the status history
        """
        returns_audit_logger.info(
            f'Return status changed: return_number={return_number}, {old_status} -> {new_status}',
            extra={
                'event': 'return_status_changed',
                'return_id': return_id,
                'old_status': old_status,
                'new_status': new_status,
                'operator_id': _actor_id(operator),
                'note': note,
            }
        )

    @staticmethod
    def log_transition_rejected(return_id: int, current_status: str, target_status: str, operator=None):
        returns_audit_logger.warning(
            f'Return transition rejected: return_id={return_id}, {current_status} -> {target_status}',
            extra={
                'event': 'return_transition_rejected',
                'return_id': return_id,
                'current_status': current_status,
                'target_status': target_status,
                'operator_id': _actor_id(operator),
            }
        )

    @staticmethod
    def log_pickup_scheduled(return_id: int, return_number: str, manual: bool, awb_code: str = '',
                             operator=None, reason: str = ''):
        """
        Log a scheduled reverse pickup. ``manual`` marks the carrier fallback,
        ``reason`` holds the carrier failure in that case.
        """
        log = returns_audit_logger.warning if manual else returns_audit_logger.info
        log(
            f'Pickup scheduled: return_number={return_number}, manual={manual}, awb={awb_code or "-"}',
            extra={
                'event': 'return_pickup_scheduled',
                'return_id': return_id,
                'manual': manual,
                'awb_code': awb_code,
                'operator_id': _actor_id(operator),
                'reason': reason,
            }
        )

    @staticmethod
    def log_pickup_cancelled(return_id: int, return_number: str, remote_cancelled: bool, operator=None):
        returns_audit_logger.info(
            f'Pickup cancelled: return_number={return_number}, remote_cancelled={remote_cancelled}',
            extra={
                'event': 'return_pickup_cancelled',
                'return_id': return_id,
                'remote_cancelled': remote_cancelled,
                'operator_id': _actor_id(operator),
            }
        )

    @staticmethod
    def log_refund_settled(return_id: int, return_number: str, amount: Decimal, transaction_id: str,
                           operator=None, via_gateway: bool = False):
        returns_audit_logger.info(
            f'Refund settled: return_number={return_number}, amount={amount}, '
            f'transaction_id={transaction_id}, gateway={via_gateway}',
            extra={
                'event': 'return_refund_settled',
                'return_id': return_id,
                'amount': str(amount),
                'transaction_id': transaction_id,
                'via_gateway': via_gateway,
                'operator_id': _actor_id(operator),
            }
        )

    @staticmethod
    def log_refund_failed(return_id: int, return_number: str, reason: str, operator=None):
        returns_audit_logger.error(
            f'Refund failed: return_number={return_number}, reason={reason}',
            extra={
                'event': 'return_refund_failed',
                'return_id': return_id,
                'reason': reason,
                'operator_id': _actor_id(operator),
            }
        )

    @staticmethod
    def log_order_sync_failed(return_id: int, order_id: int, reason: str):
        """
        Log a failed best-effort order update after a settled refund.
        The refund stays settled; the order needs manual reconciliation.
        """
        returns_audit_logger.error(
            f'Order sync failed after refund: return_id={return_id}, order_id={order_id}, reason={reason}',
            extra={
                'event': 'return_order_sync_failed',
                'return_id': return_id,
                'order_id': order_id,
                'reason': reason,
            }
        )
