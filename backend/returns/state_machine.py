"""
Return status state machine.

Defines every status a return request can be in and the legal moves
between them. ``ReturnStateMachine.transition`` is the only code path that
writes ``ReturnRequest.status``; it serializes concurrent writers per record
and appends the matching status history row in the same transaction.
"""

import logging
from enum import Enum
from typing import List, Optional, Set

from django.db import DatabaseError, transaction
from django.utils import timezone

from common.audit_logger import AuditLogger
from common.exceptions import (
    InvalidTransitionError,
    PersistenceFailureError,
    ReturnNotFoundError,
)

logger = logging.getLogger(__name__)


class ReturnStatus(Enum):
    """Return status enumeration"""
    REQUESTED = 'requested'
    PENDING_APPROVAL = 'pending_approval'
    APPROVED = 'approved'
    REJECTED = 'rejected'
    PICKUP_SCHEDULED = 'pickup_scheduled'
    PICKED_UP = 'picked_up'
    IN_TRANSIT = 'in_transit'
    RECEIVED = 'received'
    INSPECTED = 'inspected'
    APPROVED_REFUND = 'approved_refund'
    REJECTED_REFUND = 'rejected_refund'
    REFUND_PROCESSED = 'refund_processed'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


class ReturnStateMachine:
    """Return state machine

    Keys are the current status, values the statuses reachable in one step.
    An empty set marks a terminal status.
    """

    TRANSITIONS = {
        ReturnStatus.REQUESTED: {
            ReturnStatus.PENDING_APPROVAL,
            ReturnStatus.APPROVED,
            ReturnStatus.REJECTED,
            ReturnStatus.CANCELLED,
        },
        ReturnStatus.PENDING_APPROVAL: {
            ReturnStatus.APPROVED,
            ReturnStatus.REJECTED,
            ReturnStatus.CANCELLED,
        },
        ReturnStatus.APPROVED: {
            ReturnStatus.PICKUP_SCHEDULED,
            ReturnStatus.CANCELLED,
        },
        ReturnStatus.PICKUP_SCHEDULED: {ReturnStatus.PICKED_UP},
        ReturnStatus.PICKED_UP: {ReturnStatus.IN_TRANSIT},
        ReturnStatus.IN_TRANSIT: {ReturnStatus.RECEIVED},
        ReturnStatus.RECEIVED: {ReturnStatus.INSPECTED},
        ReturnStatus.INSPECTED: {
            ReturnStatus.APPROVED_REFUND,
            ReturnStatus.REJECTED_REFUND,
        },
        ReturnStatus.APPROVED_REFUND: {ReturnStatus.REFUND_PROCESSED},
        ReturnStatus.REFUND_PROCESSED: {ReturnStatus.COMPLETED},
        ReturnStatus.REJECTED: set(),
        ReturnStatus.REJECTED_REFUND: set(),
        ReturnStatus.COMPLETED: set(),
        ReturnStatus.CANCELLED: set(),
    }

    # Statuses a customer may still cancel from
    CUSTOMER_CANCELLABLE = {
        ReturnStatus.REQUESTED,
        ReturnStatus.PENDING_APPROVAL,
        ReturnStatus.APPROVED,
    }

    # Once the refund went out only these are reachable
    POST_REFUND = {
        ReturnStatus.REFUND_PROCESSED,
        ReturnStatus.COMPLETED,
    }

    # Entering these stamps completed_at
    CLOSING = {
        ReturnStatus.COMPLETED,
        ReturnStatus.CANCELLED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        try:
            from_enum = ReturnStatus(from_status)
            to_enum = ReturnStatus(to_status)
        except ValueError:
            return False
        return to_enum in cls.TRANSITIONS.get(from_enum, set())

    @classmethod
    def get_allowed_transitions(cls, current_status: str) -> List[str]:
        """Valid next statuses, in declaration order of ``ReturnStatus``."""
        try:
            allowed: Set[ReturnStatus] = cls.TRANSITIONS.get(ReturnStatus(current_status), set())
        except ValueError:
            return []
        return [status.value for status in ReturnStatus if status in allowed]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        try:
            return not cls.TRANSITIONS[ReturnStatus(status)]
        except (ValueError, KeyError):
            return False

    @classmethod
    def is_customer_cancellable(cls, status: str) -> bool:
        try:
            return ReturnStatus(status) in cls.CUSTOMER_CANCELLABLE
        except ValueError:
            return False

    @classmethod
    def _reject(cls, return_request, current_status: str, new_status: str, operator=None):
        AuditLogger.log_transition_rejected(return_request.pk, current_status, new_status, operator)
        raise InvalidTransitionError(
            current_status=current_status,
            target_status=new_status,
            valid_next_statuses=cls.get_allowed_transitions(current_status),
        )

    @classmethod
    def transition(
        cls,
        return_request,
        new_status: str,
        operator=None,
        note: str = '',
        expected_status: Optional[str] = None,
        extra_fields: Optional[dict] = None,
    ):
        """Apply a status change.

        Inside one transaction: lock the row, re-read its status, re-validate,
        write the new status with a conditional UPDATE on the status read,
        and append the history entry. A caller that loses a race sees the
        fresh status and gets ``InvalidTransitionError``.

        Args:
            return_request: ReturnRequest instance (refreshed in place on success)
            new_status: Target status
            operator: Acting user, None for system changes
            note: Note stored with the history entry
            expected_status: When given, the stored status must still equal it
            extra_fields: Additional column values written in the same UPDATE

        Raises:
            InvalidTransitionError: Illegal move, or the record changed underneath
            ReturnNotFoundError: The record no longer exists
            PersistenceFailureError: The store failed; nothing was written

        Returns:
            ReturnRequest: The updated instance
        """
        from .models import ReturnRequest, ReturnStatusHistory

        # Fail fast on the caller's snapshot before touching the database
        if not cls.can_transition(return_request.status, new_status):
            cls._reject(return_request, return_request.status, new_status, operator)

        try:
            with transaction.atomic():
                locked = (
                    ReturnRequest.objects.select_for_update()
                    .filter(pk=return_request.pk)
                    .values('status', 'refund_succeeded')
                    .first()
                )
                if locked is None:
                    raise ReturnNotFoundError(detail=f'Return request {return_request.pk} not found')

                current = locked['status']
                stale = expected_status is not None and current != expected_status
                if stale or not cls.can_transition(current, new_status):
                    cls._reject(return_request, current, new_status, operator)

                if locked['refund_succeeded'] and ReturnStatus(new_status) not in cls.POST_REFUND:
                    cls._reject(return_request, current, new_status, operator)

                now = timezone.now()
                updates = dict(extra_fields or {})
                updates.update(status=new_status, updated_at=now)
                if ReturnStatus(new_status) in cls.CLOSING:
                    updates['completed_at'] = now

                # Conditional write: a concurrent writer on a backend without
                # row locks leaves zero rows matched here
                updated = ReturnRequest.objects.filter(pk=return_request.pk, status=current).update(**updates)
                if updated != 1:
                    fresh = ReturnRequest.objects.filter(pk=return_request.pk).values_list('status', flat=True).first()
                    cls._reject(return_request, fresh or current, new_status, operator)

                ReturnStatusHistory.objects.create(
                    return_request_id=return_request.pk,
                    status=new_status,
                    changed_by=operator if operator is not None and operator.is_authenticated else None,
                    note=note,
                )
        except DatabaseError as e:
            logger.error(f'Return #{return_request.pk} transition to {new_status} failed: {e}', exc_info=True)
            raise PersistenceFailureError(detail=f'Failed to persist status change: {e}')

        return_request.refresh_from_db()

        AuditLogger.log_status_changed(
            return_request.pk, return_request.return_number, current, new_status, operator, note,
        )
        return return_request
