"""
Reverse pickup coordination.

Books the pickup with the carrier when it is reachable and falls back to a
locally scheduled manual pickup when it is not. Carrier failure never fails
the admin action: the return still moves to ``pickup_scheduled`` and the
fallback is flagged for operations staff.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from django.conf import settings
from django.utils import timezone

from common.audit_logger import AuditLogger
from common.exceptions import (
    CarrierUnavailableError,
    InvalidReturnStateError,
    InvalidTransitionError,
    ReturnNotFoundError,
)
from integrations.shiprocket import ShiprocketAPI
from .models import ReturnAdminNote, ReturnRequest
from .state_machine import ReturnStateMachine, ReturnStatus

logger = logging.getLogger(__name__)

MANUAL_PICKUP_NOTE = 'Pickup scheduled manually (carrier unavailable)'
MANUAL_PICKUP_WARNING = (
    'Carrier unavailable: pickup scheduled manually. '
    'Coordinate the pickup with the customer directly.'
)

CANCELLABLE_PICKUP_STATUSES = {
    ReturnStatus.APPROVED.value,
    ReturnStatus.PICKUP_SCHEDULED.value,
    ReturnStatus.PICKED_UP.value,
    ReturnStatus.IN_TRANSIT.value,
}

# Carrier tracking status -> return status it implies
TRACKING_STATUS_MAP = {
    'picked up': ReturnStatus.PICKED_UP.value,
    'in transit': ReturnStatus.IN_TRANSIT.value,
    'out for delivery': ReturnStatus.IN_TRANSIT.value,
    'delivered': ReturnStatus.RECEIVED.value,
}

TRACKING_PATH = [
    ReturnStatus.PICKUP_SCHEDULED.value,
    ReturnStatus.PICKED_UP.value,
    ReturnStatus.IN_TRANSIT.value,
    ReturnStatus.RECEIVED.value,
]

# Shipment status ids sent with carrier push updates
CARRIER_STATUS_CODES = {
    6: ReturnStatus.PICKED_UP.value,    # shipped
    42: ReturnStatus.PICKED_UP.value,   # picked up
    18: ReturnStatus.IN_TRANSIT.value,
    19: ReturnStatus.IN_TRANSIT.value,  # out for delivery
    38: ReturnStatus.IN_TRANSIT.value,  # reached destination hub
    7: ReturnStatus.RECEIVED.value,     # delivered to warehouse
}
# RTO initiated/delivered, lost, damaged, undelivered
FAILED_CARRIER_STATUS_CODES = {9, 10, 11, 12, 15, 21}


@dataclass
class PickupResult:
    return_request: ReturnRequest
    manual: bool
    awb_code: str = ''
    courier_name: str = ''
    pickup_date: Optional[datetime] = None
    time_slot: str = ''
    warning: str = ''

    def as_dict(self) -> dict:
        return {
            'manual': self.manual,
            'awb_code': self.awb_code,
            'courier_name': self.courier_name,
            'pickup_date': self.pickup_date.isoformat() if self.pickup_date else None,
            'time_slot': self.time_slot,
        }


class ReversePickupService:
    """Coordinates reverse pickups for approved returns."""

    def __init__(self, carrier: Optional[ShiprocketAPI] = None):
        self.carrier = carrier if carrier is not None else ShiprocketAPI.from_settings()

    @staticmethod
    def _load(return_id: int) -> ReturnRequest:
        return_request = (
            ReturnRequest.objects.select_related('order', 'user')
            .filter(pk=return_id)
            .first()
        )
        if return_request is None:
            raise ReturnNotFoundError(detail=f'Return request {return_id} not found')
        return return_request

    def schedule_pickup(self, return_id: int, operator=None) -> PickupResult:
        """
        Schedule the reverse pickup of an approved return.

        Raises:
            ReturnNotFoundError
            InvalidReturnStateError: The return is not ``approved``
            InvalidTransitionError: Another actor moved the return first
        """
        return_request = self._load(return_id)
        target = ReturnStatus.PICKUP_SCHEDULED.value

        if return_request.status != ReturnStatus.APPROVED.value:
            raise InvalidReturnStateError(
                detail=f'Pickup can only be scheduled for approved returns (current status: {return_request.status})'
            )
        if not ReturnStateMachine.can_transition(return_request.status, target):
            raise InvalidReturnStateError(detail='Pickup scheduling is not a valid next step for this return')

        booking = None
        try:
            booking = self.carrier.create_reverse_pickup(return_request)
            window = self.carrier.schedule_pickup_window(booking['shipment_id'])
        except CarrierUnavailableError as e:
            return self._schedule_manually(return_request, operator, str(e.detail), booking=booking)

        pickup_date = window['date']
        if timezone.is_naive(pickup_date):
            pickup_date = timezone.make_aware(pickup_date)

        self._transition_with_booking(
            return_request,
            booking,
            operator,
            note=f'Pickup scheduled with carrier. AWB: {booking["awb_code"]}',
            extra_fields={
                'pickup_status': 'scheduled',
                'pickup_is_manual': False,
                'pickup_scheduled_date': pickup_date,
                'pickup_time_slot': window['time_slot'],
                **self._booking_fields(booking),
            },
        )
        AuditLogger.log_pickup_scheduled(
            return_request.pk, return_request.return_number, manual=False,
            awb_code=booking['awb_code'], operator=operator,
        )
        return PickupResult(
            return_request=return_request,
            manual=False,
            awb_code=booking['awb_code'],
            courier_name=booking.get('courier_name', ''),
            pickup_date=pickup_date,
            time_slot=window['time_slot'],
        )

    @staticmethod
    def _booking_fields(booking: Optional[dict]) -> dict:
        if not booking:
            return {}
        return {
            'carrier_order_id': booking.get('order_id', ''),
            'carrier_shipment_id': booking['shipment_id'],
            'awb_code': booking['awb_code'],
            'courier_name': booking.get('courier_name', ''),
            'tracking_url': booking.get('tracking_url', ''),
        }

    def _transition_with_booking(self, return_request, booking, operator, note, extra_fields) -> None:
        """Move to ``pickup_scheduled``; a booking made for a return that moved on is released."""
        try:
            ReturnStateMachine.transition(
                return_request,
                ReturnStatus.PICKUP_SCHEDULED.value,
                operator=operator,
                note=note,
                expected_status=ReturnStatus.APPROVED.value,
                extra_fields=extra_fields,
            )
        except InvalidTransitionError:
            if booking:
                self._release_booking(return_request, booking, operator)
            raise

    def _release_booking(self, return_request: ReturnRequest, booking: dict, operator) -> None:
        awb_code = booking['awb_code']
        try:
            self.carrier.cancel_pickup(awb_code)
            logger.info(f'Return {return_request.return_number}: released unused carrier booking {awb_code}')
        except CarrierUnavailableError as e:
            logger.error(f'Return {return_request.return_number}: unused carrier booking {awb_code} not cancelled: {e.detail}')
            ReturnAdminNote.objects.create(
                return_request=return_request,
                note=f'Unused carrier booking left open, cancel AWB {awb_code} manually: {e.detail}',
                added_by=operator if operator is not None and operator.is_authenticated else None,
            )

    def _schedule_manually(self, return_request: ReturnRequest, operator, reason: str,
                           booking: Optional[dict] = None) -> PickupResult:
        logger.warning(f'Return {return_request.return_number}: carrier unavailable, scheduling manually ({reason})')

        days = getattr(settings, 'RETURN_PICKUP_FALLBACK_DAYS', 2)
        slot = getattr(settings, 'RETURN_PICKUP_FALLBACK_TIME_SLOT', '10:00 AM - 6:00 PM')
        pickup_date = timezone.now() + timedelta(days=days)

        # A return AWB booked before the failure stays on the record
        admin_note = f'{MANUAL_PICKUP_WARNING} Carrier error: {reason}'
        if booking:
            admin_note = (
                f'{admin_note} Return AWB {booking["awb_code"]} '
                f'(shipment {booking["shipment_id"]}) was booked; arrange its pickup slot with the courier.'
            )

        self._transition_with_booking(
            return_request,
            booking,
            operator,
            note=MANUAL_PICKUP_NOTE,
            extra_fields={
                'pickup_status': 'scheduled',
                'pickup_is_manual': True,
                'pickup_scheduled_date': pickup_date,
                'pickup_time_slot': slot,
                **self._booking_fields(booking),
            },
        )
        ReturnAdminNote.objects.create(
            return_request=return_request,
            note=admin_note,
            added_by=operator if operator is not None and operator.is_authenticated else None,
        )
        AuditLogger.log_pickup_scheduled(
            return_request.pk, return_request.return_number, manual=True,
            awb_code=booking['awb_code'] if booking else '', operator=operator, reason=reason,
        )
        return PickupResult(
            return_request=return_request,
            manual=True,
            awb_code=booking['awb_code'] if booking else '',
            courier_name=booking.get('courier_name', '') if booking else '',
            pickup_date=pickup_date,
            time_slot=slot,
            warning=MANUAL_PICKUP_WARNING,
        )

    def cancel_pickup(self, return_id: int, operator=None) -> dict:
        """
        Cancel a booked pickup. The return status is left unchanged.

        Returns:
            dict: {return_request, remote_cancelled, warning}
        """
        return_request = self._load(return_id)
        if return_request.status not in CANCELLABLE_PICKUP_STATUSES:
            raise InvalidReturnStateError(
                detail=f'Pickup cannot be cancelled for a return in status {return_request.status}'
            )
        if return_request.pickup_status == 'cancelled':
            return {'return_request': return_request, 'remote_cancelled': False, 'warning': ''}

        remote_cancelled = False
        warning = ''
        if return_request.awb_code:
            try:
                remote_cancelled = self.carrier.cancel_pickup(return_request.awb_code)
            except CarrierUnavailableError as e:
                warning = f'Carrier cancellation failed, cancel AWB {return_request.awb_code} manually: {e.detail}'
                logger.error(f'Return {return_request.return_number}: {warning}')
                ReturnAdminNote.objects.create(
                    return_request=return_request,
                    note=warning,
                    added_by=operator if operator is not None and operator.is_authenticated else None,
                )

        ReturnRequest.objects.filter(pk=return_request.pk).update(
            pickup_status='cancelled', updated_at=timezone.now(),
        )
        return_request.refresh_from_db()
        AuditLogger.log_pickup_cancelled(return_request.pk, return_request.return_number, remote_cancelled, operator)
        return {'return_request': return_request, 'remote_cancelled': remote_cancelled, 'warning': warning}

    def sync_tracking(self, return_id: int, operator=None) -> dict:
        """
        Pull carrier tracking and advance the return along the pickup path,
        one legal edge at a time. Unknown carrier states are recorded only.

        Raises:
            InvalidReturnStateError: No AWB to track
            CarrierUnavailableError: Tracking could not be read
        """
        return_request = self._load(return_id)
        if not return_request.awb_code:
            raise InvalidReturnStateError(detail='Return has no carrier AWB to track')

        tracking = self.carrier.track_by_awb(return_request.awb_code)
        carrier_status = tracking.get('current_status', '')
        ReturnRequest.objects.filter(pk=return_request.pk).update(carrier_tracking_status=carrier_status[:100])
        return_request.refresh_from_db()

        target = TRACKING_STATUS_MAP.get(carrier_status.strip().lower())
        applied = self._advance_along_pickup_path(return_request, target, carrier_status, operator)
        return {
            'return_request': return_request,
            'carrier_status': carrier_status,
            'applied': applied,
            'edd': tracking.get('edd'),
        }

    def apply_carrier_update(self, payload: dict) -> dict:
        """
        Apply a status update pushed by the carrier.

        The return is matched by AWB, then by carrier order id. Redelivered
        updates are harmless: a return already at or past the reported state
        is not moved.

        Raises:
            ReturnNotFoundError: No return carries the AWB or order id
        """
        awb_code = str(payload.get('awb') or '').strip()
        carrier_order_id = str(payload.get('sr_order_id') or '').strip()

        return_request = None
        if awb_code:
            return_request = ReturnRequest.objects.filter(awb_code=awb_code).first()
        if return_request is None and carrier_order_id:
            return_request = ReturnRequest.objects.filter(carrier_order_id=carrier_order_id).first()
        if return_request is None:
            raise ReturnNotFoundError(
                detail=f'No return found for AWB {awb_code or "-"} / carrier order {carrier_order_id or "-"}'
            )

        carrier_status = str(payload.get('shipment_status') or payload.get('current_status') or '')
        try:
            status_code = int(payload.get('shipment_status_id') or payload.get('current_status_id') or 0)
        except (TypeError, ValueError):
            status_code = 0

        updates = {'carrier_tracking_status': carrier_status[:100], 'updated_at': timezone.now()}
        if payload.get('courier_name'):
            updates['courier_name'] = str(payload['courier_name'])[:100]
        ReturnRequest.objects.filter(pk=return_request.pk).update(**updates)
        return_request.refresh_from_db()

        applied = []
        if status_code in FAILED_CARRIER_STATUS_CODES:
            if return_request.pickup_status != 'failed':
                logger.warning(f'Return {return_request.return_number}: carrier reported failure ({carrier_status})')
                ReturnRequest.objects.filter(pk=return_request.pk).update(pickup_status='failed')
                ReturnAdminNote.objects.create(
                    return_request=return_request,
                    note=f'Carrier reported a failed return shipment ({carrier_status}). Coordinate the pickup manually.',
                )
                return_request.refresh_from_db()
        else:
            target = CARRIER_STATUS_CODES.get(status_code) or TRACKING_STATUS_MAP.get(carrier_status.strip().lower())
            applied = self._advance_along_pickup_path(return_request, target, carrier_status, None)

        return {'return_request': return_request, 'carrier_status': carrier_status, 'applied': applied}

    @staticmethod
    def _advance_along_pickup_path(return_request: ReturnRequest, target: Optional[str],
                                   carrier_status: str, operator) -> list:
        applied = []
        if not target or return_request.status not in TRACKING_PATH:
            return applied

        current_idx = TRACKING_PATH.index(return_request.status)
        target_idx = TRACKING_PATH.index(target)
        for next_status in TRACKING_PATH[current_idx + 1:target_idx + 1]:
            extra = {}
            if next_status == ReturnStatus.PICKED_UP.value:
                extra = {'pickup_status': 'completed', 'actual_pickup_date': timezone.now()}
            try:
                ReturnStateMachine.transition(
                    return_request,
                    next_status,
                    operator=operator,
                    note=f'Carrier tracking: {carrier_status}',
                    expected_status=return_request.status,
                    extra_fields=extra,
                )
            except InvalidTransitionError:
                logger.info(f'Return {return_request.return_number}: tracking sync stopped at {return_request.status}')
                break
            applied.append(next_status)
        return applied
