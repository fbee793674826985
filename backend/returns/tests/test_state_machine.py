from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase

from common.exceptions import InvalidTransitionError, PersistenceFailureError
from returns.models import ReturnRequest, ReturnStatusHistory
from returns.state_machine import ReturnStateMachine, ReturnStatus
from returns.tests.helpers import latest_history_status, make_order, make_return, make_user


class TransitionTableTests(TestCase):
    def test_allowed_transitions_follow_declaration_order(self):
        self.assertEqual(
            ReturnStateMachine.get_allowed_transitions('requested'),
            ['pending_approval', 'approved', 'rejected', 'cancelled'],
        )
        self.assertEqual(ReturnStateMachine.get_allowed_transitions('approved'), ['pickup_scheduled', 'cancelled'])
        self.assertEqual(ReturnStateMachine.get_allowed_transitions('received'), ['inspected'])
        self.assertEqual(
            ReturnStateMachine.get_allowed_transitions('inspected'),
            ['approved_refund', 'rejected_refund'],
        )

    def test_terminal_statuses(self):
        for status in ('rejected', 'rejected_refund', 'completed', 'cancelled'):
            self.assertTrue(ReturnStateMachine.is_terminal(status), status)
            self.assertEqual(ReturnStateMachine.get_allowed_transitions(status), [])
        self.assertFalse(ReturnStateMachine.is_terminal('refund_processed'))

    def test_unknown_status(self):
        self.assertFalse(ReturnStateMachine.can_transition('requested', 'lost'))
        self.assertFalse(ReturnStateMachine.can_transition('lost', 'requested'))
        self.assertEqual(ReturnStateMachine.get_allowed_transitions('lost'), [])

    def test_every_status_has_an_entry(self):
        self.assertEqual(set(ReturnStateMachine.TRANSITIONS), set(ReturnStatus))

    def test_customer_cancellable(self):
        self.assertTrue(ReturnStateMachine.is_customer_cancellable('approved'))
        self.assertFalse(ReturnStateMachine.is_customer_cancellable('pickup_scheduled'))


class TransitionTests(TestCase):
    def setUp(self):
        self.admin = make_user('ops', is_staff=True)
        self.order = make_order(make_user())
        self.return_request = make_return(self.order)

    def test_transition_updates_status_and_appends_history(self):
        ReturnStateMachine.transition(self.return_request, 'approved', operator=self.admin, note='Looks fine')

        self.assertEqual(self.return_request.status, 'approved')
        self.assertEqual(latest_history_status(self.return_request), 'approved')
        entry = self.return_request.status_history.last()
        self.assertEqual(entry.changed_by, self.admin)
        self.assertEqual(entry.note, 'Looks fine')
        self.assertIsNone(self.return_request.completed_at)

    def test_status_matches_last_history_along_full_path(self):
        path = [
            'approved', 'pickup_scheduled', 'picked_up', 'in_transit', 'received',
            'inspected', 'approved_refund',
        ]
        for status in path:
            ReturnStateMachine.transition(self.return_request, status, operator=self.admin)
            stored = ReturnRequest.objects.get(pk=self.return_request.pk)
            self.assertEqual(stored.status, status)
            self.assertEqual(latest_history_status(stored), status)

        self.assertEqual(self.return_request.status_history.count(), len(path) + 1)

    def test_invalid_transition_leaves_state_unchanged(self):
        with self.assertRaises(InvalidTransitionError) as ctx:
            ReturnStateMachine.transition(self.return_request, 'received', operator=self.admin)

        self.assertEqual(ctx.exception.current_status, 'requested')
        self.assertEqual(
            ctx.exception.valid_next_statuses,
            ['pending_approval', 'approved', 'rejected', 'cancelled'],
        )
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'requested')
        self.assertEqual(self.return_request.status_history.count(), 1)

    def test_terminal_status_rejects_every_move(self):
        ReturnStateMachine.transition(self.return_request, 'rejected', operator=self.admin)
        for status in ReturnStatus:
            with self.assertRaises(InvalidTransitionError):
                ReturnStateMachine.transition(self.return_request, status.value, operator=self.admin)
        self.assertEqual(ReturnRequest.objects.get(pk=self.return_request.pk).status, 'rejected')

    def test_closing_status_stamps_completed_at(self):
        ReturnStateMachine.transition(self.return_request, 'cancelled', operator=self.admin)
        self.assertIsNotNone(self.return_request.completed_at)

    def test_stale_instance_loses_race(self):
        first = ReturnRequest.objects.get(pk=self.return_request.pk)
        second = ReturnRequest.objects.get(pk=self.return_request.pk)

        ReturnStateMachine.transition(first, 'approved', operator=self.admin)
        with self.assertRaises(InvalidTransitionError) as ctx:
            ReturnStateMachine.transition(second, 'approved', operator=self.admin)

        self.assertEqual(ctx.exception.current_status, 'approved')
        self.assertEqual(
            ReturnStatusHistory.objects.filter(return_request=self.return_request, status='approved').count(),
            1,
        )

    def test_expected_status_mismatch_is_rejected(self):
        ReturnStateMachine.transition(self.return_request, 'pending_approval', operator=self.admin)
        with self.assertRaises(InvalidTransitionError):
            ReturnStateMachine.transition(
                self.return_request, 'approved', operator=self.admin, expected_status='requested',
            )
        self.assertEqual(ReturnRequest.objects.get(pk=self.return_request.pk).status, 'pending_approval')

    def test_refunded_return_continues_along_refund_path(self):
        refunded = make_return(make_order(make_user('other')), status='approved_refund')
        ReturnRequest.objects.filter(pk=refunded.pk).update(refund_succeeded=True)
        refunded.refresh_from_db()

        ReturnStateMachine.transition(refunded, 'refund_processed', operator=self.admin)
        ReturnStateMachine.transition(refunded, 'completed', operator=self.admin)
        self.assertEqual(refunded.status, 'completed')

    def test_refunded_return_cannot_leave_refund_path(self):
        ReturnRequest.objects.filter(pk=self.return_request.pk).update(refund_succeeded=True)

        with self.assertRaises(InvalidTransitionError):
            ReturnStateMachine.transition(self.return_request, 'cancelled', operator=self.admin)
        self.assertEqual(ReturnRequest.objects.get(pk=self.return_request.pk).status, 'requested')

    def test_extra_fields_written_with_status(self):
        ReturnStateMachine.transition(self.return_request, 'approved', operator=self.admin)
        ReturnStateMachine.transition(
            self.return_request, 'pickup_scheduled', operator=self.admin,
            extra_fields={'pickup_status': 'scheduled', 'awb_code': 'AWB1'},
        )
        self.assertEqual(self.return_request.pickup_status, 'scheduled')
        self.assertEqual(self.return_request.awb_code, 'AWB1')

    def test_database_error_becomes_persistence_failure(self):
        with patch.object(ReturnStatusHistory.objects, 'create', side_effect=DatabaseError('disk full')):
            with self.assertRaises(PersistenceFailureError):
                ReturnStateMachine.transition(self.return_request, 'approved', operator=self.admin)

        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'requested')
        self.assertEqual(latest_history_status(self.return_request), 'requested')
