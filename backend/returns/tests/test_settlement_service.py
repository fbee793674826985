from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.db import DatabaseError
from django.test import TestCase

from common.exceptions import InvalidReturnStateError, PaymentGatewayError, PersistenceFailureError
from integrations.razorpay import RazorpayAPI
from orders.models import Order
from returns.models import ReturnRequest, ReturnStatusHistory
from returns.settlement_service import RefundSettlementService
from returns.tests.helpers import latest_history_status, make_order, make_return, make_user

ORDER_UPDATE = 'returns.settlement_service.OrderService.update_order_payment_status'


class RefundSettlementTests(TestCase):
    def setUp(self):
        self.admin = make_user('ops', is_staff=True)
        self.order = make_order(make_user())
        self.return_request = make_return(self.order, status='approved_refund')
        self.gateway = MagicMock(spec=RazorpayAPI)
        self.gateway.refund.return_value = {'id': 'rfnd_001', 'amount': Decimal('5000.00'), 'status': 'processed'}
        self.service = RefundSettlementService(gateway=self.gateway)

    def test_gateway_refund_settles_and_updates_order(self):
        result = self.service.settle(self.return_request.id, self.admin)

        self.assertFalse(result.already_settled)
        self.assertTrue(result.via_gateway)
        self.assertTrue(result.order_updated)
        self.assertEqual(result.transaction_id, 'rfnd_001')
        self.gateway.refund.assert_called_once()
        self.assertEqual(self.gateway.refund.call_args.args[:2], ('pay_ABC123', Decimal('5000.00')))

        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'refund_processed')
        self.assertTrue(self.return_request.refund_succeeded)
        self.assertEqual(self.return_request.refund_transaction_id, 'rfnd_001')
        self.assertEqual(latest_history_status(self.return_request), 'refund_processed')

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, 'refunded')
        self.assertEqual(self.order.status, 'returned')

    def test_second_settlement_is_a_no_op(self):
        with patch(ORDER_UPDATE) as update_order:
            self.service.settle(self.return_request.id, self.admin)
            self.return_request.refresh_from_db()
            processed_at = self.return_request.refund_processed_at

            again = self.service.settle(self.return_request.id, self.admin)

        self.assertTrue(again.already_settled)
        self.assertEqual(again.transaction_id, 'rfnd_001')
        self.assertEqual(update_order.call_count, 1)
        self.assertEqual(self.gateway.refund.call_count, 1)
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.refund_processed_at, processed_at)
        self.assertEqual(self.return_request.status_history.filter(status='refund_processed').count(), 1)

    def test_failure_while_recording_does_not_refund_twice(self):
        with patch.object(ReturnStatusHistory.objects, 'create', side_effect=DatabaseError('disk I/O error')):
            with self.assertRaises(PersistenceFailureError):
                self.service.settle(self.return_request.id, self.admin)

        self.return_request.refresh_from_db()
        self.assertFalse(self.return_request.refund_succeeded)
        self.assertEqual(self.return_request.status, 'approved_refund')
        self.assertEqual(self.return_request.gateway_refund_id, 'rfnd_001')

        result = self.service.settle(self.return_request.id, self.admin)

        self.assertEqual(self.gateway.refund.call_count, 1)
        self.assertTrue(result.via_gateway)
        self.assertEqual(result.transaction_id, 'rfnd_001')
        self.assertEqual(result.amount, Decimal('5000.00'))
        self.return_request.refresh_from_db()
        self.assertTrue(self.return_request.refund_succeeded)
        self.assertEqual(self.return_request.status, 'refund_processed')

    def test_gateway_failure_leaves_return_unsettled(self):
        self.gateway.refund.side_effect = PaymentGatewayError(detail='Refund rejected by gateway: insufficient balance')

        with patch(ORDER_UPDATE) as update_order:
            with self.assertRaises(PaymentGatewayError):
                self.service.settle(self.return_request.id, self.admin)

        update_order.assert_not_called()
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'approved_refund')
        self.assertFalse(self.return_request.refund_succeeded)
        self.assertIsNone(self.return_request.refund_processed_at)
        self.assertIn('insufficient balance', self.return_request.admin_notes.get().note)

    def test_order_update_failure_does_not_undo_refund(self):
        with patch(ORDER_UPDATE, side_effect=RuntimeError('orders table locked')):
            result = self.service.settle(self.return_request.id, self.admin)

        self.assertFalse(result.order_updated)
        self.assertTrue(result.warning)
        self.return_request.refresh_from_db()
        self.assertEqual(self.return_request.status, 'refund_processed')
        self.assertTrue(self.return_request.refund_succeeded)
        self.assertIn('orders table locked', self.return_request.admin_notes.get().note)
        self.assertEqual(Order.objects.get(pk=self.order.pk).payment_status, 'paid')

    def test_cash_on_delivery_refund_is_manual(self):
        cod_order = make_order(make_user('cod-buyer'), payment_method='cod', payment_id='')
        cod_return = make_return(cod_order, status='approved_refund')

        result = self.service.settle(cod_return.id, self.admin)

        self.gateway.refund.assert_not_called()
        self.assertFalse(result.via_gateway)
        self.assertEqual(result.transaction_id, f'MANUAL-{cod_return.return_number}')

    def test_explicit_transaction_reference_skips_gateway(self):
        result = self.service.settle(self.return_request.id, self.admin, transaction_id='UTR998877')

        self.gateway.refund.assert_not_called()
        self.assertEqual(result.transaction_id, 'UTR998877')

    def test_amount_override_bounds(self):
        with self.assertRaises(InvalidReturnStateError):
            self.service.settle(self.return_request.id, self.admin, amount='6000')
        with self.assertRaises(InvalidReturnStateError):
            self.service.settle(self.return_request.id, self.admin, amount='0')

        result = self.service.settle(self.return_request.id, self.admin, amount='4500')
        self.assertEqual(result.amount, Decimal('4500'))

    def test_requires_approved_refund(self):
        inspected = make_return(make_order(make_user('other')), status='inspected')
        with self.assertRaises(InvalidReturnStateError):
            self.service.settle(inspected.id, self.admin)
        self.gateway.refund.assert_not_called()

    def test_unsettled_refund_processed_return_can_be_settled(self):
        ReturnRequest.objects.filter(pk=self.return_request.pk).update(status='refund_processed')

        result = self.service.settle(self.return_request.id, self.admin, transaction_id='UTR1')

        self.assertFalse(result.already_settled)
        self.return_request.refresh_from_db()
        self.assertTrue(self.return_request.refund_succeeded)
        self.assertEqual(self.return_request.status, 'refund_processed')
