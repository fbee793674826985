from decimal import Decimal

from django.db import IntegrityError, transaction
from django.test import TestCase
from django.utils import timezone

from returns.models import ReturnRequest
from returns.tests.helpers import make_order, make_return, make_user


class ReturnRequestModelTests(TestCase):
    def setUp(self):
        self.order = make_order(make_user())

    def test_return_number_assigned_on_create(self):
        return_request = make_return(self.order)
        expected_prefix = f'RET{timezone.localtime(return_request.created_at):%Y%m%d}'
        self.assertEqual(return_request.return_number, f'{expected_prefix}{return_request.pk:06d}')

    def test_refund_amount_after_deductions(self):
        return_request = ReturnRequest(
            original_amount=Decimal('5000'), return_shipping_cost=Decimal('150'), restocking_fee=Decimal('350'),
        )
        self.assertEqual(return_request.calculate_refund_amount(), Decimal('4500'))

    def test_refund_amount_validation(self):
        for fields in (
            {'original_amount': Decimal('0')},
            {'original_amount': Decimal('100'), 'restocking_fee': Decimal('-1')},
            {'original_amount': Decimal('100'), 'return_shipping_cost': Decimal('60'), 'restocking_fee': Decimal('50')},
        ):
            with self.assertRaises(ValueError):
                ReturnRequest(**fields).calculate_refund_amount()

    def test_one_active_return_per_order(self):
        make_return(self.order)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                make_return(self.order, status='approved')

    def test_closed_returns_do_not_count_as_active(self):
        closed = make_return(self.order, status='completed')
        make_return(self.order, status='cancelled')
        active = make_return(self.order)

        self.assertFalse(closed.is_active)
        self.assertTrue(active.is_active)
