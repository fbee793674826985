from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

from django.test import TestCase, override_settings
from django.utils import timezone

from common.exceptions import OrderNotFoundError
from returns.eligibility import (
    ReturnPolicy,
    check_eligibility,
    evaluate_order_eligibility,
    get_return_policy,
    policy_for_categories,
)
from returns.tests.helpers import make_order, make_return, make_user

NOW = timezone.now()


def order_snapshot(status='delivered', days_ago=5, total='5000', hours=0):
    return SimpleNamespace(
        status=status,
        created_at=NOW - timedelta(days=days_ago, hours=hours),
        total_amount=Decimal(total),
    )


class CheckEligibilityTests(TestCase):
    def setUp(self):
        self.policy = ReturnPolicy(days=7)

    def test_delivered_recent_order_is_eligible(self):
        result = check_eligibility(order_snapshot(), self.policy, has_active_return=False, now=NOW)

        self.assertTrue(result.is_eligible)
        self.assertEqual(result.reasons, [])
        self.assertEqual(result.days_since_order, 5)
        self.assertEqual(result.days_remaining, 2)

    def test_expired_window(self):
        result = check_eligibility(order_snapshot(days_ago=10), self.policy, has_active_return=False, now=NOW)

        self.assertFalse(result.is_eligible)
        self.assertFalse(result.within_return_window)
        self.assertEqual(
            result.reasons,
            ['Return window has expired. Returns are allowed within 7 days of delivery'],
        )
        self.assertEqual(result.days_remaining, 0)

    def test_last_day_of_window_is_still_eligible(self):
        result = check_eligibility(order_snapshot(days_ago=7, hours=23), self.policy, has_active_return=False, now=NOW)

        self.assertEqual(result.days_since_order, 7)
        self.assertTrue(result.within_return_window)
        self.assertEqual(result.days_remaining, 0)

    def test_all_reasons_reported_in_order(self):
        result = check_eligibility(
            order_snapshot(status='shipped', days_ago=30, total='50'),
            self.policy,
            has_active_return=True,
            now=NOW,
        )

        self.assertFalse(result.is_eligible)
        self.assertEqual(result.reasons, [
            'Order must be delivered to initiate return',
            'Return window has expired. Returns are allowed within 7 days of delivery',
            'A return request already exists for this order',
            'Order amount must be at least ₹100 for returns',
        ])

    def test_minimum_amount_boundary(self):
        at_minimum = check_eligibility(order_snapshot(total='100'), self.policy, False, now=NOW)
        below = check_eligibility(order_snapshot(total='99.99'), self.policy, False, now=NOW)

        self.assertTrue(at_minimum.order_amount)
        self.assertFalse(below.order_amount)

    def test_as_dict_shape(self):
        data = check_eligibility(order_snapshot(), self.policy, False, now=NOW).as_dict()

        self.assertTrue(data['is_eligible'])
        self.assertEqual(set(data['checks']), {'is_delivered', 'within_return_window', 'no_existing_return', 'order_amount'})
        self.assertEqual(data['return_policy']['days'], 7)
        self.assertEqual(data['return_policy']['days_remaining'], 2)


class ReturnPolicyTests(TestCase):
    @override_settings(RETURN_CATEGORY_POLICIES={'electronics': {'days': 7}}, RETURN_POLICY_DEFAULT_DAYS=10)
    def test_category_and_default_policies(self):
        self.assertEqual(get_return_policy('electronics').days, 7)
        self.assertEqual(get_return_policy('Electronics').days, 7)
        self.assertEqual(get_return_policy('furniture').days, 10)
        self.assertEqual(get_return_policy(None).days, 10)

    @override_settings(RETURN_CATEGORY_POLICIES={'jewellery': {'days': 10}, 'electronics': {'days': 7}})
    def test_mixed_orders_take_strictest_window(self):
        self.assertEqual(policy_for_categories(['jewellery', 'electronics']).days, 7)
        self.assertEqual(policy_for_categories(['jewelry']).days, 10)


class EvaluateOrderEligibilityTests(TestCase):
    def setUp(self):
        self.user = make_user()

    def test_existing_active_return_blocks(self):
        order = make_order(self.user)
        existing = make_return(order, status='approved')

        _, result, found = evaluate_order_eligibility(order.id, user=self.user)

        self.assertFalse(result.no_existing_return)
        self.assertEqual(found, existing)

    def test_closed_return_does_not_block(self):
        order = make_order(self.user)
        make_return(order, status='cancelled')

        _, result, found = evaluate_order_eligibility(order.id, user=self.user)

        self.assertTrue(result.is_eligible)
        self.assertIsNone(found)

    def test_other_customers_order_is_not_found(self):
        order = make_order(self.user)
        with self.assertRaises(OrderNotFoundError):
            evaluate_order_eligibility(order.id, user=make_user('stranger'))
