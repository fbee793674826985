"""
Return eligibility rules.

``check_eligibility`` is a pure function over an order snapshot; it never
raises for an ineligible order, it reports every failed check instead.
``evaluate_order_eligibility`` gathers its inputs from the database.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence

from django.conf import settings
from django.utils import timezone

from common.utils import parse_decimal

DEFAULT_ALLOWED_REASONS = ['defective_product', 'wrong_item_delivered', 'not_as_described']

SECONDS_PER_DAY = 24 * 60 * 60

MSG_NOT_DELIVERED = 'Order must be delivered to initiate return'
MSG_WINDOW_EXPIRED = 'Return window has expired. Returns are allowed within {days} days of delivery'
MSG_EXISTING_RETURN = 'A return request already exists for this order'
MSG_MIN_AMOUNT = 'Order amount must be at least ₹{amount} for returns'


@dataclass(frozen=True)
class ReturnPolicy:
    days: int
    allowed_reasons: Sequence[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_REASONS))
    category: str = 'default'


@dataclass
class EligibilityResult:
    is_delivered: bool
    within_return_window: bool
    no_existing_return: bool
    order_amount: bool
    reasons: List[str]
    days_since_order: int
    days_remaining: int
    policy: ReturnPolicy

    @property
    def is_eligible(self) -> bool:
        return (
            self.is_delivered
            and self.within_return_window
            and self.no_existing_return
            and self.order_amount
        )

    def as_dict(self) -> dict:
        return {
            'is_eligible': self.is_eligible,
            'checks': {
                'is_delivered': self.is_delivered,
                'within_return_window': self.within_return_window,
                'no_existing_return': self.no_existing_return,
                'order_amount': self.order_amount,
            },
            'reasons': list(self.reasons),
            'return_policy': {
                **asdict(self.policy),
                'allowed_reasons': list(self.policy.allowed_reasons),
                'days_since_order': self.days_since_order,
                'days_remaining': self.days_remaining,
            },
        }


def get_return_policy(category: Optional[str] = None) -> ReturnPolicy:
    """Per-category policy from ``RETURN_CATEGORY_POLICIES``, else the default window."""
    policies = getattr(settings, 'RETURN_CATEGORY_POLICIES', {}) or {}
    key = (category or '').strip().lower()
    # "jewelry" and "jewellery" are both used by the catalog
    if key == 'jewelry':
        key = 'jewellery'
    conf = policies.get(key)
    if conf:
        return ReturnPolicy(
            days=int(conf.get('days', settings.RETURN_POLICY_DEFAULT_DAYS)),
            allowed_reasons=list(conf.get('allowed_reasons') or DEFAULT_ALLOWED_REASONS),
            category=key,
        )
    return ReturnPolicy(days=int(getattr(settings, 'RETURN_POLICY_DEFAULT_DAYS', 10)))


def policy_for_categories(categories: Sequence[str]) -> ReturnPolicy:
    """Mixed orders get the strictest window among their categories."""
    if not categories:
        return get_return_policy('jewellery')
    return min((get_return_policy(c) for c in categories), key=lambda p: p.days)


def _min_order_amount(value) -> Decimal:
    if value is None:
        value = getattr(settings, 'RETURN_MIN_ORDER_AMOUNT', '100')
    amount = parse_decimal(value)
    return amount if amount is not None else Decimal('100')


def _format_amount(amount: Decimal) -> str:
    return str(amount.quantize(Decimal('1'))) if amount == amount.to_integral_value() else str(amount)


def check_eligibility(order, policy: ReturnPolicy, has_active_return: bool,
                      now: Optional[datetime] = None, min_order_amount=None) -> EligibilityResult:
    """
    Evaluate whether ``order`` may start a return.

    Args:
        order: Order snapshot with ``status``, ``created_at`` and ``total_amount``
        policy: Window and reasons applying to the order
        has_active_return: An unfinished return already exists for the order
        now: Evaluation time, defaults to the current time
        min_order_amount: Minimum order total, defaults to ``RETURN_MIN_ORDER_AMOUNT``

    Returns:
        EligibilityResult: Flags, reasons in fixed order, and day counts
    """
    now = now or timezone.now()
    minimum = _min_order_amount(min_order_amount)

    elapsed = (now - order.created_at).total_seconds()
    days_since_order = int(elapsed // SECONDS_PER_DAY)

    is_delivered = order.status == 'delivered'
    within_window = days_since_order <= policy.days
    no_existing_return = not has_active_return
    total = Decimal(str(order.total_amount))
    amount_ok = total >= minimum

    reasons = []
    if not is_delivered:
        reasons.append(MSG_NOT_DELIVERED)
    if not within_window:
        reasons.append(MSG_WINDOW_EXPIRED.format(days=policy.days))
    if not no_existing_return:
        reasons.append(MSG_EXISTING_RETURN)
    if not amount_ok:
        reasons.append(MSG_MIN_AMOUNT.format(amount=_format_amount(minimum)))

    return EligibilityResult(
        is_delivered=is_delivered,
        within_return_window=within_window,
        no_existing_return=no_existing_return,
        order_amount=amount_ok,
        reasons=reasons,
        days_since_order=days_since_order,
        days_remaining=max(0, policy.days - days_since_order),
        policy=policy,
    )


def find_active_return(order_id: int):
    from .models import ReturnRequest, INACTIVE_STATUSES
    return (
        ReturnRequest.objects.filter(order_id=order_id)
        .exclude(status__in=INACTIVE_STATUSES)
        .order_by('-created_at')
        .first()
    )


def evaluate_order_eligibility(order_id: int, user=None, now: Optional[datetime] = None):
    """
    Load the order and existing-return lookup, then run ``check_eligibility``.

    Returns:
        tuple: (OrderSnapshot, EligibilityResult, existing ReturnRequest or None)

    Raises:
        OrderNotFoundError: No such order for ``user``
    """
    from orders.services import OrderService

    snapshot = OrderService.find_order_by_id(order_id, user=user)
    existing = find_active_return(order_id)
    policy = policy_for_categories(snapshot.categories)
    result = check_eligibility(snapshot, policy, has_active_return=existing is not None, now=now)
    return snapshot, result, existing
