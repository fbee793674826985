from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Q
from django.utils import timezone

from .state_machine import ReturnStatus

# Returns in these statuses no longer block a new return for the same order
INACTIVE_STATUSES = (ReturnStatus.CANCELLED.value, ReturnStatus.COMPLETED.value)
ACTIVE_RETURN_CONSTRAINT = 'unique_active_return_per_order'


class ReturnRequest(models.Model):
    STATUS_CHOICES = [
        ('requested', 'Requested'),
        ('pending_approval', 'Pending approval'),
        ('approved', 'Approved'),
        ('rejected', 'Rejected'),
        ('pickup_scheduled', 'Pickup scheduled'),
        ('picked_up', 'Picked up'),
        ('in_transit', 'In transit'),
        ('received', 'Received'),
        ('inspected', 'Inspected'),
        ('approved_refund', 'Refund approved'),
        ('rejected_refund', 'Refund rejected'),
        ('refund_processed', 'Refund processed'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
    ]

    REASON_CHOICES = [
        ('defective_product', 'Defective product'),
        ('wrong_item_delivered', 'Wrong item delivered'),
        ('product_damaged', 'Product damaged'),
        ('poor_quality', 'Poor quality'),
        ('not_as_described', 'Not as described'),
        ('size_fitting_issue', 'Size / fitting issue'),
        ('ordered_by_mistake', 'Ordered by mistake'),
        ('better_price_available', 'Better price available'),
        ('no_longer_needed', 'No longer needed'),
        ('delivery_delayed', 'Delivery delayed'),
        ('admin_initiated', 'Admin initiated'),
        ('other', 'Other'),
    ]

    REFUND_METHOD_CHOICES = [
        ('original_payment', 'Original payment method'),
        ('bank_transfer', 'Bank transfer'),
        ('store_credit', 'Store credit'),
    ]

    PICKUP_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('scheduled', 'Scheduled'),
        ('attempted', 'Attempted'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('cancelled', 'Cancelled'),
        ('not_required', 'Not required'),
    ]

    SOURCE_CHOICES = [
        ('website', 'Website'),
        ('admin', 'Admin'),
    ]

    CONDITION_CHOICES = [
        ('excellent', 'Excellent'),
        ('good', 'Good'),
        ('fair', 'Fair'),
        ('poor', 'Poor'),
        ('damaged', 'Damaged'),
    ]

    id = models.BigAutoField(primary_key=True)
    return_number = models.CharField(max_length=32, unique=True, null=True, blank=True, verbose_name='Return number')
    order = models.ForeignKey('orders.Order', on_delete=models.PROTECT, related_name='returns', verbose_name='Order')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='returns', verbose_name='Requested by')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='requested', verbose_name='Status')
    reason = models.CharField(max_length=30, choices=REASON_CHOICES, default='other', verbose_name='Reason')
    source = models.CharField(max_length=20, choices=SOURCE_CHOICES, default='website', verbose_name='Source')
    allowed_return_days = models.PositiveIntegerField(default=10, verbose_name='Return window (days)')

    # Refund
    original_amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)], verbose_name='Original amount')
    return_shipping_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'), validators=[MinValueValidator(0)], verbose_name='Return shipping cost')
    restocking_fee = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0'), validators=[MinValueValidator(0)], verbose_name='Restocking fee')
    refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True, verbose_name='Refund amount')
    refund_method = models.CharField(max_length=20, choices=REFUND_METHOD_CHOICES, default='original_payment', verbose_name='Refund method')
    refund_succeeded = models.BooleanField(default=False, verbose_name='Refund succeeded')
    refund_processed_at = models.DateTimeField(null=True, blank=True, verbose_name='Refund processed at')
    refund_transaction_id = models.CharField(max_length=100, blank=True, default='', verbose_name='Refund transaction id')
    # Set as soon as the gateway accepts a refund, before the settlement is recorded
    gateway_refund_id = models.CharField(max_length=100, blank=True, default='', verbose_name='Gateway refund id')
    gateway_refund_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True, verbose_name='Gateway refund amount')

    # Reverse pickup
    pickup_address = models.JSONField(default=dict, blank=True, verbose_name='Pickup address')
    pickup_scheduled_date = models.DateTimeField(null=True, blank=True, verbose_name='Pickup date')
    pickup_time_slot = models.CharField(max_length=50, blank=True, default='', verbose_name='Pickup time slot')
    pickup_status = models.CharField(max_length=20, choices=PICKUP_STATUS_CHOICES, default='pending', verbose_name='Pickup status')
    pickup_is_manual = models.BooleanField(default=False, verbose_name='Manual pickup')
    carrier_order_id = models.CharField(max_length=64, blank=True, default='', verbose_name='Carrier order id')
    carrier_shipment_id = models.CharField(max_length=64, blank=True, default='', verbose_name='Carrier shipment id')
    awb_code = models.CharField(max_length=64, blank=True, default='', verbose_name='AWB')
    courier_name = models.CharField(max_length=100, blank=True, default='', verbose_name='Courier')
    tracking_url = models.URLField(max_length=300, blank=True, default='', verbose_name='Tracking URL')
    carrier_tracking_status = models.CharField(max_length=100, blank=True, default='', verbose_name='Carrier tracking status')
    actual_pickup_date = models.DateTimeField(null=True, blank=True, verbose_name='Picked up at')
    special_instructions = models.TextField(blank=True, default='', verbose_name='Pickup instructions')

    # Warehouse inspection
    inspection_condition = models.CharField(max_length=20, choices=CONDITION_CHOICES, blank=True, default='', verbose_name='Condition')
    inspection_notes = models.TextField(blank=True, default='', verbose_name='Inspection notes')
    inspected_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True,
        related_name='inspected_returns', verbose_name='Inspected by',
    )
    inspected_at = models.DateTimeField(null=True, blank=True, verbose_name='Inspected at')
    inspection_approved = models.BooleanField(null=True, blank=True, verbose_name='Inspection approved')

    completed_at = models.DateTimeField(null=True, blank=True, verbose_name='Closed at')
    created_at = models.DateTimeField(auto_now_add=True, verbose_name='Created at')
    updated_at = models.DateTimeField(auto_now=True, verbose_name='Updated at')

    class Meta:
        verbose_name = 'Return request'
        verbose_name_plural = 'Return requests'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status', '-created_at'], name='return_status_created_idx'),
            models.Index(fields=['user', '-created_at'], name='return_user_created_idx'),
            models.Index(fields=['pickup_status', 'pickup_scheduled_date'], name='return_pickup_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['order'],
                condition=~Q(status__in=INACTIVE_STATUSES),
                name=ACTIVE_RETURN_CONSTRAINT,
            ),
        ]

    def __str__(self):
        return self.return_number or f'Return #{self.pk}'

    def save(self, *args, **kwargs):
        is_new = self._state.adding
        super().save(*args, **kwargs)
        if is_new and not self.return_number:
            self.return_number = self.build_return_number()
            type(self).objects.filter(pk=self.pk).update(return_number=self.return_number)

    def build_return_number(self) -> str:
        created = timezone.localtime(self.created_at) if self.created_at else timezone.localtime()
        return f'RET{created:%Y%m%d}{self.pk:06d}'

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    def calculate_refund_amount(self) -> Decimal:
        """
        Refund due after deductions.

        Raises:
            ValueError: Non-positive original amount, negative deductions,
                or deductions larger than the original amount
        """
        original = self.original_amount or Decimal('0')
        shipping = self.return_shipping_cost or Decimal('0')
        restocking = self.restocking_fee or Decimal('0')

        if original <= 0:
            raise ValueError('Original amount must be greater than 0')
        if shipping < 0 or restocking < 0:
            raise ValueError('Shipping cost and restocking fee cannot be negative')
        if shipping + restocking > original:
            raise ValueError('Total deductions cannot exceed original amount')

        return original - shipping - restocking


class ReturnItem(models.Model):
    CONDITION_CHOICES = [
        ('unused', 'Unused'),
        ('lightly_used', 'Lightly used'),
        ('damaged', 'Damaged'),
        ('defective', 'Defective'),
        ('unknown', 'Unknown'),
    ]

    id = models.BigAutoField(primary_key=True)
    return_request = models.ForeignKey(ReturnRequest, on_delete=models.CASCADE, related_name='items', verbose_name='Return')
    order_item = models.ForeignKey('orders.OrderItem', on_delete=models.SET_NULL, null=True, blank=True, related_name='return_items', verbose_name='Order item')
    product_id = models.CharField(max_length=64, verbose_name='Product id')
    name = models.CharField(max_length=200, verbose_name='Product name')
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)], verbose_name='Unit price')
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)], verbose_name='Quantity')
    return_reason = models.CharField(max_length=30, choices=ReturnRequest.REASON_CHOICES, verbose_name='Return reason')
    detailed_reason = models.TextField(blank=True, default='', verbose_name='Details')
    item_condition = models.CharField(max_length=20, choices=CONDITION_CHOICES, default='unused', verbose_name='Condition')

    class Meta:
        verbose_name = 'Return item'
        verbose_name_plural = 'Return items'

    def __str__(self):
        return f'{self.name} x{self.quantity}'

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class ReturnStatusHistory(models.Model):
    """Append-only; the latest row always matches ``ReturnRequest.status``."""

    id = models.BigAutoField(primary_key=True)
    return_request = models.ForeignKey(ReturnRequest, on_delete=models.CASCADE, related_name='status_history', verbose_name='Return')
    status = models.CharField(max_length=20, choices=ReturnRequest.STATUS_CHOICES, verbose_name='Status')
    changed_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, verbose_name='Changed by')
    note = models.TextField(blank=True, default='', verbose_name='Note')
    created_at = models.DateTimeField(auto_now_add=True, verbose_name='Created at')

    class Meta:
        verbose_name = 'Return status history'
        verbose_name_plural = 'Return status history'
        ordering = ['created_at', 'id']

    def __str__(self):
        return f'{self.return_request_id}: {self.status}'


class ReturnCustomerMessage(models.Model):
    id = models.BigAutoField(primary_key=True)
    return_request = models.ForeignKey(ReturnRequest, on_delete=models.CASCADE, related_name='customer_messages', verbose_name='Return')
    message = models.TextField(verbose_name='Message')
    is_from_customer = models.BooleanField(default=True, verbose_name='From customer')
    created_at = models.DateTimeField(auto_now_add=True, verbose_name='Created at')

    class Meta:
        verbose_name = 'Return message'
        verbose_name_plural = 'Return messages'
        ordering = ['created_at', 'id']


class ReturnAdminNote(models.Model):
    id = models.BigAutoField(primary_key=True)
    return_request = models.ForeignKey(ReturnRequest, on_delete=models.CASCADE, related_name='admin_notes', verbose_name='Return')
    note = models.TextField(verbose_name='Note')
    added_by = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, verbose_name='Added by')
    created_at = models.DateTimeField(auto_now_add=True, verbose_name='Created at')

    class Meta:
        verbose_name = 'Return admin note'
        verbose_name_plural = 'Return admin notes'
        ordering = ['created_at', 'id']
