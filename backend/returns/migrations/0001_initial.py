from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


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


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('orders', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='ReturnRequest',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('return_number', models.CharField(blank=True, max_length=32, null=True, unique=True, verbose_name='Return number')),
                ('status', models.CharField(choices=STATUS_CHOICES, default='requested', max_length=20, verbose_name='Status')),
                ('reason', models.CharField(choices=REASON_CHOICES, default='other', max_length=30, verbose_name='Reason')),
                ('source', models.CharField(choices=[('website', 'Website'), ('admin', 'Admin')], default='website', max_length=20, verbose_name='Source')),
                ('allowed_return_days', models.PositiveIntegerField(default=10, verbose_name='Return window (days)')),
                ('original_amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(0)], verbose_name='Original amount')),
                ('return_shipping_cost', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12, validators=[django.core.validators.MinValueValidator(0)], verbose_name='Return shipping cost')),
                ('restocking_fee', models.DecimalField(decimal_places=2, default=Decimal('0'), max_digits=12, validators=[django.core.validators.MinValueValidator(0)], verbose_name='Restocking fee')),
                ('refund_amount', models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True, verbose_name='Refund amount')),
                ('refund_method', models.CharField(choices=[('original_payment', 'Original payment method'), ('bank_transfer', 'Bank transfer'), ('store_credit', 'Store credit')], default='original_payment', max_length=20, verbose_name='Refund method')),
                ('refund_succeeded', models.BooleanField(default=False, verbose_name='Refund succeeded')),
                ('refund_processed_at', models.DateTimeField(blank=True, null=True, verbose_name='Refund processed at')),
                ('refund_transaction_id', models.CharField(blank=True, default='', max_length=100, verbose_name='Refund transaction id')),
                ('pickup_address', models.JSONField(blank=True, default=dict, verbose_name='Pickup address')),
                ('pickup_scheduled_date', models.DateTimeField(blank=True, null=True, verbose_name='Pickup date')),
                ('pickup_time_slot', models.CharField(blank=True, default='', max_length=50, verbose_name='Pickup time slot')),
                ('pickup_status', models.CharField(choices=[('pending', 'Pending'), ('scheduled', 'Scheduled'), ('attempted', 'Attempted'), ('completed', 'Completed'), ('failed', 'Failed'), ('cancelled', 'Cancelled'), ('not_required', 'Not required')], default='pending', max_length=20, verbose_name='Pickup status')),
                ('pickup_is_manual', models.BooleanField(default=False, verbose_name='Manual pickup')),
                ('carrier_order_id', models.CharField(blank=True, default='', max_length=64, verbose_name='Carrier order id')),
                ('carrier_shipment_id', models.CharField(blank=True, default='', max_length=64, verbose_name='Carrier shipment id')),
                ('awb_code', models.CharField(blank=True, default='', max_length=64, verbose_name='AWB')),
                ('courier_name', models.CharField(blank=True, default='', max_length=100, verbose_name='Courier')),
                ('tracking_url', models.URLField(blank=True, default='', max_length=300, verbose_name='Tracking URL')),
                ('carrier_tracking_status', models.CharField(blank=True, default='', max_length=100, verbose_name='Carrier tracking status')),
                ('actual_pickup_date', models.DateTimeField(blank=True, null=True, verbose_name='Picked up at')),
                ('special_instructions', models.TextField(blank=True, default='', verbose_name='Pickup instructions')),
                ('inspection_condition', models.CharField(blank=True, choices=[('excellent', 'Excellent'), ('good', 'Good'), ('fair', 'Fair'), ('poor', 'Poor'), ('damaged', 'Damaged')], default='', max_length=20, verbose_name='Condition')),
                ('inspection_notes', models.TextField(blank=True, default='', verbose_name='Inspection notes')),
                ('inspected_at', models.DateTimeField(blank=True, null=True, verbose_name='Inspected at')),
                ('inspection_approved', models.BooleanField(blank=True, null=True, verbose_name='Inspection approved')),
                ('completed_at', models.DateTimeField(blank=True, null=True, verbose_name='Closed at')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created at')),
                ('updated_at', models.DateTimeField(auto_now=True, verbose_name='Updated at')),
                ('inspected_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='inspected_returns', to=settings.AUTH_USER_MODEL, verbose_name='Inspected by')),
                ('order', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='returns', to='orders.order', verbose_name='Order')),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='returns', to=settings.AUTH_USER_MODEL, verbose_name='Requested by')),
            ],
            options={
                'verbose_name': 'Return request',
                'verbose_name_plural': 'Return requests',
                'ordering': ['-created_at'],
                'indexes': [
                    models.Index(fields=['status', '-created_at'], name='return_status_created_idx'),
                    models.Index(fields=['user', '-created_at'], name='return_user_created_idx'),
                    models.Index(fields=['pickup_status', 'pickup_scheduled_date'], name='return_pickup_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='ReturnItem',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('product_id', models.CharField(max_length=64, verbose_name='Product id')),
                ('name', models.CharField(max_length=200, verbose_name='Product name')),
                ('unit_price', models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(0)], verbose_name='Unit price')),
                ('quantity', models.PositiveIntegerField(validators=[django.core.validators.MinValueValidator(1)], verbose_name='Quantity')),
                ('return_reason', models.CharField(choices=REASON_CHOICES, max_length=30, verbose_name='Return reason')),
                ('detailed_reason', models.TextField(blank=True, default='', verbose_name='Details')),
                ('item_condition', models.CharField(choices=[('unused', 'Unused'), ('lightly_used', 'Lightly used'), ('damaged', 'Damaged'), ('defective', 'Defective'), ('unknown', 'Unknown')], default='unused', max_length=20, verbose_name='Condition')),
                ('order_item', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='return_items', to='orders.orderitem', verbose_name='Order item')),
                ('return_request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='items', to='returns.returnrequest', verbose_name='Return')),
            ],
            options={
                'verbose_name': 'Return item',
                'verbose_name_plural': 'Return items',
            },
        ),
        migrations.CreateModel(
            name='ReturnStatusHistory',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('status', models.CharField(choices=STATUS_CHOICES, max_length=20, verbose_name='Status')),
                ('note', models.TextField(blank=True, default='', verbose_name='Note')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created at')),
                ('changed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL, verbose_name='Changed by')),
                ('return_request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='status_history', to='returns.returnrequest', verbose_name='Return')),
            ],
            options={
                'verbose_name': 'Return status history',
                'verbose_name_plural': 'Return status history',
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='ReturnCustomerMessage',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('message', models.TextField(verbose_name='Message')),
                ('is_from_customer', models.BooleanField(default=True, verbose_name='From customer')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created at')),
                ('return_request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='customer_messages', to='returns.returnrequest', verbose_name='Return')),
            ],
            options={
                'verbose_name': 'Return message',
                'verbose_name_plural': 'Return messages',
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='ReturnAdminNote',
            fields=[
                ('id', models.BigAutoField(primary_key=True, serialize=False)),
                ('note', models.TextField(verbose_name='Note')),
                ('created_at', models.DateTimeField(auto_now_add=True, verbose_name='Created at')),
                ('added_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL, verbose_name='Added by')),
                ('return_request', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='admin_notes', to='returns.returnrequest', verbose_name='Return')),
            ],
            options={
                'verbose_name': 'Return admin note',
                'verbose_name_plural': 'Return admin notes',
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.AddConstraint(
            model_name='returnrequest',
            constraint=models.UniqueConstraint(condition=models.Q(('status__in', ('cancelled', 'completed')), _negated=True), fields=('order',), name='unique_active_return_per_order'),
        ),
    ]
