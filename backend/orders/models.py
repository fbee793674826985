import time
import random
from django.db import models
from django.core.validators import MinValueValidator
from django.conf import settings


def generate_order_number():
    return f"ORD{int(time.time())}{random.randint(1000, 9999)}"


class Order(models.Model):
    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('confirmed', 'Confirmed'),
        ('processing', 'Processing'),
        ('shipped', 'Shipped'),
        ('delivered', 'Delivered'),
        ('returned', 'Returned'),
        ('cancelled', 'Cancelled'),
    ]

    PAYMENT_STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('paid', 'Paid'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    ]

    PAYMENT_METHOD_CHOICES = [
        ('cod', 'Cash on delivery'),
        ('online', 'Online'),
    ]

    id = models.BigAutoField(primary_key=True)
    order_number = models.CharField(max_length=100, unique=True, default=generate_order_number, verbose_name='Order number')
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name='orders', verbose_name='User')
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='pending', verbose_name='Order status')
    payment_status = models.CharField(max_length=20, choices=PAYMENT_STATUS_CHOICES, default='pending', verbose_name='Payment status')
    payment_method = models.CharField(max_length=20, choices=PAYMENT_METHOD_CHOICES, default='online', verbose_name='Payment method')
    # Gateway payment id, e.g. Razorpay "pay_..."
    payment_id = models.CharField(max_length=100, blank=True, default='', verbose_name='Gateway payment id')
    total_amount = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)], verbose_name='Total amount')
    # {full_name, phone, address_line1, address_line2, city, state, postal_code, country}
    shipping_address = models.JSONField(default=dict, blank=True, verbose_name='Shipping address')

    created_at = models.DateTimeField(auto_now_add=True, verbose_name='Created at')
    delivered_at = models.DateTimeField(null=True, blank=True, verbose_name='Delivered at')
    updated_at = models.DateTimeField(auto_now=True, verbose_name='Updated at')

    class Meta:
        verbose_name = 'Order'
        verbose_name_plural = 'Orders'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['status'], name='order_status_idx'),
            models.Index(fields=['created_at'], name='order_created_idx'),
            models.Index(fields=['user'], name='order_user_idx'),
        ]

    def __str__(self):
        return self.order_number


class OrderItem(models.Model):
    id = models.BigAutoField(primary_key=True)
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items', verbose_name='Order')
    product_id = models.CharField(max_length=64, verbose_name='Product id')
    name = models.CharField(max_length=200, verbose_name='Product name')
    category = models.CharField(max_length=50, blank=True, default='jewellery', verbose_name='Category')
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(0)], verbose_name='Unit price')
    quantity = models.PositiveIntegerField(default=1, validators=[MinValueValidator(1)], verbose_name='Quantity')

    class Meta:
        verbose_name = 'Order item'
        verbose_name_plural = 'Order items'

    def __str__(self):
        return f'{self.name} x{self.quantity}'

    @property
    def line_total(self):
        return self.unit_price * self.quantity
