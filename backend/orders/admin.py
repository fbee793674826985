from django.contrib import admin
from .models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ('order_number', 'user', 'status', 'payment_status', 'payment_method', 'total_amount', 'created_at')
    search_fields = ('order_number', 'user__username', 'payment_id')
    list_filter = ('status', 'payment_status', 'payment_method')
    readonly_fields = ('created_at', 'updated_at')
    inlines = [OrderItemInline]
