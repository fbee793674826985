from django.contrib import admin

from .models import (
    ReturnAdminNote,
    ReturnCustomerMessage,
    ReturnItem,
    ReturnRequest,
    ReturnStatusHistory,
)


class ReturnItemInline(admin.TabularInline):
    model = ReturnItem
    extra = 0
    readonly_fields = ('order_item', 'product_id', 'name', 'unit_price', 'quantity')


class ReturnStatusHistoryInline(admin.TabularInline):
    model = ReturnStatusHistory
    extra = 0
    can_delete = False
    readonly_fields = ('status', 'changed_by', 'note', 'created_at')

    def has_add_permission(self, request, obj=None):
        # History rows are written by the state machine only
        return False


class ReturnCustomerMessageInline(admin.TabularInline):
    model = ReturnCustomerMessage
    extra = 0
    readonly_fields = ('created_at',)


class ReturnAdminNoteInline(admin.TabularInline):
    model = ReturnAdminNote
    extra = 0
    readonly_fields = ('added_by', 'created_at')


@admin.register(ReturnRequest)
class ReturnRequestAdmin(admin.ModelAdmin):
    list_display = (
        'return_number', 'order', 'user', 'status', 'pickup_status', 'pickup_is_manual',
        'refund_amount', 'refund_succeeded', 'created_at',
    )
    list_filter = ('status', 'pickup_status', 'pickup_is_manual', 'refund_method', 'reason', 'source')
    search_fields = ('return_number', 'order__order_number', 'user__username', 'awb_code', 'refund_transaction_id')
    date_hierarchy = 'created_at'
    # Status and refund fields only change through the API services
    readonly_fields = (
        'return_number', 'status', 'refund_succeeded', 'refund_processed_at', 'refund_transaction_id',
        'gateway_refund_id', 'gateway_refund_amount',
        'carrier_order_id', 'carrier_shipment_id', 'awb_code', 'completed_at', 'created_at', 'updated_at',
    )
    inlines = [ReturnItemInline, ReturnStatusHistoryInline, ReturnCustomerMessageInline, ReturnAdminNoteInline]

    def save_formset(self, request, form, formset, change):
        instances = formset.save(commit=False)
        for instance in instances:
            if isinstance(instance, ReturnAdminNote) and instance.added_by_id is None:
                instance.added_by = request.user
            instance.save()
        for obj in formset.deleted_objects:
            obj.delete()
