from rest_framework import serializers

from .models import (
    ReturnAdminNote,
    ReturnCustomerMessage,
    ReturnItem,
    ReturnRequest,
    ReturnStatusHistory,
)
from .state_machine import ReturnStateMachine


class ReturnItemSerializer(serializers.ModelSerializer):
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = ReturnItem
        fields = [
            'id',
            'order_item',
            'product_id',
            'name',
            'unit_price',
            'quantity',
            'line_total',
            'return_reason',
            'detailed_reason',
            'item_condition',
        ]
        read_only_fields = fields


class ReturnStatusHistorySerializer(serializers.ModelSerializer):
    changed_by_username = serializers.CharField(source='changed_by.username', read_only=True, default=None)

    class Meta:
        model = ReturnStatusHistory
        fields = ['id', 'status', 'note', 'changed_by', 'changed_by_username', 'created_at']
        read_only_fields = fields


class ReturnCustomerMessageSerializer(serializers.ModelSerializer):
    class Meta:
        model = ReturnCustomerMessage
        fields = ['id', 'message', 'is_from_customer', 'created_at']
        read_only_fields = fields


class ReturnAdminNoteSerializer(serializers.ModelSerializer):
    added_by_username = serializers.CharField(source='added_by.username', read_only=True, default=None)

    class Meta:
        model = ReturnAdminNote
        fields = ['id', 'note', 'added_by', 'added_by_username', 'created_at']
        read_only_fields = fields


class ReturnRequestListSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source='order.order_number', read_only=True)
    username = serializers.CharField(source='user.username', read_only=True)
    status_label = serializers.CharField(source='get_status_display', read_only=True)

    class Meta:
        model = ReturnRequest
        fields = [
            'id',
            'return_number',
            'order',
            'order_number',
            'user',
            'username',
            'status',
            'status_label',
            'reason',
            'refund_amount',
            'pickup_status',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields


class ReturnRequestSerializer(serializers.ModelSerializer):
    """Full return snapshot; admin notes are only included for return administrators."""

    order_number = serializers.CharField(source='order.order_number', read_only=True)
    username = serializers.CharField(source='user.username', read_only=True)
    status_label = serializers.CharField(source='get_status_display', read_only=True)
    items = ReturnItemSerializer(many=True, read_only=True)
    status_history = ReturnStatusHistorySerializer(many=True, read_only=True)
    customer_messages = ReturnCustomerMessageSerializer(many=True, read_only=True)
    admin_notes = ReturnAdminNoteSerializer(many=True, read_only=True)
    valid_next_statuses = serializers.SerializerMethodField()

    class Meta:
        model = ReturnRequest
        fields = [
            'id',
            'return_number',
            'order',
            'order_number',
            'user',
            'username',
            'status',
            'status_label',
            'valid_next_statuses',
            'reason',
            'source',
            'allowed_return_days',
            'items',
            'original_amount',
            'return_shipping_cost',
            'restocking_fee',
            'refund_amount',
            'refund_method',
            'refund_succeeded',
            'refund_processed_at',
            'refund_transaction_id',
            'pickup_address',
            'pickup_scheduled_date',
            'pickup_time_slot',
            'pickup_status',
            'pickup_is_manual',
            'carrier_shipment_id',
            'awb_code',
            'courier_name',
            'tracking_url',
            'carrier_tracking_status',
            'actual_pickup_date',
            'special_instructions',
            'inspection_condition',
            'inspection_notes',
            'inspected_at',
            'inspection_approved',
            'status_history',
            'customer_messages',
            'admin_notes',
            'completed_at',
            'created_at',
            'updated_at',
        ]
        read_only_fields = fields

    def get_valid_next_statuses(self, obj):
        return ReturnStateMachine.get_allowed_transitions(obj.status)

    def to_representation(self, instance):
        data = super().to_representation(instance)
        if not self.context.get('is_admin', False):
            data.pop('admin_notes', None)
        return data


class ReturnItemInputSerializer(serializers.Serializer):
    order_item_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1, required=False)
    return_reason = serializers.ChoiceField(choices=ReturnRequest.REASON_CHOICES, required=False)
    detailed_reason = serializers.CharField(required=False, allow_blank=True, max_length=1000)
    item_condition = serializers.ChoiceField(choices=ReturnItem.CONDITION_CHOICES, required=False)


class PickupAddressSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=100)
    phone = serializers.CharField(max_length=20)
    address_line1 = serializers.CharField(max_length=255)
    address_line2 = serializers.CharField(max_length=255, required=False, allow_blank=True)
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    postal_code = serializers.RegexField(r'^\d{6}$', error_messages={'invalid': 'Postal code must be 6 digits'})
    country = serializers.CharField(max_length=100, required=False, default='India')


class ReturnRequestCreateSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()
    reason = serializers.ChoiceField(choices=ReturnRequest.REASON_CHOICES, default='other')
    refund_method = serializers.ChoiceField(choices=ReturnRequest.REFUND_METHOD_CHOICES, default='original_payment')
    items = ReturnItemInputSerializer(many=True, required=False)
    special_instructions = serializers.CharField(required=False, allow_blank=True, default='', max_length=1000)
    message = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)
    pickup_address = PickupAddressSerializer(required=False)


class ManualReturnSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()
    customer_id = serializers.IntegerField(required=False, allow_null=True, default=None)
    items = ReturnItemInputSerializer(many=True, required=False)
    reason = serializers.ChoiceField(choices=ReturnRequest.REASON_CHOICES, default='other')
    refund_method = serializers.ChoiceField(choices=ReturnRequest.REFUND_METHOD_CHOICES, default='original_payment')
    auto_approve = serializers.BooleanField(default=True)
    pickup_required = serializers.BooleanField(default=True)
    notes = serializers.CharField(required=False, allow_blank=True, default='', max_length=1000)


class EligibilityCheckSerializer(serializers.Serializer):
    order_id = serializers.IntegerField()


class ReturnTransitionSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=ReturnRequest.STATUS_CHOICES)
    note = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)
    transaction_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)


class ReturnCancelSerializer(serializers.Serializer):
    message = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)


class InspectionSerializer(serializers.Serializer):
    condition = serializers.ChoiceField(choices=ReturnRequest.CONDITION_CHOICES)
    notes = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)
    approved = serializers.BooleanField(required=False, allow_null=True, default=None)
    return_shipping_cost = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    restocking_fee = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)


class CompleteRefundSerializer(serializers.Serializer):
    transaction_id = serializers.CharField(required=False, allow_blank=True, max_length=100)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    note = serializers.CharField(required=False, allow_blank=True, default='', max_length=2000)


class MessageSerializer(serializers.Serializer):
    message = serializers.CharField(max_length=2000)


class AdminNoteSerializer(serializers.Serializer):
    note = serializers.CharField(max_length=2000)
