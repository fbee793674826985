import django_filters

from .models import ReturnRequest


class CharInFilter(django_filters.BaseInFilter, django_filters.CharFilter):
    pass


class ReturnRequestFilter(django_filters.FilterSet):
    """
    Query filters for the return list.

    ``status`` accepts a comma separated list, e.g. ``?status=requested,approved``.
    """

    status = CharInFilter(field_name='status', lookup_expr='in')
    return_number = django_filters.CharFilter(field_name='return_number', lookup_expr='icontains')
    order_number = django_filters.CharFilter(field_name='order__order_number', lookup_expr='icontains')
    created_after = django_filters.IsoDateTimeFilter(field_name='created_at', lookup_expr='gte')
    created_before = django_filters.IsoDateTimeFilter(field_name='created_at', lookup_expr='lte')

    class Meta:
        model = ReturnRequest
        fields = ['status', 'pickup_status', 'order', 'user', 'refund_method', 'reason', 'pickup_is_manual']
