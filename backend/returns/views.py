import json
import logging

from django.conf import settings
from django.http import Http404, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import extend_schema
from rest_framework import filters, mixins, viewsets
from rest_framework.decorators import (
    action,
    api_view,
    authentication_classes,
    permission_classes,
    throttle_classes,
)
from rest_framework.permissions import AllowAny, IsAuthenticated

from common.exceptions import BusinessException, ReturnNotFoundError
from common.pagination import StandardResultsSetPagination
from common.permissions import IsAdmin, IsOwnerOrAdmin, is_returns_admin
from common.responses import StandardResponse
from common.throttles import ReturnsAdminRateThrottle
from integrations.shiprocket import verify_webhook_token
from .eligibility import evaluate_order_eligibility
from .filters import ReturnRequestFilter
from .models import ReturnRequest
from .pickup_service import ReversePickupService
from .serializers import (
    AdminNoteSerializer,
    CompleteRefundSerializer,
    EligibilityCheckSerializer,
    InspectionSerializer,
    ManualReturnSerializer,
    MessageSerializer,
    ReturnAdminNoteSerializer,
    ReturnCancelSerializer,
    ReturnCustomerMessageSerializer,
    ReturnRequestCreateSerializer,
    ReturnRequestListSerializer,
    ReturnRequestSerializer,
    ReturnTransitionSerializer,
)
from .settlement_service import RefundSettlementService
from . import services
from .state_machine import ReturnStateMachine

logger = logging.getLogger(__name__)


@extend_schema(tags=['Returns'])
class ReturnRequestViewSet(mixins.ListModelMixin,
                           mixins.RetrieveModelMixin,
                           viewsets.GenericViewSet):
    """
    Return requests.

    Permissions:
    - Customers list, create, cancel and message their own returns
    - Return administrators (staff, support, admin roles) see every return
      and drive the lifecycle: transitions, pickup, inspection, refund
    """
    serializer_class = ReturnRequestSerializer
    permission_classes = [IsOwnerOrAdmin]
    pagination_class = StandardResultsSetPagination
    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_class = ReturnRequestFilter
    ordering_fields = ['created_at', 'updated_at', 'refund_amount']
    ordering = ['-created_at']

    def get_queryset(self):
        user = self.request.user
        qs = ReturnRequest.objects.select_related('order', 'user')
        if not is_returns_admin(user):
            qs = qs.filter(user=user)
        if self.action == 'list':
            return qs
        return qs.prefetch_related(
            'items', 'status_history__changed_by', 'customer_messages', 'admin_notes__added_by',
        )

    def get_serializer_class(self):
        if self.action == 'list':
            return ReturnRequestListSerializer
        return ReturnRequestSerializer

    def get_serializer_context(self):
        context = super().get_serializer_context()
        context['is_admin'] = is_returns_admin(self.request.user)
        return context

    def get_object(self):
        try:
            return super().get_object()
        except Http404:
            raise ReturnNotFoundError(detail=f'Return request {self.kwargs.get("pk")} not found')

    def _snapshot(self, return_request):
        """Re-read with relations so the response reflects the committed state."""
        instance = self.get_queryset().get(pk=return_request.pk)
        return ReturnRequestSerializer(instance, context=self.get_serializer_context()).data

    def list(self, request, *args, **kwargs):
        queryset = self.filter_queryset(self.get_queryset())
        page = self.paginate_queryset(queryset)
        if page is not None:
            serializer = self.get_serializer(page, many=True)
            return self.get_paginated_response(serializer.data)
        serializer = self.get_serializer(queryset, many=True)
        return StandardResponse.success(serializer.data)

    def retrieve(self, request, *args, **kwargs):
        return StandardResponse.success(self.get_serializer(self.get_object()).data)

    @extend_schema(request=ReturnRequestCreateSerializer, responses=ReturnRequestSerializer)
    def create(self, request, *args, **kwargs):
        serializer = ReturnRequestCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        return_request = services.create_return_request(
            request.user,
            data['order_id'],
            items=data.get('items'),
            reason=data['reason'],
            refund_method=data['refund_method'],
            special_instructions=data['special_instructions'],
            message=data['message'],
            pickup_address=data.get('pickup_address'),
            source='admin' if is_returns_admin(request.user) else 'website',
        )
        return StandardResponse.created(
            self._snapshot(return_request),
            message=f'Return request {return_request.return_number} created',
        )

    @extend_schema(request=ManualReturnSerializer, responses=ReturnRequestSerializer)
    @action(detail=False, methods=['post'], permission_classes=[IsAdmin], throttle_classes=[ReturnsAdminRateThrottle])
    def manual(self, request):
        """Back office return for any order: no eligibility checks, approved unless ``auto_approve`` is false."""
        serializer = ManualReturnSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        return_request = services.create_manual_return(
            request.user,
            data['order_id'],
            customer_id=data.get('customer_id'),
            items=data.get('items'),
            reason=data['reason'],
            refund_method=data['refund_method'],
            auto_approve=data['auto_approve'],
            pickup_required=data['pickup_required'],
            notes=data['notes'],
        )
        return StandardResponse.created(
            self._snapshot(return_request),
            message=f'Manual return {return_request.return_number} created',
        )

    @extend_schema(request=EligibilityCheckSerializer)
    @action(detail=False, methods=['post'], permission_classes=[IsAuthenticated])
    def eligibility(self, request):
        """Check whether an order can start a return; never fails for an ineligible order."""
        serializer = EligibilityCheckSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        order_id = serializer.validated_data['order_id']

        owner = None if is_returns_admin(request.user) else request.user
        snapshot, result, existing = evaluate_order_eligibility(order_id, user=owner)
        data = result.as_dict()
        data['order_id'] = snapshot.id
        data['order_number'] = snapshot.order_number
        data['existing_return_number'] = existing.return_number if existing else None
        return StandardResponse.success(data)

    @action(detail=True, methods=['get'])
    def transitions(self, request, pk=None):
        return_request = self.get_object()
        return StandardResponse.success({
            'current_status': return_request.status,
            'valid_next_statuses': ReturnStateMachine.get_allowed_transitions(return_request.status),
            'is_terminal': ReturnStateMachine.is_terminal(return_request.status),
        })

    @extend_schema(request=ReturnCancelSerializer)
    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        """Customer cancellation; only before the pickup is booked."""
        serializer = ReturnCancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        return_request = services.customer_cancel(pk, request.user, serializer.validated_data['message'])
        return StandardResponse.success(self._snapshot(return_request), message='Return request cancelled')

    @extend_schema(request=MessageSerializer, responses=ReturnCustomerMessageSerializer)
    @action(detail=True, methods=['post'])
    def messages(self, request, pk=None):
        serializer = MessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        message = services.add_customer_message(pk, request.user, serializer.validated_data['message'])
        return StandardResponse.created(ReturnCustomerMessageSerializer(message).data, message='Message added')

    @extend_schema(request=ReturnTransitionSerializer)
    @action(detail=True, methods=['post'], permission_classes=[IsAdmin], throttle_classes=[ReturnsAdminRateThrottle])
    def transition(self, request, pk=None):
        """
        Move a return to a new status.

        ``pickup_scheduled`` books the reverse pickup and ``refund_processed``
        settles the refund; both report their outcome alongside the return.
        """
        serializer = ReturnTransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        outcome = services.admin_transition(
            pk,
            data['status'],
            request.user,
            note=data['note'],
            transaction_id=data.get('transaction_id'),
            amount=data.get('amount'),
        )
        return StandardResponse.success(
            self._snapshot(outcome['return_request']),
            message=f'Return moved to {outcome["return_request"].status}',
            extra={
                'pickup': outcome.get('pickup'),
                'refund': outcome.get('refund'),
                'warning': outcome.get('warning'),
            },
        )

    @action(detail=True, methods=['post'], permission_classes=[IsAdmin], throttle_classes=[ReturnsAdminRateThrottle])
    def schedule_pickup(self, request, pk=None):
        result = ReversePickupService().schedule_pickup(pk, request.user)
        message = 'Pickup scheduled manually' if result.manual else 'Pickup scheduled with carrier'
        return StandardResponse.success(
            self._snapshot(result.return_request),
            message=message,
            extra={'pickup': result.as_dict(), 'warning': result.warning or None},
        )

    @action(detail=True, methods=['post'], permission_classes=[IsAdmin], throttle_classes=[ReturnsAdminRateThrottle])
    def cancel_pickup(self, request, pk=None):
        outcome = ReversePickupService().cancel_pickup(pk, request.user)
        return StandardResponse.success(
            self._snapshot(outcome['return_request']),
            message='Pickup cancelled',
            extra={
                'pickup': {'remote_cancelled': outcome['remote_cancelled']},
                'warning': outcome['warning'] or None,
            },
        )

    @action(detail=True, methods=['post'], permission_classes=[IsAdmin], throttle_classes=[ReturnsAdminRateThrottle])
    def sync_tracking(self, request, pk=None):
        outcome = ReversePickupService().sync_tracking(pk, request.user)
        return StandardResponse.success(
            self._snapshot(outcome['return_request']),
            message='Tracking synchronised',
            extra={
                'tracking': {
                    'carrier_status': outcome['carrier_status'],
                    'applied': outcome['applied'],
                    'edd': outcome['edd'],
                },
            },
        )

    @extend_schema(request=InspectionSerializer)
    @action(detail=True, methods=['post'], permission_classes=[IsAdmin])
    def inspect(self, request, pk=None):
        serializer = InspectionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        return_request = services.record_inspection(
            pk,
            request.user,
            condition=data['condition'],
            notes=data['notes'],
            approved=data['approved'],
            return_shipping_cost=data.get('return_shipping_cost'),
            restocking_fee=data.get('restocking_fee'),
        )
        return StandardResponse.success(self._snapshot(return_request), message='Inspection recorded')

    @extend_schema(request=CompleteRefundSerializer)
    @action(detail=True, methods=['post'], permission_classes=[IsAdmin], throttle_classes=[ReturnsAdminRateThrottle])
    def complete_refund(self, request, pk=None):
        serializer = CompleteRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = RefundSettlementService().settle(
            pk,
            request.user,
            transaction_id=data.get('transaction_id') or None,
            amount=data.get('amount'),
            note=data['note'],
        )
        message = 'Refund already completed' if result.already_settled else 'Refund completed'
        return StandardResponse.success(
            self._snapshot(result.return_request),
            message=message,
            extra={'refund': result.as_dict(), 'warning': result.warning or None},
        )

    @extend_schema(request=AdminNoteSerializer, responses=ReturnAdminNoteSerializer)
    @action(detail=True, methods=['post'], permission_classes=[IsAdmin])
    def notes(self, request, pk=None):
        serializer = AdminNoteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        note = services.add_admin_note(pk, request.user, serializer.validated_data['note'])
        return StandardResponse.created(ReturnAdminNoteSerializer(note).data, message='Note added')


@csrf_exempt
@api_view(['POST'])
@authentication_classes([])
@permission_classes([AllowAny])
@throttle_classes([])
def reverse_pickup_webhook_view(request):
    """
    Shiprocket tracking push for return shipments.

    POST /api/v1/returns/webhooks/reverse-pickup/

    The ``anx-api-key`` header must carry the configured webhook token (or
    an HMAC-SHA256 of the body under it). The carrier retries anything but
    a 200, so every outcome answers 200 with ``success`` telling them apart.
    """
    body = request.body
    if not verify_webhook_token(request.headers.get('anx-api-key'), body, settings.SHIPROCKET_WEBHOOK_SECRET):
        logger.warning('Reverse pickup webhook rejected: invalid token')
        return JsonResponse({'success': False, 'message': 'Invalid webhook token'})

    try:
        payload = json.loads(body.decode('utf-8'))
    except ValueError:
        return JsonResponse({'success': False, 'message': 'Invalid JSON payload'})
    if not isinstance(payload, dict):
        return JsonResponse({'success': False, 'message': 'Invalid JSON payload'})

    logger.info(f"Reverse pickup webhook: awb={payload.get('awb')} status={payload.get('shipment_status') or payload.get('current_status')}")
    try:
        outcome = ReversePickupService().apply_carrier_update(payload)
    except BusinessException as e:
        logger.warning(f'Reverse pickup webhook not applied: {e.detail}')
        return JsonResponse({'success': False, 'message': str(e.detail)})
    except Exception as e:
        logger.error(f'Reverse pickup webhook error: {e}', exc_info=True)
        return JsonResponse({'success': False, 'message': 'Webhook processing failed'})

    return_request = outcome['return_request']
    return JsonResponse({
        'success': True,
        'message': f'Return {return_request.return_number} is {return_request.status}',
    })
