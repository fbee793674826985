from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import ReturnRequestViewSet, reverse_pickup_webhook_view

router = DefaultRouter()
router.register(r'returns', ReturnRequestViewSet, basename='returns')

urlpatterns = [
    path('returns/webhooks/reverse-pickup/', reverse_pickup_webhook_view, name='reverse-pickup-webhook'),
    path('', include(router.urls)),
]
