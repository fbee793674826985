"""
Custom throttle classes for API rate limiting.
"""

from rest_framework.throttling import UserRateThrottle

from backend.settings.env_config import EnvironmentConfig


class ReturnsAdminRateThrottle(UserRateThrottle):
    """
    Throttle for admin return actions that call the carrier or payment gateway.

    Only enforced in production, matching the global DEFAULT_THROTTLE_CLASSES.

    Typical usage:
        @action(detail=True, methods=['post'], throttle_classes=[ReturnsAdminRateThrottle])
        def complete_refund(self, request, pk=None):
            ...
    """
    scope = 'returns_admin'

    def allow_request(self, request, view):
        if not EnvironmentConfig.is_production():
            return True
        return super().allow_request(request, view)
