"""
Custom permission classes for API access control.

Staff accounts and users with the ``support`` or ``admin`` role are treated as
return administrators; everyone else may only touch their own returns.
"""

from rest_framework import permissions


def is_returns_admin(user) -> bool:
    if not user or not user.is_authenticated:
        return False
    return bool(user.is_staff or getattr(user, 'role', '') in ('support', 'admin'))


class IsOwnerOrAdmin(permissions.BasePermission):
    """
    Permission class that allows access to object owners or administrators.

    The object must have a ``user`` attribute referencing the owner, or an
    ``order`` whose ``user`` is the owner.
    """

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated)

    def has_object_permission(self, request, view, obj):
        if is_returns_admin(request.user):
            return True

        owner_id = getattr(obj, 'user_id', None)
        if owner_id is None and getattr(obj, 'order', None) is not None:
            owner_id = obj.order.user_id

        return owner_id == request.user.pk


class IsAdmin(permissions.BasePermission):
    """
    Permission class that requires return administrator privileges.

    Typical usage:
        @action(detail=True, methods=['post'], permission_classes=[IsAdmin])
        def schedule_pickup(self, request, pk=None):
            ...
    """

    message = 'Administrator privileges required'

    def has_permission(self, request, view):
        return is_returns_admin(request.user)
