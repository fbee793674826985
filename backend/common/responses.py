"""
Unified API response formatting for consistent response structure across all endpoints.

Error responses are produced by ``common.exceptions.custom_exception_handler``;
this module covers the success side.
"""

from rest_framework.response import Response
from rest_framework import status
from typing import Any, Dict, Optional


class StandardResponse:
    """
    Wrapper for successful API responses with consistent format.

    Response format:
    {
        "success": true,
        "code": 200,
        "message": "Operation successful",
        "data": {...},
        "warning": "..."   # Optional, degraded collaborator
    }
    """

    @staticmethod
    def success(
        data: Any = None,
        message: str = "Operation successful",
        status_code: int = status.HTTP_200_OK,
        extra: Optional[Dict] = None
    ) -> Response:
        """
        Create a successful response.

        Args:
            data: The response data
            message: Success message
            status_code: HTTP status code
            extra: Optional top-level fields merged into the body (warning, pickup, refund)
        """
        response_data = {
            'success': True,
            'code': status_code,
            'message': message,
            'data': data,
        }

        if extra:
            response_data.update({k: v for k, v in extra.items() if v is not None})

        return Response(response_data, status=status_code)

    @staticmethod
    def created(
        data: Any = None,
        message: str = "Resource created successfully",
        extra: Optional[Dict] = None
    ) -> Response:
        return StandardResponse.success(
            data=data,
            message=message,
            status_code=status.HTTP_201_CREATED,
            extra=extra,
        )
