"""
Custom pagination classes for DRF with enhanced metadata.
"""
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class StandardResultsSetPagination(PageNumberPagination):
    """
    Standard pagination class with configurable page size.

    Returns pagination metadata including:
    - results: List of items
    - total: Total number of items
    - page: Current page number
    - total_pages: Total number of pages
    - has_next / has_previous
    """
    page_size = 20
    page_size_query_param = 'page_size'
    page_size_query_description = 'Number of results to return per page.'
    max_page_size = 100
    page_query_param = 'page'

    def get_paginated_response(self, data):
        return Response({
            'success': True,
            'results': data,
            'total': self.page.paginator.count,
            'page': self.page.number,
            'total_pages': self.page.paginator.num_pages,
            'has_next': self.page.has_next(),
            'has_previous': self.page.has_previous(),
        })

    def get_paginated_response_schema(self, schema):
        return {
            'type': 'object',
            'properties': {
                'success': {'type': 'boolean'},
                'results': schema,
                'total': {'type': 'integer'},
                'page': {'type': 'integer'},
                'total_pages': {'type': 'integer'},
                'has_next': {'type': 'boolean'},
                'has_previous': {'type': 'boolean'},
            },
        }
