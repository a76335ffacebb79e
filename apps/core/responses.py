"""
Success envelope helpers shared by API views.
"""
from rest_framework import status as http_status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


def api_response(data=None, message=None, status=http_status.HTTP_200_OK):
    """
    Build a success response in the uniform envelope.

    {"success": true, "message": "...", "data": ...}
    """
    body = {'success': True}
    if message:
        body['message'] = message
    if data is not None:
        body['data'] = data
    return Response(body, status=status)


class EnvelopePagination(PageNumberPagination):
    """Page-number pagination that wraps the page in the success envelope."""

    page_size = 50
    page_size_query_param = 'page_size'
    max_page_size = 100

    def get_paginated_response(self, data):
        return api_response({
            'results': data,
            'count': self.page.paginator.count,
            'current_page': self.page.number,
            'last_page': self.page.paginator.num_pages,
            'per_page': self.get_page_size(self.request),
            'next': self.get_next_link(),
            'previous': self.get_previous_link(),
        })


class AuditLogPagination(EnvelopePagination):
    page_size = 25
    page_size_query_param = None


class ChangeRequestPagination(EnvelopePagination):
    page_size = 20
    page_size_query_param = None
