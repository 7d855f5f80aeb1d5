import math

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class PageLimitPagination(PageNumberPagination):
    """``?page=2&limit=50`` pagination wrapped in the success envelope."""

    page_size = 20
    page_size_query_param = 'limit'
    max_page_size = 100

    def get_paginated_response(self, data, message=''):
        total = self.page.paginator.count
        limit = self.get_page_size(self.request) or self.page_size
        return Response({
            'success': True,
            'message': message,
            'data': data,
            'pagination': {
                'page': self.page.number,
                'limit': limit,
                'total': total,
                'pages': math.ceil(total / limit) if limit else 0,
            },
        })
