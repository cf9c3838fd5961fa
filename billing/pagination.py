# billing/pagination.py
from __future__ import annotations

from math import ceil

from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response


class BillingPagination(PageNumberPagination):
    """
    Paginación de comprobantes: ?page=<n>&page_size=<m> (máximo 200).
    """

    page_size = 25
    page_size_query_param = "page_size"
    max_page_size = 200

    def get_paginated_response(self, data):
        paginator = self.page.paginator
        page_size = self.get_page_size(self.request) or self.page_size
        return Response(
            {
                "count": paginator.count,
                "total_pages": ceil(paginator.count / page_size) if page_size else 1,
                "current_page": self.page.number,
                "next": self.get_next_link(),
                "previous": self.get_previous_link(),
                "results": data,
            }
        )
