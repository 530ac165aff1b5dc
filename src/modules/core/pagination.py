"""Page-number pagination shared by the catalog endpoints."""

from __future__ import annotations

from rest_framework.pagination import PageNumberPagination


class StandardResultsSetPagination(PageNumberPagination):
    """``?page=N&page_size=M`` with ``page_size`` capped at 100."""

    page_size = 20
    page_size_query_param = "page_size"
    max_page_size = 100
