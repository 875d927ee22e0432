"""Fetchers package for retrieving site collections via the REST API."""

from converters.xml_records import RecordParseError

from .base_fetcher import FetcherError, PageFetchError, PaginatedFetcher
from .api_fetcher import ApiFetcher
from .content_filters import apply_filters, filter_by_project, filter_by_tag

__all__ = [
    'ApiFetcher',
    'FetcherError',
    'PageFetchError',
    'PaginatedFetcher',
    'RecordParseError',
    'apply_filters',
    'filter_by_project',
    'filter_by_tag'
]
