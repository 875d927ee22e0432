"""Paginated collection retrieval shared by all list downloads."""

import logging
from typing import Callable, List, Optional, TypeVar

from bs4 import Tag

from converters.xml_records import RecordParseError, iter_records, parse_pagination
from logger import TaskStatusLogs
from server_client import ServerClient, ServerRequestError

T = TypeVar('T')


class FetcherError(Exception):
    """Base exception for fetcher-related errors."""
    pass


class PageFetchError(FetcherError):
    """One page of a paginated collection could not be retrieved."""

    def __init__(self, template_key: str, page_number: int, url: str, reason: str):
        self.template_key = template_key
        self.page_number = page_number
        self.url = url
        super().__init__(f"Failed to fetch page {page_number} of {template_key} ({url}): {reason}")


class PaginatedFetcher:
    """
    Walks every page of a listable collection and merges the records.

    Page 1 is requested first; its pagination summary fixes the number of
    pages for the rest of the walk. A failed page is logged and contributes
    nothing, a record that fails to decode is logged and skipped, and the
    walk always continues to the last page. Records keep server order and
    are concatenated in page order without de-duplication.
    """

    def __init__(
        self,
        client: ServerClient,
        status_log: TaskStatusLogs,
        page_size: Optional[int] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the fetcher.

        Args:
            client: Signed-in server client
            status_log: Task status/error log
            page_size: Items per page (defaults to the endpoint builder's size)
            logger: Optional logger instance
        """
        self.client = client
        self.status_log = status_log
        self.page_size = page_size or client.urls.page_size
        self.logger = logger or logging.getLogger('tableau_site_migrator.fetcher')
        self.page_errors: List[PageFetchError] = []
        self.record_errors: List[RecordParseError] = []

    def fetch_all(
        self,
        template_key: str,
        element: str,
        decoder: Callable[[Tag], T],
        **values
    ) -> List[T]:
        """
        Retrieve every record of a collection.

        Args:
            template_key: List endpoint template, e.g. ``projects-list``
            element: Local name of the record elements, e.g. ``project``
            decoder: Pure function turning one element into a model object
            **values: Extra template values (SiteId, UserId, GroupId ...)

        Returns:
            Decoded records in server order
        """
        values.setdefault('SiteId', self.client.site_id)

        records: List[T] = []
        total_pages: Optional[int] = None
        page_number = 1

        while page_number <= (total_pages or 1):
            url = self.client.urls.build(
                template_key,
                PageSize=self.page_size,
                PageNumber=page_number,
                **values
            )
            try:
                document = self.client.get_xml(url)
            except ServerRequestError as e:
                error = PageFetchError(template_key, page_number, url, str(e))
                self.page_errors.append(error)
                self.status_log.add_error(str(error))
                page_number += 1
                continue

            if total_pages is None:
                total_pages = self._total_pages(document, template_key)
                self.logger.debug(f"{template_key}: {total_pages} page(s) of up to {self.page_size}")

            for node in iter_records(document, element):
                try:
                    records.append(decoder(node))
                except (RecordParseError, ValueError) as e:
                    error = e if isinstance(e, RecordParseError) else RecordParseError(element, str(e))
                    self.record_errors.append(error)
                    self.status_log.add_error(f"{template_key} page {page_number}: {error}")

            page_number += 1

        self.logger.debug(f"{template_key}: fetched {len(records)} record(s)")
        return records

    def _total_pages(self, document, template_key: str) -> int:
        try:
            summary = parse_pagination(document)
        except RecordParseError as e:
            self.status_log.add_error(f"{template_key}: {e}; assuming a single page")
            return 1
        if summary is None:
            return 1
        return summary.total_pages(self.page_size)


__all__ = ['FetcherError', 'PageFetchError', 'PaginatedFetcher']
