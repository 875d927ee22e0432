"""Best-effort removal of the export tag from content on the server."""

import logging
import threading
from typing import Iterable, Optional

from logger import TaskStatusLogs
from models import ContentItem, ContentKind
from server_client import NotSignedInError, ServerClient, ServerRequestError
from server_urls import TemplateIncompleteError


class TagMutationError(Exception):
    """Deleting a tag from one content item failed."""

    def __init__(self, item: ContentItem, tag: str, reason: str):
        self.item_id = item.id
        self.item_name = item.name
        self.tag = tag
        super().__init__(
            f"Failed to remove tag '{tag}' from {item.kind.value} '{item.name}' ({item.id}): {reason}"
        )


class TagRemover:
    """Removes a tag from workbooks and data sources, one request per item."""

    def __init__(
        self,
        client: ServerClient,
        status_log: TaskStatusLogs,
        abort_event: Optional[threading.Event] = None,
        logger: Optional[logging.Logger] = None
    ):
        self.client = client
        self.status_log = status_log
        self.abort_event = abort_event
        self.logger = logger or logging.getLogger('tableau_site_migrator.exporters.tags')

    def remove_tag(self, item: ContentItem, tag: str) -> None:
        """
        Delete a tag from one item and drop it from the local tag set.

        Raises:
            TagMutationError: If the server request fails
        """
        try:
            if item.kind is ContentKind.WORKBOOK:
                url = self.client.urls.build(
                    'workbook-tag-delete', SiteId=self.client.site_id, WorkbookId=item.id, TagText=tag
                )
            else:
                url = self.client.urls.build(
                    'datasource-tag-delete', SiteId=self.client.site_id, DatasourceId=item.id, TagText=tag
                )
            self.client.delete(url)
        except (ServerRequestError, TemplateIncompleteError, NotSignedInError) as e:
            raise TagMutationError(item, tag, str(e)) from e

        item.remove_tag(tag)
        self.status_log.add_status(f"Removed tag '{tag}' from {item.kind.value} '{item.name}'", -1)

    def remove_tag_from_items(self, items: Iterable[ContentItem], tag: str) -> int:
        """
        Remove a tag from every item, continuing past failures.

        Returns:
            Number of items the tag was removed from
        """
        removed = 0
        for item in items:
            if self.abort_event is not None and self.abort_event.is_set():
                self.status_log.add_status("Abort requested, stopping tag removal")
                break
            try:
                self.remove_tag(item, tag)
                removed += 1
            except TagMutationError as e:
                self.status_log.add_error(str(e))
        return removed


__all__ = ['TagMutationError', 'TagRemover']
