"""Exports workbooks and data sources to the local file system."""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from logger import ProgressTracker, TaskStatusLogs
from models import ContentItem, ContentKind, Project
from server_client import NotSignedInError, ServerClient
from server_urls import TemplateIncompleteError
from .download_manager import (
    DATASOURCE_PAYLOAD_TYPES,
    WORKBOOK_PAYLOAD_TYPES,
    DownloadError,
    DownloadManager,
    ensure_project_path,
    generate_safe_filename,
)

PAYLOAD_TYPES = {
    ContentKind.WORKBOOK: WORKBOOK_PAYLOAD_TYPES,
    ContentKind.DATASOURCE: DATASOURCE_PAYLOAD_TYPES,
}


class ContentExporter:
    """
    Downloads content items one at a time.

    Files land in ``<output>/<workbooks|datasources>/`` and, when a project
    list is supplied, in a sub-directory named after each item's project.
    """

    def __init__(
        self,
        client: ServerClient,
        status_log: TaskStatusLogs,
        output_dir: Path,
        abort_event: Optional[threading.Event] = None,
        show_progress: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the exporter.

        Args:
            client: Signed-in server client
            status_log: Task status/error log
            output_dir: Export root directory
            abort_event: Checked before each item; set to stop early
            show_progress: Show a tqdm progress bar
            logger: Optional logger instance
        """
        self.client = client
        self.status_log = status_log
        self.output_dir = Path(output_dir)
        self.abort_event = abort_event
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger('tableau_site_migrator.exporters.content')
        self.download_manager = DownloadManager(client, status_log)
        self.stats: Dict[str, Any] = {
            'exported': 0,
            'failed': 0,
            'errors': []
        }

    def export_items(
        self,
        items: Sequence[ContentItem],
        projects: Optional[Sequence[Project]] = None
    ) -> List[ContentItem]:
        """
        Download each item, continuing past per-item failures.

        Args:
            items: Items to download, in the order to process them
            projects: Project list for project sub-directories, or None

        Returns:
            Items that were downloaded successfully
        """
        exported: List[ContentItem] = []
        if not items:
            return exported

        label = items[0].kind.collection
        with ProgressTracker(len(items), f"{label} download", self.show_progress) as progress:
            for item in items:
                if self.abort_event is not None and self.abort_event.is_set():
                    self.status_log.add_status(f"Aborting {label} download")
                    break

                try:
                    path = self.export_item(item, projects)
                except (DownloadError, TemplateIncompleteError, NotSignedInError, OSError) as e:
                    message = f"{item.kind.value} '{item.name}' ({item.id}) download failed: {e}"
                    self.stats['failed'] += 1
                    self.stats['errors'].append(message)
                    self.status_log.add_error(message)
                    progress.increment(success=False)
                    continue

                self.stats['exported'] += 1
                exported.append(item)
                progress.increment(success=True)
                self.logger.debug(f"Saved {item.kind.value} '{item.name}' -> {path}")

        return exported

    def export_item(self, item: ContentItem, projects: Optional[Sequence[Project]] = None) -> Path:
        """Download a single item and return the file path."""
        kind_dir = self.output_dir / item.kind.collection
        destination = ensure_project_path(kind_dir, projects, item.project_id, self.status_log)
        base_name = self._choose_base_name(destination, item)

        url = self.client.urls.build(
            f'{item.kind.value}-download',
            SiteId=self.client.site_id,
            RepositoryId=item.id
        )
        return self.download_manager.download(url, destination, base_name, PAYLOAD_TYPES[item.kind])

    @staticmethod
    def _choose_base_name(destination: Path, item: ContentItem) -> str:
        """Safe file name for the item that no existing download uses yet."""
        payload_types = PAYLOAD_TYPES[item.kind]
        extensions = (payload_types.packaged_extension, payload_types.single_file_extension)
        base = generate_safe_filename(item.name)
        candidate = base
        counter = 2
        while any((destination / f"{candidate}.{ext}").exists() for ext in extensions):
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate


__all__ = ['ContentExporter', 'PAYLOAD_TYPES']
