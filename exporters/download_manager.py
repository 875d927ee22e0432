"""
Download manager for workbook and data source content.

Content is streamed into ``<base>.tmp`` inside the destination directory.
The response's content type decides the final extension (packaged
``twbx``/``tdsx`` versus single-file ``twb``/``tds``), then the temp file is
renamed into place. An existing target is never overwritten.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence

from logger import TaskStatusLogs
from models import Project
from server_client import ServerClient, ServerRequestError

logger = logging.getLogger('tableau_site_migrator.exporters.download')

DOWNLOAD_CHUNK_SIZE = 1024 * 1024

# Applied in order; a name is safe on Windows, macOS and Linux afterwards
UNSAFE_FILENAME_TOKENS = (
    ("\\", "-SLASH-"),
    ("/", "-SLASH-"),
    ("$", "-DOLLAR-"),
    ("*", "STAR"),
    ("?", "-QQQ-"),
    ("%", "-PERCENT-"),
    (":", "-COLON-"),
    ("|", "-PIPE-"),
    ('"', "-QUOTE-"),
    (">", "-GT-"),
    ("<", "-LT-"),
)

PACKAGED_CONTENT_TYPES = frozenset({
    'application/octet-stream',
    'application/zip',
    'application/x-zip-compressed',
})
SINGLE_FILE_CONTENT_TYPES = frozenset({
    'application/xml',
    'text/xml',
})


class DownloadError(Exception):
    """A content download could not be completed."""

    def __init__(self, message: str, url: str = '', item_name: str = ''):
        self.url = url
        self.item_name = item_name
        super().__init__(message)


@dataclass(frozen=True)
class DownloadPayloadTypes:
    """File extensions for the packaged and single-file forms of a content kind."""

    packaged_extension: str
    single_file_extension: str

    def extension_for(self, content_type: Optional[str]) -> str:
        """
        Map a response content type to a file extension (without dot).

        Raises:
            DownloadError: If the content type is missing or not recognised
        """
        mime = (content_type or '').split(';')[0].strip().lower()
        if mime in PACKAGED_CONTENT_TYPES:
            return self.packaged_extension
        if mime in SINGLE_FILE_CONTENT_TYPES:
            return self.single_file_extension
        raise DownloadError(f"Unexpected content type '{content_type}'")


WORKBOOK_PAYLOAD_TYPES = DownloadPayloadTypes("twbx", "twb")
DATASOURCE_PAYLOAD_TYPES = DownloadPayloadTypes("tdsx", "tds")


def generate_safe_filename(name: str) -> str:
    """Replace characters that are not allowed in file names with text tokens."""
    for unsafe, token in UNSAFE_FILENAME_TOKENS:
        name = name.replace(unsafe, token)
    return name


def ensure_project_path(
    base_path: Path,
    projects: Optional[Sequence[Project]],
    project_id: str,
    status_log: Optional[TaskStatusLogs] = None
) -> Path:
    """
    Directory for content of a project, created on demand.

    Without a project list the base path is returned unchanged. If the
    project id is unknown an error is logged and the base path is used.
    """
    if projects is None:
        return base_path

    project = next((p for p in projects if p.id == project_id), None)
    if project is None:
        if status_log is not None:
            status_log.add_error(f"Project not found with id {project_id}")
        return base_path

    project_path = Path(base_path) / generate_safe_filename(project.name)
    project_path.mkdir(parents=True, exist_ok=True)
    return project_path


class DownloadManager:
    """Streams content to disk and names the file from the response type."""

    def __init__(
        self,
        client: ServerClient,
        status_log: TaskStatusLogs,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
        logger: Optional[logging.Logger] = None
    ):
        self.client = client
        self.status_log = status_log
        self.chunk_size = chunk_size
        self.logger = logger or logging.getLogger('tableau_site_migrator.exporters.download')
        self.stats: Dict[str, int] = {
            'downloaded': 0,
            'failed': 0,
            'total_size_bytes': 0
        }

    def download(
        self,
        url: str,
        destination_dir: Path,
        base_filename: str,
        payload_types: DownloadPayloadTypes
    ) -> Path:
        """
        Download one content item.

        Args:
            url: Content URL built from the download template
            destination_dir: Existing or creatable target directory
            base_filename: File name without extension, already collision free
            payload_types: Extension mapping for this content kind

        Returns:
            Path of the downloaded file

        Raises:
            DownloadError: On request failures or unknown content types
            FileExistsError: If the final file already exists
        """
        destination_dir = Path(destination_dir)
        destination_dir.mkdir(parents=True, exist_ok=True)
        temp_path = destination_dir / f"{base_filename}.tmp"

        start_time = time.time()
        self.status_log.add_status(f"Starting download {base_filename}")

        try:
            content_type, size = self._stream_to_file(url, temp_path)
            extension = payload_types.extension_for(content_type)
            final_path = destination_dir / f"{base_filename}.{extension}"

            if final_path.exists():
                raise FileExistsError(f"Download target already exists: {final_path}")
            os.rename(temp_path, final_path)
        except Exception as e:
            elapsed = time.time() - start_time
            self.stats['failed'] += 1
            self.status_log.add_error(
                f"Download failed after {elapsed:.1f}s: {base_filename}, {e}"
            )
            if temp_path.exists():
                temp_path.unlink()
            if isinstance(e, (ServerRequestError, DownloadError)):
                raise DownloadError(str(e), url=url, item_name=base_filename) from e
            raise

        elapsed = time.time() - start_time
        self.stats['downloaded'] += 1
        self.stats['total_size_bytes'] += size
        self.status_log.add_status(
            f"Finished download {final_path.name}, {size} bytes, {elapsed:.1f}s"
        )
        return final_path

    def _stream_to_file(self, url: str, temp_path: Path):
        response = self.client.open_download(url)
        size = 0
        try:
            content_type = response.headers.get('Content-Type')
            with open(temp_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=self.chunk_size):
                    if chunk:
                        f.write(chunk)
                        size += len(chunk)
        finally:
            response.close()
        return content_type, size


__all__ = [
    'DATASOURCE_PAYLOAD_TYPES',
    'WORKBOOK_PAYLOAD_TYPES',
    'DownloadError',
    'DownloadManager',
    'DownloadPayloadTypes',
    'ensure_project_path',
    'generate_safe_filename'
]
