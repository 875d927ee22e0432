"""
Content importer for publishing local files to a site.

Expected source layout::

    <source>/datasources/<Project name>/<name>.tds|.tdsx
    <source>/workbooks/<Project name>/<name>.twb|.twbx

Files placed directly in ``datasources/`` or ``workbooks/`` go to the
default project. Files are uploaded one at a time; a failed file is logged
and the importer moves on to the next.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from logger import ProgressTracker, TaskStatusLogs
from models import ContentKind
from server_client import NotSignedInError, ServerClient
from server_urls import UPLOAD_FILE_CHUNK_SIZE, TemplateIncompleteError
from .manual_actions import ManualActionTracker
from .project_resolver import ProjectResolver
from .reference_remapper import WorkbookReferenceRemapper
from .upload_session import (
    FILE_TYPES,
    UploadProtocolError,
    UploadStateError,
    publish_file,
)

SOURCE_DIRECTORIES = {
    ContentKind.DATASOURCE: 'datasources',
    ContentKind.WORKBOOK: 'workbooks',
}
REMAP_WORKSPACE_DIRECTORY = '_remapTempspace'


class DirectoryValidationError(Exception):
    """The import source directory does not have the expected layout."""

    def __init__(self, path: Path, reason: str):
        self.path = Path(path) if path else None
        super().__init__(f"Invalid import source '{path}': {reason}")


def validate_source_directory(
    source_dir: Path,
    kinds: List[ContentKind]
) -> Dict[ContentKind, Optional[Path]]:
    """
    Check the import source before anything is sent to the server.

    Args:
        source_dir: Import root directory
        kinds: Content kinds the task wants to upload

    Returns:
        Directory per requested kind, None where the sub-directory is missing

    Raises:
        DirectoryValidationError: If the root is missing or none of the
            requested sub-directories exist
    """
    if not source_dir or not Path(source_dir).is_dir():
        raise DirectoryValidationError(source_dir, "directory does not exist")

    found: Dict[ContentKind, Optional[Path]] = {}
    for kind in kinds:
        candidate = Path(source_dir) / SOURCE_DIRECTORIES[kind]
        found[kind] = candidate if candidate.is_dir() else None

    if kinds and not any(found.values()):
        expected = ", ".join(SOURCE_DIRECTORIES[k] for k in kinds)
        raise DirectoryValidationError(source_dir, f"expected sub-directories: {expected}")

    return found


class ContentImporter:
    """Uploads data source and workbook files from a local directory tree."""

    def __init__(
        self,
        client: ServerClient,
        resolver: ProjectResolver,
        status_log: TaskStatusLogs,
        manual_actions: ManualActionTracker,
        chunk_size: int = UPLOAD_FILE_CHUNK_SIZE,
        chunk_delay: float = 0.0,
        remapper: Optional[WorkbookReferenceRemapper] = None,
        abort_event: Optional[threading.Event] = None,
        show_progress: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the importer.

        Args:
            client: Signed-in server client
            resolver: Maps project directory names to site projects
            status_log: Task status/error log
            manual_actions: Receives follow-up steps
            chunk_size: Upload chunk size in bytes
            chunk_delay: Seconds to wait between chunks
            remapper: Rewrites workbook references when remapping is requested
            abort_event: Checked before each file; set to stop early
            show_progress: Show a tqdm progress bar
            logger: Optional logger instance
        """
        self.client = client
        self.resolver = resolver
        self.status_log = status_log
        self.manual_actions = manual_actions
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self.remapper = remapper
        self.abort_event = abort_event
        self.show_progress = show_progress
        self.logger = logger or logging.getLogger('tableau_site_migrator.importers.content')
        self.stats: Dict[str, Any] = {
            'uploaded': 0,
            'skipped': 0,
            'failed': 0,
            'errors': []
        }

    def upload_datasources(self, directory: Path) -> int:
        """Upload every data source file below ``directory``; returns the upload count."""
        return self._upload_directory(Path(directory), ContentKind.DATASOURCE, remap=False)

    def upload_workbooks(self, directory: Path, remap: bool = False) -> int:
        """Upload every workbook file below ``directory``; returns the upload count."""
        return self._upload_directory(Path(directory), ContentKind.WORKBOOK, remap=remap)

    def collect_files(self, directory: Path, kind: ContentKind) -> List[Tuple[Path, str]]:
        """
        Find uploadable files and the project each one belongs to.

        Returns:
            (path, project name) pairs sorted by project then file name;
            the project name is empty for files at the top level
        """
        extensions = {'.' + ext for ext in FILE_TYPES[kind]}
        found: List[Tuple[Path, str]] = []

        for path in sorted(directory.rglob('*')):
            if not path.is_file():
                continue
            relative = path.relative_to(directory)
            if relative.parts[0] == REMAP_WORKSPACE_DIRECTORY:
                continue
            if path.suffix.lower() not in extensions:
                self.status_log.add_status(f"Skipping file with unexpected extension: {relative}", -1)
                continue
            project_name = relative.parts[0] if len(relative.parts) > 1 else ''
            found.append((path, project_name))

        return found

    def _upload_directory(self, directory: Path, kind: ContentKind, remap: bool) -> int:
        files = self.collect_files(directory, kind)
        label = kind.collection
        self.status_log.add_status(f"Found {len(files)} {label} to upload in {directory}")
        workspace = directory / REMAP_WORKSPACE_DIRECTORY

        uploaded = 0
        with ProgressTracker(len(files), f"{label} upload", self.show_progress) as progress:
            for path, project_name in files:
                if self.abort_event is not None and self.abort_event.is_set():
                    self.status_log.add_status(f"Aborting {label} upload")
                    break

                success = self._upload_file(path, project_name, kind, remap, workspace)
                progress.increment(success=success)
                if success:
                    uploaded += 1

        return uploaded

    def _upload_file(
        self,
        path: Path,
        project_name: str,
        kind: ContentKind,
        remap: bool,
        workspace: Path
    ) -> bool:
        name = path.stem
        project = self.resolver.resolve(project_name, kind, name)
        if project is None:
            self.stats['skipped'] += 1
            self.status_log.add_error(
                f"Skipping {kind.value} '{name}': no target project for '{project_name or 'default'}'"
            )
            return False

        upload_path = path
        try:
            if remap and self.remapper is not None:
                upload_path = self.remapper.remap(path, workspace)

            self.status_log.add_status(
                f"Uploading {kind.value} '{name}' to project '{project.name}' "
                f"({upload_path.stat().st_size} bytes)"
            )
            published_id, _ = publish_file(
                self.client,
                upload_path,
                kind,
                name,
                project.id,
                chunk_size=self.chunk_size,
                chunk_delay=self.chunk_delay
            )
        except (
            UploadProtocolError,
            UploadStateError,
            TemplateIncompleteError,
            NotSignedInError,
            OSError,
            ValueError
        ) as e:
            message = f"{kind.value} '{name}' upload failed: {e}"
            self.stats['failed'] += 1
            self.stats['errors'].append(message)
            self.status_log.add_error(message)
            return False
        finally:
            if upload_path != path and upload_path.exists():
                upload_path.unlink()

        self.stats['uploaded'] += 1
        self.status_log.add_status(f"Upload succeeded: {kind.value} '{name}' ({published_id})")
        return True


__all__ = [
    'ContentImporter',
    'DirectoryValidationError',
    'REMAP_WORKSPACE_DIRECTORY',
    'SOURCE_DIRECTORIES',
    'validate_source_directory'
]
