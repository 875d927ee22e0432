"""Import package for publishing local content to a site.

Package Structure:
- upload_session: Chunked upload state machine (initiate, append, finalize)
- project_resolver: Maps project directory names to site projects
- reference_remapper: Rewrites workbook data source references for the target site
- manual_actions: Tracks follow-up steps that need a person
- content_importer: Walks the source tree and uploads each file

Configuration Referenced:
- import.*: Source directory, project creation policy, remapping
- upload.*: Chunk size and inter-chunk delay
"""

from .content_importer import (
    ContentImporter,
    DirectoryValidationError,
    REMAP_WORKSPACE_DIRECTORY,
    SOURCE_DIRECTORIES,
    validate_source_directory,
)
from .manual_actions import ManualActionTracker
from .project_resolver import DEFAULT_PROJECT_NAME, ProjectResolver
from .reference_remapper import WorkbookReferenceRemapper, clear_workspace
from .upload_session import (
    ChunkTooLargeError,
    ChunkedUploadSession,
    UploadProtocolError,
    UploadState,
    UploadStateError,
    publish_file,
)

__all__ = [
    'ChunkTooLargeError',
    'ChunkedUploadSession',
    'ContentImporter',
    'DEFAULT_PROJECT_NAME',
    'DirectoryValidationError',
    'ManualActionTracker',
    'ProjectResolver',
    'REMAP_WORKSPACE_DIRECTORY',
    'SOURCE_DIRECTORIES',
    'UploadProtocolError',
    'UploadState',
    'UploadStateError',
    'WorkbookReferenceRemapper',
    'clear_workspace',
    'publish_file',
    'validate_source_directory'
]
