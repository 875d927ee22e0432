"""Export package for downloading site content to local files.

Package Structure:
- download_manager: Streams content to a temp file, names it from the response content type
- content_exporter: Downloads filtered workbooks and data sources into project directories
- tag_remover: Removes the export tag from content that was exported

Configuration Referenced:
- export.output_directory: Base output path for downloaded files
- export.tag / export.remove_tag_after_export: Tag based export and cleanup
"""

from .download_manager import (
    DATASOURCE_PAYLOAD_TYPES,
    WORKBOOK_PAYLOAD_TYPES,
    DownloadError,
    DownloadManager,
    DownloadPayloadTypes,
    ensure_project_path,
    generate_safe_filename,
)
from .content_exporter import ContentExporter
from .tag_remover import TagMutationError, TagRemover

__all__ = [
    'ContentExporter',
    'DATASOURCE_PAYLOAD_TYPES',
    'DownloadError',
    'DownloadManager',
    'DownloadPayloadTypes',
    'TagMutationError',
    'TagRemover',
    'WORKBOOK_PAYLOAD_TYPES',
    'ensure_project_path',
    'generate_safe_filename'
]
