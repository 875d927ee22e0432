"""
Chunked upload sessions for publishing workbooks and data sources.

Publishing a file takes three kinds of request::

    POST fileUploads                      -> upload session id
    PUT  fileUploads/<id>   (repeated)    one multipart chunk per request
    POST workbooks|datasources?uploadSessionId=<id>&...Type=...&overwrite=true

The session is a small state machine::

    IDLE -> INITIATED -> APPENDING -> FINALIZED
                     any state -> FAILED

A network failure in any phase moves the session to FAILED and is raised
as UploadProtocolError carrying the phase and the session id. Nothing is
retried automatically; an abandoned session expires on the server.
"""

import logging
import os
import time
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Tuple

from urllib3 import encode_multipart_formdata

from converters.xml_records import (
    build_publish_request,
    parse_published_item,
    parse_upload_session_id,
)
from models import ContentKind
from server_client import ServerClient, ServerRequestError
from server_urls import UPLOAD_FILE_CHUNK_SIZE

logger = logging.getLogger('tableau_site_migrator.importers.upload')

FILE_TYPES = {
    ContentKind.WORKBOOK: ('twb', 'twbx'),
    ContentKind.DATASOURCE: ('tds', 'tdsx'),
}


class UploadState(Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    APPENDING = "appending"
    FINALIZED = "finalized"
    FAILED = "failed"


class UploadProtocolError(Exception):
    """A request of the upload protocol failed."""

    def __init__(self, phase: str, session_id: Optional[str], reason: str):
        self.phase = phase
        self.session_id = session_id
        super().__init__(f"Upload {phase} failed (upload session {session_id or 'none'}): {reason}")


class ChunkTooLargeError(ValueError):
    """A chunk is larger than the configured maximum; nothing was sent."""

    def __init__(self, chunk_size: int, max_chunk_size: int):
        self.chunk_size = chunk_size
        self.max_chunk_size = max_chunk_size
        super().__init__(f"Chunk of {chunk_size} bytes exceeds maximum of {max_chunk_size} bytes")


class UploadStateError(RuntimeError):
    """An operation was called in a state that does not allow it."""

    def __init__(self, operation: str, state: UploadState, detail: str = ''):
        self.operation = operation
        self.state = state
        message = f"Cannot {operation} while upload is {state.value}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


def _multipart_mixed(parts: Iterable[Tuple[str, Tuple[str, object, str]]]) -> Tuple[bytes, str]:
    """Encode parts as ``multipart/mixed``, the form the publish endpoints expect."""
    body, content_type = encode_multipart_formdata(list(parts))
    return body, content_type.replace('multipart/form-data', 'multipart/mixed')


class ChunkedUploadSession:
    """Drives one file through initiate, append and finalize."""

    def __init__(
        self,
        client: ServerClient,
        total_bytes: int,
        max_chunk_size: int = UPLOAD_FILE_CHUNK_SIZE,
        chunk_delay: float = 0.0,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize an idle upload session.

        Args:
            client: Signed-in server client
            total_bytes: Size of the source file
            max_chunk_size: Largest chunk the server accepts
            chunk_delay: Seconds to wait between chunks (throttling)
            logger: Optional logger instance
        """
        if max_chunk_size <= 0:
            raise ValueError("max_chunk_size must be positive")
        self.client = client
        self.total_bytes = total_bytes
        self.max_chunk_size = max_chunk_size
        self.chunk_delay = chunk_delay
        self.logger = logger or logging.getLogger('tableau_site_migrator.importers.upload')

        self.state = UploadState.IDLE
        self.session_id: Optional[str] = None
        self.bytes_sent = 0
        self.chunks_sent = 0

    @property
    def is_complete(self) -> bool:
        return self.bytes_sent == self.total_bytes

    def initiate(self) -> str:
        """
        Ask the server for an upload session.

        Returns:
            Server assigned upload session id

        Raises:
            UploadStateError: If the session is not idle
            UploadProtocolError: If the request fails
        """
        self._require_state('initiate', UploadState.IDLE)
        url = self.client.urls.build('upload-initiate', SiteId=self.client.site_id)

        try:
            document = self.client.post_xml(url)
        except ServerRequestError as e:
            raise self._fail('initiate', str(e)) from e

        session_id = parse_upload_session_id(document)
        if not session_id:
            raise self._fail('initiate', "response contained no upload session id")

        self.session_id = session_id
        self.state = UploadState.INITIATED
        self.logger.debug(f"Upload session {session_id} initiated for {self.total_bytes} bytes")
        return session_id

    def append_chunk(self, data: bytes) -> int:
        """
        Send one chunk of the file.

        Args:
            data: Next slice of the file, at most ``max_chunk_size`` bytes

        Returns:
            Bytes sent so far

        Raises:
            ChunkTooLargeError: Before any request if the chunk is too big
            UploadStateError: If the session is not initiated or the chunk overruns the file
            UploadProtocolError: If the request fails
        """
        if len(data) > self.max_chunk_size:
            raise ChunkTooLargeError(len(data), self.max_chunk_size)
        self._require_state('append', UploadState.INITIATED, UploadState.APPENDING)
        if not data:
            raise UploadStateError('append', self.state, "empty chunk")
        if self.bytes_sent + len(data) > self.total_bytes:
            raise UploadStateError(
                'append', self.state,
                f"{self.bytes_sent + len(data)} bytes would exceed file size {self.total_bytes}"
            )

        url = self.client.urls.build(
            'upload-append', SiteId=self.client.site_id, UploadSession=self.session_id
        )
        body, content_type = _multipart_mixed([
            ('request_payload', ('', '', 'text/xml')),
            ('tableau_file', ('file', data, 'application/octet-stream')),
        ])

        try:
            self.client.send_multipart('PUT', url, body, content_type)
        except ServerRequestError as e:
            raise self._fail('append', str(e)) from e

        self.bytes_sent += len(data)
        self.chunks_sent += 1
        self.state = UploadState.APPENDING

        if self.chunk_delay > 0 and not self.is_complete:
            time.sleep(self.chunk_delay)

        return self.bytes_sent

    def finalize(
        self,
        content_kind: ContentKind,
        file_type: str,
        name: str,
        project_id: str,
        overwrite: bool = True,
        show_tabs: Optional[bool] = None
    ) -> Tuple[Optional[str], Optional[str]]:
        """
        Publish the uploaded bytes as a workbook or data source.

        Args:
            content_kind: Workbook or data source
            file_type: ``twb``, ``twbx``, ``tds`` or ``tdsx``
            name: Name to publish under
            project_id: Target project
            overwrite: Replace existing content of the same name
            show_tabs: Workbook tab setting, None to leave the server default

        Returns:
            (id, name) of the published item as reported by the server

        Raises:
            UploadStateError: Before every byte was appended, or twice
            UploadProtocolError: If the request fails
        """
        self._require_state('finalize', UploadState.INITIATED, UploadState.APPENDING)
        if not self.is_complete:
            raise UploadStateError(
                'finalize', self.state,
                f"only {self.bytes_sent} of {self.total_bytes} bytes sent"
            )
        if file_type not in FILE_TYPES[content_kind]:
            raise ValueError(f"File type '{file_type}' is not valid for {content_kind.value}")

        type_value = {'WorkbookType' if content_kind is ContentKind.WORKBOOK else 'DatasourceType': file_type}
        url = self.client.urls.build(
            f'{content_kind.value}-finalize',
            SiteId=self.client.site_id,
            UploadSession=self.session_id,
            Overwrite='true' if overwrite else 'false',
            **type_value
        )
        payload = build_publish_request(content_kind.value, name, project_id, show_tabs)
        body, content_type = _multipart_mixed([
            ('request_payload', ('', payload, 'text/xml')),
        ])

        try:
            document = self.client.send_multipart('POST', url, body, content_type)
        except ServerRequestError as e:
            self.logger.error(
                f"Finalize failed, upload session {self.session_id} left orphaned on the server"
            )
            raise self._fail('finalize', str(e)) from e

        self.state = UploadState.FINALIZED
        return parse_published_item(document, content_kind.value)

    def _require_state(self, operation: str, *allowed: UploadState) -> None:
        if self.state not in allowed:
            raise UploadStateError(operation, self.state)

    def _fail(self, phase: str, reason: str) -> UploadProtocolError:
        self.state = UploadState.FAILED
        return UploadProtocolError(phase, self.session_id, reason)


def iter_file_chunks(path: Path, chunk_size: int):
    """Yield successive slices of a file, each at most ``chunk_size`` bytes."""
    with open(path, 'rb') as f:
        while True:
            data = f.read(chunk_size)
            if not data:
                break
            yield data


def publish_file(
    client: ServerClient,
    path: Path,
    content_kind: ContentKind,
    name: str,
    project_id: str,
    chunk_size: int = UPLOAD_FILE_CHUNK_SIZE,
    chunk_delay: float = 0.0,
    show_tabs: Optional[bool] = None
) -> Tuple[Optional[str], Optional[str]]:
    """
    Upload a local file in chunks and publish it.

    Returns:
        (id, name) of the published item

    Raises:
        UploadProtocolError: If any request of the protocol fails
    """
    path = Path(path)
    file_type = path.suffix.lstrip('.').lower()
    session = ChunkedUploadSession(
        client,
        total_bytes=os.path.getsize(path),
        max_chunk_size=chunk_size,
        chunk_delay=chunk_delay
    )
    session.initiate()
    for data in iter_file_chunks(path, chunk_size):
        session.append_chunk(data)
    logger.debug(f"Sent {session.chunks_sent} chunk(s) for {path.name}")
    return session.finalize(content_kind, file_type, name, project_id, show_tabs=show_tabs)


__all__ = [
    'FILE_TYPES',
    'ChunkTooLargeError',
    'ChunkedUploadSession',
    'UploadProtocolError',
    'UploadState',
    'UploadStateError',
    'iter_file_chunks',
    'publish_file'
]
