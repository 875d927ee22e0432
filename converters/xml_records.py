"""
XML record decoding and request payloads for the site REST API.

Responses share one namespaced schema (``http://tableau.com/api``). The
``xml`` feature of BeautifulSoup (backed by lxml) matches elements by local
name so callers never deal with the namespace directly.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple, Union
from xml.sax.saxutils import quoteattr

from bs4 import BeautifulSoup, Tag

from models import (
    Connection,
    Datasource,
    Group,
    Project,
    SiteInfo,
    User,
    Workbook,
)

logger = logging.getLogger('tableau_site_migrator.converters.xml_records')

XML_FEATURES = 'xml'


class RecordParseError(Exception):
    """A single XML record could not be decoded."""

    def __init__(self, record_type: str, message: str, raw: str = ''):
        self.record_type = record_type
        self.raw = raw
        super().__init__(f"Cannot parse {record_type}: {message}")


@dataclass(frozen=True)
class PaginationSummary:
    """Contents of a response's ``pagination`` element."""

    page_number: int
    page_size: int
    total_available: int

    def total_pages(self, fallback_page_size: int) -> int:
        """Number of pages needed for ``total_available`` items, at least 1."""
        page_size = self.page_size if self.page_size > 0 else fallback_page_size
        if page_size <= 0 or self.total_available <= 0:
            return 1
        return -(-self.total_available // page_size)


def parse_document(payload: Union[str, bytes]) -> BeautifulSoup:
    """Parse a response body into a soup using the XML parser."""
    return BeautifulSoup(payload, XML_FEATURES)


def find_error(document: BeautifulSoup) -> Optional[str]:
    """
    Extract the server's error description, if the document carries one.

    Returns:
        ``"<code>: <summary> - <detail>"`` or None
    """
    error = document.find('error')
    if error is None:
        return None
    summary = error.find('summary')
    detail = error.find('detail')
    parts = [error.get('code', '')]
    if summary is not None:
        parts.append(summary.get_text(strip=True))
    text = ": ".join(p for p in parts if p)
    if detail is not None and detail.get_text(strip=True):
        text += " - " + detail.get_text(strip=True)
    return text or "unknown server error"


def parse_credentials(document: BeautifulSoup) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """
    Read token, site id and user id from a sign-in response.

    Any of the three may be None when the element or attribute is absent.
    """
    credentials = document.find('credentials')
    if credentials is None:
        return None, None, None
    site = credentials.find('site')
    user = credentials.find('user')
    return (
        credentials.get('token') or None,
        site.get('id') if site is not None else None,
        user.get('id') if user is not None else None,
    )


def parse_pagination(document: BeautifulSoup) -> Optional[PaginationSummary]:
    """Read the pagination summary; None if the response has none."""
    node = document.find('pagination')
    if node is None:
        return None
    try:
        return PaginationSummary(
            page_number=int(node.get('pageNumber', 1)),
            page_size=int(node.get('pageSize', 0)),
            total_available=int(node.get('totalAvailable', 0)),
        )
    except (TypeError, ValueError) as e:
        raise RecordParseError('pagination', str(e), str(node))


def _required(node: Tag, attribute: str, record_type: str) -> str:
    value = node.get(attribute)
    if not value:
        raise RecordParseError(record_type, f"missing '{attribute}' attribute", str(node)[:200])
    return value


def _child(node: Tag, name: str) -> Optional[Tag]:
    return node.find(name, recursive=False)


def _tags(node: Tag) -> Tuple[str, ...]:
    tags_node = _child(node, 'tags')
    if tags_node is None:
        return ()
    return tuple(t.get('label') for t in tags_node.find_all('tag') if t.get('label'))


def parse_project(node: Tag) -> Project:
    return Project(
        id=_required(node, 'id', 'project'),
        name=_required(node, 'name', 'project'),
        description=node.get('description', ''),
    )


def parse_user(node: Tag) -> User:
    return User(
        id=_required(node, 'id', 'user'),
        name=_required(node, 'name', 'user'),
        site_role=node.get('siteRole', ''),
        last_login=node.get('lastLogin'),
    )


def parse_group(node: Tag) -> Group:
    return Group(
        id=_required(node, 'id', 'group'),
        name=_required(node, 'name', 'group'),
    )


def parse_connection(node: Tag) -> Connection:
    return Connection(
        id=_required(node, 'id', 'connection'),
        connection_type=node.get('type', ''),
        server_address=node.get('serverAddress', ''),
        server_port=node.get('serverPort', ''),
        user_name=node.get('userName', ''),
    )


def parse_site_info(node: Tag) -> SiteInfo:
    return SiteInfo(
        id=_required(node, 'id', 'site'),
        name=node.get('name', ''),
        content_url=node.get('contentUrl', ''),
        admin_mode=node.get('adminMode', ''),
        state=node.get('state', ''),
    )


def _content_fields(node: Tag, record_type: str) -> dict:
    project = _child(node, 'project')
    owner = _child(node, 'owner')
    return {
        'id': _required(node, 'id', record_type),
        'name': _required(node, 'name', record_type),
        'project_id': project.get('id', '') if project is not None else '',
        'project_name': project.get('name', '') if project is not None else '',
        'owner_id': owner.get('id', '') if owner is not None else '',
        'content_url': node.get('contentUrl', ''),
        'tags': _tags(node),
    }


def parse_workbook(node: Tag) -> Workbook:
    fields = _content_fields(node, 'workbook')
    return Workbook(show_tabs=node.get('showTabs', 'false').lower() == 'true', **fields)


def parse_datasource(node: Tag) -> Datasource:
    fields = _content_fields(node, 'datasource')
    return Datasource(datasource_type=node.get('type', ''), **fields)


def parse_upload_session_id(document: BeautifulSoup) -> Optional[str]:
    node = document.find('fileUpload')
    if node is None:
        return None
    return node.get('uploadSessionId') or None


def parse_published_item(document: BeautifulSoup, element: str) -> Tuple[Optional[str], Optional[str]]:
    """Read (id, name) of the workbook or datasource a publish call returned."""
    node = document.find(element)
    if node is None:
        return None, None
    return node.get('id'), node.get('name')


def iter_records(document: BeautifulSoup, element: str) -> List[Tag]:
    """All elements with the given local name, in document order."""
    return document.find_all(element)


# Request payloads


def build_signin_request(username: str, password: str, site_segment: str) -> str:
    return (
        "<tsRequest>"
        f"<credentials name={quoteattr(username)} password={quoteattr(password)}>"
        f"<site contentUrl={quoteattr(site_segment)} />"
        "</credentials>"
        "</tsRequest>"
    )


def build_create_project_request(name: str, description: str = '') -> str:
    return (
        "<tsRequest>"
        f"<project name={quoteattr(name)} description={quoteattr(description)} />"
        "</tsRequest>"
    )


def build_publish_request(element: str, name: str, project_id: str, show_tabs: Optional[bool] = None) -> str:
    """Payload for the finalize step of a chunked publish."""
    attributes = f"name={quoteattr(name)}"
    if show_tabs is not None:
        attributes += f" showTabs={quoteattr('true' if show_tabs else 'false')}"
    return (
        "<tsRequest>"
        f"<{element} {attributes}>"
        f"<project id={quoteattr(project_id)} />"
        f"</{element}>"
        "</tsRequest>"
    )
