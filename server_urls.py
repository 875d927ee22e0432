"""
Endpoint builder for the site REST API.

Every endpoint is a named template with ``{{iwsName}}`` placeholders that
are filled in per request. A template that still holds a placeholder after
substitution is a programming error and is reported as
TemplateIncompleteError instead of being sent to the server.
"""

import logging
from enum import Enum
from typing import Dict, Optional
from urllib.parse import quote

API_VERSION = "2.0"
DEFAULT_PAGE_SIZE = 1000
UPLOAD_FILE_CHUNK_SIZE = 8000000  # 8MB

PLACEHOLDER_MARKER = "{{iws"

TEMPLATES: Dict[str, str] = {
    'signin': "/api/{version}/auth/signin",
    'signout': "/api/{version}/auth/signout",
    'workbooks-list': "/api/{version}/sites/{{iwsSiteId}}/users/{{iwsUserId}}/workbooks?pageSize={{iwsPageSize}}&pageNumber={{iwsPageNumber}}",
    'workbook-connections': "/api/{version}/sites/{{iwsSiteId}}/workbooks/{{iwsWorkbookId}}/connections",
    'datasource-connections': "/api/{version}/sites/{{iwsSiteId}}/datasources/{{iwsDatasourceId}}/connections",
    'datasources-list': "/api/{version}/sites/{{iwsSiteId}}/datasources?pageSize={{iwsPageSize}}&pageNumber={{iwsPageNumber}}",
    'projects-list': "/api/{version}/sites/{{iwsSiteId}}/projects?pageSize={{iwsPageSize}}&pageNumber={{iwsPageNumber}}",
    'groups-list': "/api/{version}/sites/{{iwsSiteId}}/groups?pageSize={{iwsPageSize}}&pageNumber={{iwsPageNumber}}",
    'users-list': "/api/{version}/sites/{{iwsSiteId}}/users?pageSize={{iwsPageSize}}&pageNumber={{iwsPageNumber}}",
    'group-members': "/api/{version}/sites/{{iwsSiteId}}/groups/{{iwsGroupId}}/users?pageSize={{iwsPageSize}}&pageNumber={{iwsPageNumber}}",
    'datasource-download': "/api/{version}/sites/{{iwsSiteId}}/datasources/{{iwsRepositoryId}}/content",
    'workbook-download': "/api/{version}/sites/{{iwsSiteId}}/workbooks/{{iwsRepositoryId}}/content",
    'site-info': "/api/{version}/sites/{{iwsSiteId}}",
    'upload-initiate': "/api/{version}/sites/{{iwsSiteId}}/fileUploads",
    'upload-append': "/api/{version}/sites/{{iwsSiteId}}/fileUploads/{{iwsUploadSession}}",
    'datasource-finalize': "/api/{version}/sites/{{iwsSiteId}}/datasources?uploadSessionId={{iwsUploadSession}}&datasourceType={{iwsDatasourceType}}&overwrite={{iwsOverwrite}}",
    'workbook-finalize': "/api/{version}/sites/{{iwsSiteId}}/workbooks?uploadSessionId={{iwsUploadSession}}&workbookType={{iwsWorkbookType}}&overwrite={{iwsOverwrite}}",
    'project-create': "/api/{version}/sites/{{iwsSiteId}}/projects",
    'workbook-tag-delete': "/api/{version}/sites/{{iwsSiteId}}/workbooks/{{iwsWorkbookId}}/tags/{{iwsTagText}}",
    'datasource-tag-delete': "/api/{version}/sites/{{iwsSiteId}}/datasources/{{iwsDatasourceId}}/tags/{{iwsTagText}}",
}


class TemplateIncompleteError(Exception):
    """A URL template still contains a placeholder after substitution."""

    def __init__(self, template_key: str, url: str):
        self.template_key = template_key
        self.url = url
        super().__init__(f"Template '{template_key}' not fully substituted: {url}")


class UnrecognizedUrlFormatError(ValueError):
    """A content URL does not match any known site URL shape."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"Unrecognized content URL '{url}': {reason}")


class ServerFlavor(Enum):
    """Server generation inferred from the content URL shape."""
    SERVER8 = "server8"  # /t/<site>/...
    SERVER9 = "server9"  # /#/site/<site>/... or /#/...


class ServerUrls:
    """Builds concrete request URLs for one server and site."""

    def __init__(
        self,
        protocol: str,
        server_name: str,
        site_segment: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        server_flavor: ServerFlavor = ServerFlavor.SERVER9,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the endpoint builder.

        Args:
            protocol: Scheme including separator, e.g. ``https://``
            server_name: Host (and optional port)
            site_segment: Site content URL; empty string for the default site
            page_size: Page size used by list endpoints
            server_flavor: Server generation the URL shape pointed to
            logger: Optional logger instance
        """
        if not protocol.endswith("://"):
            protocol = protocol + "://"
        self.protocol = protocol.lower()
        self.server_name = server_name
        self.site_segment = site_segment
        self.page_size = page_size
        self.server_flavor = server_flavor
        self.logger = logger or logging.getLogger('tableau_site_migrator.urls')

    @property
    def server_url(self) -> str:
        """Server URL including the protocol, e.g. ``https://host``."""
        return self.protocol + self.server_name

    @property
    def login_url(self) -> str:
        return self.build('signin')

    @classmethod
    def from_content_url(cls, content_url: str, page_size: int = DEFAULT_PAGE_SIZE) -> 'ServerUrls':
        """
        Parse a URL copied from the browser into server and site.

        Recognised shapes::

            https://host/t/<site>/...        legacy site URL
            https://host/#/site/<site>/...   site URL
            https://host/#/...               default site

        Args:
            content_url: URL as entered by the user
            page_size: Page size for list requests

        Returns:
            ServerUrls for that server and site

        Raises:
            UnrecognizedUrlFormatError: If the URL matches none of the shapes
        """
        content_url = (content_url or "").strip()
        protocol_indicator = "://"
        idx_protocol = content_url.find(protocol_indicator)
        if idx_protocol < 1:
            raise UnrecognizedUrlFormatError(content_url, "no protocol found")

        protocol = content_url[:idx_protocol + len(protocol_indicator)]
        url_parts = content_url[len(protocol):].split('/')
        server_name = url_parts[0]
        if not server_name:
            raise UnrecognizedUrlFormatError(content_url, "no server name found")

        def part(index: int) -> str:
            return url_parts[index] if index < len(url_parts) else ""

        if part(1) == "t" and part(2):
            site_segment = part(2)
            flavor = ServerFlavor.SERVER8
        elif part(1) == "#" and part(2) == "site" and part(3):
            site_segment = part(3)
            flavor = ServerFlavor.SERVER9
        elif part(1) == "#":
            site_segment = ""
            flavor = ServerFlavor.SERVER9
        else:
            raise UnrecognizedUrlFormatError(
                content_url, "expected '/t/<site>', '/#/site/<site>' or '/#/'"
            )

        return cls(protocol, server_name, site_segment, page_size, flavor)

    def build(self, template_key: str, **values) -> str:
        """
        Build a URL from a named template.

        Args:
            template_key: Key in TEMPLATES, e.g. ``projects-list``
            **values: Placeholder values keyed by placeholder name without
                the ``iws`` prefix, e.g. ``SiteId='abc'``

        Returns:
            Absolute URL

        Raises:
            ValueError: If the template key is unknown
            TemplateIncompleteError: If a placeholder was left unfilled
        """
        template = TEMPLATES.get(template_key)
        if template is None:
            raise ValueError(f"Unknown URL template: {template_key}")

        working_text = self.server_url + template.replace("{version}", API_VERSION)
        for name, value in values.items():
            working_text = working_text.replace(
                "{{iws" + name + "}}", quote(str(value), safe='')
            )

        if PLACEHOLDER_MARKER in working_text:
            raise TemplateIncompleteError(template_key, working_text)

        return working_text

    def build_custom(self, command: str) -> str:
        """
        Resolve a diagnostic request into an absolute URL.

        Absolute URLs are used as given; anything else is treated as a path
        on this server.
        """
        command = command.strip()
        if "://" in command:
            return command
        return self.server_url + "/" + command.lstrip("/")

    def __repr__(self) -> str:
        return (
            f"ServerUrls(server_url={self.server_url!r}, site_segment={self.site_segment!r}, "
            f"flavor={self.server_flavor.value})"
        )


__all__ = [
    'API_VERSION',
    'DEFAULT_PAGE_SIZE',
    'UPLOAD_FILE_CHUNK_SIZE',
    'TEMPLATES',
    'ServerFlavor',
    'ServerUrls',
    'TemplateIncompleteError',
    'UnrecognizedUrlFormatError'
]
