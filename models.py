"""Data models for Tableau site migration."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, List, Optional, Tuple


class TaskCommand(Enum):
    """Top-level task a migration run performs."""
    INVENTORY = "inventory"
    EXPORT = "export"
    IMPORT = "import"


class ContentKind(Enum):
    """Kinds of publishable content on a site."""
    WORKBOOK = "workbook"
    DATASOURCE = "datasource"

    @property
    def collection(self) -> str:
        """REST collection segment, e.g. ``workbooks``."""
        return self.value + "s"


@dataclass(frozen=True)
class Connection:
    """Embedded connection of a workbook or data source."""

    id: str
    connection_type: str
    server_address: str = ''
    server_port: str = ''
    user_name: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'type': self.connection_type,
            'server_address': self.server_address,
            'server_port': self.server_port,
            'user_name': self.user_name
        }


@dataclass
class Project:
    """Represents a project on the site."""

    id: str
    name: str
    description: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'description': self.description}


@dataclass
class User:
    """Represents a site user."""

    id: str
    name: str
    site_role: str = ''
    last_login: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'site_role': self.site_role,
            'last_login': self.last_login
        }


@dataclass
class Group:
    """Represents a group together with the users downloaded for it."""

    id: str
    name: str
    users: List[User] = field(default_factory=list)

    def add_users(self, users: Iterable[User]) -> None:
        """Append members fetched from the group-members collection."""
        self.users.extend(users)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'users': [user.to_dict() for user in self.users]
        }


@dataclass
class SiteInfo:
    """Information about the signed-in site."""

    id: str
    name: str
    content_url: str = ''
    admin_mode: str = ''
    state: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'content_url': self.content_url,
            'admin_mode': self.admin_mode,
            'state': self.state
        }


@dataclass
class ContentItem:
    """
    Common shape of workbooks and data sources.

    Identity fields are fixed once decoded. Only two enrichments happen
    afterwards: connections are attached by the orchestration layer and tags
    are removed by the tag remover after a successful export.
    """

    kind: ClassVar[ContentKind]

    id: str
    name: str
    project_id: str = ''
    project_name: str = ''
    owner_id: str = ''
    content_url: str = ''
    tags: Tuple[str, ...] = ()
    _connections: Optional[Tuple[Connection, ...]] = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Keep first occurrence order, drop duplicates
        self.tags = tuple(dict.fromkeys(self.tags))

    @property
    def connections(self) -> Optional[Tuple[Connection, ...]]:
        """Connections, or None if they have not been downloaded."""
        return self._connections

    def attach_connections(self, connections: Iterable[Connection]) -> None:
        self._connections = tuple(connections)

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def remove_tag(self, tag: str) -> None:
        self.tags = tuple(t for t in self.tags if t != tag)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize content item to dictionary."""
        data = {
            'kind': self.kind.value,
            'id': self.id,
            'name': self.name,
            'project_id': self.project_id,
            'project_name': self.project_name,
            'owner_id': self.owner_id,
            'content_url': self.content_url,
            'tags': list(self.tags),
        }
        if self._connections is not None:
            data['connections'] = [c.to_dict() for c in self._connections]
        return data


@dataclass
class Workbook(ContentItem):
    """A workbook on the site."""

    kind: ClassVar[ContentKind] = ContentKind.WORKBOOK

    show_tabs: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['show_tabs'] = self.show_tabs
        return data


@dataclass
class Datasource(ContentItem):
    """A published data source on the site."""

    kind: ClassVar[ContentKind] = ContentKind.DATASOURCE

    datasource_type: str = ''

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data['datasource_type'] = self.datasource_type
        return data


@dataclass
class FilterCriteria:
    """Which content an export should include."""

    project_id: Optional[str] = None
    tag: Optional[str] = None
    delete_tag_after_match: bool = False

    @classmethod
    def from_config(cls, config: Dict[str, Any], project_id: Optional[str] = None) -> 'FilterCriteria':
        """
        Build export criteria from the ``export`` config section.

        The project filter is configured by name, so the caller resolves it
        against the site's projects and passes the id in.
        """
        export = config.get('export') or {}
        return cls(
            project_id=project_id or None,
            tag=export.get('tag') or None,
            delete_tag_after_match=bool(export.get('remove_tag_after_export', False))
        )

    @property
    def has_tag(self) -> bool:
        return bool(self.tag)


@dataclass(frozen=True)
class UploadBehaviorProjects:
    """What to do when an uploaded file names a project the site lacks."""

    attempt_create: bool = True
    use_default_if_missing: bool = True


@dataclass(frozen=True)
class ManualAction:
    """A follow-up step a person has to carry out after the run."""

    content_kind: str
    name: str
    project_name: str
    action: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'content_kind': self.content_kind,
            'name': self.name,
            'project_name': self.project_name,
            'action': self.action
        }


__all__ = [
    'TaskCommand',
    'ContentKind',
    'Connection',
    'Project',
    'User',
    'Group',
    'SiteInfo',
    'ContentItem',
    'Workbook',
    'Datasource',
    'FilterCriteria',
    'UploadBehaviorProjects',
    'ManualAction'
]
