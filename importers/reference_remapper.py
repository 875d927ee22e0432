"""
Workbook reference remapping.

Workbooks that use published data sources store the server and site of
those data sources inside the workbook XML. Before uploading to a
different server or site the references are rewritten in a copy of the
file placed in a scratch directory.
"""

import logging
import re
import shutil
import zipfile
from pathlib import Path
from typing import Optional

from bs4 import BeautifulSoup

XML_FEATURES = 'xml'
SITE_PATH_PATTERN = re.compile(r'^/t/[^/]+/')


class WorkbookReferenceRemapper:
    """Points published data source references in workbooks at a new server and site."""

    def __init__(
        self,
        server_name: str,
        site_segment: str,
        protocol: str = 'https://',
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the remapper.

        Args:
            server_name: Target server host
            site_segment: Target site content URL, empty for the default site
            protocol: Target protocol, e.g. ``https://``
            logger: Optional logger instance
        """
        self.server_name = server_name
        self.site_segment = site_segment
        self.channel = 'https' if protocol.lower().startswith('https') else 'http'
        self.logger = logger or logging.getLogger('tableau_site_migrator.importers.remapper')

    def remap(self, path: Path, workspace: Path) -> Path:
        """
        Write a remapped copy of a workbook into ``workspace``.

        Files that are not workbooks are returned unchanged.

        Returns:
            Path of the file to upload
        """
        path = Path(path)
        workspace = Path(workspace)
        suffix = path.suffix.lower()
        if suffix not in ('.twb', '.twbx'):
            return path

        workspace.mkdir(parents=True, exist_ok=True)
        target = workspace / path.name

        if suffix == '.twb':
            target.write_text(self.remap_xml(path.read_text(encoding='utf-8')), encoding='utf-8')
        else:
            self._remap_packaged(path, target)

        self.logger.debug(f"Remapped workbook references: {path} -> {target}")
        return target

    def remap_xml(self, workbook_xml: str) -> str:
        """Rewrite repository locations and sqlproxy connections in workbook XML."""
        soup = BeautifulSoup(workbook_xml, XML_FEATURES)

        for location in soup.find_all('repository-location'):
            if self.site_segment:
                location['site'] = self.site_segment
            elif location.has_attr('site'):
                del location['site']
            if location.get('path'):
                location['path'] = self._remap_site_path(location['path'])

        for connection in soup.find_all('connection'):
            if connection.get('class') != 'sqlproxy':
                continue
            connection['server'] = self.server_name
            connection['channel'] = self.channel
            connection['port'] = '443' if self.channel == 'https' else '80'

        return str(soup)

    def _remap_site_path(self, path: str) -> str:
        replacement = f"/t/{self.site_segment}/" if self.site_segment else "/"
        if SITE_PATH_PATTERN.match(path):
            return SITE_PATH_PATTERN.sub(replacement, path, count=1)
        if self.site_segment and path.startswith('/'):
            return replacement + path.lstrip('/')
        return path

    def _remap_packaged(self, source: Path, target: Path) -> None:
        """
        Copy a packaged workbook, remapping its root ``.twb``.

        Raises:
            ValueError: If ``source`` is not a readable zip archive
        """
        try:
            with zipfile.ZipFile(source) as zin, zipfile.ZipFile(target, 'w', zipfile.ZIP_DEFLATED) as zout:
                for entry in zin.infolist():
                    data = zin.read(entry.filename)
                    is_root_workbook = '/' not in entry.filename and entry.filename.lower().endswith('.twb')
                    if is_root_workbook:
                        data = self.remap_xml(data.decode('utf-8')).encode('utf-8')
                    zout.writestr(entry, data)
        except zipfile.BadZipFile as e:
            target.unlink(missing_ok=True)
            raise ValueError(f"{source.name} is not a valid packaged workbook: {e}") from e


def clear_workspace(workspace: Path) -> None:
    """Remove the scratch directory used for remapped copies."""
    if Path(workspace).is_dir():
        shutil.rmtree(workspace)


__all__ = ['WorkbookReferenceRemapper', 'clear_workspace']
