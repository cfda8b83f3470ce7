import json
import logging
import pathlib
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import ArchiveError

log = logging.getLogger(__name__)

PROFILE_ENTRY = 'install_profile.json'


@dataclass
class ProcessorStep:
    jar: str
    classpath: List[str] = field(default_factory=list)
    args: List[str] = field(default_factory=list)
    sides: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "ProcessorStep":
        return cls(
            jar=raw['jar'],
            classpath=list(raw.get('classpath', [])),
            args=[str(arg) for arg in raw.get('args', [])],
            sides=list(raw['sides']) if raw.get('sides') is not None else None,
        )

    def applies_to(self, side: str) -> bool:
        return self.sides is None or side in self.sides


@dataclass
class InstallProfile:
    """
    A loader's decoded install manifest.

    `install` is the installer section (processors, data, path, filePath),
    `version` the launcher profile that ends up in versions/<id>/<id>.json.
    """

    install: Dict[str, Any]
    version: Dict[str, Any]
    processors: List[ProcessorStep] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.version['id']

    @property
    def data(self) -> Dict[str, Dict[str, str]]:
        return self.install.get('data') or {}

    @property
    def path(self) -> Optional[str]:
        return self.install.get('path')

    @property
    def file_path(self) -> Optional[str]:
        return self.install.get('filePath')

    @property
    def libraries(self) -> List[Dict[str, Any]]:
        """version.libraries then install.libraries, one entry per artifact name, first wins."""
        merged: Dict[str, Dict[str, Any]] = {}
        for lib in list(self.version.get('libraries') or []) + list(self.install.get('libraries') or []):
            name = lib.get('name')
            if not name:
                continue
            merged.setdefault(name, lib)
        return list(merged.values())

    @classmethod
    def from_installer_json(cls, raw: Dict[str, Any], read_entry: Callable[[str], bytes]) -> "InstallProfile":
        """
        Normalizes both installer layouts.

        Legacy installers nest everything under {install, versionInfo}. Modern
        ones keep the version profile in a separate archive entry named by
        the `json` key, read through `read_entry`.
        """
        if not isinstance(raw, dict):
            raise ArchiveError(PROFILE_ENTRY, PROFILE_ENTRY, "Invalid installer: install profile is not an object")
        if 'install' in raw:
            install, version = raw['install'], raw.get('versionInfo') or {}
        else:
            install = raw
            version_entry = raw.get('json')
            if not version_entry:
                raise ArchiveError(PROFILE_ENTRY, 'json', "Invalid installer: install profile names no version json")
            version = json.loads(read_entry(pathlib.PurePosixPath(version_entry).name))

        if 'id' not in version:
            raise ArchiveError(PROFILE_ENTRY, 'versionInfo', "Invalid installer: version profile has no id")
        processors = [ProcessorStep.from_dict(p) for p in install.get('processors') or []]
        log.debug(f"Install profile {version['id']}: {len(processors)} processors")
        return cls(install=install, version=version, processors=processors)

    @classmethod
    def from_version_json(cls, version: Dict[str, Any]) -> "InstallProfile":
        """Wraps a plain launcher profile, as served by the Fabric-family meta APIs."""
        return cls(install={}, version=version)
