import logging
import pathlib
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ResolutionError
from .base import LoaderInstaller
from .profile import InstallProfile

log = logging.getLogger(__name__)


class FabricFamilyInstaller(LoaderInstaller):
    """
    Loaders whose meta API serves a ready launcher profile.

    There is no installer archive: the profile JSON is fetched directly and
    every library is downloaded from its own maven repository (`lib.url`).
    """

    metadata_endpoint = 'fabric_metadata'
    profile_endpoint = 'fabric_profile'
    skip_beta_for_recommended = False

    @classmethod
    def pick_build(cls, builds: List[Dict[str, Any]], build: str) -> Optional[str]:
        if build == 'latest':
            chosen = builds[0] if builds else None
        elif build == 'recommended':
            if cls.skip_beta_for_recommended:
                chosen = next((b for b in builds if 'beta' not in b['version']), None)
            else:
                chosen = builds[0] if builds else None
        else:
            chosen = next((b for b in builds if b['version'] == build), None)
        return chosen['version'] if chosen else None

    async def resolve_build(self) -> str:
        version = self.request.minecraft_version
        metadata = await self.downloader.download_json(getattr(self.endpoints, self.metadata_endpoint))
        builds = metadata.get('loader', [])
        if not any(game.get('version') == version for game in metadata.get('game', [])):
            raise ResolutionError(f"{self.display_name} doesn't support Minecraft {version}")
        selected = self.pick_build(builds, self.request.build)
        if not selected:
            raise ResolutionError(f"{self.display_name} Loader {self.request.build} not found",
                                  [b['version'] for b in builds])
        return selected

    async def download_installer(self, build: str) -> None:
        return None

    async def extract_profile(self, installer: Optional[pathlib.Path]) -> InstallProfile:
        url = (getattr(self.endpoints, self.profile_endpoint)
               .replace('${version}', self.request.minecraft_version)
               .replace('${build}', self.build))
        return InstallProfile.from_version_json(await self.downloader.download_json(url))

    async def extract_artifacts(self, profile: InstallProfile, installer: Optional[pathlib.Path]) -> bool:
        return False

    async def library_source(self, lib: Dict[str, Any], relative: str) -> Tuple[Optional[str], int]:
        if not lib.get('url'):
            return await super().library_source(lib, relative)
        url = f"{lib['url'].rstrip('/')}/{relative}"
        info = await self.downloader.check_url(url)
        return url, info.size if info is not None else lib.get('size') or 0


class FabricInstaller(FabricFamilyInstaller):
    display_name = 'Fabric'


class LegacyFabricInstaller(FabricFamilyInstaller):
    display_name = 'LegacyFabric'
    metadata_endpoint = 'legacyfabric_metadata'
    profile_endpoint = 'legacyfabric_profile'


class QuiltInstaller(FabricFamilyInstaller):
    display_name = 'QuiltMC'
    metadata_endpoint = 'quilt_metadata'
    profile_endpoint = 'quilt_profile'
    skip_beta_for_recommended = True
