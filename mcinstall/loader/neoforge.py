import logging
import pathlib
from typing import List, Optional, Tuple

import aiofiles.os

from ..config import BUILD_ALIASES
from ..errors import IntegrityError, NetworkError, ResolutionError
from ..utils import get_file_sha1
from .base import LoaderInstaller

log = logging.getLogger(__name__)


class NeoForgeInstaller(LoaderInstaller):
    core_prefixes = ('net.neoforged:forge:', 'net.neoforged:neoforge:')
    display_name = 'NeoForge'

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.legacy_api = True

    @staticmethod
    def version_prefix(minecraft_version: str) -> str:
        """'1.20.4' -> '20.4.', '1.21' -> '21.0.' as used by the neoforge artifact versions."""
        parts = minecraft_version.split('.')
        minor = parts[1] if len(parts) > 1 else parts[0]
        patch = parts[2] if len(parts) > 2 else '0'
        return f"{minor}.{patch}."

    @staticmethod
    def pick_build(versions: List[str], build: str) -> Optional[str]:
        if build in BUILD_ALIASES:
            return versions[-1] if versions else None
        return build if build in versions else None

    async def _candidates(self) -> Tuple[List[str], bool]:
        version = self.request.minecraft_version
        legacy = await self.downloader.download_json(self.endpoints.neoforge_legacy_metadata)
        versions = [v for v in legacy.get('versions', []) if v.startswith(f"{version}-")]
        if versions:
            return versions, True
        current = await self.downloader.download_json(self.endpoints.neoforge_metadata)
        prefix = self.version_prefix(version)
        return [v for v in current.get('versions', []) if v.startswith(prefix)], False

    async def resolve_build(self) -> str:
        versions, self.legacy_api = await self._candidates()
        if not versions:
            raise ResolutionError(f"NeoForge doesn't support Minecraft {self.request.minecraft_version}")
        selected = self.pick_build(versions, self.request.build)
        if not selected:
            raise ResolutionError(f"NeoForge Loader {self.request.build} not found", versions)
        return selected

    async def download_installer(self, build: str) -> pathlib.Path:
        template = self.endpoints.neoforge_legacy_install if self.legacy_api else self.endpoints.neoforge_install
        url = template.replace('${version}', build)
        path = await self._fetch_installer(url, url.split('/')[-1])
        if self.config.verify_installer:
            await self._verify_sha1(url, path)
        return path

    async def _verify_sha1(self, url: str, path: pathlib.Path) -> None:
        try:
            expected = (await self.downloader.download_text(f"{url}.sha1")).strip().split()[0].lower()
        except (NetworkError, IndexError) as e:
            log.warning(f"No checksum published for {path.name}, skipping verification: {e}")
            return
        actual = await get_file_sha1(path)
        if actual != expected:
            await aiofiles.os.remove(path)
            raise IntegrityError(path, expected, actual)
