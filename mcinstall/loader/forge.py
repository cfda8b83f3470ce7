import json
import logging
import pathlib
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from .. import archive
from ..config import BUILD_ALIASES
from ..errors import IntegrityError, ResolutionError
from ..utils import get_file_hash
from .base import LoaderInstaller, LoaderResult

log = logging.getLogger(__name__)

# meta.json classifiers, most preferred first
CLASSIFIER_PRIORITY = ('installer', 'client', 'universal')


class ForgeInstaller(LoaderInstaller):
    core_prefixes = ('net.minecraftforge:forge:', 'net.minecraftforge:minecraftforge:')
    display_name = 'Forge'

    @staticmethod
    def pick_build(builds: List[str], promos: Dict[str, str], minecraft_version: str, build: str) -> Optional[str]:
        """Maps 'latest'/'recommended' through the promotions map; a literal build must be listed."""
        if build not in BUILD_ALIASES:
            return build if build in builds else None
        promotion = promos.get(f"{minecraft_version}-{build}")
        if not promotion and build == 'recommended':
            promotion = promos.get(f"{minecraft_version}-latest")
        if not promotion:
            return None
        return next((candidate for candidate in builds if promotion in candidate), None)

    async def resolve_build(self) -> str:
        version = self.request.minecraft_version
        metadata = await self.downloader.download_json(self.endpoints.forge_metadata)
        builds = metadata.get(version)
        if not builds:
            raise ResolutionError(f"Forge {version} not supported")

        promos: Dict[str, str] = {}
        if self.request.build in BUILD_ALIASES:
            promos = (await self.downloader.download_json(self.endpoints.forge_promotions)).get('promos', {})
        selected = self.pick_build(builds, promos, version, self.request.build)
        if not selected:
            raise ResolutionError(f"Build {self.request.build} not found", builds)
        return selected

    async def download_installer(self, build: str) -> pathlib.Path:
        meta = await self.downloader.download_json(self.endpoints.forge_meta.replace('${build}', build))
        classifiers: Dict[str, Dict[str, str]] = meta.get('classifiers', {})
        kind = next((k for k in CLASSIFIER_PRIORITY if k in classifiers), None)
        if kind is None:
            raise ResolutionError(f"Invalid forge installer: {build} publishes none of {', '.join(CLASSIFIER_PRIORITY)}")

        ext, expected_md5 = next(iter(classifiers[kind].items()))
        template = {
            'installer': self.endpoints.forge_install,
            'client': self.endpoints.forge_client,
            'universal': self.endpoints.forge_universal,
        }[kind]
        url = f"{template.replace('${version}', build)}.{ext}"
        path = await self._fetch_installer(url, url.split('/')[-1])

        if self.config.verify_installer:
            actual_md5 = await get_file_hash(path, 'md5')
            if actual_md5 != expected_md5:
                await aiofiles.os.remove(path)
                raise IntegrityError(path, expected_md5, actual_md5)
        return path

    async def install_build(self, installer: Optional[pathlib.Path]) -> LoaderResult:
        if installer is not None and installer.suffix != '.jar':
            return await self.install_legacy(installer)
        return await super().install_build(installer)

    async def install_legacy(self, forge_archive: pathlib.Path) -> LoaderResult:
        """
        Very old Forge builds ship a plain zip of patched classes.

        The game jar and that zip are merged, without signatures, into
        versions/forge-<build>/forge-<build>.jar. The profile is the game's
        own with an empty library list.
        """
        profile_id = f"forge-{self.build}"
        minecraft_jar = pathlib.Path(self.request.minecraft_jar_path)
        parts = await archive.run_sync(archive.read_all, minecraft_jar)
        parts += await archive.run_sync(archive.read_all, forge_archive)
        data = await archive.run_sync(archive.create_archive, parts, 'META-INF')

        destination = self.root / 'versions' / profile_id
        jar_path = destination / f"{profile_id}.jar"
        async with aiofiles.open(self.request.minecraft_json_path, 'r', encoding='utf-8') as f:
            profile: Dict[str, Any] = json.loads(await f.read())
        profile.update(libraries=[], id=profile_id, isOldForge=True, jarPath=str(jar_path))

        await self._write_bytes(jar_path, data)
        async with aiofiles.open(destination / f"{profile_id}.json", 'w', encoding='utf-8') as f:
            await f.write(json.dumps(profile, indent=4))
        log.info(f"Merged legacy Forge {self.build} into {jar_path}")
        return LoaderResult(version=profile, jar_path=str(jar_path))
