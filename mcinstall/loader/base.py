import json
import logging
import pathlib
import shutil
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aiofiles
import aiofiles.os

from .. import archive
from ..config import LoaderConfig, LoaderEndpoints
from ..downloader import DEFAULT_CONCURRENCY, Downloader, DownloadTask
from ..errors import ArchiveError, OperationCancelled, ResolutionError
from ..events import Check, EventBus, Extract
from ..minecraft import LibraryRecord
from ..utils import check_item_rules, get_arch_bits, get_os_name, maven_path
from .patcher import PatchConfig, PatchProcessor
from .profile import PROFILE_ENTRY, InstallProfile

log = logging.getLogger(__name__)


@dataclass
class LoaderRequest:
    type: str
    minecraft_version: str
    build: str
    java_path: str
    minecraft_jar_path: pathlib.Path
    minecraft_json_path: pathlib.Path


@dataclass
class LoaderResult:
    version: Dict[str, Any]
    libraries: List[LibraryRecord] = field(default_factory=list)
    jar_path: Optional[str] = None

    @property
    def classpath(self) -> List[str]:
        return [record.local_path for record in self.libraries if not record.is_native]


class LoaderInstaller:
    """
    Installs one mod loader build under `root` (normally <game root>/loader/<type>).

    install() walks the states in order: resolve the build, download the
    installer, extract the profile, write the version files, extract
    bundled artifacts, download libraries and run processors. Any exception
    stops the chain.
    """

    # library name fragments of the loader's own core jars
    core_prefixes: Tuple[str, ...] = ()
    display_name = 'Loader'

    def __init__(
        self,
        root: pathlib.Path,
        request: LoaderRequest,
        config: LoaderConfig,
        downloader: Downloader,
        events: Optional[EventBus] = None,
        endpoints: LoaderEndpoints = LoaderEndpoints(),
        patcher: Optional[PatchProcessor] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        features: Optional[Dict[str, bool]] = None,
    ):
        self.root = pathlib.Path(root)
        self.request = request
        self.config = config
        self.downloader = downloader
        self.events = events or EventBus()
        self.endpoints = endpoints
        self.patcher = patcher
        self.concurrency = concurrency
        self.features = features or {}
        self.build: Optional[str] = None

    @property
    def libraries_dir(self) -> pathlib.Path:
        return self.root / 'libraries'

    @property
    def installers_dir(self) -> pathlib.Path:
        return self.root / 'installers'

    async def install(self) -> LoaderResult:
        self.build = await self.resolve_build()
        log.info(f"Installing {self.display_name} {self.build} for Minecraft {self.request.minecraft_version}")
        installer = await self.download_installer(self.build)
        return await self.install_build(installer)

    async def install_build(self, installer: Optional[pathlib.Path]) -> LoaderResult:
        profile = await self.extract_profile(installer)
        await self.write_version(profile)
        skip_core = await self.extract_artifacts(profile, installer)
        libraries = await self.resolve_libraries(profile, skip_core)
        await self.patch(profile, installer)
        return LoaderResult(version=profile.version, libraries=libraries)

    # --- States ---

    async def resolve_build(self) -> str:
        raise NotImplementedError

    async def download_installer(self, build: str) -> Optional[pathlib.Path]:
        raise NotImplementedError

    async def extract_profile(self, installer: Optional[pathlib.Path]) -> InstallProfile:
        data = await archive.run_sync(archive.read_entry, installer, PROFILE_ENTRY)
        try:
            return await archive.run_sync(InstallProfile.from_installer_json, json.loads(data),
                                          lambda name: archive.read_entry(installer, name))
        except (ValueError, KeyError, TypeError) as e:
            raise ArchiveError(installer, PROFILE_ENTRY, f"Invalid install profile in {installer}: {e!r}")

    async def write_version(self, profile: InstallProfile) -> pathlib.Path:
        """Writes versions/<id>/<id>.json and places a copy of the base game jar next to it."""
        destination = self.root / 'versions' / profile.id
        await aiofiles.os.makedirs(destination, exist_ok=True)
        json_path = destination / f"{profile.id}.json"
        async with aiofiles.open(json_path, 'w', encoding='utf-8') as f:
            await f.write(json.dumps(profile.version, indent=4))

        jar_copy = destination / f"{profile.id}.jar"
        source = pathlib.Path(self.request.minecraft_jar_path)
        if await aiofiles.os.path.isfile(source) and not await aiofiles.os.path.isfile(jar_copy):
            await archive.run_sync(shutil.copyfile, source, jar_copy)
        return json_path

    async def extract_artifacts(self, profile: InstallProfile, installer: Optional[pathlib.Path]) -> bool:
        """
        Copies the jars and patch data bundled in the installer into libraries/.

        Returns True when the loader's core jars came from the installer, in
        which case library resolution skips those that have no download URL.
        """
        skip_core = True
        if profile.file_path and profile.path:
            target = self.libraries_dir / maven_path(profile.path).relative
            self.events.emit(Extract(f"Extracting {target.name}..."))
            data = await archive.run_sync(archive.read_entry, installer, profile.file_path)
            await self._write_bytes(target, data)
        elif profile.path:
            location = maven_path(profile.path)
            entries = await archive.run_sync(archive.read_prefix, installer, f"maven/{location.path}")
            for name, data in entries.items():
                file_name = pathlib.PurePosixPath(name).name
                self.events.emit(Extract(f"Extracting {file_name}..."))
                await self._write_bytes(self.libraries_dir / location.path / file_name, data)
        else:
            skip_core = False

        if profile.processors and self.patcher is not None:
            client_data = await archive.run_sync(archive.read_entry, installer, 'data/client.lzma')
            target = self.patcher.binpatch_path(profile)
            await self._write_bytes(target, client_data)
            self.events.emit(Extract(f"Extracting {target.name}..."))
        return skip_core

    async def resolve_libraries(self, profile: InstallProfile, skip_core: bool) -> List[LibraryRecord]:
        libraries = profile.libraries
        records: List[LibraryRecord] = []
        tasks: List[DownloadTask] = []
        total_size = 0

        for index, lib in enumerate(libraries, start=1):
            if self.downloader.cancelled:
                raise OperationCancelled("library resolution cancelled")
            try:
                record = await self._resolve_library(lib, skip_core)
            finally:
                self.events.emit(Check(index, len(libraries), 'libraries'))
            if record is None:
                continue
            records.append(record)
            if record.url:
                local = pathlib.Path(record.local_path)
                tasks.append(DownloadTask(record.url, local, local.parent, record.size or 0, 'libraries'))
                total_size += record.size or 0

        if tasks:
            log.info(f"Downloading {len(tasks)} {self.display_name} libraries...")
            await self.downloader.fetch_many(tasks, total_size, self.concurrency)
        return records

    async def _resolve_library(self, lib: Dict[str, Any], skip_core: bool) -> Optional[LibraryRecord]:
        """Returns the library's record; `url` is set only when the file still has to be downloaded."""
        name = lib.get('name', '')
        artifact = (lib.get('downloads') or {}).get('artifact') or {}
        if not check_item_rules(lib.get('rules'), self.features):
            return None
        core = skip_core and not artifact.get('url') and any(prefix in name for prefix in self.core_prefixes)

        classifier = None
        natives = lib.get('natives') or {}
        if get_os_name() in natives:
            classifier = natives[get_os_name()].replace('${arch}', get_arch_bits())
        location = maven_path(name, f"-{classifier}" if classifier else '')
        relative = location.relative if classifier else (artifact.get('path') or location.relative)
        local = self.libraries_dir / relative
        record = LibraryRecord(name=name, url=None, size=artifact.get('size'), sha1=artifact.get('sha1'),
                               local_path=str(local), is_native=classifier is not None)

        # core jars come from the installer or the processors, never from a repository
        if core or await aiofiles.os.path.isfile(local):
            return record
        url, size = await self.library_source(lib, relative)
        if not url:
            raise ResolutionError(f"Impossible to download {location.name}: no mirror or artifact URL")
        record.url, record.size = url, size
        return record

    async def library_source(self, lib: Dict[str, Any], relative: str) -> Tuple[Optional[str], int]:
        """Mirrors first, then the declared artifact URL, then the library's own repository."""
        hit = await self.downloader.check_mirror(relative, self.endpoints.mirrors)
        if hit is not None:
            return hit.url, hit.size
        artifact = (lib.get('downloads') or {}).get('artifact') or {}
        if artifact.get('url'):
            return artifact['url'], artifact.get('size') or 0
        if lib.get('url'):
            return f"{lib['url'].rstrip('/')}/{relative}", 0
        return None, 0

    async def patch(self, profile: InstallProfile, installer: Optional[pathlib.Path]) -> bool:
        if not profile.processors or self.patcher is None:
            return False
        if not await self.patcher.needs_patch(profile):
            log.info(f"{self.display_name} {self.build} is already patched.")
            return False
        config = PatchConfig(
            java=self.request.java_path,
            minecraft_jar=str(self.request.minecraft_jar_path),
            minecraft_version=self.request.minecraft_version,
            installer=str(installer) if installer else None,
        )
        await self.patcher.run(profile, config)
        return True

    # --- Helpers ---

    async def _write_bytes(self, target: pathlib.Path, data: bytes) -> None:
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        async with aiofiles.open(target, 'wb') as f:
            await f.write(data)

    async def _fetch_installer(self, url: str, filename: str) -> pathlib.Path:
        path = self.installers_dir / filename
        if await aiofiles.os.path.isfile(path):
            log.info(f"{filename} already downloaded.")
            return path
        await self.downloader.fetch_one(url, self.installers_dir, filename)
        return path
