import io
import logging
import os
import pathlib
import platform
import tarfile
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiofiles.os

from . import archive
from .bundle import ManifestEntry
from .config import Endpoints
from .downloader import Downloader
from .errors import ArchiveError, ResolutionError

log = logging.getLogger(__name__)

DEFAULT_JAVA_VERSION = 8
DEFAULT_COMPONENT = 'jre-legacy'
DEFAULT_IMAGE_TYPE = 'jre'

# (platform.system(), normalized machine) -> Mojang java-runtime platform key
MOJANG_PLATFORMS = {
    ('Windows', 'x64'): 'windows-x64',
    ('Windows', 'x86'): 'windows-x86',
    ('Windows', 'arm64'): 'windows-arm64',
    ('Darwin', 'x64'): 'mac-os',
    ('Darwin', 'arm64'): 'mac-os-arm64',
    ('Linux', 'x64'): 'linux',
    ('Linux', 'x86'): 'linux-i386',
}


@dataclass
class JavaRuntimeFiles:
    java_path: str
    entries: List[ManifestEntry] = field(default_factory=list)
    # set when the runtime was unpacked outside the manifest, relative to the root
    directory: Optional[str] = None


def _normalized_machine() -> str:
    machine = platform.machine().lower()
    if machine in ('amd64', 'x86_64'):
        return 'x64'
    if machine in ('i386', 'i686', 'x86'):
        return 'x86'
    if machine in ('arm64', 'aarch64'):
        return 'arm64'
    return machine


def get_api_os_arch() -> Optional[Dict[str, str]]:
    """Maps Python platform/machine to Adoptium API values."""
    api_os = {'Windows': 'windows', 'Darwin': 'mac', 'Linux': 'linux'}.get(platform.system())
    api_arch = {'x64': 'x64', 'arm64': 'aarch64', 'x86': 'x32'}.get(_normalized_machine())
    if not api_os or not api_arch:
        log.error(f"Unsupported platform for Adoptium: {platform.system()} {platform.machine()}")
        return None
    return {"os": api_os, "arch": api_arch}


def _executable_candidates(base_dir: pathlib.Path, system: str) -> List[pathlib.Path]:
    if system == 'Windows':
        return [base_dir / 'bin' / 'java.exe']
    if system == 'Darwin':
        return [base_dir / 'Contents' / 'Home' / 'bin' / 'java', base_dir / 'bin' / 'java']
    return [base_dir / 'bin' / 'java']


async def find_java_executable(extract_dir: pathlib.Path, system: str) -> Optional[pathlib.Path]:
    """
    Finds the Java executable inside an extracted runtime.

    Archives usually unpack into a single top-level folder, so that folder is
    searched first and the base directory second.
    """
    if not await aiofiles.os.path.isdir(extract_dir):
        return None

    search_dirs = []
    try:
        for entry in os.scandir(extract_dir):
            if entry.is_dir():
                search_dirs.append(pathlib.Path(entry.path))
                break
    except OSError as e:
        log.warning(f"Could not scan directory {extract_dir}: {e}")
    search_dirs.append(extract_dir)

    for base_dir in search_dirs:
        for candidate in _executable_candidates(base_dir, system):
            if await aiofiles.os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                log.info(f"Found Java executable: {candidate.resolve()}")
                return candidate.resolve()
    return None


def _extract_zip(zip_data: bytes, dest_path: pathlib.Path) -> None:
    with io.BytesIO(zip_data) as zip_buffer:
        with zipfile.ZipFile(zip_buffer, 'r') as zip_ref:
            zip_ref.extractall(dest_path)


def _extract_archive(archive_path: pathlib.Path, dest_path: pathlib.Path) -> None:
    try:
        if archive_path.name.endswith('.zip'):
            _extract_zip(archive_path.read_bytes(), dest_path)
        else:
            with tarfile.open(archive_path, "r:gz") as tar_ref:
                tar_ref.extractall(path=dest_path)
    except (tarfile.TarError, zipfile.BadZipFile) as e:
        raise ArchiveError(archive_path, None, f"Could not extract Java archive {archive_path}: {e}")
    finally:
        archive_path.unlink(missing_ok=True)


class JavaRuntime:
    """Resolves the Java runtime a version needs, as manifest entries or a ready executable."""

    def __init__(self, root: pathlib.Path, downloader: Downloader, endpoints: Endpoints = Endpoints(),
                 intel_enabled_mac: bool = False):
        self.root = pathlib.Path(root)
        self.downloader = downloader
        self.endpoints = endpoints
        self.intel_enabled_mac = intel_enabled_mac

    def platform_key(self) -> Optional[str]:
        machine = _normalized_machine()
        if platform.system() == 'Darwin' and machine == 'arm64' and self.intel_enabled_mac:
            machine = 'x64'
        return MOJANG_PLATFORMS.get((platform.system(), machine))

    async def runtime_files(self, version_json: Dict[str, Any]) -> Optional[JavaRuntimeFiles]:
        """Lists the files of Mojang's runtime for this version, or None when Mojang ships none for this platform."""
        platform_key = self.platform_key()
        if platform_key is None:
            return None
        component = (version_json.get('javaVersion') or {}).get('component') or DEFAULT_COMPONENT

        runtimes = await self.downloader.download_json(self.endpoints.java_runtimes)
        releases = (runtimes.get(platform_key) or {}).get(component) or []
        if not releases:
            log.warning(f"No Mojang Java runtime '{component}' for {platform_key}")
            return None
        version_name = releases[0]['version']['name']
        manifest = await self.downloader.download_json(releases[0]['manifest']['url'])
        files: Dict[str, Any] = manifest.get('files', {})

        executable_suffix = 'bin/java.exe' if platform.system() == 'Windows' else 'bin/java'
        java_entry = next((path for path in files if path.endswith(executable_suffix)), None)
        if java_entry is None:
            raise ResolutionError(f"Java runtime {component} for {platform_key} has no {executable_suffix}")
        strip_prefix = java_entry[: -len(executable_suffix)]

        runtime_dir = f"runtime/jre-{version_name}-{platform_key}"
        result = JavaRuntimeFiles(java_path=str(self.root / runtime_dir / executable_suffix))
        for path, info in files.items():
            if info.get('type') == 'directory' or not info.get('downloads'):
                continue
            raw = info['downloads']['raw']
            relative = path[len(strip_prefix):] if path.startswith(strip_prefix) else path
            result.entries.append(ManifestEntry(
                path=f"{runtime_dir}/{relative}",
                sha1=raw.get('sha1'),
                size=raw.get('size'),
                url=raw.get('url'),
                label='Java',
                executable=bool(info.get('executable')),
            ))
        log.info(f"Java runtime {component} ({version_name}) has {len(result.entries)} files")
        return result

    async def download_adoptium(self, version: int, image_type: str = DEFAULT_IMAGE_TYPE) -> str:
        """Downloads and extracts an Eclipse Temurin build when Mojang has no runtime for this platform."""
        destination_dir = self.root / 'runtime' / f"adoptium-{version}"
        existing = await find_java_executable(destination_dir, platform.system())
        if existing:
            log.info(f"Valid Java executable already found at: {existing}. Skipping download.")
            return str(existing)

        platform_info = get_api_os_arch()
        if not platform_info:
            raise ResolutionError(f"No Java {version} build available for {platform.system()} {platform.machine()}")
        api_os, api_arch = platform_info['os'], platform_info['arch']
        api_url = (f"{self.endpoints.adoptium_api}/binary/latest/{version}/ga/{api_os}/{api_arch}"
                   f"/{image_type}/hotspot/normal/eclipse")
        archive_name = f"java-{version}.zip" if api_os == 'windows' else f"java-{version}.tar.gz"

        log.info(f"Downloading Java {version} ({image_type}) for {api_os}-{api_arch} from Adoptium...")
        await self.downloader.fetch_one(api_url, destination_dir, archive_name)
        await archive.run_sync(_extract_archive, destination_dir / archive_name, destination_dir)

        java_path = await find_java_executable(destination_dir, platform.system())
        if not java_path:
            raise ResolutionError(f"Java {version} was extracted to {destination_dir} but no executable was found")
        return str(java_path)

    async def resolve(self, version_json: Dict[str, Any]) -> JavaRuntimeFiles:
        files = await self.runtime_files(version_json)
        if files is not None:
            return files
        major = (version_json.get('javaVersion') or {}).get('majorVersion', DEFAULT_JAVA_VERSION)
        return JavaRuntimeFiles(java_path=await self.download_adoptium(major), directory=f"runtime/adoptium-{major}")
