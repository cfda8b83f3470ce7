import json
import logging
import pathlib
import shutil
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import aiofiles.os

from . import archive
from .bundle import ManifestEntry, ManifestKind
from .config import Endpoints
from .downloader import Downloader
from .errors import ArchiveError, ResolutionError
from .utils import check_item_rules, get_arch_bits, get_arch_name, get_os_name

log = logging.getLogger(__name__)

LATEST_RELEASE_ALIASES = ('latest_release', 'r', 'lr')
LATEST_SNAPSHOT_ALIASES = ('latest_snapshot', 's', 'ls')
LEGACY_ASSET_IDS = ('legacy', 'pre-1.6')


@dataclass
class LibraryRecord:
    name: str
    url: Optional[str]
    size: Optional[int]
    sha1: Optional[str]
    local_path: str
    is_native: bool = False


@dataclass
class LibrarySet:
    records: List[LibraryRecord] = field(default_factory=list)
    entries: List[ManifestEntry] = field(default_factory=list)

    @property
    def classpath(self) -> List[str]:
        return [record.local_path for record in self.records if not record.is_native]

    @property
    def natives(self) -> List[str]:
        return [record.local_path for record in self.records if record.is_native]


class MinecraftManifest:
    """Turns Mojang's version metadata into manifest entries for the bundle reconciler."""

    def __init__(self, root: pathlib.Path, downloader: Downloader, endpoints: Endpoints = Endpoints(),
                 features: Optional[Dict[str, bool]] = None, instance: Optional[str] = None):
        self.root = pathlib.Path(root)
        self.downloader = downloader
        self.endpoints = endpoints
        self.features = features or {}
        self.instance = instance

    # --- Version JSON ---

    async def fetch_version(self, version: str) -> Tuple[str, Dict[str, Any]]:
        """Resolves aliases like 'latest_release' and returns (version_id, version_json)."""
        manifest = await self.downloader.download_json(self.endpoints.version_manifest)
        if version in LATEST_RELEASE_ALIASES:
            version = manifest['latest']['release']
        elif version in LATEST_SNAPSHOT_ALIASES:
            version = manifest['latest']['snapshot']

        info = next((v for v in manifest.get('versions', []) if v.get('id') == version), None)
        if info is None:
            recent = [v['id'] for v in manifest.get('versions', [])[:10]]
            raise ResolutionError(f"Minecraft {version} is not found", recent)

        log.info(f"Fetching version metadata for {version}...")
        version_json = await self.downloader.download_json(info['url'])
        return version, version_json

    # --- Libraries ---

    def _native_classifier(self, lib: Dict[str, Any]) -> Optional[Tuple[str, Dict[str, Any]]]:
        os_name = get_os_name()
        arch_name = get_arch_name()
        classifiers = lib.get('downloads', {}).get('classifiers', {}) or {}
        natives_rules = lib.get('natives', {}) or {}

        if os_name in natives_rules:
            key = natives_rules[os_name].replace('${arch}', get_arch_bits())
            if key in classifiers:
                return key, classifiers[key]
        for key in (f"natives-{os_name}-{arch_name}", f"natives-{os_name}"):
            if key in classifiers:
                return key, classifiers[key]
        return None

    def library_entries(self, version_json: Dict[str, Any]) -> LibrarySet:
        version_id = version_json['id']
        result = LibrarySet()
        for lib in version_json.get('libraries', []):
            if not check_item_rules(lib.get('rules'), self.features):
                continue
            lib_name = lib.get('name', 'unknown-library')
            artifact = lib.get('downloads', {}).get('artifact')

            if artifact and artifact.get('path') and artifact.get('url'):
                self._add_library(result, lib_name, artifact, is_native=False)

            native = self._native_classifier(lib)
            if native is not None:
                classifier, info = native
                if info.get('path') and info.get('url'):
                    self._add_library(result, f"{lib_name}:{classifier}", info, is_native=True)

        client = version_json.get('downloads', {}).get('client')
        if client:
            result.entries.append(ManifestEntry(
                path=f"versions/{version_id}/{version_id}.jar",
                sha1=client.get('sha1'),
                size=client.get('size'),
                url=client.get('url'),
                label='Libraries',
            ))
        result.entries.append(ManifestEntry(
            path=f"versions/{version_id}/{version_id}.json",
            kind=ManifestKind.INLINE,
            content=json.dumps(version_json),
        ))
        return result

    def _add_library(self, result: LibrarySet, name: str, artifact: Dict[str, Any], is_native: bool) -> None:
        relative = f"libraries/{artifact['path']}"
        result.records.append(LibraryRecord(
            name=name,
            url=artifact['url'],
            size=artifact.get('size'),
            sha1=artifact.get('sha1'),
            local_path=str(self.root / relative),
            is_native=is_native,
        ))
        result.entries.append(ManifestEntry(
            path=relative,
            sha1=artifact.get('sha1'),
            size=artifact.get('size'),
            url=artifact['url'],
            label='Native' if is_native else 'Libraries',
        ))

    # --- Assets ---

    async def asset_entries(self, version_json: Dict[str, Any]) -> List[ManifestEntry]:
        asset_index = version_json.get('assetIndex')
        if not (asset_index and 'id' in asset_index and 'url' in asset_index):
            raise ResolutionError(f"Version {version_json.get('id')} is missing asset index information")

        data = await self.downloader.download_json(asset_index['url'])
        entries = [ManifestEntry(
            path=f"assets/indexes/{asset_index['id']}.json",
            kind=ManifestKind.INLINE,
            content=json.dumps(data),
        )]
        resources = self.endpoints.resources.rstrip('/')
        for asset_key, asset in data.get('objects', {}).items():
            asset_hash = asset.get('hash')
            if not asset_hash:
                log.warning(f"Asset '{asset_key}' is missing hash in index, skipping.")
                continue
            prefix = asset_hash[:2]
            entries.append(ManifestEntry(
                path=f"assets/objects/{prefix}/{asset_hash}",
                sha1=asset_hash,
                size=asset.get('size'),
                url=f"{resources}/{prefix}/{asset_hash}",
                label='Assets',
            ))
        log.info(f"Asset index {asset_index['id']} lists {len(entries) - 1} objects")
        return entries

    async def copy_legacy_assets(self, version_json: Dict[str, Any]) -> int:
        """Copies hashed objects to their logical names for pre-1.7 asset layouts."""
        asset_id = version_json.get('assets') or version_json.get('assetIndex', {}).get('id')
        if asset_id not in LEGACY_ASSET_IDS:
            return 0
        index_path = self.root / 'assets' / 'indexes' / f"{asset_id}.json"
        if not await aiofiles.os.path.isfile(index_path):
            return 0
        legacy_dir = self.root / 'resources'
        if self.instance:
            legacy_dir = self.root / 'instances' / self.instance / 'resources'
        return await archive.run_sync(self._copy_legacy_sync, index_path, legacy_dir)

    def _copy_legacy_sync(self, index_path: pathlib.Path, legacy_dir: pathlib.Path) -> int:
        with open(index_path, 'r', encoding='utf-8') as f:
            objects = json.load(f).get('objects', {})
        copied = 0
        for logical_name, asset in objects.items():
            asset_hash = asset['hash']
            source = self.root / 'assets' / 'objects' / asset_hash[:2] / asset_hash
            target = legacy_dir / logical_name
            if target.exists() or not source.exists():
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
            copied += 1
        log.info(f"Copied {copied} legacy assets to {legacy_dir}")
        return copied

    # --- Extra files ---

    async def extra_entries(self, url: Optional[str]) -> List[ManifestEntry]:
        """Files listed by a custom server as [{path, hash, size, url}], placed in the instance dir when set."""
        if not url:
            return []
        data = await self.downloader.download_json(url)
        entries = []
        for item in data:
            path = item.get('path')
            if not path:
                continue
            entries.append(ManifestEntry(
                path=f"instances/{self.instance}/{path}" if self.instance else path,
                sha1=item.get('hash'),
                size=item.get('size'),
                url=item.get('url'),
                label=path.split('/')[0],
            ))
        return entries

    # --- Natives ---

    async def extract_natives(self, native_paths: List[str], natives_dir: pathlib.Path) -> int:
        if await aiofiles.os.path.isdir(natives_dir):
            await archive.run_sync(shutil.rmtree, natives_dir)
        await aiofiles.os.makedirs(natives_dir, exist_ok=True)
        if not native_paths:
            log.info("No native libraries to extract for this platform.")
            return 0
        extracted = 0
        for jar in native_paths:
            try:
                extracted += await archive.run_sync(archive.extract_natives, pathlib.Path(jar), natives_dir)
            except ArchiveError as e:
                log.error(f"Failed to extract natives from {pathlib.Path(jar).name}: {e}")
        log.info(f"Extracted {extracted} native files to {natives_dir}")
        return extracted
