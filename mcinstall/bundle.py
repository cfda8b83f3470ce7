import logging
import os
import pathlib
import stat
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Set

import aiofiles
import aiofiles.os

from .archive import run_sync
from .downloader import DownloadTask
from .events import Check, EventBus
from .utils import get_file_sha1

log = logging.getLogger(__name__)


class ManifestKind(Enum):
    INLINE = 'inline'   # content shipped in the manifest, rewritten every run
    REMOTE = 'remote'   # downloaded from `url`


@dataclass
class ManifestEntry:
    path: str
    kind: ManifestKind = ManifestKind.REMOTE
    sha1: Optional[str] = None
    size: Optional[int] = None
    url: Optional[str] = None
    content: Optional[str] = None
    label: Optional[str] = None
    executable: bool = False


class BundleReconciler:
    """
    Compares a manifest of required files with what is on disk under `root`.

    Paths in the manifest are relative to `root`. `ignored` names files or
    directories (relative to the pruning scope, or bare file names) that the
    user may change freely: existing ones are never re-verified nor pruned.
    `protected` works the same but matches scoped paths only, never basenames.
    """

    def __init__(self, root: pathlib.Path, ignored: Sequence[str] = (), instance: Optional[str] = None,
                 events: Optional[EventBus] = None, protected: Sequence[str] = ()):
        self.root = pathlib.Path(root).resolve()
        self.events = events or EventBus()
        self.ignored = list(ignored)
        self.protected = list(protected)
        self.instance = instance

    @property
    def scope(self) -> pathlib.Path:
        if self.instance:
            return self.root / 'instances' / self.instance
        return self.root

    def resolve(self, entry: ManifestEntry) -> pathlib.Path:
        return (self.root / entry.path).resolve()

    def _is_ignored(self, absolute: pathlib.Path) -> bool:
        if absolute.name in self.ignored:
            return True
        for item in self.ignored + self.protected:
            candidate = (self.scope / item).resolve()
            if absolute == candidate or candidate in absolute.parents:
                return True
        return False

    async def reconcile(self, manifest: Iterable[ManifestEntry]) -> List[ManifestEntry]:
        """Writes inline entries and returns the remote entries that are missing or stale."""
        to_download: List[ManifestEntry] = []
        entries = list(manifest)
        for index, entry in enumerate(entries, start=1):
            self.events.emit(Check(index, len(entries), entry.label or 'bundle'))
            if not entry.path:
                continue
            file_path = self.resolve(entry)

            if entry.kind is ManifestKind.INLINE:
                await aiofiles.os.makedirs(file_path.parent, exist_ok=True)
                async with aiofiles.open(file_path, 'w', encoding='utf-8') as f:
                    await f.write(entry.content or '')
                continue

            if not await aiofiles.os.path.isfile(file_path):
                to_download.append(entry)
                continue
            if self._is_ignored(file_path) or not entry.sha1:
                continue
            try:
                current_sha1 = await get_file_sha1(file_path)
            except (OSError, RuntimeError) as hash_error:
                log.warning(f"Could not hash existing file {file_path}. Redownloading. Error: {hash_error}")
                to_download.append(entry)
                continue
            if current_sha1.lower() != entry.sha1.lower():
                log.warning(f"SHA1 mismatch for existing file {file_path.name}. Expected {entry.sha1}, got {current_sha1}. Redownloading.")
                to_download.append(entry)
        return to_download

    @staticmethod
    def total_size(entries: Iterable[ManifestEntry]) -> int:
        return sum(entry.size or 0 for entry in entries)

    def to_tasks(self, entries: Iterable[ManifestEntry]) -> List[DownloadTask]:
        tasks = []
        for entry in entries:
            path = self.resolve(entry)
            tasks.append(DownloadTask(url=entry.url or '', path=path, folder=path.parent, size=entry.size or 0, label=entry.label))
        return tasks

    async def mark_executables(self, manifest: Iterable[ManifestEntry]) -> None:
        for entry in manifest:
            if not entry.executable:
                continue
            file_path = self.resolve(entry)
            try:
                mode = os.stat(file_path).st_mode
                os.chmod(file_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            except OSError as e:
                log.warning(f"Could not mark {file_path} executable: {e}")

    # --- Pruning ---

    async def prune(self, manifest: Iterable[ManifestEntry]) -> List[pathlib.Path]:
        """Deletes every file or empty directory in scope that the manifest does not reference."""
        referenced = {self.resolve(entry) for entry in manifest if entry.path}
        return await run_sync(self._prune_sync, referenced)

    def _prune_sync(self, referenced: Set[pathlib.Path]) -> List[pathlib.Path]:
        scope = self.scope
        kept: Set[pathlib.Path] = set(referenced)
        for item in self.ignored + self.protected:
            candidate = (scope / item).resolve()
            if candidate.is_dir():
                kept.update(_list_leaves(candidate))
            elif candidate.exists():
                kept.add(candidate)

        deleted: List[pathlib.Path] = []
        for leaf in _list_leaves(scope):
            if leaf in kept or self._is_ignored(leaf):
                continue
            try:
                if leaf.is_dir():
                    leaf.rmdir()
                else:
                    leaf.unlink()
                deleted.append(leaf)
                log.debug(f"Pruned {leaf}")
                _remove_empty_parents(leaf.parent, scope)
            except OSError as e:
                log.debug(f"Could not prune {leaf}: {e}")
                continue
        if deleted:
            log.info(f"Pruned {len(deleted)} unreferenced files from {scope}")
        return deleted


def _list_leaves(directory: pathlib.Path) -> List[pathlib.Path]:
    """Lists every file below `directory`, plus empty directories as leaves of their own."""
    leaves: List[pathlib.Path] = []
    if not directory.is_dir():
        return leaves
    for current, dirs, files in os.walk(directory):
        current_path = pathlib.Path(current).resolve()
        if not dirs and not files and current_path != directory.resolve():
            leaves.append(current_path)
        for name in files:
            leaves.append(current_path / name)
    return leaves


def _remove_empty_parents(folder: pathlib.Path, stop: pathlib.Path) -> None:
    stop = stop.resolve()
    folder = folder.resolve()
    while folder != stop and stop in folder.parents:
        try:
            if any(folder.iterdir()):
                return
            folder.rmdir()
        except OSError:
            return
        folder = folder.parent
