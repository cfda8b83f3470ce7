import asyncio
import io
import logging
import pathlib
import zipfile
import zlib
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import ArchiveError

log = logging.getLogger(__name__)

MANIFEST_ENTRY = 'META-INF/MANIFEST.MF'


def _open(archive: pathlib.Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(archive, 'r')
    except FileNotFoundError:
        raise ArchiveError(archive, None, f"Archive not found: {archive}")
    except zipfile.BadZipFile:
        log.error(f"Failed to read zip file (BadZipFile): {archive}")
        raise ArchiveError(archive, None, f"Not a valid archive: {archive}")


def _read(zip_ref: zipfile.ZipFile, member, archive: pathlib.Path) -> bytes:
    try:
        return zip_ref.read(member)
    except (zipfile.BadZipFile, zlib.error, EOFError) as e:
        name = member if isinstance(member, str) else member.filename
        raise ArchiveError(archive, name, f"Corrupt entry '{name}' in {archive}: {e}")


def list_entries(archive: pathlib.Path) -> List[str]:
    with _open(archive) as zip_ref:
        return [member.filename for member in zip_ref.infolist() if not member.is_dir()]


def read_entry(archive: pathlib.Path, name: str) -> bytes:
    with _open(archive) as zip_ref:
        try:
            return _read(zip_ref, name.lstrip('/'), archive)
        except KeyError:
            raise ArchiveError(archive, name)


def read_prefix(archive: pathlib.Path, prefix: str) -> Dict[str, bytes]:
    """Reads every file entry whose name starts with `prefix`."""
    with _open(archive) as zip_ref:
        return {
            member.filename: _read(zip_ref, member, archive)
            for member in zip_ref.infolist()
            if not member.is_dir() and member.filename.startswith(prefix)
        }


def read_all(archive: pathlib.Path) -> List[Tuple[str, bytes]]:
    with _open(archive) as zip_ref:
        return [(member.filename, _read(zip_ref, member, archive)) for member in zip_ref.infolist() if not member.is_dir()]


def create_archive(parts: Iterable[Tuple[str, bytes]], skip_prefix: Optional[str] = None) -> bytes:
    """
    Builds a new zip from (name, data) pairs.

    A later pair replaces an earlier one with the same name, so patch
    archives listed last override the base jar.
    """
    merged: Dict[str, bytes] = {}
    for name, data in parts:
        if skip_prefix and name.startswith(skip_prefix):
            continue
        merged[name] = data

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as zip_out:
        for name, data in merged.items():
            zip_out.writestr(name, data)
    return buffer.getvalue()


def extract_natives(jar_path: pathlib.Path, extract_to_dir: pathlib.Path) -> int:
    """Extracts everything but META-INF from a native jar. Returns the number of files written."""
    count = 0
    with _open(jar_path) as zip_ref:
        for member in zip_ref.infolist():
            if member.is_dir() or member.filename.upper().startswith('META-INF/'):
                continue
            try:
                zip_ref.extract(member, extract_to_dir)
                count += 1
            except OSError as extract_error:
                log.warning(f"Could not extract {member.filename} from {jar_path.name}. Error: {extract_error}")
    return count


def read_jar_main_class(jar_path: pathlib.Path) -> Optional[str]:
    """Returns the Main-Class attribute of a jar manifest, or None when absent."""
    try:
        content = read_entry(jar_path, MANIFEST_ENTRY).decode('utf-8', errors='ignore')
    except ArchiveError:
        return None
    for line in content.splitlines():
        if line.startswith('Main-Class:'):
            return line.split(':', 1)[1].strip() or None
    return None


async def run_sync(func, *args):
    """Runs a blocking archive call in the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func, *args)
