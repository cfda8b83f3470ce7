import hashlib
import logging
import pathlib
import platform
from typing import Any, Dict, List, NamedTuple, Optional

import aiofiles
import aiofiles.os

log = logging.getLogger(__name__)


# --- File Helpers ---

async def get_file_hash(file_path: pathlib.Path, algorithm: str = 'sha1') -> str:
    """Calculates the hex digest of a file asynchronously."""
    digest = hashlib.new(algorithm)
    try:
        async with aiofiles.open(file_path, 'rb') as f:
            while True:
                chunk = await f.read(65536)
                if not chunk:
                    break
                digest.update(chunk)
        return digest.hexdigest()
    except FileNotFoundError:
        raise FileNotFoundError(f"File not found for {algorithm} calculation: {file_path}")


async def get_file_sha1(file_path: pathlib.Path) -> str:
    return await get_file_hash(file_path, 'sha1')


# --- Platform ---

def get_os_name() -> str:
    """Gets the current OS name ('windows', 'osx', 'linux')."""
    system = platform.system()
    if system == 'Windows': return 'windows'
    elif system == 'Darwin': return 'osx'
    elif system == 'Linux': return 'linux'
    else: raise OSError(f"Unsupported platform: {system}")


def get_arch_name() -> str:
    """Gets the current architecture name ('x64', 'x86', 'arm64', 'arm32')."""
    machine = platform.machine().lower()
    if machine in ['amd64', 'x86_64']: return 'x64'
    elif machine in ['i386', 'i686']: return 'x86'
    elif machine in ['arm64', 'aarch64']: return 'arm64'
    elif machine.startswith('arm') and '64' not in machine: return 'arm32'
    else:
        log.warning(f"Unsupported architecture: {platform.machine()}. Falling back to 'x64'. This might cause issues.")
        return 'x64'


def get_arch_bits() -> str:
    """Value substituted for ${arch} in legacy native classifiers."""
    return '32' if get_arch_name() in ('x86', 'arm32') else '64'


# --- Rule Processing ---

def check_rule(rule: Optional[Dict[str, Any]], features: Optional[Dict[str, bool]] = None) -> bool:
    """
    Checks if a *single rule* permits an item based on the current environment.
    Returns True if the rule permits inclusion, False otherwise.
    """
    if not rule or 'action' not in rule:
        return True

    action = rule.get('action', 'allow')
    applies = True

    if 'os' in rule and isinstance(rule['os'], dict):
        os_rule = rule['os']
        if 'name' in os_rule and os_rule['name'] != get_os_name():
            applies = False
        if applies and 'arch' in os_rule and os_rule['arch'] not in (get_arch_name(), platform.machine().lower()):
            applies = False

    if applies and 'features' in rule and isinstance(rule['features'], dict):
        enabled = features or {}
        for feature, wanted in rule['features'].items():
            if bool(enabled.get(feature, False)) != wanted:
                applies = False
                break

    if action == 'allow':
        return applies
    elif action == 'disallow':
        return not applies
    else:
        log.warning(f"Unknown rule action: {action}. Defaulting to allow.")
        return True


def check_item_rules(rules: Optional[List[Dict[str, Any]]], features: Optional[Dict[str, bool]] = None) -> bool:
    """
    Checks if an item (library/argument) should be included based on its rules array.
    Disallowed as soon as any rule prevents inclusion.
    """
    if not rules:
        return True
    return all(check_rule(rule, features) for rule in rules)


# --- Maven Coordinates ---

class MavenPath(NamedTuple):
    path: str   # group/artifact/version directory, '/' separated
    name: str   # file name

    @property
    def relative(self) -> str:
        return f"{self.path}/{self.name}"


def maven_path(coordinate: str, suffix: str = '', ext: str = '.jar') -> MavenPath:
    """
    Resolves 'group:artifact:version[:classifier][@ext]' to its repository layout.

    `suffix` is appended to the file stem (e.g. '-natives-linux' or
    '-clientdata') unless the coordinate pins its own extension with '@'.
    """
    parts = coordinate.strip('[]').split(':')
    if len(parts) < 3:
        raise ValueError(f"Invalid maven coordinate: {coordinate}")
    group, artifact, version = parts[0], parts[1], parts[2]
    file_stem = f"{version}-{parts[3]}" if len(parts) > 3 else version
    if '@' in file_stem:
        file_name = file_stem.replace('@', '.')
    else:
        file_name = f"{file_stem}{suffix}{ext}"
    directory = f"{group.replace('.', '/')}/{artifact}/{version.split('@')[0]}"
    return MavenPath(directory, f"{artifact}-{file_name}")
