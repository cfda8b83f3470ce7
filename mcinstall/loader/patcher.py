import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiofiles.os

from ..archive import read_jar_main_class, run_sync
from ..errors import ArchiveError, ConfigError, OperationCancelled, ProcessError
from ..events import Error, EventBus, Patch
from ..process import ProcessRunner
from ..replacer import BRACE_TOKEN, substitute_tokens
from ..utils import maven_path
from .profile import InstallProfile, ProcessorStep

log = logging.getLogger(__name__)

BINPATCH = 'BINPATCH'
CLIENT_SIDE = 'client'

# artifact prefixes of the universal jar, used to place the binary patch when the profile has no `path`
UNIVERSAL_PREFIXES = {
    'forge': ('net.minecraftforge:forge',),
    'neoforge': ('net.neoforged:neoforge', 'net.neoforged:forge'),
}


@dataclass(frozen=True)
class PatchConfig:
    java: str
    minecraft_jar: str
    minecraft_version: str
    installer: Optional[str] = None


class PatchProcessor:
    """
    Runs an install profile's processors, in order, with the configured Java.

    Every processor is a jar launched with its own classpath. Output is
    published as Patch events. Processors whose `sides` exclude the client
    are skipped without spawning anything.
    """

    def __init__(
        self,
        root: pathlib.Path,
        loader_type: str,
        events: Optional[EventBus] = None,
        runner: Optional[ProcessRunner] = None,
        strict_tokens: bool = True,
        continue_on_failure: bool = False,
    ):
        self.root = pathlib.Path(root)
        self.loader_type = loader_type
        self.events = events or EventBus()
        self.runner = runner or ProcessRunner()
        self.strict_tokens = strict_tokens
        self.continue_on_failure = continue_on_failure
        self._cancelled = False

    @property
    def libraries_dir(self) -> pathlib.Path:
        return self.root / 'libraries'

    def library_path(self, coordinate: str, suffix: str = '', ext: str = '.jar') -> pathlib.Path:
        return self.libraries_dir / maven_path(coordinate, suffix, ext).relative

    def _client_steps(self, profile: InstallProfile) -> List[ProcessorStep]:
        return [step for step in profile.processors if step.applies_to(CLIENT_SIDE)]

    # --- Idempotence check ---

    def output_files(self, profile: InstallProfile) -> List[pathlib.Path]:
        """Library files named by the data map entries that client processors reference."""
        files: List[pathlib.Path] = []
        for step in self._client_steps(profile):
            for arg in step.args:
                token = arg.strip('{}')
                if token == BINPATCH or token not in profile.data:
                    continue
                value = profile.data[token].get(CLIENT_SIDE, '')
                if not value.startswith('['):
                    continue
                path = self.library_path(value)
                if path not in files:
                    files.append(path)
        return files

    async def needs_patch(self, profile: InstallProfile) -> bool:
        if not profile.processors:
            return False
        for path in self.output_files(profile):
            if not await aiofiles.os.path.isfile(path):
                return True
        return False

    # --- Argument resolution ---

    def binpatch_path(self, profile: InstallProfile) -> pathlib.Path:
        coordinate = profile.path
        if not coordinate:
            prefixes = UNIVERSAL_PREFIXES.get(self.loader_type, ())
            universal = next((lib for lib in profile.libraries
                              if any(lib.get('name', '').startswith(p) for p in prefixes)), None)
            if universal is None:
                raise ConfigError(f"Cannot place {BINPATCH}: install profile has no path and no universal library")
            coordinate = universal['name']
        return self.library_path(coordinate, '-clientdata', '.lzma')

    def token_table(self, profile: InstallProfile, config: PatchConfig) -> Dict[str, str]:
        table = {
            'SIDE': CLIENT_SIDE,
            'ROOT': str(self.root),
            'MINECRAFT_JAR': config.minecraft_jar,
            # the game version string, not the path of the version json
            'MINECRAFT_VERSION': config.minecraft_version,
            'INSTALLER': config.installer or str(self.libraries_dir),
            'LIBRARY_DIR': str(self.libraries_dir),
        }
        for token, sides in profile.data.items():
            if token == BINPATCH:
                table[token] = str(self.binpatch_path(profile))
                continue
            value = sides.get(CLIENT_SIDE)
            if value is None:
                continue
            if len(value) >= 2 and value.startswith("'") and value.endswith("'"):
                value = value[1:-1]
            table[token] = value
        return table

    def resolve_args(self, step: ProcessorStep, table: Dict[str, str]) -> List[str]:
        def missing(token: str) -> str:
            if self.strict_tokens:
                raise ConfigError(f"Unresolved processor argument {{{token}}} for {step.jar}")
            log.warning(f"Unresolved processor argument {{{token}}} for {step.jar}, passing it through")
            return f"{{{token}}}"

        resolved = []
        for arg in step.args:
            value = substitute_tokens(arg, table, BRACE_TOKEN, missing)
            if value.startswith('['):
                value = str(self.library_path(value))
            resolved.append(value)
        return resolved

    # --- Execution ---

    async def run(self, profile: InstallProfile, config: PatchConfig) -> int:
        """Runs every client processor and returns how many were spawned."""
        table = self.token_table(profile, config)
        spawned = 0
        for index, step in enumerate(profile.processors, start=1):
            if self._cancelled:
                raise OperationCancelled("processors cancelled")
            if not step.applies_to(CLIENT_SIDE):
                log.debug(f"Skipping processor {step.jar} (sides: {', '.join(step.sides or [])})")
                continue

            jar = self.library_path(step.jar)
            main_class = await run_sync(read_jar_main_class, jar)
            if not main_class:
                self._fail(ArchiveError(jar, 'META-INF/MANIFEST.MF', f"Cannot determine the main class of {jar}"))
                continue

            classpath = [str(jar)] + [str(self.library_path(cp)) for cp in step.classpath]
            command = [config.java, '-classpath', os.pathsep.join(classpath), main_class]
            command += self.resolve_args(step, table)

            log.info(f"Running processor {index}/{len(profile.processors)}: {main_class}")
            spawned += 1
            returncode = await self.runner.run(command, self.root, lambda text: self.events.emit(Patch(text)))
            if self._cancelled:
                raise OperationCancelled("processors cancelled")
            if returncode != 0:
                self._fail(ProcessError(command, returncode))
        return spawned

    def _fail(self, error: Exception) -> None:
        log.error(str(error))
        self.events.emit(Error(error))
        if not self.continue_on_failure:
            raise error

    async def terminate(self) -> None:
        """Stops the running processor; no further processor is spawned."""
        self._cancelled = True
        await self.runner.terminate()
