import asyncio
import logging
import pathlib
from typing import Callable, Optional, Sequence, Union

log = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 10.0


class ProcessRunner:
    """
    Spawns one external program at a time and streams its merged output.

    terminate() asks the running process to stop and kills it if it is still
    alive after `grace_period` seconds.
    """

    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD):
        self.grace_period = grace_period
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def run(
        self,
        args: Sequence[str],
        cwd: Union[str, pathlib.Path],
        on_output: Callable[[str], None],
    ) -> int:
        log.debug(f"Running: {' '.join(str(a) for a in args)}")
        self._process = await asyncio.create_subprocess_exec(
            *[str(a) for a in args],
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd),
        )
        process = self._process
        try:
            while True:
                chunk = await process.stdout.read(4096)
                if not chunk:
                    break
                on_output(chunk.decode(errors='ignore'))
            return await process.wait()
        finally:
            self._process = None

    async def terminate(self) -> None:
        process = self._process
        if process is None or process.returncode is not None:
            return
        log.info(f"Terminating process {process.pid}...")
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            log.warning(f"Process {process.pid} did not exit within {self.grace_period}s, killing it.")
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()
