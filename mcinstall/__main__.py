# python -m mcinstall [launcher_config.json]
import asyncio
import logging
import math
import pathlib
import signal
import sys
from typing import Dict, Optional

from tqdm.asyncio import tqdm

from .config import load_options
from .errors import InstallerError, OperationCancelled
from .events import Cancelled, Check, Error, Estimated, Event, EventBus, Extract, Finished, Patch, Progress, Speed
from .orchestrator import InstallationOrchestrator

# --- Logging Setup ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
log = logging.getLogger(__name__)

DEFAULT_CONFIG = 'launcher_config.json'


class ProgressDisplay:
    """Draws one tqdm bar per progress label and logs every other event."""

    def __init__(self) -> None:
        self.bars: Dict[str, tqdm] = {}
        self.speed: Optional[float] = None

    def _bar(self, key: str, total: int, unit: str) -> tqdm:
        bar = self.bars.get(key)
        if bar is None or bar.total != total:
            if bar is not None:
                bar.close()
            bar = tqdm(total=total, desc=key, unit=unit, unit_scale=unit == 'B', leave=False)
            self.bars[key] = bar
        return bar

    def __call__(self, event: Event) -> None:
        if isinstance(event, Progress):
            bar = self._bar(event.label or 'Download', event.total, 'B')
            bar.update(event.done - bar.n)
        elif isinstance(event, Check):
            bar = self._bar(f"Checking {event.label}", event.total, 'file')
            bar.update(event.done - bar.n)
        elif isinstance(event, Speed):
            self.speed = event.bytes_per_second
        elif isinstance(event, Estimated):
            if self.speed is not None and not math.isinf(event.seconds):
                log.debug(f"{self.speed / 1024:.1f} KiB/s, {event.seconds:.0f}s remaining")
        elif isinstance(event, Extract):
            log.info(event.message)
        elif isinstance(event, Patch):
            for line in event.text.splitlines():
                if line.strip():
                    log.info(f"[patch] {line}")
        elif isinstance(event, Error):
            if not event.terminal:
                log.error(f"{event.detail}")
        elif isinstance(event, (Cancelled, Finished)):
            self.close()

    def close(self) -> None:
        for bar in self.bars.values():
            bar.close()
        self.bars.clear()


async def main(config_path: pathlib.Path) -> int:
    try:
        options = load_options(config_path)
    except InstallerError as e:
        log.error(str(e))
        return 1

    events = EventBus()
    display = ProgressDisplay()
    events.subscribe(display)
    orchestrator = InstallationOrchestrator(options, events)

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel, "interrupted by user")
    except NotImplementedError:
        pass  # Windows: KeyboardInterrupt is handled by the caller

    try:
        plan = await orchestrator.run()
    except OperationCancelled as e:
        log.info(f"Installation cancelled: {e.reason}")
        return 130
    except InstallerError as e:
        log.error(f"--- An error occurred during installation: {e}")
        return 1
    finally:
        display.close()

    log.info(f"Minecraft {plan.version.get('id')} is ready in {plan.game_dir}")
    log.info(f"Java: {plan.java_path}")
    log.info(f"Main class: {plan.main_class}")
    log.info(f"Classpath: {len(plan.classpath)} entries")
    log.info(f"Natives: {plan.natives_dir}")
    return 0


def run() -> None:
    config = pathlib.Path(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CONFIG)
    try:
        sys.exit(asyncio.run(main(config)))
    except KeyboardInterrupt:
        log.info("Installation cancelled by user.")
        sys.exit(130)


if __name__ == "__main__":
    run()
