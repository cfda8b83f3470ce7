import asyncio
import logging
import os
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .bundle import BundleReconciler, ManifestEntry
from .config import LauncherOptions
from .downloader import Downloader
from .errors import InstallerError, OperationCancelled
from .events import Cancelled, Error, Event, EventBus, Finished
from .java import JavaRuntime
from .loader import LoaderRequest, LoaderResult, PatchProcessor, create_installer
from .minecraft import MinecraftManifest
from .process import ProcessRunner

log = logging.getLogger(__name__)


@dataclass
class LaunchPlan:
    """Everything a launcher needs to build the game's command line."""

    java_path: str
    main_class: str
    classpath: List[str]
    natives_dir: pathlib.Path
    game_dir: pathlib.Path
    assets_dir: pathlib.Path
    asset_index: Optional[str]
    version: Dict[str, Any]
    loader: Optional[Dict[str, Any]] = None
    jvm_arguments: List[Any] = field(default_factory=list)
    game_arguments: List[Any] = field(default_factory=list)
    # pre-1.13 single string form, loader's when it declares one
    minecraft_arguments: Optional[str] = None

    def classpath_string(self) -> str:
        return os.pathsep.join(self.classpath)


class InstallationOrchestrator:
    """
    Runs one installation: version metadata, Java, bundle sync, loader, natives.

    Every run ends with exactly one terminal event on `events`: Finished with
    the LaunchPlan, Error(terminal=True) or Cancelled. Exceptions are
    re-raised to the caller after that event.
    """

    def __init__(self, options: LauncherOptions, events: Optional[EventBus] = None):
        self.options = options
        self.events = events or EventBus()
        self._cancel_reason: Optional[str] = None
        self._downloader: Optional[Downloader] = None
        self._patcher: Optional[PatchProcessor] = None
        self._terminating: Optional[asyncio.Task] = None
        self._terminal_sent = False

    @property
    def cancelled(self) -> bool:
        return self._cancel_reason is not None

    def cancel(self, reason: str = "cancelled by user") -> None:
        """Stops the run at the next stage, aborts downloads in flight and terminates a running processor."""
        if self.cancelled:
            return
        self._cancel_reason = reason
        log.info(f"Cancelling installation: {reason}")
        if self._downloader is not None:
            self._downloader.cancel()
        if self._patcher is not None:
            self._terminating = asyncio.get_running_loop().create_task(self._patcher.terminate())

    def _check_cancelled(self, stage: str) -> None:
        if self.cancelled:
            raise OperationCancelled(self._cancel_reason)
        log.debug(f"Stage: {stage}")

    def _finish(self, event: Event) -> None:
        if self._terminal_sent:
            return
        self._terminal_sent = True
        self.events.emit(event)

    async def run(self) -> LaunchPlan:
        try:
            plan = await self._run()
        except OperationCancelled as e:
            self._finish(Cancelled(self._cancel_reason or e.reason))
            raise
        except InstallerError as e:
            if self.cancelled:
                self._finish(Cancelled(self._cancel_reason))
                raise OperationCancelled(self._cancel_reason) from e
            log.error(f"Installation failed: {e}")
            self._finish(Error(e, terminal=True))
            raise
        except asyncio.CancelledError:
            self._finish(Cancelled(self._cancel_reason or "task cancelled"))
            raise
        except Exception as e:
            if self.cancelled:
                self._finish(Cancelled(self._cancel_reason))
                raise OperationCancelled(self._cancel_reason) from e
            log.exception(f"Unexpected error during installation: {e}")
            self._finish(Error(e, terminal=True))
            raise
        finally:
            if self._terminating is not None:
                await self._terminating
            self._downloader = None
            self._patcher = None
        self._finish(Finished(plan))
        return plan

    async def _run(self) -> LaunchPlan:
        options = self.options
        root = options.path
        async with Downloader(self.events, timeout=options.timeout) as downloader:
            self._downloader = downloader
            self._check_cancelled('version')
            minecraft = MinecraftManifest(root, downloader, options.endpoints, options.features, options.instance)
            version_id, version_json = await minecraft.fetch_version(options.version)

            self._check_cancelled('java')
            java_path = options.java_path
            java_entries: List[ManifestEntry] = []
            protected = ['loader', 'resources', f"versions/{version_id}/natives"]
            if not java_path:
                runtime = await JavaRuntime(root, downloader, options.endpoints, options.intel_enabled_mac).resolve(version_json)
                java_path, java_entries = runtime.java_path, runtime.entries
                if runtime.directory:
                    protected.append(runtime.directory)

            self._check_cancelled('manifest')
            libraries = minecraft.library_entries(version_json)
            manifest = list(libraries.entries)
            manifest += await minecraft.asset_entries(version_json)
            manifest += await minecraft.extra_entries(options.extra_files_url)
            manifest += java_entries

            self._check_cancelled('reconcile')
            reconciler = BundleReconciler(root, options.ignored, options.instance, self.events, protected)
            missing = await reconciler.reconcile(manifest)

            self._check_cancelled('download')
            if missing:
                await downloader.fetch_many(
                    reconciler.to_tasks(missing),
                    reconciler.total_size(missing),
                    options.download_concurrency,
                    options.timeout,
                )

            self._check_cancelled('executables')
            await reconciler.mark_executables(manifest)

            if options.verify:
                self._check_cancelled('prune')
                await reconciler.prune(manifest)

            loader_result = None
            if options.loader is not None:
                self._check_cancelled('loader')
                loader_result = await self._install_loader(downloader, version_id, java_path)

            self._check_cancelled('natives')
            natives_dir = root / 'versions' / version_id / 'natives'
            await minecraft.extract_natives(libraries.natives, natives_dir)

            self._check_cancelled('assets')
            await minecraft.copy_legacy_assets(version_json)

        game_jar = str(root / 'versions' / version_id / f"{version_id}.jar")
        return self._plan(version_json, java_path, libraries.classpath, game_jar, natives_dir, loader_result)

    async def _install_loader(self, downloader: Downloader, version_id: str, java_path: str) -> LoaderResult:
        options = self.options
        loader_root = options.path / 'loader' / options.loader.type
        request = LoaderRequest(
            type=options.loader.type,
            minecraft_version=version_id,
            build=options.loader.build,
            java_path=java_path,
            minecraft_jar_path=options.path / 'versions' / version_id / f"{version_id}.jar",
            minecraft_json_path=options.path / 'versions' / version_id / f"{version_id}.json",
        )
        self._patcher = PatchProcessor(
            loader_root,
            options.loader.type,
            self.events,
            ProcessRunner(),
            strict_tokens=options.strict_processor_tokens,
            continue_on_failure=options.continue_on_processor_failure,
        )
        installer = create_installer(
            request,
            options.loader,
            loader_root,
            downloader,
            self.events,
            endpoints=options.loader_endpoints,
            patcher=self._patcher,
            concurrency=options.download_concurrency,
            features=options.features,
        )
        return await installer.install()

    def _plan(self, version_json: Dict[str, Any], java_path: str, vanilla_classpath: List[str], game_jar: str,
              natives_dir: pathlib.Path, loader_result: Optional[LoaderResult]) -> LaunchPlan:
        loader_json = loader_result.version if loader_result else None
        loader_classpath = loader_result.classpath if loader_result else []
        if loader_result and loader_result.jar_path:
            game_jar = loader_result.jar_path

        classpath: List[str] = []
        for entry in loader_classpath + vanilla_classpath + [game_jar]:
            if entry not in classpath:
                classpath.append(entry)

        jvm_arguments = list((version_json.get('arguments') or {}).get('jvm', []))
        game_arguments = list((version_json.get('arguments') or {}).get('game', []))
        minecraft_arguments = version_json.get('minecraftArguments')
        main_class = version_json.get('mainClass', '')
        if loader_json:
            jvm_arguments += (loader_json.get('arguments') or {}).get('jvm', [])
            game_arguments += (loader_json.get('arguments') or {}).get('game', [])
            minecraft_arguments = loader_json.get('minecraftArguments') or minecraft_arguments
            main_class = loader_json.get('mainClass') or main_class

        asset_index = version_json.get('assets') or (version_json.get('assetIndex') or {}).get('id')
        assets_dir = self.options.path / 'assets'
        if asset_index in ('legacy', 'pre-1.6'):
            assets_dir = self.options.game_dir / 'resources'

        return LaunchPlan(
            java_path=java_path,
            main_class=main_class,
            classpath=classpath,
            natives_dir=natives_dir,
            game_dir=self.options.game_dir,
            assets_dir=assets_dir,
            asset_index=asset_index,
            version=version_json,
            loader=loader_json,
            jvm_arguments=jvm_arguments,
            game_arguments=game_arguments,
            minecraft_arguments=minecraft_arguments,
        )
