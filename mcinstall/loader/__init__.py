import pathlib
from typing import Dict, Optional, Type

from ..config import LoaderConfig, LoaderEndpoints
from ..downloader import DEFAULT_CONCURRENCY, Downloader
from ..errors import ConfigError
from ..events import EventBus
from .base import LoaderInstaller, LoaderRequest, LoaderResult
from .fabric import FabricFamilyInstaller, FabricInstaller, LegacyFabricInstaller, QuiltInstaller
from .forge import ForgeInstaller
from .neoforge import NeoForgeInstaller
from .patcher import PatchConfig, PatchProcessor
from .profile import InstallProfile, ProcessorStep

INSTALLERS: Dict[str, Type[LoaderInstaller]] = {
    'forge': ForgeInstaller,
    'neoforge': NeoForgeInstaller,
    'fabric': FabricInstaller,
    'legacyfabric': LegacyFabricInstaller,
    'quilt': QuiltInstaller,
}


def create_installer(
    request: LoaderRequest,
    config: LoaderConfig,
    root: pathlib.Path,
    downloader: Downloader,
    events: Optional[EventBus] = None,
    endpoints: LoaderEndpoints = LoaderEndpoints(),
    patcher: Optional[PatchProcessor] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    features: Optional[Dict[str, bool]] = None,
) -> LoaderInstaller:
    """Picks the installer variant matching the tagged loader config."""
    installer_class = INSTALLERS.get(config.type)
    if installer_class is None:
        raise ConfigError(f"Loader {config.type} not found")
    if request.type != config.type:
        raise ConfigError(f"Loader request is for {request.type} but the configuration is for {config.type}")
    events = events or EventBus()
    if patcher is None:
        patcher = PatchProcessor(root, config.type, events)
    return installer_class(root, request, config, downloader, events, endpoints, patcher, concurrency, features)


__all__ = [
    'FabricFamilyInstaller',
    'FabricInstaller',
    'ForgeInstaller',
    'INSTALLERS',
    'InstallProfile',
    'LegacyFabricInstaller',
    'LoaderInstaller',
    'LoaderRequest',
    'LoaderResult',
    'NeoForgeInstaller',
    'PatchConfig',
    'PatchProcessor',
    'ProcessorStep',
    'QuiltInstaller',
    'create_installer',
]
