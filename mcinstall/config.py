import json
import logging
import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from .errors import ConfigError
from .replacer import replace_text

log = logging.getLogger(__name__)

LOADER_TYPES = ('forge', 'neoforge', 'fabric', 'legacyfabric', 'quilt')
BUILD_ALIASES = ('latest', 'recommended')

DEFAULT_MIRRORS = (
    'https://maven.minecraftforge.net',
    'https://maven.neoforged.net/releases',
    'https://maven.creeperhost.net',
    'https://libraries.minecraft.net',
    'https://repo1.maven.org/maven2',
)


@dataclass(frozen=True)
class Endpoints:
    version_manifest: str = 'https://launchermeta.mojang.com/mc/game/version_manifest_v2.json'
    resources: str = 'https://resources.download.minecraft.net'
    java_runtimes: str = 'https://launchermeta.mojang.com/v1/products/java-runtime/2ec0cc96c44e5a76b9c8b7c39df7210883d12871/all.json'
    adoptium_api: str = 'https://api.adoptium.net/v3'


@dataclass(frozen=True)
class LoaderEndpoints:
    """URL templates per loader family. ${version} and ${build} are filled in by the installers."""

    forge_metadata: str = 'https://files.minecraftforge.net/net/minecraftforge/forge/maven-metadata.json'
    forge_meta: str = 'https://files.minecraftforge.net/net/minecraftforge/forge/${build}/meta.json'
    forge_promotions: str = 'https://files.minecraftforge.net/net/minecraftforge/forge/promotions_slim.json'
    forge_install: str = 'https://maven.minecraftforge.net/net/minecraftforge/forge/${version}/forge-${version}-installer'
    forge_client: str = 'https://maven.minecraftforge.net/net/minecraftforge/forge/${version}/forge-${version}-client'
    forge_universal: str = 'https://maven.minecraftforge.net/net/minecraftforge/forge/${version}/forge-${version}-universal'

    neoforge_legacy_metadata: str = 'https://maven.neoforged.net/api/maven/versions/releases/net/neoforged/forge'
    neoforge_metadata: str = 'https://maven.neoforged.net/api/maven/versions/releases/net/neoforged/neoforge'
    neoforge_legacy_install: str = 'https://maven.neoforged.net/releases/net/neoforged/forge/${version}/forge-${version}-installer.jar'
    neoforge_install: str = 'https://maven.neoforged.net/releases/net/neoforged/neoforge/${version}/neoforge-${version}-installer.jar'

    fabric_metadata: str = 'https://meta.fabricmc.net/v2/versions'
    fabric_profile: str = 'https://meta.fabricmc.net/v2/versions/loader/${version}/${build}/profile/json'
    legacyfabric_metadata: str = 'https://meta.legacyfabric.net/v2/versions'
    legacyfabric_profile: str = 'https://meta.legacyfabric.net/v2/versions/loader/${version}/${build}/profile/json'
    quilt_metadata: str = 'https://meta.quiltmc.org/v3/versions'
    quilt_profile: str = 'https://meta.quiltmc.org/v3/versions/loader/${version}/${build}/profile/json'

    mirrors: Tuple[str, ...] = DEFAULT_MIRRORS


# --- Loader configurations (one tagged variant per family) ---

@dataclass(frozen=True)
class LoaderConfig:
    type: str = ''
    build: str = 'latest'

    def __post_init__(self) -> None:
        if self.type not in LOADER_TYPES:
            raise ConfigError(f"Loader {self.type} not found, expected one of {', '.join(LOADER_TYPES)}")
        if not isinstance(self.build, str) or not self.build.strip():
            raise ConfigError(f"Loader build must be 'latest', 'recommended' or a build id, got {self.build!r}")


@dataclass(frozen=True)
class ForgeConfig(LoaderConfig):
    type: str = 'forge'
    verify_installer: bool = True


@dataclass(frozen=True)
class NeoForgeConfig(LoaderConfig):
    type: str = 'neoforge'
    verify_installer: bool = True


@dataclass(frozen=True)
class FabricConfig(LoaderConfig):
    type: str = 'fabric'


@dataclass(frozen=True)
class LegacyFabricConfig(LoaderConfig):
    type: str = 'legacyfabric'


@dataclass(frozen=True)
class QuiltConfig(LoaderConfig):
    type: str = 'quilt'


_LOADER_CONFIGS = {
    'forge': ForgeConfig,
    'neoforge': NeoForgeConfig,
    'fabric': FabricConfig,
    'legacyfabric': LegacyFabricConfig,
    'quilt': QuiltConfig,
}


def loader_config_from_dict(raw: Dict[str, Any]) -> LoaderConfig:
    loader_type = str(raw.get('type', '')).lower()
    config_class = _LOADER_CONFIGS.get(loader_type)
    if config_class is None:
        raise ConfigError(f"Loader {raw.get('type')} not found")
    kwargs: Dict[str, Any] = {'build': raw.get('build', 'latest')}
    if 'verify_installer' in raw and config_class in (ForgeConfig, NeoForgeConfig):
        kwargs['verify_installer'] = bool(raw['verify_installer'])
    return config_class(**kwargs)


@dataclass(frozen=True)
class LauncherOptions:
    path: pathlib.Path
    version: str = 'latest_release'
    instance: Optional[str] = None
    java_path: Optional[str] = None
    download_concurrency: int = 5
    timeout: float = 10.0
    verify: bool = False
    ignored: Tuple[str, ...] = ()
    extra_files_url: Optional[str] = None
    features: Dict[str, bool] = field(default_factory=dict)
    intel_enabled_mac: bool = False
    loader: Optional[LoaderConfig] = None
    strict_processor_tokens: bool = True
    continue_on_processor_failure: bool = False
    endpoints: Endpoints = field(default_factory=Endpoints)
    loader_endpoints: LoaderEndpoints = field(default_factory=LoaderEndpoints)

    def __post_init__(self) -> None:
        if not isinstance(self.download_concurrency, int) or isinstance(self.download_concurrency, bool):
            raise ConfigError(f"download_concurrency must be an integer, got {self.download_concurrency!r}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")

    @property
    def game_dir(self) -> pathlib.Path:
        if self.instance:
            return self.path / 'instances' / self.instance
        return self.path

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LauncherOptions":
        if 'path' not in raw:
            raise ConfigError("Launcher options require a 'path'")
        loader_raw = raw.get('loader')
        loader = None
        if isinstance(loader_raw, dict) and loader_raw.get('enable', True) and loader_raw.get('type'):
            loader = loader_config_from_dict(loader_raw)

        endpoints = Endpoints(**raw['endpoints']) if isinstance(raw.get('endpoints'), dict) else Endpoints()
        loader_endpoints = LoaderEndpoints()
        if isinstance(raw.get('loader_endpoints'), dict):
            overrides = dict(raw['loader_endpoints'])
            if 'mirrors' in overrides:
                overrides['mirrors'] = tuple(overrides['mirrors'])
            loader_endpoints = LoaderEndpoints(**overrides)

        try:
            return cls(
                path=pathlib.Path(raw['path']).resolve(),
                version=str(raw.get('version', 'latest_release')),
                instance=raw.get('instance') or None,
                java_path=raw.get('java_path') or None,
                download_concurrency=int(raw.get('download_concurrency', 5)),
                timeout=float(raw.get('timeout', 10.0)),
                verify=bool(raw.get('verify', False)),
                ignored=tuple(raw.get('ignored', ())),
                extra_files_url=raw.get('extra_files_url') or None,
                features=dict(raw.get('features', {})),
                intel_enabled_mac=bool(raw.get('intel_enabled_mac', False)),
                loader=loader,
                strict_processor_tokens=bool(raw.get('strict_processor_tokens', True)),
                continue_on_processor_failure=bool(raw.get('continue_on_processor_failure', False)),
                endpoints=endpoints,
                loader_endpoints=loader_endpoints,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid launcher options: {e}")


def load_options(config_path: Union[str, pathlib.Path]) -> LauncherOptions:
    """Loads launcher options from a JSON file, expanding ':thisdir:' to the file's directory."""
    config_path = pathlib.Path(config_path).resolve()
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"{config_path.name} not found in {config_path.parent}")
    except json.JSONDecodeError as e:
        raise ConfigError(f"Error parsing {config_path.name}: {e}")
    if not isinstance(raw, dict):
        raise ConfigError(f"{config_path.name} must contain a JSON object")

    replacements = {':thisdir:': str(config_path.parent)}
    patched = {key: replace_text(value, replacements) for key, value in raw.items()}
    log.info(f"Loaded launcher options from {config_path}")
    return LauncherOptions.from_dict(patched)
