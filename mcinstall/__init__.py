from .config import LauncherOptions, load_options
from .errors import (
    ArchiveError,
    ConfigError,
    InstallerError,
    IntegrityError,
    NetworkError,
    OperationCancelled,
    ProcessError,
    ResolutionError,
)
from .events import EventBus
from .orchestrator import InstallationOrchestrator, LaunchPlan

__version__ = '0.1.0'
