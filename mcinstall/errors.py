from typing import Iterable, Optional, Sequence


class InstallerError(Exception):
    """Base class for every failure raised by the installation pipeline."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ConfigError(InstallerError):
    """Invalid launcher options or an unresolvable processor argument."""


class ResolutionError(InstallerError):
    """A requested version or build does not exist."""

    def __init__(self, detail: str, available: Optional[Iterable[str]] = None):
        self.available = list(available or [])
        if self.available:
            detail = f"{detail}, Available builds: {', '.join(self.available)}"
        super().__init__(detail)


class IntegrityError(InstallerError):
    """A file's checksum does not match the declared one. The file is gone by the time this is raised."""

    def __init__(self, path, expected: str, actual: str):
        super().__init__(f"Checksum mismatch for {path}. Expected {expected}, got {actual}")
        self.path = path
        self.expected = expected
        self.actual = actual


class NetworkError(InstallerError):
    def __init__(self, url: str, detail: str, status: Optional[int] = None):
        super().__init__(f"Failed to fetch {url}: {detail}")
        self.url = url
        self.status = status


class ArchiveError(InstallerError):
    def __init__(self, archive, entry: Optional[str], detail: Optional[str] = None):
        if detail is None:
            detail = f"Entry '{entry}' not found in {archive}"
        super().__init__(detail)
        self.archive = archive
        self.entry = entry


class ProcessError(InstallerError):
    def __init__(self, args: Sequence[str], returncode: int):
        super().__init__(f"Process {args[0] if args else '?'} exited with code {returncode}")
        self.args_list = list(args)
        self.returncode = returncode


class OperationCancelled(InstallerError):
    """Raised when a run is cancelled. Always terminal for that run."""

    def __init__(self, reason: str = "cancelled"):
        super().__init__(reason)
        self.reason = reason
