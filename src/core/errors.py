"""
Error taxonomy for the bootstrap sequence

UnsupportedPlatform and FetchFailed abort the whole sequence.
MissingAuxConfig only causes the affected auxiliary service to be skipped.
"""
from typing import Iterable, Optional


class BootstrapError(Exception):
    """Base class for every error raised by the bootstrap core"""


class UnsupportedPlatform(BootstrapError):
    """Host CPU architecture has no published artifact"""

    def __init__(self, arch: str):
        self.arch = arch
        super().__init__(f"Unsupported arch: {arch}")


class FetchFailed(BootstrapError):
    """Downloading an artifact failed (network or filesystem error)"""

    def __init__(self, name: str, url: str, cause: Optional[BaseException] = None):
        self.name = name
        self.url = url
        self.cause = cause
        message = f"Failed to fetch {name} from {url}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class MissingAuxConfig(BootstrapError):
    """Required settings for an auxiliary service are absent or blank"""

    def __init__(self, service: str, missing: Iterable[str]):
        self.service = service
        self.missing = tuple(missing)
        super().__init__(f"{service} config missing: {', '.join(self.missing)}")


class DelegationFailure(BootstrapError):
    """The primary entry point could not be resolved or handed control"""


class ServiceAlreadyRunning(BootstrapError):
    """A process with the same logical name is already supervised"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"{name} is already running")
