"""
Artifact Cache
Guarantees a locally executable copy of an auxiliary service binary,
downloading the build for the host CPU architecture when it is missing.

Presence of the cache file is the only validity signal: no version or
checksum is recorded, and downloaded bytes are trusted as-is.
"""
import os
import platform
import stat
import tempfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Tuple, Union

import requests

from .errors import FetchFailed, UnsupportedPlatform
from ..utils.logger import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 64 * 1024
EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


class ArchitectureTarget(str, Enum):
    AMD64 = "amd64"
    ARM64 = "arm64"


_ARCH_ALIASES = (
    (("amd64", "x86_64"), ArchitectureTarget.AMD64),
    (("aarch64", "arm64"), ArchitectureTarget.ARM64),
)


def detect_architecture(raw: Optional[str] = None) -> ArchitectureTarget:
    """
    Map a host architecture string onto a supported target

    Args:
        raw: Architecture string (default: platform.machine())

    Raises:
        UnsupportedPlatform: if no alias is contained in the string
    """
    if raw is None:
        raw = platform.machine()
    arch = raw.lower()
    for aliases, target in _ARCH_ALIASES:
        if any(alias in arch for alias in aliases):
            return target
    raise UnsupportedPlatform(raw)


@dataclass(frozen=True)
class ArtifactDescriptor:
    """What to fetch and where to keep it"""
    name: str
    urls: Mapping[ArchitectureTarget, str] = field(hash=False)
    cache_path: Path

    @classmethod
    def for_name(
        cls,
        name: str,
        urls: Mapping[ArchitectureTarget, str],
        cache_dir: Optional[Union[str, Path]] = None,
    ) -> "ArtifactDescriptor":
        """Cache path is <cache_dir>/<name>, stable across runs"""
        base = Path(cache_dir) if cache_dir is not None else Path(tempfile.gettempdir())
        return cls(name=name, urls=dict(urls), cache_path=base / name)

    def url_for(self, target: ArchitectureTarget) -> str:
        try:
            return self.urls[target]
        except KeyError:
            raise UnsupportedPlatform(f"{target.value} (no {self.name} build)") from None


class ArtifactCache:
    """Downloads artifacts on first use and reuses them afterwards"""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: Optional[Tuple[float, Optional[float]]] = None,
        arch: Optional[str] = None,
    ):
        """
        Args:
            session: HTTP session to download with (default: new requests.Session)
            timeout: (connect, read) timeouts passed to requests
            arch: Override the detected host architecture
        """
        self.session = session or requests.Session()
        self.timeout = timeout
        self.arch = arch
        self.fetch_count = 0

    def ensure_local(self, descriptor: ArtifactDescriptor) -> Path:
        """
        Return the cached executable, downloading it if absent

        Raises:
            UnsupportedPlatform: host architecture is not supported
            FetchFailed: download or write failed
        """
        target = detect_architecture(self.arch)
        path = descriptor.cache_path

        if path.exists():
            logger.debug(f"Using cached {descriptor.name} at {path}")
            return path

        url = descriptor.url_for(target)
        logger.info(f"Downloading {descriptor.name} ({target.value}) from {url}")
        self._download(descriptor.name, url, path)
        return path

    def _download(self, name: str, url: str, path: Path) -> None:
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.fetch_count += 1
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", dir=str(path.parent))
                with os.fdopen(fd, "wb") as out:
                    for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                        if chunk:
                            out.write(chunk)
            os.chmod(tmp_name, os.stat(tmp_name).st_mode | EXECUTABLE_BITS)
            os.replace(tmp_name, path)
            tmp_name = None
        except (requests.exceptions.RequestException, OSError) as e:
            logger.error(f"Download of {name} failed: {e}")
            raise FetchFailed(name, url, e) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
        logger.info(f"{name} saved to {path}")
