"""
Configuration for Sidecar Bootstrap
"""
import os
import tempfile
from typing import Optional, Tuple
from dotenv import load_dotenv

load_dotenv()


class Config:
    """Configuration class for the bootstrap orchestrator itself.

    The variables handed to the auxiliary services (UUID, NEZHA_SERVER, ...)
    are resolved separately by src.core.environment.
    """

    # Fixed grace interval between starting the auxiliary services and
    # delegating to the primary application (seconds)
    READY_WAIT_SECONDS: float = float(os.getenv("BOOTSTRAP_READY_WAIT", "8"))

    # Where downloaded executables are cached (default: platform temp dir)
    CACHE_DIR: str = os.getenv("BOOTSTRAP_CACHE_DIR") or tempfile.gettempdir()

    # Primary application entry point, "package.module:callable"
    ENTRY_POINT: Optional[str] = os.getenv("BOOTSTRAP_ENTRY_POINT")
    APP_NAME: str = os.getenv("BOOTSTRAP_APP_NAME", "application")

    # Download timeouts (seconds). A read timeout of 0 waits forever.
    FETCH_CONNECT_TIMEOUT: float = float(os.getenv("BOOTSTRAP_FETCH_CONNECT_TIMEOUT", "30"))
    FETCH_TIMEOUT: float = float(os.getenv("BOOTSTRAP_FETCH_TIMEOUT", "300"))

    # Oldest interpreter the bootstrap agrees to run on
    MIN_PYTHON: Tuple[int, int] = (3, 9)

    # Debug mode (set BOOTSTRAP_DEBUG=true to enable)
    DEBUG: bool = os.getenv("BOOTSTRAP_DEBUG", "").lower() in ("true", "1", "yes")

    @classmethod
    def validate(cls) -> bool:
        """Validate configuration"""
        if cls.READY_WAIT_SECONDS < 0:
            print("[CONFIG] Error: BOOTSTRAP_READY_WAIT must not be negative")
            return False
        if cls.FETCH_CONNECT_TIMEOUT <= 0 or cls.FETCH_TIMEOUT < 0:
            print("[CONFIG] Error: download timeouts must be positive (read timeout may be 0)")
            return False
        return True

    @classmethod
    def fetch_timeout(cls) -> Tuple[float, Optional[float]]:
        """(connect, read) timeout tuple in the form requests expects"""
        return (cls.FETCH_CONNECT_TIMEOUT, cls.FETCH_TIMEOUT or None)
