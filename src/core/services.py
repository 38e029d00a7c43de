"""
Auxiliary service definitions
Download locations and command lines for the two companion services.
"""
from pathlib import Path
from typing import List, Optional, Tuple, Union

from .artifacts import ArchitectureTarget, ArtifactDescriptor
from .environment import EffectiveConfig, parse_bool
from .errors import MissingAuxConfig

HY2 = "HY2"
NEZHA = "Nezha Agent"

HY2_URLS = {
    ArchitectureTarget.AMD64: "https://amd64.ssss.nyc.mn/s-box",
    ArchitectureTarget.ARM64: "https://arm64.ssss.nyc.mn/s-box",
}

NEZHA_URLS = {
    ArchitectureTarget.AMD64: "https://github.com/nezhahq/agent/releases/latest/download/nezha-agent_linux_amd64",
    ArchitectureTarget.ARM64: "https://github.com/nezhahq/agent/releases/latest/download/nezha-agent_linux_arm64",
}

CacheDir = Optional[Union[str, Path]]


def hy2_descriptor(cache_dir: CacheDir = None) -> ArtifactDescriptor:
    return ArtifactDescriptor.for_name("sbx", HY2_URLS, cache_dir)


def nezha_descriptor(cache_dir: CacheDir = None) -> ArtifactDescriptor:
    return ArtifactDescriptor.for_name("nezha-agent", NEZHA_URLS, cache_dir)


def nezha_settings(config: EffectiveConfig) -> Tuple[str, str, bool]:
    """
    Extract (endpoint, secret, tls) for the Nezha agent

    Raises:
        MissingAuxConfig: endpoint or secret is absent or blank
    """
    endpoint = config.get("NEZHA_SERVER") or ""
    secret = config.get("NEZHA_KEY") or ""
    missing = [key for key, value in (("NEZHA_SERVER", endpoint), ("NEZHA_KEY", secret)) if not value.strip()]
    if missing:
        raise MissingAuxConfig(NEZHA, missing)
    return endpoint, secret, parse_bool(config.get("NEZHA_TLS"))


def build_nezha_command(path: Union[str, Path], endpoint: str, secret: str, tls: bool) -> List[str]:
    """Agent argument vector: <path> -s <endpoint> -p <secret> [--tls]"""
    command = [str(path), "-s", endpoint, "-p", secret]
    if tls:
        command.append("--tls")
    return command


def build_hy2_command(path: Union[str, Path]) -> List[str]:
    # sing-box reads its settings from the environment
    return [str(path)]
