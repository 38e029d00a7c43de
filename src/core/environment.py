"""
Environment Resolver
Builds the effective configuration handed to the auxiliary services:
compiled-in defaults overridden by whitelisted environment variables.
"""
import os
from collections import OrderedDict
from types import MappingProxyType
from typing import Mapping, Optional

EffectiveConfig = Mapping[str, str]

DEFAULTS: "OrderedDict[str, str]" = OrderedDict([
    # Identity
    ("UUID", "67535146-0fbf-480b-8e4f-0a6d681119c9"),
    ("FILE_PATH", "./world"),
    ("NAME", "node-1"),
    # HY2 proxy
    ("HY2_PORT", "35442"),
    # Nezha monitoring agent
    ("NEZHA_SERVER", "tta.wahaaz.xx.kg:80"),
    ("NEZHA_KEY", "OZMtCS6G39UpEgRvzRNXjS7iDNBRmTsI"),
    ("NEZHA_TLS", "false"),
])

# Only these names are ever read from the environment
WHITELIST = tuple(DEFAULTS)

SECRET_KEYS = frozenset({"UUID", "NEZHA_KEY"})
MASK_PREFIX = 2
MASK_PREFIX_MIN = 8


def resolve(environ: Optional[Mapping[str, str]] = None) -> EffectiveConfig:
    """
    Resolve the effective configuration

    Args:
        environ: Environment to read (default: os.environ)

    Returns:
        Read-only ordered mapping containing exactly the whitelisted keys
    """
    if environ is None:
        environ = os.environ

    resolved = OrderedDict(DEFAULTS)
    for key in WHITELIST:
        value = environ.get(key)
        if value is not None and value.strip():
            resolved[key] = value
    return MappingProxyType(resolved)


def parse_bool(value: Optional[str]) -> bool:
    """Only "true" (any case) is true; anything else, including None, is false"""
    return value is not None and value.strip().lower() == "true"


def redact(config: EffectiveConfig) -> "OrderedDict[str, str]":
    """
    Copy of config with secret values masked for display

    Values of MASK_PREFIX_MIN characters or fewer are fully hidden; longer
    ones keep a MASK_PREFIX-character prefix.
    """
    masked = OrderedDict()
    for key, value in config.items():
        if key not in SECRET_KEYS or not value:
            masked[key] = value
        elif len(value) <= MASK_PREFIX_MIN:
            masked[key] = "****"
        else:
            masked[key] = value[:MASK_PREFIX] + "*" * (len(value) - MASK_PREFIX)
    return masked
