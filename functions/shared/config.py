"""
Environment-driven configuration for provider rate windows and retries.

Rate windows are read from ``RATE_LIMIT_<PROVIDER>`` variables in the form
``"<capacity>/<window_seconds>"``, e.g. ``RATE_LIMIT_NPM_REGISTRY=100/60``.
Missing or invalid values fall back to the defaults below.
"""

import logging
import os
from typing import Dict, Mapping, Optional

from shared.rate_limiter import Provider, RateWindowConfig
from shared.retry import RetryConfig

logger = logging.getLogger(__name__)

DEFAULT_RATE_WINDOWS: Dict[Provider, RateWindowConfig] = {
    Provider.NPM_REGISTRY: RateWindowConfig(100, 60.0),
    Provider.NPM_DOWNLOADS: RateWindowConfig(100, 60.0),
    Provider.OSV: RateWindowConfig(1000, 60.0),
    Provider.GITHUB_ADVISORIES: RateWindowConfig(5000, 3600.0),
    Provider.GITHUB_REPO: RateWindowConfig(5000, 3600.0),
    Provider.OSS_INDEX: RateWindowConfig(100, 60.0),
    Provider.NPM_AUDIT: RateWindowConfig(30, 60.0),
    Provider.RESEARCH_DATASET: RateWindowConfig(10, 60.0),
}

DEFAULT_RETRY_CONFIG = RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0)

# GitHub secondary limits recover slowly
GITHUB_RETRY_CONFIG = RetryConfig(max_retries=3, base_delay=2.0, max_delay=60.0)

DEFAULT_RETRY_CONFIGS: Dict[Provider, RetryConfig] = {
    Provider.GITHUB_ADVISORIES: GITHUB_RETRY_CONFIG,
    Provider.GITHUB_REPO: GITHUB_RETRY_CONFIG,
}


def _env_name(provider: Provider) -> str:
    return f"RATE_LIMIT_{provider.name}"


def parse_rate_window(value: str) -> RateWindowConfig:
    """Parse ``"<capacity>/<window_seconds>"`` into a window config."""
    capacity, _, window = value.partition("/")
    if not window:
        raise ValueError(f"Expected '<capacity>/<window_seconds>', got {value!r}")
    return RateWindowConfig(int(capacity.strip()), float(window.strip()))


def load_rate_limit_config(environ: Optional[Mapping[str, str]] = None) -> Dict[Provider, RateWindowConfig]:
    """Build the provider window table from defaults and environment overrides."""
    environ = os.environ if environ is None else environ
    config = dict(DEFAULT_RATE_WINDOWS)

    for provider in Provider:
        raw = environ.get(_env_name(provider))
        if not raw:
            continue
        try:
            config[provider] = parse_rate_window(raw)
        except ValueError as e:
            logger.warning(f"Ignoring invalid {_env_name(provider)}={raw!r}: {e}")

    return config


def _env_number(environ: Mapping[str, str], name: str, default, cast):
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}")
        return default


def load_retry_config(environ: Optional[Mapping[str, str]] = None) -> RetryConfig:
    """Default retry configuration, overridable via RETRY_* variables."""
    environ = os.environ if environ is None else environ
    max_retries = _env_number(environ, "RETRY_MAX_RETRIES", DEFAULT_RETRY_CONFIG.max_retries, int)
    if max_retries < 0:
        logger.warning(f"Clamping RETRY_MAX_RETRIES={max_retries} to 0")
        max_retries = 0
    return RetryConfig(
        max_retries=max_retries,
        base_delay=_env_number(environ, "RETRY_BASE_DELAY", DEFAULT_RETRY_CONFIG.base_delay, float),
        max_delay=_env_number(environ, "RETRY_MAX_DELAY", DEFAULT_RETRY_CONFIG.max_delay, float),
    )


def env_flag(name: str, default: bool = False, environ: Optional[Mapping[str, str]] = None) -> bool:
    """Read a boolean feature flag ("true"/"1"/"yes")."""
    environ = os.environ if environ is None else environ
    raw = environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def env_int(name: str, default: int, environ: Optional[Mapping[str, str]] = None) -> int:
    environ = os.environ if environ is None else environ
    return _env_number(environ, name, default, int)
