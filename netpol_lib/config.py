"""
Runtime settings for the NetworkPolicy test planner

Settings come from environment variables so the same values drive the CLI and
the (external) test runner. CLOUD_PROVIDER and CNI_PLUGIN override detection;
TEST_TIMEOUT and MAX_WORKERS override the provider-tuned defaults.
"""

# Standard library imports
import logging
import os
from dataclasses import dataclass
from typing import Optional

# Local imports
from .k8s_utils import DEFAULT_REQUEST_TIMEOUT

# Set up module logger
log = logging.getLogger("netpol-planner.config")

DEFAULT_RESULTS_DIR = "./results"


@dataclass(frozen=True)
class Settings:
    cloud_provider: Optional[str] = None
    cni_plugin: Optional[str] = None
    test_timeout: Optional[int] = None
    max_workers: Optional[int] = None
    results_dir: str = DEFAULT_RESULTS_DIR
    request_timeout: int = DEFAULT_REQUEST_TIMEOUT
    alert_webhook: Optional[str] = None


def _positive_int(environ, name):
    raw = environ.get(name, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings(environ=None):
    """
    Build Settings from environment variables.

    Args:
        environ (dict): Mapping to read from, defaults to os.environ

    Returns:
        Settings: Parsed settings

    Raises:
        ValueError: When a numeric variable is not a positive integer
    """
    if environ is None:
        environ = os.environ

    settings = Settings(
        cloud_provider=environ.get("CLOUD_PROVIDER") or None,
        cni_plugin=environ.get("CNI_PLUGIN") or None,
        test_timeout=_positive_int(environ, "TEST_TIMEOUT"),
        max_workers=_positive_int(environ, "MAX_WORKERS"),
        results_dir=environ.get("RESULTS_DIR") or DEFAULT_RESULTS_DIR,
        request_timeout=_positive_int(environ, "KUBE_REQUEST_TIMEOUT") or DEFAULT_REQUEST_TIMEOUT,
        alert_webhook=environ.get("REGRESSION_ALERT_WEBHOOK") or None,
    )
    log.debug(f"Loaded settings: {settings}")
    return settings
