"""Passive device fingerprint collection."""

import locale
import logging
import os
import platform
import shutil

import cv2
import netifaces

from .. import __version__
from ..types import DeviceInfo

logger = logging.getLogger(__name__)

UNKNOWN = "Unknown"

# Interface name prefixes mapped to a connection type
_CONNECTION_PREFIXES: tuple[tuple[str, str], ...] = (
    ("wlan", "wifi"),
    ("wl", "wifi"),
    ("eth", "ethernet"),
    ("en", "ethernet"),
    ("wwan", "cellular"),
    ("ppp", "cellular"),
)


def user_agent() -> str:
    return f"waypost-agent/{__version__} Python/{platform.python_version()} ({platform.system()})"


def detect_language() -> str:
    lang = os.environ.get("LANG") or locale.getlocale()[0]
    if not lang:
        return UNKNOWN
    return lang.split(".")[0].replace("_", "-")


def detect_window_size() -> str:
    size = shutil.get_terminal_size(fallback=(0, 0))
    if not size.columns or not size.lines:
        return UNKNOWN
    return f"{size.columns}x{size.lines}"


def detect_memory_gb() -> float | None:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return None
    if pages <= 0 or page_size <= 0:
        return None
    return round(pages * page_size / (1024 ** 3), 1)


def detect_connection_type() -> str | None:
    """Classify the default-route interface by name."""
    try:
        default = netifaces.gateways().get("default", {}).get(netifaces.AF_INET)
    except (OSError, ValueError) as e:
        logger.debug("Could not read gateways: %s", e)
        return None
    if not default:
        return None
    interface = str(default[1])
    for prefix, kind in _CONNECTION_PREFIXES:
        if interface.startswith(prefix):
            return kind
    return "unknown"


def detect_gpu_renderer() -> str | None:
    try:
        if not cv2.ocl.haveOpenCL():
            return None
        name = cv2.ocl.Device.getDefault().name()
    except cv2.error as e:
        logger.debug("OpenCL query failed: %s", e)
        return None
    return name or None


def collect_device_info(
    screen_resolution: str = UNKNOWN,
    touch_support: bool = False,
) -> DeviceInfo:
    """
    Collect the device fingerprint.

    Any attribute that cannot be determined is left out (optional fields)
    or reported as "Unknown" (required fields). Never raises.

    Args:
        screen_resolution: Configured display resolution, if any
        touch_support: Whether the device has a touch input
    """
    return DeviceInfo(
        user_agent=user_agent(),
        platform=platform.system() or UNKNOWN,
        screen_resolution=screen_resolution or UNKNOWN,
        window_size=detect_window_size(),
        language=detect_language(),
        touch_support=touch_support,
        cores=os.cpu_count(),
        memory_gb=detect_memory_gb(),
        connection_type=detect_connection_type(),
        gpu_renderer=detect_gpu_renderer(),
    )
