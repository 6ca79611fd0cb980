"""Desktop automation layer: one backend per platform, chosen once at startup."""

import logging
import shutil
import sys
from typing import Callable, Dict, List, Optional, Type
from .base import (
    ActionResult,
    AutomationBackend,
    AutomationCapability,
    NullBackend,
    run_command,
)
from .linux import LinuxBackend
from .macos import MacOSBackend
from .windows import WindowsBackend
from .actions import execute_action, parse_action_blocks, should_capture_screen

logger = logging.getLogger(__name__)

# Ordered candidates per capability; the first one found on PATH wins
PROBES: Dict[str, Dict[str, List[str]]] = {
    "linux": {
        "screenshot": ["gnome-screenshot", "scrot", "import"],
        "pointer": ["xdotool", "xte"],
        "keyboard": ["xdotool", "xte"],
        "clipboard": ["xclip", "xsel"],
        "windowing": ["wmctrl"],
    },
    "darwin": {
        "screenshot": ["screencapture"],
        "pointer": ["cliclick"],
        "keyboard": ["osascript"],
        "clipboard": ["pbcopy"],
        "windowing": ["osascript"],
    },
    "win32": {
        "screenshot": ["powershell", "pwsh"],
        "pointer": ["powershell", "pwsh"],
        "keyboard": ["powershell", "pwsh"],
        "clipboard": ["powershell", "pwsh"],
        "windowing": ["powershell", "pwsh"],
    },
}

BACKENDS: Dict[str, Type[AutomationBackend]] = {
    "linux": LinuxBackend,
    "darwin": MacOSBackend,
    "win32": WindowsBackend,
}


def platform_key(platform: str) -> str:
    if platform.startswith("linux"):
        return "linux"
    if platform in ("win32", "cygwin"):
        return "win32"
    return platform


def probe_capabilities(platform: str, which: Callable[[str], Optional[str]] = shutil.which) -> AutomationCapability:
    """Resolve each capability to the first installed utility."""
    found = {}
    for kind, candidates in PROBES.get(platform, {}).items():
        found[kind] = next((name for name in candidates if which(name)), None)
    return AutomationCapability(platform=platform, **found)


def detect_backend(platform: Optional[str] = None,
                   which: Callable[[str], Optional[str]] = shutil.which,
                   **kwargs) -> AutomationBackend:
    """Pick the automation backend for ``platform`` (defaults to this host)."""
    key = platform_key(platform or sys.platform)
    backend_class = BACKENDS.get(key)
    if backend_class is None:
        logger.info("No automation backend for platform %s", key)
        return NullBackend(f"Desktop automation is not supported on {key}", **kwargs)

    capability = probe_capabilities(key, which)
    if not capability.available:
        logger.info("No automation utilities found for %s", key)
        return NullBackend(
            f"No desktop automation utilities found on {key}",
            capability=capability,
            **kwargs,
        )

    logger.debug("Automation capability: %s", capability.model_dump())
    return backend_class(capability=capability, **kwargs)


__all__ = [
    "ActionResult",
    "AutomationBackend",
    "AutomationCapability",
    "NullBackend",
    "LinuxBackend",
    "MacOSBackend",
    "WindowsBackend",
    "PROBES",
    "detect_backend",
    "probe_capabilities",
    "run_command",
    "execute_action",
    "parse_action_blocks",
    "should_capture_screen",
]
