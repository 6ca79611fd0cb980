"""Automation capability interface shared by every platform backend."""

import asyncio
import base64
import functools
import logging
import tempfile
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, NamedTuple, Optional, Sequence
from pydantic import BaseModel, Field
from ..core.errors import AutomationUnavailable, JumpCodeError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0
MAX_SCREENSHOT_BYTES = 5 * 1024 * 1024
SCREENSHOT_DIR = Path(tempfile.gettempdir()) / "jump-code-screenshots"
DEFAULT_SCREEN_SIZE = (1920, 1080)


class ActionResult(BaseModel):
    """Outcome of one automation call."""
    success: bool
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def ok(cls, **data) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)


class AutomationCapability(BaseModel):
    """Host utilities discovered at startup; None where nothing was found."""
    platform: str
    screenshot: Optional[str] = None
    pointer: Optional[str] = None
    keyboard: Optional[str] = None
    clipboard: Optional[str] = None
    windowing: Optional[str] = None

    @property
    def available(self) -> bool:
        return any([self.screenshot, self.pointer, self.keyboard, self.clipboard, self.windowing])


class CommandOutput(NamedTuple):
    returncode: int
    stdout: str
    stderr: str


class CommandError(JumpCodeError):
    """A host utility exited non-zero or timed out."""


Runner = Callable[[Sequence[str], Optional[str], float], Awaitable[CommandOutput]]


async def run_command(argv: Sequence[str], input_text: Optional[str] = None,
                      timeout: float = DEFAULT_TIMEOUT) -> CommandOutput:
    """Run ``argv`` without a shell, killing it when ``timeout`` expires."""
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if input_text is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        raise AutomationUnavailable(f"{argv[0]} is not installed")

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input_text.encode("utf-8") if input_text is not None else None),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise CommandError(f"{argv[0]} timed out after {timeout:g} seconds")
    except asyncio.CancelledError:
        process.kill()
        await process.wait()
        raise

    return CommandOutput(
        process.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )


def action(func):
    """Turn a backend coroutine returning data into one returning ActionResult."""
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> ActionResult:
        try:
            self.ensure_ready()
            data = await func(self, *args, **kwargs)
        except (AutomationUnavailable, CommandError, OSError) as e:
            logger.debug("%s.%s failed: %s", type(self).__name__, func.__name__, e)
            return ActionResult.fail(str(e))
        return ActionResult.ok(**(data or {}))
    return wrapper


class AutomationBackend:
    """Pointer, keyboard, screen, clipboard and window control for one platform.

    Operations the platform cannot perform report AutomationUnavailable as a
    failed ActionResult.
    """

    platform_name = "unknown"
    primary_modifier = "ctrl"

    def __init__(self, capability: Optional[AutomationCapability] = None,
                 runner: Optional[Runner] = None, timeout: float = DEFAULT_TIMEOUT,
                 screenshot_dir: Optional[Path] = None,
                 max_screenshot_bytes: int = MAX_SCREENSHOT_BYTES):
        self.capability = capability or AutomationCapability(platform=self.platform_name)
        self.runner = runner or run_command
        self.timeout = timeout
        self.screenshot_dir = screenshot_dir or SCREENSHOT_DIR
        self.max_screenshot_bytes = max_screenshot_bytes

    @property
    def available(self) -> bool:
        return self.capability.available

    def ensure_ready(self) -> None:
        """Raise AutomationUnavailable when the environment cannot be automated."""

    def require(self, kind: str, hint: str) -> str:
        tool = getattr(self.capability, kind)
        if not tool:
            raise AutomationUnavailable(f"No {kind} utility available. {hint}")
        return tool

    async def run(self, *argv: str, input_text: Optional[str] = None) -> str:
        """Run a host utility and return stdout; non-zero exit raises CommandError."""
        logger.debug("automation: %s", argv[0])
        output = await self.runner(list(argv), input_text, self.timeout)
        if output.returncode != 0:
            detail = output.stderr.strip() or f"exit code {output.returncode}"
            raise CommandError(f"{argv[0]} failed: {detail}")
        return output.stdout

    def new_screenshot_path(self, prefix: str = "screenshot") -> Path:
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        return self.screenshot_dir / f"{prefix}_{int(time.time() * 1000)}.png"

    def load_screenshot(self, path: Path) -> Dict[str, Any]:
        """Read a capture from disk into the path/base64 payload."""
        if not path.exists():
            raise CommandError("Screen capture produced no file")
        size = path.stat().st_size
        if size > self.max_screenshot_bytes:
            raise CommandError(f"Screen capture is too large ({size} bytes)")
        return {
            "path": str(path),
            "base64": base64.b64encode(path.read_bytes()).decode("ascii"),
            "media_type": "image/png",
            "size": size,
        }

    # Screen

    @action
    async def screenshot(self, window: Optional[str] = None) -> Dict[str, Any]:
        path = self.new_screenshot_path("window" if window else "screenshot")
        await self._capture(path, window)
        return self.load_screenshot(path)

    async def _capture(self, path: Path, window: Optional[str]) -> None:
        raise AutomationUnavailable(f"Screen capture is not supported on {self.platform_name}")

    @action
    async def screen_size(self) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Screen size is not available on {self.platform_name}")

    # Pointer

    @action
    async def move(self, x: int, y: int) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Pointer control is not supported on {self.platform_name}")

    @action
    async def click(self, x: Optional[int] = None, y: Optional[int] = None,
                    button: str = "left", clicks: int = 1) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Pointer control is not supported on {self.platform_name}")

    async def double_click(self, x: Optional[int] = None, y: Optional[int] = None) -> ActionResult:
        return await self.click(x, y, clicks=2)

    async def right_click(self, x: Optional[int] = None, y: Optional[int] = None) -> ActionResult:
        return await self.click(x, y, button="right")

    @action
    async def drag(self, from_x: int, from_y: int, to_x: int, to_y: int) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Pointer control is not supported on {self.platform_name}")

    @action
    async def scroll(self, amount: int = 3, direction: str = "down") -> Dict[str, Any]:
        raise AutomationUnavailable(f"Scrolling is not supported on {self.platform_name}")

    @action
    async def mouse_position(self) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Pointer position is not available on {self.platform_name}")

    # Keyboard

    @action
    async def type_text(self, text: str) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Keyboard control is not supported on {self.platform_name}")

    @action
    async def key(self, key: str, modifiers: Optional[List[str]] = None) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Keyboard control is not supported on {self.platform_name}")

    async def copy(self) -> ActionResult:
        return await self.key("c", [self.primary_modifier])

    async def paste(self) -> ActionResult:
        return await self.key("v", [self.primary_modifier])

    # Clipboard

    @action
    async def get_clipboard(self) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Clipboard access is not supported on {self.platform_name}")

    @action
    async def set_clipboard(self, text: str) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Clipboard access is not supported on {self.platform_name}")

    # Windows

    @action
    async def list_windows(self) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Window listing is not supported on {self.platform_name}")

    @action
    async def focus_window(self, name: str) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Window focus is not supported on {self.platform_name}")

    @action
    async def active_window(self) -> Dict[str, Any]:
        raise AutomationUnavailable(f"Active window is not available on {self.platform_name}")


class NullBackend(AutomationBackend):
    """Used when no platform backend applies; every call fails cleanly."""

    def __init__(self, reason: str = "Desktop automation is not available on this system", **kwargs):
        super().__init__(**kwargs)
        self.reason = reason

    def ensure_ready(self) -> None:
        raise AutomationUnavailable(self.reason)
