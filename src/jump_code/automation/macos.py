"""macOS automation through screencapture, cliclick, osascript and pbcopy/pbpaste."""

from pathlib import Path
from typing import Any, Dict, List, Optional
from .base import AutomationBackend, CommandError, action

KEY_CODES = {
    "return": 36, "enter": 36, "tab": 48, "space": 49, "delete": 51,
    "backspace": 51, "escape": 53, "esc": 53, "left": 123, "right": 124,
    "down": 125, "up": 126,
}
MODIFIERS = {
    "ctrl": "control down", "control": "control down", "alt": "option down",
    "option": "option down", "shift": "shift down", "cmd": "command down",
    "command": "command down", "super": "command down", "meta": "command down",
}

POINTER_HINT = "Install cliclick (brew install cliclick)."

LIST_WINDOWS_SCRIPT = """
tell application "System Events"
  set windowList to {}
  repeat with proc in (every process whose background only is false)
    repeat with win in (every window of proc)
      set end of windowList to (name of proc) & ": " & (name of win)
    end repeat
  end repeat
  return windowList
end tell
"""


def applescript_string(text: str) -> str:
    """Quote ``text`` as an AppleScript string literal."""
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


class MacOSBackend(AutomationBackend):
    """macOS backend."""

    platform_name = "darwin"
    primary_modifier = "cmd"

    async def osascript(self, script: str) -> str:
        return await self.run("osascript", "-e", script)

    async def _capture(self, path: Path, window: Optional[str]) -> None:
        self.require("screenshot", "screencapture is missing from this system.")
        if window:
            window_id = (await self.osascript(
                f"tell application {applescript_string(window)} to id of window 1"
            )).strip()
            if not window_id:
                raise CommandError(f"No window for application '{window}'")
            await self.run("screencapture", "-x", "-l", window_id, str(path))
        else:
            await self.run("screencapture", "-x", str(path))

    @action
    async def screen_size(self) -> Dict[str, Any]:
        bounds = await self.osascript('tell application "Finder" to get bounds of window of desktop')
        try:
            _, _, width, height = [int(part.strip()) for part in bounds.split(",")]
        except ValueError:
            raise CommandError(f"Could not parse screen bounds: {bounds.strip()}")
        return {"width": width, "height": height}

    @action
    async def move(self, x: int, y: int) -> Dict[str, Any]:
        self.require("pointer", POINTER_HINT)
        await self.run("cliclick", f"m:{x},{y}")
        return {"x": x, "y": y}

    @action
    async def click(self, x: Optional[int] = None, y: Optional[int] = None,
                    button: str = "left", clicks: int = 1) -> Dict[str, Any]:
        self.require("pointer", POINTER_HINT)
        if button == "right":
            command = "rc"
        elif clicks == 2:
            command = "dc"
        elif clicks == 3:
            command = "tc"
        else:
            command = "c"
        where = f"{x},{y}" if x is not None and y is not None else "."
        await self.run("cliclick", f"{command}:{where}")
        return {"x": x, "y": y, "button": button, "clicks": clicks}

    @action
    async def drag(self, from_x: int, from_y: int, to_x: int, to_y: int) -> Dict[str, Any]:
        self.require("pointer", POINTER_HINT)
        await self.run("cliclick", f"dd:{from_x},{from_y}", f"du:{to_x},{to_y}")
        return {"from": {"x": from_x, "y": from_y}, "to": {"x": to_x, "y": to_y}}

    @action
    async def scroll(self, amount: int = 3, direction: str = "down") -> Dict[str, Any]:
        self.require("pointer", POINTER_HINT)
        key = {"up": "arrow-up", "down": "arrow-down", "left": "arrow-left", "right": "arrow-right"}.get(
            direction, "arrow-down"
        )
        await self.run("cliclick", *[f"kp:{key}"] * abs(amount))
        return {"amount": amount, "direction": direction}

    @action
    async def mouse_position(self) -> Dict[str, Any]:
        self.require("pointer", POINTER_HINT)
        output = (await self.run("cliclick", "p:.")).strip()
        try:
            x, y = [int(float(v)) for v in output.split(",")[:2]]
        except ValueError:
            raise CommandError(f"Could not parse pointer position: {output}")
        return {"x": x, "y": y}

    @action
    async def type_text(self, text: str) -> Dict[str, Any]:
        self.require("keyboard", "osascript is missing from this system.")
        await self.osascript(f'tell application "System Events" to keystroke {applescript_string(text)}')
        return {"text": text}

    @action
    async def key(self, key: str, modifiers: Optional[List[str]] = None) -> Dict[str, Any]:
        self.require("keyboard", "osascript is missing from this system.")
        modifiers = modifiers or []
        code = KEY_CODES.get(key.lower())
        stroke = f"key code {code}" if code is not None else f"keystroke {applescript_string(key)}"
        if modifiers:
            using = ", ".join(MODIFIERS.get(m.lower(), f"{m.lower()} down") for m in modifiers)
            stroke += f" using {{{using}}}"
        await self.osascript(f'tell application "System Events" to {stroke}')
        return {"key": key, "modifiers": modifiers}

    @action
    async def get_clipboard(self) -> Dict[str, Any]:
        self.require("clipboard", "pbpaste is missing from this system.")
        return {"content": await self.run("pbpaste")}

    @action
    async def set_clipboard(self, text: str) -> Dict[str, Any]:
        self.require("clipboard", "pbcopy is missing from this system.")
        await self.run("pbcopy", input_text=text)
        return {"length": len(text)}

    @action
    async def list_windows(self) -> Dict[str, Any]:
        self.require("windowing", "osascript is missing from this system.")
        output = (await self.osascript(LIST_WINDOWS_SCRIPT)).strip()
        windows = [{"name": name} for name in output.split(", ") if name]
        return {"windows": windows}

    @action
    async def focus_window(self, name: str) -> Dict[str, Any]:
        self.require("windowing", "osascript is missing from this system.")
        await self.osascript(f"tell application {applescript_string(name)} to activate")
        return {"window": name}

    @action
    async def active_window(self) -> Dict[str, Any]:
        self.require("windowing", "osascript is missing from this system.")
        name = await self.osascript(
            'tell application "System Events" to get name of first application process whose frontmost is true'
        )
        return {"name": name.strip()}
