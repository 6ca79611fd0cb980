"""X11 desktop automation through xdotool/xte, xclip/xsel, wmctrl and screenshot tools."""

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional
from .base import DEFAULT_SCREEN_SIZE, AutomationBackend, CommandError, action
from ..core.errors import AutomationUnavailable

BUTTONS = {"left": 1, "middle": 2, "right": 3}
SCROLL_BUTTONS = {"up": 4, "down": 5, "left": 6, "right": 7}

KEY_NAMES = {
    "enter": "Return", "return": "Return", "tab": "Tab", "esc": "Escape",
    "escape": "Escape", "space": "space", "backspace": "BackSpace",
    "delete": "Delete", "up": "Up", "down": "Down", "left": "Left",
    "right": "Right", "home": "Home", "end": "End", "pageup": "Page_Up",
    "pagedown": "Page_Down",
}
MODIFIER_NAMES = {
    "ctrl": "ctrl", "control": "ctrl", "alt": "alt", "shift": "shift",
    "super": "super", "cmd": "super", "meta": "super", "win": "super",
}
XTE_MODIFIERS = {"ctrl": "Control_L", "alt": "Alt_L", "shift": "Shift_L", "super": "Super_L"}

POINTER_HINT = "Install xdotool (or xautomation for xte)."
KEYBOARD_HINT = "Install xdotool (or xautomation for xte)."
CLIPBOARD_HINT = "Install xclip or xsel."
WINDOW_HINT = "Install wmctrl."
SCREENSHOT_HINT = "Install scrot, gnome-screenshot or ImageMagick."


def x_key_name(key: str) -> str:
    return KEY_NAMES.get(key.lower(), key)


class LinuxBackend(AutomationBackend):
    """Linux/X11 backend."""

    platform_name = "linux"

    def ensure_ready(self) -> None:
        if not (os.environ.get("DISPLAY") or os.environ.get("WAYLAND_DISPLAY")):
            raise AutomationUnavailable("No graphical display available (DISPLAY is not set)")

    async def _capture(self, path: Path, window: Optional[str]) -> None:
        tool = self.require("screenshot", SCREENSHOT_HINT)
        if window:
            if self.capability.pointer != "xdotool":
                raise AutomationUnavailable("Window capture needs xdotool to locate the window")
            found = (await self.run("xdotool", "search", "--name", window)).split()
            if not found:
                raise CommandError(f"No window matching '{window}'")
            if tool == "import":
                await self.run("import", "-window", found[0], str(path))
            else:
                await self.run("xdotool", "windowactivate", "--sync", found[0])
                if tool == "scrot":
                    await self.run("scrot", "-u", str(path))
                else:
                    await self.run("gnome-screenshot", "-w", "-f", str(path))
            return

        if tool == "gnome-screenshot":
            await self.run("gnome-screenshot", "-f", str(path))
        elif tool == "scrot":
            await self.run("scrot", str(path))
        else:
            await self.run("import", "-window", "root", str(path))

    @action
    async def screen_size(self) -> Dict[str, Any]:
        if self.capability.pointer == "xdotool":
            try:
                width, height = (await self.run("xdotool", "getdisplaygeometry")).split()[:2]
                return {"width": int(width), "height": int(height)}
            except (CommandError, AutomationUnavailable, ValueError):
                pass
        try:
            match = re.search(r"dimensions:\s+(\d+)x(\d+)", await self.run("xdpyinfo"))
        except (CommandError, AutomationUnavailable):
            match = None
        if match:
            return {"width": int(match.group(1)), "height": int(match.group(2))}
        width, height = DEFAULT_SCREEN_SIZE
        return {"width": width, "height": height, "estimated": True}

    @action
    async def move(self, x: int, y: int) -> Dict[str, Any]:
        tool = self.require("pointer", POINTER_HINT)
        if tool == "xdotool":
            await self.run("xdotool", "mousemove", str(x), str(y))
        else:
            await self.run("xte", f"mousemove {x} {y}")
        return {"x": x, "y": y}

    @action
    async def click(self, x: Optional[int] = None, y: Optional[int] = None,
                    button: str = "left", clicks: int = 1) -> Dict[str, Any]:
        tool = self.require("pointer", POINTER_HINT)
        number = BUTTONS.get(button, 1)
        if tool == "xdotool":
            argv = ["xdotool"]
            if x is not None and y is not None:
                argv += ["mousemove", str(x), str(y)]
            argv += ["click", "--repeat", str(clicks), str(number)]
            await self.run(*argv)
        else:
            commands = []
            if x is not None and y is not None:
                commands.append(f"mousemove {x} {y}")
            commands += [f"mouseclick {number}"] * clicks
            await self.run("xte", *commands)
        return {"x": x, "y": y, "button": button, "clicks": clicks}

    @action
    async def drag(self, from_x: int, from_y: int, to_x: int, to_y: int) -> Dict[str, Any]:
        tool = self.require("pointer", POINTER_HINT)
        if tool == "xdotool":
            await self.run(
                "xdotool", "mousemove", str(from_x), str(from_y), "mousedown", "1",
                "mousemove", str(to_x), str(to_y), "mouseup", "1",
            )
        else:
            await self.run(
                "xte", f"mousemove {from_x} {from_y}", "mousedown 1",
                f"mousemove {to_x} {to_y}", "mouseup 1",
            )
        return {"from": {"x": from_x, "y": from_y}, "to": {"x": to_x, "y": to_y}}

    @action
    async def scroll(self, amount: int = 3, direction: str = "down") -> Dict[str, Any]:
        tool = self.require("pointer", POINTER_HINT)
        number = SCROLL_BUTTONS.get(direction, 5)
        if tool == "xdotool":
            await self.run("xdotool", "click", "--repeat", str(abs(amount)), str(number))
        else:
            await self.run("xte", *[f"mouseclick {number}"] * abs(amount))
        return {"amount": amount, "direction": direction}

    @action
    async def mouse_position(self) -> Dict[str, Any]:
        if self.require("pointer", POINTER_HINT) != "xdotool":
            raise AutomationUnavailable("Reading the pointer position needs xdotool")
        match = re.search(r"x:(\d+)\s+y:(\d+)", await self.run("xdotool", "getmouselocation"))
        if not match:
            raise CommandError("Could not parse pointer position")
        return {"x": int(match.group(1)), "y": int(match.group(2))}

    @action
    async def type_text(self, text: str) -> Dict[str, Any]:
        tool = self.require("keyboard", KEYBOARD_HINT)
        if tool == "xdotool":
            await self.run("xdotool", "type", "--delay", "12", "--", text)
        else:
            await self.run("xte", f"str {text}")
        return {"text": text}

    @action
    async def key(self, key: str, modifiers: Optional[List[str]] = None) -> Dict[str, Any]:
        tool = self.require("keyboard", KEYBOARD_HINT)
        modifiers = [MODIFIER_NAMES.get(m.lower(), m.lower()) for m in modifiers or []]
        name = x_key_name(key)
        if tool == "xdotool":
            await self.run("xdotool", "key", "+".join(modifiers + [name]))
        else:
            held = [XTE_MODIFIERS.get(m, m) for m in modifiers]
            await self.run(
                "xte",
                *[f"keydown {m}" for m in held],
                f"key {name}",
                *[f"keyup {m}" for m in reversed(held)],
            )
        return {"key": key, "modifiers": modifiers}

    @action
    async def get_clipboard(self) -> Dict[str, Any]:
        tool = self.require("clipboard", CLIPBOARD_HINT)
        if tool == "xclip":
            content = await self.run("xclip", "-selection", "clipboard", "-o")
        else:
            content = await self.run("xsel", "--clipboard", "--output")
        return {"content": content}

    @action
    async def set_clipboard(self, text: str) -> Dict[str, Any]:
        tool = self.require("clipboard", CLIPBOARD_HINT)
        if tool == "xclip":
            await self.run("xclip", "-selection", "clipboard", input_text=text)
        else:
            await self.run("xsel", "--clipboard", "--input", input_text=text)
        return {"length": len(text)}

    @action
    async def list_windows(self) -> Dict[str, Any]:
        self.require("windowing", WINDOW_HINT)
        windows = []
        for line in (await self.run("wmctrl", "-l")).splitlines():
            parts = line.split(None, 3)
            if len(parts) >= 3:
                windows.append({
                    "id": parts[0],
                    "desktop": parts[1],
                    "name": parts[3] if len(parts) > 3 else "",
                })
        return {"windows": windows}

    @action
    async def focus_window(self, name: str) -> Dict[str, Any]:
        self.require("windowing", WINDOW_HINT)
        await self.run("wmctrl", "-a", name)
        return {"window": name}

    @action
    async def active_window(self) -> Dict[str, Any]:
        if self.capability.pointer != "xdotool":
            raise AutomationUnavailable("Reading the active window needs xdotool")
        return {"name": (await self.run("xdotool", "getactivewindow", "getwindowname")).strip()}
