"""Screen-capture intent heuristic and the ```action block mini-language."""

import re
import shlex
from typing import List, Tuple
from .base import ActionResult, AutomationBackend

CAPTURE_KEYWORDS = [
    "screen",
    "screenshot",
    "desktop",
    "window",
    "monitor",
    "display",
    "visible",
    "what do you see",
    "what's on",
    "look at my",
    "click on",
]

_CAPTURE_PATTERN = re.compile(
    r"\b(?:" + "|".join(re.escape(k) for k in CAPTURE_KEYWORDS) + r")\b",
    re.IGNORECASE,
)
_ACTION_BLOCK = re.compile(r"```action[ \t]*\n(.*?)```", re.DOTALL)

ACTION_USAGE = {
    "click": "click <x> <y>",
    "doubleclick": "doubleclick <x> <y>",
    "rightclick": "rightclick <x> <y>",
    "move": "move <x> <y>",
    "drag": "drag <x1> <y1> <x2> <y2>",
    "scroll": "scroll [amount] [up|down|left|right]",
    "type": 'type "<text>"',
    "key": "key <combo>",
    "focus": "focus <window name>",
    "clipboard": "clipboard get | clipboard set <text>",
}
SCROLL_DIRECTIONS = ("up", "down", "left", "right")


def should_capture_screen(text: str) -> bool:
    """True when the request plausibly refers to what is on screen."""
    if not text:
        return False
    return bool(_CAPTURE_PATTERN.search(text))


def parse_action_blocks(text: str) -> List[str]:
    """Action lines from every ```action fenced block, in order."""
    lines = []
    for block in _ACTION_BLOCK.findall(text or ""):
        for line in block.splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                lines.append(line)
    return lines


def parse_key_combo(combo: str) -> Tuple[str, List[str]]:
    """Split ``ctrl+shift+t`` into (``t``, [``ctrl``, ``shift``])."""
    parts = [p.strip() for p in combo.split("+") if p.strip()]
    if not parts:
        raise ValueError("empty key combination")
    return parts[-1], [p.lower() for p in parts[:-1]]


def _ints(args: List[str], count: int) -> List[int]:
    if len(args) != count:
        raise ValueError(f"expected {count} numbers")
    return [int(float(a)) for a in args]


async def execute_action(backend: AutomationBackend, line: str) -> ActionResult:
    """Run one action line against ``backend``; never raises."""
    try:
        words = shlex.split(line)
    except ValueError as e:
        return ActionResult.fail(f"Could not parse action '{line}': {e}")
    if not words:
        return ActionResult.fail("Empty action")

    command, args = words[0].lower(), words[1:]
    try:
        if command == "screenshot":
            return await backend.screenshot(" ".join(args) or None)
        if command == "click":
            return await backend.click(*_ints(args, 2))
        if command in ("doubleclick", "double_click"):
            return await backend.double_click(*_ints(args, 2))
        if command in ("rightclick", "right_click"):
            return await backend.right_click(*_ints(args, 2))
        if command == "move":
            return await backend.move(*_ints(args, 2))
        if command == "drag":
            return await backend.drag(*_ints(args, 4))
        if command == "scroll":
            amount, direction = 3, "down"
            for arg in args:
                if arg.lower() in SCROLL_DIRECTIONS:
                    direction = arg.lower()
                else:
                    amount = int(arg)
            return await backend.scroll(amount, direction)
        if command == "type":
            if not args:
                raise ValueError("nothing to type")
            return await backend.type_text(" ".join(args))
        if command in ("key", "keypress"):
            if len(args) != 1:
                raise ValueError("expected one key combination")
            key, modifiers = parse_key_combo(args[0])
            return await backend.key(key, modifiers)
        if command == "enter":
            return await backend.key("enter")
        if command == "tab":
            return await backend.key("tab")
        if command in ("escape", "esc"):
            return await backend.key("escape")
        if command == "copy":
            return await backend.copy()
        if command == "paste":
            return await backend.paste()
        if command == "focus":
            if not args:
                raise ValueError("missing window name")
            return await backend.focus_window(" ".join(args))
        if command == "windows":
            return await backend.list_windows()
        if command == "clipboard":
            if args[:1] == ["get"] or not args:
                return await backend.get_clipboard()
            if args[0] == "set" and len(args) > 1:
                return await backend.set_clipboard(" ".join(args[1:]))
            raise ValueError("expected 'get' or 'set <text>'")
    except (ValueError, OverflowError) as e:
        usage = ACTION_USAGE.get(command)
        hint = f" (usage: {usage})" if usage else ""
        return ActionResult.fail(f"Invalid '{command}' action: {e}{hint}")

    return ActionResult.fail(f"Unknown action: {command}")
