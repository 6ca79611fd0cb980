"""Windows automation through PowerShell and System.Windows.Forms."""

from pathlib import Path
from typing import Any, Dict, List, Optional
from .base import AutomationBackend, CommandError, action

FORMS = "Add-Type -AssemblyName System.Windows.Forms; Add-Type -AssemblyName System.Drawing; "

MOUSE_EVENT = """
$signature = @'
[DllImport("user32.dll")]
public static extern void mouse_event(int dwFlags, int dx, int dy, int cButtons, int dwExtraInfo);
'@
$mouse = Add-Type -MemberDefinition $signature -Name "JumpCodeMouse" -Namespace Win32 -PassThru
"""

FOREGROUND_WINDOW = """
$signature = @'
[DllImport("user32.dll")] public static extern System.IntPtr GetForegroundWindow();
[DllImport("user32.dll", CharSet=CharSet.Unicode)] public static extern int GetWindowText(System.IntPtr hWnd, System.Text.StringBuilder text, int count);
'@
$user32 = Add-Type -MemberDefinition $signature -Name "JumpCodeWindow" -Namespace Win32 -PassThru
$buffer = New-Object System.Text.StringBuilder 512
[void]$user32::GetWindowText($user32::GetForegroundWindow(), $buffer, $buffer.Capacity)
$buffer.ToString()
"""

# (down, up) flags for mouse_event
BUTTON_FLAGS = {"left": (0x0002, 0x0004), "right": (0x0008, 0x0010), "middle": (0x0020, 0x0040)}
WHEEL_FLAG = 0x0800
HWHEEL_FLAG = 0x01000
WHEEL_DELTA = 120

SENDKEYS_NAMES = {
    "enter": "{ENTER}", "return": "{ENTER}", "tab": "{TAB}", "esc": "{ESC}",
    "escape": "{ESC}", "space": " ", "backspace": "{BACKSPACE}", "delete": "{DELETE}",
    "up": "{UP}", "down": "{DOWN}", "left": "{LEFT}", "right": "{RIGHT}",
    "home": "{HOME}", "end": "{END}", "pageup": "{PGUP}", "pagedown": "{PGDN}",
}
SENDKEYS_MODIFIERS = {"ctrl": "^", "control": "^", "alt": "%", "shift": "+"}
SENDKEYS_SPECIAL = set("+^%~(){}[]")


def ps_string(text: str) -> str:
    """Quote ``text`` as a single-quoted PowerShell literal."""
    return "'" + text.replace("'", "''") + "'"


def sendkeys_escape(text: str) -> str:
    return "".join("{" + c + "}" if c in SENDKEYS_SPECIAL else c for c in text)


class WindowsBackend(AutomationBackend):
    """Windows backend; every capability is served by PowerShell."""

    platform_name = "win32"

    async def powershell(self, kind: str, script: str, input_text: Optional[str] = None) -> str:
        exe = self.require(kind, "PowerShell is required for desktop automation.")
        return await self.run(exe, "-NoProfile", "-NonInteractive", "-Command", script, input_text=input_text)

    async def _capture(self, path: Path, window: Optional[str]) -> None:
        if window:
            await self._activate(window)
        script = FORMS + (
            "$b = [System.Windows.Forms.Screen]::PrimaryScreen.Bounds; "
            "$bmp = New-Object System.Drawing.Bitmap($b.Width, $b.Height); "
            "$g = [System.Drawing.Graphics]::FromImage($bmp); "
            "$g.CopyFromScreen($b.Location, [System.Drawing.Point]::Empty, $b.Size); "
            f"$bmp.Save({ps_string(str(path))}, [System.Drawing.Imaging.ImageFormat]::Png)"
        )
        await self.powershell("screenshot", script)

    @action
    async def screen_size(self) -> Dict[str, Any]:
        output = await self.powershell(
            "screenshot",
            FORMS + '$b = [System.Windows.Forms.Screen]::PrimaryScreen.Bounds; "$($b.Width) $($b.Height)"',
        )
        try:
            width, height = [int(v) for v in output.split()[:2]]
        except ValueError:
            raise CommandError(f"Could not parse screen size: {output.strip()}")
        return {"width": width, "height": height}

    def _cursor(self, x: int, y: int) -> str:
        return f"[System.Windows.Forms.Cursor]::Position = New-Object System.Drawing.Point({int(x)}, {int(y)}); "

    @action
    async def move(self, x: int, y: int) -> Dict[str, Any]:
        await self.powershell("pointer", FORMS + self._cursor(x, y))
        return {"x": x, "y": y}

    @action
    async def click(self, x: Optional[int] = None, y: Optional[int] = None,
                    button: str = "left", clicks: int = 1) -> Dict[str, Any]:
        down, up = BUTTON_FLAGS.get(button, BUTTON_FLAGS["left"])
        script = FORMS
        if x is not None and y is not None:
            script += self._cursor(x, y)
        script += MOUSE_EVENT
        script += f"$mouse::mouse_event({down}, 0, 0, 0, 0); $mouse::mouse_event({up}, 0, 0, 0, 0)\n" * clicks
        await self.powershell("pointer", script)
        return {"x": x, "y": y, "button": button, "clicks": clicks}

    @action
    async def drag(self, from_x: int, from_y: int, to_x: int, to_y: int) -> Dict[str, Any]:
        down, up = BUTTON_FLAGS["left"]
        script = (
            FORMS + self._cursor(from_x, from_y) + MOUSE_EVENT
            + f"$mouse::mouse_event({down}, 0, 0, 0, 0)\n"
            + self._cursor(to_x, to_y)
            + f"$mouse::mouse_event({up}, 0, 0, 0, 0)\n"
        )
        await self.powershell("pointer", script)
        return {"from": {"x": from_x, "y": from_y}, "to": {"x": to_x, "y": to_y}}

    @action
    async def scroll(self, amount: int = 3, direction: str = "down") -> Dict[str, Any]:
        flag = HWHEEL_FLAG if direction in ("left", "right") else WHEEL_FLAG
        sign = -1 if direction in ("down", "left") else 1
        delta = sign * abs(amount) * WHEEL_DELTA
        await self.powershell("pointer", MOUSE_EVENT + f"$mouse::mouse_event({flag}, 0, 0, {delta}, 0)")
        return {"amount": amount, "direction": direction}

    @action
    async def mouse_position(self) -> Dict[str, Any]:
        output = await self.powershell(
            "pointer", FORMS + '$p = [System.Windows.Forms.Cursor]::Position; "$($p.X) $($p.Y)"'
        )
        try:
            x, y = [int(v) for v in output.split()[:2]]
        except ValueError:
            raise CommandError(f"Could not parse pointer position: {output.strip()}")
        return {"x": x, "y": y}

    @action
    async def type_text(self, text: str) -> Dict[str, Any]:
        await self.powershell(
            "keyboard",
            FORMS + f"[System.Windows.Forms.SendKeys]::SendWait({ps_string(sendkeys_escape(text))})",
        )
        return {"text": text}

    @action
    async def key(self, key: str, modifiers: Optional[List[str]] = None) -> Dict[str, Any]:
        modifiers = modifiers or []
        prefix = "".join(SENDKEYS_MODIFIERS.get(m.lower(), "") for m in modifiers)
        name = SENDKEYS_NAMES.get(key.lower())
        if name is None:
            name = sendkeys_escape(key.lower() if len(key) == 1 else "{" + key.upper() + "}")
        await self.powershell(
            "keyboard", FORMS + f"[System.Windows.Forms.SendKeys]::SendWait({ps_string(prefix + name)})"
        )
        return {"key": key, "modifiers": modifiers}

    @action
    async def get_clipboard(self) -> Dict[str, Any]:
        return {"content": await self.powershell("clipboard", "Get-Clipboard -Raw")}

    @action
    async def set_clipboard(self, text: str) -> Dict[str, Any]:
        await self.powershell("clipboard", "Set-Clipboard -Value ([Console]::In.ReadToEnd())", input_text=text)
        return {"length": len(text)}

    @action
    async def list_windows(self) -> Dict[str, Any]:
        output = await self.powershell(
            "windowing",
            'Get-Process | Where-Object { $_.MainWindowTitle } | '
            'ForEach-Object { "$($_.Id)`t$($_.ProcessName)`t$($_.MainWindowTitle)" }',
        )
        windows = []
        for line in output.splitlines():
            parts = line.split("\t", 2)
            if len(parts) == 3:
                windows.append({"id": parts[0], "process": parts[1], "name": parts[2]})
        return {"windows": windows}

    async def _activate(self, name: str) -> None:
        output = await self.powershell(
            "windowing", f"(New-Object -ComObject WScript.Shell).AppActivate({ps_string(name)})"
        )
        if output.strip().lower() == "false":
            raise CommandError(f"No window matching '{name}'")

    @action
    async def focus_window(self, name: str) -> Dict[str, Any]:
        await self._activate(name)
        return {"window": name}

    @action
    async def active_window(self) -> Dict[str, Any]:
        return {"name": (await self.powershell("windowing", FOREGROUND_WINDOW)).strip()}
