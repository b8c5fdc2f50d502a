"""ADB-backed capability providers.

Drives an Android device (or emulator) over the Android Debug Bridge:

- AdbInputInjector: ``adb shell input tap|swipe|text|keyevent``
- AdbFrameCapture: ``adb exec-out screencap -p``, re-encoded as JPEG

Every call spawns one adb process via asyncio; a non-zero exit status is
reported as failure (False / None), never raised.
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import io
import logging
import re
import shlex
import shutil

from PIL import Image, UnidentifiedImageError

from ..protocol.errors import CapabilityUnavailable
from .base import Capabilities, GlobalAction, ScrollDirection

logger = logging.getLogger(__name__)

KEYCODES = {
    GlobalAction.BACK: "KEYCODE_BACK",
    GlobalAction.HOME: "KEYCODE_HOME",
    GlobalAction.RECENTS: "KEYCODE_APP_SWITCH",
}

# Scroll gesture: centered swipe over this fraction of the screen height
SCROLL_DISTANCE_RATIO = 0.3
SCROLL_DURATION_MS = 300

_SIZE_PATTERN = re.compile(r"(\d+)x(\d+)")


class AdbClient:
    """Thin async wrapper around the adb executable."""

    def __init__(self, serial: str | None = None, adb_path: str = "adb") -> None:
        self.serial = serial
        self.adb_path = adb_path
        self._screen_size: tuple[int, int] | None = None

    @property
    def executable(self) -> str | None:
        """Resolved path of the adb binary, or None if not installed."""
        return shutil.which(self.adb_path)

    def command(self, *args: str) -> list[str]:
        executable = self.executable
        if executable is None:
            raise CapabilityUnavailable(f"adb executable not found: {self.adb_path}")
        target = ["-s", self.serial] if self.serial else []
        return [executable, *target, *args]

    async def run(self, *args: str) -> tuple[int, bytes]:
        """Run an adb subcommand.

        Returns:
            Tuple of (return code, stdout bytes)
        """
        process = await asyncio.create_subprocess_exec(
            *self.command(*args),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # Cancelling communicate() leaves the child running
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise
        returncode = process.returncode or 0

        if returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            logger.warning(f"adb {' '.join(args)} exited with {returncode}: {detail}")
        return returncode, stdout

    async def shell(self, *args: str) -> bool:
        returncode, _ = await self.run("shell", *args)
        return returncode == 0

    async def screen_size(self) -> tuple[int, int] | None:
        """Screen size in pixels from ``wm size`` (override size wins)."""
        if self._screen_size is None:
            returncode, stdout = await self.run("shell", "wm", "size")
            matches = _SIZE_PATTERN.findall(stdout.decode("utf-8", errors="replace"))
            if returncode != 0 or not matches:
                return None
            width, height = matches[-1]
            self._screen_size = (int(width), int(height))
        return self._screen_size


def _coord(value: float) -> str:
    return str(round(value))


class AdbInputInjector:
    """InputInjector implementation using ``adb shell input``."""

    def __init__(self, client: AdbClient) -> None:
        self.client = client

    async def tap(self, x: float, y: float) -> bool:
        return await self.client.shell("input", "tap", _coord(x), _coord(y))

    async def swipe(self, x1: float, y1: float, x2: float, y2: float, duration_ms: int) -> bool:
        return await self.client.shell(
            "input", "swipe", _coord(x1), _coord(y1), _coord(x2), _coord(y2), str(duration_ms)
        )

    async def type_text(self, text: str) -> bool:
        # `input text` treats %s as a space
        escaped = text.replace(" ", "%s")
        return await self.client.shell("input", "text", shlex.quote(escaped))

    async def global_action(self, kind: GlobalAction) -> bool:
        return await self.client.shell("input", "keyevent", KEYCODES[GlobalAction(kind)])

    async def scroll(self, direction: str) -> bool:
        try:
            scroll = ScrollDirection(direction)
        except ValueError:
            logger.info(f"Unsupported scroll direction: {direction!r}")
            return False

        size = await self.client.screen_size()
        if size is None:
            return False

        width, height = size
        cx, cy = width / 2, height / 2
        half = height * SCROLL_DISTANCE_RATIO / 2

        match scroll:
            case ScrollDirection.UP:
                start, end = (cx, cy + half), (cx, cy - half)
            case ScrollDirection.DOWN:
                start, end = (cx, cy - half), (cx, cy + half)
            case ScrollDirection.LEFT:
                start, end = (cx + half, cy), (cx - half, cy)
            case ScrollDirection.RIGHT:
                start, end = (cx - half, cy), (cx + half, cy)

        return await self.swipe(*start, *end, SCROLL_DURATION_MS)


def png_to_jpeg(png: bytes, quality: int) -> bytes:
    """Re-encode a PNG screenshot as JPEG at the given quality."""
    with Image.open(io.BytesIO(png)) as image:
        buffer = io.BytesIO()
        image.convert("RGB").save(buffer, format="JPEG", quality=quality)
        return buffer.getvalue()


class AdbFrameCapture:
    """FrameCapture implementation using ``adb exec-out screencap``."""

    def __init__(self, client: AdbClient) -> None:
        self.client = client

    @property
    def is_ready(self) -> bool:
        return self.client.executable is not None

    async def screenshot(self, quality: int) -> str | None:
        returncode, png = await self.client.run("exec-out", "screencap", "-p")
        if returncode != 0 or not png:
            return None

        try:
            jpeg = await asyncio.to_thread(png_to_jpeg, png, quality)
        except (UnidentifiedImageError, OSError) as e:
            logger.warning(f"Could not decode screencap output: {e}")
            return None

        return base64.b64encode(jpeg).decode("ascii")


def adb_capabilities(serial: str | None = None, adb_path: str = "adb") -> Capabilities:
    """Build capabilities backed by adb.

    Providers are left absent when the adb executable cannot be found, so
    the dispatcher reports them as unavailable instead of failing each call.
    """
    client = AdbClient(serial=serial, adb_path=adb_path)
    if client.executable is None:
        logger.warning(f"adb executable not found ({adb_path}); running without capabilities")
        return Capabilities()

    logger.info(f"Using adb at {client.executable}" + (f" (serial {serial})" if serial else ""))
    return Capabilities(injector=AdbInputInjector(client), capture=AdbFrameCapture(client))
