"""Platform audio: play the alert file, or synthesize a short tone.

Every call reports success as a bool. Blocking platform calls run in a worker
thread so a slow sound device never holds up a scan.
"""

import asyncio
import logging
import sys
from pathlib import Path

logger = logging.getLogger("queuekeeper.audio")

DEFAULT_ALERT_PATH = Path(__file__).resolve().parent / "assets" / "alert.mp3"
MCI_ALIAS = "QueueKeeperAlert"


class AudioBackend:
    async def play_asset(self, volume: float = 0.7) -> bool:
        raise NotImplementedError

    async def play_tone(self, volume: float = 0.1, frequency: int = 800, duration_ms: int = 200) -> bool:
        raise NotImplementedError

    async def is_active(self) -> bool:
        """Whether the output device is usable right now, without user help."""
        raise NotImplementedError

    async def activate(self) -> bool:
        """Try to (re)open the output device. Returns the resulting state."""
        return await self.is_active()


class WinmmAudioBackend(AudioBackend):
    """Windows playback through the MCI API, with winsound for the tone."""

    def __init__(self, audio_path: Path = DEFAULT_ALERT_PATH):
        import ctypes
        import winsound

        self.audio_path = Path(audio_path)
        self.winmm = ctypes.windll.winmm
        self.winsound = winsound

    def _mci(self, command: str) -> int:
        return self.winmm.mciSendStringW(command, None, 0, None)

    def _play_file(self, volume: float) -> bool:
        # Toast custom file audio can be ignored in some desktop app contexts.
        # Use the Windows MCI API to play the local media file directly.
        if not self.audio_path.exists():
            logger.warning("Audio file not found: %s", self.audio_path)
            return False

        path_str = str(self.audio_path.resolve()).replace('"', '""')
        self._mci(f"close {MCI_ALIAS}")
        open_result = self._mci(f'open "{path_str}" type mpegvideo alias {MCI_ALIAS}')
        if open_result != 0:
            logger.warning("Failed to open alert audio with MCI (code: %s)", open_result)
            return False

        # MCI volume runs 0..1000 for mpegvideo devices.
        self._mci(f"setaudio {MCI_ALIAS} volume to {int(max(0.0, min(volume, 1.0)) * 1000)}")
        play_result = self._mci(f"play {MCI_ALIAS}")
        if play_result != 0:
            logger.warning("Failed to play alert audio with MCI (code: %s)", play_result)
            return False
        return True

    def _beep(self, frequency: int, duration_ms: int) -> bool:
        try:
            self.winsound.Beep(frequency, duration_ms)
        except RuntimeError as exc:
            logger.warning("Tone playback failed: %s", exc)
            return False
        return True

    async def play_asset(self, volume: float = 0.7) -> bool:
        return await asyncio.to_thread(self._play_file, volume)

    async def play_tone(self, volume: float = 0.1, frequency: int = 800, duration_ms: int = 200) -> bool:
        # winsound.Beep has no volume control; the tone is short enough not to matter.
        return await asyncio.to_thread(self._beep, frequency, duration_ms)

    async def is_active(self) -> bool:
        return await asyncio.to_thread(lambda: self.winmm.waveOutGetNumDevs() > 0)


class TerminalBellBackend(AudioBackend):
    """Fallback for platforms without a media player: rings the terminal bell."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stdout

    def _interactive(self) -> bool:
        isatty = getattr(self.stream, "isatty", None)
        return bool(isatty and isatty())

    async def play_asset(self, volume: float = 0.7) -> bool:
        return False

    async def play_tone(self, volume: float = 0.1, frequency: int = 800, duration_ms: int = 200) -> bool:
        if not self._interactive():
            return False
        self.stream.write("\a")
        self.stream.flush()
        return True

    async def is_active(self) -> bool:
        return self._interactive()


def build_audio_backend(audio_path: Path = DEFAULT_ALERT_PATH) -> AudioBackend:
    if sys.platform == "win32":
        return WinmmAudioBackend(audio_path)
    logger.info("No media player available on %s, using the terminal bell.", sys.platform)
    return TerminalBellBackend()
