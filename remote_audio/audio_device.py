"""Audio output device selection.

Finds the output device the player should use (the system default, or one
picked by name) and opens float32 output streams on it using sounddevice.
"""

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import sounddevice

from remote_audio.errors import AudioDeviceError

logger = logging.getLogger('audio_device')

# Expose sounddevice module for type annotations
__all__ = ['AudioDevice', 'AudioDeviceError', 'AudioDeviceManager', 'sounddevice']


@dataclass(frozen=True)
class AudioDevice:
    """One output-capable device as reported by PortAudio."""
    index: int
    name: str
    channels: int
    sample_rate: int
    is_default: bool = False

    def create_output_stream(
        self,
        samplerate: int,
        channels: int,
        blocksize: int = 1024,
        callback: Optional[Any] = None,
        latency: str = "low",
    ) -> sounddevice.OutputStream:
        """Create (but do not start) a float32 OutputStream on this device."""
        return sounddevice.OutputStream(
            samplerate=samplerate,
            channels=channels,
            dtype="float32",
            blocksize=blocksize,
            callback=callback,
            latency=latency,
            device=self.index,
        )

    def format_info_string(self) -> str:
        """Format device information string for logging, like ", device=29"."""
        return f", device={self.index}"


class AudioDeviceManager:
    """Queries sounddevice for output devices."""

    @staticmethod
    def _default_output_index() -> Optional[int]:
        default = sounddevice.default.device
        index = default[1] if default else None
        if index is None or index < 0:
            return None
        return int(index)

    def list_devices(self) -> List[AudioDevice]:
        """List every device with at least one output channel.

        Returns an empty list if PortAudio cannot be queried.
        """
        try:
            devices = sounddevice.query_devices()
            default_index = self._default_output_index()
        except Exception as e:
            logger.error(f"Error listing audio devices: {e}")
            return []

        return [
            AudioDevice(
                index=i,
                name=device.get("name", "Unknown"),
                channels=int(device.get("max_output_channels", 0)),
                sample_rate=int(device.get("default_samplerate", 44100)),
                is_default=i == default_index,
            )
            for i, device in enumerate(devices)
            if device.get("max_output_channels", 0) > 0
        ]

    def default_device(self) -> Optional[AudioDevice]:
        for device in self.list_devices():
            if device.is_default:
                return device
        return None

    def find_by_name(self, name: str) -> Optional[AudioDevice]:
        """Exact name match first, then the first case-insensitive substring match."""
        devices = self.list_devices()
        for device in devices:
            if device.name == name:
                return device
        needle = name.lower()
        for device in devices:
            if needle in device.name.lower():
                return device
        return None

    def select(self, name: Optional[str] = None) -> AudioDevice:
        """Pick the output device to play on.

        Args:
            name: Device name (or part of it); None, "" or "default" selects
                the system default output.

        Raises:
            AudioDeviceError: if no matching output device exists.
        """
        if name is None or name == "" or name.lower() == "default":
            device = self.default_device()
            if device is None:
                raise AudioDeviceError("No default output device")
        else:
            device = self.find_by_name(name)
            if device is None:
                raise AudioDeviceError(f"Audio device not found: {name!r}")
        logger.debug(f"Selected output device [{device.index}] {device.name} "
                     f"({device.channels}ch, {device.sample_rate}Hz)")
        return device
