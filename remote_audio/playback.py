"""Audio playback backend for the remote audio player.

Sound files are decoded up front with soundfile, converted to the output
channel layout and sample rate, and played as voices of a single Mixer. The
Mixer owns one sounddevice OutputStream; its callback sums every active voice
scaled by that voice's gain.

Copyright (C) 2025  behesse

This program is free software: you can redistribute it and/or modify
it under the terms of the GNU Affero General Public License as published
by the Free Software Foundation, either version 3 of the License, or
(at your option) any later version.

This program is distributed in the hope that it will be useful,
but WITHOUT ANY WARRANTY; without even the implied warranty of
MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
GNU Affero General Public License for more details.

You should have received a copy of the GNU Affero General Public License
along with this program.  If not, see <https://www.gnu.org/licenses/>.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from math import gcd
from typing import TYPE_CHECKING, Any, List, Optional

import numpy as np
import soundfile
from scipy import signal

from remote_audio.errors import AudioDeviceError, PlaybackError

if TYPE_CHECKING:
    from remote_audio.audio_device import AudioDevice, sounddevice

logger = logging.getLogger('playback')


@dataclass
class AudioClip:
    """A fully decoded sound file in the mixer's output format."""
    path: str
    samples: np.ndarray
    """float32 frames, shape (frames, channels)."""
    sample_rate: int

    @property
    def frames(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_s(self) -> float:
        return self.frames / float(self.sample_rate) if self.sample_rate else 0.0


class SoundHandle:
    """One clip routed to the mixer, with its own gain.

    ``stop()`` detaches the voice from the mixer right away, so a handle that
    is replaced or removed stops producing sound immediately.
    """

    def __init__(self, mixer: 'Mixer', clip: AudioClip, *, loop: bool) -> None:
        self._mixer = mixer
        self._clip = clip
        self._loop = loop
        self._position = 0
        self._volume = 1.0
        self._finished = False

    @property
    def clip(self) -> AudioClip:
        return self._clip

    @property
    def loop(self) -> bool:
        return self._loop

    @property
    def is_finished(self) -> bool:
        return self._finished

    def get_volume(self) -> float:
        return self._volume

    def set_volume(self, volume: float) -> None:
        # Unclamped; gains above 1.0 are allowed
        self._volume = float(volume)

    def stop(self) -> None:
        """Stop playback and release the voice."""
        if self._finished:
            return
        self._finished = True
        self._mixer.detach(self)

    def _render(self, frames: int) -> np.ndarray:
        """Read the next ``frames`` frames, wrapping around when looping.

        Called from the audio callback with the mixer lock held.
        """
        samples = self._clip.samples
        out = np.zeros((frames, samples.shape[1]), dtype=np.float32)
        total = samples.shape[0]
        if total == 0:
            self._finished = True
            return out

        written = 0
        while written < frames:
            remaining = total - self._position
            if remaining <= 0:
                if not self._loop:
                    self._finished = True
                    break
                self._position = 0
                remaining = total
            n = min(remaining, frames - written)
            out[written:written + n] = samples[self._position:self._position + n]
            self._position += n
            written += n
        return out

    def __repr__(self) -> str:
        return (
            f"SoundHandle(path={self._clip.path!r}, loop={self._loop}, "
            f"volume={self._volume:.3f}, finished={self._finished})"
        )


class Mixer:
    """Sums active voices into one output stream."""

    def __init__(self, sample_rate: int, channels: int = 2, blocksize: int = 1024) -> None:
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.blocksize = int(blocksize)
        self._voices: List[SoundHandle] = []
        self._lock = threading.Lock()
        self._stream: Optional[sounddevice.OutputStream] = None
        self._underrun_count = 0

    @property
    def active_voices(self) -> int:
        with self._lock:
            return len(self._voices)

    def open(self, device: AudioDevice) -> None:
        """Open and start the output stream on ``device``.

        Raises:
            AudioDeviceError: if the stream cannot be opened.
        """
        self.close()
        try:
            self._stream = device.create_output_stream(
                samplerate=self.sample_rate,
                channels=self.channels,
                blocksize=self.blocksize,
                callback=self._audio_callback,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            logger.debug(f"Failed to open audio stream: {type(e).__name__}: {e}", exc_info=True)
            raise AudioDeviceError(f"Cannot open output stream on {device.name}: {e}") from e
        logger.info(
            f"Audio stream started: {device.name}{device.format_info_string()}, "
            f"samplerate={self.sample_rate}Hz, channels={self.channels}, blocksize={self.blocksize}"
        )

    def attach(self, handle: SoundHandle) -> None:
        with self._lock:
            self._voices.append(handle)

    def detach(self, handle: SoundHandle) -> None:
        with self._lock:
            try:
                self._voices.remove(handle)
            except ValueError:
                pass

    def render(self, frames: int) -> np.ndarray:
        """Mix the next ``frames`` frames of every active voice."""
        mix = np.zeros((frames, self.channels), dtype=np.float32)
        with self._lock:
            for voice in list(self._voices):
                block = voice._render(frames)
                mix += block * np.float32(voice.get_volume())
                if voice.is_finished:
                    self._voices.remove(voice)
        np.clip(mix, -1.0, 1.0, out=mix)
        return mix

    def _audio_callback(
        self,
        outdata: np.ndarray,
        frames: int,
        time_info: Any,
        status: sounddevice.CallbackFlags,
    ) -> None:
        """Callback function for sounddevice audio stream."""
        if status.output_underflow:
            self._underrun_count += 1
            logger.warning(f"Audio underrun #{self._underrun_count}")
        outdata[:] = self.render(frames)

    def close(self) -> None:
        """Stop all voices and close the audio stream."""
        with self._lock:
            voices, self._voices = self._voices, []
        for voice in voices:
            voice._finished = True
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.debug(f"Error closing audio stream: {e}")
            self._stream = None


def _match_channels(data: np.ndarray, channels: int) -> np.ndarray:
    """Convert (frames, n) audio to (frames, channels)."""
    have = data.shape[1]
    if have == channels:
        return data
    if have == 1:
        return np.repeat(data, channels, axis=1)
    if channels == 1:
        return data.mean(axis=1, keepdims=True)
    if have > channels:
        return data[:, :channels]
    out = np.zeros((data.shape[0], channels), dtype=data.dtype)
    out[:, :have] = data
    return out


def _resample(data: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate or data.shape[0] == 0:
        return data
    factor = gcd(src_rate, dst_rate)
    resampled = signal.resample_poly(data, dst_rate // factor, src_rate // factor, axis=0)
    return resampled.astype(np.float32)


class PlaybackBackend:
    """Opens sound files and starts them on the mixer."""

    def __init__(self, mixer: Mixer) -> None:
        self._mixer = mixer

    @property
    def mixer(self) -> Mixer:
        return self._mixer

    def open(self, path: str) -> AudioClip:
        """Decode ``path`` into a clip matching the mixer's format.

        Raises:
            PlaybackError: if the file is missing or cannot be decoded.
        """
        try:
            data, rate = soundfile.read(path, dtype="float32", always_2d=True)
        except (RuntimeError, OSError) as e:
            raise PlaybackError(f"Error reading file {path!r}: {e}") from e

        data = _match_channels(data, self._mixer.channels)
        if rate != self._mixer.sample_rate:
            logger.debug(f"Resampling {path}: {rate}Hz -> {self._mixer.sample_rate}Hz")
            data = _resample(data, int(rate), self._mixer.sample_rate)
        clip = AudioClip(path=path, samples=np.ascontiguousarray(data, dtype=np.float32),
                         sample_rate=self._mixer.sample_rate)
        logger.debug(f"Decoded {path}: {clip.frames} frames ({clip.duration_s:.2f}s)")
        return clip

    def play_looped(self, clip: AudioClip) -> SoundHandle:
        """Start ``clip`` looping forever and return its handle."""
        handle = SoundHandle(self._mixer, clip, loop=True)
        self._mixer.attach(handle)
        return handle

    def play_once(self, clip: AudioClip) -> SoundHandle:
        """Start ``clip`` once; the mixer drops it when it ends."""
        handle = SoundHandle(self._mixer, clip, loop=False)
        self._mixer.attach(handle)
        return handle
