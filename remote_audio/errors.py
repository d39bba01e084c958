"""Exceptions shared across the remote audio player."""


class PlaybackError(RuntimeError):
    """Raised when a sound file cannot be opened or decoded."""


class AudioDeviceError(RuntimeError):
    """Raised when no usable audio output device is available."""
