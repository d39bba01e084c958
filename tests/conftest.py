import pytest

from remote_audio.errors import PlaybackError


class FakeHandle:
    def __init__(self, path: str, volume: float = 1.0):
        self.path = path
        self.volume = volume
        self.stopped = False
        self.volume_history = []

    def get_volume(self) -> float:
        return self.volume

    def set_volume(self, volume: float) -> None:
        self.volume = volume
        self.volume_history.append(volume)

    def stop(self) -> None:
        self.stopped = True


class FakeBackend:
    """Records what was played instead of producing sound."""

    def __init__(self, missing=()):
        self.missing = set(missing)
        self.opened = []
        self.looped = []
        self.once = []

    def open(self, path: str):
        if path in self.missing:
            raise PlaybackError(f"Error reading file {path!r}: No such file")
        self.opened.append(path)
        return path

    def play_looped(self, clip) -> FakeHandle:
        handle = FakeHandle(clip)
        self.looped.append(handle)
        return handle

    def play_once(self, clip) -> FakeHandle:
        handle = FakeHandle(clip)
        self.once.append(handle)
        return handle


class FakeClock:
    def __init__(self, start: float = 10.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


@pytest.fixture
def backend():
    return FakeBackend(missing={"/missing.wav"})


@pytest.fixture
def clock():
    return FakeClock()
