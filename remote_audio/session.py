"""Playback session: active channels, volume fades and the command loop.

All playback state lives in one SessionState owned by the SessionLoop thread.
The MQTT side only ever puts parsed commands on the loop's queue, so the
registry and the fade map are never touched from two threads and need no lock.

Every tick the loop first advances running fades, then applies all commands
that are already queued, then sleeps for the polling interval. A command
received during a tick therefore affects fades from the next tick on.

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
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Protocol

from remote_audio.commands import (
    Command,
    FadeToVolume,
    PlaySound,
    SetVolume,
    StopSound,
)
from remote_audio.errors import PlaybackError

logger = logging.getLogger('session')

Clock = Callable[[], float]


class Handle(Protocol):
    def get_volume(self) -> float: ...

    def set_volume(self, volume: float) -> None: ...

    def stop(self) -> None: ...


class Backend(Protocol):
    def open(self, path: str): ...

    def play_looped(self, clip) -> Handle: ...

    def play_once(self, clip) -> Handle: ...


class ChannelRegistry:
    """Maps channel ids to the handle currently playing under that id."""

    def __init__(self) -> None:
        self._handles: Dict[str, Handle] = {}

    def insert(self, channel_id: str, handle: Handle) -> None:
        """Store ``handle`` under ``channel_id``, stopping any previous handle."""
        previous = self._handles.get(channel_id)
        self._handles[channel_id] = handle
        if previous is not None and previous is not handle:
            previous.stop()

    def get(self, channel_id: str) -> Optional[Handle]:
        return self._handles.get(channel_id)

    def remove(self, channel_id: str) -> None:
        handle = self._handles.pop(channel_id, None)
        if handle is not None:
            handle.stop()

    def clear(self) -> None:
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.stop()

    def ids(self) -> List[str]:
        return list(self._handles)

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._handles

    def __len__(self) -> int:
        return len(self._handles)


@dataclass
class Fade:
    """A linear volume ramp on one channel."""
    channel_id: str
    from_volume: float
    to_volume: float
    start_time: float
    """Clock reading (seconds) when the fade was created."""
    duration_ms: float

    def elapsed_ms(self, now: float) -> float:
        return (now - self.start_time) * 1000.0

    def is_complete(self, now: float) -> bool:
        return self.duration_ms <= 0 or self.elapsed_ms(now) >= self.duration_ms

    def volume_at(self, now: float) -> float:
        """Interpolated volume at ``now``; exactly ``to_volume`` once complete."""
        if self.is_complete(now):
            return self.to_volume
        progress = self.elapsed_ms(now) / self.duration_ms
        return self.to_volume * progress + self.from_volume * (1.0 - progress)


class FadeScheduler:
    """Running fades keyed by channel id, at most one per channel."""

    def __init__(self, registry: ChannelRegistry) -> None:
        self._registry = registry
        self._fades: Dict[str, Fade] = {}

    def start(
        self,
        channel_id: str,
        from_volume: float,
        to_volume: float,
        now: float,
        duration_ms: float,
    ) -> Fade:
        """Start a fade, replacing any fade already running on the channel."""
        fade = Fade(
            channel_id=channel_id,
            from_volume=float(from_volume),
            to_volume=float(to_volume),
            start_time=now,
            duration_ms=float(duration_ms),
        )
        self._fades[channel_id] = fade
        return fade

    def cancel(self, channel_id: str) -> bool:
        return self._fades.pop(channel_id, None) is not None

    def get(self, channel_id: str) -> Optional[Fade]:
        return self._fades.get(channel_id)

    def advance(self, now: float) -> None:
        """Apply every fade's volume for ``now`` and drop the finished ones.

        A fade whose channel was stopped does nothing but is still dropped
        once its duration has passed.
        """
        finished: List[str] = []
        for channel_id, fade in self._fades.items():
            handle = self._registry.get(channel_id)
            if fade.is_complete(now):
                if handle is not None:
                    handle.set_volume(fade.to_volume)
                finished.append(channel_id)
            elif handle is not None:
                handle.set_volume(fade.volume_at(now))

        for channel_id in finished:
            del self._fades[channel_id]
            logger.debug(f"Fade finished on '{channel_id}'")

    def __contains__(self, channel_id: object) -> bool:
        return channel_id in self._fades

    def __len__(self) -> int:
        return len(self._fades)


class SessionState:
    """Channel registry plus the fades running against it."""

    def __init__(self) -> None:
        self.registry = ChannelRegistry()
        self.fades = FadeScheduler(self.registry)


class CommandApplier:
    """Applies one command at a time to a SessionState."""

    def __init__(self, backend: Backend, clock: Clock = time.monotonic) -> None:
        self._backend = backend
        self._clock = clock

    def apply(self, state: SessionState, command: Command) -> None:
        if isinstance(command, PlaySound):
            self._play(state, command)
        elif isinstance(command, StopSound):
            self._stop(state, command)
        elif isinstance(command, SetVolume):
            self._set_volume(state, command)
        elif isinstance(command, FadeToVolume):
            self._fade_to_volume(state, command)
        else:
            raise TypeError(f"Unsupported command: {command!r}")

    def _play(self, state: SessionState, command: PlaySound) -> None:
        if not command.overwrite and command.id in state.registry:
            logger.debug(f"'{command.id}' is already playing and overwrite is off, ignoring")
            return

        try:
            clip = self._backend.open(command.path)
        except PlaybackError as e:
            logger.error(f"Cannot play '{command.id}': {e}")
            return

        # is_loop=True plays the file once without registering it under the id;
        # the default is a looping handle that stays controllable by id.
        if command.is_loop:
            self._backend.play_once(clip)
            logger.info(f"Playing '{command.path}' once as '{command.id}' (not tracked)")
            return

        handle = self._backend.play_looped(clip)
        state.registry.insert(command.id, handle)
        logger.info(f"Playing '{command.path}' as '{command.id}'")

    def _stop(self, state: SessionState, command: StopSound) -> None:
        if command.id not in state.registry:
            logger.debug(f"Stop for unknown channel '{command.id}', ignoring")
            return
        state.registry.remove(command.id)
        logger.info(f"Stopped '{command.id}'")

    def _set_volume(self, state: SessionState, command: SetVolume) -> None:
        handle = state.registry.get(command.id)
        if handle is not None:
            handle.set_volume(command.volume)
            logger.debug(f"Volume of '{command.id}' set to {command.volume}")
        else:
            logger.debug(f"SetVolume for unknown channel '{command.id}', ignoring")
        state.fades.cancel(command.id)

    def _fade_to_volume(self, state: SessionState, command: FadeToVolume) -> None:
        handle = state.registry.get(command.id)
        if handle is None:
            logger.debug(f"FadeToVolume for unknown channel '{command.id}', ignoring")
            return
        from_volume = handle.get_volume()
        state.fades.start(command.id, from_volume, command.volume, self._clock(), command.time_in_ms)
        logger.debug(
            f"Fading '{command.id}' {from_volume:.3f} -> {command.volume:.3f} "
            f"over {command.time_in_ms:.0f}ms"
        )


class SessionLoop:
    """Fixed-interval control loop that owns the playback session."""

    def __init__(
        self,
        backend: Backend,
        commands: Optional[queue.SimpleQueue] = None,
        interval_ms: float = 1.0,
        clock: Clock = time.monotonic,
    ) -> None:
        self.commands: queue.SimpleQueue = commands if commands is not None else queue.SimpleQueue()
        self.state = SessionState()
        self._applier = CommandApplier(backend, clock)
        self._clock = clock
        self._interval = max(0.0, float(interval_ms)) / 1000.0
        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    def submit(self, command: Command) -> None:
        """Queue a command; safe to call from any thread."""
        self.commands.put(command)

    def tick(self) -> int:
        """Run one iteration: advance fades, then drain queued commands.

        Returns the number of commands processed.
        """
        now = self._clock()
        try:
            self.state.fades.advance(now)
        except Exception:
            logger.exception("Error while updating fades")

        processed = 0
        while True:
            try:
                command = self.commands.get_nowait()
            except queue.Empty:
                break
            processed += 1
            try:
                self._applier.apply(self.state, command)
            except Exception:
                logger.exception(f"Error while applying {command!r}")
        return processed

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="session-loop", daemon=True)
        self._thread.start()
        logger.debug(f"Session loop started (interval {self._interval * 1000:.1f}ms)")

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the loop after its current tick and release every channel."""
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        try:
            while not self._stop.is_set():
                self.tick()
                time.sleep(self._interval)
        finally:
            self.state.registry.clear()
            logger.debug("Session loop stopped")
