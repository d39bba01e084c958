"""Command messages received from the controller.

Each message on the command topic is one JSON object tagged by ``type``::

    {"type": "PlaySound", "id": "rain", "path": "/srv/sfx/rain.ogg", "overwrite": false}
    {"type": "StopSound", "id": "rain"}
    {"type": "SetVolume", "id": "rain", "volume": 0.4}
    {"type": "FadeToVolume", "id": "rain", "volume": 0.0, "time_in_ms": 2500}

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

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


class CommandParseError(ValueError):
    """Raised when a message body is not one of the known command shapes."""


@dataclass(frozen=True)
class PlaySound:
    id: str
    path: str
    is_loop: bool = False
    overwrite: bool = True


@dataclass(frozen=True)
class StopSound:
    id: str


@dataclass(frozen=True)
class SetVolume:
    id: str
    volume: float


@dataclass(frozen=True)
class FadeToVolume:
    id: str
    volume: float
    time_in_ms: float


Command = Union[PlaySound, StopSound, SetVolume, FadeToVolume]


def _require(data: Dict[str, Any], key: str) -> Any:
    if key not in data or data[key] is None:
        raise CommandParseError(f"missing field '{key}'")
    return data[key]


def _str(data: Dict[str, Any], key: str) -> str:
    value = _require(data, key)
    if not isinstance(value, str):
        raise CommandParseError(f"field '{key}' must be a string, got {type(value).__name__}")
    return value


def _float(data: Dict[str, Any], key: str) -> float:
    value = _require(data, key)
    # bool is an int subclass; "volume": true is not a number
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise CommandParseError(f"field '{key}' must be a number, got {type(value).__name__}")
    try:
        number = float(value)
    except OverflowError as e:
        raise CommandParseError(f"field '{key}' is out of range") from e
    if not math.isfinite(number):
        raise CommandParseError(f"field '{key}' must be finite, got {number}")
    return number


def _reject_constant(name: str) -> Any:
    # NaN, Infinity and -Infinity are not JSON
    raise CommandParseError(f"payload is not valid JSON: unexpected {name}")


def _opt_bool(data: Dict[str, Any], key: str, default: bool) -> bool:
    value: Optional[Any] = data.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise CommandParseError(f"field '{key}' must be a boolean, got {type(value).__name__}")
    return value


def command_from_dict(data: Any) -> Command:
    """Build a command from an already decoded JSON value."""
    if not isinstance(data, dict):
        raise CommandParseError(f"expected a JSON object, got {type(data).__name__}")

    kind = data.get("type")
    if kind == "PlaySound":
        return PlaySound(
            id=_str(data, "id"),
            path=_str(data, "path"),
            is_loop=_opt_bool(data, "is_loop", False),
            overwrite=_opt_bool(data, "overwrite", True),
        )
    if kind == "StopSound":
        return StopSound(id=_str(data, "id"))
    if kind == "SetVolume":
        return SetVolume(id=_str(data, "id"), volume=_float(data, "volume"))
    if kind == "FadeToVolume":
        return FadeToVolume(
            id=_str(data, "id"),
            volume=_float(data, "volume"),
            time_in_ms=_float(data, "time_in_ms"),
        )
    if kind is None:
        raise CommandParseError("missing field 'type'")
    raise CommandParseError(f"unknown command type {kind!r}")


def parse_command(payload: Union[bytes, str]) -> Command:
    """Decode one message body (UTF-8 JSON) into a command.

    Raises:
        CommandParseError: if the body is not valid UTF-8, not valid JSON, or
            does not match any command shape.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CommandParseError(f"payload is not valid UTF-8: {e}") from e
    try:
        data = json.loads(payload, parse_constant=_reject_constant)
    except CommandParseError:
        raise
    except (ValueError, RecursionError) as e:
        raise CommandParseError(f"payload is not valid JSON: {e}") from e
    return command_from_dict(data)


def command_to_dict(command: Command) -> Dict[str, Any]:
    """Return the wire representation of a command."""
    if isinstance(command, PlaySound):
        return {
            "type": "PlaySound",
            "id": command.id,
            "path": command.path,
            "is_loop": command.is_loop,
            "overwrite": command.overwrite,
        }
    if isinstance(command, StopSound):
        return {"type": "StopSound", "id": command.id}
    if isinstance(command, SetVolume):
        return {"type": "SetVolume", "id": command.id, "volume": command.volume}
    if isinstance(command, FadeToVolume):
        return {
            "type": "FadeToVolume",
            "id": command.id,
            "volume": command.volume,
            "time_in_ms": command.time_in_ms,
        }
    raise TypeError(f"not a command: {command!r}")


def encode_command(command: Command) -> str:
    """Serialise a command to a JSON message body."""
    return json.dumps(command_to_dict(command))
