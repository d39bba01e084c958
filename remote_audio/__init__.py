"""Remote audio player package."""

from remote_audio.commands import Command, parse_command, encode_command
from remote_audio.config import AppConfig, ConfigManager
from remote_audio.session import SessionLoop

__all__ = ['Command', 'parse_command', 'encode_command', 'AppConfig', 'ConfigManager', 'SessionLoop']
