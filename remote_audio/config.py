"""Configuration management for the remote audio player.

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
import logging
import yaml
from pathlib import Path
from typing import Optional
from dataclasses import dataclass, asdict, fields

logger = logging.getLogger('config')


@dataclass
class AppConfig:
    """Application configuration model."""
    broker_host: str = "localhost"
    broker_port: int = 1883
    topic: str = "remoteaudio/commands"
    client_id: str = "remoteaudio"
    debug: bool = True
    keep_alive: int = 5  # MQTT keep-alive in seconds
    audio_device: Optional[str] = None  # None for default device, str for device name
    sample_rate: Optional[int] = None  # None for the device default rate
    channels: int = 2  # Output channels
    blocksize: int = 1024  # Frames per audio callback
    tick_interval_ms: float = 1.0  # Session loop polling interval


class ConfigManager:
    """Manages application configuration persistence."""

    def __init__(self, config_file: str = "config.yml"):
        self.config_file = Path(config_file)
        self._config: Optional[AppConfig] = None

    def load(self) -> AppConfig:
        """Load configuration from file or return defaults."""
        if self._config is not None:
            return self._config

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    data = yaml.safe_load(f) or {}
                if not isinstance(data, dict):
                    raise ValueError(f"expected a mapping, got {type(data).__name__}")

                # Older files used the command-line names for the broker settings
                if 'server' in data and 'broker_host' not in data:
                    data['broker_host'] = data.pop('server')
                if 'port' in data and 'broker_port' not in data:
                    data['broker_port'] = data.pop('port')
                if 'client' in data and 'client_id' not in data:
                    data['client_id'] = data.pop('client')

                audio_device = data.get('audio_device')
                # Ensure audio_device is a string or None
                if audio_device is not None and not isinstance(audio_device, str):
                    data['audio_device'] = None

                known = {f.name for f in fields(AppConfig)}
                self._config = AppConfig(**{k: v for k, v in data.items() if k in known})
            except (yaml.YAMLError, ValueError, TypeError) as e:
                logger.warning(f"Error loading config: {e}. Using defaults.")
                self._config = AppConfig()
        else:
            self._config = AppConfig()

        return self._config

    def save(self, config: AppConfig) -> None:
        """Save configuration to file."""
        self._config = config
        with open(self.config_file, 'w') as f:
            yaml.dump(asdict(config), f, default_flow_style=False, sort_keys=False)

    def get_config(self) -> AppConfig:
        """Get current configuration."""
        return self.load()

