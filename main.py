"""Entry point for the remote audio player.

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
import argparse
import dataclasses
import logging
import signal
import sys

from remote_audio.audio_device import AudioDeviceError, AudioDeviceManager
from remote_audio.config import AppConfig, ConfigManager
from remote_audio.mqtt_client import CommandSubscriber
from remote_audio.playback import Mixer, PlaybackBackend
from remote_audio.session import SessionLoop

# Configure unified logging format for all components
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# ANSI color codes
class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    DEBUG = '\033[37m'      # White
    INFO = '\033[96m'       # Light cyan
    WARNING = '\033[93m'    # Yellow
    ERROR = '\033[91m'      # Red

    @staticmethod
    def get_color(level):
        """Get color code for log level."""
        if level >= logging.ERROR:
            return Colors.ERROR
        elif level >= logging.WARNING:
            return Colors.WARNING
        elif level >= logging.INFO:
            return Colors.INFO
        else:
            return Colors.DEBUG

# Custom formatter that maps logger names and adds colors
class LoggerNameFormatter(logging.Formatter):
    """Formatter that maps logger names to more intuitive names and adds colors."""

    LOGGER_NAME_MAP = {
        '__main__': 'app',
        'main': 'app',
        'paho': 'mqtt',
        'mqtt_client': 'mqtt',
    }

    def __init__(self, fmt=None, datefmt=None, use_colors=None):
        super().__init__(fmt, datefmt)
        # Auto-detect if colors should be used (if output is a TTY)
        if use_colors is None:
            self.use_colors = sys.stderr.isatty() if hasattr(sys.stderr, 'isatty') else False
        else:
            self.use_colors = use_colors

    def format(self, record):
        # Map logger name to more intuitive name
        record.name = self.LOGGER_NAME_MAP.get(record.name, record.name)

        formatted = super().format(record)

        if self.use_colors:
            color = Colors.get_color(record.levelno)
            return f"{color}{formatted}{Colors.RESET}"

        return formatted


def configure_logging(debug: bool) -> None:
    """Configure the root logger with the custom formatter."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_handler = logging.StreamHandler()
    root_handler.setFormatter(LoggerNameFormatter(LOG_FORMAT, LOG_DATE_FORMAT))
    root_logger.addHandler(root_handler)
    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    # paho logs every packet at DEBUG
    logging.getLogger('paho').setLevel(logging.INFO)


logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="Play sound cues on command from an MQTT topic")
    ap.add_argument("-s", "--server", help="MQTT broker host")
    ap.add_argument("-p", "--port", type=int, help="MQTT broker port")
    ap.add_argument("-t", "--topic", help="Command topic to subscribe to")
    ap.add_argument("-c", "--client", help="MQTT client id")
    ap.add_argument("-d", "--debug", action=argparse.BooleanOptionalAction, default=None,
                    help="Log every received command")
    ap.add_argument("--device", help="Output device name (default: system default)")
    ap.add_argument("--config", default="config.yml", help="YAML configuration file")
    ap.add_argument("--save-config", action="store_true",
                    help="Write the effective configuration back to --config")
    ap.add_argument("--list-devices", action="store_true", help="List output devices and exit")
    return ap.parse_args(argv)


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Return ``config`` with any command-line values applied on top."""
    overrides = {
        "broker_host": args.server,
        "broker_port": args.port,
        "topic": args.topic,
        "client_id": args.client,
        "debug": args.debug,
        "audio_device": args.device,
    }
    return dataclasses.replace(config, **{k: v for k, v in overrides.items() if v is not None})


def main(argv=None) -> int:
    args = parse_args(argv)
    config_manager = ConfigManager(args.config)
    config = apply_overrides(config_manager.get_config(), args)
    configure_logging(config.debug)

    if args.save_config:
        config_manager.save(config)
        logger.info(f"Configuration written to {args.config}")

    device_manager = AudioDeviceManager()
    if args.list_devices:
        for device in device_manager.list_devices():
            marker = "*" if device.is_default else " "
            print(f"{marker} {device.index:3d}  {device.name}  "
                  f"({device.channels}ch, {device.sample_rate}Hz)")
        return 0

    if config.debug:
        logger.info("Running in debug mode")

    try:
        device = device_manager.select(config.audio_device)
        mixer = Mixer(
            sample_rate=config.sample_rate or device.sample_rate,
            channels=min(config.channels, device.channels),
            blocksize=config.blocksize,
        )
        mixer.open(device)
    except AudioDeviceError as e:
        logger.error(f"No audio output available: {e}")
        return 1

    session = SessionLoop(PlaybackBackend(mixer), interval_ms=config.tick_interval_ms)
    session.start()

    subscriber = CommandSubscriber(config, session.submit)
    signal.signal(signal.SIGTERM, lambda signum, frame: subscriber.disconnect())

    try:
        subscriber.connect()
        subscriber.run_forever()
    except OSError:
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    finally:
        session.stop()
        mixer.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
