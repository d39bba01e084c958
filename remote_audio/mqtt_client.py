"""MQTT command subscriber using paho-mqtt.

Subscribes to the configured command topic, parses every message into a
command and hands it to a sink (normally the session loop's queue). Messages
that fail to parse are logged and dropped.

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
from typing import Any, Callable, Optional

import paho.mqtt.client as mqtt

from remote_audio.commands import Command, CommandParseError, parse_command
from remote_audio.config import AppConfig

logger = logging.getLogger('mqtt_client')

CommandSink = Callable[[Command], None]


class CommandSubscriber:
    """Receives controller commands from an MQTT broker.

    paho-mqtt runs the network loop and calls back on its own thread; the
    only thing that crosses over to the playback side is ``sink(command)``.
    """

    QOS = 0  # at most once

    def __init__(self, config: AppConfig, sink: CommandSink):
        """
        Initialize the subscriber.

        Args:
            config: Application configuration (broker, topic, client id, debug).
            sink: Called with every successfully parsed command.
        """
        self.config = config
        self._sink = sink
        self._connection_status = "disconnected"
        self._last_error: Optional[str] = None

        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=config.client_id)
        self.client.enable_logger(logging.getLogger('paho'))
        self.client.on_connect = self._on_connect
        self.client.on_disconnect = self._on_disconnect
        self.client.on_message = self._on_message

    @property
    def connection_status(self) -> str:
        return self._connection_status

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def connect(self) -> None:
        """Connect to the broker.

        Raises:
            OSError: if the broker cannot be reached.
        """
        host, port = self.config.broker_host, self.config.broker_port
        logger.info(f'Connecting to "{host}:{port}" as "{self.config.client_id}"')
        self._connection_status = "connecting"
        try:
            self.client.connect(host, port, keepalive=self.config.keep_alive)
        except OSError as e:
            self._connection_status = "error"
            self._last_error = str(e)
            logger.error(f"Cannot connect to broker {host}:{port}: {e}")
            raise

    def run_forever(self) -> None:
        """Run the network loop in the calling thread until disconnect()."""
        self.client.loop_forever(retry_first_connection=False)

    def start(self) -> None:
        """Run the network loop in a background thread."""
        self.client.loop_start()

    def disconnect(self) -> None:
        logger.info("Disconnecting from broker")
        self.client.disconnect()

    def stop(self) -> None:
        self.disconnect()
        self.client.loop_stop()

    def handle_payload(self, payload: bytes) -> Optional[Command]:
        """Parse one message body and deliver it to the sink.

        Returns the command, or None if the message was dropped.
        """
        try:
            command = parse_command(payload)
        except CommandParseError as e:
            logger.warning(f"Dropping message: {e}")
            return None
        if self.config.debug:
            logger.debug(f"{command}")
        self._sink(command)
        return command

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if reason_code.is_failure:
            self._connection_status = "error"
            self._last_error = str(reason_code)
            logger.error(f"Broker refused connection: {reason_code}")
            return
        self._connection_status = "connected"
        logger.info(f'Subscribing to "{self.config.topic}"')
        # Subscribing here renews the subscription after every reconnect
        client.subscribe(self.config.topic, qos=self.QOS)

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        self._connection_status = "disconnected"
        if reason_code.is_failure:
            self._last_error = str(reason_code)
            logger.warning(f"Disconnected from broker: {reason_code}")
        else:
            logger.info("Disconnected from broker")

    def _on_message(self, client: mqtt.Client, userdata: Any, message: mqtt.MQTTMessage) -> None:
        self.handle_payload(message.payload)
