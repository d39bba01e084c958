import yaml

from remote_audio.config import AppConfig, ConfigManager


def test_defaults_when_file_missing(tmp_path):
    config = ConfigManager(str(tmp_path / "config.yml")).get_config()
    assert config == AppConfig()
    assert config.broker_host == "localhost"
    assert config.broker_port == 1883
    assert config.topic == "remoteaudio/commands"
    assert config.client_id == "remoteaudio"
    assert config.debug is True


def test_values_loaded_from_yaml(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text(yaml.dump({
        "broker_host": "10.0.0.5",
        "broker_port": 8883,
        "topic": "museum/room1",
        "debug": False,
        "audio_device": "USB Audio",
        "unknown_key": 1,
    }))
    config = ConfigManager(str(path)).get_config()
    assert config.broker_host == "10.0.0.5"
    assert config.broker_port == 8883
    assert config.topic == "museum/room1"
    assert config.debug is False
    assert config.audio_device == "USB Audio"
    assert config.client_id == "remoteaudio"


def test_command_line_style_keys_are_migrated(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("server: broker.lan\nport: 1884\nclient: stage-left\n")
    config = ConfigManager(str(path)).get_config()
    assert (config.broker_host, config.broker_port, config.client_id) == ("broker.lan", 1884, "stage-left")


def test_invalid_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("broker_host: [unclosed\n")
    assert ConfigManager(str(path)).get_config() == AppConfig()


def test_non_mapping_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("- just\n- a list\n")
    assert ConfigManager(str(path)).get_config() == AppConfig()


def test_numeric_audio_device_is_ignored(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("audio_device: 3\n")
    assert ConfigManager(str(path)).get_config().audio_device is None


def test_save_and_reload(tmp_path):
    path = tmp_path / "config.yml"
    manager = ConfigManager(str(path))
    manager.save(AppConfig(topic="a/b", tick_interval_ms=5.0))
    reloaded = ConfigManager(str(path)).get_config()
    assert reloaded.topic == "a/b"
    assert reloaded.tick_interval_ms == 5.0
