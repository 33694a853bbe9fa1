"""
Configuration loading.

The daemon is configured with a TOML file, by default
``$XDG_CONFIG_HOME/gallerica/config.toml``:

    command_line = "feh --bg-fill {image}"
    update_interval_ms = 600000
    default_gallery = "landscapes"
    number_retries = 3
    recent_image_buffer_size = 10
    storage_file = "state.json"

    [[galleries]]
    name = "landscapes"
    folders = ["~/Pictures/landscapes", "/srv/photos/mountains"]

    [[listeners]]
    type = "UnixSocket"

    [[listeners]]
    type = "MQTT"
    host = "broker.local"
    topic = "home/livingroom/gallerica"

All paths are resolved here, once. The rest of the daemon only sees the
resulting ``Configuration``.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import tomli

from gallerica import constants
from gallerica.common import paths
from gallerica.exceptions.config_exception import ConfigException
from gallerica.update_lifecycle import CommandLine

logger = logging.getLogger(__name__)


@dataclass
class Gallery:
    name: str
    folders: List[Path]


@dataclass
class UnixListenerConfig:
    path_to_socket: Path


@dataclass
class MqttListenerConfig:
    host: str = constants.DEFAULT_MQTT_HOST
    port: int = constants.DEFAULT_MQTT_PORT
    topic: str = constants.DEFAULT_MQTT_TOPIC
    client_id: str = constants.DEFAULT_MQTT_CLIENT_ID
    keepalive: int = constants.DEFAULT_MQTT_KEEPALIVE
    qos: int = constants.DEFAULT_MQTT_QOS
    username: Optional[str] = None
    password: Optional[str] = None


ListenerConfig = Union[UnixListenerConfig, MqttListenerConfig]


@dataclass
class Configuration:
    command_line: CommandLine
    update_interval_ms: int
    default_gallery: str
    galleries: Dict[str, Gallery]
    update_immediately: bool = constants.DEFAULT_UPDATE_IMMEDIATELY
    listeners: List[ListenerConfig] = field(default_factory=list)
    recent_image_buffer_size: int = constants.DEFAULT_RECENT_IMAGE_BUFFER_SIZE
    number_retries: int = constants.DEFAULT_NUMBER_RETRIES
    # Absolute path of the state file; None disables persistence
    storage_file: Optional[Path] = None


_MISSING = object()


def _get(table: dict, key: str, expected_type, default=_MISSING, where: str = 'configuration'):
    if key not in table:
        if default is _MISSING:
            raise ConfigException(f"Missing required key '{key}' in {where}")
        return default
    value = table[key]
    # TOML booleans must not pass as integers
    if expected_type is int and isinstance(value, bool):
        raise ConfigException(f"'{key}' in {where} must be an integer, got {value!r}")
    if not isinstance(value, expected_type):
        type_name = getattr(expected_type, '__name__', str(expected_type))
        raise ConfigException(f"'{key}' in {where} must be of type {type_name}, got {value!r}")
    return value


def _non_negative(key: str, value: int) -> int:
    if value < 0:
        raise ConfigException(f"'{key}' must not be negative, got {value}")
    return value


def _resolve(path: Path, base: Path) -> Path:
    path = paths.expand_tilde(path)
    return path if path.is_absolute() else base / path


def _parse_galleries(raw) -> Dict[str, Gallery]:
    if not isinstance(raw, list):
        raise ConfigException("'galleries' must be an array of tables")

    galleries: Dict[str, Gallery] = {}
    for index, table in enumerate(raw):
        where = f"galleries[{index}]"
        if not isinstance(table, dict):
            raise ConfigException(f"{where} must be a table")
        name = _get(table, 'name', str, where=where)
        folders = _get(table, 'folders', list, where=where)
        if not all(isinstance(folder, str) for folder in folders):
            raise ConfigException(f"'folders' in gallery '{name}' must be a list of paths")
        if name in galleries:
            raise ConfigException(f"Duplicate gallery '{name}'")
        try:
            galleries[name] = Gallery(name, [paths.expand_tilde(Path(folder)) for folder in folders])
        except ValueError as e:
            raise ConfigException(str(e)) from e
    return galleries


def _parse_listener(table, index: int, runtime_dir: Path) -> ListenerConfig:
    where = f"listeners[{index}]"
    if not isinstance(table, dict):
        raise ConfigException(f"{where} must be a table")
    kind = _get(table, 'type', str, where=where)

    if kind == 'UnixSocket':
        socket_path = Path(_get(table, 'path_to_socket', str, constants.DEFAULT_SOCKET_NAME, where))
        return UnixListenerConfig(path_to_socket=_resolve(socket_path, runtime_dir))

    if kind == 'MQTT':
        return MqttListenerConfig(
            host=_get(table, 'host', str, constants.DEFAULT_MQTT_HOST, where),
            port=_get(table, 'port', int, constants.DEFAULT_MQTT_PORT, where),
            topic=_get(table, 'topic', str, constants.DEFAULT_MQTT_TOPIC, where),
            client_id=_get(table, 'client_id', str, constants.DEFAULT_MQTT_CLIENT_ID, where),
            keepalive=_get(table, 'keepalive', int, constants.DEFAULT_MQTT_KEEPALIVE, where),
            qos=_get(table, 'qos', int, constants.DEFAULT_MQTT_QOS, where),
            username=_get(table, 'username', str, None, where),
            password=_get(table, 'password', str, None, where),
        )

    raise ConfigException(f"Unknown listener type '{kind}' in {where}")


def parse_configuration(
    data: Dict[str, Any],
    state_dir: Optional[Path] = None,
    runtime_dir: Optional[Path] = None,
) -> Configuration:
    """
    Build a ``Configuration`` from an already parsed TOML document.

    Args:
        data: The TOML document as a dict.
        state_dir: Base for a relative ``storage_file`` (default: XDG state dir).
        runtime_dir: Base for relative socket paths (default: XDG runtime dir).

    Raises:
        ConfigException: If a key is missing, has the wrong type or is inconsistent.
    """
    state_dir = state_dir or paths.state_dir()
    runtime_dir = runtime_dir or paths.runtime_dir()

    try:
        command_line = CommandLine.parse(_get(data, 'command_line', str))
    except ValueError as e:
        raise ConfigException(str(e)) from e

    update_interval_ms = _get(data, 'update_interval_ms', int)
    if update_interval_ms <= 0:
        raise ConfigException(f"'update_interval_ms' must be positive, got {update_interval_ms}")

    galleries = _parse_galleries(_get(data, 'galleries', list))
    default_gallery = _get(data, 'default_gallery', str)
    if default_gallery not in galleries:
        raise ConfigException(f"Invalid gallery '{default_gallery}'")

    raw_listeners = _get(data, 'listeners', list, None)
    if raw_listeners is None:
        listeners = [UnixListenerConfig(path_to_socket=runtime_dir / constants.DEFAULT_SOCKET_NAME)]
    else:
        listeners = [_parse_listener(table, index, runtime_dir) for index, table in enumerate(raw_listeners)]

    storage_file = _get(data, 'storage_file', str, None)

    return Configuration(
        command_line=command_line,
        update_interval_ms=update_interval_ms,
        default_gallery=default_gallery,
        galleries=galleries,
        update_immediately=_get(data, 'update_immediately', bool, constants.DEFAULT_UPDATE_IMMEDIATELY),
        listeners=listeners,
        recent_image_buffer_size=_non_negative(
            'recent_image_buffer_size',
            _get(data, 'recent_image_buffer_size', int, constants.DEFAULT_RECENT_IMAGE_BUFFER_SIZE),
        ),
        number_retries=_non_negative(
            'number_retries',
            _get(data, 'number_retries', int, constants.DEFAULT_NUMBER_RETRIES),
        ),
        storage_file=_resolve(Path(storage_file), state_dir) if storage_file is not None else None,
    )


def load_configuration(config_file: Optional[Path] = None) -> Configuration:
    """
    Read and parse the configuration file.

    Raises:
        ConfigException: If the file can't be read, parsed or validated.
    """
    config_file = Path(config_file) if config_file else paths.default_config_file()

    try:
        with open(config_file, 'rb') as f:
            data = tomli.load(f)
    except OSError as e:
        raise ConfigException(f"Failed to open config file: {e.strerror or e}", config_file) from e
    except tomli.TOMLDecodeError as e:
        raise ConfigException(f"Failed to parse configuration: {e}", config_file) from e

    try:
        configuration = parse_configuration(data)
    except ConfigException as e:
        raise ConfigException(e.message, config_file) from e

    logger.info(f"Loaded config from {config_file}")
    return configuration
