"""
gallerica - Directory Resolution

All directories used by gallerica are derived here from the XDG base
directory variables, with the usual fallbacks under the home directory.

Directory structure:
  $XDG_CONFIG_HOME/gallerica/
    └── config.toml          # Daemon configuration
  $XDG_STATE_HOME/gallerica/ # Falls back to $XDG_CACHE_HOME/gallerica
    └── <storage_file>       # Persisted daemon state (optional)
  $XDG_RUNTIME_DIR/gallerica/ # Falls back to /tmp
    └── gallerica.sock       # Default control socket

These functions are only called while the configuration is loaded. Every
other component receives already resolved paths.
"""

import os
from pathlib import Path
from typing import Optional

APP_NAME = 'gallerica'

CONFIG_FILE_NAME = 'config.toml'
FALLBACK_RUNTIME_DIR = Path('/tmp')


def _xdg_dir(variable: str, fallback: Optional[Path]) -> Optional[Path]:
    value = os.environ.get(variable)
    # Relative XDG paths are invalid and ignored
    if value and os.path.isabs(value):
        return Path(value) / APP_NAME
    if fallback is None:
        return None
    return fallback / APP_NAME


def home_dir() -> Path:
    return Path(os.path.expanduser('~'))


def config_dir() -> Path:
    return _xdg_dir('XDG_CONFIG_HOME', home_dir() / '.config')


def default_config_file() -> Path:
    return config_dir() / CONFIG_FILE_NAME


def cache_dir() -> Path:
    return _xdg_dir('XDG_CACHE_HOME', home_dir() / '.cache')


def state_dir() -> Path:
    """
    Directory for the persisted daemon state.

    Uses $XDG_STATE_HOME when set, then ~/.local/state. The cache directory
    is only used if no home directory can be determined.
    """
    state = _xdg_dir('XDG_STATE_HOME', None)
    if state is not None:
        return state
    home = home_dir()
    if str(home) == '~':
        return cache_dir()
    return home / '.local' / 'state' / APP_NAME


def runtime_dir() -> Path:
    """Directory for sockets; /tmp when $XDG_RUNTIME_DIR is not set."""
    return _xdg_dir('XDG_RUNTIME_DIR', None) or FALLBACK_RUNTIME_DIR


def expand_tilde(path: Path) -> Path:
    """
    Expand a leading ``~`` component to the user's home directory.

    Raises:
        ValueError: If the path starts with ``~`` and the user has no home.
    """
    parts = path.parts
    if not parts or parts[0] != '~':
        return path
    home = home_dir()
    if str(home) == '~':
        raise ValueError("User has no home directory!")
    return home.joinpath(*parts[1:])
