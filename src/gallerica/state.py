"""
Persisted daemon state.

Only the current gallery, the recently shown images and the pause flag
survive a restart. The state is stored as JSON:

    {
        "current_gallery": "cats",
        "recently_selected": {"capacity": 3, "items": ["/a.jpg", "/b.jpg"]},
        "is_paused": false
    }
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from gallerica import constants
from gallerica.exceptions.state_exception import StateException
from gallerica.selector import RecentBuffer

logger = logging.getLogger(__name__)


@dataclass
class PersistentState:
    current_gallery: Optional[str] = None
    recently_selected: RecentBuffer = field(
        default_factory=lambda: RecentBuffer(constants.DEFAULT_RECENT_IMAGE_BUFFER_SIZE)
    )
    is_paused: bool = False

    def to_dict(self) -> dict:
        return {
            'current_gallery': self.current_gallery,
            'recently_selected': {
                'capacity': self.recently_selected.capacity,
                'items': [str(path) for path in self.recently_selected.items()],
            },
            'is_paused': self.is_paused,
        }

    @classmethod
    def from_dict(cls, data) -> 'PersistentState':
        """
        Raises:
            StateException: If ``data`` does not have the expected layout.
        """
        if not isinstance(data, dict):
            raise StateException("State must be a JSON object")

        current_gallery = data.get('current_gallery')
        if current_gallery is not None and not isinstance(current_gallery, str):
            raise StateException(f"Invalid current_gallery: {current_gallery!r}")

        recent = data.get('recently_selected')
        if not isinstance(recent, dict):
            raise StateException("Missing recently_selected")
        capacity = recent.get('capacity')
        items = recent.get('items', [])
        if not isinstance(capacity, int) or isinstance(capacity, bool) or capacity < 0:
            raise StateException(f"Invalid buffer capacity: {capacity!r}")
        if not isinstance(items, list) or not all(isinstance(item, str) for item in items):
            raise StateException("Buffer items must be a list of paths")

        is_paused = data.get('is_paused', False)
        if not isinstance(is_paused, bool):
            raise StateException(f"Invalid is_paused: {is_paused!r}")

        return cls(
            current_gallery=current_gallery,
            recently_selected=RecentBuffer(capacity, (Path(item) for item in items)),
            is_paused=is_paused,
        )


class StateStore:
    """Reads and writes ``PersistentState`` to a single JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Optional[PersistentState]:
        """
        Returns:
            The stored state, or None if nothing was stored yet.

        Raises:
            StateException: If the file exists but can't be read or parsed.
        """
        if not self.path.exists():
            return None
        try:
            text = self.path.read_text(encoding='utf-8')
        except OSError as e:
            raise StateException(f"Failed to open state file '{self.path}': {e}") from e
        except UnicodeDecodeError as e:
            raise StateException(f"State file '{self.path}' is not UTF-8: {e}") from e
        try:
            data = json.loads(text)
        except (json.JSONDecodeError, RecursionError) as e:
            raise StateException(f"Failed to parse persisted state: {e}") from e
        return PersistentState.from_dict(data)

    def save(self, state: PersistentState) -> None:
        """
        Write ``state`` atomically.

        Raises:
            OSError: If the file can't be written.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(state.to_dict(), f)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
