"""
Random image selection with repeat avoidance.

Every regular file found directly inside a gallery's folders is a candidate.
Recently shown files are remembered in a ``RecentBuffer``; a draw that hits
the buffer is re-rolled up to ``retries`` times before it is accepted anyway.
"""

import logging
import os
import random
import threading
from collections import deque
from pathlib import Path
from typing import Iterable, Iterator, List, Optional

logger = logging.getLogger(__name__)


class RecentBuffer:
    """
    Fixed-capacity ring of recently selected paths, oldest first.

    Pushing into a full buffer evicts the oldest entry. Every read or push
    holds the internal lock for that single operation only.
    """

    def __init__(self, capacity: int, items: Iterable[Path] = ()):
        if capacity < 0:
            raise ValueError(f"Buffer capacity must not be negative, got {capacity}")
        self._lock = threading.Lock()
        self._items = deque((Path(item) for item in items), maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, path) -> bool:
        with self._lock:
            return Path(path) in self._items

    def __iter__(self) -> Iterator[Path]:
        return iter(self.items())

    def __repr__(self) -> str:
        return f"RecentBuffer(capacity={self.capacity}, items={self.items()!r})"

    def items(self) -> List[Path]:
        """Snapshot of the contents, oldest first."""
        with self._lock:
            return list(self._items)

    def push(self, path) -> None:
        with self._lock:
            self._items.append(Path(path))

    def resized(self, capacity: int) -> 'RecentBuffer':
        """
        Copy of this buffer with another capacity.

        When shrinking, the most recent entries are kept.
        """
        return RecentBuffer(capacity, self.items())


def list_gallery_files(folders: Iterable[Path]) -> List[Path]:
    """
    All regular files directly inside ``folders``, sorted.

    Folders that cannot be read are skipped.
    """
    files = []
    for folder in folders:
        try:
            with os.scandir(folder) as entries:
                for entry in entries:
                    try:
                        if entry.is_file():
                            files.append(Path(entry.path))
                    except OSError:
                        continue
        except OSError as e:
            logger.debug(f"Skipping unreadable folder {folder}: {e}")
    files.sort()
    return files


def select_random_image(
    folders: Iterable[Path],
    recent: RecentBuffer,
    retries: int,
    rng: Optional[random.Random] = None,
) -> Optional[Path]:
    """
    Pick a random file from ``folders``, avoiding the ones in ``recent``.

    Up to ``retries + 1`` independent draws are made from the full set of
    candidates (a rejected file may be drawn again). The last draw is
    accepted even if it was shown recently, and ``retries == 0`` accepts the
    first draw without looking at the buffer. The accepted path is pushed
    into ``recent``.

    Returns:
        The selected path, or None if the folders contain no files.
    """
    rng = rng or random
    candidates = list_gallery_files(folders)
    if not candidates:
        return None

    tries_left = retries
    while True:
        selection = rng.choice(candidates)
        if tries_left == 0 or selection not in recent:
            recent.push(selection)
            return selection
        tries_left -= 1
