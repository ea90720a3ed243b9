"""
Deterministic filesystem traversal for batch encryption.

Depth-first, entries at every level visited in lexicographic name order, so
two runs over an unchanged tree produce the same work list. Symlinks are
resolved to canonical paths and a per-walk visited set guarantees a physical
file or directory is visited at most once, which also breaks link cycles.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Iterator, Optional, Set
import logging
import os

from .models import IgnoreList, TraversalItem, CONTAINER_SUFFIX, HIDDEN_MARKER
from .exceptions import NotFoundError


logger = logging.getLogger(__name__)


def canonical(path) -> str:
    return os.path.normcase(os.path.realpath(path))


def is_hidden(name: str) -> bool:
    return name.startswith(HIDDEN_MARKER)


class TraversalEngine:
    """Produce TraversalItems lazily; safe to re-run for the same ordering."""

    def __init__(self, exclude: Optional[Iterable] = None):
        # canonical paths never yielded or entered, e.g. the crypt root and the keeper files
        self.exclude: Set[str] = {canonical(p) for p in (exclude or ())}

    def walk(
        self,
        root,
        ignore_list: IgnoreList = IgnoreList(),
        include_hidden: bool = False,
    ) -> Iterator[TraversalItem]:
        root = Path(root).expanduser()
        if not root.exists():
            raise NotFoundError(f"Path does not exist: {root}")

        if not root.is_dir():
            # an explicitly named file is taken as is, only containers are refused
            if not root.name.endswith(CONTAINER_SUFFIX):
                yield TraversalItem(
                    path=Path(os.path.realpath(root)), hidden=is_hidden(root.name), relative=Path(root.name)
                )
            return

        visited: Set[str] = set()
        top = Path(os.path.realpath(root))
        # containers mirror the tree under a folder named after the walk root
        yield from self._descend(top, Path(top.name), ignore_list, include_hidden, visited)

    def _descend(self, directory: Path, rel: Path, ignore_list, include_hidden, visited) -> Iterator[TraversalItem]:
        key = canonical(directory)
        if key in visited or key in self.exclude:
            return
        visited.add(key)

        try:
            with os.scandir(directory) as it:
                names = sorted(entry.name for entry in it)
        except OSError as e:
            logger.warning("skipping unreadable directory %s: %s", directory, e)
            return

        for name in names:
            path = directory / name
            hidden = is_hidden(name)
            if hidden and not include_hidden:
                continue

            try:
                is_dir = path.is_dir()
            except OSError:
                is_dir = False

            if is_dir:
                if ignore_list.ignores_directory(name):
                    continue
                # resolve links so a cycle lands on an already visited directory
                yield from self._descend(
                    Path(os.path.realpath(path)), rel / name, ignore_list, include_hidden, visited
                )
                continue

            if not path.exists():
                # dangling symlink
                logger.debug("skipping dangling link %s", path)
                continue
            if ignore_list.ignores_file(name) or name.endswith(CONTAINER_SUFFIX):
                continue

            real = canonical(path)
            if real in visited or real in self.exclude:
                continue
            visited.add(real)
            yield TraversalItem(path=Path(os.path.realpath(path)), hidden=hidden, relative=rel / name)
