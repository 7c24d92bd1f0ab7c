import os
import stat
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Set, Tuple

from shrinkray.core.errors import DiscoveryError
from shrinkray.utils.file_processor import FileProcessor
from shrinkray.utils.logger import get_logger


# ============================================================================
# Discovery Walker
# ============================================================================


class DiscoveryWalker:
    """Lazily enumerates regular files under a set of roots."""

    def __init__(
        self,
        roots: Sequence[Path],
        exclude: Sequence[str] = (),
        max_depth: Optional[int] = None,
        follow_symlinks: bool = False,
    ):
        """
        Initialize walker.

        Args:
            roots: Files or directories to walk
            exclude: Glob patterns matched against entry names and root-relative paths
            max_depth: Directory levels to descend below each root (None = unlimited)
            follow_symlinks: Follow symbolic links instead of skipping them
        """
        self.roots = [Path(root) for root in roots]
        self.exclude = list(exclude)
        self.max_depth = max_depth
        self.follow_symlinks = follow_symlinks
        self.errors: List[DiscoveryError] = []
        self.logger = get_logger()

    def walk(self) -> Iterator[Path]:
        """
        Yield regular files, one directory listing at a time.

        Every call starts over from the first root.
        """
        self.errors = []
        for root in self.roots:
            yield from self._walk_root(root)

    def _walk_root(self, root: Path) -> Iterator[Path]:
        try:
            root_stat = root.stat() if self.follow_symlinks or not root.is_symlink() else None
        except OSError as error:
            self._record(root, error)
            return

        if root_stat is None:
            self.logger.debug(f"Skipping symlink root {root}")
            return
        if stat.S_ISREG(root_stat.st_mode):
            if not FileProcessor.is_temp_file(root):
                yield root
            return
        if not stat.S_ISDIR(root_stat.st_mode):
            return

        visited: Set[Tuple[int, int]] = {(root_stat.st_dev, root_stat.st_ino)}
        stack: List[Tuple[Path, int]] = [(root, 0)]
        while stack:
            directory, depth = stack.pop()
            subdirectories: List[Path] = []

            for entry in self._list(directory):
                path = Path(entry.path)
                if self._is_excluded(path, root):
                    continue

                try:
                    if entry.is_symlink() and not self.follow_symlinks:
                        continue
                    if entry.is_dir(follow_symlinks=self.follow_symlinks):
                        if self.max_depth is not None and depth >= self.max_depth:
                            continue
                        entry_stat = entry.stat(follow_symlinks=self.follow_symlinks)
                        key = (entry_stat.st_dev, entry_stat.st_ino)
                        if key in visited:
                            self.logger.debug(f"Skipping already visited directory {path}")
                            continue
                        visited.add(key)
                        subdirectories.append(path)
                    elif entry.is_file(follow_symlinks=self.follow_symlinks):
                        if not FileProcessor.is_temp_file(path):
                            yield path
                except OSError as error:
                    self._record(path, error)

            # Reversed so the stack pops subdirectories in name order
            stack.extend((sub, depth + 1) for sub in reversed(subdirectories))

    def _list(self, directory: Path) -> List[os.DirEntry]:
        try:
            with os.scandir(directory) as entries:
                return sorted(entries, key=lambda entry: entry.name)
        except OSError as error:
            self._record(directory, error)
            return []

    def _is_excluded(self, path: Path, root: Path) -> bool:
        if not self.exclude:
            return False
        relative = path.relative_to(root).as_posix()
        return any(fnmatch(path.name, pattern) or fnmatch(relative, pattern) for pattern in self.exclude)

    def _record(self, path: Path, error: OSError) -> None:
        message = error.strerror or str(error)
        self.logger.warning(f"Cannot read {path}: {message}")
        self.errors.append(DiscoveryError(path, message))
