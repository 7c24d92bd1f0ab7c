import errno
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional


# Marker embedded in every temporary output name so leftovers of an interrupted
# run are recognisable and never picked up as candidates.
TEMP_MARKER = ".shrinkray-"


# ============================================================================
# File Processor
# ============================================================================


class FileProcessor:
    """Handles temporary outputs, metadata preservation and the final rename."""

    @staticmethod
    def claim_temp_path(original: Path, suffix: str, directory: Optional[Path] = None) -> Path:
        """
        Create a unique, empty temporary file next to ``original``.

        The file is created exclusively, so no two jobs can ever share it, and it
        lives on the same filesystem as the original so the final move is atomic.

        Args:
            original: File that will eventually be replaced
            suffix: Extension of the encoder output (e.g. ".webm")
            directory: Where to create it instead of next to the original

        Returns:
            Path to the new temporary file
        """
        fd, name = tempfile.mkstemp(
            dir=str(directory if directory is not None else original.parent),
            prefix=f"{original.stem}{TEMP_MARKER}",
            suffix=suffix,
        )
        os.close(fd)
        return Path(name)

    @staticmethod
    def is_temp_file(path: Path) -> bool:
        return TEMP_MARKER in path.name

    @staticmethod
    def preserve_metadata(src: Path, dst: Path) -> None:
        """Copy permission bits and access/modification times from src to dst."""
        shutil.copystat(src, dst)

    @staticmethod
    def discard(path: Path) -> bool:
        """Remove a temporary file if it still exists. Returns True if removed."""
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    @staticmethod
    def replace_original(temp_path: Path, original: Path, destination: Path, keep_original: bool = False) -> Path:
        """
        Move ``temp_path`` into place of ``original``.

        When the destination is the original itself this is a single atomic
        ``os.replace``. When the extension changes, the destination is created
        without clobbering an existing file and the original is removed only
        after the new file is in place. With ``keep_original`` the output is only
        placed at the destination and the original stays where it is.

        Returns:
            The final path of the replacement

        Raises:
            FileExistsError: destination is not replaced in place and already exists
            OSError: the move itself failed
        """
        if destination == original and not keep_original:
            os.replace(temp_path, original)
            return original

        try:
            os.link(temp_path, destination)
        except FileExistsError:
            raise
        except OSError as error:
            if error.errno not in (errno.EPERM, errno.EXDEV, errno.ENOTSUP, errno.EOPNOTSUPP):
                raise
            # Filesystem without hard links
            if destination.exists():
                raise FileExistsError(errno.EEXIST, "Destination already exists", str(destination))
            os.replace(temp_path, destination)
        else:
            temp_path.unlink()

        if not keep_original:
            original.unlink()
        return destination
