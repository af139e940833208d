"""
Cache Store

Manages the volatile directory (default ~/.pollenwall) holding downloaded pollen artifacts.

The directory is flat and fully disposable. Every artifact is stored under a name derived
from the pollen id and its revision (the content address of the artifact), e.g.

    QmPollenId_QmArtifactRef.jpeg

Since artifacts are content addressed, the same id and revision always means the same bytes,
so an artifact already on disk never has to be downloaded again. Files are never rewritten
in place: a new revision is a new file.

Writes go to a hidden temporary file in the same directory that is moved into place once
complete, so an interrupted run never leaves a half written artifact under a real name.
"""

import io
import os
import re
import hashlib
import logging
import tempfile
from pathlib import Path
from dataclasses import dataclass
from typing import Iterator, Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

PARTIAL_PREFIX = ".partial-"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9.-]+")


class CacheWriteError(Exception):
    """
    Raised when an artifact cannot be written to the cache directory (permissions, full
    disk, the directory being a file...).
    """

    pass


class InvalidArtifactError(Exception):
    """Raised when downloaded artifact bytes are not an image."""

    pass


@dataclass(frozen=True)
class CacheEntry:
    pollen_id: str
    revision: str
    path: Path
    content_hash: str


def safe_name(value: str) -> str:
    """Reduce an id or revision to characters that are safe in a file name on every platform."""

    return _UNSAFE_CHARS.sub("-", value).strip(".-") or "-"


def image_format(data: bytes) -> str:
    """
    Return the Pillow format name (JPEG, PNG...) of an image held in memory. Pillow only reads
    the header here, so this is cheap even for large artifacts.
    """

    try:
        with Image.open(io.BytesIO(data)) as image:
            return image.format

    except UnidentifiedImageError:
        raise InvalidArtifactError("The artifact does not appear to be an image.")


class CacheStore:
    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()

    def ensure(self) -> Path:
        """Create the cache directory if needed. Returns the directory."""

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise CacheWriteError(
                f"Could not create the cache directory {self.directory}: {error}"
            )

        if not os.access(self.directory, os.W_OK):
            raise CacheWriteError(f"The cache directory {self.directory} is not writable.")

        return self.directory

    def stem_for(self, pollen_id: str, revision: str) -> str:
        return f"{safe_name(pollen_id)}_{safe_name(revision)}"

    def path_for(self, pollen_id: str, revision: str) -> Optional[Path]:
        """
        Look up the cached artifact for pollen_id at revision. Returns None when it has not
        been downloaded yet.
        """

        if not self.directory.is_dir():
            return None

        stem = self.stem_for(pollen_id, revision)
        for path in sorted(self.directory.glob(f"{stem}.*")):
            if path.is_file() and path.stem == stem:
                return path

        return None

    def put(self, pollen_id: str, data: bytes, revision: str) -> Path:
        """
        Store artifact bytes for pollen_id at revision and return the path of the new file.
        The file suffix comes from the detected image format.
        """

        suffix = image_format(data).lower()
        destination = self.directory / f"{self.stem_for(pollen_id, revision)}.{suffix}"

        self.ensure()

        partial = None
        try:
            with tempfile.NamedTemporaryFile(
                dir=self.directory, prefix=PARTIAL_PREFIX, delete=False
            ) as file:
                partial = Path(file.name)
                file.write(data)

            os.replace(partial, destination)

        except OSError as error:
            if partial is not None:
                partial.unlink(missing_ok=True)
            raise CacheWriteError(f"Could not save {destination.name}: {error}")

        logger.debug("cached %s (%d bytes)", destination.name, len(data))
        return destination

    def _artifacts(self) -> Iterator[tuple[Path, str, str]]:
        if not self.directory.is_dir():
            return

        for path in sorted(self.directory.iterdir()):
            if not path.is_file() or path.name.startswith(PARTIAL_PREFIX):
                continue

            pollen_id, separator, revision = path.stem.partition("_")
            if separator:
                yield path, pollen_id, revision

    def entries(self) -> Iterator[CacheEntry]:
        """Yield every complete artifact in the cache directory."""

        for path, pollen_id, revision in self._artifacts():
            yield CacheEntry(
                pollen_id=pollen_id,
                revision=revision,
                path=path,
                content_hash=hashlib.sha256(path.read_bytes()).hexdigest(),
            )

    def prune(self, keep: Path) -> int:
        """
        Delete every cached artifact except keep, which is normally the image currently on
        the desktop. Returns the number of files removed.
        """

        keep = Path(keep)
        removed = 0

        for path, _, _ in list(self._artifacts()):
            if path == keep:
                continue
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                pass

        return removed

    def clean(self) -> int:
        """
        Delete every file in the cache directory and return how many were removed. A missing
        or empty directory is not an error.
        """

        if not self.directory.is_dir():
            return 0

        removed = 0
        for path in self.directory.iterdir():
            if path.is_file() or path.is_symlink():
                path.unlink()
                removed += 1

        return removed
