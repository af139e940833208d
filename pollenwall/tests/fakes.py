"""
fakes.py

Stand-ins for the network and desktop collaborators of the polling loop, plus shorthands
for building feed snapshots.
"""

import io
from pathlib import Path

from PIL import Image

from pollenwall.feed import FeedNotFoundError
from pollenwall.models import PollenStatus, RemotePollenSummary


def make_image(color="purple", format="JPEG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color=color).save(buffer, format=format)
    return buffer.getvalue()


def processing(pollen_id, ref=None, **kwargs) -> RemotePollenSummary:
    return RemotePollenSummary(pollen_id, PollenStatus.PROCESSING, artifact_ref=ref, **kwargs)


def done(pollen_id, ref=None, **kwargs) -> RemotePollenSummary:
    return RemotePollenSummary(pollen_id, PollenStatus.DONE, artifact_ref=ref, **kwargs)


class FakeFeed:
    """
    Feed client replaying scripted snapshots. An Exception in place of a snapshot is raised
    by that poll instead. Once the script runs out the last snapshot repeats.
    """

    def __init__(self, snapshots=(), artifacts=None):
        self.snapshots = list(snapshots)
        self.artifacts = dict(artifacts or {})
        self.polls = 0
        self.fetched = []

    def list_pollens(self):
        index = min(self.polls, len(self.snapshots) - 1)
        self.polls += 1
        if index < 0:
            return []
        snapshot = self.snapshots[index]
        if isinstance(snapshot, Exception):
            raise snapshot
        return list(snapshot)

    def fetch_artifact(self, ref):
        self.fetched.append(ref)
        artifact = self.artifacts.get(ref)
        if artifact is None:
            raise FeedNotFoundError(f"{ref} not found")
        if isinstance(artifact, Exception):
            raise artifact
        return artifact


class FakeApplier:
    """Wallpaper applier that records what it was asked to show, or fails with error."""

    def __init__(self, error: Exception = None):
        self.error = error
        self.applied = []

    def apply(self, img_path: Path) -> None:
        if self.error is not None:
            raise self.error
        assert Path(img_path).is_file()
        self.applied.append(Path(img_path))

    @property
    def names(self) -> list[str]:
        return [path.name for path in self.applied]
