"""
pollenwall Models

Dataclasses describing pollens as they are reported by the remote feed and as they
are tracked locally during a run. The remote shape (RemotePollenSummary) is produced by
a feed client and consumed by the tracker, which folds it into a Pollen held inside
a TrackerState. Nothing in here talks to the network or the filesystem.
"""

from enum import Enum
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional


class PollenStatus(Enum):
    PROCESSING = "processing"
    DONE = "done"


class Model(Enum):
    """Generator model a pollen was produced with, as written in the pollen's 'model' file."""

    WIKI_ART = "Wiki Art"
    VIT_B32 = "ViT-B/32"
    GUIDED_DIFFUSION = "Guided Diffusion"
    UNKNOWN = "unknown"

    @classmethod
    def from_name(cls, name: str) -> "Model":
        """
        Map the raw content of a pollen 'model' file to a Model. The service writes the
        name as a JSON string, so surrounding quotes and whitespace are stripped first.
        """

        name = name.strip().strip('"')

        if name == cls.WIKI_ART.value:
            return cls.WIKI_ART
        if name == cls.VIT_B32.value:
            return cls.VIT_B32
        # the service truncates this one, only the tail is stable
        if name.endswith("Guided Diffusion v2.4"):
            return cls.GUIDED_DIFFUSION

        return cls.UNKNOWN


@dataclass(frozen=True)
class RemotePollenSummary:
    """
    One pollen as seen by a single poll of the remote feed. artifact_ref is the content
    address of the latest image the feed knows of and may be None while the pollen is
    still processing.
    """

    id: str
    status: PollenStatus
    artifact_ref: Optional[str] = None
    artifact_name: Optional[str] = None
    source_ref: Optional[str] = None
    prompt: Optional[str] = None
    model: Optional[Model] = None


@dataclass
class Pollen:
    """
    Lifecycle record of a pollen for the duration of a run.

    last_seen_at is the poll sequence number of the most recent poll that observed the
    pollen. discovered_at is a stamp taken from a counter that only grows, so it is unique
    per pollen and orders pollens by the time they were first seen.
    """

    id: str
    status: PollenStatus
    last_seen_at: int
    discovered_at: int
    artifact_ref: Optional[str] = None
    artifact_name: Optional[str] = None
    source_ref: Optional[str] = None
    prompt: Optional[str] = None
    model: Optional[Model] = None
    applied_ref: Optional[str] = None

    @property
    def is_done(self) -> bool:
        return self.status is PollenStatus.DONE

    @property
    def applied(self) -> bool:
        return self.applied_ref is not None

    @property
    def order_key(self) -> tuple[int, int]:
        return (self.last_seen_at, self.discovered_at)


@dataclass
class TrackerState:
    """
    Everything the tracker knows during a run. The polling loop owns one of these through
    its tracker; tests build them directly.

    retired remembers ids of finished pollens that were pruned, oldest first, so that a
    late duplicate "done" report is not mistaken for a new pollen.
    """

    pollens: dict[str, Pollen] = field(default_factory=dict)
    selected_id: Optional[str] = None
    poll_sequence: int = 0
    discovery_sequence: int = 0
    retired: "OrderedDict[str, None]" = field(default_factory=OrderedDict)


@dataclass
class ReconcileResult:
    """The three disjoint outcomes of reconciling one snapshot."""

    discovered: list[Pollen] = field(default_factory=list)
    became_done: list[Pollen] = field(default_factory=list)
    preview_changed: list[Pollen] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.discovered or self.became_done or self.preview_changed)
