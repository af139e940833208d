"""
Pollen Tracker

Folds successive feed snapshots into an explicit TrackerState and reports what changed.

Status is monotonic: once a pollen is done it stays done, and its artifact is frozen.
The remote service is expected to mint a new id for any new generation, so a done pollen
that shows up again as processing, or with a different artifact, is ignored with a warning
instead of being rewound.
"""

import logging
import random
from typing import Iterable, Optional

from pollenwall.models import (
    Pollen,
    PollenStatus,
    ReconcileResult,
    RemotePollenSummary,
    TrackerState,
)

logger = logging.getLogger(__name__)

DEFAULT_STALE_CYCLES = 30
RETIRED_LIMIT = 1024


class NoProcessingPollens(Exception):
    """Raised when attach mode has no processing pollen to follow."""

    pass


class PollenTracker:
    def __init__(
        self,
        state: TrackerState = None,
        stale_cycles: int = DEFAULT_STALE_CYCLES,
        rng: random.Random = None,
    ):
        self.state = state if state is not None else TrackerState()
        self.stale_cycles = stale_cycles
        # anything with a random.Random style choice() will do
        self.rng = rng if rng is not None else random.Random()

    def reconcile(self, observed: Iterable[RemotePollenSummary]) -> ReconcileResult:
        """
        Reconcile the latest snapshot from the feed with the tracked pollens.

        New pollens are inserted, known ones updated, and everything observed gets its
        last_seen_at bumped to the new poll sequence. Pollens missing from the snapshot
        are kept until they have been stale for more than stale_cycles polls.

        The result lists are disjoint: a pollen first seen already done is reported
        in became_done only, a pollen first seen processing in discovered only.
        """

        state = self.state
        state.poll_sequence += 1
        result = ReconcileResult()

        for summary in observed:
            if summary.id in state.retired:
                logger.debug("ignoring report for retired pollen %s", summary.id)
                continue

            pollen = state.pollens.get(summary.id)

            if pollen is None:
                pollen = self._insert(summary)
                if pollen.is_done:
                    result.became_done.append(pollen)
                else:
                    result.discovered.append(pollen)
                continue

            pollen.last_seen_at = state.poll_sequence
            self._refresh_details(pollen, summary)

            if pollen.is_done:
                if summary.status is PollenStatus.PROCESSING:
                    logger.warning(
                        "pollen %s reported processing after it was done, ignoring",
                        pollen.id,
                    )
                elif summary.artifact_ref and summary.artifact_ref != pollen.artifact_ref:
                    logger.warning(
                        "done pollen %s reported a new artifact %s, keeping %s",
                        pollen.id,
                        summary.artifact_ref,
                        pollen.artifact_ref,
                    )
                continue

            ref_changed = (
                summary.artifact_ref is not None
                and summary.artifact_ref != pollen.artifact_ref
            )
            if ref_changed:
                pollen.artifact_ref = summary.artifact_ref
                pollen.artifact_name = summary.artifact_name

            if summary.status is PollenStatus.DONE:
                pollen.status = PollenStatus.DONE
                result.became_done.append(pollen)
            elif ref_changed:
                result.preview_changed.append(pollen)

        self._prune()

        return result

    def select_for_attach(self, target: Optional[str] = None) -> str:
        """
        Pick the pollen to follow in attach mode and remember it as the selection.

        The target is used when it names a tracked pollen that is still processing.
        Otherwise a processing pollen is chosen at random; candidates are ordered by
        discovery first so a seeded random source always picks the same one.
        """

        state = self.state

        if target is not None:
            pollen = state.pollens.get(target)
            if pollen is not None and not pollen.is_done:
                state.selected_id = target
                return target
            logger.warning(
                "pollen %s is not a processing pollen, attaching to a random one", target
            )

        candidates = sorted(
            (pollen for pollen in state.pollens.values() if not pollen.is_done),
            key=lambda pollen: pollen.discovered_at,
        )
        if not candidates:
            raise NoProcessingPollens(
                "There are no processing pollens to attach to right now, try again in a moment."
            )

        state.selected_id = self.rng.choice(candidates).id
        return state.selected_id

    def mark_applied(self, pollen_id: str, ref: Optional[str] = None) -> None:
        """Record that a pollen's artifact is on the desktop so it is not applied twice."""

        pollen = self.state.pollens[pollen_id]
        pollen.applied_ref = ref if ref is not None else pollen.artifact_ref

    def processing_count(self) -> int:
        return sum(1 for pollen in self.state.pollens.values() if not pollen.is_done)

    def _insert(self, summary: RemotePollenSummary) -> Pollen:
        state = self.state
        state.discovery_sequence += 1

        pollen = Pollen(
            id=summary.id,
            status=summary.status,
            last_seen_at=state.poll_sequence,
            discovered_at=state.discovery_sequence,
            artifact_ref=summary.artifact_ref,
            artifact_name=summary.artifact_name,
        )
        self._refresh_details(pollen, summary)
        state.pollens[pollen.id] = pollen

        return pollen

    @staticmethod
    def _refresh_details(pollen: Pollen, summary: RemotePollenSummary) -> None:
        # descriptive fields only, never the lifecycle ones
        if summary.source_ref:
            pollen.source_ref = summary.source_ref
        if summary.prompt:
            pollen.prompt = summary.prompt
        if summary.model:
            pollen.model = summary.model

    def _prune(self) -> None:
        state = self.state

        stale = [
            pollen
            for pollen in state.pollens.values()
            if state.poll_sequence - pollen.last_seen_at > self.stale_cycles
            and pollen.id != state.selected_id
        ]

        for pollen in stale:
            del state.pollens[pollen.id]
            if pollen.is_done:
                state.retired[pollen.id] = None

        while len(state.retired) > RETIRED_LIMIT:
            state.retired.popitem(last=False)

        if stale:
            logger.debug("pruned %d stale pollens", len(stale))
