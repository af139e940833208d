"""
Polling Loop

The scheduling core of pollenwall. Every interval it asks the feed for the current pollens,
reconciles them into the tracker, downloads what has to be shown into the cache and hands
the cached file to the wallpaper applier.

Two modes are supported:

- default: every pollen that finishes is set as the wallpaper once. When several finish in
  the same poll they are downloaded concurrently, then applied one after the other, oldest
  first, so the most recently started pollen ends up on the desktop.
- attach: one processing pollen is picked and every new iteration of it is set as the
  wallpaper as soon as it shows up, a live slideshow of the pollen's evolution. The loop
  ends after the pollen is done.

Nothing that goes wrong with a single pollen stops the loop. Only a failure to pick a
pollen to attach to escapes run(), since that can only happen at startup.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from rich.markup import escape

from pollenwall.cache import CacheStore, CacheWriteError, InvalidArtifactError
from pollenwall.feed import FeedClient, FeedError, FeedNotFoundError
from pollenwall.models import Pollen
from pollenwall.tracker import PollenTracker
from pollenwall.wallpaper_handler import (
    UnsupportedPlatformError,
    WallpaperApplier,
    WallpaperUpdateError,
)
from pollenwall.cli_utils.console import confirm_success, describe

logger = logging.getLogger(__name__)

IPFS_GATEWAY = "https://ipfs.io/ipfs"


class PollenPoller:
    def __init__(
        self,
        feed: FeedClient,
        cache: CacheStore,
        applier: WallpaperApplier,
        tracker: PollenTracker = None,
        attach: bool = False,
        target: Optional[str] = None,
        interval: float = 10.0,
        max_downloads: int = 4,
        keep_history: bool = False,
    ):
        self.feed = feed
        self.cache = cache
        self.applier = applier
        self.tracker = tracker if tracker is not None else PollenTracker()
        self.attach = attach
        self.target = target
        self.interval = interval
        self.max_downloads = max(1, max_downloads)
        self.keep_history = keep_history
        self._stop = threading.Event()

    def stop(self) -> None:
        """Ask the loop to stop. Safe to call from a signal handler or another thread."""

        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        """
        Poll until stopped or, in attach mode, until the attached pollen is done. The wait
        between polls ends early when stop() is called.
        """

        describe(":bee: Waiting for new pollens to arrive, keep it running.. zZzZ :bee:")

        while not self._stop.is_set():
            if self.poll_once():
                return
            if self._stop.wait(self.interval):
                break

        logger.debug("polling stopped")

    def poll_once(self) -> bool:
        """
        Run a single iteration of the loop. Returns True when attach mode has followed its
        pollen to the end and there is nothing left to do.
        """

        try:
            observed = self.feed.list_pollens()
        except FeedError as error:
            logger.warning("Could not poll for pollens, retrying in %ss: %s", self.interval, error)
            return False

        result = self.tracker.reconcile(observed)
        for pollen in result.discovered:
            logger.debug("discovered pollen %s", pollen.id)

        if self.attach:
            return self._attach_cycle()

        self._default_cycle(result.became_done)
        return False

    def _default_cycle(self, became_done: list[Pollen]) -> None:
        pending = sorted(
            (pollen for pollen in became_done if not pollen.applied),
            key=lambda pollen: pollen.order_key,
        )
        if not pending:
            return

        downloads = self._download_all(pending)
        shown = None

        for pollen, path in zip(pending, downloads):
            if self._stop.is_set():
                break
            if path is None:
                continue
            confirm_success("[highlight]Pollen arrived![/]")
            if self._apply(pollen, path):
                self.tracker.mark_applied(pollen.id, pollen.artifact_ref)
                shown = path

        # only once the whole batch is through, later ones may still be waiting on disk
        if shown is not None:
            self._prune(shown)

    def _attach_cycle(self) -> bool:
        state = self.tracker.state

        if state.selected_id is None:
            # NoProcessingPollens is left to the caller, it is fatal at startup
            selected = self.tracker.select_for_attach(self.target)
            pollen = state.pollens[selected]
            describe(f":bee: Attached to pollen {escape(selected)}")
            if pollen.prompt:
                describe(f"Prompt: {escape(pollen.prompt)}")
        else:
            pollen = state.pollens[state.selected_id]

        ref = pollen.artifact_ref
        if ref is not None and ref != pollen.applied_ref and not self._stop.is_set():
            path = self._download(pollen)
            if path is not None:
                if pollen.is_done:
                    confirm_success("[highlight]Pollen arrived![/]")
                else:
                    confirm_success("[highlight]New generation of attached pollen is arrived![/]")

                if self._apply(pollen, path):
                    self.tracker.mark_applied(pollen.id, ref)
                    self._prune(path)

        if pollen.is_done:
            confirm_success(":bee: Attached pollen is done!")
            return True

        return False

    def _download_all(self, pollens: list[Pollen]) -> list[Optional[Path]]:
        """Download artifacts, concurrently when there is more than one. Order is kept."""

        if len(pollens) == 1 or self.max_downloads == 1:
            return [self._download(pollen) for pollen in pollens]

        with ThreadPoolExecutor(max_workers=min(len(pollens), self.max_downloads)) as executor:
            return list(executor.map(self._download, pollens))

    def _download(self, pollen: Pollen) -> Optional[Path]:
        """
        Make sure the pollen's current artifact is in the cache and return its path, or
        None if that is not possible right now.
        """

        ref = pollen.artifact_ref
        if ref is None:
            logger.warning("Pollen %s has no image yet, skipping it", pollen.id)
            return None

        cached = self.cache.path_for(pollen.id, ref)
        if cached is not None:
            logger.debug("using cached %s", cached.name)
            return cached

        try:
            data = self.feed.fetch_artifact(ref)
            return self.cache.put(pollen.id, data, revision=ref)

        except FeedNotFoundError as error:
            logger.warning("The image of pollen %s is not available: %s", pollen.id, error)
        except FeedError as error:
            logger.warning("Could not download the image of pollen %s: %s", pollen.id, error)
        except (CacheWriteError, InvalidArtifactError) as error:
            logger.warning("Could not save the image of pollen %s: %s", pollen.id, error)

        return None

    def _apply(self, pollen: Pollen, path: Path) -> bool:
        try:
            self.applier.apply(path)
        # OSError covers appliers that do not map their own failures
        except (WallpaperUpdateError, UnsupportedPlatformError, OSError) as error:
            logger.error("Failed to set wallpaper: %s", error)
            return False

        confirm_success("Wallpaper set with the new pollen!")
        if pollen.prompt:
            describe(f"Prompt: {escape(pollen.prompt)}")
        if pollen.source_ref:
            describe(f"You may find this pollen at: {IPFS_GATEWAY}/{pollen.source_ref}")
        describe(
            f"Currently [highlight]{self.tracker.processing_count()}[/] pollens are processing.."
        )

        return True

    def _prune(self, shown: Path) -> None:
        """Keep storage clean: drop every cached pollen but the one on the desktop."""

        if self.keep_history:
            return

        try:
            removed = self.cache.prune(keep=shown)
        except OSError as error:
            logger.warning("Could not remove previous pollens: %s", error)
        else:
            logger.debug("removed %d previous pollens", removed)
