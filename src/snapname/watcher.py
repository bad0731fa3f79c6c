#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
snapname Watcher
Watches one folder tree for new images and runs each through the rename pipeline.
Files inside hidden directories are ignored, and so are files this watcher
just produced by renaming.

Filesystem events only register a path as pending. A dispatcher thread
polls pending paths and hands a file to the worker once its size has been
stable for ``stability_threshold`` seconds, so half-written screenshots are
never read.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .clipboard import ClipboardPublisher
from .config import (
    ConfigError,
    DEBOUNCE_DELAY,
    POLL_INTERVAL,
    STABILITY_THRESHOLD,
    Settings,
    validate_settings,
)
from .engine import STATUS_RENAME, PipelineResult, is_supported_image, process_single_image
from .logs import event_extra
from .naming import is_already_processed
from .vision_providers import VisionProvider, get_provider

logger = logging.getLogger(__name__)

# Events for files we produced ourselves are ignored for this long
PRODUCED_TTL = 5.0


@dataclass
class _PendingFile:
    size: int
    last_change: float


class _ImageEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for plain files to the watcher."""

    def __init__(self, watcher: "FolderWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(Path(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        # Screenshot tools write a hidden temp file, then move it into place
        if not event.is_directory:
            self.watcher.notify(Path(event.dest_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.touch(Path(event.src_path))


class FolderWatcher:
    """
    Continuous watch mode.

    Usage:
        watcher = FolderWatcher(settings)
        watcher.start()
        ...
        watcher.stop()

    At most one file is processed at a time, and a path that is already
    being processed is never picked up twice.
    """

    def __init__(
        self,
        settings: Settings,
        provider: Optional[VisionProvider] = None,
        clipboard: Optional[ClipboardPublisher] = None,
        debounce: float = DEBOUNCE_DELAY,
        stability_threshold: float = STABILITY_THRESHOLD,
        poll_interval: float = POLL_INTERVAL,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        self._settings = settings
        self._provider = provider or get_provider(settings)
        self._clipboard = clipboard or ClipboardPublisher(helper_path=settings.clipboard_helper)
        self.debounce = debounce
        self.stability_threshold = stability_threshold
        self.poll_interval = poll_interval
        self._observer_factory = observer_factory

        self._lock = threading.Lock()
        self._pending: Dict[Path, _PendingFile] = {}
        self._in_flight: Set[Path] = set()
        self._produced: Dict[Path, float] = {}

        self._stop_event = threading.Event()
        self._observer = None
        self._dispatcher: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def settings(self) -> Settings:
        with self._lock:
            return self._settings

    @property
    def is_running(self) -> bool:
        return self._dispatcher is not None and self._dispatcher.is_alive()

    def snapshot(self) -> Tuple[Settings, VisionProvider, ClipboardPublisher]:
        """The settings, provider and clipboard a newly started file will use."""
        with self._lock:
            return self._settings, self._provider, self._clipboard

    # --------------------------------------------------------------------------
    # Lifecycle
    # --------------------------------------------------------------------------

    def start(self) -> None:
        """
        Begin watching the configured folder. Files already present are ignored.

        Raises:
            ConfigError: if the watch folder does not exist
        """
        folder = self.settings.watch_folder
        if not folder.is_dir():
            raise ConfigError(f"Watch folder does not exist: {folder}")

        self._stop_event.clear()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snapname-worker")
        self._observer = self._observer_factory()
        self._observer.schedule(_ImageEventHandler(self), str(folder), recursive=True)
        self._observer.start()

        self._dispatcher = threading.Thread(target=self._dispatch_loop, name="snapname-dispatcher", daemon=True)
        self._dispatcher.start()

        logger.info("Watching %s for new images", folder,
                    extra=event_extra("watcher_started", folder=str(folder),
                                      provider=self._provider.kind, model=self._provider.model))

    def stop(self) -> None:
        """Stop watching. A file that is mid-pipeline is allowed to finish."""
        self._stop_event.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._dispatcher is not None:
            self._dispatcher.join()
            self._dispatcher = None
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        with self._lock:
            self._pending.clear()
        logger.info("Watcher stopped", extra=event_extra("watcher_stopped"))

    def reload_config(self, settings: Settings) -> None:
        """
        Swap in a new settings snapshot.

        Files already in the pipeline finish with the snapshot they started with.

        Raises:
            ConfigError: if the new settings are invalid; the old ones stay active
        """
        validate_settings(settings)
        provider = get_provider(settings)
        clipboard = ClipboardPublisher(helper_path=settings.clipboard_helper)

        with self._lock:
            old_folder = self._settings.watch_folder
            self._settings = settings
            self._provider = provider
            self._clipboard = clipboard

        if settings.watch_folder != old_folder and self._observer is not None:
            if not settings.watch_folder.is_dir():
                logger.error("New watch folder does not exist: %s", settings.watch_folder,
                             extra=event_extra("watcher_error", folder=str(settings.watch_folder)))
            else:
                self._observer.unschedule_all()
                self._observer.schedule(_ImageEventHandler(self), str(settings.watch_folder), recursive=True)

        logger.info("Configuration reloaded",
                    extra=event_extra("config_reloaded", provider=provider.kind, model=provider.model,
                                      folder=str(settings.watch_folder)))

    # --------------------------------------------------------------------------
    # Event intake
    # --------------------------------------------------------------------------

    def notify(self, path: Path, now: Optional[float] = None) -> None:
        """Register a newly arrived file as pending."""
        if not self._accepts(path):
            return
        now = time.monotonic() if now is None else now
        try:
            size = path.stat().st_size
        except OSError:
            return

        with self._lock:
            if self._recently_produced(path, now) or path in self._in_flight:
                return
            self._pending[path] = _PendingFile(size, now)
        logger.debug("File event: %s", path.name, extra=event_extra("file_event", file=path.name))

    def _accepts(self, path: Path) -> bool:
        """Image files only, and nothing inside a hidden directory under the watch root."""
        if not is_supported_image(path):
            return False
        try:
            parts = path.relative_to(self.settings.watch_folder).parts
        except ValueError:
            return True
        return not any(part.startswith('.') for part in parts)

    def touch(self, path: Path, now: Optional[float] = None) -> None:
        """A pending file was written to again; restart its stability clock."""
        now = time.monotonic() if now is None else now
        with self._lock:
            pending = self._pending.get(path)
            if pending is not None:
                pending.last_change = now

    def _recently_produced(self, path: Path, now: float) -> bool:
        produced_at = self._produced.get(path)
        if produced_at is None:
            return False
        if now - produced_at > PRODUCED_TTL:
            del self._produced[path]
            return False
        return True

    def _mark_produced(self, path: Path) -> None:
        with self._lock:
            self._produced[path] = time.monotonic()

    def _collect_stable(self, now: Optional[float] = None) -> List[Path]:
        """Remove and return pending paths whose size stopped changing."""
        now = time.monotonic() if now is None else now
        ready: List[Path] = []

        with self._lock:
            for path, produced_at in list(self._produced.items()):
                if now - produced_at > PRODUCED_TTL:
                    del self._produced[path]

            for path, pending in list(self._pending.items()):
                try:
                    size = path.stat().st_size
                except OSError:
                    del self._pending[path]
                    continue
                if self._recently_produced(path, now):
                    del self._pending[path]
                elif size != pending.size:
                    pending.size = size
                    pending.last_change = now
                elif now - pending.last_change >= self.stability_threshold:
                    del self._pending[path]
                    ready.append(path)

        return sorted(ready)

    def _dispatch_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                for path in self._collect_stable():
                    settings, provider, clipboard = self.snapshot()
                    future = self._executor.submit(self.handle_new_file, path, settings, provider, clipboard)
                    future.add_done_callback(self._log_worker_error)
            except Exception as e:
                logger.error("Watcher error: %s", e, exc_info=True,
                             extra=event_extra("watcher_error", error=str(e)))

    def _log_worker_error(self, future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error("Unexpected error while processing file: %s", error,
                         exc_info=error, extra=event_extra("watcher_error", error=str(error)))

    # --------------------------------------------------------------------------
    # Per-file handling
    # --------------------------------------------------------------------------

    def handle_new_file(
        self,
        image_path: Path,
        settings: Optional[Settings] = None,
        provider: Optional[VisionProvider] = None,
        clipboard: Optional[ClipboardPublisher] = None
    ) -> Optional[PipelineResult]:
        """
        Run one stable file through the pipeline.

        Returns None when the file was filtered out, produced by this
        watcher, already in flight, or disappeared before processing.
        """
        if settings is None or provider is None or clipboard is None:
            settings, provider, clipboard = self.snapshot()

        if not self._accepts(image_path):
            return None
        if is_already_processed(image_path.stem):
            logger.info("Skipping already processed file: %s", image_path.name,
                        extra=event_extra("file_skipped", file=image_path.name, reason="already_processed"))
            return None

        with self._lock:
            if self._recently_produced(image_path, time.monotonic()):
                logger.debug("Ignoring our own output %s", image_path.name)
                return None
            if image_path in self._in_flight:
                logger.debug("Already processing %s", image_path.name)
                return None
            self._in_flight.add(image_path)

        try:
            logger.info("New image detected: %s", image_path.name,
                        extra=event_extra("file_detected", file=image_path.name))
            if self.debounce:
                time.sleep(self.debounce)
            if not image_path.exists():
                logger.warning("File disappeared before processing: %s", image_path.name,
                               extra=event_extra("file_skipped", file=image_path.name, reason="missing"))
                return None

            result = process_single_image(image_path, provider, clipboard, settings.copy_to_clipboard,
                                          before_rename=self._mark_produced)
            if result.status == STATUS_RENAME:
                # Restart the window once the clipboard step is done
                self._mark_produced(result.new_path)
            return result
        finally:
            with self._lock:
                self._in_flight.discard(image_path)
