"""Periodic self-indexing of the project tree."""

import logging
import threading
import time
from collections import Counter
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from ..ingest.processor import DocumentProcessor, compute_hash
from ..models import DevelopmentContext, IndexingStatus, utcnow
from . import sweeps
from .sweeps import SweepSettings

logger = logging.getLogger(__name__)


class SingleFlight:
    """At most one holder at a time; contenders are turned away, not queued."""

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def claim(self) -> Iterator[bool]:
        """Yield True if the slot was taken; it is always released on exit."""
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()


class SelfIndexer:
    """Re-scans the project on a timer and feeds what it finds to the processor.

    A pass runs four sweeps in order (documentation, code, history,
    structure). A failing sweep or file is logged and never stops the rest.
    Timer and manual triggers share one single-flight guard.
    """

    def __init__(
        self,
        processor: DocumentProcessor,
        config: dict[str, Any],
        clock: Callable[[], datetime] = utcnow,
    ):
        si_cfg = config.get("self_indexing", {})
        self.processor = processor
        self.enabled = bool(si_cfg.get("enabled", True))
        self.interval = si_cfg.get("auto_index_interval", 3_600_000) / 1000.0
        self.settings = SweepSettings.from_config(si_cfg)
        self._clock = clock
        self._guard = SingleFlight()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._threads: list[threading.Thread] = []
        self._last_indexed: datetime | None = None
        self._passes = 0
        self._counts: Counter = Counter()

    # ---- lifecycle ----

    def start(self) -> bool:
        """Run one pass now, then every ``interval`` seconds until :meth:`stop`."""
        if not self.enabled:
            logger.info("Self-indexing is disabled")
            return False
        if self._thread is not None and self._thread.is_alive() and not self._stop.is_set():
            logger.warning("Self-indexing service already running")
            return False

        logger.info("Starting self-indexing service...")
        # each timer owns its event; a stopped loop still finishing a pass exits afterwards
        self._stop = threading.Event()
        self.run_pass()

        self._thread = threading.Thread(
            target=self._loop, args=(self._stop,), name="devkb-self-indexer", daemon=True
        )
        self._threads = [t for t in self._threads if t.is_alive()] + [self._thread]
        self._thread.start()
        logger.info("Self-indexing service started with %.0fs interval", self.interval)
        return True

    def stop(self, wait: bool = False, timeout: float | None = None) -> None:
        """Cancel the timer. A pass already running finishes normally.

        With ``wait`` every timer thread, including ones stopped earlier, is joined.
        """
        self._stop.set()
        if wait:
            for thread in self._threads:
                thread.join(timeout)
            self._threads = [t for t in self._threads if t.is_alive()]
        if self._thread is not None:
            logger.info("Self-indexing service stopped")
        self._thread = None

    def run_forever(self) -> None:
        """Start and block until Ctrl+C."""
        if not self.start():
            return
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            logger.info("Stopping self-indexer...")
        self.stop(wait=True)

    def _loop(self, stop: threading.Event) -> None:
        while not stop.wait(self.interval):
            try:
                self.run_pass()
            except Exception:
                logger.exception("Scheduled indexing pass crashed")

    def trigger_indexing(self) -> bool:
        """Run a pass on demand. Returns False if one was already running."""
        logger.info("Manual indexing triggered")
        return self.run_pass()

    def get_status(self) -> IndexingStatus:
        return IndexingStatus(
            is_indexing=self._guard.busy,
            last_indexed=self._last_indexed,
            passes=self._passes,
        )

    # ---- one pass ----

    def run_pass(self) -> bool:
        with self._guard.claim() as acquired:
            if not acquired:
                logger.info("Indexing already in progress, skipping...")
                return False

            logger.info("Starting indexing process...")
            self._counts = Counter()
            self._run_sweep("documentation", self.index_documentation)
            self._run_sweep("code", self.index_code_files)
            self._run_sweep("history", self.index_development_history)
            self._run_sweep("structure", self.index_project_structure)

            self._last_indexed = self._clock()
            self._passes += 1
            logger.info(
                "Indexing process completed: %d indexed, %d unchanged, %d failed",
                self._counts["indexed"], self._counts["unchanged"], self._counts["failed"],
            )
            return True

    def _run_sweep(self, name: str, sweep: Callable[[], None]) -> None:
        try:
            sweep()
        except Exception as e:
            self._counts["failed"] += 1
            logger.warning("Failed to index %s: %s", name, e)

    def _submit(self, request) -> None:
        try:
            self.processor.add_document(request)
            self._counts["indexed"] += 1
        except Exception as e:
            self._counts["failed"] += 1
            logger.warning("Failed to index %s: %s", request.title, e)

    def _index_file(self, path: Path, context: DevelopmentContext) -> None:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self._counts["failed"] += 1
            logger.warning("Failed to read %s: %s", path, e)
            return

        content_hash = compute_hash(content)
        request = sweeps.file_request(path, self.settings.root, context, content, content_hash)
        try:
            existing = self.processor.get_document(request.document_id)
        except Exception as e:
            logger.warning("Could not look up %s, re-indexing: %s", path, e)
            existing = None
        if existing is not None and existing.metadata.custom_fields.get("content_hash") == content_hash:
            self._counts["unchanged"] += 1
            logger.debug("Unchanged, skipping %s", path)
            return
        self._submit(request)

    def _index_named_files(self, names: tuple[str, ...], context: DevelopmentContext) -> None:
        for name in names:
            path = self.settings.root / name
            if path.is_file():
                self._index_file(path, context)
            else:
                logger.debug("%s not found, skipping", path)

    def _index_directory(self, dirname: str, extensions: frozenset[str], context: DevelopmentContext) -> None:
        directory = self.settings.root / dirname
        if not directory.is_dir():
            logger.debug("%s not found, skipping", directory)
            return
        for path in sweeps.collect_files(directory, extensions, self.settings.exclude_dirs):
            self._index_file(path, context)

    def index_documentation(self) -> None:
        s = self.settings
        self._index_named_files(s.doc_files, DevelopmentContext.DOCUMENTATION)
        self._index_directory(s.docs_dir, s.doc_extensions, DevelopmentContext.DOCUMENTATION)

    def index_code_files(self) -> None:
        s = self.settings
        self._index_directory(s.src_dir, s.code_extensions, DevelopmentContext.CODE)
        self._index_named_files(s.config_files, DevelopmentContext.CONFIGURATION)

    def index_development_history(self) -> None:
        for request in sweeps.history_requests(self.settings.root, self.settings.history_days, self._clock()):
            self._submit(request)

    def index_project_structure(self) -> None:
        self._submit(sweeps.structure_request(self.settings.root, self.settings.exclude_dirs, self._clock()))
