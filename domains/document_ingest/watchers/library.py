"""
Library folder watcher for the Document Ingestion domain.

Monitors each auto-scan library folder for supported documents and publishes
ingestion jobs. Uses the watchdog library for cross-platform file system event
monitoring, with a per-file stability window so that files still being
written are not picked up half-finished.
"""

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from loguru import logger
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from app.models.schemas import FileEvent, Library
from app.utils.config import get_settings
from app.utils.exceptions import QueueError, WatchError
from domains.document_ingest.publisher import JobPublisher

# Supported file extensions for ingestion
SUPPORTED_EXTENSIONS = frozenset({
    ".pdf", ".epub", ".html", ".htm", ".md", ".txt",
    ".docx", ".doc", ".pptx", ".ppt", ".xlsx", ".xls",
})


def is_supported_file(path: Path) -> bool:
    """Check if file has a supported extension."""
    return path.suffix.lower() in SUPPORTED_EXTENSIONS


def is_ignored_path(path: Path, root: Path, reserved_dirs: set[str]) -> bool:
    """
    Check whether ``path`` lies in a dotfile or reserved subtree of ``root``.

    Args:
        path: Absolute file path
        root: Library folder
        reserved_dirs: Directory names never ingested (``_failed``, ``_images``)

    Returns:
        True if the path must be ignored
    """
    try:
        parts = path.relative_to(root).parts
    except ValueError:
        parts = (path.name,)

    for part in parts:
        if part.startswith(".") or part in reserved_dirs:
            return True
    return False


@dataclass(slots=True)
class _PendingEvent:
    event: FileEvent
    size: Optional[int]
    stable_since: float


class StabilityGate:
    """
    Debounces file events until a file's size stops changing.

    ``add`` and ``change`` events are held until the file size has been
    unchanged for ``stability_window`` seconds (checked every
    ``poll_interval``). ``unlink`` is released on the next poll. Several
    events for one path collapse into a single emitted event.
    """

    def __init__(
        self,
        emit: Callable[[str, FileEvent], None],
        stability_window: float = 2.0,
        poll_interval: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        size_of: Optional[Callable[[str], int]] = None,
    ):
        self.emit = emit
        self.stability_window = stability_window
        self.poll_interval = poll_interval
        self.clock = clock
        self.size_of = size_of or (lambda path: Path(path).stat().st_size)

        self._pending: dict[str, _PendingEvent] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def observe(self, path: str, event: FileEvent) -> None:
        """Record a raw event for ``path``."""
        now = self.clock()
        with self._lock:
            current = self._pending.get(path)

            if event == "unlink":
                if current is not None and current.event == "add":
                    # Never settled, so nothing downstream knows about it
                    del self._pending[path]
                else:
                    self._pending[path] = _PendingEvent("unlink", None, now)
                return

            if current is None:
                self._pending[path] = _PendingEvent(event, None, now)
            elif current.event == "unlink":
                # Deleted and recreated inside the window: a replacement
                self._pending[path] = _PendingEvent("change", None, now)
            else:
                current.size = None
                current.stable_since = now

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def poll_once(self) -> list[tuple[str, FileEvent]]:
        """
        Release every event whose file has settled.

        Returns:
            The (path, event) pairs emitted by this poll
        """
        now = self.clock()
        ready: list[tuple[str, FileEvent]] = []

        with self._lock:
            for path, pending in list(self._pending.items()):
                if pending.event == "unlink":
                    ready.append((path, pending.event))
                    del self._pending[path]
                    continue

                try:
                    size = self.size_of(path)
                except OSError:
                    # Vanished before settling; its own unlink follows
                    del self._pending[path]
                    continue

                if size != pending.size:
                    pending.size = size
                    pending.stable_since = now
                    continue

                if now - pending.stable_since >= self.stability_window:
                    ready.append((path, pending.event))
                    del self._pending[path]

        for path, event in ready:
            try:
                self.emit(path, event)
            except Exception as e:
                logger.error(f"Failed to emit {event} for {path}: {e}")

        return ready

    def start(self):
        """Start the background polling thread."""
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="stability-gate", daemon=True)
        self._thread.start()

    def stop(self):
        """Stop polling; events still pending are discarded."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=max(1.0, self.poll_interval * 10))
            self._thread = None

    def _run(self):
        while not self._stop.wait(self.poll_interval):
            try:
                self.poll_once()
            except Exception as e:
                logger.error(f"Stability gate poll failed: {e}")


class LibraryEventHandler(FileSystemEventHandler):
    """Classifies watchdog events for one library and feeds its gate."""

    def __init__(self, library: Library, gate: StabilityGate, reserved_dirs: set[str]):
        """
        Initialize event handler.

        Args:
            library: Library being watched
            gate: Stability gate that debounces this library's events
            reserved_dirs: Directory names that are never ingested
        """
        super().__init__()
        self.library = library
        self.root = Path(library.folder_path)
        self.gate = gate
        self.reserved_dirs = reserved_dirs

    def should_process(self, path: str) -> bool:
        """
        Check if path should be processed.

        Args:
            path: File path

        Returns:
            True if should process, False otherwise
        """
        path_obj = Path(path)

        if is_ignored_path(path_obj, self.root, self.reserved_dirs):
            return False

        return is_supported_file(path_obj)

    def submit(self, path: str, event: FileEvent):
        """Pass a classified event to the gate if it qualifies."""
        try:
            if self.should_process(path):
                logger.debug(f"[{self.library.name}] {event}: {path}")
                self.gate.observe(path, event)
        except Exception as e:
            logger.error(str(WatchError(f"Error handling {event} for {path}: {e}", self.library.id)))

    def on_created(self, event: FileSystemEvent):
        """Handle file creation."""
        if not event.is_directory:
            self.submit(event.src_path, "add")

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification."""
        # Skip directory modifications (too noisy)
        if not event.is_directory:
            self.submit(event.src_path, "change")

    def on_deleted(self, event: FileSystemEvent):
        """Handle file deletion."""
        if not event.is_directory:
            self.submit(event.src_path, "unlink")

    def on_moved(self, event: FileSystemEvent):
        """Handle rename/move as a removal plus an addition."""
        if event.is_directory:
            return
        src = getattr(event, "src_path", None)
        dest = getattr(event, "dest_path", None)

        if src:
            self.submit(src, "unlink")
        if dest:
            self.submit(dest, "add")


@dataclass
class _LibraryWatch:
    library: Library
    observer: Observer
    gate: StabilityGate


class LibraryWatcher:
    """Manages one observer and stability gate per watched library."""

    def __init__(
        self,
        publisher: JobPublisher,
        stability_window: Optional[float] = None,
        poll_interval: Optional[float] = None,
        observer_factory: Callable[[], Observer] = Observer,
    ):
        settings = get_settings()
        self.publisher = publisher
        self.stability_window = settings.stability_window if stability_window is None else stability_window
        self.poll_interval = settings.poll_interval if poll_interval is None else poll_interval
        self.reserved_dirs = settings.get_reserved_dirs()
        self.observer_factory = observer_factory

        self._watches: dict[str, _LibraryWatch] = {}
        self._lock = threading.Lock()

    def watch_library(self, library: Library) -> bool:
        """
        Start watching a library folder.

        Returns:
            False if the library was already being watched

        Raises:
            WatchError: if the folder is missing or cannot be observed
        """
        with self._lock:
            if library.id in self._watches:
                logger.info(f"Already watching library: {library.name}")
                return False

            folder = Path(library.folder_path)
            if not folder.is_dir():
                raise WatchError(f"Library folder not found: {folder}", library.id)

            gate = StabilityGate(
                emit=lambda path, event: self._publish(library, path, event),
                stability_window=self.stability_window,
                poll_interval=self.poll_interval,
            )
            handler = LibraryEventHandler(library, gate, self.reserved_dirs)

            observer = self.observer_factory()
            try:
                observer.schedule(handler, str(folder), recursive=True)
                observer.daemon = True
                observer.start()
            except Exception as e:
                raise WatchError(f"Failed to watch {folder}: {e}", library.id) from e
            gate.start()

            self._watches[library.id] = _LibraryWatch(library, observer, gate)

        logger.success(f"Started watching library: {library.name} at {folder}")
        return True

    def stop_watching(self, library_id: str) -> bool:
        """Stop watching a library."""
        with self._lock:
            watch = self._watches.pop(library_id, None)
        if watch is None:
            return False

        self._shutdown(watch)
        logger.info(f"Stopped watching library: {library_id}")
        return True

    def stop_all(self):
        """Stop all watchers."""
        with self._lock:
            watches = list(self._watches.values())
            self._watches.clear()

        for watch in watches:
            self._shutdown(watch)
            logger.info(f"Stopped watching library: {watch.library.id}")

    def active_watcher_count(self) -> int:
        """Get count of active watchers."""
        with self._lock:
            return len(self._watches)

    def _shutdown(self, watch: _LibraryWatch):
        watch.observer.stop()
        watch.observer.join()
        watch.gate.stop()

    def _publish(self, library: Library, path: str, event: FileEvent):
        try:
            self.publisher.publish(library, path, event)
        except QueueError as e:
            logger.error(f"[{library.name}] {e}")
