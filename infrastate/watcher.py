"""
Feeds a state sink from the provisioning engine's working state file.

Every write of the state file becomes one checkpoint. The watchdog observer
dispatches events from a single thread, so save_state() calls on the sink
never overlap.
"""

import logging
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import OperationCancelledError
from .models import ProvisioningOutputs
from .sinks import StateSink

logger = logging.getLogger(__name__)


class StateFileHandler(FileSystemEventHandler):
    """File system event handler for one state file."""

    def __init__(self, watcher: "StateFileWatcher"):
        super().__init__()
        self.watcher = watcher

    def on_modified(self, event: FileSystemEvent):
        """Handle file modification events."""
        if not event.is_directory and self.watcher.is_state_file(event.src_path):
            self.watcher.handle_change()

    def on_created(self, event: FileSystemEvent):
        """Handle file creation events."""
        if not event.is_directory and self.watcher.is_state_file(event.src_path):
            self.watcher.handle_change()

    def on_moved(self, event: FileSystemEvent):
        """Handle state files written to a temp file and renamed into place."""
        if not event.is_directory and self.watcher.is_state_file(event.dest_path):
            self.watcher.handle_change()


class StateFileWatcher:
    """
    Watches a state file and checkpoints it through a sink.

    Usage:
        sink = NodeStateSaver(store, "worker-0", "worker", settings)
        with StateFileWatcher(Path("/tmp/infrastate/worker-0.tfstate"), sink):
            run_provisioning()
    """

    def __init__(self, state_file: Path, sink: StateSink):
        """
        Initialize StateFileWatcher.

        Args:
            state_file: Working state file of the provisioning engine
            sink: Sink receiving each snapshot
        """
        self.state_file = Path(state_file).absolute()
        self.sink = sink
        self.checkpoints = 0
        self._observer: Optional[Observer] = None

    def is_state_file(self, path) -> bool:
        if isinstance(path, bytes):
            path = path.decode()
        return Path(path).absolute() == self.state_file

    def handle_change(self) -> bool:
        """
        Read the state file and hand the snapshot to the sink.

        Returns:
            True if the sink wrote a checkpoint
        """
        try:
            state = self.state_file.read_bytes()
        except OSError as e:
            logger.warning(f"Could not read state file {self.state_file}: {e}")
            return False

        logger.debug(f"got FS event {self.state_file}: {len(state)} bytes")
        try:
            saved = self.sink.save_state(ProvisioningOutputs(state=state))
        except OperationCancelledError as e:
            # called on the observer thread
            logger.debug(f"Checkpoint of {self.state_file} interrupted: {e}")
            return False
        if saved:
            self.checkpoints += 1
        return saved

    def start(self) -> None:
        if self._observer is not None:
            return
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self._observer = Observer()
        self._observer.schedule(StateFileHandler(self), str(self.state_file.parent), recursive=False)
        self._observer.start()
        logger.info(f"Watching state file {self.state_file}")

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join()
        self._observer = None
        logger.info(f"Stopped watching {self.state_file} after {self.checkpoints} checkpoints")

    def __enter__(self) -> "StateFileWatcher":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
