"""State stores for loading and persisting applied resource state."""

import fcntl
import json
import os
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from pydantic import ValidationError

from reconciler.state.models import IDENTITY_PATTERN, AppliedState
from reconciler.utils.errors import ErrorContext, StoreUnavailable
from reconciler.utils.logging import get_logger

logger = get_logger(__name__)


class StateStore(ABC):
    """Durable mapping of resource identity to AppliedState.

    ``save`` and ``delete`` are called once per successful provider call,
    possibly from several worker threads at once for different identities.
    """

    @abstractmethod
    def load(self) -> Dict[str, AppliedState]:
        """Load every applied resource.

        Raises:
            StoreUnavailable: If the backing medium cannot be read
        """

    @abstractmethod
    def save(self, identity: str, state: AppliedState) -> None:
        """Persist the applied state of one resource.

        Raises:
            StoreUnavailable: If the state cannot be written
        """

    @abstractmethod
    def delete(self, identity: str) -> None:
        """Forget a destroyed resource. Missing identities are ignored.

        Raises:
            StoreUnavailable: If the state cannot be written
        """


class InMemoryStateStore(StateStore):
    """Process-local state store for tests and dry runs."""

    def __init__(self, initial: Optional[Dict[str, AppliedState]] = None):
        self._states: Dict[str, AppliedState] = {
            identity: state.model_copy(deep=True) for identity, state in (initial or {}).items()
        }
        self._lock = threading.Lock()

    def load(self) -> Dict[str, AppliedState]:
        with self._lock:
            return {identity: state.model_copy(deep=True) for identity, state in self._states.items()}

    def save(self, identity: str, state: AppliedState) -> None:
        with self._lock:
            self._states[identity] = state.model_copy(deep=True)

    def delete(self, identity: str) -> None:
        with self._lock:
            self._states.pop(identity, None)


class FileStateStore(StateStore):
    """Directory of JSON documents, one per resource identity.

    Each write goes to a temporary file that is then renamed over the
    previous document, so a crash leaves either the old or the new record,
    and writes for different identities never touch the same file.
    """

    SUFFIX = ".json"

    def __init__(self, state_path: str):
        """
        Initialize FileStateStore.

        Args:
            state_path: Directory holding the state documents
        """
        self.state_path = Path(state_path)
        self._identity_locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._lock_file: Optional[int] = None

    def exists(self) -> bool:
        """Check if the state directory exists."""
        return self.state_path.is_dir()

    def initialize(self) -> None:
        """Create the state directory if it does not exist yet."""
        try:
            self.state_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(f"Failed to create state directory {self.state_path}: {e}", cause=e)

    def load(self) -> Dict[str, AppliedState]:
        """
        Load all state documents.

        Returns:
            Mapping of identity to AppliedState

        Raises:
            StoreUnavailable: If the directory is missing, unreadable or a
                document is corrupted
        """
        if not self.exists():
            raise StoreUnavailable(
                f"State directory not found: {self.state_path}",
                suggestions=[
                    'Initialize the state directory before the first run',
                    'Check that the configured state path is correct'
                ]
            )

        states: Dict[str, AppliedState] = {}
        try:
            paths = sorted(self.state_path.glob(f"*{self.SUFFIX}"))
        except OSError as e:
            raise StoreUnavailable(f"Failed to list state directory: {e}", cause=e)

        for path in paths:
            identity = path.name[: -len(self.SUFFIX)]
            try:
                with open(path, "r") as f:
                    state = AppliedState.from_dict(json.load(f))
            except json.JSONDecodeError as e:
                raise StoreUnavailable(
                    f"Failed to parse state document {path.name}: {e}",
                    context=ErrorContext(resource_id=identity),
                    cause=e
                )
            except (OSError, ValidationError) as e:
                raise StoreUnavailable(
                    f"Failed to load state document {path.name}: {e}",
                    context=ErrorContext(resource_id=identity),
                    cause=e
                )

            if state.id != identity:
                raise StoreUnavailable(
                    f"State document {path.name} records identity '{state.id}'",
                    context=ErrorContext(resource_id=identity)
                )
            states[identity] = state

        logger.debug(f"Loaded {len(states)} resources from {self.state_path}")
        return states

    def save(self, identity: str, state: AppliedState) -> None:
        """
        Atomically write one state document.

        Args:
            identity: Resource identity
            state: Applied state to persist

        Raises:
            StoreUnavailable: If the document cannot be written
        """
        path = self._document_path(identity)
        temp_path = path.with_name(path.name + ".tmp")

        with self._lock_for(identity):
            try:
                with open(temp_path, "w") as f:
                    json.dump(state.to_dict(), f, indent=2, sort_keys=True)
                    f.flush()
                    os.fsync(f.fileno())

                # Atomic rename
                temp_path.replace(path)
            except OSError as e:
                raise StoreUnavailable(
                    f"Failed to save state for {identity}: {e}",
                    context=ErrorContext(resource_id=identity, operation="save"),
                    cause=e
                )

    def delete(self, identity: str) -> None:
        """
        Remove the state document of a destroyed resource.

        Args:
            identity: Resource identity

        Raises:
            StoreUnavailable: If the document exists but cannot be removed
        """
        path = self._document_path(identity)
        with self._lock_for(identity):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise StoreUnavailable(
                    f"Failed to delete state for {identity}: {e}",
                    context=ErrorContext(resource_id=identity, operation="delete"),
                    cause=e
                )

    def lock(self, timeout: float = 30) -> None:
        """
        Acquire an exclusive lock on the state directory.

        Args:
            timeout: Lock timeout in seconds

        Raises:
            StoreUnavailable: If the lock cannot be acquired
        """
        lock_path = self.state_path / ".lock"

        try:
            self._lock_file = os.open(str(lock_path), os.O_CREAT | os.O_RDWR)
        except OSError as e:
            raise StoreUnavailable(f"Failed to open lock file: {e}", cause=e)

        start_time = time.time()
        while True:
            try:
                fcntl.flock(self._lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if time.time() - start_time > timeout:
                    os.close(self._lock_file)
                    self._lock_file = None
                    raise StoreUnavailable(
                        f"Failed to acquire lock on state directory after {timeout}s",
                        suggestions=['Check whether another run is using the same state directory']
                    )
                time.sleep(0.1)

    def unlock(self) -> None:
        """Release lock on the state directory."""
        if self._lock_file is not None:
            try:
                fcntl.flock(self._lock_file, fcntl.LOCK_UN)
                os.close(self._lock_file)
            finally:
                self._lock_file = None

    def __enter__(self):
        """Context manager entry - acquire lock."""
        self.lock()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - release lock."""
        self.unlock()

    def _document_path(self, identity: str) -> Path:
        if not IDENTITY_PATTERN.match(identity):
            raise StoreUnavailable(f"Invalid resource identity for state document: {identity!r}")
        return self.state_path / f"{identity}{self.SUFFIX}"

    def _lock_for(self, identity: str) -> threading.Lock:
        with self._locks_guard:
            if identity not in self._identity_locks:
                self._identity_locks[identity] = threading.Lock()
            return self._identity_locks[identity]
