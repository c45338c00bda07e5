"""Auto-fill engine.

One ``AutoFillWorker`` runs per resolved auto-fill declaration. It watches the
declaration's dependency paths and, once all of them hold values, requests
data for the current dependency values and writes the response into the
target paths. Requests are identified by a request key (the JSON of the
dependency values); only the request for the latest key may write.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, Tuple

from pydantic import ValidationError as PydanticValidationError

from formengine.models import AutoFillResponse, ResolvedAutoFillConfig
from formengine.paths import MISSING
from formengine.store import SnapshotStore
from formengine.transport import AutoFillTransport

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Auto-fill request failed"


class AutoFillState(str, Enum):
    IDLE = "idle"
    WAITING = "waiting-for-dependencies"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class AutoFillStatus:
    loading: bool
    error: Optional[str]
    state: AutoFillState


@dataclass
class _PendingRequest:
    key: str
    active: bool = True
    done: bool = False


def has_value(value: Any) -> bool:
    if value is MISSING or value is None:
        return False
    if isinstance(value, str):
        return len(value.strip()) > 0
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def build_request_key(params: Dict[str, Any]) -> str:
    return json.dumps(params, separators=(",", ":"), ensure_ascii=False)


class AutoFillWorker:
    def __init__(
        self,
        config: ResolvedAutoFillConfig,
        store: SnapshotStore,
        transport: AutoFillTransport,
        on_status_change: Optional[Callable[[str], None]] = None,
        is_visible: Optional[Callable[[str], bool]] = None,
    ):
        self.config = config
        self._is_visible = is_visible
        self._store = store
        self._transport = transport
        self._on_status_change = on_status_change
        self._dependency_paths = [ref.path for ref in config.depends_on]
        self._had_complete_dependencies = False
        self._last_completed_key: Optional[str] = None
        self._current: Optional[_PendingRequest] = None
        self._error: Optional[str] = None
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.state = AutoFillState.IDLE

    @property
    def key(self) -> str:
        return self.config.key

    @property
    def loading(self) -> bool:
        return self._current is not None and not self._current.done

    @property
    def in_flight(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def last_completed_key(self) -> Optional[str]:
        return self._last_completed_key

    def start(self) -> None:
        if self._unsubscribe is None and self._dependency_paths:
            self._unsubscribe = self._store.subscribe(self._dependency_paths, self._on_dependency_change)
        self.evaluate()

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._invalidate()
        for task in list(self._tasks):
            task.cancel()

    def status(self) -> AutoFillStatus:
        error = self._error if self.dependencies_ready() and not self.loading else None
        return AutoFillStatus(loading=self.loading, error=error, state=self.state)

    def dismiss_error(self) -> None:
        self._error = None
        self._changed()

    def dependency_values(self) -> List[Any]:
        return [self._store.get(path) for path in self._dependency_paths]

    def dependencies_ready(self) -> bool:
        values = self.dependency_values()
        return bool(values) and all(has_value(value) for value in values)

    def request_key(self) -> Optional[str]:
        if not self.dependencies_ready():
            return None
        params = {ref.key: self._store.get(ref.path) for ref in self.config.depends_on}
        return build_request_key(params)

    async def settle(self) -> None:
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _on_dependency_change(self, changed_paths: List[str]) -> None:
        self.evaluate()

    def evaluate(self) -> None:
        values = self.dependency_values()
        has_unregistered = not values or any(value is MISSING for value in values)
        request_key = self.request_key()

        if request_key is None:
            self._invalidate()
            if self._had_complete_dependencies and not has_unregistered:
                self._clear_targets()
            self._had_complete_dependencies = False
            self._set_state(AutoFillState.WAITING if values else AutoFillState.IDLE)
            return

        self._had_complete_dependencies = True
        if self._current is not None and self._current.key == request_key:
            return

        self._invalidate()
        pending = _PendingRequest(key=request_key)
        self._current = pending
        self._set_state(AutoFillState.LOADING)
        logger.debug("Auto-fill %s requesting %s with %s", self.key, self.config.api_endpoint, request_key)

        task = asyncio.get_running_loop().create_task(self._run(pending, json.loads(request_key)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, pending: _PendingRequest, params: Dict[str, Any]) -> None:
        try:
            response = await self._transport.request(self.config.api_endpoint, params)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            response = AutoFillResponse(success=False, error=str(exc) or exc.__class__.__name__)

        pending.done = True
        if not pending.active:
            logger.debug("Discarding stale auto-fill result for %s (key %s)", self.key, pending.key)
            return

        if isinstance(response, dict):
            try:
                response = AutoFillResponse.model_validate(response)
            except PydanticValidationError:
                logger.warning("Auto-fill %s got a malformed response: %r", self.key, response)
                response = AutoFillResponse(success=False, error=DEFAULT_ERROR_MESSAGE)

        if response is not None and response.success and response.data is not None:
            self._apply(response.data)
        else:
            message = (response.error if response is not None else None) or DEFAULT_ERROR_MESSAGE
            logger.warning("Auto-fill %s failed: %s", self.key, message)
            self._error = message
            self._set_state(AutoFillState.ERROR)
            self._clear_targets()

        self._last_completed_key = pending.key
        self._changed()

    def _apply(self, data: Dict[str, Any]) -> None:
        self._error = None
        self._set_state(AutoFillState.SUCCESS)
        for path, ref in self._shown_targets():
            if ref.key in data:
                self._store.set(path, data[ref.key])

    def _clear_targets(self) -> None:
        for path, _ in self._shown_targets():
            self._store.set(path, "")

    def _shown_targets(self) -> Iterator[Tuple[str, Any]]:
        # Hidden targets stay unregistered.
        for ref in self.config.target_fields:
            if self._is_visible is None or self._is_visible(ref.path):
                yield ref.path, ref

    def _invalidate(self) -> None:
        if self._current is not None:
            self._current.active = False
            self._current = None

    def _set_state(self, state: AutoFillState) -> None:
        if self.state != state:
            self.state = state
            self._changed()

    def _changed(self) -> None:
        if self._on_status_change is not None:
            self._on_status_change(self.key)


class AutoFillEngine:
    """Runs one worker per auto-fill declaration; workers are independent."""

    def __init__(
        self,
        configs: List[ResolvedAutoFillConfig],
        store: SnapshotStore,
        transport: AutoFillTransport,
        on_status_change: Optional[Callable[[str], None]] = None,
        is_visible: Optional[Callable[[str], bool]] = None,
    ):
        self.workers: Dict[str, AutoFillWorker] = {
            config.key: AutoFillWorker(config, store, transport, on_status_change, is_visible)
            for config in configs
        }

    def start(self) -> None:
        for worker in self.workers.values():
            worker.start()

    def close(self) -> None:
        for worker in self.workers.values():
            worker.close()

    def status(self) -> Dict[str, AutoFillStatus]:
        return {key: worker.status() for key, worker in self.workers.items()}

    def dismiss_error(self, key: str) -> None:
        worker = self.workers.get(key)
        if worker is not None:
            worker.dismiss_error()

    async def settle(self) -> None:
        """Wait until no worker has a request in flight."""
        while any(worker.in_flight for worker in self.workers.values()):
            for worker in list(self.workers.values()):
                await worker.settle()
