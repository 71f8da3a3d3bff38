"""Message-passing front end for long-running pipeline actions.

One consumer thread reads `ActionRequest`s off a queue and starts each
action on its own worker thread, so the loop itself never blocks. Workers
post an `ActionResult` to the results queue when they finish. The `daemon`
command drives this from a timer; anything else that wants to trigger runs
(a tray icon, a chat bot) can do the same by calling `submit`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import queue
import threading
from typing import Any, Callable

from rich.console import Console

from .deadline import Deadline
from .models import utcnow


console = Console(stderr=True)


class Action(str, Enum):
    GENERATE_DIGEST = "generate_digest"
    VIEW_LAST_DIGEST = "view_last_digest"
    RELOAD_CONFIG = "reload_config"
    STOP = "stop"


@dataclass
class ActionRequest:
    action: Action
    requested_at: datetime = field(default_factory=utcnow)


@dataclass
class ActionResult:
    action: Action
    ok: bool
    value: Any = None
    error: BaseException | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


Handler = Callable[[Deadline], Any]


class ActionDispatcher:
    def __init__(self, handlers: dict[Action, Handler]):
        self.handlers = dict(handlers)
        self.requests: queue.Queue[ActionRequest] = queue.Queue()
        self.results: queue.Queue[ActionResult] = queue.Queue()
        self._cancel = threading.Event()
        self._running: set[Action] = set()
        self._lock = threading.Lock()
        self._workers: list[threading.Thread] = []
        self._loop_thread: threading.Thread | None = None

    def submit(self, action: Action) -> None:
        self.requests.put(ActionRequest(action))

    def start(self) -> None:
        if self._loop_thread is not None:
            return
        self._loop_thread = threading.Thread(target=self._loop, name="dispatch", daemon=True)
        self._loop_thread.start()

    def stop(self, cancel_running: bool = True, timeout: float | None = None) -> None:
        """Stop the consumer loop; optionally cancel in-flight actions and wait for them."""
        if cancel_running:
            self._cancel.set()
        self.requests.put(ActionRequest(Action.STOP))
        if self._loop_thread is not None:
            self._loop_thread.join(timeout)
        for t in list(self._workers):
            t.join(timeout)

    def busy(self, action: Action) -> bool:
        with self._lock:
            return action in self._running

    def _loop(self) -> None:
        while True:
            req = self.requests.get()
            if req.action == Action.STOP:
                return

            handler = self.handlers.get(req.action)
            if handler is None:
                self.results.put(
                    ActionResult(req.action, ok=False, error=ValueError(f"no handler for {req.action.value}"))
                )
                continue

            with self._lock:
                if req.action in self._running:
                    console.print(f"[yellow]{req.action.value} already running - ignoring request[/yellow]")
                    self.results.put(
                        ActionResult(req.action, ok=False, error=RuntimeError(f"{req.action.value} already running"))
                    )
                    continue
                self._running.add(req.action)

            t = threading.Thread(
                target=self._work, args=(req.action, handler), name=f"action-{req.action.value}", daemon=True
            )
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(t)
            t.start()

    def _work(self, action: Action, handler: Handler) -> None:
        started = utcnow()
        try:
            value = handler(Deadline(cancel=self._cancel))
            result = ActionResult(action, ok=True, value=value, started_at=started, finished_at=utcnow())
        except Exception as e:
            # Reported through the results queue.
            result = ActionResult(action, ok=False, error=e, started_at=started, finished_at=utcnow())
        finally:
            with self._lock:
                self._running.discard(action)
        self.results.put(result)
