# core/task_queue.py
import logging
import queue
import threading
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Type
from uuid import uuid4
from pydantic import BaseModel
from model.task import TRANSITIONS, Task, TaskStatus, utcnow
from util.logger import bind_task

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Dict[str, Any]]

_STOP = object()


def _type_key(task_type: Any) -> str:
    # Enum members and their plain values address the same handler.
    return str(getattr(task_type, "value", task_type))


@dataclass
class _Registration:
    payload_model: Type[BaseModel]
    handler: Handler


class TaskQueue:
    """
    Single-process task queue: a queue.Queue channel drained by a fixed pool of worker threads.

    Flow:
    - add_task() records a `pending` snapshot and puts the id on the channel; it never raises.
    - A worker parses the payload with the model registered for the task type, moves the task to
      `running`, calls the handler and records `success` (result) or `failed` (error).
    - Snapshots are replaced, never mutated, so get_task() always sees one consistent state.
    - Terminal tasks are evicted `retention_seconds` after they finish, and the oldest terminal
      tasks go first once more than `max_retained` are held. Pending/running tasks are kept.
    """

    def __init__(
        self,
        *,
        workers: int = 4,
        retention_seconds: int = 6 * 60 * 60,
        max_retained: int = 10_000,
        name: str = "task-worker",
    ) -> None:
        self._workers = max(1, int(workers))
        self._retention = timedelta(seconds=int(retention_seconds))
        self._max_retained = max(1, int(max_retained))
        self._name = name
        self._channel: "queue.Queue[Any]" = queue.Queue()
        self._tasks: Dict[str, Task] = {}
        self._registry: Dict[str, _Registration] = {}
        self._cond = threading.Condition()
        self._threads: List[threading.Thread] = []

    # ---------------- Registry ----------------

    def register(
        self, task_type: str, payload_model: Type[BaseModel], handler: Handler
    ) -> None:
        self._registry[_type_key(task_type)] = _Registration(payload_model, handler)
        logger.info("tasks.register type=%s", task_type)

    # ---------------- Lifecycle ----------------

    def start(self) -> None:
        if self._threads:
            return
        for i in range(self._workers):
            t = threading.Thread(
                target=self._worker_loop, name=f"{self._name}-{i}", daemon=True
            )
            t.start()
            self._threads.append(t)
        logger.info("tasks.start workers=%d", self._workers)

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop the workers after the tasks already on the channel."""
        threads, self._threads = self._threads, []
        for _ in threads:
            self._channel.put(_STOP)
        if wait:
            for t in threads:
                t.join(timeout)
        logger.info("tasks.stop workers=%d", len(threads))

    @property
    def running(self) -> bool:
        return bool(self._threads)

    # ---------------- Public API ----------------

    def add_task(self, task_type: str, payload: Any) -> str:
        task_id = uuid4().hex
        try:
            if isinstance(payload, BaseModel):
                data = payload.model_dump(mode="json")
            else:
                data = dict(payload or {})
        except Exception as e:
            data = {}
            logger.error("tasks.payload.unserializable id=%s err=%s", task_id, type(e).__name__)

        task = Task(id=task_id, type=_type_key(task_type), payload=data)
        with self._cond:
            self._prune_locked()
            self._tasks[task_id] = task
        self._channel.put(task_id)
        logger.info("tasks.enqueue id=%s type=%s", task_id, task.type)
        return task_id

    def get_task(self, task_id: str) -> Optional[Task]:
        if not task_id:
            return None
        with self._cond:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    def list_tasks(self) -> List[Task]:
        with self._cond:
            return [t.model_copy(deep=True) for t in self._tasks.values()]

    def wait(self, task_id: str, timeout: Optional[float] = None) -> Optional[Task]:
        """Block until the task is terminal (or the timeout passes); returns the latest snapshot."""
        with self._cond:
            self._cond.wait_for(
                lambda: task_id not in self._tasks or self._tasks[task_id].status.terminal,
                timeout=timeout,
            )
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task is not None else None

    # ---------------- Worker ----------------

    def _worker_loop(self) -> None:
        while True:
            item = self._channel.get()
            try:
                if item is _STOP:
                    return
                with bind_task(item):
                    self._execute(item)
            finally:
                self._channel.task_done()

    def _execute(self, task_id: str) -> None:
        task = self.get_task(task_id)
        if task is None or task.status != TaskStatus.pending:
            return

        self._transition(task_id, TaskStatus.running)
        try:
            reg = self._registry.get(task.type)
            if reg is None:
                raise LookupError(f"No handler registered for task type {task.type}")
            payload = reg.payload_model.model_validate(task.payload)
            result = reg.handler(payload)
        except Exception as e:
            # Exactly one attempt: the failure is recorded, never retried.
            logger.error(
                "tasks.failed id=%s type=%s err=%s msg=%s",
                task_id,
                task.type,
                type(e).__name__,
                e,
            )
            self._transition(
                task_id,
                TaskStatus.failed,
                error=str(e) or type(e).__name__,
                errorType=type(e).__name__,
            )
            return

        self._transition(task_id, TaskStatus.success, result=dict(result or {}))
        logger.info("tasks.success id=%s type=%s", task_id, task.type)

    def _transition(self, task_id: str, status: TaskStatus, **changes: Any) -> None:
        with self._cond:
            current = self._tasks.get(task_id)
            if current is None:
                return
            if status not in TRANSITIONS[current.status]:
                raise RuntimeError(
                    f"Illegal task transition {current.status.value} -> {status.value}"
                )
            now = utcnow()
            update: Dict[str, Any] = {"status": status, "updatedAt": now, **changes}
            if status.terminal:
                update["finishedAt"] = now
            self._tasks[task_id] = current.model_copy(update=update)
            self._cond.notify_all()

    def _prune_locked(self) -> None:
        now = utcnow()
        expired = [
            tid
            for tid, t in self._tasks.items()
            if t.finishedAt is not None and now - t.finishedAt >= self._retention
        ]
        for tid in expired:
            del self._tasks[tid]

        overflow = len(self._tasks) - self._max_retained + 1
        if overflow > 0:
            finished = sorted(
                (t for t in self._tasks.values() if t.finishedAt is not None),
                key=lambda t: t.finishedAt,
            )
            for t in finished[:overflow]:
                del self._tasks[t.id]
        if expired or overflow > 0:
            logger.debug("tasks.prune expired=%d held=%d", len(expired), len(self._tasks))
