"""Tests for the in-process task queue."""

import threading
import time
from datetime import timedelta

import pytest
from pydantic import BaseModel

from core.task_queue import TaskQueue
from model.task import TaskStatus, TaskType, utcnow
from util.errors import RepositoryError


class EchoPayload(BaseModel):
    value: int


def _queue(**kw) -> TaskQueue:
    kw.setdefault("workers", 2)
    return TaskQueue(**kw)


@pytest.fixture
def queue():
    q = _queue()
    yield q
    q.shutdown(wait=True, timeout=5)


class TestLifecycle:
    def test_success_records_result(self, queue):
        queue.register("ECHO", EchoPayload, lambda p: {"doubled": p.value * 2})
        queue.start()

        task_id = queue.add_task("ECHO", EchoPayload(value=21))
        task = queue.wait(task_id, timeout=5)

        assert task.status == TaskStatus.success
        assert task.result == {"doubled": 42}
        assert task.error is None
        assert task.finishedAt is not None

    def test_failure_records_error_type_and_message(self, queue):
        def boom(_payload):
            raise RepositoryError("git push failed (1): hook declined")

        queue.register("BOOM", EchoPayload, boom)
        queue.start()

        task = queue.wait(queue.add_task("BOOM", {"value": 1}), timeout=5)
        assert task.status == TaskStatus.failed
        assert task.errorType == "RepositoryError"
        assert "hook declined" in task.error
        assert task.result is None

    def test_unknown_type_fails_the_task(self, queue):
        queue.start()
        task = queue.wait(queue.add_task("NOPE", {}), timeout=5)
        assert task.status == TaskStatus.failed
        assert task.errorType == "LookupError"

    def test_invalid_payload_fails_the_task(self, queue):
        queue.register("ECHO", EchoPayload, lambda p: {})
        queue.start()
        task = queue.wait(queue.add_task("ECHO", {"value": "not-a-number"}), timeout=5)
        assert task.status == TaskStatus.failed
        assert task.errorType == "ValidationError"

    def test_handler_runs_exactly_once(self, queue):
        calls = []

        def flaky(payload):
            calls.append(payload.value)
            raise RuntimeError("nope")

        queue.register("FLAKY", EchoPayload, flaky)
        queue.start()
        queue.wait(queue.add_task("FLAKY", {"value": 7}), timeout=5)
        queue.shutdown(wait=True, timeout=5)
        assert calls == [7]


class TestTypeKeys:
    @pytest.mark.parametrize(
        "registered,enqueued",
        [
            (TaskType.PROCESS_ASSET, TaskType.PROCESS_ASSET),
            (TaskType.PROCESS_ASSET, "PROCESS_ASSET"),
            ("PROCESS_ASSET", TaskType.PROCESS_ASSET),
        ],
    )
    def test_enum_and_plain_names_reach_the_same_handler(self, queue, registered, enqueued):
        queue.register(registered, EchoPayload, lambda p: {"v": p.value})
        queue.start()

        task = queue.wait(queue.add_task(enqueued, {"value": 3}), timeout=5)

        assert task.status == TaskStatus.success, task.error
        assert task.type == "PROCESS_ASSET"
        assert task.result == {"v": 3}


class TestSnapshots:
    def test_pending_until_started(self):
        q = _queue()
        q.register("ECHO", EchoPayload, lambda p: {})
        task_id = q.add_task("ECHO", {"value": 1})
        task = q.get_task(task_id)
        assert task.status == TaskStatus.pending
        assert task.payload == {"value": 1}

    def test_snapshot_is_a_copy(self):
        q = _queue()
        task_id = q.add_task("ECHO", {"value": 1})
        snap = q.get_task(task_id)
        snap.payload["value"] = 99
        assert q.get_task(task_id).payload == {"value": 1}

    def test_unknown_id_is_none(self):
        q = _queue()
        assert q.get_task("missing") is None
        assert q.get_task("") is None

    def test_never_observes_a_half_updated_task(self, queue):
        release = threading.Event()

        def slow(_payload):
            release.wait(5)
            return {"ok": True}

        queue.register("SLOW", EchoPayload, slow)
        queue.start()
        task_id = queue.add_task("SLOW", {"value": 1})

        seen = set()
        deadline = time.monotonic() + 5
        while time.monotonic() < deadline:
            task = queue.get_task(task_id)
            seen.add(task.status)
            # result is only ever present together with success
            assert (task.result is not None) == (task.status == TaskStatus.success)
            if task.status == TaskStatus.running:
                release.set()
            if task.status.terminal:
                break
        assert TaskStatus.success in seen


class TestConcurrency:
    def test_tasks_run_in_parallel(self):
        q = _queue(workers=3)
        barrier = threading.Barrier(3, timeout=5)
        q.register("MEET", EchoPayload, lambda p: {"slot": barrier.wait()})
        q.start()
        try:
            ids = [q.add_task("MEET", {"value": i}) for i in range(3)]
            results = [q.wait(i, timeout=10) for i in ids]
        finally:
            q.shutdown(wait=True, timeout=5)
        assert all(t.status == TaskStatus.success for t in results)

    def test_add_task_from_many_threads(self, queue):
        queue.register("ECHO", EchoPayload, lambda p: {"v": p.value})
        queue.start()
        ids = []
        lock = threading.Lock()

        def producer(n):
            for i in range(20):
                tid = queue.add_task("ECHO", {"value": n * 100 + i})
                with lock:
                    ids.append(tid)

        threads = [threading.Thread(target=producer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(ids)) == 80
        for tid in ids:
            assert queue.wait(tid, timeout=10).status == TaskStatus.success

    def test_shutdown_drains_queued_work(self):
        q = _queue(workers=1)
        done = []
        q.register("ECHO", EchoPayload, lambda p: done.append(p.value) or {})
        q.start()
        for i in range(5):
            q.add_task("ECHO", {"value": i})
        q.shutdown(wait=True, timeout=10)
        assert sorted(done) == [0, 1, 2, 3, 4]
        assert not q.running


class TestRetention:
    def test_expired_terminal_tasks_are_evicted(self):
        q = _queue(retention_seconds=60)
        q.register("ECHO", EchoPayload, lambda p: {})
        q.start()
        old = q.add_task("ECHO", {"value": 1})
        q.wait(old, timeout=5)
        q.shutdown(wait=True, timeout=5)

        # Age the finished task past the retention window.
        with q._cond:
            t = q._tasks[old]
            q._tasks[old] = t.model_copy(update={"finishedAt": utcnow() - timedelta(seconds=61)})

        q.add_task("ECHO", {"value": 2})
        assert q.get_task(old) is None

    def test_cap_evicts_oldest_terminal_first(self):
        q = _queue(max_retained=3)
        q.register("ECHO", EchoPayload, lambda p: {})
        q.start()
        finished = []
        for i in range(3):
            tid = q.add_task("ECHO", {"value": i})
            q.wait(tid, timeout=5)
            finished.append(tid)
        q.shutdown(wait=True, timeout=5)

        newest = q.add_task("ECHO", {"value": 9})
        assert q.get_task(finished[0]) is None
        assert q.get_task(finished[1]) is not None
        assert q.get_task(newest).status == TaskStatus.pending

    def test_pending_tasks_are_never_evicted(self):
        q = _queue(max_retained=2)
        ids = [q.add_task("ECHO", {"value": i}) for i in range(5)]
        assert all(q.get_task(i) is not None for i in ids)
