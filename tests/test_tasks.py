"""Unit tests for the task delegation queue.

Tests cover:
- Task creation and on-disk location
- The claim/start/progress/complete/fail/cancel state machine
- InvalidTransitionError for disallowed transitions
- Capability and targeting rules for claimable tasks
- Wait handles and acknowledgement
- Concurrent claims (exactly one winner)
- Reconciling files left in the wrong bucket
- Moves by another instance between a lookup and a rewrite
"""

import os
import threading
import time

import pytest

from claudememory.project import get_memory_dir, get_runtime_dir
from claudememory.tasks import (
    InvalidTransitionError,
    Task,
    TaskOrigin,
    TaskPriority,
    TaskQueue,
    TaskResult,
    TaskStatus,
    TaskTarget,
    bucket_for,
)
from claudememory.utils import load_yaml, save_yaml
from claudememory.validators import ValidationError


def task_files(project_root):
    """Map of bucket directory name to task file names."""
    result = {}
    for status in TaskStatus:
        bucket = bucket_for(status, project_root)
        if bucket.is_dir():
            result[bucket.name] = sorted(p.name for p in bucket.glob("task_*.yaml"))
    return result


def staged_files(project_root):
    """Dot-prefixed staging files left in any bucket."""
    return sorted({
        p.name for status in TaskStatus
        for p in bucket_for(status, project_root).glob(".task_*.yaml")
    })


def occupied_buckets(project_root):
    """Names of the buckets that hold at least one task file."""
    return sorted(name for name, files in task_files(project_root).items() if files)


def run_after(monkeypatch, queue, method, action):
    """Run ``action`` once, right after ``queue.<method>`` first returns."""
    original = getattr(queue, method)
    fired = []

    def wrapper(*args, **kwargs):
        result = original(*args, **kwargs)
        if not fired:
            fired.append(action())
        return result

    monkeypatch.setattr(queue, method, wrapper)
    return fired


class TestTaskModel:
    """Tests for the Task dataclasses."""

    def test_terminal_statuses(self):
        """Test which statuses count as terminal."""
        assert {s for s in TaskStatus if s.is_terminal} == {
            TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED,
        }

    def test_from_dict_ignores_unknown_keys(self):
        """Test that documents from other versions still load."""
        task = Task.from_dict({
            "id": "task_0123456789ab",
            "created_by": {"instance_id": "a", "future": 1},
            "title": "t",
            "description": "d",
            "status": "claimed",
            "mystery": True,
        })
        assert task.status == TaskStatus.CLAIMED
        assert task.created_by == TaskOrigin("a")

    def test_from_dict_requires_core_fields(self):
        """Test that a document without a title is rejected."""
        with pytest.raises(KeyError):
            Task.from_dict({"id": "task_0123456789ab", "created_by": {"instance_id": "a"}, "description": "d"})

    def test_to_dict_omits_unset_optionals(self):
        """Test that absent optional sections are not written."""
        task = Task(id="task_0123456789ab", created_by=TaskOrigin("a"), title="t", description="d")
        data = task.to_dict()
        assert "claimed_by" not in data
        assert "result" not in data
        assert "progress_updates" not in data


class TestTargeting:
    """Tests for TaskTarget.is_claimable_by."""

    def test_untargeted_task_is_open_to_all(self):
        """Test that no capabilities and no instance means anyone."""
        assert TaskTarget().is_claimable_by("x", [])

    def test_capabilities_must_all_be_present(self):
        """Test subset matching of capabilities."""
        target = TaskTarget(capabilities=["browser_testing", "coding"])
        assert target.is_claimable_by("x", ["coding", "browser_testing", "git"])
        assert not target.is_claimable_by("x", ["coding"])

    def test_specific_instance(self):
        """Test that a task aimed at one instance is claimable by it alone."""
        target = TaskTarget(specific_instance="worker")
        assert target.is_claimable_by("worker", [])
        assert not target.is_claimable_by("other", ["coding"])

    def test_specific_instance_or_capabilities(self):
        """Test that the named instance or a fully capable one may claim."""
        target = TaskTarget(capabilities=["gpu"], specific_instance="worker")
        assert target.is_claimable_by("worker", [])
        assert target.is_claimable_by("other", ["gpu"])
        assert not target.is_claimable_by("other", ["coding"])


class TestCreateTask:
    """Tests for TaskQueue.create_task."""

    def test_new_task_is_pending(self, queue, project_root):
        """Test status, history, wait handle and file location of a new task."""
        task = queue.create_task("Run browser tests", "Check the login flow",
                                 capabilities=["browser_testing"], priority="high")
        assert task.id.startswith("task_")
        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.HIGH
        assert task.created_by.instance_id == "requester"
        assert task.created_by.machine == "test-host"
        assert task.target.capabilities == ["browser_testing"]
        assert [h.status for h in task.status_history] == [TaskStatus.PENDING]
        assert task.wait_handle.requester == "requester"
        assert task.wait_handle.acknowledged is False
        assert task_files(project_root)["pending"] == [f"{task.id}.yaml"]

    def test_timeout_sets_timeout_at(self, queue):
        """Test that timeout_minutes produces an advisory deadline."""
        task = queue.create_task("t", "d", timeout_minutes=30)
        assert task.wait_handle.timeout_at > task.created_at

    @pytest.mark.parametrize("kwargs", [
        {"title": ""},
        {"description": "   "},
        {"priority": "urgent"},
        {"specific_instance": "../etc"},
        {"timeout_minutes": 0},
        {"timeout_minutes": True},
    ])
    def test_invalid_input(self, queue, kwargs):
        """Test that invalid inputs raise ValidationError."""
        args = {"title": "t", "description": "d", **kwargs}
        title = args.pop("title")
        description = args.pop("description")
        with pytest.raises(ValidationError):
            queue.create_task(title, description, **args)

    def test_task_file_is_greppable_yaml(self, queue):
        """Test that the title is a one-line quoted field."""
        task = queue.create_task("Run tests", "d")
        path = bucket_for(TaskStatus.PENDING, queue.project_root) / f"{task.id}.yaml"
        assert 'title: "Run tests"' in path.read_text().splitlines()


class TestLifecycle:
    """Tests for the task state machine."""

    def test_full_happy_path(self, queue, worker_queue, project_root):
        """Test pending -> claimed -> in_progress -> completed."""
        task = queue.create_task("Write docs", "Document the API")

        claimed = worker_queue.claim_task(task.id)
        assert claimed.status == TaskStatus.CLAIMED
        assert claimed.claimed_by.instance_id == "worker"
        assert task_files(project_root)["in_progress"] == [f"{task.id}.yaml"]

        started = worker_queue.start_task(task.id)
        assert started.status == TaskStatus.IN_PROGRESS
        assert started.progress_updates == []

        worker_queue.update_progress(task.id, "Half way")
        completed = worker_queue.complete_task(
            task.id, {"success": True, "output": {"type": "text", "data": "done"}}
        )
        assert completed.status == TaskStatus.COMPLETED
        assert completed.completed_at is not None
        assert completed.result.output["data"] == "done"
        assert [p.message for p in completed.progress_updates] == ["Half way"]
        assert [h.status for h in completed.status_history] == [
            TaskStatus.PENDING, TaskStatus.CLAIMED, TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED,
        ]

        files = task_files(project_root)
        assert files["pending"] == []
        assert files["in_progress"] == []
        assert (get_memory_dir(project_root) / "completed" / f"{task.id}.yaml").exists()

    def test_complete_directly_from_claimed(self, queue, worker_queue):
        """Test that a claimed task can be completed without starting it."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        completed = worker_queue.complete_task(task.id)
        assert completed.status == TaskStatus.COMPLETED
        assert completed.result.success is True

    def test_claim_non_pending_raises(self, queue, worker_queue):
        """Test that claiming a claimed task reports the actual status."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        with pytest.raises(InvalidTransitionError) as exc_info:
            queue.claim_task(task.id)
        assert exc_info.value.actual == TaskStatus.CLAIMED
        assert exc_info.value.expected == [TaskStatus.PENDING]
        assert "Cannot claim task" in str(exc_info.value)

    def test_start_requires_claim(self, queue):
        """Test that a pending task cannot be started."""
        task = queue.create_task("t", "d")
        with pytest.raises(InvalidTransitionError):
            queue.start_task(task.id)

    def test_progress_requires_in_progress(self, queue, worker_queue):
        """Test that progress on a claimed but unstarted task is refused."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        with pytest.raises(InvalidTransitionError):
            worker_queue.update_progress(task.id, "note")

    def test_progress_does_not_add_history(self, queue, worker_queue):
        """Test that progress notes leave the status history alone."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        worker_queue.start_task(task.id)
        updated = worker_queue.update_progress(task.id, "note")
        assert len(updated.status_history) == 3

    def test_complete_pending_raises(self, queue):
        """Test that an unclaimed task cannot be completed."""
        task = queue.create_task("t", "d")
        with pytest.raises(InvalidTransitionError):
            queue.complete_task(task.id)

    def test_fail_from_any_open_state(self, queue, worker_queue, project_root):
        """Test fail from pending and from in_progress."""
        pending = queue.create_task("a", "d")
        failed = queue.fail_task(pending.id, "NO_WORKER", "Nobody can do this")
        assert failed.status == TaskStatus.FAILED
        assert failed.result.success is False
        assert failed.result.error.code == "NO_WORKER"

        running = queue.create_task("b", "d")
        worker_queue.claim_task(running.id)
        worker_queue.start_task(running.id)
        failed = worker_queue.fail_task(running.id, "CRASH", "Browser crashed", details="trace")
        assert failed.result.error.details == "trace"
        assert sorted(task_files(project_root)["failed"]) == sorted(
            [f"{pending.id}.yaml", f"{running.id}.yaml"]
        )

    def test_terminal_tasks_cannot_fail_or_cancel(self, queue, worker_queue):
        """Test that completed tasks are final."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        worker_queue.complete_task(task.id)
        with pytest.raises(InvalidTransitionError):
            worker_queue.fail_task(task.id, "LATE", "too late")
        with pytest.raises(InvalidTransitionError):
            queue.cancel_task(task.id)

    def test_cancel(self, queue, project_root):
        """Test cancelling a pending task."""
        task = queue.create_task("t", "d")
        cancelled = queue.cancel_task(task.id, "No longer needed")
        assert cancelled.status == TaskStatus.CANCELLED
        assert cancelled.status_history[-1].message == "No longer needed"
        assert task_files(project_root)["cancelled"] == [f"{task.id}.yaml"]

    def test_missing_task_returns_none(self, queue):
        """Test that operations on unknown or malformed ids return None."""
        assert queue.claim_task("task_0123456789ab") is None
        assert queue.complete_task("task_0123456789ab") is None
        assert queue.get_task("../../etc/passwd") is None


class TestQueries:
    """Tests for listing and filtering tasks."""

    def test_claimable_tasks_sorted_by_priority_then_age(self, queue, worker_queue):
        """Test ordering and capability filtering of claimable tasks."""
        low = queue.create_task("low", "d", priority="low")
        critical = queue.create_task("critical", "d", priority="critical")
        normal = queue.create_task("normal", "d")
        queue.create_task("needs gpu", "d", capabilities=["gpu"])
        queue.create_task("for someone else", "d", specific_instance="other")

        claimable = worker_queue.get_claimable_tasks(["coding"])
        assert [t.id for t in claimable] == [critical.id, normal.id, low.id]

    def test_claimed_tasks_are_not_claimable(self, queue, worker_queue):
        """Test that only pending tasks are offered."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        assert worker_queue.get_claimable_tasks([]) == []

    def test_list_by_status_and_stats(self, queue, worker_queue):
        """Test list_tasks filtering and the per-status counts."""
        a = queue.create_task("a", "d")
        queue.create_task("b", "d")
        worker_queue.claim_task(a.id)

        assert [t.id for t in queue.list_tasks(TaskStatus.CLAIMED)] == [a.id]
        assert queue.list_tasks("in_progress") == []
        stats = queue.get_task_stats()
        assert stats["pending"] == 1
        assert stats["claimed"] == 1
        assert stats["total"] == 2

    def test_my_tasks(self, queue, worker_queue):
        """Test delegated and claimed task views."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        assert [t.id for t in queue.get_my_tasks()] == [task.id]
        assert worker_queue.get_my_tasks() == []
        assert [t.id for t in worker_queue.get_my_claimed_tasks()] == [task.id]
        assert queue.get_my_claimed_tasks() == []

    def test_overdue_tasks(self, queue, iso_ago):
        """Test that open tasks past timeout_at are reported."""
        task = queue.create_task("t", "d", timeout_minutes=5)
        queue.create_task("no timeout", "d")
        assert queue.get_overdue_tasks() == []

        path = bucket_for(TaskStatus.PENDING, queue.project_root) / f"{task.id}.yaml"
        data = load_yaml(path)
        data["wait_handle"]["timeout_at"] = iso_ago(minutes=1)
        save_yaml(path, data)
        assert [t.id for t in queue.get_overdue_tasks()] == [task.id]

        queue.cancel_task(task.id)
        assert queue.get_overdue_tasks() == []

    def test_unreadable_task_file_skipped(self, queue, project_root):
        """Test that a corrupt task file does not break listings."""
        task = queue.create_task("t", "d")
        (bucket_for(TaskStatus.PENDING, project_root) / "task_ffffffffffff.yaml").write_text(": [")
        assert [t.id for t in queue.list_tasks()] == [task.id]


class TestWaitHandles:
    """Tests for waiting on and acknowledging delegated tasks."""

    def test_completed_wait_reported_until_acknowledged(self, queue, worker_queue):
        """Test check_completed_waits and acknowledge_result."""
        task = queue.create_task("t", "d")
        assert [t.id for t in queue.get_waiting_tasks()] == [task.id]
        assert queue.check_completed_waits() == []

        worker_queue.claim_task(task.id)
        worker_queue.complete_task(task.id)
        assert [t.id for t in queue.check_completed_waits()] == [task.id]
        assert worker_queue.check_completed_waits() == []

        acked = queue.acknowledge_result(task.id)
        assert acked.wait_handle.acknowledged is True
        assert queue.check_completed_waits() == []
        assert queue.get_waiting_tasks() == []

    def test_failed_tasks_count_as_finished(self, queue):
        """Test that failed tasks are reported to the requester."""
        task = queue.create_task("t", "d")
        queue.fail_task(task.id, "X", "broken")
        assert [t.id for t in queue.check_completed_waits()] == [task.id]

    def test_acknowledge_is_idempotent(self, queue):
        """Test that a second acknowledgement keeps the first timestamp."""
        task = queue.create_task("t", "d")
        queue.cancel_task(task.id)
        first = queue.acknowledge_result(task.id)
        second = queue.acknowledge_result(task.id)
        assert second.wait_handle.acknowledged_at == first.wait_handle.acknowledged_at

    def test_acknowledge_missing_task(self, queue):
        """Test that acknowledging an unknown task returns None."""
        assert queue.acknowledge_result("task_0123456789ab") is None


class TestConcurrentClaims:
    """Tests for racing claimers."""

    @pytest.mark.parametrize("claimers", [2, 8])
    def test_exactly_one_claimer_wins(self, queue, project_root, claimers):
        """Test that concurrent claims of one task produce a single winner."""
        task = queue.create_task("Contended", "d")
        barrier = threading.Barrier(claimers)
        winners: list[str] = []
        losers: list[InvalidTransitionError] = []
        unexpected: list[Exception] = []

        def claim(n):
            worker = TaskQueue(project_root, instance_id=f"worker-{n}", machine="test-host")
            barrier.wait()
            try:
                if worker.claim_task(task.id) is not None:
                    winners.append(worker.instance_id)
            except InvalidTransitionError as e:
                losers.append(e)
            except Exception as e:
                unexpected.append(e)

        threads = [threading.Thread(target=claim, args=(n,)) for n in range(claimers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert unexpected == []
        assert len(winners) == 1
        assert len(losers) == claimers - 1

        stored = queue.get_task(task.id)
        assert stored.status == TaskStatus.CLAIMED
        assert stored.claimed_by.instance_id == winners[0]
        assert task_files(project_root)["pending"] == []
        assert task_files(project_root)["in_progress"] == [f"{task.id}.yaml"]


class TestReconcile:
    """Tests for TaskQueue.reconcile."""

    def test_crash_after_rename_is_repaired(self, queue, project_root):
        """Test that a file moved without its status rewrite goes back."""
        task = queue.create_task("t", "d")
        pending = bucket_for(TaskStatus.PENDING, project_root) / f"{task.id}.yaml"
        in_progress = get_runtime_dir(project_root) / "tasks" / "in_progress" / f"{task.id}.yaml"
        in_progress.parent.mkdir(parents=True, exist_ok=True)
        os.rename(pending, in_progress)

        assert queue.get_task(task.id).status == TaskStatus.PENDING
        assert queue.reconcile() == 1
        assert pending.exists()
        assert not in_progress.exists()
        assert queue.reconcile() == 0

    def test_reconciled_task_is_claimable_again(self, queue, worker_queue, project_root):
        """Test that a repaired task can go through the normal lifecycle."""
        task = queue.create_task("t", "d")
        pending = bucket_for(TaskStatus.PENDING, project_root) / f"{task.id}.yaml"
        failed_dir = bucket_for(TaskStatus.FAILED, project_root)
        failed_dir.mkdir(parents=True, exist_ok=True)
        os.rename(pending, failed_dir / pending.name)

        queue.reconcile()
        assert worker_queue.claim_task(task.id).status == TaskStatus.CLAIMED

    def test_completed_task_result_object(self):
        """Test TaskResult defaults from a sparse document."""
        result = TaskResult.from_dict({"success": True, "artifacts": None})
        assert result.artifacts == []
        assert result.generated_memories == []

    def test_stranded_task_refuses_transitions_until_reconciled(self, queue, worker_queue, project_root):
        """Test that a file outside its status bucket cannot be claimed twice."""
        task = queue.create_task("t", "d")
        pending = bucket_for(TaskStatus.PENDING, project_root) / f"{task.id}.yaml"
        in_progress = bucket_for(TaskStatus.IN_PROGRESS, project_root) / pending.name
        in_progress.parent.mkdir(parents=True, exist_ok=True)
        os.rename(pending, in_progress)

        with pytest.raises(InvalidTransitionError):
            worker_queue.claim_task(task.id)

        queue.reconcile()
        assert worker_queue.claim_task(task.id).claimed_by.instance_id == "worker"


class TestInterleavedWriters:
    """Tests for a move by another instance landing between a read and a write."""

    def test_start_loses_to_cancel(self, monkeypatch, queue, worker_queue, project_root):
        """Test that a cancel after start's lookup wins and leaves one file."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        run_after(monkeypatch, worker_queue, "_find", lambda: queue.cancel_task(task.id))

        with pytest.raises(InvalidTransitionError) as exc_info:
            worker_queue.start_task(task.id)

        assert exc_info.value.actual == TaskStatus.CANCELLED
        assert occupied_buckets(project_root) == ["cancelled"]
        assert staged_files(project_root) == []
        assert queue.get_task(task.id).status == TaskStatus.CANCELLED

    def test_progress_loses_to_fail(self, monkeypatch, queue, worker_queue, project_root):
        """Test that a progress update cannot resurrect a failed task."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        worker_queue.start_task(task.id)
        run_after(monkeypatch, worker_queue, "_find",
                  lambda: queue.fail_task(task.id, "ABORT", "Stopped"))

        with pytest.raises(InvalidTransitionError):
            worker_queue.update_progress(task.id, "still going")

        assert occupied_buckets(project_root) == ["failed"]
        assert queue.get_task(task.id).progress_updates == []

    def test_start_after_concurrent_start(self, monkeypatch, queue, worker_queue, project_root):
        """Test that a rewrite in the same bucket is seen before committing."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        other = TaskQueue(project_root, instance_id="worker-2", machine="test-host")
        run_after(monkeypatch, worker_queue, "_find", lambda: other.start_task(task.id))

        with pytest.raises(InvalidTransitionError) as exc_info:
            worker_queue.start_task(task.id)

        assert exc_info.value.actual == TaskStatus.IN_PROGRESS
        stored = queue.get_task(task.id)
        assert [h.by for h in stored.status_history][-1] == "worker-2"
        assert task_files(project_root)["in_progress"] == [f"{task.id}.yaml"]
        assert staged_files(project_root) == []

    def test_acknowledge_during_complete(self, monkeypatch, queue, worker_queue, project_root):
        """Test that acknowledging while the task completes keeps one completed file."""
        task = queue.create_task("t", "d")
        worker_queue.claim_task(task.id)
        run_after(monkeypatch, queue, "_find", lambda: worker_queue.complete_task(task.id))

        acked = queue.acknowledge_result(task.id)

        assert acked.status == TaskStatus.COMPLETED
        assert acked.wait_handle.acknowledged
        assert occupied_buckets(project_root) == ["completed"]
        assert staged_files(project_root) == []
        stored = queue.get_task(task.id)
        assert stored.status == TaskStatus.COMPLETED
        assert stored.wait_handle.acknowledged

    def test_reconcile_during_claim(self, monkeypatch, queue, worker_queue, project_root):
        """Test that reconcile leaves a claim in flight alone."""
        task = queue.create_task("t", "d")
        original = worker_queue._read
        reconciled = []

        def read(path, check_location=True):
            if path.name.startswith(".") and not reconciled:
                reconciled.append(queue.reconcile())
            return original(path, check_location)

        monkeypatch.setattr(worker_queue, "_read", read)
        claimed = worker_queue.claim_task(task.id)

        assert reconciled == [0]
        assert claimed.status == TaskStatus.CLAIMED
        assert task_files(project_root)["pending"] == []
        assert task_files(project_root)["in_progress"] == [f"{task.id}.yaml"]
        other = TaskQueue(project_root, instance_id="worker-2", machine="test-host")
        with pytest.raises(InvalidTransitionError):
            other.claim_task(task.id)


class TestStagedFiles:
    """Tests for staged files left behind by a dead process."""

    def _strand(self, project_root, task, age_seconds):
        pending = bucket_for(TaskStatus.PENDING, project_root) / f"{task.id}.yaml"
        in_progress = bucket_for(TaskStatus.IN_PROGRESS, project_root)
        in_progress.mkdir(parents=True, exist_ok=True)
        stamp = int((time.time() - age_seconds) * 1000)
        staged = in_progress / f".{task.id}.{stamp}.a1b2c3.yaml"
        os.rename(pending, staged)
        return pending, staged

    def test_staged_task_is_mid_move(self, queue, worker_queue, project_root):
        """Test that a staged task is found but cannot be transitioned."""
        task = queue.create_task("t", "d")
        self._strand(project_root, task, 0)

        assert queue.get_task(task.id).status == TaskStatus.PENDING
        assert queue.list_tasks() == []
        with pytest.raises(InvalidTransitionError) as exc_info:
            worker_queue.claim_task(task.id)
        assert exc_info.value.actual is None

    def test_fresh_staged_file_left_alone(self, queue, project_root):
        """Test that reconcile does not touch a transition still in flight."""
        task = queue.create_task("t", "d")
        _, staged = self._strand(project_root, task, 1)

        assert queue.reconcile() == 0
        assert staged.exists()

    def test_abandoned_staged_file_restored(self, queue, worker_queue, project_root):
        """Test that reconcile restores an old staged file to its bucket."""
        task = queue.create_task("t", "d")
        pending, staged = self._strand(project_root, task, 3600)

        assert queue.reconcile() == 1
        assert pending.exists()
        assert not staged.exists()
        assert worker_queue.claim_task(task.id).status == TaskStatus.CLAIMED

    def test_abandoned_copy_of_published_task_kept(self, queue, project_root):
        """Test that a stale staged copy never overwrites a published task."""
        task = queue.create_task("t", "d")
        pending = bucket_for(TaskStatus.PENDING, project_root) / f"{task.id}.yaml"
        in_progress = bucket_for(TaskStatus.IN_PROGRESS, project_root)
        in_progress.mkdir(parents=True, exist_ok=True)
        stamp = int((time.time() - 3600) * 1000)
        staged = in_progress / f".{task.id}.{stamp}.a1b2c3.yaml"
        staged.write_bytes(pending.read_bytes())

        assert queue.reconcile() == 0
        assert pending.exists()
        assert staged.exists()
