"""Tests for the published pipeline state."""

from __future__ import annotations

import threading

from classifyx.ml.image_classifier import interpret
from classifyx.state import PipelineState, PipelineStatus, StateStore


class TestStateStore:
    def test_initial_state_is_idle(self) -> None:
        state = StateStore().current

        assert state.status is PipelineStatus.IDLE
        assert state.result is None
        assert state.error is None
        assert state.version == 0

    def test_publish_replaces_snapshot_and_bumps_version(self) -> None:
        store = StateStore()
        before = store.current
        result = interpret([0.2, 0.8])

        after = store.publish(PipelineStatus.COMPLETED, request_id=3, result=result)

        assert store.current is after
        assert after.version == before.version + 1
        assert after.request_id == 3
        assert after.result == result
        # Old snapshots are untouched.
        assert before.status is PipelineStatus.IDLE

    def test_publish_overwrites_previous_result(self) -> None:
        store = StateStore()
        store.publish(PipelineStatus.COMPLETED, request_id=1, result=interpret([1.0, 0.0]))

        store.publish(PipelineStatus.FAILED, request_id=2, error="boom")

        assert store.current.result is None
        assert store.current.error == "boom"

    def test_observers_receive_every_publish(self) -> None:
        store = StateStore()
        seen: list[PipelineState] = []
        store.subscribe(seen.append)

        store.publish(PipelineStatus.RUNNING, request_id=1)
        store.publish(PipelineStatus.COMPLETED, request_id=1, result=interpret([1.0]))

        assert [s.status for s in seen] == [PipelineStatus.RUNNING, PipelineStatus.COMPLETED]
        assert [s.version for s in seen] == [1, 2]

    def test_swap_does_not_notify_until_asked(self) -> None:
        store = StateStore()
        seen: list[PipelineState] = []
        store.subscribe(seen.append)

        snapshot = store.swap(PipelineStatus.RUNNING, request_id=3)
        assert seen == []
        assert store.current is snapshot

        store.notify(snapshot)
        assert seen == [snapshot]

    def test_observer_may_read_store_during_notify(self) -> None:
        store = StateStore()
        observed: list[PipelineStatus] = []
        store.subscribe(lambda _state: observed.append(store.current.status))

        store.publish(PipelineStatus.RUNNING, request_id=1)

        assert observed == [PipelineStatus.RUNNING]

    def test_unsubscribe_stops_notifications(self) -> None:
        store = StateStore()
        seen: list[PipelineState] = []
        unsubscribe = store.subscribe(seen.append)

        unsubscribe()
        store.publish(PipelineStatus.RUNNING, request_id=1)

        assert seen == []

    def test_failing_observer_does_not_block_others(self) -> None:
        store = StateStore()
        seen: list[PipelineState] = []

        def broken(_state: PipelineState) -> None:
            raise RuntimeError("observer bug")

        store.subscribe(broken)
        store.subscribe(seen.append)

        store.publish(PipelineStatus.RUNNING, request_id=1)

        assert len(seen) == 1
        assert store.current.status is PipelineStatus.RUNNING

    def test_concurrent_publishes_yield_distinct_versions(self) -> None:
        store = StateStore()
        versions: list[int] = []
        lock = threading.Lock()

        def worker(request_id: int) -> None:
            for _ in range(50):
                snapshot = store.publish(PipelineStatus.RUNNING, request_id=request_id)
                with lock:
                    versions.append(snapshot.version)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(versions) == list(range(1, 201))
        assert store.current.version == 200
