import threading

import pytest

from learned_index import IndexState, NetworkParameters, RecursiveModelIndex
import learned_index.index as index_module

SLOW_STAGE = NetworkParameters(batch_size=8, max_num_epochs=1_000_000, learning_rate=0.01, num_neurons=4)


def test_background_retrain_publishes_new_snapshot(index_factory):
    index = index_factory(background=True, max_overflow_size=5)
    for key in [10, 3, 7, 1, 9, 2]:
        index.insert(key, f"value_{key}")
    assert index.wait_for_training(timeout=60)
    assert index.buffer.is_empty()
    assert [k for k, _ in index.records()] == [1, 2, 3, 7, 9, 10]
    assert index.find(7) == (7, "value_7")
    assert index.find(99) is None
    assert index.state is IndexState.IDLE


def test_train_async_refuses_second_concurrent_retrain():
    index = RecursiveModelIndex(SLOW_STAGE, SLOW_STAGE, max_overflow_size=100, background=True, seed=0)
    index.insert(1, "a")
    assert index.train_async() is True
    assert index.train_async() is False
    index.cancel_training()
    assert index.wait_for_training(timeout=60)


def test_reads_see_pending_records_during_retrain():
    index = RecursiveModelIndex(SLOW_STAGE, SLOW_STAGE, max_overflow_size=100, background=True, seed=0)
    for key in range(20):
        index.insert(key, key)
    index.train_async()

    # Records are drained from the buffer but must stay visible
    for key in range(20):
        assert index.find(key) == (key, key)
    index.insert(50, "late")
    assert index.find(50) == (50, "late")
    assert len(index) == 21

    index.cancel_training()
    assert index.wait_for_training(timeout=60)


def test_cancel_keeps_previous_state_and_restores_buffer():
    index = RecursiveModelIndex(SLOW_STAGE, SLOW_STAGE, max_overflow_size=100, background=True, seed=0)
    for key in range(10):
        index.insert(key, key)
    index.train_async()
    index.insert(99, "after")
    index.cancel_training()
    assert index.wait_for_training(timeout=60)

    assert index.retrain_count == 0
    assert index.get_stats()['generation'] == 0
    assert index.records() == []
    assert index.overflow_records() == [(k, k) for k in range(10)] + [(99, "after")]
    assert index.state is IndexState.IDLE
    for key in range(10):
        assert index.find(key) == (key, key)


def test_failed_retrain_is_reraised_and_loses_nothing(index_factory, monkeypatch):
    def broken_train(self, dataset, cancel_event=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(index_module.FirstStageRouter, 'train', broken_train)
    index = index_factory(background=True, max_overflow_size=2)
    for key in [3, 1, 2]:
        index.insert(key, key)
    with pytest.raises(RuntimeError):
        index.wait_for_training(timeout=60)
    assert [k for k, _ in index.overflow_records()] == [3, 1, 2]
    assert index.find(2) == (2, 2)


def test_concurrent_readers_never_miss_records(index_factory):
    index = index_factory(background=True, max_overflow_size=30)
    keys = list(range(0, 300, 3))
    misses = []
    stop = threading.Event()

    def reader():
        while not stop.is_set():
            # Only look up keys that were inserted before this pass started
            visible = len(index)
            for key in keys[:visible]:
                if index.find(key) is None:
                    misses.append(key)

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        for key in keys:
            index.insert(key, key)
        assert index.wait_for_training(timeout=120)
    finally:
        stop.set()
        thread.join()

    assert misses == []
    index.train()
    assert [k for k, _ in index.records()] == keys
