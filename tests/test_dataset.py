import pytest

from learned_index import OrderedDataset


def test_merge_sorts_and_keeps_duplicates_in_merge_order():
    dataset = OrderedDataset().merge([(5, "a"), (1, "b"), (5, "c")])
    dataset = dataset.merge([(5, "d"), (0, "e")])
    assert dataset.records == [(0, "e"), (1, "b"), (5, "a"), (5, "c"), (5, "d")]
    assert dataset.is_sorted()


def test_merge_returns_new_dataset():
    base = OrderedDataset([(1, "a")])
    merged = base.merge([(2, "b")])
    assert len(base) == 1
    assert len(merged) == 2


def test_merge_rejects_non_finite_keys():
    with pytest.raises(ValueError):
        OrderedDataset().merge([(float("nan"), "x")])


@pytest.mark.parametrize("position", [0, 3, 10, 19])
def test_locate_finds_every_key_from_any_start(position):
    dataset = OrderedDataset([(k * 2, k) for k in range(20)])
    for k in range(20):
        idx, _ = dataset.locate(float(k * 2), position, 1)
        assert idx == k


def test_locate_widens_when_key_is_outside_window():
    dataset = OrderedDataset([(k, k) for k in range(100)])
    idx, widened = dataset.locate(90.0, 2, 1)
    assert idx == 90
    assert widened
    idx, widened = dataset.locate(3.0, 2, 4)
    assert idx == 3
    assert not widened


def test_locate_returns_leftmost_duplicate():
    dataset = OrderedDataset([(1, "a")] + [(7, str(i)) for i in range(10)] + [(9, "z")])
    idx, _ = dataset.locate(7.0, 8, 0)
    assert dataset.record_at(idx) == (7, "0")


def test_locate_absent_keys():
    dataset = OrderedDataset([(k * 2, k) for k in range(10)])
    assert dataset.locate(5.0, 2, 1)[0] is None
    assert dataset.locate(-1.0, 9, 0)[0] is None
    assert dataset.locate(100.0, 0, 0)[0] is None
    assert OrderedDataset().locate(1.0, 0, 0) == (None, False)
