from learned_index import OverflowBuffer


def test_insert_reports_threshold_crossing():
    buffer = OverflowBuffer(max_size=2)
    assert buffer.insert(1, "a") is False
    assert buffer.insert(2, "b") is False
    assert buffer.insert(3, "c") is True
    assert buffer.is_full()


def test_scan_returns_first_match_in_insertion_order():
    buffer = OverflowBuffer(max_size=10)
    buffer.insert(5, "first")
    buffer.insert(3, "other")
    buffer.insert(5, "second")
    assert buffer.scan(5) == (5, "first")
    assert buffer.scan(4) is None


def test_scan_distinguishes_falsy_values_from_absence():
    buffer = OverflowBuffer(max_size=10)
    buffer.insert(0, 0)
    assert buffer.scan(0) == (0, 0)
    assert buffer.scan(1) is None


def test_drain_empties_and_keeps_order():
    buffer = OverflowBuffer(max_size=10)
    for key in [3, 1, 2]:
        buffer.insert(key, str(key))
    assert buffer.drain() == [(3, "3"), (1, "1"), (2, "2")]
    assert buffer.is_empty()
    assert len(buffer) == 0


def test_restore_puts_records_before_newer_inserts():
    buffer = OverflowBuffer(max_size=10)
    buffer.insert(1, "old")
    drained = buffer.drain()
    buffer.insert(2, "new")
    buffer.restore(drained)
    assert buffer.get_records() == [(1, "old"), (2, "new")]
