import re
import threading

from bites.ordering.numbering import OrderNumberGenerator


def test_format():
    gen = OrderNumberGenerator(clock=lambda: 1_700_000_000.5)
    assert gen.next() == "ORD17000000005000001"
    assert re.fullmatch(r"ORD\d{13}\d{4}", gen.next())


def test_unique_under_concurrent_callers():
    gen = OrderNumberGenerator()
    results = []
    lock = threading.Lock()
    start = threading.Barrier(8)

    def worker():
        start.wait()
        local = [gen.next() for _ in range(500)]
        with lock:
            results.extend(local)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 4000
    assert len(set(results)) == 4000


def test_frozen_clock_still_unique_across_wrap():
    gen = OrderNumberGenerator(clock=lambda: 1000.0)
    numbers = [gen.next() for _ in range(12_000)]
    assert len(set(numbers)) == len(numbers)


def test_clock_stepping_back_does_not_repeat():
    ticks = iter([2.0, 1.0, 1.0])
    gen = OrderNumberGenerator(clock=lambda: next(ticks))
    a, b, c = gen.next(), gen.next(), gen.next()
    assert len({a, b, c}) == 3
    assert all(n.startswith("ORD2000") for n in (a, b, c))
