import threading
import time

from rainbt.dhtannouncer import DHTAnnouncer


class Counter:
    def __init__(self):
        self.count = 0
        self.cond = threading.Condition()
        self.called = threading.Event()

    def __call__(self):
        with self.cond:
            self.count += 1
            self.cond.notify_all()
        self.called.set()

    def value(self):
        with self.cond:
            return self.count

    def wait_for(self, n, timeout=5):
        with self.cond:
            return self.cond.wait_for(lambda: self.count >= n, timeout)


def start(announcer, func, interval, min_interval):
    thread = threading.Thread(target=announcer.run, args=(func, interval, min_interval), daemon=True)
    thread.start()
    return thread


def test_announces_immediately():
    counter = Counter()
    announcer = DHTAnnouncer()
    thread = start(announcer, counter, 60, 60)
    assert counter.called.wait(5)
    announcer.close()
    thread.join(5)
    assert not thread.is_alive()
    assert counter.value() == 1


def test_repeats_at_min_interval_while_peers_are_needed():
    counter = Counter()
    announcer = DHTAnnouncer()
    thread = start(announcer, counter, 60, 0.02)
    reached = counter.wait_for(3)
    announcer.close()
    thread.join(5)
    assert reached is True
    assert not thread.is_alive()


def test_switches_to_long_interval_when_enough_peers():
    counter = Counter()
    announcer = DHTAnnouncer()
    thread = start(announcer, counter, 60, 0.02)
    assert counter.called.wait(5)
    announcer.need_more_peers(False)
    time.sleep(0.1)
    settled = counter.value()
    time.sleep(0.2)
    assert counter.value() == settled
    announcer.need_more_peers(True)
    resumed = counter.wait_for(settled + 1)
    announcer.close()
    thread.join(5)
    assert resumed is True
    assert not thread.is_alive()


def test_close_before_run_does_not_block():
    counter = Counter()
    announcer = DHTAnnouncer()
    announcer.close()
    announcer.run(counter, 60, 60)
    assert counter.value() == 0


def test_need_more_peers_after_close_returns():
    counter = Counter()
    announcer = DHTAnnouncer()
    thread = start(announcer, counter, 60, 60)
    assert counter.called.wait(5)
    announcer.close()
    announcer.need_more_peers(True)
    thread.join(5)
    assert not thread.is_alive()