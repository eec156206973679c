import threading
import time

from chatcommerce.services.locks import KeyedLocks


class TestKeyedLocks:
    def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        inside = []
        overlaps = []

        def worker():
            with locks.lock(("51987654321", "T-CAFE")):
                if inside:
                    overlaps.append(True)
                inside.append(True)
                time.sleep(0.005)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert overlaps == []

    def test_different_keys_do_not_block(self):
        locks = KeyedLocks()
        entered = threading.Event()

        def other():
            with locks.lock(("b", "T-CAFE")):
                entered.set()

        with locks.lock(("a", "T-CAFE")):
            thread = threading.Thread(target=other)
            thread.start()
            assert entered.wait(timeout=2)
            thread.join()

    def test_idle_keys_are_released(self):
        locks = KeyedLocks()
        with locks.lock("x"):
            assert locks.active_keys() == 1
        assert locks.active_keys() == 0

    def test_lock_released_on_error(self):
        locks = KeyedLocks()
        try:
            with locks.lock("x"):
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        with locks.lock("x"):
            pass
        assert locks.active_keys() == 0
