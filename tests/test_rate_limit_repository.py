import threading

from repositories.rate_limit_repository import RateLimitRepository


class Clock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self):
        return self.now


def test_fixed_window(db_path):
    clock = Clock()
    repo = RateLimitRepository(db_path=db_path, max_trades=5, window_ms=60000, clock=clock)

    assert all(repo.check_and_increment(1) for _ in range(5))
    assert repo.check_and_increment(1) is False
    assert repo.remaining(1) == 0
    # otro usuario no se ve afectado
    assert repo.remaining(2) == 5
    assert repo.check_and_increment(2) is True

    clock.now += 61
    assert repo.remaining(1) == 5
    assert repo.check_and_increment(1) is True
    assert repo.remaining(1) == 4


def test_rejected_attempts_do_not_consume(db_path):
    clock = Clock()
    repo = RateLimitRepository(db_path=db_path, max_trades=2, window_ms=60000, clock=clock)

    assert repo.check_and_increment(1)
    assert repo.check_and_increment(1)
    assert not repo.check_and_increment(1)
    assert not repo.check_and_increment(1)
    assert repo.remaining(1) == 0

    # la ventana sigue anclada al primer intento
    clock.now += 59
    assert not repo.check_and_increment(1)
    clock.now += 2
    assert repo.check_and_increment(1)


def test_parallel_commands_never_exceed_limit(db_path):
    repo = RateLimitRepository(db_path=db_path, max_trades=5, window_ms=60000, clock=Clock())
    workers_n = 16
    barrier = threading.Barrier(workers_n)
    allowed = []
    lock = threading.Lock()

    def attempt():
        barrier.wait()
        ok = repo.check_and_increment(7)
        with lock:
            allowed.append(ok)

    workers = [threading.Thread(target=attempt) for _ in range(workers_n)]
    for t in workers:
        t.start()
    for t in workers:
        t.join(timeout=30)

    assert len(allowed) == workers_n
    assert allowed.count(True) == 5
    assert repo.remaining(7) == 0
