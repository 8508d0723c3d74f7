import cdn_console.scheduler as scheduler_module
from cdn_console.middleware.rate_limit import FixedWindowRateLimiter


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_sweep_job_evicts_elapsed_windows(monkeypatch):
    clock = FakeClock()
    limiter = FixedWindowRateLimiter(clock=clock)
    limiter.check("invite:meta:abc:198.51.100.7", limit=5, window_seconds=60)
    clock.now += 30
    limiter.check("invite:sign:abc:198.51.100.7", limit=5, window_seconds=60)
    monkeypatch.setattr(scheduler_module, "invite_rate_limiter", limiter)

    clock.now += 45
    scheduler_module.sweep_rate_limits_job()

    assert len(limiter) == 1


def test_sweep_job_logs_and_survives_errors(monkeypatch, caplog):
    class Broken:
        def sweep(self):
            raise RuntimeError("boom")

    monkeypatch.setattr(scheduler_module, "invite_rate_limiter", Broken())

    scheduler_module.sweep_rate_limits_job()

    assert "Rate limit sweep failed: boom" in caplog.text


def test_start_registers_sweep_job(monkeypatch):
    started = []
    monkeypatch.setattr(scheduler_module.scheduler, "start", lambda: started.append(True))

    scheduler_module.start_scheduler()

    job = scheduler_module.scheduler.get_job("sweep_invite_rate_limits")
    assert job is not None
    assert job.func is scheduler_module.sweep_rate_limits_job
    assert started == [True]
    scheduler_module.scheduler.remove_job("sweep_invite_rate_limits")
