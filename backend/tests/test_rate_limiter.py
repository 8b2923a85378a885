from armada.services.rate_limiter import RateLimiter


def test_second_action_inside_window_is_rejected(clock):
    limiter = RateLimiter(window_ms=1000, max_actions=1, clock=clock)
    assert limiter.allow('p1') is True
    clock.now += 0.2
    assert limiter.allow('p1') is False
    # Other identities are throttled independently
    assert limiter.allow('p2') is True


def test_action_allowed_again_after_window(clock):
    limiter = RateLimiter(window_ms=1000, max_actions=1, clock=clock)
    assert limiter.allow('p1')
    clock.now += 1.01
    assert limiter.allow('p1')


def test_rejected_action_is_not_recorded(clock):
    limiter = RateLimiter(window_ms=1000, max_actions=1, clock=clock)
    assert limiter.allow('p1')
    clock.now += 0.9
    assert not limiter.allow('p1')
    # Window counts from the accepted action, not the rejected one
    clock.now += 0.2
    assert limiter.allow('p1')


def test_sweep_drops_quiet_identities(clock):
    limiter = RateLimiter(window_ms=1000, max_actions=1, clock=clock)
    limiter.allow('old')
    clock.now += 5
    limiter.allow('recent')
    clock.now += 6
    assert limiter.sweep() == 1
    assert limiter.tracked() == 1


def test_sweeper_rearms_itself(clock, scheduler):
    limiter = RateLimiter(window_ms=1000, max_actions=1, clock=clock)
    limiter.start_sweeper(scheduler, 10)
    clock.now += 5
    limiter.allow('p1')
    scheduler.advance(5)
    assert limiter.tracked() == 1
    scheduler.advance(10)
    assert limiter.tracked() == 0
    assert len(scheduler.pending()) == 1
    limiter.stop_sweeper()
    assert scheduler.pending() == []
