# This file is part of curlew.
#
# curlew is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# curlew is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with curlew.  If not, see <http://www.gnu.org/licenses/>.

from curlew.core.ratelimit import LOCAL_RATE_LIMIT, GatewayRateLimiter, RateLimiter, get_route


class FakeClock(object):
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def make_limiter(**kwargs):
    wall = FakeClock(1_500_000_000.0)
    mono = FakeClock()
    limiter = RateLimiter(wall_clock=wall, monotonic_clock=mono, **kwargs)
    return limiter, wall, mono


def test_get_route():
    assert get_route("/channels/1234/messages") == "/channels/1234"
    assert get_route("/guilds/99") == "/guilds/99"
    assert get_route("/guilds/99/members/1") == "/guilds/99"
    assert get_route("/users/@me") is None
    assert get_route("/gateway") is None
    assert get_route("/channels/abc") is None


def test_untracked_routes_are_always_allowed():
    limiter, _, _ = make_limiter()
    for _ in range(100):
        assert limiter.allow("token", None)


def test_local_burst_cap():
    limiter, _, mono = make_limiter()
    for _ in range(5):
        assert limiter.allow("token", "/channels/1")

    decision = limiter.allow("token", "/channels/1")
    assert not decision
    assert decision.reason == LOCAL_RATE_LIMIT

    # other routes and tokens have their own counters
    assert limiter.allow("token", "/channels/2")
    assert limiter.allow("other", "/channels/1")

    mono.now += 1.0
    assert limiter.allow("token", "/channels/1")


def test_blocked_requests_do_not_count():
    limiter, _, _ = make_limiter(burst_limit=2)
    assert limiter.allow("token", "/guilds/1")
    assert limiter.allow("token", "/guilds/1")
    assert not limiter.allow("token", "/guilds/1")
    assert limiter.get_state("token", "/guilds/1").send_count == 2


def test_server_cap():
    limiter, wall, _ = make_limiter()
    limiter.record("token", "/channels/1", limit=5, remaining=0, reset=wall.now + 10)

    decision = limiter.allow("token", "/channels/1")
    assert not decision
    assert decision.reason == "Rate-limited on /channels/1, reset in 10 seconds"

    # still blocked inside the grace window
    wall.now += 12
    assert not limiter.allow("token", "/channels/1")

    wall.now += 2
    assert limiter.allow("token", "/channels/1")


def test_server_cap_needs_no_remaining():
    limiter, wall, _ = make_limiter()
    limiter.record("token", "/channels/1", remaining=1, reset=wall.now + 10)
    assert limiter.allow("token", "/channels/1")


def test_record_headers():
    limiter, wall, _ = make_limiter()
    headers = {
        "x-ratelimit-limit": "5",
        "x-ratelimit-remaining": "0",
        "x-ratelimit-reset": str(wall.now + 5),
    }
    assert limiter.record_headers("token", "/channels/1", headers)

    state = limiter.get_state("token", "/channels/1")
    assert (state.limit, state.remaining, state.reset) == (5, 0, wall.now + 5)
    assert not limiter.allow("token", "/channels/1")

    assert not limiter.record_headers("token", "/channels/1", {"content-type": "text/html"})


def test_record_retry_after():
    limiter, wall, _ = make_limiter()
    limiter.record_retry_after("token", "/channels/1", 2.5)
    assert limiter.get_state("token", "/channels/1").reset == wall.now + 2.5
    assert not limiter.allow("token", "/channels/1")


def test_gateway_limiter():
    clock = FakeClock()
    limiter = GatewayRateLimiter(limit=120, period=60, clock=clock)
    for _ in range(120):
        assert limiter.allow()

    assert not limiter.allow()
    clock.now += 60
    assert limiter.allow()

    limiter.reset()
    assert limiter.send_count == 0
