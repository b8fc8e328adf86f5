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

"""
Rate limiting for outbound requests.

Two limiters live here. :class:`.RateLimiter` is shared by every HTTP request made with a
token; it tracks, per (token, route), a local burst counter and the quota the server last
advertised. :class:`.GatewayRateLimiter` caps how many frames one gateway connection sends.

Neither limiter waits. A withheld request is a normal outcome, reported back with a reason.

.. currentmodule:: curlew.core.ratelimit
"""
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

logger = logging.getLogger("curlew.ratelimit")

ROUTE_REGEX = re.compile(r"^(/(?:channel|guild)s/\d+)")

#: The reason given when the local burst cap is hit.
LOCAL_RATE_LIMIT = "Local rate-limit"


def get_route(path: str) -> Optional[str]:
    """
    Gets the rate limit route for a request path.

    .. code-block:: python3

        get_route("/channels/1234/messages")  # "/channels/1234"
        get_route("/users/@me")  # None

    :param path: The request path, starting with ``/``.
    :return: The route, or None if requests to this path are not tracked.
    """
    match = ROUTE_REGEX.match(path)
    if match is None:
        return None

    return match.group(1)


@dataclass
class RateLimitDecision:
    """
    The outcome of asking a limiter whether a request may be sent.
    """

    #: If the request may be sent.
    allowed: bool

    #: Why the request was withheld, if it was.
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.allowed


@dataclass
class RateLimitState:
    """
    The rate limit state of a single (token, route) pair.
    """

    #: The route this state is for.
    route: str

    #: The request limit the server advertised, if any.
    limit: Optional[int] = None

    #: The remaining requests the server advertised, if any.
    remaining: Optional[int] = None

    #: The epoch time the server's quota resets at, if any.
    reset: Optional[float] = None

    #: The number of requests sent in the current burst window.
    send_count: int = 0

    #: The monotonic time the current burst window ends at.
    window_expires: float = 0.0


def _parse_header(headers: Mapping[str, str], name: str, type_) -> Optional[float]:
    value = headers.get(name)
    if value is None:
        return None

    try:
        return type_(value)
    except ValueError:
        logger.warning(f"Invalid {name} header: {value!r}")
        return None


class RateLimiter(object):
    """
    Tracks rate limits per (token, route).

    A request is withheld when either:

        - the local burst counter for its route has reached ``burst_limit`` within the current
          ``burst_period``, or
        - the server's last advertised remaining quota is zero or less and its reset time has
          not passed yet. A reset time up to ``reset_grace`` seconds in the past still counts as
          not passed, to tolerate clock skew.

    :param burst_limit: The number of requests allowed per route per burst period.
    :param burst_period: The burst period, in seconds.
    :param reset_grace: How far in the past a server reset time may be and still be honoured.
    :param wall_clock: A callable returning the current epoch time.
    :param monotonic_clock: A callable returning a monotonic time.
    """

    BURST_LIMIT = 5
    BURST_PERIOD = 1.0
    RESET_GRACE = 3.0

    def __init__(self, *,
                 burst_limit: int = None,
                 burst_period: float = None,
                 reset_grace: float = None,
                 wall_clock: Callable[[], float] = time.time,
                 monotonic_clock: Callable[[], float] = time.monotonic):
        self.burst_limit = self.BURST_LIMIT if burst_limit is None else burst_limit
        self.burst_period = self.BURST_PERIOD if burst_period is None else burst_period
        self.reset_grace = self.RESET_GRACE if reset_grace is None else reset_grace

        self._wall_clock = wall_clock
        self._monotonic_clock = monotonic_clock

        self._states: Dict[Tuple[str, str], RateLimitState] = {}

    def get_state(self, token: str, route: str) -> RateLimitState:
        """
        Gets the state for a (token, route) pair, creating it if needed.
        """
        key = (token, route)
        try:
            return self._states[key]
        except KeyError:
            state = RateLimitState(route=route)
            self._states[key] = state
            return state

    def allow(self, token: str, route: Optional[str]) -> RateLimitDecision:
        """
        Checks if a request may be sent, and counts it if so.

        This never awaits, so the check and the update of the burst counter cannot be
        interleaved with another request to the same route.

        :param token: The token the request is made with.
        :param route: The route of the request. Untracked routes (None) are always allowed.
        """
        if route is None:
            return RateLimitDecision(True)

        state = self.get_state(token, route)

        now = self._monotonic_clock()
        if now >= state.window_expires:
            state.send_count = 0
            state.window_expires = now + self.burst_period

        if state.send_count >= self.burst_limit:
            logger.warning(f"Reached {self.burst_limit} requests sent in {self.burst_period}s "
                           f"on {route}")
            return RateLimitDecision(False, LOCAL_RATE_LIMIT)

        if state.remaining is not None and state.remaining <= 0 and state.reset is not None:
            remaining_time = state.reset - self._wall_clock()
            if remaining_time >= -self.reset_grace:
                reason = f"Rate-limited on {route}, reset in {remaining_time:.0f} seconds"
                logger.warning(reason)
                return RateLimitDecision(False, reason)

        state.send_count += 1
        return RateLimitDecision(True)

    def record(self, token: str, route: Optional[str], *,
               limit: int = None, remaining: int = None, reset: float = None) -> None:
        """
        Records the rate limit state the server advertised for a route.

        Values that are None are left as they were.
        """
        if route is None:
            return

        state = self.get_state(token, route)
        if limit is not None:
            state.limit = limit

        if remaining is not None:
            state.remaining = remaining

        if reset is not None:
            state.reset = reset

        logger.debug(f"Rate limit for {route}: {state.remaining}/{state.limit}, "
                     f"reset at {state.reset}")

    def record_retry_after(self, token: str, route: Optional[str], retry_after: float) -> None:
        """
        Records a 429 response. The route is blocked for ``retry_after`` seconds.
        """
        self.record(token, route, remaining=0, reset=self._wall_clock() + retry_after)

    def record_headers(self, token: str, route: Optional[str],
                       headers: Mapping[str, str]) -> bool:
        """
        Records the ``X-RateLimit-*`` headers of a response.

        :param headers: The response headers, with lowercase names.
        :return: True if any rate limit header was present.
        """
        limit = _parse_header(headers, "x-ratelimit-limit", int)
        remaining = _parse_header(headers, "x-ratelimit-remaining", int)
        reset = _parse_header(headers, "x-ratelimit-reset", float)

        if limit is None and remaining is None and reset is None:
            return False

        self.record(token, route, limit=limit, remaining=remaining, reset=reset)
        return True


class GatewayRateLimiter(object):
    """
    Caps the number of frames a single gateway connection sends in a fixed window.

    The gateway does not report quota back, so this is purely local.
    """

    SEND_LIMIT = 120
    SEND_PERIOD = 60.0

    def __init__(self, *, limit: int = None, period: float = None,
                 clock: Callable[[], float] = time.monotonic):
        self.limit = self.SEND_LIMIT if limit is None else limit
        self.period = self.SEND_PERIOD if period is None else period

        self._clock = clock

        #: The number of frames sent in the current window.
        self.send_count = 0
        self._window_expires = 0.0

    def reset(self) -> None:
        """
        Resets the counter, for a new connection.
        """
        self.send_count = 0
        self._window_expires = 0.0

    def allow(self) -> RateLimitDecision:
        """
        Checks if a frame may be sent, and counts it if so.
        """
        now = self._clock()
        if now >= self._window_expires:
            self.send_count = 0
            self._window_expires = now + self.period

        if self.send_count >= self.limit:
            reason = f"Reached {self.limit} messages sent in {self.period:.0f}s"
            logger.warning(reason)
            return RateLimitDecision(False, reason)

        self.send_count += 1
        return RateLimitDecision(True)
