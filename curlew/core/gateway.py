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
Code that wraps the Discord gateway connection.

A :class:`.GatewayHandler` owns one logical gateway session. It connects, heartbeats,
identifies or resumes, tracks the sequence, and reconnects when the connection drops, until
either :meth:`.GatewayHandler.disconnect` is called or the gateway closes with a fatal code.

.. currentmodule:: curlew.core.gateway
"""
import enum
import inspect
import logging
import time
import zlib
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import trio

from curlew.core._ws_wrapper import BasicWebsocketWrapper, BinaryMessage, TextMessage, \
    WebsocketClosed, WebsocketConnected, WebsocketEvent
from curlew.core._ws_wrapper.trio_wrapper import TrioWebsocketWrapper
from curlew.core.protocol import DEFAULT_LARGE_THRESHOLD, FATAL_CLOSE_CODES, \
    OUTBOUND_ONLY_OPS, CloseCode, GatewayFrame, GatewayOp, build_gateway_url, decode_frame, \
    describe_close_code, encode_frame, make_heartbeat, make_identify, make_properties, \
    make_resume, validate_large_threshold, validate_shard
from curlew.core.ratelimit import GatewayRateLimiter
from curlew.exc import CurlewError, FatalGatewayError, GatewayConnectError, \
    GatewayProtocolError

WebsocketFactory = Callable[[str, trio.Nursery], Awaitable[BasicWebsocketWrapper]]

#: The statuses that can be sent in a STATUS_UPDATE.
STATUSES = frozenset({"online", "dnd", "idle", "invisible", "offline"})


class GatewayState(enum.Enum):
    """
    The states a gateway session moves through.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_HELLO = "awaiting_hello"
    IDENTIFYING = "identifying"
    RESUMING = "resuming"
    REIDENTIFYING = "reidentifying"
    CONNECTED = "connected"


@dataclass
class GatewayInfo:
    """
    Wraps various state information for the current gateway.
    """

    #: The current token.
    token: str

    #: The current gateway URL.
    gateway_url: str

    #: The shard ID for this gateway.
    shard_id: int

    #: The shard count for this gateway.
    shard_count: int

    #: The current session ID.
    session_id: Optional[str] = None

    #: The current sequence, or None if no dispatch has been received.
    sequence: Optional[int] = None

    #: The heartbeat interval, in milliseconds.
    heartbeat_interval: int = 10000

    #: If the gateway should compress large payloads.
    compress: bool = False

    #: The large guild threshold sent with IDENTIFY.
    large_threshold: int = DEFAULT_LARGE_THRESHOLD

    #: The close code of the last disconnect.
    last_close_code: Optional[int] = None


@dataclass
class HeartbeatStats:
    """
    Represents the statistics for the gateway's heartbeat counters.
    """

    #: The number of heartbeats sent.
    heartbeats: int = 0

    #: The number of heartbeat acks received.
    heartbeat_acks: int = 0

    #: Internal time when the last heartbeat was sent.
    last_heartbeat_time: float = 0

    #: Internal time when the last heartbeat_ack was received.
    last_ack_time: float = 0

    @property
    def gw_time(self) -> float:
        """
        :return: The time the most recent heartbeat and heartbeat_ack.
        """
        return self.last_ack_time - self.last_heartbeat_time


class GatewayHandler(object):
    """
    Primary class that handles connecting to the Discord gateway.

    :param token: The token to identify with.
    :param gateway_url: The base gateway URL, as returned by ``GET /gateway``.
    :param shard_id: The shard ID of this session.
    :param shard_count: The total number of shards.
    :param dispatcher: The object that dispatches received events. It must have a
        synchronous ``handle_dispatch(gateway, name, data)`` method.
    :param compress: If the gateway should compress large payloads.
    :param zlib_stream: If transport compression (``zlib-stream``) should be requested.
    :param large_threshold: The large guild threshold, in the range [50, 250].
    :param properties: Overrides for the identify properties.
    :param intents: The gateway intents bitfield, if any.
    :param heartbeat_interval: The heartbeat interval to use before HELLO is received, in
        milliseconds. This is also the reconnect delay until then.
    :param send_limiter: The :class:`.GatewayRateLimiter` for outbound frames.
    :param websocket_factory: An async callable ``(url, nursery)`` that opens a websocket.
    :param on_connect: A callable invoked with this handler every time the transport connects,
        before the handshake.
    :param url_resolver: An async callable returning a fresh base gateway URL. It is called
        after :attr:`.MAX_CONNECT_FAILURES` connection attempts in a row have failed.
    """

    GATEWAY_VERSION = 6
    DEFAULT_HEARTBEAT_INTERVAL = 10000
    MAX_CONNECT_FAILURES = 3
    ZLIB_FLUSH_SUFFIX = b"\x00\x00\xff\xff"

    def __init__(self, token: str, gateway_url: str,
                 shard_id: int = 0, shard_count: int = 1, *,
                 dispatcher=None,
                 compress: bool = False,
                 zlib_stream: bool = False,
                 large_threshold: int = DEFAULT_LARGE_THRESHOLD,
                 properties: Dict[str, str] = None,
                 intents: int = None,
                 heartbeat_interval: int = None,
                 send_limiter: GatewayRateLimiter = None,
                 websocket_factory: WebsocketFactory = None,
                 on_connect: Callable[['GatewayHandler'], Union[None, Awaitable[None]]] = None,
                 url_resolver: Callable[[], Awaitable[str]] = None):
        shard_id, shard_count = validate_shard(shard_id, shard_count)
        if heartbeat_interval is None:
            heartbeat_interval = self.DEFAULT_HEARTBEAT_INTERVAL

        self.info = GatewayInfo(
            token=token,
            gateway_url=build_gateway_url(gateway_url, self.GATEWAY_VERSION,
                                          zlib_stream=zlib_stream),
            shard_id=shard_id,
            shard_count=shard_count,
            heartbeat_interval=heartbeat_interval,
            compress=compress,
            large_threshold=validate_large_threshold(large_threshold),
        )
        self.heartbeat_stats = HeartbeatStats()

        #: The current state of this gateway.
        self.state = GatewayState.DISCONNECTED

        self.dispatcher = dispatcher
        self.zlib_stream = zlib_stream
        self.intents = intents
        self.properties = make_properties("curlew", properties)
        self.send_limiter = send_limiter if send_limiter is not None else GatewayRateLimiter()
        self.on_connect = on_connect
        self.url_resolver = url_resolver

        self._websocket_factory = websocket_factory or TrioWebsocketWrapper.open
        self._logger: Optional[logging.Logger] = None

        self._ws: Optional[BasicWebsocketWrapper] = None
        self._connection_nursery: Optional[trio.Nursery] = None
        self._heartbeat_cancel_scope: Optional[trio.CancelScope] = None
        self._run_cancel_scope: Optional[trio.CancelScope] = None

        # used in the reconnect loop. does not reflect the actual state of the websocket.
        self._is_open = False
        self._reconnect_now = False
        self._fatal: Optional[FatalGatewayError] = None
        self._stopped = False
        self._connect_failures = 0

        self._log_frames = False
        self._log_level = logging.DEBUG

        # used for zlib-streaming
        self._databuffer = bytearray()
        self._decompressor = zlib.decompressobj()

    @property
    def logger(self) -> logging.Logger:
        if self._logger:
            return self._logger

        self._logger = logging.getLogger("curlew.gateway:shard-{}".format(self.info.shard_id))
        return self._logger

    @property
    def connected(self) -> bool:
        """
        :return: If this gateway has finished its handshake.
        """
        return self.state == GatewayState.CONNECTED

    def log_messages(self, on: bool = True, level: int = logging.DEBUG) -> None:
        """
        Toggles logging of every raw frame sent and received.

        :param on: If frames should be logged.
        :param level: The level to log frames at.
        """
        self._log_frames = on
        self._log_level = level

    def reset(self) -> None:
        """
        Discards the current session, so the next handshake is a fresh IDENTIFY.
        """
        self.info.session_id = None
        self.info.sequence = None

    def _set_state(self, state: GatewayState) -> None:
        if state != self.state:
            self.logger.debug(f"State: {self.state.value} -> {state.value}")
            self.state = state

    # Sending
    async def send(self, op: GatewayOp, data: Any) -> bool:
        """
        Sends a frame down the websocket.

        :param op: The opcode of the frame.
        :param data: The payload of the frame.
        :return: True if the frame was sent, False if there is no connection or the frame was
            dropped by the rate limiter.
        """
        ws = self._ws
        if ws is None:
            self.logger.warning(f"Not connected, dropping {GatewayOp(op).name} frame")
            return False

        decision = self.send_limiter.allow()
        if not decision:
            self.logger.warning(f"Dropping {GatewayOp(op).name} frame: {decision.reason}")
            return False

        text = encode_frame(op, data)
        if self._log_frames:
            self.logger.log(self._log_level, f"<< {text}")

        await ws.send_text(text)
        return True

    async def _send_identify(self) -> bool:
        """
        Sends an IDENTIFY to Discord. This starts a new session, so the sequence is reset.
        """
        self.info.sequence = None
        payload = make_identify(
            self.info.token, self.info.shard_id, self.info.shard_count,
            compress=self.info.compress,
            large_threshold=self.info.large_threshold,
            properties=self.properties,
            intents=self.intents,
        )
        self.logger.info(f"Identifying as shard {self.info.shard_id}/{self.info.shard_count}")
        return await self.send(GatewayOp.IDENTIFY, payload)

    async def _send_resume(self) -> bool:
        """
        Sends the RESUME packet.
        """
        payload = make_resume(self.info.token, self.info.session_id, self.info.sequence)
        self.logger.info(f"Resuming session {self.info.session_id} at sequence "
                         f"{self.info.sequence}")
        return await self.send(GatewayOp.RESUME, payload)

    async def send_status(self, status: str = "online", *,
                          game: Dict[str, Any] = None,
                          afk: bool = False,
                          since: int = None) -> bool:
        """
        Sends a STATUS_UPDATE, changing the presence of this shard.

        :param status: One of ``online``, ``dnd``, ``idle``, ``invisible`` or ``offline``.
        :param game: The game object to display, e.g. ``{"name": "chess", "type": 0}``.
        :param afk: If this client is AFK.
        :param since: The epoch time in milliseconds since the client went idle.
        """
        if status not in STATUSES:
            raise ValueError(f"Invalid status: {status!r}")

        payload = {
            "since": since,
            "game": game,
            "status": status,
            "afk": afk,
        }
        return await self.send(GatewayOp.STATUS_UPDATE, payload)

    async def request_guild_members(self, guild_id: int, query: str = "",
                                    limit: int = 0) -> bool:
        """
        Requests the members of a guild. The members arrive in GUILD_MEMBERS_CHUNK events.

        :param guild_id: The ID of the guild.
        :param query: Only request members whose username starts with this string.
        :param limit: The maximum number of members to request, or 0 for all.
        """
        payload = {
            "guild_id": str(guild_id),
            "query": query,
            "limit": limit,
        }
        return await self.send(GatewayOp.REQUEST_GUILD_MEMBERS, payload)

    # Heartbeating
    async def _send_heartbeat(self) -> bool:
        """
        Sends a heartbeat to Discord.

        :return: False if the connection has zombied and is being closed.
        """
        stats = self.heartbeat_stats
        if stats.heartbeats > stats.heartbeat_acks + 1:
            self.logger.warning("Connection has zombied, reconnecting.")
            # this may run inside the heartbeat scope, which must not cancel the close
            await self._close(CloseCode.UNKNOWN_ERROR, "Zombied connection",
                              stop_heartbeat=False)
            return False

        self.logger.debug(f"Sending heartbeat #{stats.heartbeats} with sequence "
                          f"{self.info.sequence}")
        if await self.send(GatewayOp.HEARTBEAT, make_heartbeat(self.info.sequence)):
            stats.heartbeats += 1
            stats.last_heartbeat_time = time.monotonic()

        return True

    async def _heartbeat_loop(self, interval: float, task_status=trio.TASK_STATUS_IGNORED):
        """
        Loops sending heartbeats. The first heartbeat is sent by the caller.
        """
        with trio.CancelScope() as scope:
            self._heartbeat_cancel_scope = scope
            task_status.started()

            while True:
                await trio.sleep(interval)
                if not await self._send_heartbeat():
                    return

    async def _start_heartbeat(self, *, immediate: bool = True) -> None:
        """
        (Re)starts the heartbeat loop with the current interval.
        """
        if self._heartbeat_cancel_scope is not None:
            self._heartbeat_cancel_scope.cancel()
            self._heartbeat_cancel_scope = None

        interval = self.info.heartbeat_interval / 1000
        self.logger.debug(f"Heartbeating every {interval} seconds.")
        if immediate and not await self._send_heartbeat():
            return

        await self._connection_nursery.start(self._heartbeat_loop, interval)

    async def _ensure_heartbeat(self) -> None:
        scope = self._heartbeat_cancel_scope
        if scope is None or scope.cancel_called:
            await self._start_heartbeat(immediate=False)

    # Connection management
    async def _close(self, code: int = 1000, reason: str = "Websocket closing", *,
                     stop_heartbeat: bool = True) -> None:
        """
        Closes the current websocket connection. The read loop will see the close and decide
        whether to reconnect.
        """
        if stop_heartbeat and self._heartbeat_cancel_scope is not None:
            self._heartbeat_cancel_scope.cancel()

        ws = self._ws
        if ws is None:
            return

        self._ws = None
        await ws.close(code, reason)

    async def disconnect(self, code: int = 1000, reason: str = "Client disconnecting") -> None:
        """
        Closes the connection and stops reconnecting.

        This is permanent. If :meth:`.run` has not started yet, it returns immediately once it
        is called.

        :param code: The close code to send.
        :param reason: The close reason to send.
        """
        self.logger.info(f"Disconnecting with code {code}")
        self._stopped = True
        self._is_open = False

        try:
            await self._close(code, reason)
        finally:
            if self._run_cancel_scope is not None:
                self._run_cancel_scope.cancel()

    def _new_connection(self, ws: BasicWebsocketWrapper) -> None:
        self._ws = ws
        self._connect_failures = 0
        self._heartbeat_cancel_scope = None
        self.heartbeat_stats = HeartbeatStats()
        self.send_limiter.reset()

        self._databuffer.clear()
        self._decompressor = zlib.decompressobj()

    async def run(self) -> None:
        """
        Runs this gateway session until :meth:`.disconnect` is called.

        The connection is re-opened whenever it closes. If the session can still be resumed it
        is resumed, otherwise a new session is identified.

        :raises FatalGatewayError: If the gateway closed with an unrecoverable close code.
        """
        if self._stopped:
            self.logger.info("Disconnected before starting, not connecting")
            return

        self._is_open = True
        self._fatal = None

        with trio.CancelScope() as scope:
            self._run_cancel_scope = scope

            try:
                while self._is_open:
                    await self._run_connection()

                    if self._fatal is not None:
                        raise self._fatal

                    if not self._is_open:
                        break

                    if self._reconnect_now:
                        self._reconnect_now = False
                        self.logger.info("Reconnecting immediately")
                        continue

                    delay = self.info.heartbeat_interval / 1000
                    self.logger.info(f"Reconnecting in {delay} seconds")
                    await trio.sleep(delay)
            finally:
                self._run_cancel_scope = None
                self._set_state(GatewayState.DISCONNECTED)

    async def _resolve_url(self) -> None:
        """
        Fetches a new gateway URL after too many failed connection attempts.
        """
        self._connect_failures = 0
        if self.url_resolver is None:
            return

        try:
            base = await self.url_resolver()
        except CurlewError as e:
            self.logger.error(f"Failed to fetch a new gateway URL: {e}")
            return

        self.info.gateway_url = build_gateway_url(base, self.GATEWAY_VERSION,
                                                  zlib_stream=self.zlib_stream)
        self.logger.info(f"Using new gateway URL {self.info.gateway_url}")

    async def _run_connection(self) -> None:
        """
        Opens one websocket connection and reads from it until it closes.
        """
        self._set_state(GatewayState.CONNECTING)

        if await self._open_connection():
            return

        self._connect_failures += 1
        if self._connect_failures >= self.MAX_CONNECT_FAILURES:
            await self._resolve_url()

    async def _open_connection(self) -> bool:
        """
        :return: False if the websocket could not be opened.
        """
        async with trio.open_nursery() as nursery:
            self._connection_nursery = nursery

            try:
                ws = await self._websocket_factory(self.info.gateway_url, nursery)
            except GatewayConnectError as e:
                self.logger.error(f"Failed to connect: {e}")
                nursery.cancel_scope.cancel()
                return False

            self._new_connection(ws)
            try:
                async for event in ws:
                    await self._handle_websocket_event(event)

                    if isinstance(event, WebsocketClosed):
                        break
            finally:
                self._ws = None
                self._connection_nursery = None
                nursery.cancel_scope.cancel()

        return True

    async def _handle_websocket_event(self, event: WebsocketEvent) -> None:
        if isinstance(event, WebsocketConnected):
            self.logger.info(f"Connected to {event.url}")
            self._set_state(GatewayState.AWAITING_HELLO)
            await self._call_on_connect()

        elif isinstance(event, TextMessage):
            await self.handle_text(event.data)

        elif isinstance(event, BinaryMessage):
            text = self._inflate(event.data)
            if text is not None:
                await self.handle_text(text)

        elif isinstance(event, WebsocketClosed):
            self._handle_close(event)

    async def _call_on_connect(self) -> None:
        if self.on_connect is None:
            return

        try:
            result = self.on_connect(self)
            if inspect.isawaitable(result):
                await result
        except Exception:
            self.logger.exception("Unhandled exception in connect hook")

    def _handle_close(self, event: WebsocketClosed) -> None:
        self.info.last_close_code = event.code
        self._set_state(GatewayState.DISCONNECTED)

        if self._heartbeat_cancel_scope is not None:
            self._heartbeat_cancel_scope.cancel()

        reason = event.reason or describe_close_code(event.code)
        if event.code in FATAL_CLOSE_CODES and self._is_open:
            self.logger.critical(f"Gateway closed with fatal code {event.code}: {reason}")
            self._is_open = False
            self._fatal = FatalGatewayError(event.code, describe_close_code(event.code))
            return

        self.logger.warning(f"Gateway closed with code {event.code}: {reason}")

    def _inflate(self, data: bytes) -> Optional[str]:
        """
        Decompresses a binary frame.

        :return: The decompressed text, or None if there is nothing to process yet.
        """
        try:
            if self.zlib_stream:
                self._databuffer.extend(data)
                if not self._databuffer.endswith(self.ZLIB_FLUSH_SUFFIX):
                    return None

                raw = self._decompressor.decompress(bytes(self._databuffer))
                self._databuffer.clear()
            else:
                raw = zlib.decompress(data)

            return raw.decode("utf-8")
        except (zlib.error, UnicodeDecodeError) as e:
            self.logger.warning(f"Failed to decompress frame, dropping it: {e}")
            self._databuffer.clear()
            return None

    # Receiving
    async def handle_text(self, text: str) -> None:
        """
        Handles one text frame received from the gateway.
        """
        if self._log_frames:
            self.logger.log(self._log_level, f">> {text}")

        try:
            frame = decode_frame(text)
        except GatewayProtocolError as e:
            self.logger.warning(f"Dropping bad frame: {e}")
            return

        if frame.s is not None:
            if self.info.sequence is None or frame.s > self.info.sequence:
                self.info.sequence = frame.s
            else:
                self.logger.debug(f"Ignoring stale sequence {frame.s} "
                                  f"(current: {self.info.sequence})")

        await self._handle_frame(frame)

    async def _handle_frame(self, frame: GatewayFrame) -> None:
        # the grand old opcode switch
        op = frame.op
        if op == GatewayOp.DISPATCH:
            await self._handle_dispatch(frame)

        elif op == GatewayOp.HELLO:
            await self._handle_hello(frame.d)

        elif op == GatewayOp.HEARTBEAT:
            self.logger.debug("Received heartbeat from the gateway")

        elif op == GatewayOp.HEARTBEAT_ACK:
            self.heartbeat_stats.heartbeat_acks += 1
            self.heartbeat_stats.last_ack_time = time.monotonic()
            self.logger.debug(f"Received heartbeat ack #{self.heartbeat_stats.heartbeat_acks}")

        elif op == GatewayOp.INVALID_SESSION:
            self.logger.warning("Session invalidated, identifying again")
            self.reset()
            self._set_state(GatewayState.REIDENTIFYING)
            await self._send_identify()

        elif op == GatewayOp.RECONNECT:
            self.logger.info("Gateway requested a reconnect")
            self._reconnect_now = True
            await self._close(CloseCode.UNKNOWN_ERROR, "Reconnect requested")

        elif op in OUTBOUND_ONLY_OPS:
            self.logger.warning(f"Received outbound-only opcode {op.name}, ignoring it")

        else:
            self.logger.warning(f"Received unhandled opcode {op}")

    async def _handle_hello(self, data: Any) -> None:
        interval = None
        if isinstance(data, dict):
            interval = data.get("heartbeat_interval")
            trace = data.get("_trace")
            if trace:
                self.logger.info(f"Connected to Discord servers {', '.join(trace)}")

        if isinstance(interval, (int, float)) and not isinstance(interval, bool) \
                and interval > 0:
            self.info.heartbeat_interval = interval
        else:
            self.logger.warning(f"HELLO had no valid heartbeat interval, using "
                                f"{self.info.heartbeat_interval}ms")

        await self._start_heartbeat()

        if self.info.session_id is None:
            self._set_state(GatewayState.IDENTIFYING)
            await self._send_identify()
        else:
            self._set_state(GatewayState.RESUMING)
            await self._send_resume()

    async def _handle_dispatch(self, frame: GatewayFrame) -> None:
        name = frame.t
        if not isinstance(name, str) or not name:
            self.logger.warning(f"Dropping dispatch with no event name: {frame!r}")
            return

        data = frame.d
        if name == "READY":
            if isinstance(data, dict) and data.get("session_id"):
                self.info.session_id = data["session_id"]
                self.logger.info(f"Ready, session ID is {self.info.session_id}")
            else:
                self.logger.warning("READY had no session ID")

            await self._ensure_heartbeat()
            self._set_state(GatewayState.CONNECTED)

        elif name == "RESUMED":
            self.logger.info(f"Resumed session {self.info.session_id}")
            await self._ensure_heartbeat()
            self._set_state(GatewayState.CONNECTED)

        if self.dispatcher is None:
            self.logger.debug(f"Dropping dispatch {name}, no dispatcher")
            return

        self.dispatcher.handle_dispatch(self, name, data)
