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
In-memory fakes for the gateway and HTTP tests.
"""
import json
import math
from typing import Any, Dict, List, Optional

import pytest
import trio

from curlew.core._ws_wrapper import BasicWebsocketWrapper, BinaryMessage, TextMessage, \
    WebsocketClosed, WebsocketConnected
from curlew.core.httpclient import HTTPClient
from curlew.exc import GatewayConnectError

BOT_USER = {"id": "100", "username": "curlew", "discriminator": "0001", "bot": True}


class FakeWebsocket(BasicWebsocketWrapper):
    """
    A websocket that is driven by a :class:`.FakeGatewayServer`.
    """

    def __init__(self, server: 'FakeGatewayServer', url: str):
        super().__init__(url)

        self.server = server
        #: The frames the client sent, decoded.
        self.sent: List[Dict[str, Any]] = []
        #: The (code, reason) the connection was closed with.
        self.closed_with: Optional[tuple] = None

        self._send, self._receive = trio.open_memory_channel(math.inf)

    @classmethod
    async def open(cls, url: str, nursery):
        raise NotImplementedError

    @property
    def closed(self) -> bool:
        return self.closed_with is not None

    def sent_ops(self) -> List[int]:
        return [frame["op"] for frame in self.sent]

    async def send_text(self, text: str) -> None:
        if self.closed:
            return

        frame = json.loads(text)
        self.sent.append(frame)
        self.server.on_client_frame(self, frame)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self._close(code, reason)

    def _close(self, code: int, reason: str) -> None:
        if self.closed:
            return

        self.closed_with = (code, reason)
        self._send.send_nowait(WebsocketClosed(code, reason))

    def server_send(self, payload: Any) -> None:
        """
        Queues a frame from the server. Dicts are sent as JSON text.
        """
        if self.closed:
            return

        if isinstance(payload, bytes):
            self._send.send_nowait(BinaryMessage(payload))
        elif isinstance(payload, str):
            self._send.send_nowait(TextMessage(payload))
        else:
            self._send.send_nowait(TextMessage(json.dumps(payload)))

    def server_close(self, code: int, reason: str = "") -> None:
        self._close(code, reason)

    async def __aiter__(self):
        yield WebsocketConnected(self.url)

        async for event in self._receive:
            yield event
            if isinstance(event, WebsocketClosed):
                return


class FakeGatewayServer(object):
    """
    A fake gateway that answers heartbeats, identifies and resumes.

    :param heartbeat_interval: The interval sent in HELLO, in milliseconds.
    :param auto_ack: If heartbeats are ACKed.
    :param connect_failures: How many connection attempts fail before one succeeds.
    :param identify_close_code: If set, the connection is closed with this code on IDENTIFY.
    """

    def __init__(self, *, heartbeat_interval: int = 41250,
                 auto_ack: bool = True,
                 connect_failures: int = 0,
                 identify_close_code: int = None):
        self.heartbeat_interval = heartbeat_interval
        self.auto_ack = auto_ack
        self.connect_failures = connect_failures
        self.identify_close_code = identify_close_code

        self.connections: List[FakeWebsocket] = []
        self.connect_attempts = 0
        self.sessions_started = 0
        self.sequence = 0

    @property
    def current(self) -> FakeWebsocket:
        return self.connections[-1]

    async def factory(self, url: str, nursery) -> FakeWebsocket:
        self.connect_attempts += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise GatewayConnectError("Connection refused")

        ws = FakeWebsocket(self, url)
        self.connections.append(ws)
        ws.server_send({"op": 10, "d": {"heartbeat_interval": self.heartbeat_interval,
                                        "_trace": ["fake-gateway"]}})
        return ws

    def dispatch(self, ws: FakeWebsocket, name: str, data: Any) -> int:
        """
        Sends a DISPATCH with the next sequence number.
        """
        self.sequence += 1
        ws.server_send({"op": 0, "t": name, "s": self.sequence, "d": data})
        return self.sequence

    def on_client_frame(self, ws: FakeWebsocket, frame: Dict[str, Any]) -> None:
        op = frame["op"]
        if op == 1 and self.auto_ack:
            ws.server_send({"op": 11, "d": None})

        elif op == 2:
            if self.identify_close_code is not None:
                ws.server_close(self.identify_close_code, "Closed on identify")
                return

            self.sessions_started += 1
            self.sequence = 0
            self.dispatch(ws, "READY", {
                "v": 6,
                "user": BOT_USER,
                "private_channels": [],
                "guilds": [],
                "session_id": f"session-{self.sessions_started}",
            })

        elif op == 6:
            self.dispatch(ws, "RESUMED", {"_trace": ["fake-gateway"]})


class RecordingDispatcher(object):
    """
    A dispatcher that just records what it was given.
    """

    def __init__(self):
        self.events = []

    def handle_dispatch(self, gateway, name: str, data: Any) -> None:
        self.events.append((name, data))

    @property
    def names(self) -> List[str]:
        return [name for name, _ in self.events]


class FakeResponse(object):
    """
    Mimics the parts of an asks response the HTTP client reads.
    """

    def __init__(self, status_code: int = 200, body: Any = None, headers: dict = None,
                 content: bytes = None):
        self.status_code = status_code
        self.headers = headers or {}
        if content is None:
            content = b"" if body is None else json.dumps(body).encode()

        self.content = content


class FakeHTTPClient(HTTPClient):
    """
    An HTTP client that never touches the network.
    """

    def __init__(self, *args, **kwargs):
        super().__init__("my.token", *args, **kwargs)

        #: The responses to return, in order.
        self.responses = []

        #: The requests made, as (method, url, kwargs) tuples.
        self.requests = []

    async def _make_request(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response

        return response


@pytest.fixture
def server() -> FakeGatewayServer:
    return FakeGatewayServer()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()
