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
A trio websocket wrapper.
"""
import logging
from typing import AsyncIterator, Optional

import trio
from trio_websocket import ConnectionClosed, HandshakeError, WebSocketConnection, \
    connect_websocket_url

from curlew import USER_AGENT
from curlew.core._ws_wrapper import BasicWebsocketWrapper, BinaryMessage, TextMessage, \
    WebsocketClosed, WebsocketConnected, WebsocketEvent
from curlew.exc import GatewayConnectError

logger = logging.getLogger("curlew.websocket")

#: The close code reported when the connection dropped without a close frame.
ABNORMAL_CLOSURE = 1006


class TrioWebsocketWrapper(BasicWebsocketWrapper):
    """
    Implements a websocket handler for trio, using ``trio-websocket``.
    """

    #: How long to wait for the TCP connection and the websocket handshake, in seconds.
    CONNECT_TIMEOUT = 30

    def __init__(self, url: str, connection: WebSocketConnection):
        super().__init__(url)

        self._ws = connection

    @classmethod
    async def open(cls, url: str, nursery, *,
                   connect_timeout: float = None) -> 'TrioWebsocketWrapper':
        """
        Opens a new websocket connection.

        :param url: The URL to use.
        :param nursery: The nursery to run the connection's reader task in.
        :param connect_timeout: How long to wait for the connection, in seconds.
        """
        if connect_timeout is None:
            connect_timeout = cls.CONNECT_TIMEOUT

        logger.debug(f"Opening websocket connection to {url}")
        try:
            with trio.fail_after(connect_timeout):
                ws = await connect_websocket_url(
                    nursery, url, extra_headers=[(b"User-Agent", USER_AGENT.encode())]
                )
        except (OSError, HandshakeError, trio.TooSlowError) as e:
            raise GatewayConnectError(f"Failed to connect to {url}: {e!r}") from e

        return cls(url, ws)

    async def close(self, code: int = 1000, reason: str = "Client closed connection") -> None:
        """
        Closes the websocket.

        :param code: The close code to use.
        :param reason: The close reason to use.
        """
        await self._ws.aclose(code=code, reason=reason)

    async def send_text(self, text: str) -> None:
        """
        Sends text down the websocket.

        :param text: The text to send.
        """
        try:
            await self._ws.send_message(text)
        except ConnectionClosed:
            # the reader will pick the close up
            logger.debug("Tried to send on a closed websocket")

    async def __aiter__(self) -> AsyncIterator[WebsocketEvent]:
        yield WebsocketConnected(self.url)

        while True:
            try:
                message = await self._ws.get_message()
            except ConnectionClosed as e:
                yield self._make_closed(e.reason)
                return

            if isinstance(message, bytes):
                yield BinaryMessage(message)
            else:
                yield TextMessage(message)

    @staticmethod
    def _make_closed(reason: Optional[object]) -> WebsocketClosed:
        if reason is None or reason.code is None:
            return WebsocketClosed(ABNORMAL_CLOSURE, "Connection lost")

        return WebsocketClosed(reason.code, reason.reason or "")
