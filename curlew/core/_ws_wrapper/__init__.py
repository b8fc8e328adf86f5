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
Websocket wrapper classes, decoupling the gateway from the websocket library.

The gateway only ever talks to a :class:`.BasicWebsocketWrapper`; iterating over one yields
the lifecycle events of a single connection, ending with a :class:`.WebsocketClosed`.
"""
import abc
from dataclasses import dataclass
from typing import AsyncIterator


class WebsocketEvent(object):
    """
    Base class for events produced by a websocket wrapper.
    """


@dataclass
class WebsocketConnected(WebsocketEvent):
    """
    Produced once the websocket handshake has finished.
    """

    url: str


@dataclass
class TextMessage(WebsocketEvent):
    """
    Produced for every text frame.
    """

    data: str


@dataclass
class BinaryMessage(WebsocketEvent):
    """
    Produced for every binary frame.
    """

    data: bytes


@dataclass
class WebsocketClosed(WebsocketEvent):
    """
    Produced once, when the connection closes. No events follow this one.
    """

    code: int
    reason: str = ""


class BasicWebsocketWrapper(abc.ABC):
    """
    The base class for a basic websocket wrapper.
    """

    def __init__(self, url: str) -> None:
        #: The gateway URL.
        self.url = url

    @classmethod
    @abc.abstractmethod
    async def open(cls, url: str, nursery) -> 'BasicWebsocketWrapper':
        """
        Opens this websocket.

        :param url: The URL to connect to.
        :param nursery: The nursery that owns any background tasks of the connection.
        """

    @abc.abstractmethod
    async def close(self, code: int = 1000, reason: str = "Client closed connection") -> None:
        """
        Closes this websocket.

        :param code: The close code for this websocket.
        :param reason: The close reason for this websocket.
        """

    @abc.abstractmethod
    async def send_text(self, text: str) -> None:
        """
        Sends text down the websocket.
        """

    @abc.abstractmethod
    def __aiter__(self) -> AsyncIterator[WebsocketEvent]:
        ...
