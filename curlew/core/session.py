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
Defines :class:`.Session`, the object a library user holds for one gateway connection.

.. currentmodule:: curlew.core.session
"""
import logging
from typing import Awaitable, Callable, Dict, Optional, Union

import trio

from curlew.core.event import EventCallback, EventDispatcher, GatewayEvent
from curlew.core.gateway import GatewayHandler, GatewayState
from curlew.dataclasses.channel import Channel
from curlew.dataclasses.user import User
from curlew.exc import FatalGatewayError

logger = logging.getLogger("curlew.session")

ConnectHook = Callable[['Session'], Union[None, Awaitable[None]]]


class Session(object):
    """
    A single gateway session, tying a :class:`.GatewayHandler` to an
    :class:`.EventDispatcher` and the shared :class:`.State`.

    Sessions are normally made by :meth:`.Client.connect`.

    .. code-block:: python3

        session = await client.connect()
        session.set_callback("MESSAGE_CREATE", on_message)

    :param token: The token to identify with.
    :param gateway_url: The base gateway URL.
    :param state: The :class:`.State` to keep up to date, if any.
    :param client: The :class:`.Client` that owns this session, if any.
    :param session_key: The opaque key this session is registered under.
    :param shard_id: The shard ID of this session.
    :param shard_count: The total number of shards.
    :param on_connect: A callable invoked with this session every time the websocket connects,
        before the handshake.
    :param gateway_kwargs: Passed to the :class:`.GatewayHandler`.
    """

    def __init__(self, token: str, gateway_url: str, *,
                 state=None,
                 client=None,
                 session_key: int = None,
                 shard_id: int = 0,
                 shard_count: int = 1,
                 on_connect: ConnectHook = None,
                 **gateway_kwargs):
        #: The opaque key of this session.
        self.key = session_key

        #: The :class:`.Client` that owns this session.
        self.client = client

        #: The :class:`.State` this session updates.
        self.state = state

        #: The user this session is logged in as. Set after READY.
        self.user: Optional[User] = None

        #: The DM channels of this session, by ID.
        self.dm_channels: Dict[int, Channel] = {}

        self._on_connect_hook = on_connect

        #: The :class:`.EventDispatcher` for this session.
        self.dispatcher = EventDispatcher(state, client=client, session=self)

        #: The :class:`.GatewayHandler` for this session.
        self.gateway = GatewayHandler(token, gateway_url, shard_id, shard_count,
                                      dispatcher=self.dispatcher,
                                      on_connect=self._on_connect,
                                      **gateway_kwargs)

    def __repr__(self) -> str:
        return f"<Session key={self.key} shard_id={self.shard_id} " \
               f"state={self.gateway.state.value}>"

    def _on_connect(self, gateway: GatewayHandler) -> Union[None, Awaitable[None]]:
        if self._on_connect_hook is None:
            return None

        return self._on_connect_hook(self)

    @property
    def shard_id(self) -> int:
        """
        :return: The shard ID of this session.
        """
        return self.gateway.info.shard_id

    @property
    def shard_count(self) -> int:
        return self.gateway.info.shard_count

    @property
    def session_id(self) -> Optional[str]:
        """
        :return: The gateway session ID, or None if no session has been established.
        """
        return self.gateway.info.session_id

    @property
    def connection_state(self) -> GatewayState:
        """
        :return: The :class:`.GatewayState` of the connection.
        """
        return self.gateway.state

    def set_callback(self, name: Union[str, GatewayEvent],
                     callback: Optional[EventCallback]) -> bool:
        """
        Registers the callback for an event. See :meth:`.EventDispatcher.set_callback`.

        :return: True if the callback was set, False if the event name is not recognized.
        """
        return self.dispatcher.set_callback(name, callback)

    def set_default_callback(self, callback: Optional[EventCallback]) -> None:
        """
        Sets the callback for events with no callback of their own.
        """
        self.dispatcher.set_default_callback(callback)

    def log_messages(self, on: bool = True, level: int = logging.DEBUG) -> None:
        """
        Toggles logging of raw gateway frames.
        """
        self.gateway.log_messages(on, level)

    async def send_status(self, status: str = "online", **kwargs) -> bool:
        """
        Changes the status of this session. See :meth:`.GatewayHandler.send_status`.
        """
        return await self.gateway.send_status(status, **kwargs)

    async def request_guild_members(self, guild_id: int, query: str = "",
                                    limit: int = 0) -> bool:
        """
        Requests the members of a guild. See :meth:`.GatewayHandler.request_guild_members`.
        """
        return await self.gateway.request_guild_members(guild_id, query, limit)

    async def disconnect(self, code: int = 1000) -> None:
        """
        Disconnects this session. It will not reconnect.
        """
        await self.gateway.disconnect(code)

    async def run(self) -> None:
        """
        Runs this session until it is disconnected.

        Callbacks queued before the gateway stopped still run before this returns.

        :raises FatalGatewayError: If the gateway closed with an unrecoverable close code.
        """
        fatal: Optional[FatalGatewayError] = None

        async with trio.open_nursery() as nursery:
            nursery.start_soon(self.dispatcher.run)

            try:
                await self.gateway.run()
            except FatalGatewayError as e:
                fatal = e
            finally:
                self.dispatcher.close()

        if fatal is not None:
            raise fatal
