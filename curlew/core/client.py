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
The main client class.

This contains a definition for :class:`.Client`, which owns the HTTP client, the cache and
every gateway session.

.. currentmodule:: curlew.core.client
"""
import functools
import itertools
import logging
from contextlib import asynccontextmanager
from types import MappingProxyType
from typing import AsyncIterator, Dict, Mapping, Optional

import trio

from curlew.core.httpclient import HTTPClient
from curlew.core.session import ConnectHook, Session
from curlew.core.state import State
from curlew.exc import HTTPException

logger = logging.getLogger("curlew.client")


class Client(object):
    """
    The main client class. This is used to interact with Discord.

    To start, you can create an instance of the client by passing it the token you want to use,
    and connect sessions inside :func:`.open_client`:

    .. code-block:: python3

        async with open_client("my.token.string") as client:
            session = await client.connect()
            session.set_callback("MESSAGE_CREATE", on_message)

    :param token: The current token for this bot.
    :param bot: If the token is a bot token.
    :param http: The :class:`.HTTPClient` to use. A new one is made if not passed.
    :param state: The :class:`.State` to use. A new one is made if not passed.
    :param gateway_kwargs: Passed to every :class:`.GatewayHandler`, such as ``compress``,
        ``zlib_stream`` or ``large_threshold``.
    """

    def __init__(self, token: str, *,
                 bot: bool = True,
                 http: HTTPClient = None,
                 state: State = None,
                 **gateway_kwargs):
        #: The token for the bot.
        self._token = token

        #: The :class:`.HTTPClient` used for this bot.
        self.http = http if http is not None else HTTPClient(token, bot=bot)

        #: The current connection state for the bot.
        self.state = state if state is not None else State()

        #: The number of shards this client has.
        self.shard_count = 1

        self._sessions: Dict[int, Session] = {}
        self._session_keys = itertools.count(1)
        self._nursery: Optional[trio.Nursery] = None
        self._gateway_kwargs = gateway_kwargs

    @property
    def sessions(self) -> Mapping[int, Session]:
        """
        :return: A read-only view of the running sessions, by key.
        """
        return MappingProxyType(self._sessions)

    @property
    def user(self):
        """
        :return: The :class:`.User` that this client is logged in as.
        """
        return self.state.user

    @property
    def guilds(self):
        """
        :return: A mapping of int -> :class:`.Guild` that this client can see.
        """
        return self.state.guilds

    async def get_gateway_url(self, refresh: bool = False) -> str:
        """
        :param refresh: If the cached URL should be dropped and fetched again.
        :return: The gateway URL for this bot.
        """
        if refresh:
            self.http.invalidate_gateway_url()

        return await self.http.get_gateway_url()

    async def get_shard_count(self) -> int:
        """
        :return: The shard count recommended for this bot.
        """
        data = (await self.http.get_gateway_bot()).raise_for_status()
        try:
            return int(data["shards"])
        except (KeyError, TypeError, ValueError):
            raise HTTPException(None, {"message": f"Invalid gateway bot response: {data!r}"})

    async def connect(self, shard_id: int = 0, shard_count: int = 1, *,
                      on_connect: ConnectHook = None, **kwargs) -> Session:
        """
        Opens a new gateway session, running in the background.

        :param shard_id: The shard ID of the session.
        :param shard_count: The total number of shards.
        :param on_connect: A callable invoked with the session every time it connects.
        :param kwargs: Overrides for the gateway arguments this client was made with.
        :return: The new :class:`.Session`.
        :raises RuntimeError: If this client is not running.
        """
        if self._nursery is None:
            raise RuntimeError("Client is not running, use open_client or run_async")

        gateway_url = await self.get_gateway_url()
        key = next(self._session_keys)
        # re-fetched by the gateway when the cached URL keeps failing
        resolver = functools.partial(self.get_gateway_url, refresh=True)
        session = Session(self._token, gateway_url,
                          state=self.state, client=self, session_key=key,
                          shard_id=shard_id, shard_count=shard_count,
                          on_connect=on_connect,
                          **{"url_resolver": resolver, **self._gateway_kwargs, **kwargs})

        self._sessions[key] = session
        logger.info(f"Starting session {key} on shard {session.shard_id}")
        self._nursery.start_soon(self._run_session, session)
        return session

    async def _run_session(self, session: Session) -> None:
        try:
            await session.run()
        finally:
            self._sessions.pop(session.key, None)
            logger.info(f"Session {session.key} finished")

    async def disconnect(self, session: Session, code: int = 1000) -> None:
        """
        Disconnects a session.

        :param session: The :class:`.Session` to disconnect.
        :param code: The close code to send.
        """
        await session.disconnect(code)

    async def disconnect_all(self, code: int = 1000) -> None:
        """
        Disconnects every session.
        """
        for session in list(self._sessions.values()):
            await session.disconnect(code)

    async def start(self, shard_count: int) -> None:
        """
        Starts the bot, and runs until every session is disconnected.

        :param shard_count: The number of shards to boot.
        """
        self.shard_count = shard_count

        try:
            async with trio.open_nursery() as nursery:
                self._nursery = nursery
                for shard_id in range(shard_count):
                    await self.connect(shard_id, shard_count)
        finally:
            self._nursery = None

    async def run_async(self, *, shard_count: int = 1, autoshard: bool = False) -> None:
        """
        Runs the client asynchronously.

        :param shard_count: The number of shards to boot.
        :param autoshard: If the bot should be autosharded.
        """
        if autoshard:
            shard_count = await self.get_shard_count()

        return await self.start(shard_count)

    def run(self, *, shard_count: int = 1, autoshard: bool = False, **kwargs) -> None:
        """
        Convenience method to run the bot with trio.

        :param shard_count: The number of shards to use. Ignored if autoshard is True.
        :param autoshard: If the bot should be autosharded.
        """
        p = functools.partial(self.run_async, shard_count=shard_count, autoshard=autoshard)
        trio.run(p, **kwargs)


@asynccontextmanager
async def open_client(token: str, **kwargs) -> AsyncIterator[Client]:
    """
    Opens a :class:`.Client`. Sessions connected inside the block run in the background; on
    leaving the block, this waits until every session has been disconnected.

    :param token: The token for the bot.
    :param kwargs: Passed to :class:`.Client`.
    """
    client = Client(token, **kwargs)

    try:
        async with trio.open_nursery() as nursery:
            client._nursery = nursery
            yield client
    finally:
        client._nursery = None
