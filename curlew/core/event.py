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
Special helpers for events.

Dispatches received from the gateway first update the :class:`.State`, then the callback
registered for the event (or the default callback) is queued. Callbacks run one at a time, in
the order the dispatches were received, in :meth:`.EventDispatcher.run`.

.. currentmodule:: curlew.core.event
"""
import enum
import inspect
import logging
import math
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

import trio

logger = logging.getLogger("curlew.events")


class GatewayEvent(enum.Enum):
    """
    The names of the events the gateway dispatches.
    """

    READY = "READY"
    RESUMED = "RESUMED"
    INVALID_SESSION = "INVALID_SESSION"
    CHANNEL_CREATE = "CHANNEL_CREATE"
    CHANNEL_UPDATE = "CHANNEL_UPDATE"
    CHANNEL_DELETE = "CHANNEL_DELETE"
    CHANNEL_PINS_UPDATE = "CHANNEL_PINS_UPDATE"
    GUILD_CREATE = "GUILD_CREATE"
    GUILD_UPDATE = "GUILD_UPDATE"
    GUILD_DELETE = "GUILD_DELETE"
    GUILD_BAN_ADD = "GUILD_BAN_ADD"
    GUILD_BAN_REMOVE = "GUILD_BAN_REMOVE"
    GUILD_EMOJIS_UPDATE = "GUILD_EMOJIS_UPDATE"
    GUILD_INTEGRATIONS_UPDATE = "GUILD_INTEGRATIONS_UPDATE"
    GUILD_MEMBER_ADD = "GUILD_MEMBER_ADD"
    GUILD_MEMBER_REMOVE = "GUILD_MEMBER_REMOVE"
    GUILD_MEMBER_UPDATE = "GUILD_MEMBER_UPDATE"
    GUILD_MEMBERS_CHUNK = "GUILD_MEMBERS_CHUNK"
    GUILD_ROLE_CREATE = "GUILD_ROLE_CREATE"
    GUILD_ROLE_UPDATE = "GUILD_ROLE_UPDATE"
    GUILD_ROLE_DELETE = "GUILD_ROLE_DELETE"
    INVITE_CREATE = "INVITE_CREATE"
    INVITE_DELETE = "INVITE_DELETE"
    MESSAGE_CREATE = "MESSAGE_CREATE"
    MESSAGE_UPDATE = "MESSAGE_UPDATE"
    MESSAGE_DELETE = "MESSAGE_DELETE"
    MESSAGE_DELETE_BULK = "MESSAGE_DELETE_BULK"
    MESSAGE_REACTION_ADD = "MESSAGE_REACTION_ADD"
    MESSAGE_REACTION_REMOVE = "MESSAGE_REACTION_REMOVE"
    MESSAGE_REACTION_REMOVE_ALL = "MESSAGE_REACTION_REMOVE_ALL"
    MESSAGE_REACTION_REMOVE_EMOJI = "MESSAGE_REACTION_REMOVE_EMOJI"
    PRESENCE_UPDATE = "PRESENCE_UPDATE"
    TYPING_START = "TYPING_START"
    USER_UPDATE = "USER_UPDATE"
    VOICE_STATE_UPDATE = "VOICE_STATE_UPDATE"
    VOICE_SERVER_UPDATE = "VOICE_SERVER_UPDATE"
    WEBHOOKS_UPDATE = "WEBHOOKS_UPDATE"

    #: Any event name not listed above.
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_name(cls, name: str) -> 'GatewayEvent':
        """
        :return: The event for a dispatch name, or :attr:`.UNKNOWN`.
        """
        try:
            event = cls(name)
        except ValueError:
            return cls.UNKNOWN

        return event


#: The :class:`.State` method that handles each event.
STATE_HANDLERS: Dict[GatewayEvent, str] = {
    GatewayEvent.READY: "handle_ready",
    GatewayEvent.RESUMED: "handle_resumed",
    GatewayEvent.INVALID_SESSION: "handle_log",
    GatewayEvent.CHANNEL_CREATE: "handle_channel_create",
    GatewayEvent.CHANNEL_UPDATE: "handle_channel_update",
    GatewayEvent.CHANNEL_DELETE: "handle_channel_delete",
    GatewayEvent.CHANNEL_PINS_UPDATE: "handle_log",
    GatewayEvent.GUILD_CREATE: "handle_guild_create",
    GatewayEvent.GUILD_UPDATE: "handle_guild_update",
    GatewayEvent.GUILD_DELETE: "handle_guild_delete",
    GatewayEvent.GUILD_BAN_ADD: "handle_guild_ban_add",
    GatewayEvent.GUILD_BAN_REMOVE: "handle_guild_ban_remove",
    GatewayEvent.GUILD_EMOJIS_UPDATE: "handle_guild_emojis_update",
    GatewayEvent.GUILD_INTEGRATIONS_UPDATE: "handle_guild_integrations_update",
    GatewayEvent.GUILD_MEMBER_ADD: "handle_guild_member_add",
    GatewayEvent.GUILD_MEMBER_REMOVE: "handle_guild_member_remove",
    GatewayEvent.GUILD_MEMBER_UPDATE: "handle_guild_member_update",
    GatewayEvent.GUILD_MEMBERS_CHUNK: "handle_guild_members_chunk",
    GatewayEvent.GUILD_ROLE_CREATE: "handle_guild_role_create",
    GatewayEvent.GUILD_ROLE_UPDATE: "handle_guild_role_update",
    GatewayEvent.GUILD_ROLE_DELETE: "handle_guild_role_delete",
    GatewayEvent.INVITE_CREATE: "handle_log",
    GatewayEvent.INVITE_DELETE: "handle_log",
    GatewayEvent.MESSAGE_CREATE: "handle_message_create",
    GatewayEvent.MESSAGE_UPDATE: "handle_message_update",
    GatewayEvent.MESSAGE_DELETE: "handle_message_delete",
    GatewayEvent.MESSAGE_DELETE_BULK: "handle_message_delete_bulk",
    GatewayEvent.MESSAGE_REACTION_ADD: "handle_log",
    GatewayEvent.MESSAGE_REACTION_REMOVE: "handle_log",
    GatewayEvent.MESSAGE_REACTION_REMOVE_ALL: "handle_log",
    GatewayEvent.MESSAGE_REACTION_REMOVE_EMOJI: "handle_log",
    GatewayEvent.PRESENCE_UPDATE: "handle_presence_update",
    GatewayEvent.TYPING_START: "handle_log",
    GatewayEvent.USER_UPDATE: "handle_user_update",
    GatewayEvent.VOICE_STATE_UPDATE: "handle_voice_state_update",
    GatewayEvent.VOICE_SERVER_UPDATE: "handle_voice_server_update",
    GatewayEvent.WEBHOOKS_UPDATE: "handle_log",
}


class EventContext(object):
    """
    Represents a special context that are passed to events.
    """

    def __init__(self, client, session, event_name: str):
        """
        :param client: The :class:`.Client` instance for this event context.
        :param session: The :class:`.Session` this event was received on.
        :param event_name: The event name for this event.
        """
        #: The :class:`.Client` instance that this event was fired under.
        self.client = client

        #: The :class:`.Session` this event was received on.
        self.session = session

        #: The event name for this event.
        self.event_name = event_name

    @property
    def shard_id(self) -> Optional[int]:
        """
        :return: The shard this event was received on.
        """
        if self.session is None:
            return None

        return self.session.shard_id

    def __repr__(self) -> str:
        return f"<EventContext event_name={self.event_name!r} shard_id={self.shard_id}>"


EventCallback = Callable[[EventContext, Any], Union[None, Awaitable[None]]]


class EventDispatcher(object):
    """
    Dispatches gateway events to the state and to callbacks.

    Callbacks are called with an :class:`.EventContext` and the event data, and may be plain
    functions or async functions.

    :param state: The :class:`.State` to update, if any.
    :param client: The :class:`.Client` passed to callbacks in the context.
    :param session: The :class:`.Session` passed to the state and in the context.
    """

    def __init__(self, state=None, *, client=None, session=None):
        self.state = state
        self.client = client
        self.session = session

        #: The callback registered for each event.
        self.callbacks: Dict[GatewayEvent, EventCallback] = {}

        #: The callback used for events with no registered callback.
        self.default_callback: Optional[EventCallback] = None

        self._send_channel, self._receive_channel = trio.open_memory_channel(math.inf)

    def set_callback(self, name: Union[str, GatewayEvent],
                     callback: Optional[EventCallback]) -> bool:
        """
        Registers the callback for an event, replacing any previous one.

        :param name: The event name, e.g. ``MESSAGE_CREATE``.
        :param callback: The callback, or None to unregister it.
        :return: True if the callback was set, False if the event name is not recognized.
        """
        if isinstance(name, GatewayEvent):
            event = name
        else:
            event = GatewayEvent.from_name(name)

        if event == GatewayEvent.UNKNOWN:
            logger.error(f"Cannot set callback for unknown event {name!r}")
            return False

        if callback is None:
            self.callbacks.pop(event, None)
            logger.debug(f"Unregistered callback for {event.value}")
        else:
            self.callbacks[event] = callback
            logger.debug(f"Registered callback {callback!r} for {event.value}")

        return True

    def set_default_callback(self, callback: Optional[EventCallback]) -> None:
        """
        Sets the callback for events that have no callback of their own.
        """
        self.default_callback = callback

    def get_callback(self, event: GatewayEvent) -> Optional[EventCallback]:
        """
        :return: The callback that will be used for an event.
        """
        return self.callbacks.get(event, self.default_callback)

    def handle_dispatch(self, gateway, name: str, data: Any) -> None:
        """
        Handles a DISPATCH received by the gateway.

        This never awaits; the callback is queued for :meth:`.run`.

        :param gateway: The :class:`.GatewayHandler` that received the dispatch.
        :param name: The event name.
        :param data: The event data.
        """
        event = GatewayEvent.from_name(name)
        if event == GatewayEvent.UNKNOWN:
            logger.warning(f"Received unknown event {name}")
        elif self.state is not None:
            handler = getattr(self.state, STATE_HANDLERS[event])
            try:
                handler(self.session, data)
            except Exception:
                logger.exception(f"Error handling {name} in the state")

        callback = self.get_callback(event)
        if callback is None:
            return

        ctx = EventContext(self.client, self.session, name)
        try:
            self._send_channel.send_nowait((callback, ctx, data))
        except trio.ClosedResourceError:
            logger.warning(f"Dispatcher is closed, dropping {name}")

    def close(self) -> None:
        """
        Stops accepting callbacks. :meth:`.run` returns once the queued callbacks have run.
        """
        self._send_channel.close()

    async def _safe_call(self, callback: EventCallback, ctx: EventContext, data: Any) -> None:
        try:
            result = callback(ctx, data)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Unhandled exception in {callback!r} for {ctx.event_name}!")

    async def run(self) -> None:
        """
        Runs queued callbacks forever, in the order they were queued.
        """
        async for item in self._receive_channel:
            callback, ctx, data = item  # type: Tuple[EventCallback, EventContext, Any]
            await self._safe_call(callback, ctx, data)
