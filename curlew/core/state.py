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
Defines :class:`.State`.

.. currentmodule:: curlew.core.state
"""
import collections
import logging
from typing import Any, Deque, Dict, Optional, Tuple

from curlew.dataclasses.bases import to_snowflake
from curlew.dataclasses.channel import Channel
from curlew.dataclasses.guild import Guild
from curlew.dataclasses.presence import Presence
from curlew.dataclasses.role import Role
from curlew.dataclasses.user import User

logger = logging.getLogger("curlew.state")


class State(object):
    """
    This represents the state of the Client - in other libraries, the cache.

    The other main purpose for this class is to parse events from the Discord websocket. Every
    ``handle_*`` method takes the :class:`.Session` that received the event (which may be
    None) and the event data, and never awaits.

    :param max_messages: The maximum number of messages to keep.
    """

    def __init__(self, max_messages: int = 500):
        #: The current user of this bot.
        #: This is set after READY.
        self.user: Optional[User] = None

        #: The guilds the bot can see.
        self.guilds: Dict[int, Guild] = {}

        #: The guild channel index, by channel ID.
        self.channels: Dict[int, Channel] = {}

        #: The current user cache.
        self.users: Dict[int, User] = {}

        #: The deque of raw message payloads.
        #: This is bounded to prevent the message cache from growing infinitely.
        self.messages: Deque[Dict[str, Any]] = collections.deque(maxlen=max_messages)

        #: The raw voice states, by (guild ID, user ID).
        self.voice_states: Dict[Tuple[Optional[int], int], Dict[str, Any]] = {}

    # Cache helpers
    def make_user(self, data: Dict[str, Any]) -> User:
        """
        Makes a user, or updates the cached user with the same ID.

        :param data: The user payload.
        :return: The cached :class:`.User`.
        """
        user_id = to_snowflake(data["id"])
        user = self.users.get(user_id)
        if user is None:
            user = User.from_payload(data)
            self.users[user_id] = user
        else:
            user.update(data)

        return user

    def find_channel(self, channel_id: int, session=None) -> Optional[Channel]:
        """
        Finds a channel in the guild channel index, or the DM channels of a session.
        """
        channel = self.channels.get(channel_id)
        if channel is None and session is not None:
            channel = session.dm_channels.get(channel_id)

        return channel

    def find_message(self, channel_id: int, message_id: int) -> Optional[Dict[str, Any]]:
        """
        Finds a cached message payload.
        """
        for message in reversed(self.messages):
            if to_snowflake(message.get("id")) == message_id \
                    and to_snowflake(message.get("channel_id")) == channel_id:
                return message

        return None

    def _add_guild(self, guild: Guild) -> None:
        self.guilds[guild.id] = guild
        for channel in guild.channels.values():
            self.channels[channel.id] = channel

    def _remove_guild(self, guild_id: int) -> Optional[Guild]:
        guild = self.guilds.pop(guild_id, None)
        if guild is not None:
            for channel_id in guild.channels:
                self.channels.pop(channel_id, None)

        return guild

    def _get_guild(self, data: Dict[str, Any], key: str = "guild_id") -> Optional[Guild]:
        guild_id = to_snowflake(data.get(key))
        guild = self.guilds.get(guild_id)
        if guild is None:
            logger.warning(f"Got an event for unknown guild {guild_id}")

        return guild

    # ==============================================================================================
    # Event handlers.
    # These parse the events and deconstruct them.

    def handle_log(self, session, event_data: Any) -> None:
        """
        Used for events that carry nothing worth caching.
        """
        logger.debug(f"Received event with no state: {event_data}")

    def handle_ready(self, session, event_data: dict) -> None:
        """
        Called when READY is dispatched.
        """
        self.user = self.make_user(event_data["user"])

        if session is not None:
            session.user = self.user
            session.dm_channels.clear()

        for channel_data in event_data.get("private_channels", []):
            channel = Channel.from_payload(channel_data, make_user=self.make_user)
            if session is not None:
                session.dm_channels[channel.id] = channel

        # guilds in READY are unavailable stubs, filled in by GUILD_CREATE later
        for guild_data in event_data.get("guilds", []):
            guild_id = to_snowflake(guild_data["id"])
            if guild_id not in self.guilds:
                self.guilds[guild_id] = Guild(id=guild_id, unavailable=True)

        logger.info(f"Ready for {self.user.name} ({self.user.id}) with "
                    f"{len(event_data.get('guilds', []))} guilds")

    def handle_resumed(self, session, event_data: Any) -> None:
        """
        Called when the gateway connection is resumed.
        """
        logger.info("Session resumed")

    def handle_user_update(self, session, event_data: dict) -> None:
        """
        Called when the bot's user is updated.
        """
        self.user = self.make_user(event_data)
        if session is not None:
            session.user = self.user

    # Channels
    def handle_channel_create(self, session, event_data: dict) -> None:
        """
        Called when a channel is created. DM channels are stored on the session.
        """
        channel = Channel.from_payload(event_data, make_user=self.make_user)
        if channel.private:
            if session is not None:
                session.dm_channels[channel.id] = channel

            return

        guild = self.guilds.get(channel.guild_id)
        if guild is None:
            logger.warning(f"Channel {channel.id} created in unknown guild {channel.guild_id}")
            return

        guild.channels[channel.id] = channel
        self.channels[channel.id] = channel

    def handle_channel_update(self, session, event_data: dict) -> None:
        """
        Called when a channel is updated.
        """
        channel_id = to_snowflake(event_data["id"])
        channel = self.find_channel(channel_id, session)
        if channel is None:
            # we missed the create
            return self.handle_channel_create(session, event_data)

        channel.update(event_data)

    def handle_channel_delete(self, session, event_data: dict) -> None:
        """
        Called when a channel is deleted.
        """
        channel_id = to_snowflake(event_data["id"])
        channel = self.channels.pop(channel_id, None)
        if channel is not None:
            guild = self.guilds.get(channel.guild_id)
            if guild is not None:
                guild.channels.pop(channel_id, None)

        elif session is not None:
            session.dm_channels.pop(channel_id, None)

    # Guilds
    def handle_guild_create(self, session, event_data: dict) -> None:
        """
        Called when GUILD_CREATE is dispatched.
        """
        guild_id = to_snowflake(event_data["id"])
        guild = self.guilds.get(guild_id)
        if guild is None:
            guild = Guild.from_payload(event_data, self.make_user)
            logger.info(f"Joined guild {guild.name} ({guild.id})")
        else:
            # drop the old channels out of the index
            self._remove_guild(guild_id)
            guild.from_guild_create(event_data, self.make_user)
            logger.debug(f"Streamed guild: {guild.name} ({guild.id})")

        self._add_guild(guild)

    def handle_guild_update(self, session, event_data: dict) -> None:
        """
        Called when GUILD_UPDATE is dispatched.
        """
        guild = self._get_guild(event_data, "id")
        if guild is None:
            return

        guild.update(event_data)

    def handle_guild_delete(self, session, event_data: dict) -> None:
        """
        Called when a guild becomes unavailable, or the bot leaves it.
        """
        guild_id = to_snowflake(event_data["id"])
        # if the unavailable flag is set, all this means is the guild is in an outage
        if event_data.get("unavailable", False):
            guild = self.guilds.get(guild_id)
            if guild is not None:
                guild.unavailable = True

            return

        guild = self._remove_guild(guild_id)
        if guild is not None:
            logger.info(f"Left guild {guild.name} ({guild.id})")

    def handle_guild_ban_add(self, session, event_data: dict) -> None:
        """
        Called when a user is banned from a guild.
        """
        user = self.make_user(event_data["user"])
        logger.info(f"User {user.id} banned from guild {event_data.get('guild_id')}")

    def handle_guild_ban_remove(self, session, event_data: dict) -> None:
        """
        Called when a user is unbanned from a guild.
        """
        user = self.make_user(event_data["user"])
        logger.info(f"User {user.id} unbanned from guild {event_data.get('guild_id')}")

    def handle_guild_emojis_update(self, session, event_data: dict) -> None:
        """
        Called when a guild updates its emojis.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        guild.emojis = list(event_data.get("emojis", []))

    def handle_guild_integrations_update(self, session, event_data: dict) -> None:
        logger.debug(f"Integrations updated in guild {event_data.get('guild_id')}")

    # Members
    def handle_guild_member_add(self, session, event_data: dict) -> None:
        """
        Called when a member joins a guild.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        guild.add_members([event_data], self.make_user)
        guild.member_count += 1

    def handle_guild_member_remove(self, session, event_data: dict) -> None:
        """
        Called when a member leaves a guild.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        user_id = to_snowflake(event_data["user"]["id"])
        guild.members.pop(user_id, None)
        guild.presences.pop(user_id, None)
        guild.member_count = max(guild.member_count - 1, 0)

    def handle_guild_member_update(self, session, event_data: dict) -> None:
        """
        Called when a guild member is updated.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        guild.add_members([event_data], self.make_user)

    def handle_guild_members_chunk(self, session, event_data: dict) -> None:
        """
        Called when a chunk of members has arrived.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        members = event_data.get("members", [])
        logger.info(f"Got a chunk of {len(members)} members in guild {guild.name or guild.id}")
        guild.add_members(members, self.make_user)

    # Roles
    def handle_guild_role_create(self, session, event_data: dict) -> None:
        """
        Called when a role is created.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        role = Role.from_payload(event_data["role"], guild_id=guild.id)
        guild.roles[role.id] = role

    def handle_guild_role_update(self, session, event_data: dict) -> None:
        """
        Called when a role is updated.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        role_data = event_data["role"]
        role = guild.roles.get(to_snowflake(role_data["id"]))
        if role is None:
            return self.handle_guild_role_create(session, event_data)

        role.update(role_data)

    def handle_guild_role_delete(self, session, event_data: dict) -> None:
        """
        Called when a role is deleted. The role is also removed from every member.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        role_id = to_snowflake(event_data["role_id"])
        guild.roles.pop(role_id, None)
        for member in guild.members.values():
            if role_id in member.role_ids:
                member.role_ids.remove(role_id)

    # Messages
    def handle_message_create(self, session, event_data: dict) -> None:
        """
        Called when a message is created.
        """
        if "author" in event_data and "webhook_id" not in event_data:
            self.make_user(event_data["author"])

        channel = self.find_channel(to_snowflake(event_data.get("channel_id")), session)
        if channel is not None:
            channel.last_message_id = to_snowflake(event_data["id"])

        self.messages.append(event_data)

    def handle_message_update(self, session, event_data: dict) -> None:
        """
        Called when a message is updated. Updates may be partial, such as embed-only updates.
        """
        message = self.find_message(to_snowflake(event_data.get("channel_id")),
                                    to_snowflake(event_data["id"]))
        if message is not None:
            message.update(event_data)

    def handle_message_delete(self, session, event_data: dict) -> None:
        """
        Called when a message is deleted.
        """
        message = self.find_message(to_snowflake(event_data.get("channel_id")),
                                    to_snowflake(event_data["id"]))
        if message is not None:
            self.messages.remove(message)

    def handle_message_delete_bulk(self, session, event_data: dict) -> None:
        """
        Called when messages are bulk deleted.
        """
        channel_id = to_snowflake(event_data.get("channel_id"))
        for message_id in event_data.get("ids", []):
            message = self.find_message(channel_id, to_snowflake(message_id))
            if message is not None:
                self.messages.remove(message)

    # Presences
    def handle_presence_update(self, session, event_data: dict) -> None:
        """
        Called when a member changes status or game.
        """
        guild = self._get_guild(event_data)
        if guild is None:
            return

        user_data = event_data.get("user")
        # awful payloads
        if not user_data or "id" not in user_data:
            return

        # partial users only carry the ID
        if len(user_data) > 1:
            self.make_user(user_data)

        user_id = to_snowflake(user_data["id"])
        presence = guild.presences.get(user_id)
        if presence is None:
            presence = Presence.from_payload(event_data, guild_id=guild.id)
            guild.presences[user_id] = presence
        else:
            presence.update(event_data)

        member = guild.members.get(user_id)
        if member is not None:
            if "roles" in event_data:
                member.role_ids = [to_snowflake(r) for r in event_data["roles"]]

            member.nickname = event_data.get("nick", member.nickname)

    # Voice
    def handle_voice_state_update(self, session, event_data: dict) -> None:
        """
        Called when a user joins, leaves or changes voice state.
        """
        key = (to_snowflake(event_data.get("guild_id")), to_snowflake(event_data["user_id"]))
        if event_data.get("channel_id") is None:
            self.voice_states.pop(key, None)
        else:
            self.voice_states[key] = event_data

    def handle_voice_server_update(self, session, event_data: dict) -> None:
        logger.debug(f"Voice server for guild {event_data.get('guild_id')}: "
                     f"{event_data.get('endpoint')}")
