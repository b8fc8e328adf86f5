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
Wrappers for Channel objects.

.. currentmodule:: curlew.dataclasses.channel
"""
import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from curlew.dataclasses.bases import to_snowflake
from curlew.dataclasses.user import User

logger = logging.getLogger("curlew.dataclasses.channel")


class ChannelType(enum.IntEnum):
    """
    Returns a mapping from Discord channel type.
    """

    #: Represents a text channel.
    TEXT = 0

    #: Represents a private channel.
    PRIVATE = 1

    #: Represents a voice channel.
    VOICE = 2

    #: Represents a group channel.
    GROUP = 3

    #: Represents a category channel.
    CATEGORY = 4

    def has_messages(self) -> bool:
        """
        :return: If this channel type has messages.
        """
        return self not in [ChannelType.VOICE, ChannelType.CATEGORY]


def _channel_type(value: int) -> Union[ChannelType, int]:
    try:
        return ChannelType(value)
    except ValueError:
        logger.warning(f"Unknown channel type {value}")
        return value


@dataclass
class Channel:
    """
    Represents a channel, either in a guild or a private one.
    """

    #: The ID of this channel.
    id: int

    #: The type of this channel. Channel types this library does not know are left as ints.
    type: Union[ChannelType, int] = ChannelType.TEXT

    #: The ID of the guild this channel is in, or None for private channels.
    guild_id: Optional[int] = None

    #: The name of this channel.
    name: Optional[str] = None

    #: The topic of this channel.
    topic: Optional[str] = None

    #: The position of this channel in the channel list.
    position: Optional[int] = None

    #: If this channel is NSFW.
    nsfw: bool = False

    #: The ID of the parent category of this channel.
    parent_id: Optional[int] = None

    #: The ID of the last message sent in this channel.
    last_message_id: Optional[int] = None

    #: The recipients of this channel, if it is private.
    recipients: Dict[int, User] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, data: Dict[str, Any], *, guild_id: int = None,
                     make_user: Callable[[Dict[str, Any]], User] = User.from_payload) -> 'Channel':
        """
        :param data: The channel payload.
        :param guild_id: The guild ID, for channels sent inside a guild payload.
        :param make_user: The callable used to make recipient users.
        """
        if guild_id is None:
            guild_id = to_snowflake(data.get("guild_id"))

        channel = cls(
            id=to_snowflake(data["id"]),
            type=_channel_type(data.get("type", 0)),
            guild_id=guild_id,
        )
        channel.update(data)

        for recipient in data.get("recipients", []):
            user = make_user(recipient)
            channel.recipients[user.id] = user

        return channel

    def update(self, data: Dict[str, Any]) -> None:
        """
        Updates this channel from a channel payload.

        Mutates ``name``, ``topic``, ``position``, ``nsfw``, ``parent_id`` and
        ``last_message_id``.
        """
        self.name = data.get("name", self.name)
        self.topic = data.get("topic", self.topic)
        self.position = data.get("position", self.position)
        self.nsfw = data.get("nsfw", self.nsfw)
        if "parent_id" in data:
            self.parent_id = to_snowflake(data["parent_id"])

        if "last_message_id" in data:
            self.last_message_id = to_snowflake(data["last_message_id"])

    @property
    def private(self) -> bool:
        """
        :return: If this channel is a private channel (i.e has no guild).
        """
        return self.guild_id is None

    @property
    def mention(self) -> str:
        return f"<#{self.id}>"
