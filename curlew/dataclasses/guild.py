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
Wrappers for Guild objects.

.. currentmodule:: curlew.dataclasses.guild
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from curlew.dataclasses.bases import to_snowflake
from curlew.dataclasses.channel import Channel
from curlew.dataclasses.member import Member
from curlew.dataclasses.presence import Presence
from curlew.dataclasses.role import Role
from curlew.dataclasses.user import User


@dataclass
class Guild:
    """
    Represents a guild object on Discord.
    """

    #: The ID of this guild.
    id: int

    #: The name of this guild.
    name: Optional[str] = None

    #: The ID of the owner of this guild.
    owner_id: Optional[int] = None

    #: The icon hash of this guild.
    icon_hash: Optional[str] = None

    #: The voice region of this guild.
    region: Optional[str] = None

    #: The number of members in this guild, as reported by Discord.
    member_count: int = 0

    #: If this guild is large, and so not all members were sent.
    large: bool = False

    #: If this guild is unavailable due to an outage.
    unavailable: bool = False

    #: The channels of this guild.
    channels: Dict[int, Channel] = field(default_factory=dict)

    #: The members of this guild.
    members: Dict[int, Member] = field(default_factory=dict)

    #: The roles of this guild.
    roles: Dict[int, Role] = field(default_factory=dict)

    #: The presences of members of this guild.
    presences: Dict[int, Presence] = field(default_factory=dict)

    #: The raw emoji payloads of this guild.
    emojis: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Dict[str, Any],
                     make_user: Callable[[Dict[str, Any]], User] = User.from_payload) -> 'Guild':
        """
        Makes a guild from a GUILD_CREATE payload.

        :param data: The guild payload.
        :param make_user: The callable used to make the users of members.
        """
        guild = cls(id=to_snowflake(data["id"]))
        guild.from_guild_create(data, make_user)
        return guild

    def from_guild_create(self, data: Dict[str, Any],
                          make_user: Callable[[Dict[str, Any]], User] = User.from_payload) -> None:
        """
        Fills this guild from a full GUILD_CREATE payload, replacing the channels, roles,
        members and presences.
        """
        self.update(data)

        self.channels = {}
        for channel_data in data.get("channels", []):
            channel = Channel.from_payload(channel_data, guild_id=self.id)
            self.channels[channel.id] = channel

        self.members = {}
        self.add_members(data.get("members", []), make_user)

        self.presences = {}
        for presence_data in data.get("presences", []):
            presence = Presence.from_payload(presence_data, guild_id=self.id)
            self.presences[presence.user_id] = presence

    def update(self, data: Dict[str, Any]) -> None:
        """
        Updates this guild from a GUILD_UPDATE payload.

        Mutates ``name``, ``owner_id``, ``icon_hash``, ``region``, ``member_count``, ``large``,
        ``unavailable``, and replaces ``roles`` and ``emojis`` if they are present.
        """
        self.name = data.get("name", self.name)
        if "owner_id" in data:
            self.owner_id = to_snowflake(data["owner_id"])

        self.icon_hash = data.get("icon", self.icon_hash)
        self.region = data.get("region", self.region)
        self.member_count = data.get("member_count", self.member_count)
        self.large = data.get("large", self.large)
        self.unavailable = data.get("unavailable", False)

        if "roles" in data:
            self.roles = {}
            for role_data in data["roles"]:
                role = Role.from_payload(role_data, guild_id=self.id)
                self.roles[role.id] = role

        if "emojis" in data:
            self.emojis = list(data["emojis"])

    def add_members(self, members: List[Dict[str, Any]],
                    make_user: Callable[[Dict[str, Any]], User] = User.from_payload) -> None:
        """
        Adds or updates members from a list of member payloads.
        """
        for member_data in members:
            user = make_user(member_data["user"])
            member = self.members.get(user.id)
            if member is None:
                member = Member.from_payload(member_data, user, guild_id=self.id)
                self.members[user.id] = member
            else:
                member.user = user
                member.update(member_data)

    @property
    def owner(self) -> Optional[Member]:
        """
        :return: The member that owns this guild, if it is cached.
        """
        return self.members.get(self.owner_id)
