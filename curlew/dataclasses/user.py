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
Wrappers for User objects.

.. currentmodule:: curlew.dataclasses.user
"""
import datetime
from dataclasses import dataclass
from typing import Any, Dict, Optional

from curlew.dataclasses.bases import snowflake_timestamp, to_snowflake


@dataclass
class User:
    """
    This represents a bare user - i.e, somebody without a guild attached.
    All member objects have a reference to their user on ``.user``.
    """

    #: The ID of this user.
    id: int

    #: The username of this user.
    username: Optional[str] = None

    #: The discriminator of this user.
    #: Note: This is a string, not an integer.
    discriminator: Optional[str] = None

    #: The avatar hash of this user.
    avatar_hash: Optional[str] = None

    #: If this user is a bot.
    bot: bool = False

    #: If this user is verified or not. Only sent for the current user.
    verified: Optional[bool] = None

    #: If this user has MFA enabled or not. Only sent for the current user.
    mfa_enabled: Optional[bool] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> 'User':
        user = cls(id=to_snowflake(data["id"]))
        user.update(data)
        return user

    def update(self, data: Dict[str, Any]) -> None:
        """
        Updates this user from a (possibly partial) user payload.

        Mutates ``username``, ``discriminator``, ``avatar_hash``, ``bot``, ``verified`` and
        ``mfa_enabled``.
        """
        self.username = data.get("username", self.username)
        self.discriminator = data.get("discriminator", self.discriminator)
        self.avatar_hash = data.get("avatar", self.avatar_hash)
        self.bot = data.get("bot", self.bot)
        self.verified = data.get("verified", self.verified)
        self.mfa_enabled = data.get("mfa_enabled", self.mfa_enabled)

    @property
    def name(self) -> str:
        """
        :return: The name of this user, with the discriminator.
        """
        return f"{self.username}#{self.discriminator}"

    @property
    def mention(self) -> str:
        """
        :return: A string that mentions this user.
        """
        return f"<@{self.id}>"

    @property
    def created_at(self) -> datetime.datetime:
        return snowflake_timestamp(self.id)

    def __str__(self) -> str:
        return self.name
