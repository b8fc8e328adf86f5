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
Wrappers for Member objects.

.. currentmodule:: curlew.dataclasses.member
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from curlew.dataclasses.bases import to_snowflake
from curlew.dataclasses.user import User


@dataclass
class Member:
    """
    A member is a user attached to a guild.
    """

    #: The user for this member.
    user: User

    #: The ID of the guild this member is in.
    guild_id: Optional[int] = None

    #: The nickname of this member, if any.
    nickname: Optional[str] = None

    #: The IDs of the roles this member has.
    role_ids: List[int] = field(default_factory=list)

    #: When this member joined the guild, as an ISO8601 string.
    joined_at: Optional[str] = None

    #: If this member is server deafened.
    deaf: bool = False

    #: If this member is server muted.
    mute: bool = False

    @classmethod
    def from_payload(cls, data: Dict[str, Any], user: User, guild_id: int = None) -> 'Member':
        """
        :param data: The member payload.
        :param user: The (cached) user for this member.
        :param guild_id: The ID of the guild this member is in.
        """
        member = cls(user=user, guild_id=guild_id)
        member.update(data)
        return member

    def update(self, data: Dict[str, Any]) -> None:
        """
        Updates this member from a member payload.

        Mutates ``nickname``, ``role_ids``, ``joined_at``, ``deaf`` and ``mute``. The user is
        updated separately, by the state.
        """
        self.nickname = data.get("nick", self.nickname)
        if "roles" in data:
            self.role_ids = [to_snowflake(r) for r in data["roles"]]

        self.joined_at = data.get("joined_at", self.joined_at)
        self.deaf = data.get("deaf", self.deaf)
        self.mute = data.get("mute", self.mute)

    @property
    def id(self) -> int:
        """
        :return: The ID of this member, which is the ID of its user.
        """
        return self.user.id

    @property
    def name(self) -> str:
        """
        :return: The nickname of this member, or the username if there is none.
        """
        return self.nickname or self.user.username
