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
Wrappers for Role objects.

.. currentmodule:: curlew.dataclasses.role
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional

from curlew.dataclasses.bases import to_snowflake


@dataclass
class Role:
    """
    Represents a role in a guild.
    """

    #: The ID of this role.
    id: int

    #: The ID of the guild this role is in.
    guild_id: Optional[int] = None

    #: The name of this role.
    name: Optional[str] = None

    #: The colour of this role, as an int.
    colour: int = 0

    #: The position of this role.
    position: int = 0

    #: The permissions bitfield of this role.
    permissions: int = 0

    #: If this role is shown separately in the member list.
    hoisted: bool = False

    #: If this role is managed by an integration.
    managed: bool = False

    #: If this role can be mentioned by anyone.
    mentionable: bool = False

    @classmethod
    def from_payload(cls, data: Dict[str, Any], guild_id: int = None) -> 'Role':
        role = cls(id=to_snowflake(data["id"]), guild_id=guild_id)
        role.update(data)
        return role

    def update(self, data: Dict[str, Any]) -> None:
        """
        Updates this role from a role payload.

        Mutates ``name``, ``colour``, ``position``, ``permissions``, ``hoisted``, ``managed``
        and ``mentionable``.
        """
        self.name = data.get("name", self.name)
        self.colour = data.get("color", self.colour)
        self.position = data.get("position", self.position)
        if "permissions" in data:
            self.permissions = int(data["permissions"])

        self.hoisted = data.get("hoist", self.hoisted)
        self.managed = data.get("managed", self.managed)
        self.mentionable = data.get("mentionable", self.mentionable)

    @property
    def mention(self) -> str:
        return f"<@&{self.id}>"
