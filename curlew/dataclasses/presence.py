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
Wrappers for Presence objects.

.. currentmodule:: curlew.dataclasses.presence
"""
import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional

from curlew.dataclasses.bases import to_snowflake


class Status(enum.Enum):
    """
    Represents a Member's status.
    """

    #: Corresponds to online (green dot).
    ONLINE = "online"

    #: Corresponds to offline (gray dot).
    OFFLINE = "offline"

    #: Corresponds to idle (yellow dot).
    IDLE = "idle"

    #: Corresponds to Do Not Disturb (red dot).
    DND = "dnd"

    #: Corresponds to invisible (gray dot).
    INVISIBLE = "invisible"


@dataclass
class Presence:
    """
    Represents a presence on a member.
    """

    #: The ID of the user this presence is for.
    user_id: int

    #: The ID of the guild this presence is in.
    guild_id: Optional[int] = None

    #: The :class:`.Status` of this presence.
    status: Status = Status.OFFLINE

    #: The game object of this presence, if any.
    game: Optional[Dict[str, Any]] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any], guild_id: int = None) -> 'Presence':
        if guild_id is None:
            guild_id = to_snowflake(data.get("guild_id"))

        presence = cls(user_id=to_snowflake(data["user"]["id"]), guild_id=guild_id)
        presence.update(data)
        return presence

    def update(self, data: Dict[str, Any]) -> None:
        """
        Updates this presence from a presence payload.

        Mutates ``status`` and ``game``. Unknown statuses are treated as offline.
        """
        if "status" in data:
            try:
                self.status = Status(data["status"])
            except ValueError:
                self.status = Status.OFFLINE

        if "game" in data:
            self.game = data["game"]
