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
Helpers shared by all dataclasses.

.. currentmodule:: curlew.dataclasses.bases
"""
import datetime
from typing import Any, Optional

DISCORD_EPOCH = 1420070400000


def to_snowflake(value: Any) -> Optional[int]:
    """
    Converts a snowflake from a payload, which is usually a string, into an int.

    :return: The snowflake, or None if the value was None.
    """
    if value is None:
        return None

    return int(value)


def snowflake_timestamp(snowflake: int) -> datetime.datetime:
    """
    :return: The UTC time the snowflake was created at.
    """
    ms = (int(snowflake) >> 22) + DISCORD_EPOCH
    return datetime.datetime.fromtimestamp(ms / 1000, tz=datetime.timezone.utc)
