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
Typed wrappers for the objects the gateway sends, kept in the local cache.

Each dataclass can be made from a raw payload with ``from_payload``, and updated in place from
a later partial payload with ``update``; fields missing from the partial payload are left as
they were.

.. currentmodule:: curlew.dataclasses

.. autosummary::
    :toctree: dataclasses

    bases
    channel
    guild
    member
    presence
    role
    user
"""

from curlew.dataclasses.channel import Channel, ChannelType
from curlew.dataclasses.guild import Guild
from curlew.dataclasses.member import Member
from curlew.dataclasses.presence import Presence, Status
from curlew.dataclasses.role import Role
from curlew.dataclasses.user import User
