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
Curlew - An async Python library for the Discord gateway, built on trio.

.. currentmodule:: curlew

.. autosummary::
    :toctree:

    core
    dataclasses

    exc
"""
import sys
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("curlew")
except PackageNotFoundError:
    __version__ = "0.0.0"

_fmt = "DiscordBot (https://github.com/curlew-py/curlew {0}) Python/{1[0]}.{1[1]}"
USER_AGENT = _fmt.format(__version__, sys.version_info)
del _fmt


from curlew.core.client import Client, open_client
from curlew.core.event import EventContext, EventDispatcher, GatewayEvent
from curlew.core.gateway import GatewayHandler, GatewayState
from curlew.core.httpclient import HTTPClient, RESTResult
from curlew.core.ratelimit import GatewayRateLimiter, RateLimiter
from curlew.core.session import Session
from curlew.core.state import State
from curlew.dataclasses import Channel, ChannelType, Guild, Member, Presence, Role, User
