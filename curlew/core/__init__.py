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
The core of Curlew.

This package contains the network interface with Discord: the gateway connection and its
state machine, the dispatcher that hands events to client code, the rate limiter, and the
HTTP client.

.. currentmodule:: curlew.core

.. autosummary::
    :toctree: core

    client
    event
    gateway
    httpclient
    protocol
    ratelimit
    session
    state
"""
