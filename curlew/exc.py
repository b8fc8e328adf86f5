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
Exceptions raised from within the library.

.. currentmodule:: curlew.exc
"""
import enum
import warnings
from typing import Optional


class CurlewError(Exception):
    """
    The base class for all curlew exceptions.
    """


# HTTP based exceptions.
class ErrorCode(enum.IntEnum):
    UNKNOWN_ACCOUNT = 10001
    UNKNOWN_APPLICATION = 10002
    UNKNOWN_CHANNEL = 10003
    UNKNOWN_GUILD = 10004
    UNKNOWN_INTEGRATION = 10005
    UNKNOWN_INVITE = 10006
    UNKNOWN_MEMBER = 10007
    UNKNOWN_MESSAGE = 10008
    UNKNOWN_OVERWRITE = 10009
    UNKNOWN_PROVIDER = 10010
    UNKNOWN_ROLE = 10011
    UNKNOWN_TOKEN = 10012
    UNKNOWN_USER = 10013
    UNKNOWN_EMOJI = 10014

    NO_BOTS = 20001
    ONLY_BOTS = 20002

    MAX_GUILDS = 30001
    MAX_FRIENDS = 30002
    MAX_PINS = 30003
    MAX_ROLES = 30005
    MAX_REACTIONS = 30010
    MAX_GUILD_CHANNELS = 30013

    UNAUTHORIZED = 40001
    MISSING_ACCESS = 50001
    INVALID_ACCOUNT = 50002
    NO_DMS = 50003
    EMBED_DISABLED = 50004
    CANNOT_EDIT = 50005
    CANNOT_SEND_EMPTY_MESSAGE = 50006
    CANNOT_SEND_TO_USER = 50007
    CANNOT_SEND_TO_VC = 50008
    VERIFICATION_TOO_HIGH = 50009

    MISSING_PERMISSIONS = 50013
    INVALID_AUTH_TOKEN = 50014

    NOTE_TOO_LONG = 50015
    INVALID_MESSAGE_COUNT = 50016
    CANNOT_PIN = 50019
    TOO_OLD_TO_BULK_DELETE = 50034
    INVALID_FORM_BODY = 50035

    REACTION_BLOCKED = 90001

    UNKNOWN = 0


class HTTPException(CurlewError, ConnectionError):
    """
    Raised when a HTTP request fails with a 400 <= e < 600 error code, or when the request
    could not be completed at all.
    """

    def __init__(self, status: Optional[int], error: dict):
        #: The HTTP status code, or None if no response was received.
        self.status = status

        error_code = error.get("code", 0)
        try:
            #: The error code for this response.
            self.error_code = ErrorCode(error_code)
        except ValueError:
            warnings.warn("Received unknown error code {}".format(error_code))
            #: The error code for this response.
            self.error_code = ErrorCode.UNKNOWN
        self.error_message = error.get("message")

        self.error = error

    def __str__(self) -> str:
        if self.error_code == ErrorCode.UNKNOWN:
            return repr(self.error)

        return "{} ({}): {}".format(self.error_code, self.error_code.name, self.error_message)

    __repr__ = __str__


class Unauthorized(HTTPException):
    """
    Raised when your bot token is invalid.
    """


class Forbidden(HTTPException):
    """
    Raised when you don't have permission for something.
    """


class NotFound(HTTPException):
    """
    Raised when something could not be found.
    """


class RateLimited(HTTPException):
    """
    Raised when a request was withheld by the rate limiter, or the server replied with a 429.
    """


# Gateway based exceptions.
class GatewayError(CurlewError):
    """
    The base class for gateway errors.
    """


class GatewayProtocolError(GatewayError):
    """
    Raised when a gateway frame could not be decoded.

    These are always handled inside the gateway; the frame is dropped and the connection
    carries on.
    """


class GatewayConnectError(GatewayError, ConnectionError):
    """
    Raised when a websocket connection to the gateway could not be opened.
    """


class FatalGatewayError(GatewayError):
    """
    Raised when the gateway closes the connection with a close code that cannot be recovered
    from, such as an invalid token or an invalid shard.

    Nothing inside the library catches this, so it will end the program unless you catch it.
    """

    def __init__(self, close_code: int, reason: str):
        #: The close code the gateway sent.
        self.close_code = close_code

        #: The human-readable reason for the close code.
        self.reason = reason

    def __str__(self) -> str:
        return "Gateway closed with fatal code {}: {}".format(self.close_code, self.reason)

    __repr__ = __str__
