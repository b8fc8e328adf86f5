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
Wire-level definitions for the Discord gateway: opcodes, close codes, and the frames the
client sends.

.. currentmodule:: curlew.core.protocol
"""
import enum
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from curlew.exc import GatewayProtocolError

logger = logging.getLogger("curlew.gateway")


class GatewayOp(enum.IntEnum):
    """
    A mapping of possible gateway operation codes.
    """

    DISPATCH = 0
    HEARTBEAT = 1
    IDENTIFY = 2
    STATUS_UPDATE = 3
    VOICE_STATE_UPDATE = 4
    VOICE_SERVER_PING = 5
    RESUME = 6
    RECONNECT = 7
    REQUEST_GUILD_MEMBERS = 8
    INVALID_SESSION = 9
    HELLO = 10
    HEARTBEAT_ACK = 11


#: Opcodes the client sends but the gateway never should.
OUTBOUND_ONLY_OPS = frozenset({
    GatewayOp.IDENTIFY,
    GatewayOp.STATUS_UPDATE,
    GatewayOp.VOICE_STATE_UPDATE,
    GatewayOp.VOICE_SERVER_PING,
    GatewayOp.RESUME,
    GatewayOp.REQUEST_GUILD_MEMBERS,
})


class CloseCode(enum.IntEnum):
    """
    Close codes the gateway can send when it closes the connection.
    """

    UNKNOWN_ERROR = 4000
    UNKNOWN_OPCODE = 4001
    DECODE_ERROR = 4002
    NOT_AUTHENTICATED = 4003
    AUTHENTICATION_FAILED = 4004
    ALREADY_AUTHENTICATED = 4005
    INVALID_SEQ = 4007
    RATE_LIMITED = 4008
    SESSION_TIMED_OUT = 4009
    INVALID_SHARD = 4010
    SHARDING_REQUIRED = 4011
    INVALID_API_VERSION = 4012
    INVALID_INTENTS = 4013
    DISALLOWED_INTENTS = 4014

    @property
    def reason(self) -> str:
        return CLOSE_CODE_REASONS[self]


CLOSE_CODE_REASONS = {
    CloseCode.UNKNOWN_ERROR: "Unknown error",
    CloseCode.UNKNOWN_OPCODE: "Unknown opcode",
    CloseCode.DECODE_ERROR: "Decode error",
    CloseCode.NOT_AUTHENTICATED: "Not authenticated",
    CloseCode.AUTHENTICATION_FAILED: "Authentication failed",
    CloseCode.ALREADY_AUTHENTICATED: "Already authenticated",
    CloseCode.INVALID_SEQ: "Invalid seq",
    CloseCode.RATE_LIMITED: "Rate limited",
    CloseCode.SESSION_TIMED_OUT: "Session timed out",
    CloseCode.INVALID_SHARD: "Invalid shard",
    CloseCode.SHARDING_REQUIRED: "Sharding required",
    CloseCode.INVALID_API_VERSION: "Invalid API version",
    CloseCode.INVALID_INTENTS: "Invalid intent(s)",
    CloseCode.DISALLOWED_INTENTS: "Disallowed intent(s)",
}

#: Close codes that mean the configuration is wrong. Reconnecting would only fail again.
FATAL_CLOSE_CODES = frozenset({
    CloseCode.AUTHENTICATION_FAILED,
    CloseCode.INVALID_SHARD,
    CloseCode.SHARDING_REQUIRED,
    CloseCode.INVALID_API_VERSION,
    CloseCode.INVALID_INTENTS,
    CloseCode.DISALLOWED_INTENTS,
})


def describe_close_code(code: int) -> str:
    """
    :param code: A websocket close code.
    :return: The human-readable reason for the close code.
    """
    try:
        return CloseCode(code).reason
    except ValueError:
        return f"Close code {code}"


@dataclass
class GatewayFrame:
    """
    A single decoded gateway payload.
    """

    #: The opcode of this frame.
    op: GatewayOp

    #: The data of this frame.
    d: Any = None

    #: The sequence number, only set on dispatches.
    s: Optional[int] = None

    #: The event name, only set on dispatches.
    t: Optional[str] = None


def decode_frame(text: str) -> GatewayFrame:
    """
    Decodes a text frame into a :class:`.GatewayFrame`.

    :param text: The raw JSON of the frame.
    :raises GatewayProtocolError: If the frame is not valid JSON, or has a missing or unknown
        opcode.
    """
    try:
        decoded = json.loads(text)
    except ValueError as e:
        raise GatewayProtocolError(f"Failed to decode frame: {e}") from e

    if not isinstance(decoded, dict):
        raise GatewayProtocolError(f"Frame is not an object: {text!r}")

    op = decoded.get("op")
    if not isinstance(op, int) or isinstance(op, bool):
        raise GatewayProtocolError(f"Frame has no opcode: {text!r}")

    try:
        op = GatewayOp(op)
    except ValueError:
        raise GatewayProtocolError(f"Unknown opcode {op}") from None

    sequence = decoded.get("s")
    if sequence is not None and not isinstance(sequence, int):
        raise GatewayProtocolError(f"Invalid sequence {sequence!r}")

    return GatewayFrame(op=op, d=decoded.get("d"), s=sequence, t=decoded.get("t"))


def encode_frame(op: GatewayOp, data: Any) -> str:
    """
    Encodes an outbound frame.

    :param op: The opcode to send.
    :param data: The payload for the opcode.
    """
    return json.dumps({"op": int(op), "d": data})


# Identify
DEFAULT_LARGE_THRESHOLD = 50
MIN_LARGE_THRESHOLD = 50
MAX_LARGE_THRESHOLD = 250

#: The properties that may be overridden in the identify payload.
IDENTIFY_PROPERTIES = ("os", "browser", "device", "referrer", "referring_domain")


def validate_shard(shard_id: Any, shard_count: Any) -> Tuple[int, int]:
    """
    Validates a shard pair, falling back to the defaults (0, 1) for any invalid part.

    :param shard_id: The shard ID.
    :param shard_count: The number of shards.
    :return: A two-item tuple of (shard_id, shard_count).
    """
    if not isinstance(shard_count, int) or isinstance(shard_count, bool) or shard_count < 1:
        logger.warning(f"Invalid shard count, setting to 1: {shard_count!r}")
        shard_count = 1

    if not isinstance(shard_id, int) or isinstance(shard_id, bool) \
            or not 0 <= shard_id < shard_count:
        logger.warning(f"Invalid shard ID, setting to 0: {shard_id!r}")
        shard_id = 0

    return shard_id, shard_count


def validate_large_threshold(value: Any) -> int:
    """
    Validates the large guild threshold, which must be in the range [50, 250].
    """
    if not isinstance(value, int) or isinstance(value, bool) \
            or not MIN_LARGE_THRESHOLD <= value <= MAX_LARGE_THRESHOLD:
        logger.warning(f"Invalid large threshold, setting to {DEFAULT_LARGE_THRESHOLD}: "
                       f"{value!r}")
        return DEFAULT_LARGE_THRESHOLD

    return value


def make_properties(agent: str, overrides: Dict[str, str] = None) -> Dict[str, str]:
    """
    Makes the client identification properties for the identify payload.

    :param agent: The browser/device string to identify as.
    :param overrides: A dict of property name -> value to override.
    """
    properties = {
        "os": sys.platform,
        "browser": agent,
        "device": agent,
        "referrer": "",
        "referring_domain": "",
    }

    for name, value in (overrides or {}).items():
        if name not in IDENTIFY_PROPERTIES:
            logger.error(f"Invalid identify property: {name!r}")
            continue

        properties[name] = value

    return {f"${name}": value for name, value in properties.items()}


def make_identify(token: str, shard_id: int, shard_count: int, *,
                  compress: bool = False,
                  large_threshold: int = DEFAULT_LARGE_THRESHOLD,
                  properties: Dict[str, str] = None,
                  intents: int = None) -> Dict[str, Any]:
    """
    Makes the data for an IDENTIFY payload.

    :param token: The token to identify with.
    :param shard_id: The shard ID of this connection.
    :param shard_count: The total number of shards.
    :param compress: If the gateway should compress large payloads.
    :param large_threshold: The member count above which the gateway stops sending offline
        members of a guild.
    :param properties: The client identification properties (see :func:`.make_properties`).
    :param intents: The gateway intents bitfield, if any.
    """
    shard_id, shard_count = validate_shard(shard_id, shard_count)

    payload = {
        "token": token,
        "properties": properties if properties is not None else make_properties("curlew"),
        "compress": bool(compress),
        "large_threshold": validate_large_threshold(large_threshold),
        "shard": [shard_id, shard_count],
    }
    if intents is not None:
        payload["intents"] = intents

    return payload


def make_resume(token: str, session_id: str, sequence: Optional[int]) -> Dict[str, Any]:
    """
    Makes the data for a RESUME payload.
    """
    return {
        "token": token,
        "session_id": session_id,
        "seq": sequence,
    }


def make_heartbeat(sequence: Optional[int]) -> Optional[int]:
    """
    Makes the data for a HEARTBEAT payload, which is just the last sequence number seen.
    """
    return sequence


def build_gateway_url(base: str, version: int, *, zlib_stream: bool = False) -> str:
    """
    Builds the full gateway URL from the URL returned by ``GET /gateway``.

    :param base: The base gateway URL.
    :param version: The gateway version to use.
    :param zlib_stream: If transport compression should be requested.
    """
    url = f"{base.rstrip('/')}/?v={version}&encoding=json"
    if zlib_stream:
        url += "&compress=zlib-stream"

    return url
