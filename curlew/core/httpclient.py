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
The main Discord HTTP interface.

Every request made through :class:`.HTTPClient` resolves to a :class:`.RESTResult`. Requests
the rate limiter withholds, requests the server refuses and requests that never got a
response all produce a result with no data and an error description, rather than raising;
call :meth:`.RESTResult.raise_for_status` to turn a failed result into an exception.

.. currentmodule:: curlew.core.httpclient
"""
import inspect
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union
from urllib.parse import quote

import asks
import trio
from asks.errors import AsksException
from asks.response_objects import Response
from h11 import RemoteProtocolError
from pylru import lrucache

import curlew
from curlew.core.ratelimit import RateLimiter, get_route
from curlew.exc import Forbidden, HTTPException, NotFound, RateLimited, Unauthorized

logger = logging.getLogger("curlew.http")

#: The HTTP methods that can be used.
METHODS = frozenset({"GET", "POST", "PUT", "PATCH", "DELETE"})


@dataclass
class RESTResult:
    """
    The outcome of a single HTTP request.
    """

    #: The decoded JSON body, or None if the request failed.
    data: Any = None

    #: The HTTP status code, or None if no response was received.
    status: Optional[int] = None

    #: A description of what went wrong, or None if the request succeeded.
    error: Optional[str] = None

    #: The response headers, with lowercase names.
    headers: Mapping[str, str] = field(default_factory=dict)

    #: The decoded JSON body of a failed response, if any.
    error_data: Any = None

    #: If the request was withheld or refused because of a rate limit.
    rate_limited: bool = False

    @property
    def ok(self) -> bool:
        """
        :return: If this request succeeded.
        """
        return self.error is None

    def raise_for_status(self) -> Any:
        """
        Raises an :class:`.HTTPException` if this request failed.

        :return: The data of this result, if it succeeded.
        """
        if self.ok:
            return self.data

        error = {"message": self.error}
        if isinstance(self.error_data, dict):
            error.update(self.error_data)

        if self.rate_limited:
            raise RateLimited(self.status, error)

        if self.status == 401:
            raise Unauthorized(self.status, error)

        if self.status == 403:
            raise Forbidden(self.status, error)

        if self.status == 404:
            raise NotFound(self.status, error)

        raise HTTPException(self.status, error)


ResultCallback = Callable[[RESTResult], Union[None, Awaitable[None]]]


async def _invoke(callback: Optional[ResultCallback], result: RESTResult) -> None:
    if callback is None:
        return

    try:
        res = callback(result)
        if inspect.isawaitable(res):
            await res
    except Exception:
        logger.exception(f"Unhandled exception in request callback {callback!r}!")


class PendingRequest(object):
    """
    A request that has been sent and is waiting for its response.

    The callback of a pending request is invoked exactly once.
    """

    def __init__(self, request_id: int, url: str, token: str, route: Optional[str],
                 callback: Optional[ResultCallback] = None):
        #: The unique ID of this request.
        self.id = request_id

        #: The URL this request was sent to.
        self.url = url

        #: The token this request was made with.
        self.token = token

        #: The rate limit route of this request, if any.
        self.route = route

        #: The callback to invoke with the result.
        self.callback = callback

        self._completed = False

    @property
    def completed(self) -> bool:
        return self._completed

    async def complete(self, result: RESTResult) -> bool:
        """
        Completes this request, invoking the callback.

        :return: False if this request was already completed.
        """
        if self._completed:
            return False

        self._completed = True
        await _invoke(self.callback, result)
        return True

    def __repr__(self) -> str:
        return f"<PendingRequest id={self.id} url={self.url!r}>"


# more of a namespace
class Endpoints:
    API_VERSION = 6
    API_BASE = "/api/v{}".format(API_VERSION)

    USER_ID = "/users/{user_id}"
    USER_ME = "/users/@me"
    USER_CHANNELS = USER_ME + "/channels"

    GATEWAY = "/gateway"
    GATEWAY_BOT = "/gateway/bot"

    GUILD_ID_BASE = "/guilds/{guild_id}"
    GUILD_CHANNELS = GUILD_ID_BASE + "/channels"
    GUILD_MEMBERS = GUILD_ID_BASE + "/members"
    GUILD_MEMBER = GUILD_MEMBERS + "/{member_id}"

    CHANNEL_BASE = "/channels/{channel_id}"
    CHANNEL_TYPING = CHANNEL_BASE + "/typing"
    CHANNEL_MESSAGES = CHANNEL_BASE + "/messages"
    CHANNEL_MESSAGE = CHANNEL_MESSAGES + "/{message_id}"
    CHANNEL_MESSAGE_BULK_DELETE = CHANNEL_MESSAGES + "/bulk-delete"
    CHANNEL_PINS = CHANNEL_BASE + "/pins"
    CHANNEL_PIN_MESSAGE = CHANNEL_PINS + "/{message_id}"

    def __init__(self, base_url: str = "https://discord.com"):
        """
        :param base_url: The base URL for this set of endpoints.
        """
        self.BASE = base_url


class HTTPClient(object):
    """
    The HTTP client object used to make requests to Discord's servers.

    If a particular method is not listed here, you can use :meth:`.HTTPClient.request` or one
    of the five following methods to make a manual request:

        - :meth:`HTTPClient.get`
        - :meth:`HTTPClient.post`
        - :meth:`HTTPClient.put`
        - :meth:`HTTPClient.patch`
        - :meth:`HTTPClient.delete`

    Requests to ``/channels/{id}`` and ``/guilds/{id}`` paths are rate limited per route by
    the :class:`.RateLimiter`, which may be shared between several clients.

    :param token: The token to use for all HTTP requests.
    :param bot: Is this client a bot?
    :param max_connections: The max connections for this HTTP client.
    :param timeout: How long to wait for a response, in seconds.
    :param base_url: The base URL of the API.
    :param ratelimiter: The :class:`.RateLimiter` to use. A new one is made if not passed.
    """

    TIMEOUT = 30

    def __init__(self, token: str, *,
                 bot: bool = True,
                 max_connections: int = 10,
                 timeout: float = None,
                 base_url: str = None,
                 ratelimiter: RateLimiter = None):
        #: The token used for all requests.
        self.token = token

        # Calculated headers
        headers = {
            "User-Agent": curlew.USER_AGENT,
            "Authorization": "{}{}".format("Bot " if bot else "", self.token)
        }

        self.endpoints = Endpoints() if base_url is None else Endpoints(base_url)
        self.max_connections = max_connections
        self._session: Optional[asks.Session] = None
        self.headers = headers
        self.timeout = self.TIMEOUT if timeout is None else timeout

        #: The rate limiter for this client.
        self.ratelimiter = ratelimiter if ratelimiter is not None else RateLimiter()

        #: The requests currently waiting for a response, by ID.
        self.pending: Dict[int, PendingRequest] = {}

        self._request_ids = itertools.count()
        self._gateway_urls = lrucache(16)
        self._is_bot = bot

    @property
    def session(self) -> asks.Session:
        """
        :return: The :class:`asks.Session` used for requests, made on first use.
        """
        if self._session is None:
            self._session = asks.Session(connections=self.max_connections)

        return self._session

    @staticmethod
    def get_response_data(content: bytes) -> Any:
        """
        Decodes the JSON body of a response. An empty body decodes to an empty dict.

        :raises ValueError: If the body is not valid JSON.
        """
        if not content:
            return {}

        return json.loads(content)

    async def _make_request(self, method: str, url: str, *,
                            headers: Dict[str, str],
                            json: Any = None,
                            params: Dict[str, Any] = None) -> Response:
        """
        Makes a request via the current session.

        :returns: The response.
        """
        kwargs = {}
        if json is not None:
            kwargs["json"] = json

        if params is not None:
            kwargs["params"] = params

        return await self.session.request(method, url, headers=headers, **kwargs)

    def _make_headers(self, headers: Dict[str, str] = None, reason: str = None) -> Dict[str, str]:
        final = self.headers.copy()
        if headers is not None:
            # the auth headers always win
            final = {**headers, **final}

        if reason is not None:
            final["X-Audit-Log-Reason"] = quote(reason)

        return final

    def _make_result(self, pending: PendingRequest, response: Response) -> RESTResult:
        headers = {str(k).lower(): v for k, v in response.headers.items()}
        self.ratelimiter.record_headers(pending.token, pending.route, headers)

        status = response.status_code
        try:
            data = self.get_response_data(response.content)
        except ValueError as e:
            logger.error(f"{pending.id}: {pending.url}: {status}: invalid JSON body: {e}")
            data = None
            if 200 <= status < 300:
                return RESTResult(status=status, error=f"Invalid JSON body: {e}",
                                  headers=headers)

        if 200 <= status < 300:
            logger.debug(f"{pending.id}: {pending.url}: {status}")
            return RESTResult(data=data, status=status, headers=headers)

        logger.warning(f"{pending.id}: {pending.url}: {status}: {data}")
        message = data.get("message") if isinstance(data, dict) else None
        error = message or f"HTTP {status}"

        if status == 429:
            # the body has milliseconds, the header has seconds
            retry_after = None
            try:
                if isinstance(data, dict) and data.get("retry_after") is not None:
                    retry_after = float(data["retry_after"]) / 1000
                elif headers.get("retry-after") is not None:
                    retry_after = float(headers["retry-after"])
            except (TypeError, ValueError):
                logger.warning(f"{pending.id}: {pending.url}: invalid retry after in 429 "
                               "response, ignoring it")

            if retry_after is not None:
                self.ratelimiter.record_retry_after(pending.token, pending.route, retry_after)

            return RESTResult(status=status, error=error, headers=headers, error_data=data,
                              rate_limited=True)

        return RESTResult(status=status, error=error, headers=headers, error_data=data)

    async def request(self, method: str, path: str, *,
                      json: Any = None,
                      headers: Dict[str, str] = None,
                      params: Dict[str, Any] = None,
                      reason: str = None,
                      callback: ResultCallback = None) -> RESTResult:
        """
        Makes a rate-limited request.

        The rate limiter is consulted first; a withheld request never reaches the network and
        resolves to a result with :attr:`.RESTResult.rate_limited` set.

        :param method: The HTTP method. One of GET, POST, PUT, PATCH, DELETE.
        :param path: The path, relative to the API base, starting with ``/``.
        :param json: The JSON body to send, if any.
        :param headers: Extra headers to send.
        :param params: Query string parameters.
        :param reason: The audit log reason, if any.
        :param callback: A callable invoked exactly once with the result.
        :raises ValueError: If the method or path is invalid.
        """
        verb = method.upper() if isinstance(method, str) else method
        if verb not in METHODS:
            logger.error(f"HTTP method not recognized: {method!r}")
            raise ValueError(f"Unknown HTTP method: {method}")

        if not isinstance(path, str) or not path.startswith("/"):
            raise ValueError(f"Path must start with '/': {path!r}")

        route = get_route(path)
        decision = self.ratelimiter.allow(self.token, route)
        if not decision:
            result = RESTResult(error=decision.reason, rate_limited=True)
            await _invoke(callback, result)
            return result

        url = self.endpoints.BASE + Endpoints.API_BASE + path
        pending = PendingRequest(next(self._request_ids), url, self.token, route, callback)
        self.pending[pending.id] = pending

        try:
            logger.debug(f"{pending.id}: {verb} {url} => (pending)")
            try:
                with trio.fail_after(self.timeout):
                    response = await self._make_request(
                        verb, url, headers=self._make_headers(headers, reason),
                        json=json, params=params
                    )
            except trio.TooSlowError:
                logger.error(f"{pending.id}: {url}: timed out after {self.timeout}s")
                result = RESTResult(error=f"Request timed out after {self.timeout} seconds")
            except (OSError, AsksException, RemoteProtocolError) as e:
                logger.error(f"{pending.id}: {url}: error: {e!r}")
                result = RESTResult(error=f"Transport error: {e!r}")
            else:
                result = self._make_result(pending, response)
        finally:
            self.pending.pop(pending.id, None)

        await pending.complete(result)
        return result

    def request_soon(self, nursery: trio.Nursery, callback: ResultCallback,
                     method: str, path: str, **kwargs) -> None:
        """
        Spawns a request in the background, invoking ``callback`` with the result.

        The method and path are validated before anything is spawned.

        :param nursery: The nursery to spawn the request in.
        :param callback: The callable to invoke exactly once with the :class:`.RESTResult`.
        """
        if method.upper() not in METHODS:
            raise ValueError(f"Unknown HTTP method: {method}")

        async def _runner():
            await self.request(method, path, callback=callback, **kwargs)

        nursery.start_soon(_runner)

    async def get(self, path: str, **kwargs) -> RESTResult:
        """
        Makes a GET request.

        :param path: The path to request.
        """
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> RESTResult:
        """
        Makes a POST request.

        :param path: The path to request.
        """
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> RESTResult:
        """
        Makes a PUT request.

        :param path: The path to request.
        """
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs) -> RESTResult:
        """
        Makes a PATCH request.

        :param path: The path to request.
        """
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> RESTResult:
        """
        Makes a DELETE request.

        :param path: The path to request.
        """
        return await self.request("DELETE", path, **kwargs)

    # Non-generic methods
    async def get_gateway_url(self, *, cached: bool = True) -> str:
        """
        Gets the websocket gateway URL.

        :param cached: If a previously fetched URL may be returned.
        :return: The websocket gateway URL to use.
        :raises HTTPException: If the URL could not be fetched.
        """
        key = self.endpoints.BASE
        if cached and key in self._gateway_urls:
            logger.info(f"Using cached gateway URL for {key}")
            return self._gateway_urls[key]

        data = (await self.get(Endpoints.GATEWAY)).raise_for_status()
        if "url" not in data:
            raise HTTPException(None, {"message": "\"url\" field not found in gateway response"})

        self._gateway_urls[key] = data["url"]
        logger.info(f"Cached gateway URL for {key}: {data['url']}")
        return data["url"]

    def invalidate_gateway_url(self) -> None:
        """
        Drops the cached gateway URL, so the next lookup fetches a new one.
        """
        try:
            del self._gateway_urls[self.endpoints.BASE]
        except KeyError:
            pass

    async def get_gateway_bot(self) -> RESTResult:
        """
        Gets the gateway URL and the recommended shard count for this bot.
        """
        if not self._is_bot:
            raise Forbidden(403, {"code": 20002, "message": "Only bots can use this endpoint"})

        return await self.get(Endpoints.GATEWAY_BOT)

    async def get_current_user(self) -> RESTResult:
        """
        Gets the current user.
        """
        return await self.get(Endpoints.USER_ME)

    async def get_user(self, user_id: int) -> RESTResult:
        """
        Gets a user from a user ID.

        :param user_id: The ID of the user to fetch.
        """
        return await self.get(Endpoints.USER_ID.format(user_id=user_id))

    async def create_dm(self, recipient_id: int) -> RESTResult:
        """
        Opens a DM channel with a user.

        :param recipient_id: The ID of the user to open a DM with.
        """
        return await self.post(Endpoints.USER_CHANNELS, json={"recipient_id": str(recipient_id)})

    # Channels
    async def get_channel(self, channel_id: int) -> RESTResult:
        """
        Gets a channel by ID.
        """
        return await self.get(Endpoints.CHANNEL_BASE.format(channel_id=channel_id))

    async def modify_channel(self, channel_id: int, *, reason: str = None,
                             **fields) -> RESTResult:
        """
        Updates a channel's settings.

        :param channel_id: The ID of the channel to edit.
        :param fields: The fields to change, such as ``name``, ``topic`` or ``position``.
        """
        url = Endpoints.CHANNEL_BASE.format(channel_id=channel_id)
        return await self.patch(url, json=fields, reason=reason)

    async def delete_channel(self, channel_id: int, *, reason: str = None) -> RESTResult:
        """
        Deletes a channel, or closes a DM.
        """
        url = Endpoints.CHANNEL_BASE.format(channel_id=channel_id)
        return await self.delete(url, reason=reason)

    async def get_messages(self, channel_id: int, *,
                           before: int = None, after: int = None, around: int = None,
                           limit: int = 50) -> RESTResult:
        """
        Gets a list of messages from a channel.

        :param channel_id: The channel to get messages from.
        :param before: Get messages before this snowflake.
        :param after: Get messages after this snowflake.
        :param around: Get messages around this snowflake.
        :param limit: The maximum number of messages to get.
        """
        params = {"limit": str(limit)}
        for name, value in (("before", before), ("after", after), ("around", around)):
            if value is not None:
                params[name] = str(value)

        url = Endpoints.CHANNEL_MESSAGES.format(channel_id=channel_id)
        return await self.get(url, params=params)

    async def get_message(self, channel_id: int, message_id: int) -> RESTResult:
        """
        Gets a single message from a channel.
        """
        url = Endpoints.CHANNEL_MESSAGE.format(channel_id=channel_id, message_id=message_id)
        return await self.get(url)

    async def send_message(self, channel_id: int, content: str = None, *,
                           tts: bool = False, embed: dict = None) -> RESTResult:
        """
        Sends a message to a channel.

        :param channel_id: The ID of the channel to send to.
        :param content: The content of the message.
        :param tts: Is this message a text to speech message?
        :param embed: The embed dict to send with the message.
        """
        payload = {"tts": tts}
        if content is not None:
            payload["content"] = content

        if embed is not None:
            payload["embed"] = embed

        url = Endpoints.CHANNEL_MESSAGES.format(channel_id=channel_id)
        return await self.post(url, json=payload)

    async def edit_message(self, channel_id: int, message_id: int, content: str = None, *,
                           embed: dict = None) -> RESTResult:
        """
        Edits a message.
        """
        payload = {}
        if content is not None:
            payload["content"] = content

        if embed is not None:
            payload["embed"] = embed

        url = Endpoints.CHANNEL_MESSAGE.format(channel_id=channel_id, message_id=message_id)
        return await self.patch(url, json=payload)

    async def delete_message(self, channel_id: int, message_id: int, *,
                             reason: str = None) -> RESTResult:
        """
        Deletes a message.
        """
        url = Endpoints.CHANNEL_MESSAGE.format(channel_id=channel_id, message_id=message_id)
        return await self.delete(url, reason=reason)

    async def bulk_delete_messages(self, channel_id: int, message_ids: List[int]) -> RESTResult:
        """
        Deletes between 2 and 100 messages at once.
        """
        if not 2 <= len(message_ids) <= 100:
            raise ValueError("Can only bulk delete between 2 and 100 messages")

        url = Endpoints.CHANNEL_MESSAGE_BULK_DELETE.format(channel_id=channel_id)
        return await self.post(url, json={"messages": [str(i) for i in message_ids]})

    async def trigger_typing(self, channel_id: int) -> RESTResult:
        """
        Starts typing in a channel.
        """
        return await self.post(Endpoints.CHANNEL_TYPING.format(channel_id=channel_id))

    async def get_pinned_messages(self, channel_id: int) -> RESTResult:
        """
        Gets the pinned messages of a channel.
        """
        return await self.get(Endpoints.CHANNEL_PINS.format(channel_id=channel_id))

    async def pin_message(self, channel_id: int, message_id: int) -> RESTResult:
        """
        Pins a message.
        """
        url = Endpoints.CHANNEL_PIN_MESSAGE.format(channel_id=channel_id, message_id=message_id)
        return await self.put(url)

    async def unpin_message(self, channel_id: int, message_id: int) -> RESTResult:
        """
        Unpins a message.
        """
        url = Endpoints.CHANNEL_PIN_MESSAGE.format(channel_id=channel_id, message_id=message_id)
        return await self.delete(url)

    # Guilds
    async def get_guild(self, guild_id: int) -> RESTResult:
        """
        Gets a guild by ID.
        """
        return await self.get(Endpoints.GUILD_ID_BASE.format(guild_id=guild_id))

    async def get_guild_channels(self, guild_id: int) -> RESTResult:
        """
        Gets the channels of a guild.
        """
        return await self.get(Endpoints.GUILD_CHANNELS.format(guild_id=guild_id))

    async def get_guild_member(self, guild_id: int, member_id: int) -> RESTResult:
        """
        Gets a single member of a guild.
        """
        url = Endpoints.GUILD_MEMBER.format(guild_id=guild_id, member_id=member_id)
        return await self.get(url)

    async def get_guild_members(self, guild_id: int, *,
                                limit: int = 1, after: int = None) -> RESTResult:
        """
        Gets a list of members of a guild.

        :param guild_id: The guild to get members of.
        :param limit: The maximum number of members to get, at most 1000.
        :param after: Get members with an ID above this snowflake.
        """
        params = {"limit": str(limit)}
        if after is not None:
            params["after"] = str(after)

        url = Endpoints.GUILD_MEMBERS.format(guild_id=guild_id)
        return await self.get(url, params=params)

    async def remove_guild_member(self, guild_id: int, member_id: int, *,
                                  reason: str = None) -> RESTResult:
        """
        Kicks a member from a guild.
        """
        url = Endpoints.GUILD_MEMBER.format(guild_id=guild_id, member_id=member_id)
        return await self.delete(url, reason=reason)
