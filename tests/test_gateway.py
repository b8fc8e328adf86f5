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

import json
import logging
import zlib

import pytest
import trio
from trio.testing import wait_all_tasks_blocked

from curlew.core.gateway import GatewayHandler, GatewayState
from curlew.core.ratelimit import GatewayRateLimiter
from curlew.exc import FatalGatewayError, HTTPException

from .conftest import FakeGatewayServer


def make_gateway(server, dispatcher=None, **kwargs) -> GatewayHandler:
    return GatewayHandler("token", "wss://gateway.test",
                          dispatcher=dispatcher,
                          websocket_factory=server.factory,
                          **kwargs)


async def test_identify_on_first_connect(server, dispatcher, nursery):
    gw = make_gateway(server, dispatcher)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()

    ws = server.current
    assert ws.url == "wss://gateway.test/?v=6&encoding=json"
    assert ws.sent_ops() == [1, 2]
    assert ws.sent[0]["d"] is None

    identify = ws.sent[1]["d"]
    assert identify["token"] == "token"
    assert identify["shard"] == [0, 1]
    assert identify["large_threshold"] == 50
    assert identify["compress"] is False
    assert identify["properties"]["$browser"] == "curlew"
    assert "intents" not in identify

    assert gw.state == GatewayState.CONNECTED
    assert gw.info.session_id == "session-1"
    assert gw.info.sequence == 1
    assert gw.info.heartbeat_interval == 41250
    assert gw.heartbeat_stats.heartbeat_acks == 1
    assert dispatcher.names == ["READY"]

    await gw.disconnect()


async def test_identify_payload_options(server, nursery):
    gw = make_gateway(server, shard_id=1, shard_count=2, large_threshold=100, compress=True,
                      properties={"browser": "my-bot"}, intents=513)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()

    identify = server.current.sent[1]["d"]
    assert identify["shard"] == [1, 2]
    assert identify["large_threshold"] == 100
    assert identify["compress"] is True
    assert identify["properties"]["$browser"] == "my-bot"
    assert identify["properties"]["$device"] == "curlew"
    assert identify["intents"] == 513


async def test_invalid_config_is_clamped():
    gw = GatewayHandler("token", "wss://gateway.test", shard_id=3, shard_count=2,
                        large_threshold=1000)
    assert (gw.info.shard_id, gw.info.shard_count) == (0, 2)
    assert gw.info.large_threshold == 50

    gw = GatewayHandler("token", "wss://gateway.test", shard_id=0, shard_count=0)
    assert (gw.info.shard_id, gw.info.shard_count) == (0, 1)


async def test_heartbeats_every_interval(server, nursery, autojump_clock):
    gw = make_gateway(server)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    ws = server.current
    assert ws.sent_ops() == [1, 2]

    await trio.sleep(41.3)
    assert ws.sent_ops() == [1, 2, 1]
    # heartbeats carry the last sequence seen
    assert ws.sent[2]["d"] == 1

    await trio.sleep(41.25)
    assert ws.sent_ops() == [1, 2, 1, 1]
    assert gw.heartbeat_stats.heartbeats == 3
    assert gw.heartbeat_stats.heartbeat_acks == 3


async def test_resume_after_close(server, dispatcher, nursery, autojump_clock):
    connects = []
    gw = make_gateway(server, dispatcher, on_connect=connects.append)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    first = server.current
    assert len(connects) == 1

    first.server_close(4000, "Unknown error")
    await wait_all_tasks_blocked()
    assert gw.state == GatewayState.DISCONNECTED
    assert gw.info.last_close_code == 4000

    # waits for one heartbeat interval before reconnecting
    await trio.sleep(40)
    assert len(server.connections) == 1

    await trio.sleep(2)
    assert len(server.connections) == 2
    assert len(connects) == 2

    second = server.current
    assert second.sent[0] == {"op": 1, "d": 1}
    assert second.sent[1] == {
        "op": 6,
        "d": {"token": "token", "session_id": "session-1", "seq": 1},
    }
    assert gw.state == GatewayState.CONNECTED
    assert gw.info.session_id == "session-1"
    assert gw.info.sequence == 2
    assert dispatcher.names == ["READY", "RESUMED"]


async def test_fatal_close_code_stops_the_session():
    server = FakeGatewayServer(identify_close_code=4004)
    gw = make_gateway(server)

    with pytest.raises(FatalGatewayError) as e:
        await gw.run()

    assert e.value.close_code == 4004
    assert e.value.reason == "Authentication failed"
    assert len(server.connections) == 1
    assert gw.state == GatewayState.DISCONNECTED


async def test_invalid_session_reidentifies(server, dispatcher, nursery):
    gw = make_gateway(server, dispatcher)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    ws = server.current

    for _ in range(3):
        server.dispatch(ws, "MESSAGE_CREATE", {"id": "1"})
    await wait_all_tasks_blocked()
    assert gw.info.sequence == 4

    ws.server_send({"op": 9, "d": False})
    await wait_all_tasks_blocked()

    assert ws.sent_ops() == [1, 2, 2]
    assert gw.info.session_id == "session-2"
    # a fresh identify starts the sequence over
    assert gw.info.sequence == 1
    assert gw.state == GatewayState.CONNECTED
    assert dispatcher.names == ["READY"] + ["MESSAGE_CREATE"] * 3 + ["READY"]


async def test_reconnect_request_resumes_immediately(server, nursery):
    gw = make_gateway(server)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    first = server.current

    first.server_send({"op": 7, "d": None})
    await wait_all_tasks_blocked()

    assert first.closed_with[0] == 4000
    assert len(server.connections) == 2
    assert server.current.sent_ops() == [1, 6]
    assert gw.state == GatewayState.CONNECTED


async def test_zombied_connection_is_closed(nursery, autojump_clock):
    server = FakeGatewayServer(auto_ack=False)
    gw = make_gateway(server)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    first = server.current

    await trio.sleep(82)
    assert first.sent_ops() == [1, 2, 1]
    assert not first.closed

    await trio.sleep(1)
    assert first.closed_with[0] == 4000

    await trio.sleep(42)
    assert len(server.connections) == 2
    assert server.current.sent_ops() == [1, 6]


async def test_connect_failures_are_retried(nursery, autojump_clock):
    server = FakeGatewayServer(connect_failures=2)
    gw = make_gateway(server)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    assert server.connect_attempts == 1

    # no HELLO yet, so the default interval is used
    await trio.sleep(10.5)
    assert server.connect_attempts == 2

    await trio.sleep(10)
    assert server.connect_attempts == 3
    assert len(server.connections) == 1
    assert gw.state == GatewayState.CONNECTED


async def test_failed_reconnect_waits_for_the_interval(server, nursery, autojump_clock):
    gw = make_gateway(server)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    assert server.connect_attempts == 1

    server.connect_failures = 100
    server.current.server_send({"op": 7, "d": None})
    await wait_all_tasks_blocked()
    # the requested reconnect is immediate, the retry after it is not
    assert server.connect_attempts == 2

    await trio.sleep(41)
    assert server.connect_attempts == 2

    await trio.sleep(1)
    assert server.connect_attempts == 3

    await trio.sleep(41.25)
    assert server.connect_attempts == 4


async def test_gateway_url_is_resolved_after_failures(nursery, autojump_clock):
    server = FakeGatewayServer(connect_failures=6)
    results = [HTTPException(500, {"message": "down"}), "wss://fresh.test"]

    async def resolver():
        result = results.pop(0)
        if isinstance(result, Exception):
            raise result

        return result

    gw = make_gateway(server, url_resolver=resolver)
    nursery.start_soon(gw.run)

    await trio.sleep(25)
    assert server.connect_attempts == 3
    assert len(results) == 1
    assert gw.info.gateway_url == "wss://gateway.test/?v=6&encoding=json"

    await trio.sleep(30)
    assert server.connect_attempts == 6
    assert results == []
    assert gw.info.gateway_url == "wss://fresh.test/?v=6&encoding=json"

    await trio.sleep(10)
    assert server.current.url == "wss://fresh.test/?v=6&encoding=json"
    assert gw.state == GatewayState.CONNECTED


async def test_disconnect_stops_reconnecting(server, nursery, autojump_clock):
    gw = make_gateway(server)
    finished = trio.Event()

    async def runner():
        await gw.run()
        finished.set()

    nursery.start_soon(runner)
    await wait_all_tasks_blocked()
    ws = server.current

    await gw.disconnect()
    await trio.sleep(100)

    assert finished.is_set()
    assert ws.closed_with == (1000, "Client disconnecting")
    assert len(server.connections) == 1
    assert gw.state == GatewayState.DISCONNECTED


async def test_disconnect_before_run(server, autojump_clock):
    gw = make_gateway(server)
    await gw.disconnect()

    with trio.fail_after(1):
        await gw.run()

    assert server.connect_attempts == 0
    assert gw.state == GatewayState.DISCONNECTED


async def test_sequence_never_decreases(server, dispatcher, nursery):
    gw = make_gateway(server, dispatcher)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    ws = server.current

    ws.server_send({"op": 0, "t": "TYPING_START", "s": 5, "d": {}})
    ws.server_send({"op": 0, "t": "TYPING_START", "s": 3, "d": {}})
    await wait_all_tasks_blocked()

    assert gw.info.sequence == 5
    assert dispatcher.names == ["READY", "TYPING_START", "TYPING_START"]


async def test_bad_frames_are_dropped(server, dispatcher, nursery):
    gw = make_gateway(server, dispatcher)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    ws = server.current

    ws.server_send("this is not json")
    ws.server_send([1, 2, 3])
    ws.server_send({"d": None})
    ws.server_send({"op": 99, "d": None})
    # outbound-only opcode
    ws.server_send({"op": 2, "d": {}})
    # inbound heartbeat needs no answer
    ws.server_send({"op": 1, "d": None})
    ws.server_send({"op": 0, "s": 2, "d": {}})
    server.dispatch(ws, "TYPING_START", {"user_id": "1"})
    await wait_all_tasks_blocked()

    assert not ws.closed
    assert ws.sent_ops() == [1, 2]
    assert gw.state == GatewayState.CONNECTED
    assert dispatcher.names == ["READY", "TYPING_START"]


async def test_zlib_stream_frames(server, dispatcher, nursery):
    gw = make_gateway(server, dispatcher, zlib_stream=True)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    ws = server.current
    assert ws.url.endswith("&compress=zlib-stream")

    compressor = zlib.compressobj()

    def compress(payload: dict) -> bytes:
        data = json.dumps(payload).encode()
        return compressor.compress(data) + compressor.flush(zlib.Z_SYNC_FLUSH)

    first = compress({"op": 0, "t": "MESSAGE_CREATE", "s": 2, "d": {"id": "1"}})
    ws.server_send(first[:4])
    ws.server_send(first[4:])
    ws.server_send(compress({"op": 0, "t": "MESSAGE_DELETE", "s": 3, "d": {"id": "1"}}))
    await wait_all_tasks_blocked()

    assert dispatcher.names == ["READY", "MESSAGE_CREATE", "MESSAGE_DELETE"]
    assert gw.info.sequence == 3


async def test_compressed_payloads(server, dispatcher, nursery):
    gw = make_gateway(server, dispatcher)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    ws = server.current

    ws.server_send(b"definitely not zlib")
    payload = {"op": 0, "t": "GUILD_CREATE", "s": 2, "d": {"id": "1"}}
    ws.server_send(zlib.compress(json.dumps(payload).encode()))
    await wait_all_tasks_blocked()

    assert not ws.closed
    assert dispatcher.names == ["READY", "GUILD_CREATE"]


async def test_outbound_frames_are_rate_limited(server, nursery):
    gw = make_gateway(server, send_limiter=GatewayRateLimiter(limit=3))
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()
    ws = server.current

    assert await gw.send_status("idle", game={"name": "chess", "type": 0})
    assert not await gw.request_guild_members(1234)

    assert ws.sent_ops() == [1, 2, 3]
    assert ws.sent[2]["d"] == {"since": None, "game": {"name": "chess", "type": 0},
                               "status": "idle", "afk": False}


async def test_request_guild_members(server, nursery):
    gw = make_gateway(server)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()

    assert await gw.request_guild_members(1234, query="cur", limit=10)
    assert server.current.sent[-1] == {
        "op": 8,
        "d": {"guild_id": "1234", "query": "cur", "limit": 10},
    }


async def test_send_status_rejects_unknown_statuses(server, nursery):
    gw = make_gateway(server)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()

    with pytest.raises(ValueError):
        await gw.send_status("sleeping")


async def test_send_without_connection():
    gw = GatewayHandler("token", "wss://gateway.test")
    assert not await gw.send_status("online")


async def test_log_messages(server, nursery, caplog):
    caplog.set_level(logging.DEBUG, logger="curlew.gateway:shard-0")
    gw = make_gateway(server)
    gw.log_messages(True, logging.INFO)
    nursery.start_soon(gw.run)
    await wait_all_tasks_blocked()

    frames = [r for r in caplog.records
              if r.levelno == logging.INFO and r.getMessage()[:3] in (">> ", "<< ")]
    assert any(r.getMessage().startswith("<< ") for r in frames)
    assert any('"t": "READY"' in r.getMessage() for r in frames)
