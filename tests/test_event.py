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

import logging

import trio
from trio.testing import wait_all_tasks_blocked

from curlew.core.event import STATE_HANDLERS, EventContext, EventDispatcher, GatewayEvent
from curlew.core.state import State

from .conftest import BOT_USER


def test_every_event_has_a_state_handler():
    for event in GatewayEvent:
        if event == GatewayEvent.UNKNOWN:
            continue

        assert hasattr(State, STATE_HANDLERS[event])


def test_set_callback():
    dispatcher = EventDispatcher()

    def callback(ctx, data):
        pass

    assert dispatcher.set_callback("MESSAGE_CREATE", callback)
    assert dispatcher.callbacks[GatewayEvent.MESSAGE_CREATE] is callback

    assert dispatcher.set_callback(GatewayEvent.GUILD_CREATE, callback)
    assert dispatcher.get_callback(GatewayEvent.GUILD_CREATE) is callback

    assert dispatcher.set_callback("MESSAGE_CREATE", None)
    assert GatewayEvent.MESSAGE_CREATE not in dispatcher.callbacks


def test_set_callback_rejects_unknown_names(caplog):
    dispatcher = EventDispatcher()
    dispatcher.set_callback("READY", print)

    assert not dispatcher.set_callback("NOT_AN_EVENT", print)
    assert not dispatcher.set_callback("UNKNOWN", print)
    assert list(dispatcher.callbacks) == [GatewayEvent.READY]
    assert any("NOT_AN_EVENT" in r.getMessage() for r in caplog.records)


async def test_callbacks_run_in_order(nursery):
    dispatcher = EventDispatcher()
    seen = []

    def sync_callback(ctx: EventContext, data):
        seen.append((ctx.event_name, data["n"]))

    async def async_callback(ctx: EventContext, data):
        await trio.sleep(0)
        seen.append((ctx.event_name, data["n"]))

    dispatcher.set_callback("MESSAGE_CREATE", sync_callback)
    dispatcher.set_callback("TYPING_START", async_callback)
    nursery.start_soon(dispatcher.run)

    for n in range(3):
        dispatcher.handle_dispatch(None, "MESSAGE_CREATE", {"n": n})
        dispatcher.handle_dispatch(None, "TYPING_START", {"n": n})

    # nothing runs inline
    assert seen == []

    await wait_all_tasks_blocked()
    assert seen == [
        ("MESSAGE_CREATE", 0), ("TYPING_START", 0),
        ("MESSAGE_CREATE", 1), ("TYPING_START", 1),
        ("MESSAGE_CREATE", 2), ("TYPING_START", 2),
    ]


async def test_default_callback(nursery):
    dispatcher = EventDispatcher()
    own, default = [], []
    dispatcher.set_callback("MESSAGE_CREATE", lambda ctx, data: own.append(ctx.event_name))
    dispatcher.set_default_callback(lambda ctx, data: default.append(ctx.event_name))
    nursery.start_soon(dispatcher.run)

    dispatcher.handle_dispatch(None, "MESSAGE_CREATE", {})
    dispatcher.handle_dispatch(None, "GUILD_UPDATE", {"id": "1"})
    dispatcher.handle_dispatch(None, "SOME_NEW_EVENT", {})
    await wait_all_tasks_blocked()

    assert own == ["MESSAGE_CREATE"]
    assert default == ["GUILD_UPDATE", "SOME_NEW_EVENT"]


async def test_callback_errors_are_logged(nursery, caplog):
    caplog.set_level(logging.ERROR, logger="curlew.events")
    dispatcher = EventDispatcher()
    seen = []

    async def bad_callback(ctx, data):
        raise RuntimeError("oops")

    dispatcher.set_callback("MESSAGE_CREATE", bad_callback)
    dispatcher.set_callback("MESSAGE_DELETE", lambda ctx, data: seen.append(data))
    nursery.start_soon(dispatcher.run)

    dispatcher.handle_dispatch(None, "MESSAGE_CREATE", {})
    dispatcher.handle_dispatch(None, "MESSAGE_DELETE", {"id": "1"})
    await wait_all_tasks_blocked()

    assert seen == [{"id": "1"}]
    assert any(r.exc_info and isinstance(r.exc_info[1], RuntimeError) for r in caplog.records)


async def test_state_is_updated_before_callbacks(nursery):
    state = State()
    dispatcher = EventDispatcher(state)
    users = []
    dispatcher.set_callback("READY", lambda ctx, data: users.append(state.user))
    nursery.start_soon(dispatcher.run)

    dispatcher.handle_dispatch(None, "READY", {"user": BOT_USER, "guilds": []})
    await wait_all_tasks_blocked()

    assert users[0].id == 100


async def test_state_errors_do_not_stop_callbacks(nursery):
    dispatcher = EventDispatcher(State())
    seen = []
    dispatcher.set_callback("CHANNEL_UPDATE", lambda ctx, data: seen.append(data))
    nursery.start_soon(dispatcher.run)

    # no channel ID, so the state handler fails
    dispatcher.handle_dispatch(None, "CHANNEL_UPDATE", {})
    await wait_all_tasks_blocked()

    assert seen == [{}]


async def test_close_drains_queue():
    dispatcher = EventDispatcher()
    seen = []
    dispatcher.set_callback("MESSAGE_CREATE", lambda ctx, data: seen.append(data))
    dispatcher.handle_dispatch(None, "MESSAGE_CREATE", 1)
    dispatcher.handle_dispatch(None, "MESSAGE_CREATE", 2)
    dispatcher.close()

    # returns once the queue is empty
    await dispatcher.run()
    assert seen == [1, 2]

    dispatcher.handle_dispatch(None, "MESSAGE_CREATE", 3)
    assert seen == [1, 2]
