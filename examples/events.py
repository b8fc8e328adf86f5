"""
An example bot that uses events.
"""

# Events are the main way of listening to things that happen to the bot.
# They are registered per session with ``session.set_callback("NAME", callback)``.

# Let's log all messages, and announce bans in the banned guild's first text channel.

import logging

import trio

from curlew import ChannelType, EventContext, open_client


# Callbacks take two params - the EventContext, which contains our shard ID as well as the
# client instance, and the raw event data.
async def log_message(ctx: EventContext, data: dict):
    author = data.get("author", {})
    print("Message received: `{}` from `{}`".format(data.get("content"), author.get("username")))
    # Let's also log the guild, if there is a guild.
    guild = ctx.client.guilds.get(int(data.get("guild_id", 0)))
    if guild is not None:
        print("Guild: {}".format(guild.name))
    # Finally, log the shard ID.
    print("Shard: {}".format(ctx.shard_id))


async def announce_ban(ctx: EventContext, data: dict):
    guild = ctx.client.guilds.get(int(data["guild_id"]))
    if guild is None:
        return

    for channel in guild.channels.values():
        if isinstance(channel.type, ChannelType) and channel.type.has_messages():
            await ctx.client.http.send_message(channel.id, "{} got bent"
                                               .format(data["user"]["username"]))
            break


async def main():
    async with open_client("MjYwOTUwODE2NTM2NTI2ODQ5.Cz2mGQ.SKl78a6NT6SBpwYQrIDnR1olPqo") as client:
        session = await client.connect()
        session.set_callback("MESSAGE_CREATE", log_message)
        session.set_callback("GUILD_BAN_ADD", announce_ban)


# Now, all that is left is to run the bot.
logging.basicConfig(level=logging.INFO)
trio.run(main)
