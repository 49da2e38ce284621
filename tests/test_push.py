"""Tests for push.py -- device registry and Discord DM delivery."""

import asyncio

import discord

import routinely.push as push_mod
from routinely.push import (
    DiscordPushSender,
    NullPushSender,
    PushMessage,
    list_devices,
    push_embed,
    register_device,
)


class FakeChannel:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send(self, embed):
        if self.fail:
            raise discord.DiscordException("blocked")
        self.sent.append(embed)


class FakeUser:
    def __init__(self, channel):
        self.channel = channel

    async def create_dm(self):
        return self.channel


class FakeClient:
    def __init__(self, users, ready=True):
        self.users = users
        self.ready = ready

    def is_ready(self):
        return self.ready

    def get_user(self, discord_id):
        return self.users.get(discord_id)

    async def fetch_user(self, discord_id):
        raise discord.DiscordException(f"unknown user {discord_id}")


def test_embed_fields():
    message = PushMessage("Task Due: Report", "Your task is due now.", {"reminderId": "r1", "empty": ""})

    embed = push_embed(message)

    assert embed.title == "Task Due: Report"
    assert embed.description == "Your task is due now."
    assert [(f.name, f.value) for f in embed.fields] == [("reminderId", "r1"), ("empty", "-")]


def test_register_device_is_idempotent(data_dir):
    register_device("u1", 1234)
    register_device("u1", 1234)
    register_device("u1", 5678)

    assert list_devices("u1") == [1234, 5678]
    assert list_devices("u2") == []


def test_unreadable_device_file(data_dir):
    push_mod.DEVICES_DIR.mkdir(parents=True)
    (push_mod.DEVICES_DIR / "u1.yaml").write_text("[unclosed")

    assert list_devices("u1") == []


def test_send_to_every_device(data_dir):
    first, second = FakeChannel(), FakeChannel()
    register_device("u1", 1)
    register_device("u1", 2)
    sender = DiscordPushSender(FakeClient({1: FakeUser(first), 2: FakeUser(second)}))

    assert asyncio.run(sender.send("u1", PushMessage("Hi", "there")))
    assert len(first.sent) == len(second.sent) == 1


def test_partial_failure_still_delivers(data_dir):
    ok = FakeChannel()
    register_device("u1", 1)
    register_device("u1", 2)
    sender = DiscordPushSender(FakeClient({1: FakeUser(FakeChannel(fail=True)), 2: FakeUser(ok)}))

    assert asyncio.run(sender.send("u1", PushMessage("Hi", "there")))
    assert len(ok.sent) == 1


def test_no_devices_is_not_delivered(data_dir):
    sender = DiscordPushSender(FakeClient({}))

    assert asyncio.run(sender.send("u1", PushMessage("Hi", "there"))) is False


def test_client_not_ready(data_dir):
    channel = FakeChannel()
    register_device("u1", 1)
    sender = DiscordPushSender(FakeClient({1: FakeUser(channel)}, ready=False))

    assert asyncio.run(sender.send("u1", PushMessage("Hi", "there"))) is False
    assert channel.sent == []


def test_null_sender_never_delivers():
    assert asyncio.run(NullPushSender().send("u1", PushMessage("Hi", "there"))) is False


def test_unknown_account_is_skipped(data_dir):
    register_device("u1", 99)
    sender = DiscordPushSender(FakeClient({}))

    assert asyncio.run(sender.send("u1", PushMessage("Hi", "there"))) is False
