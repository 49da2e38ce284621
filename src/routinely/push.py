"""Push delivery: fan a notification out to every registered device of a user.

Devices are Discord user ids stored in ``devices/<user_id>.yaml``; a push is a
DM embed to each of them. Delivery is best-effort: ``send`` returns False when
the user has no device or every DM failed, and never raises for a provider
failure.
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from typing import Protocol

import discord
import yaml

from routinely.storage import DATA_DIR

DEVICES_DIR = DATA_DIR / "devices"

log = logging.getLogger(__name__)

_MAX_FIELDS = 10


@dataclass(frozen=True, slots=True)
class PushMessage:
    title: str
    body: str
    data: dict[str, str] = field(default_factory=dict)


class PushSender(Protocol):
    async def send(self, user_id: str, message: PushMessage) -> bool: ...


def list_devices(user_id: str) -> list[int]:
    filepath = DEVICES_DIR / f"{user_id}.yaml"
    if not filepath.exists():
        return []
    try:
        data = yaml.safe_load(filepath.read_text()) or []
    except yaml.YAMLError:
        log.warning("Ignoring unreadable device file: %s", filepath)
        return []
    return [int(d) for d in data if str(d).isdigit()]


def register_device(user_id: str, discord_id: int) -> None:
    devices = list_devices(user_id)
    if discord_id in devices:
        return
    DEVICES_DIR.mkdir(parents=True, exist_ok=True)
    (DEVICES_DIR / f"{user_id}.yaml").write_text(yaml.safe_dump([*devices, discord_id]))


def push_embed(message: PushMessage) -> discord.Embed:
    embed = discord.Embed(
        title=message.title[:256],
        description=message.body[:4096],
        color=discord.Color.blue(),
    )
    for key, value in list(message.data.items())[:_MAX_FIELDS]:
        embed.add_field(name=key, value=value[:1024] or "-", inline=True)
    return embed


class DiscordPushSender:
    def __init__(self, client: discord.Client) -> None:
        self._client = client

    async def send(self, user_id: str, message: PushMessage) -> bool:
        devices = list_devices(user_id)
        if not devices:
            log.info("No devices registered for user %s", user_id)
            return False
        if not self._client.is_ready():
            log.warning("Discord client not ready, dropping push for user %s", user_id)
            return False

        embed = push_embed(message)
        delivered = 0
        for discord_id in devices:
            try:
                user = self._client.get_user(discord_id) or await self._client.fetch_user(discord_id)
                dm = await user.create_dm()
                await dm.send(embed=embed)
                delivered += 1
            except discord.DiscordException:
                log.warning("Push to device %s of user %s failed", discord_id, user_id, exc_info=True)
        return delivered > 0


class NullPushSender:
    """Used when no Discord token is configured."""

    async def send(self, user_id: str, message: PushMessage) -> bool:
        log.info("Push unavailable, not delivering %r to user %s", message.title, user_id)
        return False


def run_device_command(argv: list[str]) -> None:
    parser = argparse.ArgumentParser(prog="routinely device")
    sub = parser.add_subparsers(dest="action")

    add_p = sub.add_parser("add", help="Deliver a user's pushes to a Discord account")
    add_p.add_argument("discord_id", type=int, help="Discord user ID")
    add_p.add_argument("--user", "-u", required=True, help="User ID")

    list_p = sub.add_parser("list", help="Show a user's devices")
    list_p.add_argument("--user", "-u", required=True, help="User ID")

    args = parser.parse_args(argv)

    if args.action == "add":
        register_device(args.user, args.discord_id)
        print(f"registered {args.discord_id} for {args.user}")
    elif args.action == "list":
        devices = list_devices(args.user)
        print("\n".join(f"  {d}" for d in devices) if devices else "no devices")
    else:
        parser.print_help()
        sys.exit(1)
