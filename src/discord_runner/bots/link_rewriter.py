"""
bots/link_rewriter.py — Twitter/X Link Rewriter Bot

Watches MESSAGE_CREATE events. A message carrying a twitter.com or x.com link
is deleted and reposted with the links pointed at vxtwitter.com (which embeds
properly), attributed to the original author.
"""

from __future__ import annotations

import re
from typing import Optional

from discord_runner.exceptions import RunnerError
from discord_runner.gateway.events import EventKind, Message
from discord_runner.gateway.http_api import make_create_message, make_delete_message
from discord_runner.gateway.protocol import GatewayReceiveEvent
from discord_runner.observability.logger import get_logger
from discord_runner.runner.client import RunnerClient
from discord_runner.runner.session import BotIdentity

log = get_logger(__name__)

_LINK_RE = re.compile(r"(https?://)(?:www\.)?(?:twitter|x)\.com/(\S+)", re.IGNORECASE)


def rewrite_links(content: str) -> Optional[str]:
    """Return `content` with every twitter/x link rewritten, or None if it has none."""
    rewritten, count = _LINK_RE.subn(r"\1vxtwitter.com/\2", content)
    return rewritten if count else None


class LinkRewriterBot:
    def __init__(self, client: RunnerClient, identity: BotIdentity):
        self._client = client
        self._identity = identity

    async def run(self) -> None:
        channel_id = await self._client.connect(self._identity)
        log.info("link_rewriter.connected", channel_id=channel_id, bot=self._identity.fingerprint)
        async for event in self._client.events():
            await self.handle(event)

    async def handle(self, event: GatewayReceiveEvent) -> bool:
        """Process one forwarded event. Returns True if a message was rewritten."""
        if event.kind is EventKind.READY:
            log.info("link_rewriter.ready", user=event.data.user.username)
            return False
        if event.kind is not EventKind.MESSAGE_CREATE:
            return False

        message: Message = event.data
        if message.author.bot:
            return False
        new_content = rewrite_links(message.content)
        if new_content is None:
            return False

        try:
            deleted = await self._client.http(
                self._identity, make_delete_message(message.channel_id, message.id)
            )
            if not deleted.ok:
                log.warning("link_rewriter.delete_failed", status=deleted.status, message_id=message.id)

            created = await self._client.http(
                self._identity,
                make_create_message(message.channel_id, f"<@{message.author.id}> shared a link:\n{new_content}"),
            )
        except RunnerError as e:
            log.warning("link_rewriter.request_failed", message_id=message.id, error=str(e))
            return False

        if not created.ok:
            log.warning("link_rewriter.repost_failed", status=created.status, message_id=message.id)
            return False
        log.info("link_rewriter.rewrote", message_id=message.id, channel=message.channel_id)
        return True
