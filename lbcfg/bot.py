"""Chat transports for lbcfg.

Key classes:
    SignalBot: Connects to the Signal CLI REST API via WebSocket,
        classifies each message as a group or direct message and hands
        it to the LbcfgHandler, replying to the group or the sender.
    ShellBot: Line-oriented console transport for local use. Console
        messages are never treated as private.
"""

import asyncio
import base64
import hashlib
import json
import sys
import time as _time
from collections import OrderedDict
from typing import List, Optional, TextIO, Tuple

import aiohttp
import structlog

from .handler import LbcfgHandler
from .models import InboundMessage, Origin
from .security import check_rate_limit, is_authorized, mask, sanitize_input

logger = structlog.get_logger("lbcfg.bot")

# Signal encodes @-mentions as this placeholder character in the body
MENTION_PLACEHOLDER = "\ufffc"

GROUP_PREFIX = "group."

RECONNECT_DELAY = 5  # seconds, doubled per failure
MAX_RECONNECT_DELAY = 300


class SignalBot:
    """Signal transport for the lbcfg handler.

    Owns the message lifecycle: WebSocket connection, deduplication,
    authorization, rate limiting, origin classification and reply
    delivery.

    Args:
        handler: Handler receiving every accepted message.
        api_url: Signal CLI REST API base URL.
        allowed_numbers: Phone numbers / UUIDs allowed to use the bot.
        robot_name: Name that addresses the bot in group chats.
    """

    def __init__(
        self,
        handler: LbcfgHandler,
        api_url: str,
        allowed_numbers: List[str],
        robot_name: str = "lita",
    ):
        self.handler = handler
        self.api_url = api_url.rstrip("/")
        self.allowed_numbers = list(allowed_numbers)
        self.robot_name = robot_name.lower()
        self.session: Optional[aiohttp.ClientSession] = None
        self.running = False
        self.account: Optional[str] = None
        self.account_uuid: Optional[str] = None
        self._processed_messages = OrderedDict()  # Dedup: msg_hash -> timestamp

    async def start(self):
        """Open the HTTP session and resolve the registered account."""
        self.session = aiohttp.ClientSession()
        self.running = True
        await self._get_account()
        logger.info("bot_started", account=self.account and mask(self.account))

    async def stop(self):
        """Close the HTTP session."""
        if not self.running:
            return
        self.running = False
        if self.session:
            await self.session.close()
        logger.info("bot_stopped")

    async def _fetch_account(self) -> bool:
        """One account lookup. Returns True once the API answered."""
        url = f"{self.api_url}/v1/accounts"
        async with self.session.get(url, timeout=aiohttp.ClientTimeout(total=10)) as resp:
            if resp.status != 200:
                logger.warning("account_request_failed", status=resp.status)
                return False
            accounts = await resp.json()

        if not accounts:
            logger.warning("no_accounts_registered")
            return True
        first = accounts[0]
        if isinstance(first, dict):
            self.account = first.get("number")
            self.account_uuid = first.get("uuid")
        else:
            self.account = first
        logger.info("account_found", account=mask(self.account or ""))
        return True

    async def _get_account(self, attempts: int = 12):
        """Resolve the registered account, waiting for the API to come up."""
        for attempt in range(1, attempts + 1):
            try:
                if await self._fetch_account():
                    return
                error = "unexpected status"
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                error = str(e)
            if attempt == attempts:
                break
            delay = min(5 * attempt, 15)
            logger.warning(
                "account_request_retry", error=error, attempt=attempt, retry_delay=delay,
            )
            await asyncio.sleep(delay)

        logger.error("account_request_failed_all_attempts", attempts=attempts)

    async def _send_message(self, recipient: str, message: str):
        """Send a message to a sender or a ``group.<id>`` recipient."""
        if not recipient.startswith(GROUP_PREFIX) and not is_authorized(
            recipient, self.allowed_numbers
        ):
            logger.warning("send_blocked_unauthorized", recipient=mask(recipient))
            return

        payload = {
            "message": message,
            "number": self.account,
            "recipients": [recipient],
        }
        try:
            url = f"{self.api_url}/v2/send"
            async with self.session.post(url, json=payload) as resp:
                if resp.status != 201:
                    body = await resp.text()
                    logger.warning("send_failed", status=resp.status, body=body[:200])
        except Exception as e:
            logger.error("send_error", error=str(e))

    def _strip_mention(self, text: str, mentions: List[dict]) -> Tuple[str, bool]:
        """Remove a leading bot mention; report whether there was one."""
        ours = {self.account, self.account_uuid} - {None}
        if text.startswith(MENTION_PLACEHOLDER) and any(
            m.get("number") in ours or m.get("uuid") in ours for m in mentions
        ):
            return text[1:].lstrip(" :,"), True

        lowered = text.lower()
        for lead in (f"@{self.robot_name}", self.robot_name):
            if lowered.startswith(lead):
                rest = text[len(lead):]
                if not rest or rest[0] in " :,":
                    return rest.lstrip(" :,"), True
        return text, False

    async def _process_message(
        self,
        sender: str,
        text: str,
        group_id: Optional[str] = None,
        mentions: Optional[List[dict]] = None,
    ):
        """Authorize, classify and hand one message to the handler."""
        if not is_authorized(sender, self.allowed_numbers):
            logger.warning("unauthorized_message", sender=mask(sender))
            return

        text = sanitize_input(text.strip())
        if not text:
            return

        if group_id:
            origin = Origin.GROUP
            reply_to = GROUP_PREFIX + base64.b64encode(group_id.encode()).decode()
            body, addressed = self._strip_mention(text, mentions or [])
        else:
            origin = Origin.DIRECT
            reply_to = sender
            body, _ = self._strip_mention(text, mentions or [])
            addressed = True

        if not check_rate_limit(sender):
            if addressed:
                await self._send_message(
                    reply_to, self.handler.translator.t("bot.rate_limited")
                )
            return

        logger.info(
            "message_received",
            sender=mask(sender), origin=origin.value,
            addressed=addressed, length=len(body),
        )

        message = InboundMessage(
            body=body,
            sender=sender,
            origin=origin,
            is_command=addressed,
            reply_to=reply_to,
        )

        async def send(reply: str) -> None:
            await self._send_message(reply_to, reply)

        await self.handler.handle(message, send)

    async def _consume(self, ws: aiohttp.ClientWebSocketResponse):
        """Handle frames until the socket closes or errors."""
        async for frame in ws:
            if frame.type == aiohttp.WSMsgType.TEXT:
                try:
                    data = json.loads(frame.data)
                except json.JSONDecodeError:
                    logger.warning("invalid_json", data=frame.data[:100])
                    continue
                await self._handle_signal_message(data)
            elif frame.type == aiohttp.WSMsgType.ERROR:
                logger.error("websocket_error", error=str(ws.exception()))
                return
            elif frame.type == aiohttp.WSMsgType.CLOSED:
                return
        logger.info("websocket_closed")

    async def poll_messages(self):
        """Receive envelopes over the json-rpc WebSocket, reconnecting with backoff."""
        if not self.account:
            logger.error("no_account_for_polling")
            return

        ws_base = self.api_url.replace("http://", "ws://").replace("https://", "wss://")
        ws_url = f"{ws_base}/v1/receive/{self.account}"
        delay = RECONNECT_DELAY

        while self.running:
            try:
                logger.info("websocket_connecting", url=ws_url)
                async with self.session.ws_connect(ws_url, heartbeat=30) as ws:
                    logger.info("websocket_connected")
                    delay = RECONNECT_DELAY
                    await self._consume(ws)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("websocket_exception", error=str(e), retry_delay=delay)
                await asyncio.sleep(delay)
                delay = min(delay * 2, MAX_RECONNECT_DELAY)

    def _is_duplicate(self, timestamp: int, text: str) -> bool:
        msg_hash = hashlib.sha256(f"{timestamp}:{text.strip()}".encode()).hexdigest()
        if msg_hash in self._processed_messages:
            return True
        self._processed_messages[msg_hash] = _time.time()

        cutoff = _time.time() - 60
        while self._processed_messages:
            oldest_key, oldest_time = next(iter(self._processed_messages.items()))
            if oldest_time < cutoff:
                self._processed_messages.pop(oldest_key)
            else:
                break
        return False

    async def _handle_signal_message(self, msg: dict):
        """Handle one envelope from the Signal API."""
        try:
            envelope = msg.get("envelope", {})
            source = (
                envelope.get("source")
                or envelope.get("sourceNumber")
                or envelope.get("sourceUuid")
            )
            data_message = envelope.get("dataMessage")
            if not data_message or not source:
                return

            message_text = data_message.get("message") or ""
            if not message_text.strip():
                return

            group_info = data_message.get("groupInfo") or {}
            group_id = group_info.get("groupId")

            if self._is_duplicate(envelope.get("timestamp", 0), message_text):
                logger.debug("duplicate_message_skipped", timestamp=envelope.get("timestamp"))
                return

            await self._process_message(
                source, message_text,
                group_id=group_id,
                mentions=data_message.get("mentions") or [],
            )

        except Exception as e:
            logger.error("message_handling_error", error=str(e), msg=str(msg)[:200])

    async def run(self):
        """Main run loop: start, poll messages, stop on exit."""
        await self.start()
        try:
            await self.poll_messages()
        finally:
            await self.stop()


class ShellBot:
    """Console transport: one command per line, replies on stdout.

    Args:
        handler: Handler receiving every line.
        user: Sender name reported for console messages.
        stdin: Input stream (default sys.stdin).
        stdout: Output stream (default sys.stdout).
    """

    PROMPT = "lbcfg > "
    EXIT_WORDS = frozenset({"exit", "quit"})

    def __init__(
        self,
        handler: LbcfgHandler,
        user: str = "shell",
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ):
        self.handler = handler
        self.user = user
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout
        self.running = False

    async def _send(self, text: str) -> None:
        self.stdout.write(text if text.endswith("\n") else text + "\n")
        self.stdout.flush()

    async def handle_line(self, line: str) -> List[str]:
        """Handle one console line. Returns the replies sent."""
        message = InboundMessage(
            body=sanitize_input(line.strip()),
            sender=self.user,
            origin=Origin.SHELL,
            is_command=True,
            reply_to=self.user,
        )
        return await self.handler.handle(message, self._send)

    async def run(self):
        """Read lines until EOF or an exit word."""
        self.running = True
        loop = asyncio.get_running_loop()
        logger.info("shell_started", user=self.user)
        try:
            while self.running:
                self.stdout.write(self.PROMPT)
                self.stdout.flush()
                line = await loop.run_in_executor(None, self.stdin.readline)
                if not line:
                    break
                if line.strip().lower() in self.EXIT_WORDS:
                    break
                if line.strip():
                    await self.handle_line(line)
        finally:
            self.running = False
            logger.info("shell_stopped")

    async def stop(self):
        self.running = False
