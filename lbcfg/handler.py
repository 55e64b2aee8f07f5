"""Chat handler for lbcfg commands.

Sits between a transport and the CommandRouter: answers help,
parses routes, dispatches commands and echoes unrecognised commands
back with the not-found reply. Transports call ``handle`` for every
inbound message and send whatever it replies with.
"""

from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List

import structlog

from .models import InboundMessage
from .router import CommandRouter
from .routes import RouteTable
from .templates import Translator

logger = structlog.get_logger("lbcfg.bot")

SendFn = Callable[[str], Awaitable[None]]


@dataclass
class HelpSection:
    """A block of help text.

    Attributes:
        title: Section heading (e.g. "Load Balancers").
        commands: Dict of usage -> one-line description.
    """
    title: str
    commands: Dict[str, str] = field(default_factory=dict)


class LbcfgHandler:
    """Routes inbound chat messages to the CommandRouter.

    Args:
        router: Command router with the loaded config tree.
        routes: Route table for the configured prefix.
        translator: Reply text lookup.
    """

    def __init__(self, router: CommandRouter, routes: RouteTable, translator: Translator):
        self.router = router
        self.routes = routes
        self.translator = translator

    def help_sections(self) -> List[HelpSection]:
        """Return help text entries for the help reply."""
        usage = self.routes.help_usage()
        return [
            HelpSection(
                title=self.translator.t("help.title"),
                commands={
                    usage[name]: self.translator.t(f"help.{name}")
                    for name in ("status", "enable", "drain", "help")
                },
            )
        ]

    def help_text(self) -> str:
        lines = []
        for section in self.help_sections():
            lines.append(f"{section.title}:")
            for usage, description in section.commands.items():
                lines.append(f"  {usage} - {description}")
        return "\n".join(lines)

    async def handle(self, message: InboundMessage, send: SendFn) -> List[str]:
        """Handle one inbound message.

        Only messages addressed to the bot (a mention in a group, a
        direct message or a console line) are routed; everything else is
        ignored. Never raises.

        Args:
            message: Message from the transport.
            send: Coroutine delivering one reply to the message's origin.

        Returns:
            Replies sent, in order.
        """
        sent: List[str] = []

        async def reply(text: str) -> None:
            sent.append(text)
            await send(text)

        body = message.body.strip()
        if not message.is_command:
            return sent
        try:
            if self.routes.is_help(body):
                await reply(self.help_text())
                return sent

            cmd = self.routes.match(body, message.origin)
            if cmd is None:
                if body:
                    logger.info("command_not_found", length=len(body))
                    await reply(self.translator.t("not_found", body=body))
                return sent

            logger.info(
                "command_received",
                action=cmd.action, path=cmd.path, origin=cmd.origin.value,
            )
            await self.router.dispatch(cmd, reply=reply)
        except Exception as e:
            logger.error(
                "message_handling_error", error=str(e), error_type=type(e).__name__,
                exc_info=True,
            )
        return sent
