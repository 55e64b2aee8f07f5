"""Regex routes turning chat text into Commands.

Supported forms (prefix defaults to ``lbcfg``)::

    lbcfg status <region> <environment> <balancer>
    lbcfg <action> <region> <environment> <balancer> <node>
    lbcfg help
"""

import re
from typing import Dict, Optional

from .models import Command, Origin


class RouteTable:
    """Compiled routes for one command prefix.

    Routes match whole messages: trailing text after the last argument
    (``lita-extra``, ``web_01.prod``) makes the message unroutable
    instead of leaving a shorter name behind.

    Args:
        prefix: Word every command starts with. Empty string accepts
            the bare forms (``status sf test lita``).
    """

    def __init__(self, prefix: str = "lbcfg"):
        self.prefix = prefix.strip()
        lead = rf"^{re.escape(self.prefix)}\s+" if self.prefix else r"^"
        path = r"(?P<region>\w+)\s+(?P<environment>\w+)\s+(?P<balancer>\w+)"
        self._status = re.compile(rf"{lead}(?P<action>status)\s+{path}\s*$", re.IGNORECASE)
        self._action = re.compile(
            rf"{lead}(?P<action>(?!status\b)\w+)\s+{path}\s+(?P<node>[A-Za-z0-9\-]+)\s*$",
            re.IGNORECASE,
        )
        self._help = re.compile(rf"{lead}help\s*$", re.IGNORECASE)

    def help_usage(self) -> Dict[str, str]:
        """Usage strings keyed by the help entry they describe."""
        lead = f"{self.prefix} " if self.prefix else ""
        path = "<region> <environment> <balancer>"
        return {
            "status": f"{lead}status {path}",
            "enable": f"{lead}enable {path} <node>",
            "drain": f"{lead}drain {path} <node>",
            "help": f"{lead}help",
        }

    def is_help(self, body: str) -> bool:
        return bool(self._help.match(body.strip()))

    def match(self, body: str, origin: Origin = Origin.GROUP) -> Optional[Command]:
        """Parse ``body`` into a Command, or None if no route matches."""
        body = body.strip()
        m = self._status.match(body)
        if m:
            return Command(
                action="status",
                region=m.group("region"),
                environment=m.group("environment"),
                balancer=m.group("balancer"),
                origin=origin,
            )
        m = self._action.match(body)
        if m:
            return Command(
                action=m.group("action"),
                region=m.group("region"),
                environment=m.group("environment"),
                balancer=m.group("balancer"),
                node=m.group("node"),
                origin=origin,
            )
        return None
