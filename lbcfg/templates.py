"""Reply text for chat users.

All user-facing strings live in ``locales/<locale>.yaml`` and are
looked up by dotted key, then interpolated with ``str.format`` keyword
arguments. Status output and exception replies have small render
helpers because their layout is part of the chat contract.
"""

from pathlib import Path
from typing import Iterable, Optional

import yaml

from .exceptions import ConfigurationError, LbcfgError
from .models import LbStatus

LOCALES_DIR = Path(__file__).parent / "locales"


class Translator:
    """Dotted-key lookup over a locale file.

    Args:
        locale: Locale file name without extension (default "en").
        locales_dir: Directory holding ``<locale>.yaml``.
    """

    def __init__(self, locale: str = "en", locales_dir: Optional[Path] = None):
        self.locale = locale
        path = (locales_dir or LOCALES_DIR) / f"{locale}.yaml"
        if not path.is_file():
            raise ConfigurationError(
                f"Locale file not found: {path}", setting_name="locale"
            )
        with open(path, "r", encoding="utf-8") as f:
            self._strings = yaml.safe_load(f) or {}

    def t(self, key: str, **kwargs) -> str:
        """Render the string stored under ``key``.

        Raises:
            ConfigurationError: If the key does not name a string.
        """
        node = self._strings
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                raise ConfigurationError(
                    f"Missing translation: {self.locale}.{key}",
                    setting_name=key,
                )
            node = node[part]
        if not isinstance(node, str):
            raise ConfigurationError(
                f"Translation {self.locale}.{key} is not a string",
                setting_name=key,
            )
        return node.format(**kwargs)

    def render_exception(self, title: str, exc: BaseException) -> str:
        """Render ``<title>\\n<ErrorName>: <message>``."""
        if isinstance(exc, LbcfgError):
            name, message = exc.error_name, exc.message
        else:
            name, message = type(exc).__name__, str(exc)
        return self.t("exception.body", title=title, exception=name, message=message)


def render_status(details: Iterable[LbStatus]) -> str:
    """Render balancer snapshots in the order the backend returned them.

    Each balancer becomes a ``<name> (<id>)`` line, one indented line
    per node and a ``---`` separator.
    """
    out = []
    for lb in details:
        out.append(f"{lb.name} ({lb.id})\n")
        for node in lb.nodes:
            out.append(f"  {node.name}  {node.condition}  {node.ip}  {node.id}\n")
        out.append("---\n")
    return "".join(out)
