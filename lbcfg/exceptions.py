"""Custom exception hierarchy for lbcfg.

Provides precise error classification across the router, configuration
layer and load-balancer backends. Backend errors keep their class name
as the user-facing error name, so a failure reported by a backend reads
``LBUnsafe: <message>`` in chat.

Configuration-resolution failures and policy rejections are NOT
exceptions -- see ``resolver.MissingKeyError`` and ``router.Outcome``.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (timeout, rate limit, 5xx)
    PERMANENT = "permanent"          # Not worth retrying (bad input, unsafe change)
    INFRASTRUCTURE = "infrastructure"  # Missing credentials, env issues


class LbcfgError(Exception):
    """Base exception for all lbcfg errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry decisions.
        module: Originating module name (e.g. "backend.cloud").
        context: Arbitrary key-value pairs for structured logging.
    """

    def __init__(
        self,
        message: str = "",
        *,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.message = message
        self.category = category
        self.module = module
        self.context = context
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error is worth retrying."""
        return self.category == ErrorCategory.TRANSIENT

    @property
    def error_name(self) -> str:
        """Name shown to chat users alongside the message."""
        return self.__class__.__name__

    def __str__(self) -> str:
        return self.message or self.__class__.__name__

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


# ---------------------------------------------------------------------------
# Configuration exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(LbcfgError):
    """Invalid or missing configuration.

    Defaults to INFRASTRUCTURE because config issues are environmental
    and won't resolve by retrying.
    """

    def __init__(
        self,
        message: str = "",
        *,
        setting_name: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.setting_name = setting_name
        super().__init__(
            message, category=category, module=module or "config", **context
        )


# ---------------------------------------------------------------------------
# Backend exceptions
# ---------------------------------------------------------------------------

class BackendError(LbcfgError):
    """Error raised by a load-balancer backend client.

    The router renders these as ``<error_name>: <message>`` under an
    action-specific title.

    Attributes:
        env_key: ``<region>-<environment>`` key of the client that failed.
    """

    def __init__(
        self,
        message: str = "",
        *,
        env_key: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.env_key = env_key
        super().__init__(
            message, category=category, module=module or "backend", **context
        )


class LBNotFound(BackendError):
    """A configured load balancer id does not exist in the provider."""


class NodeNotFound(BackendError):
    """The requested node is not attached to every registered balancer."""


class LBUnsafe(BackendError):
    """The change would leave a balancer without any enabled node."""


class LBInconsistentState(BackendError):
    """Balancers disagree on a node's condition, or are mid-update."""


class AuthenticationError(BackendError):
    """The provider rejected the configured credentials."""

    def __init__(
        self,
        message: str = "",
        *,
        env_key: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.INFRASTRUCTURE,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        super().__init__(
            message, env_key=env_key, category=category, module=module, **context
        )


class BackendAPIError(BackendError):
    """Unexpected HTTP response from the provider API.

    Attributes:
        status: HTTP status code (if available).
    """

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        env_key: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.status = status
        super().__init__(
            message, env_key=env_key, category=category, module=module, **context
        )
