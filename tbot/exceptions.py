"""Exception hierarchy for tbot.

Every error raised by the package derives from TbotError, which carries
an ErrorCategory so callers can tell static configuration mistakes apart
from transport hiccups worth retrying.

Resolution misses are not errors (the dispatcher counts them), and
handler failures never leave the task that ran the handler.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    """Classification of errors for retry decisions."""
    TRANSIENT = "transient"          # Worth retrying (network blip, API 5xx)
    PERMANENT = "permanent"          # Not worth retrying (bad registration)
    INFRASTRUCTURE = "infrastructure"  # Missing token, unreadable config


class TbotError(Exception):
    """Base exception for all tbot errors.

    Attributes:
        message: Human-readable error description.
        category: Error classification for retry/escalation decisions.
        module: Originating module name (e.g. "mux").
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

    def __str__(self) -> str:
        parts = [self.message or self.__class__.__name__]
        if self.module:
            parts.append(f"[module={self.module}]")
        if self.context:
            ctx = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"({ctx})")
        return " ".join(parts)

    def __repr__(self) -> str:
        cls = self.__class__.__name__
        return (
            f"{cls}({self.message!r}, category={self.category.value!r}, "
            f"module={self.module!r})"
        )


class RegistrationError(TbotError):
    """Invalid route, alias or handler passed at registration time.

    Raised eagerly: these are static wiring mistakes, not runtime
    conditions.

    Attributes:
        path: The offending path or alias (if any).
    """

    def __init__(
        self,
        message: str = "",
        *,
        path: Optional[str] = None,
        category: ErrorCategory = ErrorCategory.PERMANENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.path = path
        super().__init__(
            message, category=category, module=module or "mux", **context
        )


class ConfigurationError(TbotError):
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


class TransportError(TbotError):
    """The chat transport failed to deliver events or accept a request.

    Attributes:
        status: HTTP status returned by the remote API (if any).
    """

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.status = status
        super().__init__(
            message, category=category, module=module or "transport", **context
        )


class SendError(TransportError):
    """An outbound send was rejected or could not be delivered.

    Attributes:
        endpoint: The API method that failed (e.g. "sendMessage").
    """

    def __init__(
        self,
        message: str = "",
        *,
        endpoint: Optional[str] = None,
        status: Optional[int] = None,
        category: ErrorCategory = ErrorCategory.TRANSIENT,
        module: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.endpoint = endpoint
        super().__init__(
            message,
            status=status,
            category=category,
            module=module or "transport.send",
            **context,
        )
