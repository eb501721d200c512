"""
Custom exception classes for the sniper bot.

Provides typed exceptions so callers can tell a retryable trade failure
from a final one, and a safety refusal from a broken trade.
"""


class BotException(Exception):
    """Base exception for all bot-related errors."""

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self):
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} [{ctx_str}]"
        return self.message


class TradeFailure(BotException):
    """Raised when a single trade attempt does not confirm."""
    pass


class TransientTradeFailure(TradeFailure):
    """Network, timeout or rate-limit failure. Retried by RetryExecutor."""
    pass


class TerminalTradeFailure(TradeFailure):
    """Venue rejection or insufficient balance. Never retried."""
    pass


class PriceUnavailable(BotException):
    """Raised by price oracles when no usable price exists right now."""
    pass


class SafetyDenied(BotException):
    """Raised when the circuit breaker or a security gate refuses a trade."""
    pass


class ExecutionError(BotException):
    """Raised by RetryExecutor once every attempt has failed."""

    def __init__(self, message: str, attempts: int, last_error: BaseException | None = None, **context):
        super().__init__(message, attempts=attempts, **context)
        self.attempts = attempts
        self.last_error = last_error


class ConfigurationException(BotException):
    """Raised when configuration is invalid."""
    pass


class StateException(BotException):
    """Raised when state management operations fail."""
    pass
