"""Error taxonomy for Jump Code.

Only transport, quota and iteration-limit failures end a turn early. Tool and
automation failures are converted into results and handed back to the model.
"""

from typing import Optional


class JumpCodeError(Exception):
    """Base class for all Jump Code errors."""


class TransportError(JumpCodeError):
    """The model endpoint was unreachable or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class QuotaError(TransportError):
    """The model endpoint refused the request for rate or quota reasons."""

    def __init__(self, message: str = "API quota exceeded or rate limited", status_code: Optional[int] = 429):
        super().__init__(message, status_code)


class IterationLimitError(JumpCodeError):
    """The tool-use loop hit its model-call cap without a final answer."""

    def __init__(self, iterations: int):
        super().__init__(f"Stopped after {iterations} model calls without a final answer")
        self.iterations = iterations


class ToolError(JumpCodeError):
    """A tool precondition was not met. Never escapes the tool registry."""


class AutomationUnavailable(JumpCodeError):
    """No host utility is available for an automation capability."""


class ConfigurationError(JumpCodeError):
    """Configuration is missing or invalid in a way that prevents startup."""


class UserExit(Exception):
    """Raised by /exit and /quit to leave the read loop."""
