from __future__ import annotations


class GatewayError(Exception):
    """Base class for errors raised by the chat gateway."""


class ConfigError(GatewayError):
    """Required configuration is missing; the server cannot start."""


class InvalidRequestBody(GatewayError):
    def __init__(self, detail: str = "Invalid request body") -> None:
        super().__init__(detail)
        self.detail = detail


class UpstreamError(GatewayError):
    """The Gemini service failed to produce a reply."""


class SessionCreationError(UpstreamError):
    def __init__(self, user_id: str, cause: BaseException) -> None:
        super().__init__(f"could not create session for user {user_id!r}: {cause}")
        self.user_id = user_id
