from __future__ import annotations

from typing import Any

ERROR_VALIDATION = "validation_error"
ERROR_CONNECTION = "connection_error"
ERROR_ENGINE_API = "engine_api_error"
ERROR_STAGING = "staging_error"
ERROR_CLEANUP = "cleanup_error"
ERROR_TIMEOUT = "timeout"
ERROR_EXECUTION = "execution_error"

CONNECTION_HINT = "Make sure Docker is running and accessible"


class ContainerRunnerError(Exception):
    code = ERROR_EXECUTION

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidImageReference(ContainerRunnerError):
    code = ERROR_VALIDATION

    def __init__(self, image: str, errors: list[str]) -> None:
        super().__init__(f"Invalid Docker image: {', '.join(errors)}")
        self.image = image
        self.errors = list(errors)


class SocketConnectionError(ContainerRunnerError):
    code = ERROR_CONNECTION

    def __init__(self, category: str, message: str, *, socket_path: str = "") -> None:
        super().__init__(message)
        self.category = category
        self.socket_path = socket_path


class EngineAPIError(ContainerRunnerError):
    code = ERROR_ENGINE_API

    def __init__(self, status_code: int, body: str, *, path: str = "") -> None:
        detail = body.strip() or "<empty response body>"
        prefix = f"Docker API request failed for {path}" if path else "Docker API request failed"
        super().__init__(f"{prefix} (HTTP {status_code}): {detail}")
        self.status_code = status_code
        self.body = body
        self.path = path


class BinaryStagingError(ContainerRunnerError):
    code = ERROR_STAGING


class CleanupError(ContainerRunnerError):
    code = ERROR_CLEANUP

    def __init__(self, target: str, message: str) -> None:
        super().__init__(message)
        self.target = target


class WaitTimeoutError(ContainerRunnerError):
    code = ERROR_TIMEOUT

    def __init__(self, container_id: str, timeout_seconds: int) -> None:
        super().__init__(
            f"Container {container_id[:12]} did not exit within {timeout_seconds} seconds "
            "and was killed."
        )
        self.container_id = container_id
        self.timeout_seconds = timeout_seconds


class ParamsError(ValueError):
    def __init__(
        self,
        message: str,
        *,
        code: str = ERROR_VALIDATION,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


class ItemExecutionError(ContainerRunnerError):
    def __init__(self, message: str, *, item_index: int, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.item_index = item_index
        self.cause = cause
        if cause is not None:
            self.code = getattr(cause, "code", ERROR_EXECUTION)


def is_connection_error(error: BaseException) -> bool:
    return isinstance(error, (SocketConnectionError, ConnectionError))


def format_error(error: BaseException, context: str, hint: str = "") -> str:
    """Render an error as "Docker <context> error: <message>. <hint>"."""
    message = str(getattr(error, "message", "") or error).strip() or type(error).__name__
    text = f"Docker {context} error: {message.rstrip('.')}."
    if hint:
        text = f"{text} {hint}"
    return text
