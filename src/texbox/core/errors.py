from __future__ import annotations


class TexboxError(Exception):
    """Base class for errors raised by the compile service."""


class ClientError(TexboxError):
    status_code = 400


class EmptySourceError(ClientError):
    def __init__(self, message: str = "Missing LaTeX source"):
        super().__init__(message)


class SourceTooLargeError(ClientError):
    status_code = 413

    def __init__(self, size: int, limit: int):
        super().__init__(f"LaTeX source is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit


class AuthError(TexboxError):
    pass


class InvalidTransition(TexboxError):
    """A job status change that would move backwards or skip RUNNING."""
