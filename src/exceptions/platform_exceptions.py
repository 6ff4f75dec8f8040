"""
Bitbucket Server Platform Exceptions

Stable error taxonomy the platform adapter raises, independent of the HTTP
status codes that produced it.
"""

from typing import Optional

import httpx

from src.utils.exception import AppException, BadRequestException, ConflictException, NotFoundException


# ============================================================================
# BASE PLATFORM EXCEPTIONS
# ============================================================================

class PlatformException(AppException):
    """Base exception for platform adapter errors."""
    def __init__(self, message: str, status_code: int = httpx.codes.BAD_GATEWAY):
        super().__init__(status_code=status_code, message=message)


class PlatformConfigException(BadRequestException):
    """Raised when the platform is initialised without endpoint or credentials."""
    def __init__(self, message: str = "Platform configuration is incomplete"):
        super().__init__(message=message)


class SessionNotInitializedException(PlatformException):
    """Raised when a repository operation runs before init_repo."""
    def __init__(self):
        super().__init__(message="Repository session not initialized; call init_repo first")


# ============================================================================
# REPOSITORY STATE EXCEPTIONS
# ============================================================================

class RepositoryNotFoundException(NotFoundException):
    """Raised when a repository, pull request or comment does not exist."""
    def __init__(self, message: str = "repository-not-found"):
        super().__init__(message=message)


class RepositoryChangedException(ConflictException):
    """Raised when the remote resource changed under an in-flight mutation."""
    def __init__(self, message: str = "repository-changed"):
        super().__init__(message=message)


class RepositoryDisabledException(PlatformException):
    """Raised when the repository config explicitly disables automation."""
    def __init__(self, repository: str):
        super().__init__(
            message=f"repository-disabled: {repository}",
            status_code=httpx.codes.FORBIDDEN,
        )
        self.repository = repository


# ============================================================================
# TRANSPORT EXCEPTIONS
# ============================================================================

class TransportFailureException(PlatformException):
    """Raised for network-level failures (DNS, timeout, connection reset)."""
    def __init__(self, operation: str, error: Exception):
        super().__init__(
            message=f"Transport failure during {operation}: {error}",
            status_code=httpx.codes.SERVICE_UNAVAILABLE,
        )
        self.error = error


class UnexpectedStatusException(PlatformException):
    """Raised for any non-2xx response the adapter has no specific meaning for."""
    def __init__(self, status_code: int, operation: str, response_text: Optional[str] = None):
        message = f"Bitbucket API error during {operation}: {status_code}"
        if response_text:
            message += f" - {response_text[:500]}"
        super().__init__(message=message, status_code=status_code)
        self.response_text = response_text
