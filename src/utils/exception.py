import httpx


class AppException(Exception):
    """Base application exception."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(self.message)

class NotFoundException(AppException):
    """Raised when a resource is not found."""
    def __init__(self, message: str = "Resource not found"):
        super().__init__(status_code=httpx.codes.NOT_FOUND, message=message)

class BadRequestException(AppException):
    """Raised for bad client requests."""
    def __init__(self, message: str = "Bad Request"):
        super().__init__(status_code=httpx.codes.BAD_REQUEST, message=message)

class ConflictException(AppException):
    """Raised when a write loses an optimistic-concurrency race."""
    def __init__(self, message: str = "Resource changed"):
        super().__init__(status_code=httpx.codes.CONFLICT, message=message)
