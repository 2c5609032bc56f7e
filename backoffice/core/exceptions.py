from fastapi import HTTPException, status
from functools import wraps
from sqlalchemy.exc import SQLAlchemyError
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)


class DatabaseError(HTTPException):
    """Custom exception for database errors"""
    def __init__(self, detail: str = "Database operation failed"):
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)

class NotFoundError(HTTPException):
    """Custom exception for not found errors"""
    def __init__(self, resource: str = "Resource"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=f"{resource} not found")

class UnauthorizedError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )

class ForbiddenError(HTTPException):
    """Custom exception for forbidden errors"""
    def __init__(self, detail: str = "Not authorized to access this resource"):
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)

class ValidationError(HTTPException):
    """Custom exception for validation errors"""
    def __init__(self, detail: str = "Validation failed"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class ConflictError(HTTPException):
    def __init__(self, detail: str = "Conflict"):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

class GoneError(HTTPException):
    def __init__(self, detail: str = "Resource expired"):
        super().__init__(status_code=status.HTTP_410_GONE, detail=detail)

class ProviderError(HTTPException):
    """An upstream provider (Stripe, SignNow, email) failed"""
    def __init__(self, detail: str = "Upstream provider failed"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


# Domain errors raised by services; routers decide how they surface.

class BackofficeError(Exception):
    """Base class for domain errors"""


class InvalidInput(BackofficeError):
    """Malformed payload or missing required field"""


class InsufficientCredits(BackofficeError):
    error_code = "INSUFFICIENT_CREDITS"

    def __init__(self, member_id: Optional[object] = None, requested: int = 1, balance: int = 0):
        self.member_id = member_id
        self.requested = requested
        self.balance = balance
        super().__init__(
            f"INSUFFICIENT_CREDITS: requested {requested}, balance {balance}"
        )


class BookingPassNotFound(BackofficeError):
    pass


class BookingPassAlreadyUsed(BackofficeError):
    pass


class BookingPassExpired(BackofficeError):
    pass


class ExternalProviderFailure(BackofficeError):
    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


def to_http_error(error: BackofficeError) -> HTTPException:
    """Map a domain error onto the HTTP error an operator or browser sees"""
    if isinstance(error, InvalidInput):
        return ValidationError(str(error))
    if isinstance(error, BookingPassNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    if isinstance(error, (BookingPassAlreadyUsed, InsufficientCredits)):
        return ConflictError(str(error))
    if isinstance(error, BookingPassExpired):
        return GoneError(str(error))
    if isinstance(error, ExternalProviderFailure):
        return ProviderError(str(error))
    return ValidationError(str(error))


def handle_domain_errors(func: Callable) -> Callable:
    """Decorator translating domain and database errors into HTTP errors"""
    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except HTTPException:
            raise
        except BackofficeError as e:
            raise to_http_error(e)
        except SQLAlchemyError as e:
            logger.error(f"Database operation failed in {func.__name__}: {e}")
            raise DatabaseError(f"Database operation failed: {str(e)}")
    return wrapper
