from typing import Any, Optional


class AppException(Exception):
    """
    Base class for all application exceptions.
    Carries the HTTP status and the payload fields the handlers render.
    """
    def __init__(
        self,
        code: int = 400,
        msg: str = "Bad Request",
        details: Optional[Any] = None,
    ):
        self.code = code
        self.msg = msg
        self.details = details
        super().__init__(self.msg)


class ValidationException(AppException):
    """Client input errors, raised before any database read."""
    def __init__(self, msg: str = "Validation failed", details: Any = None):
        super().__init__(
            code=400,
            msg=msg,
            details=details
        )


class SystemException(AppException):
    """Critical system failures (DB down, query failed)"""
    def __init__(self, msg: str = "Internal System Error", details: Any = None):
        super().__init__(
            code=500,
            msg=msg,
            details=details
        )
