# orderflow/api/errors.py
from fastapi import Request
from fastapi.responses import JSONResponse


class BizError(Exception):
    code = "BIZ_ERROR"
    status = 400

    def __init__(self, message: str, code: str | None = None, status: int | None = None):
        super().__init__(message)
        if code:
            self.code = code
        if status:
            self.status = status
        self.message = message


class NotFoundError(BizError):
    def __init__(self, message: str, code: str = "NOT_FOUND"):
        super().__init__(message, code=code, status=404)


class UnauthorizedError(BizError):
    def __init__(self, message: str = "invalid signature"):
        super().__init__(message, code="UNAUTHORIZED", status=401)


def biz_error_handler(_: Request, exc: BizError):
    return JSONResponse(
        status_code=exc.status,
        content={"error": {"code": exc.code, "message": exc.message}},
    )
