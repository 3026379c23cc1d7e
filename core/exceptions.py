class ServiceError(ValueError):
    """业务异常基类，携带 HTTP 状态码与业务错误码，由 web.py 统一渲染。"""

    status_code = 400
    code = 40001

    def __init__(self, message: str = "", code: int = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class BadRequestError(ServiceError):
    status_code = 400
    code = 40001


class UnauthorizedError(ServiceError):
    status_code = 401
    code = 40101


class ForbiddenError(ServiceError):
    status_code = 403
    code = 40301


class NotFoundError(ServiceError):
    status_code = 404
    code = 40401
