"""
网关错误类型

所有面向客户端的错误都是 HTTPException 子类，由 main.py 中注册的处理器
统一渲染为 {"error": {"message": ..., "code": ...}}。
"""

from typing import Optional

from fastapi import HTTPException


class GatewayError(HTTPException):
    """带机器可读 code 的网关错误"""

    status_code_default = 500
    code = "internal_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.status_code_default, detail=message)

    @property
    def message(self) -> str:
        return self.detail

    def to_dict(self) -> dict:
        return {"error": {"message": self.detail, "code": self.code}}


class BadRequestError(GatewayError):
    status_code_default = 400
    code = "bad_request"


class UnauthenticatedError(GatewayError):
    status_code_default = 401
    code = "unauthenticated"


class ForbiddenError(GatewayError):
    status_code_default = 403
    code = "forbidden"


class ModelUnavailableError(GatewayError):
    status_code_default = 404
    code = "model_unavailable"


class InsufficientBalanceError(GatewayError):
    status_code_default = 402
    code = "insufficient_balance"


class UpstreamError(GatewayError):
    """上游非 2xx 响应或传输失败；upstream_status 为 None 表示未拿到响应"""

    status_code_default = 502
    code = "upstream_error"

    def __init__(self, message: str, upstream_status: Optional[int] = None, upstream_body: str = ""):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body
