"""Web 层统一响应辅助函数

消除各 Blueprint 和 app.py 中重复的 jsonify(error=...), 状态码模式。
"""

from __future__ import annotations

from flask import Response, jsonify

from infragate.core.exceptions import InfraGateError

# 业务异常 code → HTTP 状态码
STATUS_BY_CODE: dict[str, int] = {
    "NOT_FOUND": 404,
    "VALIDATION_ERROR": 400,
    "CONFIG_ERROR": 400,
    "UNAUTHORIZED_REVIEWER": 403,
    "ALREADY_DECIDED": 409,
    "CONCURRENT_EXECUTION": 409,
    "PIPELINE_STATE": 409,
}


def ok(data: dict, status: int = 200) -> tuple[Response, int] | Response:
    """成功响应"""
    if status == 200:
        return jsonify(data)
    return jsonify(data), status


def not_found(resource: str) -> tuple[Response, int]:
    """资源不存在"""
    return jsonify(error=f"{resource}不存在", code="NOT_FOUND"), 404


def bad_request(message: str) -> tuple[Response, int]:
    """请求参数错误"""
    return jsonify(error=message, code="VALIDATION_ERROR"), 400


def error_response(exc: InfraGateError) -> tuple[Response, int]:
    """业务异常统一转换为 JSON 错误响应"""
    status = STATUS_BY_CODE.get(exc.code, 500)
    payload: dict = {"error": str(exc), "code": exc.code}
    details = getattr(exc, "details", None)
    if details:
        payload["details"] = details
    return jsonify(payload), status
