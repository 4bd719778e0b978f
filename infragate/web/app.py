"""轻量级 HTTP 服务（基于 Flask）

提供：触发流水线、查看运行与报告、取消运行、审批决策、历史查询。

启动方式: infragate serve --port 8888
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from infragate import __version__
from infragate.core.exceptions import InfraGateError
from infragate.web.blueprints.approvals_bp import approvals_bp
from infragate.web.blueprints.runs_bp import runs_bp
from infragate.web.responses import error_response

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 1 * 1024 * 1024  # 1 MB

app = Flask(__name__)
app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH
app.register_blueprint(runs_bp)
app.register_blueprint(approvals_bp)


# =========================================================================
# 全局 JSON 错误处理
# =========================================================================


@app.errorhandler(InfraGateError)
def handle_infragate_error(exc):
    """业务异常按 code 映射 HTTP 状态码"""
    return error_response(exc)


@app.errorhandler(HTTPException)
def handle_http_exception(exc):
    """将所有 HTTP 异常统一返回 JSON"""
    return jsonify(error=exc.description), exc.code


@app.errorhandler(Exception)
def handle_generic_exception(exc):  # noqa: ARG001
    """捕获未处理异常，返回 500 JSON"""
    logger.exception("未处理的异常")
    return jsonify(error="服务器内部错误"), 500


@app.route("/api/health")
def health():
    return jsonify(status="ok", version=__version__)


def run_server(port: int = 8888, debug: bool = False, host: str = "127.0.0.1") -> None:
    logger.info("infragate 服务已启动: http://%s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
