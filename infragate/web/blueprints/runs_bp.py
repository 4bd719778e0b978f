"""流水线运行 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from infragate.core.models import RunConfig, Severity, TriggerEvent
from infragate.core.reporter import available_formats, render
from infragate.web.responses import bad_request, ok

runs_bp = Blueprint("runs", __name__, url_prefix="/api/runs")


def _container():  # type: ignore[no-untyped-def]
    from infragate.services.container import get_container
    return get_container()


def _run_config(body: dict) -> RunConfig:
    overrides: dict = {}
    if body.get("severity_threshold"):
        overrides["severity_threshold"] = Severity.parse(str(body["severity_threshold"]))
    if body.get("approval_timeout_hours") is not None:
        overrides["approval_timeout_hours"] = float(body["approval_timeout_hours"])
    rc = _container().config.run_config(**overrides)
    variables = body.get("variables") or {}
    if isinstance(variables, dict):
        rc.variables.update({str(k): str(v) for k, v in variables.items()})
    return rc


@runs_bp.route("", methods=["POST"])
def create() -> tuple[Response, int] | Response:
    """触发流水线，后台执行，立即返回 run_id"""
    body = request.get_json(silent=True) or {}
    event = TriggerEvent.from_dict(body)
    try:
        run_config = _run_config(body)
    except (TypeError, ValueError):
        return bad_request("approval_timeout_hours 必须为数字")
    run = _container().runs.submit(event, run_config)
    return ok({"run_id": run.run_id, "status": run.status.value}, 202)


@runs_bp.route("", methods=["GET"])
def list_runs() -> Response:
    runs = _container().orchestrator.list_runs()
    return jsonify(runs=[r.to_dict() for r in runs])


@runs_bp.route("/history", methods=["GET"])
def history() -> Response:
    args = request.args
    try:
        limit = max(1, min(int(args.get("limit", 50)), 1000))
    except ValueError:
        limit = 50
    records = _container().history.query(
        status=args.get("status"), kind=args.get("kind"),
        environment=args.get("environment"), limit=limit,
    )
    return jsonify(history=records)


@runs_bp.route("/<run_id>", methods=["GET"])
def detail(run_id: str) -> tuple[Response, int] | Response:
    """获取运行报告；?format=markdown|text 返回纯文本"""
    fmt = request.args.get("format", "json")
    if fmt not in available_formats():
        return bad_request(f"不支持的报告格式: {fmt}")
    report = _container().runs.report(run_id)
    if fmt == "json":
        return jsonify(report.to_dict())
    mimetype = "text/markdown" if fmt == "markdown" else "text/plain"
    return Response(render(report, fmt), mimetype=mimetype)


@runs_bp.route("/<run_id>/cancel", methods=["POST"])
def cancel(run_id: str) -> Response:
    cancelled = _container().runs.cancel(run_id)
    return jsonify(run_id=run_id, cancelled=cancelled)
