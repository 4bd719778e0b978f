"""审批 API Blueprint

审批人通过此接口对受保护环境的 apply 做出决定。
"""

from __future__ import annotations

from flask import Blueprint, Response, jsonify, request

from infragate.web.responses import bad_request

approvals_bp = Blueprint("approvals", __name__, url_prefix="/api/approvals")


def _approvals():  # type: ignore[no-untyped-def]
    from infragate.services.container import get_container
    return get_container().approvals


@approvals_bp.route("", methods=["GET"])
def list_all() -> Response:
    pending_only = request.args.get("pending", "") in ("1", "true")
    records = _approvals().list(
        pending_only=pending_only, run_id=request.args.get("run_id", ""),
    )
    return jsonify(approvals=[r.to_dict() for r in records])


@approvals_bp.route("/<record_id>", methods=["GET"])
def detail(record_id: str) -> Response:
    return jsonify(_approvals().get(record_id).to_dict())


@approvals_bp.route("/<record_id>/decision", methods=["POST"])
def decide(record_id: str) -> tuple[Response, int] | Response:
    body = request.get_json(silent=True) or {}
    actor = str(body.get("actor", "")).strip()
    decision = str(body.get("decision", "")).strip()
    if not actor or not decision:
        return bad_request("需要提供 actor 和 decision")
    record = _approvals().record_decision(
        record_id, actor, decision, comment=str(body.get("comment", "")),
    )
    return jsonify(record.to_dict())
