# hedge_engine/api/routes.py
from flask import Blueprint, current_app, jsonify, request
from ..utils.logging import get_logger
from .schemas import policy_request_from_json

bp = Blueprint('api', __name__)
log = get_logger(__name__)


def _orchestrator():
    return current_app.extensions["hedge_engine"]["orchestrator"]


@bp.get('/health')
def health():
    return jsonify({"status": "ok"})


@bp.post('/premium/verify')
def premium_verify():
    body = request.get_json(force=True, silent=True)
    req = policy_request_from_json(body)
    verdict = _orchestrator().verify_request(req)
    return jsonify(verdict.to_dict())


@bp.post('/policies')
def policy_create():
    body = request.get_json(force=True, silent=True)
    req = policy_request_from_json(body)
    record = _orchestrator().create_policy(req)
    return jsonify(record.to_dict()), 201


@bp.get('/policies/<policy_id>')
def policy_get(policy_id: str):
    return jsonify(_orchestrator().get_policy(policy_id).to_dict())


@bp.post('/policies/<policy_id>/settle')
def policy_settle(policy_id: str):
    record = _orchestrator().settle_policy(policy_id)
    return jsonify(record.to_dict())
