
from typing import Any, Dict

from ..domain.errors import ValidationError
from ..domain.models import PolicyRequest
from ..utils.fixed_point import SCALE

POLICY_FIELDS = (
    "option_type",
    "protected_value",
    "protection_amount",
    "risk_tier",
    "submitted_premium",
    "asset",
    "expiration",
)

QUOTE_FIELDS = ("option_type", "protected_value_pct", "protection_amount", "expiration")

YIELD_QUOTE_FIELDS = ("commitment_amount", "provider_tier", "period_days")


def require_fields(body: Any, fields) -> Dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("expected a JSON object body")
    missing = [k for k in fields if body.get(k) is None]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}")
    return body


def policy_request_from_json(body: Any) -> PolicyRequest:
    """
    Amounts must arrive as JSON integers already at SCALE; they are passed
    through untouched so the orchestrator can reject anything mis-scaled.
    """
    body = require_fields(body, POLICY_FIELDS)
    return PolicyRequest(
        option_type=body["option_type"],
        protected_value=body["protected_value"],
        protection_amount=body["protection_amount"],
        risk_tier=body["risk_tier"],
        submitted_premium=body["submitted_premium"],
        asset=body["asset"],
        expiration=body["expiration"],
        role=body.get("role", "buyer"),
        scale=body.get("scale", SCALE),
    )
