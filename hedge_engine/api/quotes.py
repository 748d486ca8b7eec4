# hedge_engine/api/quotes.py

from __future__ import annotations
from flask import Blueprint, current_app, request, jsonify

from .schemas import QUOTE_FIELDS, YIELD_QUOTE_FIELDS, require_fields

bp = Blueprint("quotes_api", __name__)

@bp.post("/quotes")
def quote_create():
    """
    POST /quotes
    Body: { option_type, protected_value_pct, protection_amount, expiration,
            asset?, role?, provider_tier? }
          protected_value_pct and protection_amount are plain decimals
          (e.g. 90, "0.5"); everything returned is ScaledAmount.

    Returns the quote plus a `request` object ready for POST /policies.
    """
    body = require_fields(request.get_json(force=True, silent=True), QUOTE_FIELDS)
    svc = current_app.extensions["hedge_engine"]["quotes"]
    quote = svc.build_quote(
        option_type=body["option_type"],
        protected_value_pct=body["protected_value_pct"],
        protection_amount=body["protection_amount"],
        expiration=body["expiration"],
        asset=body.get("asset", "BTC"),
        role=body.get("role", "buyer"),
        provider_tier=body.get("provider_tier"),
    )
    return jsonify(quote.to_dict()), 200


@bp.post("/quotes/yield")
def yield_quote_create():
    """
    POST /quotes/yield
    Body: { commitment_amount, provider_tier, period_days }
          commitment_amount is USD as a plain decimal; amounts returned are ScaledAmount.
    """
    body = require_fields(request.get_json(force=True, silent=True), YIELD_QUOTE_FIELDS)
    svc = current_app.extensions["hedge_engine"]["quotes"]
    quote = svc.build_yield_quote(
        commitment_amount=body["commitment_amount"],
        provider_tier=body["provider_tier"],
        period_days=body["period_days"],
    )
    return jsonify(quote.to_dict()), 200
