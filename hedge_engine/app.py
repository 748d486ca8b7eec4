# hedge_engine/app.py
from typing import Any, Dict, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from .api.routes import bp
from .api.quotes import bp as quotes_bp
from .domain.errors import AppError
from .services.collateral_vault import InMemoryVault
from .services.orchestrator import PolicyOrchestrator
from .services.parameter_store import StaticParameterStore, load_system_parameters
from .services.price_oracle import build_oracle
from .services.quote_service import QuoteService, pricing_config
from .services.volatility import build_volatility_source
from .storage.policy_store import InMemoryPolicyStore, MongoPolicyStore
from .utils.config import Settings, settings
from .utils.logging import get_logger

log = get_logger(__name__)


def build_services(cfg: Settings = settings) -> Dict[str, Any]:
    oracle = build_oracle(cfg)
    parameters = StaticParameterStore(load_system_parameters(cfg))
    vault = InMemoryVault(cfg.VAULT_CAPACITY)
    if cfg.MONGODB_URI:
        store = MongoPolicyStore.from_uri(cfg.MONGODB_URI)
    else:
        log.warning("MONGODB_URI not set; policies are kept in memory only")
        store = InMemoryPolicyStore()
    return {
        "orchestrator": PolicyOrchestrator(
            oracle, parameters, vault, store, timeout=cfg.COLLABORATOR_TIMEOUT_SECONDS
        ),
        "quotes": QuoteService(
            oracle, parameters, build_volatility_source(cfg),
            ttl_seconds=cfg.QUOTE_TTL_SECONDS,
            timeout=cfg.COLLABORATOR_TIMEOUT_SECONDS,
            pricing=pricing_config(cfg),
        ),
    }


def create_app(services: Optional[Dict[str, Any]] = None):
    app = Flask(__name__)
    app.extensions["hedge_engine"] = services or build_services()

    app.register_blueprint(bp)
    app.register_blueprint(quotes_bp)

    @app.errorhandler(AppError)
    def handle_app_error(err: AppError):
        log.warning(f"{type(err).__name__}: {err.message}")
        return jsonify(err.payload()), err.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({"error": e.name.lower().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        log.exception("Unhandled error")
        return jsonify({"error": "internal_error"}), 500

    return app


# For `flask --app hedge_engine.app:create_app run`
if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=settings.PORT, debug=settings.ENV == "dev")
