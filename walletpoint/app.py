from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from flask import Flask, g, jsonify, request
from werkzeug.middleware.proxy_fix import ProxyFix

from .dao import Database
from .main import init_db
from .marketplace import AuditLogger, MarketplaceService, StatusPolicy, bp as marketplace_bp
from .marketplace.routes import EXTENSION_KEY
from .observability import HTTP_LATENCY, HTTP_REQUESTS, configure_logging, metrics_endpoint


def _split(value: str) -> frozenset:
    return frozenset(v.strip().lower() for v in value.split(",") if v.strip())


def load_config(overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """Build app config from environment variables, then apply ``overrides``."""
    root = Path(__file__).resolve().parents[1]
    env = os.environ
    config: Dict[str, Any] = {
        "SECRET_KEY": env.get("APP_SECRET_KEY", "dev-insecure-secret"),
        "DB_PATH": env.get("APP_DB_PATH", str(root / "app.sqlite")),
        "DB_TIMEOUT": float(env.get("DB_TIMEOUT", "5.0")),
        "LOG_LEVEL": env.get("LOG_LEVEL", "INFO"),
        "PAGE_LIMIT_DEFAULT": int(env.get("PAGE_LIMIT_DEFAULT", "20")),
        "PAGE_LIMIT_MAX": int(env.get("PAGE_LIMIT_MAX", "100")),
        "CONSTRAINED_ROLES": _split(env.get("CONSTRAINED_ROLES", "mahasiswa")),
        "ADMIN_ROLES": _split(env.get("ADMIN_ROLES", "admin")),
        "TRUSTED_PROXY_HOPS": int(env.get("TRUSTED_PROXY_HOPS", "0")),
    }
    if overrides:
        config.update(overrides)
    for key in ("CONSTRAINED_ROLES", "ADMIN_ROLES"):
        if isinstance(config[key], str):
            config[key] = _split(config[key])
    return config


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__)
    app.config.update(load_config(config))
    configure_logging(app.config["LOG_LEVEL"])

    init_db(app.config["DB_PATH"])
    db = Database(app.config["DB_PATH"], timeout=app.config["DB_TIMEOUT"])
    policy = StatusPolicy.from_roles(app.config["CONSTRAINED_ROLES"])
    app.extensions[EXTENSION_KEY] = {
        "db": db,
        "service": MarketplaceService(db, policy),
        "audit": AuditLogger(db),
    }

    # Honor X-Forwarded-For only from the configured number of trusted proxies.
    hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    if hops:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)

    app.register_blueprint(marketplace_bp)

    @app.before_request
    def _start_timer():
        g.request_started = time.perf_counter()

    @app.after_request
    def _record_metrics(response):
        endpoint = request.url_rule.rule if request.url_rule else "unmatched"
        HTTP_REQUESTS.labels(request.method, endpoint, str(response.status_code)).inc()
        started = g.get("request_started")
        if started is not None:
            HTTP_LATENCY.labels(endpoint).observe(time.perf_counter() - started)
        return response

    app.add_url_rule("/metrics", "metrics", metrics_endpoint)

    @app.get("/healthz")
    def healthz():
        return jsonify({"status": "ok"})

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True, host="127.0.0.1", port=int(os.environ.get("PORT", "5000")))
