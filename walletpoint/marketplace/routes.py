from __future__ import annotations

import logging
import sqlite3
from functools import wraps
from typing import Optional

from flask import Blueprint, after_this_request, current_app, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from .audit import AuditLogger, AuditParams
from .errors import AuthenticationError, MarketplaceError, PermissionDeniedError, ValidationError
from .service import MarketplaceService
from .validation import (
    parse_add_to_cart,
    parse_cart_quantity,
    parse_checkout,
    parse_id,
    parse_new_product,
    parse_page_args,
    parse_product_patch,
    parse_purchase,
)

logger = logging.getLogger(__name__)

bp = Blueprint("marketplace", __name__)

EXTENSION_KEY = "walletpoint.marketplace"
MAX_IDEMPOTENCY_KEY_LENGTH = 128


def _service() -> MarketplaceService:
    return current_app.extensions[EXTENSION_KEY]["service"]


def _audit() -> AuditLogger:
    return current_app.extensions[EXTENSION_KEY]["audit"]


def _load_identity() -> None:
    """Read the caller placed on the request by the upstream auth layer.

    The session wins over headers so browser sessions cannot be overridden
    by a forged header. ``X-User-Id`` and ``X-User-Role`` are trusted as-is:
    the deployment must put a proxy in front that strips them from client
    requests and sets them after authenticating the caller.
    """
    raw_id = session.get("user_id")
    role = session.get("role")
    if raw_id is None:
        raw_id = request.headers.get("X-User-Id")
        role = request.headers.get("X-User-Role")
    try:
        g.user_id = parse_id(raw_id, "user") if raw_id is not None and str(raw_id).strip() else None
    except ValidationError:
        g.user_id = None
    g.role = (role or "").strip().lower() or None


def login_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _load_identity()
        if g.user_id is None:
            raise AuthenticationError("authentication required")
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        _load_identity()
        if g.user_id is None:
            raise AuthenticationError("authentication required")
        if g.role not in current_app.config["ADMIN_ROLES"]:
            raise PermissionDeniedError("admin role required")
        return f(*args, **kwargs)
    return decorated_function


def _idempotency_key() -> Optional[str]:
    key = (request.headers.get("Idempotency-Key") or "").strip()
    if not key:
        return None
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError("Idempotency-Key too long")
    return key


def _audit_after_response(action: str, entity: str, entity_id: Optional[int], details: str) -> None:
    """Queue an audit record to be written once the response has been sent.

    The IP is ``remote_addr``; X-Forwarded-For only counts when the app is
    configured with ``TRUSTED_PROXY_HOPS`` (see ``create_app``).
    """
    params = AuditParams(
        user_id=g.get("user_id"),
        action=action,
        entity=entity,
        entity_id=entity_id,
        details=details,
        ip_address=request.remote_addr,
        user_agent=request.user_agent.string or None,
    )
    audit = _audit()

    @after_this_request
    def _schedule(response):
        response.call_on_close(lambda: audit.log_activity(params))
        return response


def _page_args():
    return parse_page_args(
        request.args,
        default_limit=current_app.config["PAGE_LIMIT_DEFAULT"],
        max_limit=current_app.config["PAGE_LIMIT_MAX"],
    )


# --- products ---

@bp.get("/products")
@login_required
def list_products():
    page, limit = _page_args()
    result = _service().list_products(
        status=request.args.get("status", ""),
        page=page,
        limit=limit,
        caller_role=g.role,
    )
    return jsonify(result.to_dict())


@bp.get("/products/<product_id>")
@login_required
def get_product(product_id: str):
    product = _service().get_product(parse_id(product_id, "product"))
    return jsonify(product.to_dict())


@bp.post("/products")
@admin_required
def create_product():
    new = parse_new_product(request.get_json(silent=True))
    product = _service().create_product(new)
    _audit_after_response("CREATE_PRODUCT", "PRODUCT", product.id, f"Admin created new product: {product.name}")
    return jsonify(product.to_dict()), 201


@bp.put("/products/<product_id>")
@admin_required
def update_product(product_id: str):
    pid = parse_id(product_id, "product")
    patch = parse_product_patch(request.get_json(silent=True))
    product = _service().update_product(pid, patch)
    _audit_after_response("UPDATE_PRODUCT", "PRODUCT", product.id, f"Admin updated product: {product.name}")
    return jsonify(product.to_dict())


@bp.delete("/products/<product_id>")
@admin_required
def delete_product(product_id: str):
    pid = parse_id(product_id, "product")
    _service().delete_product(pid)
    _audit_after_response("DELETE_PRODUCT", "PRODUCT", pid, f"Admin deleted product ID: {pid}")
    return jsonify({"status": "ok", "message": "Product deleted successfully"})


# --- purchase & ledger ---

@bp.post("/purchase")
@login_required
def purchase():
    product_id, qty = parse_purchase(request.get_json(silent=True))
    receipt = _service().purchase(g.user_id, product_id, qty, idempotency_key=_idempotency_key())
    if not receipt.replayed:
        _audit_after_response(
            "PURCHASE_PRODUCT", "PRODUCT", product_id,
            f"User purchased {qty} units of product ID {product_id}",
        )
    return jsonify({"status": "ok", "message": "Purchase successful", "receipt": receipt.to_dict()})


@bp.get("/transactions")
@admin_required
def list_transactions():
    page, limit = _page_args()
    return jsonify(_service().list_transactions(page=page, limit=limit))


# --- cart ---

@bp.get("/cart")
@login_required
def get_cart():
    return jsonify(_service().get_cart(g.user_id).to_dict())


@bp.post("/cart")
@login_required
def add_to_cart():
    product_id, qty = parse_add_to_cart(request.get_json(silent=True))
    item_id = _service().add_to_cart(g.user_id, product_id, qty)
    _audit_after_response("ADD_TO_CART", "CART_ITEM", item_id, f"User added {qty} units of product ID {product_id} to cart")
    return jsonify({"status": "ok", "message": "Product added to cart", "cart_item_id": item_id})


@bp.put("/cart/<item_id>")
@login_required
def update_cart_item(item_id: str):
    iid = parse_id(item_id, "cart item")
    qty = parse_cart_quantity(request.get_json(silent=True))
    _service().update_cart_item(g.user_id, iid, qty)
    _audit_after_response("UPDATE_CART_ITEM", "CART_ITEM", iid, f"User set cart item quantity to {qty}")
    return jsonify({"status": "ok", "message": "Cart updated"})


@bp.delete("/cart/<item_id>")
@login_required
def remove_from_cart(item_id: str):
    iid = parse_id(item_id, "cart item")
    _service().remove_from_cart(g.user_id, iid)
    _audit_after_response("REMOVE_FROM_CART", "CART_ITEM", iid, "User removed item from cart")
    return jsonify({"status": "ok", "message": "Product removed from cart"})


@bp.post("/cart/checkout")
@login_required
def checkout():
    item_ids = parse_checkout(request.get_json(silent=True))
    receipt = _service().checkout(g.user_id, cart_item_ids=item_ids or None, idempotency_key=_idempotency_key())
    if not receipt.replayed:
        _audit_after_response("CART_CHECKOUT", "WALLET", g.user_id, "User completed checkout from cart")
    return jsonify({"status": "ok", "message": "Checkout successful", "receipt": receipt.to_dict()})


# JSON error handlers: consistent {error, details} bodies app-wide

@bp.app_errorhandler(MarketplaceError)
def marketplace_error_handler(err: MarketplaceError):
    if err.status_code >= 500:
        logger.error("Marketplace failure: %s", err.message)
    return jsonify(err.to_dict()), err.status_code


@bp.app_errorhandler(sqlite3.Error)
def storage_error_handler(err: sqlite3.Error):
    logger.exception("Storage failure on %s %s", request.method, request.path)
    return jsonify({"error": "Internal Server Error", "details": "storage failure"}), 500


@bp.app_errorhandler(HTTPException)
def http_error_handler(err: HTTPException):
    payload = {"error": err.name, "details": err.description}
    return jsonify(payload), err.code or 500
