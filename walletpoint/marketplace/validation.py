"""Request payload contracts for the marketplace endpoints.

Each contract is a JSON Schema (draft 2020-12) checked with ``jsonschema``;
the ``parse_*`` helpers turn a valid payload into the typed values the
service expects and raise :class:`ValidationError` with one message per
schema violation otherwise.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Tuple

from jsonschema import Draft202012Validator

from .errors import ValidationError
from .models import PRODUCT_STATUSES, NewProduct, ProductPatch


# Largest value an sqlite INTEGER column can hold.
SQLITE_MAX_INT = 2**63 - 1

_NAME = {"type": "string", "minLength": 1, "maxLength": 256, "pattern": r"\S"}
_DESCRIPTION = {"type": "string", "maxLength": 4096}
_PRICE = {"type": "integer", "minimum": 1, "maximum": SQLITE_MAX_INT}
_STOCK = {"type": "integer", "minimum": 0, "maximum": SQLITE_MAX_INT}
_STATUS = {"type": "string", "enum": list(PRODUCT_STATUSES)}
_ID = {"type": "integer", "minimum": 1, "maximum": SQLITE_MAX_INT}
_QUANTITY = {"type": "integer", "minimum": 1, "maximum": SQLITE_MAX_INT}

SCHEMA_DIALECT = "https://json-schema.org/draft/2020-12/schema"

CREATE_PRODUCT_SCHEMA: Dict[str, Any] = {
    "$schema": SCHEMA_DIALECT,
    "title": "CreateProduct",
    "type": "object",
    "properties": {
        "name": _NAME,
        "description": _DESCRIPTION,
        "price": _PRICE,
        "stock": _STOCK,
        "status": _STATUS,
    },
    "required": ["name", "price", "stock"],
    "additionalProperties": False,
}

UPDATE_PRODUCT_SCHEMA: Dict[str, Any] = {
    "$schema": SCHEMA_DIALECT,
    "title": "UpdateProduct",
    "type": "object",
    "properties": dict(CREATE_PRODUCT_SCHEMA["properties"]),
    "minProperties": 1,
    "additionalProperties": False,
}

PURCHASE_SCHEMA: Dict[str, Any] = {
    "$schema": SCHEMA_DIALECT,
    "title": "Purchase",
    "type": "object",
    "properties": {"product_id": _ID, "quantity": _QUANTITY},
    "required": ["product_id", "quantity"],
    "additionalProperties": False,
}

ADD_TO_CART_SCHEMA: Dict[str, Any] = dict(PURCHASE_SCHEMA, title="AddToCart")

UPDATE_CART_SCHEMA: Dict[str, Any] = {
    "$schema": SCHEMA_DIALECT,
    "title": "UpdateCartItem",
    "type": "object",
    "properties": {"quantity": _QUANTITY},
    "required": ["quantity"],
    "additionalProperties": False,
}

CHECKOUT_SCHEMA: Dict[str, Any] = {
    "$schema": SCHEMA_DIALECT,
    "title": "CartCheckout",
    "type": "object",
    "properties": {
        "cart_item_ids": {"type": "array", "items": _ID, "uniqueItems": True},
    },
    "additionalProperties": False,
}

_VALIDATORS = {
    schema["title"]: Draft202012Validator(schema)
    for schema in (
        CREATE_PRODUCT_SCHEMA,
        UPDATE_PRODUCT_SCHEMA,
        PURCHASE_SCHEMA,
        ADD_TO_CART_SCHEMA,
        UPDATE_CART_SCHEMA,
        CHECKOUT_SCHEMA,
    )
}


def schema_errors(title: str, payload: Any) -> List[str]:
    """Return human readable violations of the named contract (empty when valid)."""
    validator = _VALIDATORS[title]
    errors = []
    for err in sorted(validator.iter_errors(payload), key=lambda e: [str(p) for p in e.absolute_path]):
        path = ".".join(str(p) for p in err.absolute_path)
        errors.append(f"{path}: {err.message}" if path else err.message)
    return errors


def validate(title: str, payload: Any) -> Dict[str, Any]:
    if payload is None:
        raise ValidationError("request body must be a JSON object")
    errors = schema_errors(title, payload)
    if errors:
        raise ValidationError("invalid request payload", details=errors)
    return payload


def parse_new_product(payload: Any) -> NewProduct:
    data = validate("CreateProduct", payload)
    return NewProduct(
        name=data["name"].strip(),
        description=data.get("description", ""),
        price=int(data["price"]),
        stock=int(data["stock"]),
        status=data.get("status", "active"),
    )


def parse_product_patch(payload: Any) -> ProductPatch:
    data = validate("UpdateProduct", payload)
    return ProductPatch(
        name=data["name"].strip() if "name" in data else None,
        description=data.get("description"),
        price=int(data["price"]) if "price" in data else None,
        stock=int(data["stock"]) if "stock" in data else None,
        status=data.get("status"),
    )


def parse_purchase(payload: Any) -> Tuple[int, int]:
    data = validate("Purchase", payload)
    return int(data["product_id"]), int(data["quantity"])


def parse_add_to_cart(payload: Any) -> Tuple[int, int]:
    data = validate("AddToCart", payload)
    return int(data["product_id"]), int(data["quantity"])


def parse_cart_quantity(payload: Any) -> int:
    data = validate("UpdateCartItem", payload)
    return int(data["quantity"])


def parse_checkout(payload: Any) -> List[int]:
    # An empty body checks out the whole cart.
    data = validate("CartCheckout", payload if payload is not None else {})
    return [int(i) for i in data.get("cart_item_ids", [])]


def parse_page_args(args: Mapping[str, str], default_limit: int = 20, max_limit: int = 100) -> Tuple[int, int]:
    """Lenient page/limit parsing: garbage falls back to defaults, limit is clamped.

    ``page`` is capped so that the row offset still fits an sqlite INTEGER.
    """
    try:
        page = max(1, int(args.get("page", 1)))
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    if limit < 1:
        limit = default_limit
    limit = min(limit, max_limit)
    return min(page, max_page(limit)), limit


def max_page(limit: int) -> int:
    return SQLITE_MAX_INT // limit + 1


def parse_id(raw: Any, label: str) -> int:
    """Parse a positive row id; anything sqlite cannot store is invalid."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid {label} ID")
    if value < 1 or value > SQLITE_MAX_INT:
        raise ValidationError(f"invalid {label} ID")
    return value


def parse_status_filter(value: Optional[str]) -> str:
    status = (value or "").strip().lower()
    if status and status not in PRODUCT_STATUSES:
        raise ValidationError(f"status must be one of: {', '.join(PRODUCT_STATUSES)}")
    return status
