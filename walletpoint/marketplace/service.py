from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Iterable, List, Optional

from ..dao import Database
from ..observability import CHECKOUT_FAILURES, POINTS_SPENT, PURCHASES
from .errors import BusinessRuleError, NotFoundError, ValidationError
from .models import (
    Cart,
    NewProduct,
    Product,
    ProductListParams,
    ProductPage,
    ProductPatch,
    PurchaseLine,
    Receipt,
)
from .policy import StatusPolicy
from .repository import MarketplaceRepo
from .validation import max_page, parse_status_filter

logger = logging.getLogger(__name__)


class MarketplaceService:
    def __init__(self, db: Database, policy: Optional[StatusPolicy] = None):
        self.db = db
        self.policy = policy or StatusPolicy()

    # --- catalog ---
    def list_products(self, status: str = "", page: int = 1, limit: int = 20, caller_role: Optional[str] = None) -> ProductPage:
        # Constrained callers get the forced status, so their filter is never parsed.
        if self.policy.is_constrained(caller_role):
            requested = self.policy.forced_status
        else:
            requested = parse_status_filter(status)
        limit = max(1, limit)
        params = ProductListParams(
            status=self.policy.override(requested, caller_role),
            page=min(max(1, page), max_page(limit)),
            limit=limit,
        )
        with self.db.connect() as conn:
            products, total = MarketplaceRepo(conn).list_products(params)
        return ProductPage(products=products, total=total, page=params.page, limit=params.limit)

    def get_product(self, product_id: int) -> Product:
        with self.db.connect() as conn:
            product = MarketplaceRepo(conn).find_product(product_id)
        if product is None:
            raise NotFoundError("product not found")
        return product

    def create_product(self, new: NewProduct) -> Product:
        with self.db.connect() as conn:
            repo = MarketplaceRepo(conn)
            product_id = repo.create_product(new)
            product = repo.find_product(product_id)
        logger.info("Product created id=%s name=%s", product.id, product.name)
        return product

    def update_product(self, product_id: int, patch: ProductPatch) -> Product:
        if patch.is_empty():
            raise ValidationError("no fields to update")
        with self.db.connect() as conn:
            repo = MarketplaceRepo(conn)
            if not repo.update_product(product_id, patch):
                raise NotFoundError("product not found")
            product = repo.find_product(product_id)
        logger.info("Product updated id=%s fields=%s", product_id, sorted(patch.columns()))
        return product

    def delete_product(self, product_id: int) -> None:
        with self.db.connect() as conn:
            if not MarketplaceRepo(conn).deactivate_product(product_id):
                raise NotFoundError("product not found")
        logger.info("Product deactivated id=%s", product_id)

    # --- cart ---
    def get_cart(self, user_id: int) -> Cart:
        with self.db.connect() as conn:
            return MarketplaceRepo(conn).get_cart(user_id)

    def add_to_cart(self, user_id: int, product_id: int, qty: int) -> int:
        if qty <= 0:
            raise ValidationError("quantity must be > 0")
        with self.db.transaction() as conn:
            repo = MarketplaceRepo(conn)
            product = self._available_product(repo, product_id)
            wanted = repo.cart_quantity(user_id, product_id) + qty
            if wanted > product.stock:
                raise BusinessRuleError(f"insufficient stock for {product.name}: only {product.stock} available")
            return repo.add_to_cart(user_id, product_id, qty)

    def update_cart_item(self, user_id: int, item_id: int, qty: int) -> None:
        # Removal is an explicit DELETE; a non-positive quantity is a client error.
        if qty <= 0:
            raise ValidationError("quantity must be > 0")
        with self.db.transaction() as conn:
            repo = MarketplaceRepo(conn)
            item = repo.find_cart_item(user_id, item_id)
            if item is None:
                raise NotFoundError("cart item not found")
            product = self._available_product(repo, item["product_id"])
            if qty > product.stock:
                raise BusinessRuleError(f"insufficient stock for {product.name}: only {product.stock} available")
            repo.update_cart_item(user_id, item_id, qty)

    def remove_from_cart(self, user_id: int, item_id: int) -> None:
        with self.db.connect() as conn:
            if not MarketplaceRepo(conn).remove_from_cart(user_id, item_id):
                raise NotFoundError("cart item not found")

    # --- purchase / checkout ---
    def purchase(self, user_id: int, product_id: int, qty: int, idempotency_key: Optional[str] = None) -> Receipt:
        return self._settle(user_id, [(product_id, qty)], source="purchase", idempotency_key=idempotency_key)

    def checkout(self, user_id: int, cart_item_ids: Optional[Iterable[int]] = None, idempotency_key: Optional[str] = None) -> Receipt:
        """Buy everything in the user's cart (or the listed cart items) in one transaction."""
        ids = list(dict.fromkeys(cart_item_ids)) if cart_item_ids else None
        return self._settle(user_id, None, source="cart", cart_item_ids=ids, idempotency_key=idempotency_key)

    def _settle(
        self,
        user_id: int,
        lines: Optional[List[PurchaseLine]],
        source: str,
        cart_item_ids: Optional[List[int]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Receipt:
        try:
            with self.db.transaction() as conn:
                repo = MarketplaceRepo(conn)
                if idempotency_key:
                    previous = repo.find_checkout_request(user_id, idempotency_key)
                    if previous is not None:
                        logger.info("Replayed checkout user=%s key=%s", user_id, idempotency_key)
                        return Receipt(
                            total_amount=previous["total_amount"],
                            balance=None,
                            transaction_ids=previous["transaction_ids"],
                            replayed=True,
                        )

                consumed_items: Optional[List[int]] = None
                if source == "cart":
                    cart = repo.get_cart(user_id, cart_item_ids)
                    if cart_item_ids is not None and len(cart.items) != len(cart_item_ids):
                        raise NotFoundError("cart item not found")
                    if not cart.items:
                        raise ValidationError("cart is empty")
                    lines = [(item.product_id, item.quantity) for item in cart.items]
                    consumed_items = [item.id for item in cart.items]

                receipt = self._apply(repo, user_id, lines or [], source)

                if consumed_items is not None:
                    repo.clear_cart(user_id, consumed_items)
                if idempotency_key:
                    repo.save_checkout_request(user_id, idempotency_key, receipt.total_amount, receipt.transaction_ids)
        except (BusinessRuleError, NotFoundError, ValidationError) as e:
            CHECKOUT_FAILURES.labels(reason=type(e).__name__).inc()
            logger.warning("Checkout rejected user=%s source=%s: %s", user_id, source, e)
            raise
        except Exception:
            CHECKOUT_FAILURES.labels(reason="internal").inc()
            raise

        PURCHASES.labels(source=source).inc()
        POINTS_SPENT.inc(receipt.total_amount)
        logger.info(
            "Checkout completed user=%s source=%s total=%s transactions=%s",
            user_id, source, receipt.total_amount, receipt.transaction_ids,
        )
        return receipt

    def _apply(self, repo: MarketplaceRepo, user_id: int, lines: List[PurchaseLine], source: str) -> Receipt:
        """Validate every line, then debit, decrement and write the ledger.

        Must run inside a transaction: any raise here rolls back all writes.
        """
        merged: "OrderedDict[int, int]" = OrderedDict()
        for product_id, qty in lines:
            if qty <= 0:
                raise ValidationError("quantity must be > 0")
            merged[product_id] = merged.get(product_id, 0) + qty
        if not merged:
            raise ValidationError("nothing to purchase")

        products = repo.find_products(list(merged))
        total = 0
        priced = []  # (product, qty, line_amount)
        for product_id, qty in merged.items():
            product = products.get(product_id)
            if product is None:
                raise NotFoundError(f"product {product_id} not found")
            if not product.is_active:
                raise BusinessRuleError(f"product {product.name} is not available")
            if qty > product.stock:
                raise BusinessRuleError(f"insufficient stock for {product.name}: only {product.stock} available")
            amount = product.price * qty
            total += amount
            priced.append((product, qty, amount))

        wallet = repo.find_wallet_by_user(user_id)
        if wallet is None:
            raise NotFoundError("wallet not found")
        if wallet.balance < total:
            raise BusinessRuleError(f"insufficient balance: need {total} points, have {wallet.balance}")

        if not repo.debit_wallet(wallet.id, total):
            raise BusinessRuleError("insufficient balance")

        transaction_ids = []
        receipt_lines = []
        for product, qty, amount in priced:
            if not repo.decrement_stock(product.id, qty):
                raise BusinessRuleError(f"insufficient stock for {product.name}")
            transaction_ids.append(repo.create_transaction(wallet.id, product.id, qty, amount))
            receipt_lines.append({"product_id": product.id, "quantity": qty, "amount": amount})

        if len(priced) == 1:
            product, qty, _ = priced[0]
            description = f"Marketplace {source}: {qty} x {product.name}"
        else:
            description = f"Marketplace {source}: {len(priced)} products"
        repo.record_wallet_debit(wallet.id, total, description)

        return Receipt(
            total_amount=total,
            balance=wallet.balance - total,
            transaction_ids=transaction_ids,
            lines=receipt_lines,
        )

    # --- ledger ---
    def list_transactions(self, page: int = 1, limit: int = 20) -> dict:
        limit = max(1, limit)
        page = min(max(1, page), max_page(limit))
        with self.db.connect() as conn:
            rows, total = MarketplaceRepo(conn).list_transactions(limit, (page - 1) * limit)
        return {"transactions": rows, "total": total, "limit": limit, "page": page}

    # --- helpers ---
    @staticmethod
    def _available_product(repo: MarketplaceRepo, product_id: int) -> Product:
        product = repo.find_product(product_id)
        if product is None:
            raise NotFoundError("product not found")
        if not product.is_active:
            raise BusinessRuleError(f"product {product.name} is not available")
        return product
