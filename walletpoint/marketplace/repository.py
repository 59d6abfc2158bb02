from __future__ import annotations

import json
import sqlite3
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Cart, CartLine, NewProduct, Product, ProductListParams, ProductPatch, Wallet


PRODUCT_COLUMNS = "id, name, description, price, stock, status, created_at, updated_at"
NOW = "strftime('%Y-%m-%d %H:%M:%f', 'now')"


class MarketplaceRepo:
    """SQL access for products, carts and the marketplace ledger.

    Bound to one connection. Methods never commit; the caller decides the
    transaction boundary (autocommit for single statements, ``transaction()``
    for checkout).
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # --- products ---
    def list_products(self, params: ProductListParams) -> Tuple[List[Product], int]:
        where = ""
        args: list = []
        if params.status:
            where = " WHERE status = ?"
            args.append(params.status)
        total = self.conn.execute(f"SELECT COUNT(*) FROM product{where}", args).fetchone()[0]
        rows = self.conn.execute(
            f"SELECT {PRODUCT_COLUMNS} FROM product{where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
            args + [params.limit, params.offset],
        ).fetchall()
        return [Product.from_row(r) for r in rows], int(total)

    def find_product(self, product_id: int) -> Optional[Product]:
        row = self.conn.execute(
            f"SELECT {PRODUCT_COLUMNS} FROM product WHERE id = ?",
            (product_id,),
        ).fetchone()
        return Product.from_row(row) if row else None

    def find_products(self, product_ids: Sequence[int]) -> Dict[int, Product]:
        if not product_ids:
            return {}
        placeholders = ",".join("?" for _ in product_ids)
        rows = self.conn.execute(
            f"SELECT {PRODUCT_COLUMNS} FROM product WHERE id IN ({placeholders})",
            list(product_ids),
        ).fetchall()
        return {r["id"]: Product.from_row(r) for r in rows}

    def create_product(self, product: NewProduct) -> int:
        cur = self.conn.execute(
            "INSERT INTO product (name, description, price, stock, status) VALUES (?, ?, ?, ?, ?)",
            (product.name, product.description, product.price, product.stock, product.status),
        )
        return cur.lastrowid

    def update_product(self, product_id: int, patch: ProductPatch) -> bool:
        columns = patch.columns()
        # Column names come from ProductPatch.COLUMNS only, never from the request.
        assignments = ", ".join(f"{col} = ?" for col in columns)
        cur = self.conn.execute(
            f"UPDATE product SET {assignments}, updated_at = {NOW} WHERE id = ?",
            list(columns.values()) + [product_id],
        )
        return cur.rowcount == 1

    def deactivate_product(self, product_id: int) -> bool:
        cur = self.conn.execute(
            f"UPDATE product SET status = 'inactive', updated_at = {NOW} WHERE id = ?",
            (product_id,),
        )
        return cur.rowcount == 1

    def decrement_stock(self, product_id: int, qty: int) -> bool:
        """Decrement stock, refusing to go negative."""
        cur = self.conn.execute(
            f"UPDATE product SET stock = stock - ?, updated_at = {NOW} WHERE id = ? AND stock >= ?",
            (qty, product_id, qty),
        )
        return cur.rowcount == 1

    # --- cart ---
    def add_to_cart(self, user_id: int, product_id: int, qty: int) -> int:
        self.conn.execute(
            "INSERT INTO cart_item (user_id, product_id, quantity) VALUES (?, ?, ?) "
            f"ON CONFLICT(user_id, product_id) DO UPDATE SET quantity = quantity + excluded.quantity, updated_at = {NOW}",
            (user_id, product_id, qty),
        )
        row = self.conn.execute(
            "SELECT id FROM cart_item WHERE user_id = ? AND product_id = ?",
            (user_id, product_id),
        ).fetchone()
        return row["id"]

    def cart_quantity(self, user_id: int, product_id: int) -> int:
        row = self.conn.execute(
            "SELECT quantity FROM cart_item WHERE user_id = ? AND product_id = ?",
            (user_id, product_id),
        ).fetchone()
        return int(row["quantity"]) if row else 0

    def find_cart_item(self, user_id: int, item_id: int) -> Optional[sqlite3.Row]:
        return self.conn.execute(
            "SELECT id, user_id, product_id, quantity FROM cart_item WHERE user_id = ? AND id = ?",
            (user_id, item_id),
        ).fetchone()

    def get_cart(self, user_id: int, item_ids: Optional[Iterable[int]] = None) -> Cart:
        q = (
            "SELECT ci.id AS item_id, ci.product_id, ci.quantity, "
            "p.id, p.name, p.description, p.price, p.stock, p.status, p.created_at, p.updated_at "
            "FROM cart_item ci JOIN product p ON ci.product_id = p.id WHERE ci.user_id = ?"
        )
        args: list = [user_id]
        if item_ids is not None:
            ids = list(item_ids)
            if not ids:
                return Cart()
            q += f" AND ci.id IN ({','.join('?' for _ in ids)})"
            args.extend(ids)
        q += " ORDER BY ci.id"
        rows = self.conn.execute(q, args).fetchall()
        return Cart(items=[
            CartLine(id=r["item_id"], product_id=r["product_id"], quantity=int(r["quantity"]), product=Product.from_row(r))
            for r in rows
        ])

    def update_cart_item(self, user_id: int, item_id: int, qty: int) -> bool:
        cur = self.conn.execute(
            f"UPDATE cart_item SET quantity = ?, updated_at = {NOW} WHERE user_id = ? AND id = ?",
            (qty, user_id, item_id),
        )
        return cur.rowcount == 1

    def remove_from_cart(self, user_id: int, item_id: int) -> bool:
        cur = self.conn.execute(
            "DELETE FROM cart_item WHERE user_id = ? AND id = ?",
            (user_id, item_id),
        )
        return cur.rowcount == 1

    def clear_cart(self, user_id: int, item_ids: Optional[Iterable[int]] = None) -> int:
        if item_ids is None:
            cur = self.conn.execute("DELETE FROM cart_item WHERE user_id = ?", (user_id,))
            return cur.rowcount
        ids = list(item_ids)
        if not ids:
            return 0
        cur = self.conn.execute(
            f"DELETE FROM cart_item WHERE user_id = ? AND id IN ({','.join('?' for _ in ids)})",
            [user_id] + ids,
        )
        return cur.rowcount

    # --- wallet ---
    def find_wallet_by_user(self, user_id: int) -> Optional[Wallet]:
        row = self.conn.execute(
            "SELECT id, user_id, balance FROM wallet WHERE user_id = ?",
            (user_id,),
        ).fetchone()
        if row is None:
            return None
        return Wallet(id=row["id"], user_id=row["user_id"], balance=int(row["balance"]))

    def debit_wallet(self, wallet_id: int, amount: int) -> bool:
        """Debit the wallet, refusing to overdraw."""
        cur = self.conn.execute(
            f"UPDATE wallet SET balance = balance - ?, updated_at = {NOW} WHERE id = ? AND balance >= ?",
            (amount, wallet_id, amount),
        )
        return cur.rowcount == 1

    # --- ledger ---
    def create_transaction(self, wallet_id: int, product_id: int, qty: int, total_amount: int) -> int:
        cur = self.conn.execute(
            "INSERT INTO marketplace_transaction (wallet_id, product_id, quantity, total_amount) VALUES (?, ?, ?, ?)",
            (wallet_id, product_id, qty, total_amount),
        )
        return cur.lastrowid

    def record_wallet_debit(self, wallet_id: int, amount: int, description: str) -> int:
        cur = self.conn.execute(
            "INSERT INTO wallet_transaction (wallet_id, type, amount, description) VALUES (?, 'marketplace', ?, ?)",
            (wallet_id, -amount, description),
        )
        return cur.lastrowid

    def list_transactions(self, limit: int, offset: int) -> Tuple[List[dict], int]:
        total = self.conn.execute("SELECT COUNT(*) FROM marketplace_transaction").fetchone()[0]
        rows = self.conn.execute(
            "SELECT mt.id, mt.wallet_id, mt.product_id, mt.quantity, mt.total_amount, mt.created_at, "
            "p.name AS product_name, u.full_name AS user_name, u.email AS user_email "
            "FROM marketplace_transaction mt "
            "LEFT JOIN product p ON mt.product_id = p.id "
            "LEFT JOIN wallet w ON mt.wallet_id = w.id "
            "LEFT JOIN user u ON w.user_id = u.id "
            "ORDER BY mt.created_at DESC, mt.id DESC LIMIT ? OFFSET ?",
            (limit, offset),
        ).fetchall()
        return [dict(r) for r in rows], int(total)

    # --- idempotency ---
    def find_checkout_request(self, user_id: int, key: str) -> Optional[dict]:
        row = self.conn.execute(
            "SELECT total_amount, transaction_ids FROM checkout_request WHERE user_id = ? AND idempotency_key = ?",
            (user_id, key),
        ).fetchone()
        if row is None:
            return None
        return {"total_amount": int(row["total_amount"]), "transaction_ids": json.loads(row["transaction_ids"])}

    def save_checkout_request(self, user_id: int, key: str, total_amount: int, transaction_ids: List[int]) -> None:
        self.conn.execute(
            "INSERT INTO checkout_request (user_id, idempotency_key, total_amount, transaction_ids) VALUES (?, ?, ?, ?)",
            (user_id, key, total_amount, json.dumps(transaction_ids)),
        )
