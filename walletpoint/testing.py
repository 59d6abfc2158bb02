"""Test helpers: create an isolated sqlite DB from schema and seed test data."""
import sqlite3

from .main import init_db


def create_test_db(db_path: str) -> str:
    """Create a sqlite DB at db_path and initialize the marketplace schema."""
    return init_db(db_path)


def seed_user(conn: sqlite3.Connection, full_name: str = "Alice", role: str = "mahasiswa", balance: int = 100, email: str = None) -> int:
    """Insert a user together with a wallet holding ``balance`` points."""
    cur = conn.execute(
        "INSERT INTO user (full_name, email, role) VALUES (?, ?, ?)",
        (full_name, email or f"{full_name.lower().replace(' ', '.')}@kampus.ac.id", role),
    )
    user_id = cur.lastrowid
    conn.execute("INSERT INTO wallet (user_id, balance) VALUES (?, ?)", (user_id, balance))
    return user_id


def seed_product(conn: sqlite3.Connection, name: str = "Sticker", price: int = 30, stock: int = 5, status: str = "active", description: str = "") -> int:
    cur = conn.execute(
        "INSERT INTO product (name, description, price, stock, status) VALUES (?, ?, ?, ?, ?)",
        (name, description, price, stock, status),
    )
    return cur.lastrowid


def balance_of(conn: sqlite3.Connection, user_id: int) -> int:
    return conn.execute("SELECT balance FROM wallet WHERE user_id = ?", (user_id,)).fetchone()[0]


def stock_of(conn: sqlite3.Connection, product_id: int) -> int:
    return conn.execute("SELECT stock FROM product WHERE id = ?", (product_id,)).fetchone()[0]


def row_count(conn: sqlite3.Connection, table: str) -> int:
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]


def auth_headers(user_id: int, role: str = "mahasiswa") -> dict:
    """Identity headers normally set by the upstream auth layer."""
    return {"X-User-Id": str(user_id), "X-User-Role": role}
