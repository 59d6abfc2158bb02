#!/usr/bin/env python3
"""Load demo users, wallets and marketplace products.

Run ``python -m walletpoint.main`` first (or let ``create_app`` do it) so the
schema exists. Set APP_DB_PATH to target another database file.
"""
import os
import sys
import logging

from .dao import Database
from .main import DEFAULT_DB_PATH, init_db

logger = logging.getLogger(__name__)

USERS = [
    # (full_name, email, role, starting balance)
    ("Admin Kampus", "admin@kampus.ac.id", "admin", 0),
    ("Budi Santoso", "budi@kampus.ac.id", "mahasiswa", 250),
    ("Siti Rahma", "siti@kampus.ac.id", "mahasiswa", 100),
]

PRODUCTS = [
    # (name, description, price in points, stock)
    ("Campus Tote Bag", "Canvas tote with the campus logo", 40, 30),
    ("Coffee Voucher", "One free coffee at the student cafe", 15, 100),
    ("Notebook A5", "Dotted notebook, 120 pages", 25, 50),
    ("Hoodie", "Faculty hoodie, assorted sizes", 150, 10),
    ("Library Late-Fee Waiver", "Waives one late fee", 30, 20),
]


def seed_users(conn):
    """Insert demo users, each with a wallet"""
    for full_name, email, role, balance in USERS:
        existing = conn.execute("SELECT id FROM user WHERE email = ?", (email,)).fetchone()
        if existing:
            continue
        cur = conn.execute(
            "INSERT INTO user (full_name, email, role) VALUES (?, ?, ?)",
            (full_name, email, role),
        )
        conn.execute("INSERT INTO wallet (user_id, balance) VALUES (?, ?)", (cur.lastrowid, balance))
        logger.info("Inserted user %s (%s) with %s points", email, role, balance)


def seed_products(conn):
    """Insert demo products unless one with the same name exists"""
    for name, description, price, stock in PRODUCTS:
        existing = conn.execute("SELECT id FROM product WHERE name = ?", (name,)).fetchone()
        if existing:
            continue
        conn.execute(
            "INSERT INTO product (name, description, price, stock) VALUES (?, ?, ?, ?)",
            (name, description, price, stock),
        )
        logger.info("Inserted product %s - %s points", name, price)


def main(db_path: str = DEFAULT_DB_PATH) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    init_db(db_path)
    db = Database(db_path)
    try:
        with db.transaction() as conn:
            seed_users(conn)
            seed_products(conn)
            user_count = conn.execute("SELECT COUNT(*) FROM user").fetchone()[0]
            product_count = conn.execute("SELECT COUNT(*) FROM product WHERE status = 'active'").fetchone()[0]
    except Exception:
        logger.exception("Seeding failed for %s", db_path)
        return 1
    logger.info("Seeded %s: users=%s active products=%s", db_path, user_count, product_count)
    return 0


if __name__ == "__main__":
    sys.exit(main(os.environ.get("APP_DB_PATH", DEFAULT_DB_PATH)))
