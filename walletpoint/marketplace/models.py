from __future__ import annotations

import sqlite3
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple


PRODUCT_STATUSES = ("active", "inactive")

PurchaseLine = Tuple[int, int]  # (product_id, qty)


@dataclass
class Product:
    id: int
    name: str
    description: str
    price: int
    stock: int
    status: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Product":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            price=int(row["price"]),
            stock=int(row["stock"]),
            status=row["status"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class NewProduct:
    name: str
    price: int
    stock: int
    description: str = ""
    status: str = "active"


@dataclass
class ProductPatch:
    """Partial product update. Only fields that are not None are written."""

    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[int] = None
    stock: Optional[int] = None
    status: Optional[str] = None

    COLUMNS = ("name", "description", "price", "stock", "status")

    def columns(self) -> Dict[str, Any]:
        return {col: getattr(self, col) for col in self.COLUMNS if getattr(self, col) is not None}

    def is_empty(self) -> bool:
        return not self.columns()


@dataclass
class ProductListParams:
    status: str = ""
    page: int = 1
    limit: int = 20

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class ProductPage:
    products: List[Product]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit

    def to_dict(self) -> Dict[str, Any]:
        return {
            "products": [p.to_dict() for p in self.products],
            "total": self.total,
            "page": self.page,
            "limit": self.limit,
            "total_pages": self.total_pages,
        }


@dataclass
class CartLine:
    id: int
    product_id: int
    quantity: int
    product: Product

    @property
    def subtotal(self) -> int:
        return self.product.price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "subtotal": self.subtotal,
            "product": self.product.to_dict(),
        }


@dataclass
class Cart:
    items: List[CartLine] = field(default_factory=list)

    @property
    def total_price(self) -> int:
        return sum(item.subtotal for item in self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {"items": [i.to_dict() for i in self.items], "total_price": self.total_price}


@dataclass
class Wallet:
    id: int
    user_id: int
    balance: int


@dataclass
class Receipt:
    total_amount: int
    balance: Optional[int]
    transaction_ids: List[int]
    lines: List[Dict[str, int]] = field(default_factory=list)
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
