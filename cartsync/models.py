"""
Cart models for the storefront cart sync core.

This module defines the data shapes shared by the local cart, the persistence
adapter and the session reconciler:

- ProductSnapshot: catalog values captured when a product is added to the cart
- CartLineItem: one product's presence in the local cart
- RemoteCartRecord: the persisted row in the cart_items table
- AuthEvent: a discrete authentication-state transition message

# NOTE: Catalog values (title, prices, thumbnail) are snapshots taken at add
    time. They are not re-validated against the catalog afterwards.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductSnapshot(BaseModel):
    """Catalog values for a product at the moment it is added to the cart."""
    product_id: int = Field(..., description="Stable catalog identifier")
    title: str = Field(..., description="Product title")
    unit_price: float = Field(..., ge=0, description="List price per unit")
    discounted_unit_price: Optional[float] = Field(
        None, ge=0, description="Price per unit after discount (falls back to unit_price)"
    )
    thumbnail_image: Optional[str] = Field(None, description="Thumbnail image URL")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "product_id": 1,
                "title": "Mouse",
                "unit_price": 20.0,
                "discounted_unit_price": 18.0,
            }
        }
    )

    @property
    def effective_discounted_price(self) -> float:
        """Discounted price, or the list price when no discount is set."""
        if self.discounted_unit_price is None:
            return self.unit_price
        return self.discounted_unit_price


class CartLineItem(BaseModel):
    """One product's presence in the local cart."""
    product_id: int = Field(..., description="Stable catalog identifier, unique within a cart")
    title: str = Field(..., description="Product title snapshot")
    unit_price: float = Field(..., ge=0, description="List price snapshot")
    discounted_unit_price: float = Field(..., ge=0, description="Discounted price snapshot")
    quantity: int = Field(1, ge=1, description="Quantity in cart")
    remote_id: Optional[str] = Field(None, description="Id of the matching cart_items row")
    thumbnail_image: Optional[str] = Field(None, description="Thumbnail image URL")

    @property
    def total_price(self) -> float:
        """Line total (discounted price * quantity)."""
        return self.discounted_unit_price * self.quantity

    @classmethod
    def from_product(cls, product: ProductSnapshot, quantity: int) -> "CartLineItem":
        return cls(
            product_id=product.product_id,
            title=product.title,
            unit_price=product.unit_price,
            discounted_unit_price=product.effective_discounted_price,
            quantity=quantity,
            thumbnail_image=product.thumbnail_image,
        )

    @classmethod
    def from_record(cls, record: "RemoteCartRecord") -> "CartLineItem":
        """
        Convert a persisted row into a line item, carrying the row id forward
        as remote_id.
        """
        discounted = record.discounted_unit_price
        if discounted is None:
            discounted = record.unit_price
        return cls(
            product_id=record.product_id,
            title=record.title,
            unit_price=record.unit_price,
            discounted_unit_price=discounted,
            quantity=record.quantity,
            remote_id=record.id,
            thumbnail_image=record.thumbnail_url,
        )


class RemoteCartRecord(BaseModel):
    """
    Persisted cart row, one per (user_id, product_id).

    Column names follow the cart_items table; attribute names follow the rest
    of the package. Use from_row()/to_row() to cross that boundary.
    """
    id: str = Field(..., description="Row identifier")
    user_id: str = Field(..., description="Owning user")
    product_id: int = Field(..., description="Catalog identifier")
    title: str = Field(..., description="Product title snapshot")
    unit_price: float = Field(..., ge=0, description="List price snapshot")
    discounted_unit_price: Optional[float] = Field(None, ge=0, description="Discounted price snapshot")
    thumbnail_url: Optional[str] = Field(None, description="Thumbnail image URL")
    quantity: int = Field(..., ge=1, description="Stored quantity")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "RemoteCartRecord":
        """Build a record from a cart_items row as returned by the database."""
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            product_id=int(row["product_id"]),
            title=row.get("product_title") or "",
            unit_price=float(row.get("product_price") or 0.0),
            discounted_unit_price=(
                float(row["product_discounted_price"])
                if row.get("product_discounted_price") is not None
                else None
            ),
            thumbnail_url=row.get("product_image"),
            quantity=int(row["quantity"]),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_row(self) -> Dict[str, Any]:
        """Column mapping used when writing to the cart_items table."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "product_title": self.title,
            "product_price": self.unit_price,
            "product_discounted_price": self.discounted_unit_price,
            "product_image": self.thumbnail_url,
            "quantity": self.quantity,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class AuthEventType(str, Enum):
    INITIAL = "initial"
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


class AuthEvent(BaseModel):
    """A discrete authentication-state transition from the session provider."""
    type: AuthEventType
    user_id: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def initial(cls, user_id: Optional[str]) -> "AuthEvent":
        return cls(type=AuthEventType.INITIAL, user_id=user_id)

    @classmethod
    def signed_in(cls, user_id: str) -> "AuthEvent":
        return cls(type=AuthEventType.SIGNED_IN, user_id=user_id)

    @classmethod
    def signed_out(cls) -> "AuthEvent":
        return cls(type=AuthEventType.SIGNED_OUT)
