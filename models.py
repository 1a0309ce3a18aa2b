import math
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Union

from errors import ValidationError

ProductId = Union[str, int]

PRODUCT_FIELDS = (
    "id", "name", "slug", "description", "price", "currency", "available",
    "featured", "era", "period", "style", "metal", "stone", "images",
)


@dataclass
class Product:
    id: ProductId
    name: str
    price: float
    description: str = ""
    currency: str = "EUR"
    available: bool = True
    featured: bool = False
    slug: Optional[str] = None
    era: Optional[str] = None
    period: Optional[str] = None
    style: Optional[str] = None
    metal: Optional[str] = None
    stone: Optional[str] = None
    images: List[str] = field(default_factory=list)
    # keys the catalog file carries that this service does not model
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        known = {k: data[k] for k in PRODUCT_FIELDS if k in data}
        extra = {k: v for k, v in data.items() if k not in PRODUCT_FIELDS}
        known.setdefault("id", None)
        known.setdefault("name", "")
        known.setdefault("price", 0)
        if known.get("available") is None:
            known["available"] = True
        return cls(extra=extra, **known)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name in PRODUCT_FIELDS:
            value = getattr(self, name)
            if value is None:
                continue
            if name == "images" and not value:
                continue
            out[name] = value
        out.update(self.extra)
        return out


@dataclass
class CheckoutItem:
    """One cart line as posted by the browser."""

    id: ProductId
    name: str
    price: float
    quantity: int = 1
    currency: Optional[str] = None
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, index: int = 0) -> "CheckoutItem":
        if not isinstance(data, dict):
            raise ValidationError(f"Item {index} must be an object")

        item_id = data.get("id")
        if item_id is None or isinstance(item_id, bool) or str(item_id).strip() == "":
            raise ValidationError(f"Item {index} is missing an id")
        # ids travel comma-joined in session metadata and are matched stripped
        if "," in str(item_id) or str(item_id) != str(item_id).strip():
            raise ValidationError(f"Item {index} has an invalid id")

        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Item {item_id} is missing a name")

        price = data.get("price")
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            raise ValidationError(f"Item {item_id} has an invalid price")
        if not math.isfinite(price) or price < 0:
            raise ValidationError(f"Item {item_id} has an invalid price")

        quantity = data.get("quantity")
        if quantity is None:
            quantity = 1
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError(f"Item {item_id} has an invalid quantity")

        currency = data.get("currency") or None
        if currency is not None and (not isinstance(currency, str) or len(currency.strip()) != 3):
            raise ValidationError(f"Item {item_id} has an invalid currency")

        description = data.get("description") or None
        return cls(
            id=item_id,
            name=name.strip(),
            price=price,
            quantity=quantity,
            currency=currency.strip().lower() if currency else None,
            description=str(description) if description else None,
        )

    @property
    def unit_amount(self) -> int:
        """Price in minor currency units, rounded half up."""
        cents = Decimal(str(self.price)) * 100
        return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
