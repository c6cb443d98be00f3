from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple, TypedDict


class LineItemDict(TypedDict, total=False):
    """
    One product as the vision model returns it.

    Keys are Portuguese because they are part of the prompt contract.
    """
    produto_nome: str
    marca: Optional[str]
    preco_float: float
    unidade_padronizada: Optional[str]
    valor_padronizado: Optional[float]
    preco_por_unidade: Optional[float]


class FlyerPayloadDict(TypedDict, total=False):
    supermercado: str
    validade_promocao: Optional[str]
    produtos: List[LineItemDict]


def _opt_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    return float(value)


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


@dataclass
class LineItem:
    product_name: str
    brand: Optional[str]
    price_amount: float
    standardized_unit: Optional[str] = None
    standardized_value: Optional[float] = None
    price_per_unit: Optional[float] = None

    @classmethod
    def from_raw(cls, raw: LineItemDict) -> "LineItem":
        return cls(
            product_name=str(raw["produto_nome"]),
            brand=_opt_str(raw.get("marca")),
            price_amount=float(raw["preco_float"]),
            standardized_unit=_opt_str(raw.get("unidade_padronizada")),
            standardized_value=_opt_float(raw.get("valor_padronizado")),
            price_per_unit=_opt_float(raw.get("preco_por_unidade")),
        )

    @property
    def catalog_key(self) -> tuple:
        """Identity of the catalog entry this item resolves to."""
        return (self.product_name, self.brand)


@dataclass
class ExtractedPayload:
    """
    Structured result of one flyer, after schema validation.

    Build it with validator.parse_payload(); from_raw() assumes the dict
    already passed the schema. Products that failed their own schema check
    are kept out of line_items and listed in rejected_items as
    (product name or position, reasons).
    """
    merchant_name: str
    promotion_expiry: Optional[str] = None
    line_items: List[LineItem] = field(default_factory=list)
    rejected_items: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: FlyerPayloadDict) -> "ExtractedPayload":
        return cls(
            merchant_name=str(raw["supermercado"]),
            promotion_expiry=_opt_str(raw.get("validade_promocao")),
            line_items=[LineItem.from_raw(item) for item in raw.get("produtos") or []],
        )
