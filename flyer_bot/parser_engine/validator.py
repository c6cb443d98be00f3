import json
import logging
import os
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from jsonschema import Draft7Validator

from flyer_bot.errors import PayloadParseError

from .contract import ExtractedPayload

logger = logging.getLogger(__name__)

# Path: flyer_bot/parser_engine/schemas/
SCHEMA_DIR = os.path.join(
    os.path.dirname(__file__),
    "schemas"
)

PAYLOAD_SCHEMA = "flyer_payload.json"
LINE_ITEM_SCHEMA = "flyer_line_item.json"


@lru_cache(maxsize=None)
def load_schema(filename: str = PAYLOAD_SCHEMA) -> Dict[str, Any]:
    """
    Load a JSON schema file from the schemas directory.
    """
    path = os.path.join(SCHEMA_DIR, filename)

    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _field_path(path) -> str:
    """produtos, 0, preco_float -> produtos[0].preco_float"""
    out = ""
    for part in path:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            out += f".{part}" if out else str(part)
    return out or "<root>"


def _reasons(schema_file: str, data: Any, prefix: tuple = ()) -> List[str]:
    validator = Draft7Validator(load_schema(schema_file))
    errors = sorted(validator.iter_errors(data), key=lambda e: list(map(str, e.absolute_path)))
    return [f"{_field_path(prefix + tuple(e.absolute_path))}: {e.message}" for e in errors]


def validate_payload(data: Any) -> Tuple[bool, List[str]]:
    """
    Validate the document shape of a decoded model answer.

    Only the top level is checked here (merchant, expiry, `produtos` being
    an array); each product is checked on its own by validate_line_item().

    Returns:
        (True, []) if valid
        (False, ["<field>: <reason>", ...]) otherwise, sorted by field
    """
    reasons = _reasons(PAYLOAD_SCHEMA, data)
    return not reasons, reasons


def validate_line_item(item: Any, index: int = 0) -> Tuple[bool, List[str]]:
    """
    Validate one entry of `produtos`.

    Reasons are prefixed with the item path, e.g. `produtos[3].preco_float`.
    """
    reasons = _reasons(LINE_ITEM_SCHEMA, item, ("produtos", index))
    return not reasons, reasons


def parse_payload(text: str, sender: Optional[str] = None) -> ExtractedPayload:
    """
    Decode sanitized model text into an ExtractedPayload.

    An unreadable product does not sink the flyer: it is dropped from
    line_items and reported in rejected_items with its reasons.

    Raises:
        PayloadParseError: text is not JSON, or the document itself does not
            match the schema. The error's `reasons` lists every problem.
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PayloadParseError(
            "model output is not valid JSON",
            sender,
            reasons=[f"line {e.lineno} column {e.colno}: {e.msg}"],
        ) from e

    is_valid, reasons = validate_payload(data)
    if not is_valid:
        raise PayloadParseError("model output does not match the flyer schema", sender, reasons=reasons)

    valid_items = []
    rejected = []
    for index, item in enumerate(data["produtos"]):
        item_ok, item_reasons = validate_line_item(item, index)
        if item_ok:
            valid_items.append(item)
            continue
        name = item.get("produto_nome") if isinstance(item, dict) else None
        label = name if isinstance(name, str) and name else f"produtos[{index}]"
        logger.warning("Dropping unreadable product %s from %s: %s", label, sender, "; ".join(item_reasons))
        rejected.append((label, "; ".join(item_reasons)))

    payload = ExtractedPayload.from_raw(dict(data, produtos=valid_items))
    payload.rejected_items = rejected
    return payload
