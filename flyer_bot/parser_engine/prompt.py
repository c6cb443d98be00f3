from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)


FLYER_PROMPT = """
You are a data extraction engine for Brazilian supermarket promotional flyers
("encartes"). You receive ONE photo of a flyer.

Respond with a single JSON object only. No prose before or after it.

Expected JSON shape:

{
  "supermercado": "<store name as printed on the flyer>",
  "validade_promocao": "<last day of the promotion as YYYY-MM-DD, or null>",
  "produtos": [
    {
      "produto_nome": "<product name without brand and without size>",
      "marca": "<brand, or null if not printed>",
      "preco_float": <promotional price as a number, e.g. 19.9>,
      "unidade_padronizada": "<one of: kg, l, un>",
      "valor_padronizado": <package size converted to the unit above, e.g. 5 for 5kg, 0.9 for 900ml>,
      "preco_por_unidade": <preco_float divided by valor_padronizado, 2 decimals>
    }
  ]
}

Rules:
- One entry in "produtos" per priced product on the flyer.
- Prices use a dot as decimal separator. "R$ 19,90" becomes 19.9.
- Grams become kg and millilitres become l (500g -> 0.5 kg, 900ml -> 0.9 l).
- Products sold by unit or in packs use "un" and the number of units.
- If a field cannot be read, use null. Leave out products whose name or price cannot be read.
- Never invent products or prices.
- If the image is not a flyer, return {"supermercado": null, "validade_promocao": null, "produtos": []}.
"""


def load_prompt(path: Optional[str] = None) -> str:
    """
    Return the prompt sent with every flyer image.

    A PROMPT_FILE override lets operators tune wording without a deploy.
    The text is read once at startup and stays fixed for the process.
    """
    if not path:
        return FLYER_PROMPT.strip()

    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read().strip()
    except OSError as e:
        logger.warning("Could not read prompt file %s (%s); using built-in prompt.", path, e)
        return FLYER_PROMPT.strip()

    if not text:
        logger.warning("Prompt file %s is empty; using built-in prompt.", path)
        return FLYER_PROMPT.strip()

    logger.info("Loaded flyer prompt from %s", path)
    return text
