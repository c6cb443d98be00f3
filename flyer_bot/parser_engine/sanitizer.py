import re

# ```json\n ... ``` or ``` ... ```; first block only.
_FENCE_RE = re.compile(r"```(?:[a-zA-Z]+\n)?([\s\S]*?)```")


def sanitize(raw_text: str) -> str:
    """
    Return the body of the first fenced code block in the model output, trimmed.

    Prose before or after the fence (and any later fences) is dropped. Text
    without a complete fence (no fence, or an opening fence that is never
    closed) is returned trimmed and otherwise untouched. Never raises.
    """
    if not raw_text:
        return ""
    match = _FENCE_RE.search(raw_text)
    return (match.group(1) if match else raw_text).strip()
