import logging
import re
from typing import Any, Callable, Dict, Optional, Pattern

log = logging.getLogger(__name__)

# {TOKEN} as used by installer processor arguments
BRACE_TOKEN = re.compile(r"\{([A-Za-z0-9_]+)\}")


def replace_text(value: Any, replacements: Dict[str, str]) -> Any:
    """
    Plain substring replacement, used for templated configuration values.

    Args:
        value: The configuration value. Anything but a string is returned unchanged.
        replacements: Maps each placeholder (e.g. ':thisdir:') to its text.

    Returns:
        The value with every placeholder replaced, in insertion order.
    """
    if not isinstance(value, str):
        return value
    if not isinstance(replacements, dict):
        log.warning(f"replace_text: expected a dict of replacements, got {type(replacements).__name__}")
        return value

    for placeholder, text in replacements.items():
        if not isinstance(placeholder, str) or not isinstance(text, str):
            log.warning(f"replace_text: skipping non-string replacement {placeholder!r}")
            continue
        value = value.replace(placeholder, text)
    return value


def substitute_tokens(
    value: str,
    table: Dict[str, str],
    pattern: Pattern[str] = BRACE_TOKEN,
    on_missing: Optional[Callable[[str], str]] = None,
) -> str:
    """
    Substitutes every token matched by `pattern` in a single pass.

    Unlike replace_text, a substituted value is never scanned again, so a
    value that itself contains "{X}" is left alone. Tokens absent from
    `table` are handed to `on_missing`; without it they stay as-is.
    """

    def lookup(match: "re.Match[str]") -> str:
        token = match.group(1)
        if token in table:
            return table[token]
        if on_missing is not None:
            return on_missing(token)
        return match.group(0)

    return pattern.sub(lookup, value)
