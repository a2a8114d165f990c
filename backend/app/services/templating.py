"""``{{ dotted.path }}`` placeholder rendering for notification subjects, bodies and recipients."""
import re
from typing import Any

from app.core.exceptions import RuleEvaluationError

_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][\w.]*)\s*\}\}")


def lookup(payload: dict, path: str) -> Any:
    """Resolve ``a.b.c`` against nested dicts. Missing segments yield None."""
    current: Any = payload
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def validate_template(template: str) -> None:
    """Raise RuleEvaluationError if the template has stray or malformed braces."""
    remainder = _PLACEHOLDER.sub("", template)
    if "{{" in remainder or "}}" in remainder:
        raise RuleEvaluationError(
            "Malformed template: unbalanced or invalid placeholder",
            {"template": template},
        )


def render_template(template: str, payload: dict) -> str:
    """Substitute placeholders from payload; missing values render as ''."""
    validate_template(template)

    def _sub(match: re.Match) -> str:
        value = lookup(payload, match.group(1))
        return "" if value is None else str(value)

    return _PLACEHOLDER.sub(_sub, template)
