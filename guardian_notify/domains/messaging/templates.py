# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Message body rendering."""

import re
from typing import Any

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def render_template(template: str, context: dict[str, Any]) -> str:
    """Substitute {{name}} placeholders.

    Placeholders without a value in the context are left untouched so a
    reviewer can spot them before sending.

    Args:
        template: Template text.
        context: Values by placeholder name.

    Returns:
        Rendered text.

    Example:
        >>> render_template("Hello {{ name }}", {"name": "Mwila"})
        'Hello Mwila'
    """

    def substitute(match: re.Match[str]) -> str:
        key = match.group(1)
        if key not in context or context[key] is None:
            return match.group(0)
        return str(context[key])

    return _PLACEHOLDER.sub(substitute, template)
