"""Phone number masking for log lines."""

import re
from typing import Optional


def mask_phone(number: Optional[str], show_last_digits: int = 4) -> str:
    """
    Mask a phone number for logging.

    Examples:
        +51999888777 → ***8777
        None         → unknown
    """
    if not number:
        return "unknown"

    digits = re.sub(r'\D', '', str(number))

    if len(digits) <= show_last_digits:
        return "***"

    return f"***{digits[-show_last_digits:]}"
