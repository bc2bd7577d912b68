"""Phone number to WhatsApp chat id conversion."""

from __future__ import annotations

import re

DEFAULT_COUNTRY_CODE = "91"
CHAT_ID_SUFFIX = "@c.us"

_NON_DIGITS = re.compile(r"\D")


def normalize_number(raw: str) -> str:
    """Turn a user-supplied phone number into a WhatsApp chat id.

    Non-digits are stripped.  A bare 10-digit national number gets the
    default country code; any other length is used as-is.
    """
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 10:
        digits = DEFAULT_COUNTRY_CODE + digits
    return f"{digits}{CHAT_ID_SUFFIX}"
