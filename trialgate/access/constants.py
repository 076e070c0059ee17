from __future__ import annotations

from datetime import timedelta

TRIAL_WINDOW = timedelta(days=7)

# Providers that deliver "+tag" sub-addresses to the base mailbox.
PLUS_ALIASING_DOMAINS = frozenset(
    {
        "gmail.com",
        "googlemail.com",
        "outlook.com",
        "hotmail.com",
        "live.com",
        "yahoo.com",
        "icloud.com",
    }
)
# Providers that also ignore dots in the local part, mapped to their primary domain.
DOT_INSENSITIVE_DOMAINS = {
    "gmail.com": "gmail.com",
    "googlemail.com": "gmail.com",
}
