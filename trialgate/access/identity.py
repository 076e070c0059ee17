from __future__ import annotations

from trialgate.access.constants import DOT_INSENSITIVE_DOMAINS, PLUS_ALIASING_DOMAINS


def normalize_email(email: str) -> str:
    """Canonical identity key for an email address.

    Lowercases the whole address. For consumer webmail domains that deliver
    sub-addresses to the base mailbox, the ``+tag`` suffix is dropped; Gmail
    additionally ignores dots and is folded onto ``gmail.com``. Applying the
    function twice yields the same key.
    """
    normalized = email.strip().lower()
    local_part, separator, domain = normalized.rpartition("@")
    if not separator or not local_part:
        return normalized

    if domain in PLUS_ALIASING_DOMAINS:
        local_part = local_part.split("+", 1)[0]
    if domain in DOT_INSENSITIVE_DOMAINS:
        local_part = local_part.replace(".", "")
        domain = DOT_INSENSITIVE_DOMAINS[domain]

    if not local_part:
        return normalized
    return f"{local_part}@{domain}"
