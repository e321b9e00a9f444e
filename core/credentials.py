# core/credentials.py
"""
Secret masking for values returned to the management UI

A masked value keeps the first two and last two characters and replaces
the interior with asterisks; secrets of four characters or fewer become a
fixed "****". The asterisk doubles as the marker that a value posted back
by the UI is the masked placeholder rather than a new secret.
"""

MASK_CHAR = '*'
SHORT_MASK = MASK_CHAR * 4


def mask_secret(value: str) -> str:
    """Return the partially redacted form of a secret"""
    if not value:
        return ''
    if len(value) <= 4:
        return SHORT_MASK
    return value[:2] + MASK_CHAR * (len(value) - 4) + value[-2:]


def is_masked(value: str) -> bool:
    """True when a submitted value is a masked placeholder, meaning 'unchanged'"""
    return bool(value) and MASK_CHAR in value


def merge_secret(submitted: str, current: str) -> str:
    """Keep the stored secret when the submitted one is a masked placeholder"""
    if is_masked(submitted):
        return current
    return submitted
