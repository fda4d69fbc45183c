"""Session PIN issuance and format checks."""

import secrets

PIN_LENGTH = 4
FORBIDDEN_PINS = frozenset({
    '0000', '1111', '2222', '3333', '4444',
    '5555', '6666', '7777', '8888', '9999',
    '1234', '4321', '0123', '9876',
})


def generate_pin() -> str:
    while True:
        pin = f'{secrets.randbelow(10 ** PIN_LENGTH):0{PIN_LENGTH}d}'
        if pin not in FORBIDDEN_PINS:
            return pin


def normalize_pin(value: str | None) -> str | None:
    """Return the stripped PIN if it is well-formed, otherwise None."""
    if value is None:
        return None
    candidate = value.strip()
    if len(candidate) != PIN_LENGTH or not (candidate.isascii() and candidate.isdigit()):
        return None
    return candidate


def pins_match(expected: str | None, provided: str) -> bool:
    if not expected:
        return False
    return secrets.compare_digest(expected, provided)
