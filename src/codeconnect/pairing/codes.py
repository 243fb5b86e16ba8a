"""Short pairing code generation.

Codes are drawn from the secrets CSPRNG.
"""

import secrets
import string

DEFAULT_ALPHABET = string.ascii_uppercase + string.digits
DEFAULT_CODE_LENGTH = 4


def _check(length: int, alphabet: str) -> None:
    if length < 1:
        raise ValueError(f"Code length must be >= 1, got {length}")
    if len(set(alphabet)) < 2:
        raise ValueError("Alphabet needs at least 2 distinct symbols")


def generate_code(
    length: int = DEFAULT_CODE_LENGTH,
    alphabet: str = DEFAULT_ALPHABET,
) -> str:
    """Generate a random pairing code.

    Args:
        length: Number of symbols.
        alphabet: Symbols to draw from.

    Returns:
        Code such as "K7Q2".

    Raises:
        ValueError: If length or alphabet is unusable.
    """
    _check(length, alphabet)
    return "".join(secrets.choice(alphabet) for _ in range(length))


def code_space(
    length: int = DEFAULT_CODE_LENGTH,
    alphabet: str = DEFAULT_ALPHABET,
) -> int:
    """Number of distinct codes for the given shape."""
    _check(length, alphabet)
    return len(set(alphabet)) ** length


def normalize_code(raw: str, alphabet: str = DEFAULT_ALPHABET) -> str:
    """Strip whitespace, and uppercase user input for case-free alphabets."""
    code = raw.strip()
    if alphabet == alphabet.upper():
        code = code.upper()
    return code


def is_well_formed(
    code: str,
    length: int = DEFAULT_CODE_LENGTH,
    alphabet: str = DEFAULT_ALPHABET,
) -> bool:
    """Check code shape without touching the store."""
    if not code or len(code) != length:
        return False
    return all(c in alphabet for c in code)
