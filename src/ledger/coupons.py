"""
Coupon code generation for reward redemptions
"""

import secrets
from typing import Callable

from src.core.config import settings
from src.core.constants import COUPON_ALPHABET

CodeGenerator = Callable[[], str]


def generate_coupon_code(length: int = None, alphabet: str = COUPON_ALPHABET) -> str:
    """
    Random fixed-length alphanumeric code.

    Uniqueness is enforced by the redemptions table, not here; callers
    retry with a fresh code when the insert collides.
    """
    length = length or settings.coupon_code_length
    return "".join(secrets.choice(alphabet) for _ in range(length))
