"""Pairing module for codeconnect.

Provides short-code pairing including:
- Code generation
- Pairing record state machine
- Issue / claim / bind / close / expire orchestration
- Background expiry sweeping
"""

from .codes import code_space, generate_code, is_well_formed, normalize_code
from .pairing_manager import PairingManager
from .record import PairingRecord, PairingState
from .sweeper import ExpirySweeper

__all__ = [
    "ExpirySweeper",
    "PairingManager",
    "PairingRecord",
    "PairingState",
    "code_space",
    "generate_code",
    "is_well_formed",
    "normalize_code",
]
