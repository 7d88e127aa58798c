"""Identifier generation for the TDF ecosystem.

Player IDs are drawn at random from the whole legal range rather than issued
sequentially, so they rarely collide with IDs assigned by the tournament
software itself. Organizer POPIDs come from the 7-digit block.
"""

import random
import re

PLAYER_ID_MIN = 1
PLAYER_ID_MAX = 9_999_999
PLAYER_ID_PATTERN = re.compile(r"^[0-9]{1,7}$")

POPID_MIN = 1_000_000
POPID_MAX = 9_999_999
POPID_PATTERN = re.compile(r"^[0-9]{7}$")

_rng = random.SystemRandom()


def generate_player_id() -> str:
    """Return a random external player ID (1-7 digits, no leading zeros)."""
    return str(_rng.randint(PLAYER_ID_MIN, PLAYER_ID_MAX))


def generate_organizer_popid() -> str:
    """Return a random 7-digit organizer POPID."""
    return str(_rng.randint(POPID_MIN, POPID_MAX))


def is_valid_player_id(value: str) -> bool:
    return bool(value) and bool(PLAYER_ID_PATTERN.match(value))


def is_valid_popid(value: str) -> bool:
    return bool(value) and bool(POPID_PATTERN.match(value))
