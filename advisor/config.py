"""Configuration constants for the colonist.io advisor.

Runtime settings can be overridden via environment variables.
Uses _safe_int() / _safe_choice() to validate env vars with fallback.
"""
import os
import logging
from dataclasses import dataclass

_logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: int, min_val: int = 1, max_val: int = 65535) -> int:
    """Parse integer from environment variable with validation and fallback.

    Args:
        env_var: Name of the environment variable.
        default: Default value if env var is unset or invalid.
        min_val: Minimum acceptable value (inclusive).
        max_val: Maximum acceptable value (inclusive).

    Returns:
        Parsed integer, or default if parsing/validation fails.
    """
    raw = os.environ.get(env_var)
    if raw is None:
        return default
    try:
        val = int(raw)
        if val < min_val or val > max_val:
            _logger.warning(
                f"{env_var}={val} out of range [{min_val}, {max_val}], "
                f"using default {default}"
            )
            return default
        return val
    except ValueError:
        _logger.warning(
            f"{env_var}={raw!r} is not a valid integer, using default {default}"
        )
        return default


def _safe_choice(env_var: str, default: str, choices) -> str:
    """Parse a case-insensitive enumerated value from an environment variable."""
    raw = os.environ.get(env_var)
    if raw is None:
        return default
    val = raw.strip().lower()
    if val not in choices:
        _logger.warning(
            f"{env_var}={raw!r} not one of {sorted(choices)}, using default {default}"
        )
        return default
    return val


LOG_LEVEL = _safe_choice(
    "ADVISOR_LOG_LEVEL", "info", {"debug", "info", "warning", "error"}
).upper()

# Which corner/edge offset table the topology builder uses (see topology.py)
COORD_SCHEME = _safe_choice("ADVISOR_COORD_SCHEME", "observed", {"observed", "axial"})

# How many ranked candidates each suggestion returns
TOP_SETTLEMENTS = _safe_int("ADVISOR_TOP_SETTLEMENTS", 5, 1, 54)
TOP_ROADS = _safe_int("ADVISOR_TOP_ROADS", 3, 1, 72)
TOP_ROBBER = _safe_int("ADVISOR_TOP_ROBBER", 3, 1, 19)

# Upper bound on entries kept by the in-memory message catalogs
CATALOG_LIMIT = _safe_int("ADVISOR_CATALOG_LIMIT", 5000, 1, 1_000_000)

RESOURCES = ["wood", "brick", "sheep", "wheat", "ore"]

# colonist.io resource card ids -> resource names
COLONIST_RESOURCE_TO_NAME = {
    1: "wood",
    2: "brick",
    3: "sheep",
    4: "wheat",
    5: "ore",
}

# colonist.io tile types -> terrain names
COLONIST_TILE_TO_NAME = {
    0: "desert",
    1: "wood",
    2: "brick",
    3: "sheep",
    4: "wheat",
    5: "ore",
}

# colonist.io port types -> (ratio, accepted resource)
# 1 = 3:1 generic, 2-6 = 2:1 specific resource
COLONIST_PORT_TYPES = {
    1: (3, "any"),
    2: (2, "wood"),
    3: (2, "brick"),
    4: (2, "sheep"),
    5: (2, "wheat"),
    6: (2, "ore"),
}

# colonist.io dev card values; 10 is a face-down card
DEVCARD_HIDDEN = 10
COLONIST_VALUE_TO_DEVCARD = {
    11: "knight",
    12: "victory_point",
    13: "monopoly",
    14: "road_building",
    15: "year_of_plenty",
}
DEVCARD_KNIGHT = 11

PLAYER_COLOR_NAMES = {
    1: "red",
    2: "blue",
    3: "orange",
    4: "white",
}

# Relative number of two-die combinations per total
DICE_PIPS = {
    2: 1, 3: 2, 4: 3, 5: 4, 6: 5,
    7: 6,
    8: 5, 9: 4, 10: 3, 11: 2, 12: 1,
}

BUILD_COSTS = {
    "road": {"wood": 1, "brick": 1},
    "settlement": {"wood": 1, "brick": 1, "sheep": 1, "wheat": 1},
    "city": {"wheat": 2, "ore": 3},
    "dev_card": {"sheep": 1, "wheat": 1, "ore": 1},
}

# colonist.io building types in tileCornerStates
BUILDING_SETTLEMENT = 1
BUILDING_CITY = 2

# colonist.io incoming message type numbers
MSG_TYPE_GAME_SNAPSHOT = 4
MSG_TYPE_RESOURCE_DISTRIBUTION = 28
MSG_TYPE_AVAILABLE_SETTLEMENTS = 30
MSG_TYPE_AVAILABLE_ROADS = 31
MSG_TYPE_AVAILABLE_CITIES = 32
MSG_TYPE_AVAILABLE_ROBBER_SPOTS = 33
MSG_TYPE_TRADE_EXECUTION = 43
MSG_TYPE_GAME_OVER = 45
MSG_TYPE_GAME_STATE_DIFF = 91

AVAILABLE_SPOT_TYPES = (
    MSG_TYPE_AVAILABLE_SETTLEMENTS,
    MSG_TYPE_AVAILABLE_ROADS,
    MSG_TYPE_AVAILABLE_CITIES,
    MSG_TYPE_AVAILABLE_ROBBER_SPOTS,
)

# colonist.io action states (from currentState.actionState)
COLONIST_ACTION_STATE_ROLL_DICE = 0
COLONIST_ACTION_STATE_PLACE_SETTLEMENT = 1
COLONIST_ACTION_STATE_PLACE_ROAD = 3
COLONIST_ACTION_STATE_DISCARD = 4
COLONIST_ACTION_STATE_MAIN_TURN = 7
COLONIST_ACTION_STATE_PLACE_ROBBER = 24
COLONIST_ACTION_STATE_STEAL_CARD = 25

LARGEST_ARMY_MIN_KNIGHTS = 3
DISCARD_RISK_CARDS = 7


@dataclass(frozen=True)
class ScoringWeights:
    """Weights used by the corner/road/robber heuristics.

    These are tuning parameters, not protocol constants. Raw pips dominate,
    then diversity, then the situational bonuses.
    """
    pips: float = 10.0
    diversity: float = 8.0
    ore_wheat_setup: float = 1.0
    ore_wheat_main: float = 2.5
    port_generic: float = 5.0
    port_matching_base: float = 10.0
    port_unmatched: float = 3.0
    hot_number: float = 3.0          # 6 or 8
    warm_number: float = 1.5         # 5 or 9
    robber_penalty: float = 5.0
    complementary: float = 4.0
    lookahead: float = 0.15
    road_scale: float = 0.4
    road_port_bonus: float = 4.0
    robber_city_bonus: float = 3.0


SCORING_WEIGHTS = ScoringWeights()
