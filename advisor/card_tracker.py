"""Opponent card counting via observable game events.

Tracks per-opponent resource hands using information from dice distributions,
trades and building costs.  Unknown cards (robber steals by third parties,
Year of Plenty) are handled via reconciliation with the authoritative hand
size from colonist.io player states.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from advisor.config import BUILD_COSTS, COLONIST_RESOURCE_TO_NAME, RESOURCES

logger = logging.getLogger(__name__)


def resource_name(card_id) -> Optional[str]:
    """Resource name for an integer card id; anything else gives None."""
    if isinstance(card_id, bool) or not isinstance(card_id, int):
        return None
    return COLONIST_RESOURCE_TO_NAME.get(card_id)


@dataclass
class PlayerHand:
    """Tracked resource hand for one opponent."""
    known: Dict[str, int] = field(
        default_factory=lambda: {r: 0 for r in RESOURCES}
    )
    total: Optional[int] = None  # authoritative hand size, once seen

    @property
    def unknown(self) -> int:
        """Cards we can't attribute to a specific resource."""
        if self.total is None:
            return 0
        return max(0, self.total - sum(self.known.values()))


class OpponentCardTracker:
    """Track opponent resource hands from observable game events."""

    def __init__(self):
        self.hands: Dict[int, PlayerHand] = {}
        self.my_color: Optional[int] = None

    def reset(self, my_color: Optional[int] = None):
        """Clear all tracking (new game)."""
        self.hands.clear()
        self.my_color = my_color

    def init_player(self, color: int):
        """Initialize tracking for an opponent."""
        if color == self.my_color or color in self.hands:
            return
        self.hands[color] = PlayerHand()

    def _tracked(self, color) -> Optional[PlayerHand]:
        if isinstance(color, str) and color.isdigit():
            color = int(color)
        if isinstance(color, bool) or not isinstance(color, int):
            return None
        if color == self.my_color or color <= 0:
            return None
        if color not in self.hands:
            self.init_player(color)
        return self.hands[color]

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def on_resource_distribution(self, distributions: Iterable[Dict]):
        """Process type 28 dice distribution for opponents."""
        for dist in distributions:
            hand = self._tracked(dist.get("owner", -1))
            if hand is None:
                continue
            resource = resource_name(dist.get("card"))
            if resource:
                hand.known[resource] += 1

    def on_trade(
        self,
        giving_player: int,
        receiving_player: int,
        giving_cards: List[int],
        receiving_cards: List[int],
    ):
        """Process type 43 trade execution for opponents."""
        # Giver loses giving_cards, gains receiving_cards
        self._exchange(giving_player, lose=giving_cards, gain=receiving_cards)
        # Receiver loses receiving_cards, gains giving_cards
        self._exchange(receiving_player, lose=receiving_cards, gain=giving_cards)

    def _exchange(self, color: int, lose: List[int], gain: List[int]):
        hand = self._tracked(color)
        if hand is None:
            return
        for card_id in lose:
            resource = resource_name(card_id)
            if resource:
                hand.known[resource] = max(0, hand.known[resource] - 1)
        for card_id in gain:
            resource = resource_name(card_id)
            if resource:
                hand.known[resource] += 1

    def on_build(self, color: int, building_type: str):
        """Deduct known building costs when an opponent builds.

        building_type: "road", "settlement", "city" or "dev_card"
        """
        hand = self._tracked(color)
        if hand is None:
            return
        costs = BUILD_COSTS.get(building_type)
        if not costs:
            logger.warning(f"Unknown build type {building_type!r}")
            return
        for resource, amount in costs.items():
            hand.known[resource] = max(0, hand.known[resource] - amount)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, color: int, authoritative_total: int):
        """Reconcile tracked hand with authoritative total from player states.

        If sum(known) > total, scale down proportionally.  This handles
        unobserved events (robbery by others, discards, etc.) without guessing.
        """
        hand = self._tracked(color)
        if hand is None:
            return
        hand.total = authoritative_total

        known_sum = sum(hand.known.values())
        if known_sum <= authoritative_total:
            return  # consistent, the unknown bucket absorbs the gap

        # Overcount: scale down proportionally
        scale = authoritative_total / known_sum
        for resource in RESOURCES:
            hand.known[resource] = int(hand.known[resource] * scale)

        # Fix rounding, remainder goes to the largest counts
        remainder = authoritative_total - sum(hand.known.values())
        if remainder > 0:
            by_count = sorted(RESOURCES, key=lambda r: hand.known[r], reverse=True)
            for r in by_count:
                if remainder <= 0:
                    break
                hand.known[r] += 1
                remainder -= 1

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def estimate(self, color: int) -> Dict[str, int]:
        """Return an estimated resource dict, distributing unknowns evenly.

        Known resources are preserved exactly.
        """
        if color not in self.hands:
            return {r: 0 for r in RESOURCES}

        hand = self.hands[color]
        result = dict(hand.known)
        unknown = hand.unknown

        if unknown > 0:
            per_type = unknown // len(RESOURCES)
            remainder = unknown % len(RESOURCES)
            for i, r in enumerate(RESOURCES):
                result[r] += per_type + (1 if i < remainder else 0)

        return result

    def estimates(self) -> Dict[int, Dict[str, int]]:
        return {color: self.estimate(color) for color in sorted(self.hands)}

    def log_state(self, color: int, label: str = ""):
        """Log current tracking state for debugging."""
        if color not in self.hands:
            return
        hand = self.hands[color]
        known_str = ", ".join(f"{r[:2]}:{hand.known[r]}" for r in RESOURCES)
        prefix = f"[{label}] " if label else ""
        logger.debug(
            f"{prefix}CardTracker P{color}: known=[{known_str}] "
            f"total={hand.total} unknown={hand.unknown}"
        )
