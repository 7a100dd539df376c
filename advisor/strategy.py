"""Placement and build heuristics over a reconstructed GameModel.

Every query is read-only: the Advisor never mutates the model and keeps no
state of its own between calls, so it can be called as often as needed.

Scoring a corner:
  pips * W.pips                          dominant term
  distinct resources * W.diversity
  ore/wheat pips * W.ore_wheat_*         heavier once past setup
  port bonus                             matching 2:1 > generic 3:1 > other 2:1
  6/8 and 5/9 bonuses
  robber penalty
  complementary bonus                    resources we don't produce yet
  lookahead * best neighbor base value   one hop only

None means "cannot be scored" (owned, illegal, or no adjacent tiles),
which callers must keep apart from a score of zero.
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Set

from advisor import config
from advisor.config import BUILD_COSTS, RESOURCES, SCORING_WEIGHTS, ScoringWeights
from advisor.model import ActionState, Building, Corner, GameModel

logger = logging.getLogger(__name__)

HOT_NUMBERS = (6, 8)
WARM_NUMBERS = (5, 9)

BUILD_LABELS = {
    "city": "Build City",
    "settlement": "Build Settlement",
    "dev_card": "Buy Development Card",
    "road": "Build Road",
}


@dataclass
class Suggestion:
    """A ranked candidate corner, edge or tile."""
    kind: str           # "settlement", "road" or "robber"
    target: int
    score: float
    reason: str = ""


@dataclass
class BuildOption:
    action: str                 # human-readable, e.g. "Build City"
    build: str                  # key into BUILD_COSTS
    priority: int               # 1 = do this first
    reason: str
    affordable: bool = True
    target: Optional[int] = None
    missing: Dict[str, int] = field(default_factory=dict)


@dataclass
class Recommendation:
    action: str
    reason: str
    suggestions: List[Suggestion] = field(default_factory=list)
    alternatives: List[BuildOption] = field(default_factory=list)


def missing_resources(cost: Dict[str, int], resources: Dict[str, int]) -> Dict[str, int]:
    """Resources still needed to pay cost, {} when affordable."""
    missing = {}
    for resource, amount in cost.items():
        short = amount - resources.get(resource, 0)
        if short > 0:
            missing[resource] = short
    return missing


def can_afford(cost: Dict[str, int], resources: Dict[str, int]) -> bool:
    return not missing_resources(cost, resources)


class Advisor:
    """Ranks settlement corners, road edges and robber tiles for the observer."""

    def __init__(self, model: GameModel, weights: ScoringWeights = SCORING_WEIGHTS):
        self.model = model
        self.weights = weights

    # ------------------------------------------------------------------
    # Production
    # ------------------------------------------------------------------

    def corner_tiles(self, corner_id: int):
        tiles = self.model.tiles
        return [tiles[t] for t in self.model.adjacency.corner_tiles.get(corner_id, []) if t in tiles]

    def production(self, color: Optional[int] = None) -> Dict[str, int]:
        """Pips per resource over a color's buildings (cities count double)."""
        color = self.model.my_color if color is None else color
        result = {r: 0 for r in RESOURCES}
        for cid in self.model.corners_owned_by(color):
            corner = self.model.corners[cid]
            mult = 2 if corner.building == Building.CITY else 1
            for tile in self.corner_tiles(cid):
                if tile.resource in result:
                    result[tile.resource] += tile.pips * mult
        return result

    def _produced_resources(self) -> Set[str]:
        return {r for r, pips in self.production().items() if pips > 0}

    def _base_value(self, corner_id: int) -> float:
        """Pips and diversity only; used for the one-hop lookahead."""
        producing = [t for t in self.corner_tiles(corner_id) if t.pips > 0]
        resources = {t.resource for t in producing}
        return (
            sum(t.pips for t in producing) * self.weights.pips
            + len(resources) * self.weights.diversity
        )

    # ------------------------------------------------------------------
    # Corners
    # ------------------------------------------------------------------

    def _violates_distance_rule(self, corner_id: int) -> bool:
        corners = self.model.corners
        for neighbor in self.model.adjacency.corner_corners.get(corner_id, []):
            other = corners.get(neighbor)
            if other is not None and other.owner is not None:
                return True
        return False

    def score_corner(self, corner_id: int, use_legal_set: bool = False) -> Optional[float]:
        """Score an unowned corner as a settlement spot.

        Args:
            corner_id: corner to score
            use_legal_set: take legality from the server's published
                settlement set (when there is one) instead of the
                distance rule

        Returns:
            The score, or None if the corner cannot be settled or scored.
        """
        model = self.model
        corner = model.corners.get(corner_id)
        if corner is None or corner.owner is not None:
            return None

        if use_legal_set and model.available_settlements:
            if corner_id not in model.available_settlements:
                return None
        elif self._violates_distance_rule(corner_id):
            return None

        tiles = self.corner_tiles(corner_id)
        if not tiles:
            return None

        w = self.weights
        producing = [t for t in tiles if t.pips > 0]
        resources = {t.resource for t in producing}

        score = sum(t.pips for t in producing) * w.pips
        score += len(resources) * w.diversity

        ore_wheat = sum(t.pips for t in producing if t.resource in ("ore", "wheat"))
        score += ore_wheat * (w.ore_wheat_setup if model.is_setup_phase else w.ore_wheat_main)

        score += self._port_bonus(corner, producing)

        for t in producing:
            if t.dice_number in HOT_NUMBERS:
                score += w.hot_number
            elif t.dice_number in WARM_NUMBERS:
                score += w.warm_number

        if model.robber_tile is not None and any(t.index == model.robber_tile for t in tiles):
            score -= w.robber_penalty

        if model.corners_owned_by(model.my_color):
            missing = resources - self._produced_resources()
            score += len(missing) * w.complementary

        lookahead = [
            self._base_value(n)
            for n in model.adjacency.corner_corners.get(corner_id, [])
            if n in model.corners and model.corners[n].owner is None
        ]
        if lookahead:
            score += max(lookahead) * w.lookahead

        return round(score, 2)

    def _port_bonus(self, corner: Corner, producing) -> float:
        port = corner.port
        if port is None:
            return 0.0
        w = self.weights
        if port.resource == "any":
            return w.port_generic
        own = sum(t.pips for t in producing if t.resource == port.resource)
        if own == 0:
            return w.port_unmatched
        own += self.production().get(port.resource, 0)
        return w.port_matching_base + own / 3

    def _describe_corner(self, corner_id: int) -> str:
        parts = []
        pips = 0
        for t in self.corner_tiles(corner_id):
            if t.pips > 0:
                parts.append(f"{t.resource} {t.dice_number}")
                pips += t.pips
        corner = self.model.corners.get(corner_id)
        text = ", ".join(parts) if parts else "no production"
        text += f" ({pips} pips)"
        if corner is not None and corner.port is not None:
            text += f", {corner.port.ratio}:1 {corner.port.resource} port"
        return text

    def rank_corners(self, candidates, use_legal_set: bool = False) -> List[Suggestion]:
        ranked = []
        for cid in candidates:
            score = self.score_corner(cid, use_legal_set=use_legal_set)
            if score is None:
                continue
            ranked.append(Suggestion(
                kind="settlement", target=cid, score=score,
                reason=self._describe_corner(cid),
            ))
        ranked.sort(key=lambda s: (-s.score, s.target))
        return ranked

    def suggest_initial_placement(self, limit: int = config.TOP_SETTLEMENTS) -> List[Suggestion]:
        """Top settlement corners, restricted to the server's legal set if present."""
        model = self.model
        if model.available_settlements:
            return self.rank_corners(sorted(model.available_settlements), use_legal_set=True)[:limit]
        return self.rank_corners(sorted(model.corners))[:limit]

    # ------------------------------------------------------------------
    # Roads
    # ------------------------------------------------------------------

    def _road_candidates(self) -> List[int]:
        model = self.model
        adj = model.adjacency
        if model.available_roads:
            return sorted(e for e in model.available_roads
                          if e in model.edges and model.edges[e].owner is None)

        me = model.my_color
        anchors = set(model.corners_owned_by(me))
        for eid in model.edges_owned_by(me):
            for cid in adj.edge_corners.get(eid, []):
                corner = model.corners.get(cid)
                # An opponent building cuts the road network
                if corner is not None and corner.owner in (None, me):
                    anchors.add(cid)

        candidates = set()
        for cid in anchors:
            for eid in adj.corner_edges.get(cid, []):
                edge = model.edges.get(eid)
                if edge is not None and edge.owner is None:
                    candidates.add(eid)
        return sorted(candidates)

    def suggest_road_placement(self, limit: int = config.TOP_ROADS) -> List[Suggestion]:
        """Top road edges, scored by the best settlement spot they lead to."""
        model = self.model
        w = self.weights
        ranked = []
        for eid in self._road_candidates():
            best = None
            best_corner = None
            port = False
            for cid in model.adjacency.edge_corners.get(eid, []):
                corner = model.corners.get(cid)
                if corner is None or corner.owner is not None:
                    continue
                if corner.port is not None:
                    port = True
                score = self.score_corner(cid)
                if score is not None and (best is None or score > best):
                    best, best_corner = score, cid
            total = (best or 0.0) * w.road_scale
            if port:
                total += w.road_port_bonus
            if best_corner is not None:
                reason = f"toward corner {best_corner}: {self._describe_corner(best_corner)}"
            elif port:
                reason = "toward a port"
            else:
                reason = "extends network"
            ranked.append(Suggestion(kind="road", target=eid, score=round(total, 2), reason=reason))
        ranked.sort(key=lambda s: (-s.score, s.target))
        return ranked[:limit]

    # ------------------------------------------------------------------
    # Robber
    # ------------------------------------------------------------------

    def suggest_robber_placement(self, limit: int = config.TOP_ROBBER) -> List[Suggestion]:
        """Tiles that block the most opponent production."""
        model = self.model
        me = model.my_color
        candidates = model.available_robber_spots or set(model.tiles)
        ranked = []
        for tid in sorted(candidates):
            tile = model.tiles.get(tid)
            if tile is None or tile.is_desert or tid == model.robber_tile:
                continue
            owned = [
                model.corners[c] for c in model.adjacency.tile_corners.get(tid, [])
                if c in model.corners and model.corners[c].owner is not None
            ]
            opponents = [c for c in owned if c.owner != me]
            if owned and not opponents:
                continue
            score = 0.0
            for c in opponents:
                score += tile.pips * (2 if c.building == Building.CITY else 1)
            if any(c.building == Building.CITY for c in opponents):
                score += self.weights.robber_city_bonus
            victims = sorted({c.owner for c in opponents})
            reason = (
                f"blocks {tile.resource} {tile.dice_number} for colors {victims}"
                if victims else f"{tile.resource} {tile.dice_number}, no buildings"
            )
            ranked.append(Suggestion(kind="robber", target=tid, score=round(score, 2), reason=reason))
        ranked.sort(key=lambda s: (-s.score, s.target))
        return ranked[:limit]

    # ------------------------------------------------------------------
    # Build priority
    # ------------------------------------------------------------------

    def reachable_settlement_spots(self) -> List[Suggestion]:
        """Legal settlement corners at the end of our roads."""
        model = self.model
        if model.available_settlements:
            return self.rank_corners(sorted(model.available_settlements), use_legal_set=True)
        ends = set()
        for eid in model.edges_owned_by(model.my_color):
            ends.update(model.adjacency.edge_corners.get(eid, []))
        return self.rank_corners(sorted(ends))

    def city_targets(self) -> List[int]:
        """Our settlements, best producers first."""
        model = self.model
        if model.available_cities:
            targets = sorted(model.available_cities)
        else:
            targets = [
                c for c in model.corners_owned_by(model.my_color)
                if model.corners[c].building == Building.SETTLEMENT
            ]
        return sorted(
            targets,
            key=lambda c: (-sum(t.pips for t in self.corner_tiles(c)), c),
        )

    def _held_knights(self) -> int:
        return sum(1 for c in self.model.my_dev_cards if c == config.DEVCARD_KNIGHT)

    def suggest_build_priority(self) -> List[BuildOption]:
        """Affordable builds in priority order, or the cheapest unmet goal."""
        res = self.model.my_resources
        hand_size = sum(res.values())
        spots = self.reachable_settlement_spots()
        cities = self.city_targets()

        # (sort key, option); lower keys first
        ranked = []
        if cities and can_afford(BUILD_COSTS["city"], res):
            ranked.append((10, BuildOption(
                action=BUILD_LABELS["city"], build="city", priority=0,
                reason=f"Doubles production at corner {cities[0]}",
                target=cities[0],
            )))
        if spots and can_afford(BUILD_COSTS["settlement"], res):
            ranked.append((20, BuildOption(
                action=BUILD_LABELS["settlement"], build="settlement", priority=0,
                reason=f"Corner {spots[0].target}: {spots[0].reason}",
                target=spots[0].target,
            )))
        if can_afford(BUILD_COSTS["dev_card"], res):
            key, reason = 30, "Knights, victory points and progress cards"
            if hand_size >= config.DISCARD_RISK_CARDS:
                key, reason = 5, f"Holding {hand_size} cards, spend before a 7 forces a discard"
            elif self._held_knights() >= 2:
                key, reason = 5, "Already holding knights, push for largest army"
            ranked.append((key, BuildOption(
                action=BUILD_LABELS["dev_card"], build="dev_card", priority=0, reason=reason,
            )))
        if can_afford(BUILD_COSTS["road"], res):
            key, reason = 40, "Extend the road network"
            if not spots:
                key, reason = 15, "No settlement spot reachable yet, expand first"
            roads = self.suggest_road_placement(limit=1)
            ranked.append((key, BuildOption(
                action=BUILD_LABELS["road"], build="road", priority=0, reason=reason,
                target=roads[0].target if roads else None,
            )))

        ranked.sort(key=lambda kv: kv[0])
        options = [opt for _, opt in ranked]
        for i, opt in enumerate(options, 1):
            opt.priority = i

        if options:
            return options
        fallback = self._cheapest_goal(spots, cities)
        return [fallback] if fallback else []

    def _cheapest_goal(self, spots, cities) -> Optional[BuildOption]:
        res = self.model.my_resources
        goals = []
        if spots:
            goals.append("settlement")
        if cities:
            goals.append("city")
        goals.extend(["dev_card", "road"])
        best = None
        for build in goals:
            missing = missing_resources(BUILD_COSTS[build], res)
            need = sum(missing.values())
            if best is None or need < best[0]:
                best = (need, build, missing)
        if best is None:
            return None
        _, build, missing = best
        names = ", ".join(f"{n} {r}" for r, n in sorted(missing.items()))
        return BuildOption(
            action=f"Save for {BUILD_LABELS[build].split(' ', 1)[1]}",
            build=build,
            priority=1,
            reason=f"Missing {names}",
            affordable=False,
            missing=missing,
        )

    def suggest_discard(self) -> List[str]:
        """Half the hand, taken from the most plentiful resources."""
        res = dict(self.model.my_resources)
        count = sum(res.values()) // 2
        discard = []
        for _ in range(count):
            resource = max(RESOURCES, key=lambda r: (res[r], -RESOURCES.index(r)))
            if res[resource] == 0:
                break
            res[resource] -= 1
            discard.append(resource)
        return discard

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def get_strategic_recommendation(self) -> Recommendation:
        """Single best action for the current situation, plus alternatives."""
        model = self.model
        if model.game_over:
            return Recommendation(action="Game over", reason="No further actions")
        if not model.has_board or model.my_color is None:
            return Recommendation(action="Wait", reason="Waiting for a game snapshot")

        action = model.current_action
        if action == ActionState.PLACE_ROAD:
            roads = self.suggest_road_placement()
            return self._placement_recommendation("Place Road at edge", roads)
        if action == ActionState.PLACE_ROBBER:
            tiles = self.suggest_robber_placement()
            return self._placement_recommendation("Move Robber to tile", tiles)
        if action == ActionState.DISCARD:
            discard = self.suggest_discard()
            return Recommendation(
                action="Discard " + ", ".join(discard) if discard else "Discard",
                reason="Keep the resources closest to your next build",
            )
        if action == ActionState.PLACE_SETTLEMENT or model.is_setup_phase:
            spots = self.suggest_initial_placement()
            return self._placement_recommendation("Place Settlement at corner", spots)
        if action == ActionState.ROLL_DICE:
            return Recommendation(action="Roll dice", reason="Start of turn")

        options = self.suggest_build_priority()
        if not options:
            return Recommendation(action="End turn", reason="Nothing to build")
        top = options[0]
        return Recommendation(action=top.action, reason=top.reason, alternatives=options[1:])

    def _placement_recommendation(self, label: str, ranked: List[Suggestion]) -> Recommendation:
        if not ranked:
            return Recommendation(action="No legal placement found", reason="Board data incomplete")
        best = ranked[0]
        return Recommendation(
            action=f"{label} {best.target}", reason=best.reason, suggestions=ranked,
        )

    def recommend_for_current_action(self) -> Optional[Recommendation]:
        """Advice when the observer is the acting color, otherwise None.

        Discards apply to every player, so they are advised off-turn too.
        """
        model = self.model
        if model.game_over or model.current_action is None:
            return None
        if not model.is_my_turn and model.current_action != ActionState.DISCARD:
            return None
        return self.get_strategic_recommendation()

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    def analyze(self) -> Dict:
        """JSON-serializable summary of the model plus phase-appropriate advice."""
        model = self.model
        players = []
        for color in model.play_order or sorted(model.players):
            p = model.players.get(color)
            if p is None:
                continue
            owned = model.corners_owned_by(color)
            players.append({
                "color": color,
                "color_name": config.PLAYER_COLOR_NAMES.get(color, str(color)),
                "username": p.username,
                "is_bot": p.is_bot,
                "is_me": color == model.my_color,
                "victory_points": p.victory_points,
                "resource_count": p.resource_count,
                "played_knights": p.played_knights,
                "has_largest_army": p.has_largest_army,
                "settlements": sum(1 for c in owned if model.corners[c].building == Building.SETTLEMENT),
                "cities": sum(1 for c in owned if model.corners[c].building == Building.CITY),
                "roads": len(model.edges_owned_by(color)),
            })

        if model.game_over:
            phase = "game_over"
        elif model.is_setup_phase:
            phase = "setup"
        else:
            phase = "main"

        summary = {
            "my_color": model.my_color,
            "phase": phase,
            "current_action": model.current_action.value if model.current_action else model.action_code,
            "is_my_turn": model.is_my_turn,
            "completed_turns": model.completed_turns,
            "players": players,
            "my_resources": dict(model.my_resources),
            "my_production": self.production() if model.my_color is not None else {},
            "opponent_resources": {str(c): dict(r) for c, r in model.opponent_resources.items()},
            "board": {
                "tiles": len(model.tiles),
                "corners": len(model.corners),
                "edges": len(model.edges),
                "ports": len(model.ports),
                "anomalies": list(model.adjacency.anomalies),
            },
            "robber_tile": model.robber_tile,
            "last_roll": model.dice_history[-1].total if model.dice_history else None,
            "rolls": len(model.dice_history),
        }

        if phase == "setup":
            summary["settlement_spots"] = [asdict(s) for s in self.suggest_initial_placement()]
            summary["road_spots"] = [asdict(s) for s in self.suggest_road_placement()]
        elif phase == "main":
            summary["build_priority"] = [asdict(o) for o in self.suggest_build_priority()]
            summary["robber_spots"] = [asdict(s) for s in self.suggest_robber_placement()]
        summary["recommendation"] = asdict(self.get_strategic_recommendation())
        return summary
