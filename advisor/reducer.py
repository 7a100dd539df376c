"""Incremental state reducer for colonist.io frames.

Owns the GameModel and is its only writer. Two main entry points:

- apply_full_snapshot(payload): type 4. Replaces the model with a fresh
  instance built from the snapshot (roster, board, buildings, robber,
  player states, dev cards, current state).
- apply_diff(diff): type 91. Merges partial sub-records onto the existing
  model. Only changed keys are present, so every read is optional.

Key design decisions:
- Snapshot and diff keys are stringified ids ("0", "12"); they are converted
  to ints and anything else is skipped.
- A corner or edge owner is written once and never cleared. A different
  owner arriving later is logged and ignored; settlement -> city keeps it.
- Own resources are recomputed from the full card array on every update.
  Opponent hands are estimates (see card_tracker.py).
- Listeners run synchronously after every mutation with a ModelUpdate.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from advisor import config
from advisor.card_tracker import OpponentCardTracker, resource_name
from advisor.model import (
    ActionState,
    Building,
    Corner,
    DiceRoll,
    Edge,
    GameModel,
    Player,
    Port,
    Tile,
    empty_resources,
)
from advisor.protocol import (
    AvailableActionsMsg,
    GameOverMsg,
    GameSnapshotMsg,
    GameStateDiffMsg,
    HeartbeatMsg,
    ResourceDistributionMsg,
    TradeExecutionMsg,
    UnknownMsg,
)
from advisor.topology import CoordinateScheme, build_adjacency, get_scheme

logger = logging.getLogger(__name__)


@dataclass
class OwnershipChange:
    """A corner or edge whose owner or building changed."""
    kind: str                   # "corner" or "edge"
    index: int
    owner: int
    building: Optional[Building] = None          # corners only
    previous_building: Optional[Building] = None


@dataclass
class ModelUpdate:
    """Passed to listeners after each mutation."""
    kind: str   # snapshot, diff, distribution, available, trade, game_over
    ownership_changes: List[OwnershipChange] = field(default_factory=list)
    action_changed: bool = False


Listener = Callable[[ModelUpdate], None]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_int(value: Any) -> Optional[int]:
    """Convert an int or a stringified int; anything else gives None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return None
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _iter_states(states: Any) -> Iterator[Tuple[int, Dict]]:
    """Yield (int id, record) pairs from an id-keyed dict or a list."""
    if isinstance(states, dict):
        items = states.items()
    elif isinstance(states, list):
        items = enumerate(states)
    else:
        return
    for key, data in items:
        idx = _as_int(key)
        if idx is None:
            logger.debug(f"Skipping non-integer state key {key!r}")
            continue
        if not isinstance(data, dict):
            continue
        yield idx, data


def count_resources(cards: Iterable[Any]) -> Dict[str, int]:
    """Tally a resource card-id array into a full resource dict."""
    counts = empty_resources()
    for card_id in cards:
        resource = resource_name(card_id)
        if resource:
            counts[resource] += 1
    return counts


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------

class StateReducer:
    """Applies decoded colonist.io messages onto a GameModel."""

    def __init__(
        self,
        model: Optional[GameModel] = None,
        scheme: Optional[CoordinateScheme] = None,
        strict_topology: bool = False,
    ):
        self.model = model if model is not None else GameModel()
        self.scheme = scheme or get_scheme()
        self.strict_topology = strict_topology
        self.card_tracker = OpponentCardTracker()
        self._listeners: List[Listener] = []

    def reset(self) -> GameModel:
        """Replace the model with a fresh, empty instance."""
        self.model = GameModel()
        self.card_tracker.reset()
        logger.info("Game model reset")
        return self.model

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, update: ModelUpdate) -> None:
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.error(f"Listener {listener!r} failed on {update.kind}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, message: Any) -> bool:
        """Apply a parsed protocol message. Returns True if the model changed."""
        if isinstance(message, GameSnapshotMsg):
            self.apply_full_snapshot(message.payload)
        elif isinstance(message, GameStateDiffMsg):
            self.apply_diff(message.diff)
        elif isinstance(message, ResourceDistributionMsg):
            self.apply_resource_distribution(message.distributions)
        elif isinstance(message, AvailableActionsMsg):
            self.apply_available(message.action_type, message.indices)
        elif isinstance(message, TradeExecutionMsg):
            self.apply_trade(
                message.giving_player,
                message.receiving_player,
                message.giving_cards,
                message.receiving_cards,
            )
        elif isinstance(message, GameOverMsg):
            self.apply_game_over(message.end_game_state)
        elif isinstance(message, (HeartbeatMsg, UnknownMsg)):
            logger.debug(f"Ignoring {type(message).__name__}")
            return False
        else:
            logger.debug(f"No reducer for {type(message).__name__}")
            return False
        return True

    # ------------------------------------------------------------------
    # Full snapshot (type 4)
    # ------------------------------------------------------------------

    def apply_full_snapshot(self, snapshot: Dict) -> None:
        """Rebuild the model from a full game snapshot payload.

        Expected keys: playerColor, playOrder, playerUserStates, gameState.
        gameState holds mapState, currentState, playerStates,
        mechanicRobberState, mechanicDevelopmentCardsState and diceState.
        """
        if not isinstance(snapshot, dict):
            logger.warning(f"Snapshot payload is {type(snapshot).__name__}, not a dict")
            return

        model = GameModel()
        self.model = model

        model.my_color = _as_int(snapshot.get("playerColor"))
        self.card_tracker.reset(model.my_color)

        for raw in snapshot.get("playOrder") or []:
            color = _as_int(raw)
            if color is not None:
                model.play_order.append(color)
                self._ensure_player(color)

        self._load_roster(snapshot.get("playerUserStates"))

        game_state = snapshot.get("gameState")
        if not isinstance(game_state, dict):
            game_state = {}

        map_state = game_state.get("mapState")
        if not isinstance(map_state, dict):
            map_state = {}

        self._merge_tiles(map_state.get("tileHexStates"))
        self._merge_corners(map_state.get("tileCornerStates"), track_costs=False)
        self._merge_edges(map_state.get("tileEdgeStates"), track_costs=False)
        self._merge_ports(map_state.get("portEdgeStates"))
        self._rebuild_topology()

        self._apply_robber(game_state.get("mechanicRobberState"))
        if model.robber_tile is None:
            model.robber_tile = next(
                (tid for tid in sorted(model.tiles) if model.tiles[tid].is_desert), None
            )

        self._apply_player_states(game_state.get("playerStates"))
        self._apply_dev_cards(game_state.get("mechanicDevelopmentCardsState"))

        dice_state = game_state.get("diceState")
        if isinstance(dice_state, dict):
            model.dice_state = dict(dice_state)

        self._apply_current_state(game_state.get("currentState"))

        logger.info(
            f"Snapshot applied: color={model.my_color}, order={model.play_order}, "
            f"{len(model.tiles)} tiles, {len(model.corners)} corners, "
            f"{len(model.edges)} edges, {len(model.ports)} ports, "
            f"robber={model.robber_tile}"
        )
        self._notify(ModelUpdate(kind="snapshot", action_changed=True))

    def _load_roster(self, user_states: Any) -> None:
        if isinstance(user_states, dict):
            user_states = list(user_states.values())
        if not isinstance(user_states, list):
            return
        for user in user_states:
            if not isinstance(user, dict):
                continue
            color = _as_int(user.get("selectedColor"))
            if color is None:
                continue
            player = self._ensure_player(color)
            player.username = str(user.get("username", player.username) or "")
            player.is_bot = bool(user.get("isBot", player.is_bot))
            user_id = user.get("userId")
            player.user_id = str(user_id) if user_id is not None else player.user_id

    # ------------------------------------------------------------------
    # Diff (type 91)
    # ------------------------------------------------------------------

    def apply_diff(self, diff: Dict) -> None:
        """Merge an incremental state diff onto the model."""
        if not isinstance(diff, dict):
            logger.warning(f"Diff is {type(diff).__name__}, not a dict")
            return

        changes: List[OwnershipChange] = []

        map_state = diff.get("mapState")
        if isinstance(map_state, dict):
            grew = self._merge_tiles(map_state.get("tileHexStates"))
            corners_grew, corner_changes = self._merge_corners(
                map_state.get("tileCornerStates"), track_costs=True
            )
            edges_grew, edge_changes = self._merge_edges(
                map_state.get("tileEdgeStates"), track_costs=True
            )
            ports_grew = self._merge_ports(map_state.get("portEdgeStates"))
            changes.extend(corner_changes)
            changes.extend(edge_changes)
            if grew or corners_grew or edges_grew or ports_grew:
                self._rebuild_topology()

        self._apply_player_states(diff.get("playerStates"))
        self._apply_dev_cards(diff.get("mechanicDevelopmentCardsState"))
        self._apply_robber(diff.get("mechanicRobberState"))
        self._apply_dice(diff.get("diceState"))
        action_changed = self._apply_current_state(diff.get("currentState"))

        for change in changes:
            logger.info(
                f"{change.kind} {change.index}: owner={change.owner}"
                + (f" building={change.building.name}" if change.building is not None else "")
            )

        self._notify(ModelUpdate(
            kind="diff", ownership_changes=changes, action_changed=action_changed
        ))

    # ------------------------------------------------------------------
    # Other message types
    # ------------------------------------------------------------------

    def apply_resource_distribution(self, distributions: List[Dict]) -> None:
        """Type 28: update opponent estimates. Own hand comes from playerStates."""
        entries = [d for d in distributions or [] if isinstance(d, dict)]
        self.card_tracker.on_resource_distribution(entries)
        self._refresh_estimates()
        logger.debug(f"Resource distribution: {len(entries)} cards")
        self._notify(ModelUpdate(kind="distribution"))

    def apply_available(self, message_type: int, indices: Iterable[int]) -> None:
        """Types 30-33: replace the matching legal spot set."""
        spots = {i for i in indices if _as_int(i) is not None}
        model = self.model
        if message_type == config.MSG_TYPE_AVAILABLE_SETTLEMENTS:
            model.available_settlements = spots
        elif message_type == config.MSG_TYPE_AVAILABLE_ROADS:
            model.available_roads = spots
        elif message_type == config.MSG_TYPE_AVAILABLE_CITIES:
            model.available_cities = spots
        elif message_type == config.MSG_TYPE_AVAILABLE_ROBBER_SPOTS:
            model.available_robber_spots = spots
        else:
            logger.warning(f"Not a legal-spot message type: {message_type}")
            return
        logger.debug(f"Legal spots (type {message_type}): {sorted(spots)}")
        self._notify(ModelUpdate(kind="available"))

    def apply_trade(
        self,
        giving_player: int,
        receiving_player: int,
        giving_cards: List[int],
        receiving_cards: List[int],
    ) -> None:
        """Type 43: move estimated cards between two opponents."""
        self.card_tracker.on_trade(
            giving_player, receiving_player, giving_cards, receiving_cards
        )
        self._refresh_estimates()
        logger.info(
            f"Trade: P{giving_player} gave {giving_cards}, "
            f"P{receiving_player} gave {receiving_cards}"
        )
        self._notify(ModelUpdate(kind="trade"))

    def apply_game_over(self, end_game_state: Optional[Dict] = None) -> None:
        self.model.game_over = True
        logger.info(f"Game over: {end_game_state or {}}")
        self._notify(ModelUpdate(kind="game_over"))

    # ------------------------------------------------------------------
    # Board primitives
    # ------------------------------------------------------------------

    def _merge_tiles(self, states: Any) -> bool:
        """Merge tileHexStates. Returns True if a tile was added or placed."""
        grew = False
        for idx, data in _iter_states(states):
            tile = self.model.tiles.get(idx)
            if tile is None:
                tile = Tile(index=idx)
                self.model.tiles[idx] = tile
                grew = True
            if tile.x is None and "x" in data and "y" in data:
                tile.x, tile.y = _as_int(data["x"]), _as_int(data["y"])
                grew = True
            tile.set_terrain(
                tile_type=_as_int(data.get("type")),
                dice_number=_as_int(data.get("diceNumber")),
            )
        return grew

    def _place(self, primitive: Any, data: Dict) -> bool:
        """Write coordinates once. Returns True if they were written now."""
        if primitive.x is not None:
            return False
        if not all(k in data for k in ("x", "y", "z")):
            return False
        primitive.x = _as_int(data["x"])
        primitive.y = _as_int(data["y"])
        primitive.z = _as_int(data["z"])
        return True

    def _merge_corners(
        self, states: Any, track_costs: bool
    ) -> Tuple[bool, List[OwnershipChange]]:
        grew = False
        changes = []
        in_setup = self.model.is_setup_phase
        for idx, data in _iter_states(states):
            corner = self.model.corners.get(idx)
            if corner is None:
                corner = Corner(index=idx)
                self.model.corners[idx] = corner
                grew = True
            if self._place(corner, data):
                grew = True

            change = self._set_building(
                corner,
                _as_int(data.get("owner")) if "owner" in data else None,
                _as_int(data.get("buildingType")) if "buildingType" in data else None,
            )
            if change is None:
                continue
            changes.append(change)
            self._ensure_player(change.owner)
            if track_costs and not in_setup:
                if change.building == Building.CITY and change.previous_building == Building.SETTLEMENT:
                    self.card_tracker.on_build(change.owner, "city")
                elif change.building == Building.CITY:
                    self.card_tracker.on_build(change.owner, "settlement")
                    self.card_tracker.on_build(change.owner, "city")
                else:
                    self.card_tracker.on_build(change.owner, "settlement")
        if changes and track_costs:
            self._refresh_estimates()
        return grew, changes

    def _set_building(
        self, corner: Corner, owner: Optional[int], building_type: Optional[int]
    ) -> Optional[OwnershipChange]:
        """Apply owner/buildingType to a corner, enforcing write-once ownership."""
        prev_owner, prev_building = corner.owner, corner.building

        if owner is not None and owner > 0:
            if corner.owner is None:
                corner.owner = owner
            elif corner.owner != owner:
                logger.warning(
                    f"Corner {corner.index} owned by {corner.owner}, "
                    f"ignoring reassignment to {owner}"
                )
                return None
        elif owner is not None and corner.owner is not None:
            logger.debug(f"Corner {corner.index}: ignoring owner clear ({owner})")

        if corner.owner is None:
            if building_type in (config.BUILDING_SETTLEMENT, config.BUILDING_CITY):
                logger.warning(f"Corner {corner.index} has buildingType {building_type} but no owner")
            return None

        if building_type == config.BUILDING_CITY:
            corner.building = Building.CITY
        elif building_type == config.BUILDING_SETTLEMENT:
            if corner.building == Building.CITY:
                logger.warning(f"Corner {corner.index}: ignoring city -> settlement downgrade")
            else:
                corner.building = Building.SETTLEMENT
        elif corner.building == Building.NONE:
            # Owner without a building type is a fresh placement
            corner.building = Building.SETTLEMENT

        if corner.owner == prev_owner and corner.building == prev_building:
            return None
        return OwnershipChange(
            kind="corner",
            index=corner.index,
            owner=corner.owner,
            building=corner.building,
            previous_building=prev_building,
        )

    def _merge_edges(
        self, states: Any, track_costs: bool
    ) -> Tuple[bool, List[OwnershipChange]]:
        grew = False
        changes = []
        in_setup = self.model.is_setup_phase
        for idx, data in _iter_states(states):
            edge = self.model.edges.get(idx)
            if edge is None:
                edge = Edge(index=idx)
                self.model.edges[idx] = edge
                grew = True
            if self._place(edge, data):
                grew = True

            owner = _as_int(data.get("owner")) if "owner" in data else None
            if owner is None or owner <= 0:
                if owner is not None and edge.owner is not None:
                    logger.debug(f"Edge {idx}: ignoring owner clear ({owner})")
                continue
            if edge.owner == owner:
                continue
            if edge.owner is not None:
                logger.warning(
                    f"Edge {idx} owned by {edge.owner}, ignoring reassignment to {owner}"
                )
                continue

            edge.owner = owner
            self._ensure_player(owner)
            changes.append(OwnershipChange(kind="edge", index=idx, owner=owner))
            if track_costs and not in_setup:
                self.card_tracker.on_build(owner, "road")
        if changes and track_costs:
            self._refresh_estimates()
        return grew, changes

    def _merge_ports(self, states: Any) -> bool:
        grew = False
        for idx, data in _iter_states(states):
            if idx in self.model.ports:
                continue
            port_type = _as_int(data.get("type"))
            spec = config.COLONIST_PORT_TYPES.get(port_type)
            coords = [_as_int(data.get(k)) for k in ("x", "y", "z")]
            if spec is None or None in coords:
                logger.warning(f"Skipping port {idx}: type={port_type} coords={coords}")
                continue
            ratio, resource = spec
            self.model.ports[idx] = Port(
                index=idx, x=coords[0], y=coords[1], z=coords[2],
                port_type=port_type, ratio=ratio, resource=resource,
            )
            grew = True
        return grew

    def _rebuild_topology(self) -> None:
        model = self.model
        model.adjacency = build_adjacency(
            model.tiles, model.corners, model.edges, model.ports,
            scheme=self.scheme, strict=self.strict_topology,
        )
        for cid, corner in model.corners.items():
            corner.port = model.adjacency.corner_ports.get(cid)

        edge_by_xyz = {(e.x, e.y, e.z): eid for eid, e in model.edges.items()}
        for port in model.ports.values():
            port.edge_index = edge_by_xyz.get((port.x, port.y, port.z))

    # ------------------------------------------------------------------
    # Player / dev card / robber / dice / turn state
    # ------------------------------------------------------------------

    def _ensure_player(self, color: int) -> Player:
        player = self.model.players.get(color)
        if player is None:
            player = Player(color=color)
            self.model.players[color] = player
            if color != self.model.my_color:
                self.card_tracker.init_player(color)
            logger.debug(f"Discovered player color {color}")
        return player

    def _apply_player_states(self, player_states: Any) -> None:
        """Merge playerStates: victory points and resource cards."""
        model = self.model
        for color, p_data in _iter_states(player_states):
            player = self._ensure_player(color)

            vp = p_data.get("victoryPointsState")
            if isinstance(vp, dict):
                for key, value in vp.items():
                    if _is_number(value):
                        player.vp_breakdown[str(key)] = value
                player.victory_points = int(sum(player.vp_breakdown.values()))

            rc = p_data.get("resourceCards")
            if not isinstance(rc, dict):
                continue
            cards = rc.get("cards")
            if not isinstance(cards, list):
                continue

            player.resource_count = len(cards)
            if color == model.my_color:
                model.my_resources = count_resources(cards)
                logger.debug(f"My resources: {model.my_resources}")
            else:
                self.card_tracker.reconcile(color, len(cards))
                model.opponent_resources[color] = self.card_tracker.estimate(color)
                self.card_tracker.log_state(color)

    def _apply_dev_cards(self, dev_state: Any) -> None:
        """Merge mechanicDevelopmentCardsState for all players.

        Structure: {players: {color: {developmentCards: {cards}, developmentCardsUsed}}}
        or, in some diffs, the per-color dict at top level.
        """
        if not isinstance(dev_state, dict):
            return
        players_dict = dev_state.get("players", dev_state)
        touched = False
        for color, p_data in _iter_states(players_dict):
            player = self._ensure_player(color)

            hand = p_data.get("developmentCards")
            if isinstance(hand, dict) and isinstance(hand.get("cards"), list):
                player.dev_cards = list(hand["cards"])
                if color == self.model.my_color:
                    self.model.my_dev_cards = list(player.dev_cards)

            used = p_data.get("developmentCardsUsed")
            if isinstance(used, list):
                player.played_knights = sum(1 for c in used if c == config.DEVCARD_KNIGHT)
                touched = True

        if touched:
            self._update_largest_army()

    def _update_largest_army(self) -> None:
        """Most played knights, at least LARGEST_ARMY_MIN_KNIGHTS.

        The current holder keeps the army on a tie; a tie with no holder
        among the leaders gives it to nobody.
        """
        model = self.model
        holder = model.largest_army_color
        best = max((p.played_knights for p in model.players.values()), default=0)

        if best < config.LARGEST_ARMY_MIN_KNIGHTS:
            new_holder = None
        else:
            leaders = [c for c, p in model.players.items() if p.played_knights == best]
            if holder in leaders:
                new_holder = holder
            elif len(leaders) == 1:
                new_holder = leaders[0]
            else:
                new_holder = None

        if new_holder != holder:
            logger.info(f"Largest army: {holder} -> {new_holder} ({best} knights)")
        model.largest_army_color = new_holder
        for color, player in model.players.items():
            player.has_largest_army = color == new_holder

    def _apply_robber(self, robber_state: Any) -> None:
        if not isinstance(robber_state, dict):
            return
        tile = _as_int(robber_state.get("locationTileIndex"))
        if tile is None:
            return
        if tile != self.model.robber_tile:
            logger.info(f"Robber moved to tile {tile}")
        self.model.robber_tile = tile

    def _apply_dice(self, dice_state: Any) -> None:
        """Merge diceState and record a roll.

        Diffs carry only changed keys, so a roll that repeats one die value
        arrives with a single die key; the other comes from the merged state.
        """
        if not isinstance(dice_state, dict):
            return
        model = self.model
        model.dice_state.update(dice_state)

        thrown = dice_state.get("diceThrown")
        rolled = thrown is True or (
            thrown is None and ("dice1" in dice_state or "dice2" in dice_state)
        )
        if not rolled:
            return
        d1 = _as_int(model.dice_state.get("dice1"))
        d2 = _as_int(model.dice_state.get("dice2"))
        if d1 is None or d2 is None:
            logger.debug(f"Incomplete dice state: {model.dice_state}")
            return
        roll = DiceRoll(dice1=d1, dice2=d2)
        model.dice_history.append(roll)
        logger.info(f"Dice rolled: {d1}+{d2}={roll.total}")

    def _apply_current_state(self, current: Any) -> bool:
        """Merge currentState. Returns True if the action or turn changed."""
        if not isinstance(current, dict):
            return False
        model = self.model
        changed = False

        if "actionState" in current:
            code = _as_int(current.get("actionState"))
            if code != model.action_code:
                model.action_code = code
                model.current_action = ActionState.from_code(code)
                if model.current_action is None:
                    logger.debug(f"Unmapped actionState {code}")
                changed = True

        if "currentTurnPlayerColor" in current:
            color = _as_int(current.get("currentTurnPlayerColor"))
            if color != model.current_turn_color:
                model.current_turn_color = color
                logger.info(f"Turn: color {color}")
                changed = True

        if "completedTurns" in current:
            turns = _as_int(current.get("completedTurns"))
            if turns is not None:
                model.completed_turns = turns

        if "turnState" in current:
            model.turn_state = _as_int(current.get("turnState"))

        if changed:
            # Legal spot sets are only valid for the action they were sent for
            model.available_settlements = set()
            model.available_roads = set()
            model.available_cities = set()
            model.available_robber_spots = set()
            action = model.current_action.value if model.current_action else model.action_code
            logger.debug(
                f"Action={action} turn={model.current_turn_color} "
                f"completed={model.completed_turns} setup={model.is_setup_phase}"
            )
        return changed

    def _refresh_estimates(self) -> None:
        for color, estimate in self.card_tracker.estimates().items():
            self.model.opponent_resources[color] = estimate
