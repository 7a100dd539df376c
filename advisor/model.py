"""Game model reconstructed from observed colonist.io traffic.

The StateReducer is the only writer. Everything else (Advisor, session
queries, listeners) reads it.
"""
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Set

from advisor.config import (
    COLONIST_ACTION_STATE_DISCARD,
    COLONIST_ACTION_STATE_MAIN_TURN,
    COLONIST_ACTION_STATE_PLACE_ROAD,
    COLONIST_ACTION_STATE_PLACE_ROBBER,
    COLONIST_ACTION_STATE_PLACE_SETTLEMENT,
    COLONIST_ACTION_STATE_ROLL_DICE,
    COLONIST_ACTION_STATE_STEAL_CARD,
    COLONIST_TILE_TO_NAME,
    DICE_PIPS,
    RESOURCES,
)


class Building(IntEnum):
    NONE = 0
    SETTLEMENT = 1
    CITY = 2


class ActionState(Enum):
    ROLL_DICE = "roll_dice"
    PLACE_SETTLEMENT = "place_settlement"
    PLACE_ROAD = "place_road"
    DISCARD = "discard"
    MAIN_TURN = "main_turn"
    PLACE_ROBBER = "place_robber"
    STEAL_CARD = "steal_card"

    @classmethod
    def from_code(cls, code: Optional[int]) -> Optional["ActionState"]:
        """Map a currentState.actionState integer; unknown codes give None."""
        return ACTION_STATE_BY_CODE.get(code)


ACTION_STATE_BY_CODE = {
    COLONIST_ACTION_STATE_ROLL_DICE: ActionState.ROLL_DICE,
    COLONIST_ACTION_STATE_PLACE_SETTLEMENT: ActionState.PLACE_SETTLEMENT,
    COLONIST_ACTION_STATE_PLACE_ROAD: ActionState.PLACE_ROAD,
    COLONIST_ACTION_STATE_DISCARD: ActionState.DISCARD,
    COLONIST_ACTION_STATE_MAIN_TURN: ActionState.MAIN_TURN,
    COLONIST_ACTION_STATE_PLACE_ROBBER: ActionState.PLACE_ROBBER,
    COLONIST_ACTION_STATE_STEAL_CARD: ActionState.STEAL_CARD,
}


def empty_resources() -> Dict[str, int]:
    return {r: 0 for r in RESOURCES}


def pips_for(dice_number: Optional[int]) -> int:
    """Pip weight of a tile number; 0 for desert / missing / 7."""
    if not dice_number or dice_number == 7:
        return 0
    return DICE_PIPS.get(dice_number, 0)


@dataclass
class PortInfo:
    ratio: int          # 2 or 3
    resource: str       # one of RESOURCES, or "any"


@dataclass
class Tile:
    index: int
    x: Optional[int] = None
    y: Optional[int] = None
    tile_type: int = 0
    dice_number: int = 0
    resource: Optional[str] = "desert"
    pips: int = 0

    def set_terrain(self, tile_type: Optional[int] = None, dice_number: Optional[int] = None) -> None:
        """Update the resource-producing attributes and their derived fields."""
        if tile_type is not None:
            self.tile_type = tile_type
        if dice_number is not None:
            self.dice_number = dice_number
        self.resource = COLONIST_TILE_TO_NAME.get(self.tile_type)
        if self.resource in (None, "desert"):
            self.pips = 0
        else:
            self.pips = pips_for(self.dice_number)

    @property
    def is_desert(self) -> bool:
        return self.resource == "desert"


@dataclass
class Corner:
    index: int
    x: Optional[int] = None
    y: Optional[int] = None
    z: Optional[int] = None
    owner: Optional[int] = None
    building: Building = Building.NONE
    port: Optional[PortInfo] = None


@dataclass
class Edge:
    index: int
    x: Optional[int] = None
    y: Optional[int] = None
    z: Optional[int] = None
    owner: Optional[int] = None


@dataclass
class Port:
    index: int                  # key in portEdgeStates
    x: int
    y: int
    z: int
    port_type: int
    ratio: int
    resource: str
    edge_index: Optional[int] = None


@dataclass
class AdjacencyIndex:
    corner_tiles: Dict[int, List[int]] = field(default_factory=dict)
    tile_corners: Dict[int, List[int]] = field(default_factory=dict)
    corner_edges: Dict[int, List[int]] = field(default_factory=dict)
    edge_corners: Dict[int, List[int]] = field(default_factory=dict)
    corner_corners: Dict[int, List[int]] = field(default_factory=dict)
    corner_ports: Dict[int, PortInfo] = field(default_factory=dict)
    port_corners: Dict[int, List[int]] = field(default_factory=dict)
    anomalies: List[int] = field(default_factory=list)   # edge ids


@dataclass
class Player:
    color: int
    username: str = ""
    is_bot: bool = False
    user_id: Optional[str] = None
    victory_points: int = 0
    vp_breakdown: Dict[str, int] = field(default_factory=dict)
    resource_count: int = 0
    dev_cards: List[int] = field(default_factory=list)
    played_knights: int = 0
    has_largest_army: bool = False


@dataclass
class DiceRoll:
    dice1: int
    dice2: int

    @property
    def total(self) -> int:
        return self.dice1 + self.dice2


@dataclass
class GameModel:
    """Aggregate root for one observed game session."""
    my_color: Optional[int] = None
    play_order: List[int] = field(default_factory=list)
    players: Dict[int, Player] = field(default_factory=dict)

    tiles: Dict[int, Tile] = field(default_factory=dict)
    corners: Dict[int, Corner] = field(default_factory=dict)
    edges: Dict[int, Edge] = field(default_factory=dict)
    ports: Dict[int, Port] = field(default_factory=dict)
    adjacency: AdjacencyIndex = field(default_factory=AdjacencyIndex)
    robber_tile: Optional[int] = None

    current_action: Optional[ActionState] = None
    action_code: Optional[int] = None
    current_turn_color: Optional[int] = None
    completed_turns: int = 0
    turn_state: Optional[int] = None
    dice_history: List[DiceRoll] = field(default_factory=list)
    dice_state: Dict = field(default_factory=dict)

    my_resources: Dict[str, int] = field(default_factory=empty_resources)
    my_dev_cards: List[int] = field(default_factory=list)
    opponent_resources: Dict[int, Dict[str, int]] = field(default_factory=dict)

    # Legal spot sets published by the server for our own action only
    available_settlements: Set[int] = field(default_factory=set)
    available_roads: Set[int] = field(default_factory=set)
    available_cities: Set[int] = field(default_factory=set)
    available_robber_spots: Set[int] = field(default_factory=set)

    largest_army_color: Optional[int] = None
    game_over: bool = False

    @property
    def num_players(self) -> int:
        if self.players:
            return len(self.players)
        if self.play_order:
            return len(self.play_order)
        return 4

    @property
    def is_setup_phase(self) -> bool:
        return self.completed_turns < self.num_players * 2

    @property
    def is_my_turn(self) -> bool:
        return self.my_color is not None and self.current_turn_color == self.my_color

    @property
    def has_board(self) -> bool:
        return bool(self.tiles) and bool(self.corners)

    def corners_owned_by(self, color: Optional[int]) -> List[int]:
        return sorted(i for i, c in self.corners.items() if color is not None and c.owner == color)

    def edges_owned_by(self, color: Optional[int]) -> List[int]:
        return sorted(i for i, e in self.edges.items() if color is not None and e.owner == color)
