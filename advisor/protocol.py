"""colonist.io message parser.

Decoded frames arrive in one of two envelope shapes:
  {"type": <int>, "payload": {...}, "sequence": N}     typed envelope
  {"id": <int|str>, "data": {"type": ..., "payload": ...}}   id envelope

The envelope is first unwrapped into a closed variant (TypedEnvelope,
IdEnvelope, UnknownEnvelope); the typed content, whether direct or nested
inside an id envelope, is then parsed into a message dataclass.

Key message types:
  4  - Full game snapshot (board, player color, play order, roster)
  91 - State diff (incremental updates to game state)
  28 - Resource distribution
  30/31/32/33 - Legal settlement / road / city / robber positions
  43 - Trade execution
  45 - Game over

Also handles heartbeats: {"id": N, "data": {"timestamp": N}} or {"timestamp": N}
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from advisor import config
from advisor.classifier import is_heartbeat

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

@dataclass
class TypedEnvelope:
    type: int
    payload: Any = None
    sequence: Optional[int] = None


@dataclass
class IdEnvelope:
    id: Any
    data: Any = None

    @property
    def inner(self) -> Optional[TypedEnvelope]:
        """The nested typed envelope, if data carries an integer type."""
        if isinstance(self.data, dict) and _is_int(self.data.get("type")):
            return TypedEnvelope(
                type=self.data["type"],
                payload=self.data.get("payload"),
                sequence=self.data.get("sequence"),
            )
        return None


@dataclass
class UnknownEnvelope:
    raw: Any = None


Envelope = Union[TypedEnvelope, IdEnvelope, UnknownEnvelope]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def unwrap_envelope(value: Any) -> Envelope:
    """Classify a decoded frame into one of the envelope variants."""
    if not isinstance(value, dict):
        return UnknownEnvelope(raw=value)
    if _is_int(value.get("type")):
        return TypedEnvelope(
            type=value["type"],
            payload=value.get("payload"),
            sequence=value.get("sequence"),
        )
    if "id" in value:
        return IdEnvelope(id=value["id"], data=value.get("data"))
    return UnknownEnvelope(raw=value)


# ---------------------------------------------------------------------------
# Typed message dataclasses
# ---------------------------------------------------------------------------

@dataclass
class GameSnapshotMsg:
    """Type 4: full game snapshot."""
    player_color: int
    play_order: List[int]
    game_state: Dict
    payload: Dict = field(default_factory=dict)   # full payload incl. playerUserStates


@dataclass
class GameStateDiffMsg:
    """Type 91: incremental state diff."""
    diff: Dict               # sub-sections: mapState, currentState, playerStates, ...
    time_left: float = 0.0


@dataclass
class ResourceDistributionMsg:
    """Type 28: resources distributed to players."""
    distributions: List[Dict]  # [{owner, tileIndex, distributionType, card}, ...]


@dataclass
class AvailableActionsMsg:
    """Types 30/31/32/33: legal positions for the observer's current action."""
    action_type: int
    indices: List[int]


@dataclass
class TradeExecutionMsg:
    """Type 43: trade executed between players (or with the bank)."""
    giving_player: int
    receiving_player: int
    giving_cards: List[int]
    receiving_cards: List[int]


@dataclass
class GameOverMsg:
    """Type 45: game over."""
    end_game_state: Dict


@dataclass
class HeartbeatMsg:
    """Timestamp keep-alive."""
    timestamp: int


@dataclass
class UnknownMsg:
    """Fallback for unrecognized or non-game messages."""
    raw_data: Any = None


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def parse_message(value: Any) -> Any:
    """Parse a decoded frame into a typed message object.

    Args:
        value: Decoded frame (output of the binary decoder or json.loads).

    Returns:
        A typed message dataclass, or UnknownMsg if unrecognized.
    """
    if is_heartbeat(value):
        data = value.get("data", value)
        return HeartbeatMsg(timestamp=data.get("timestamp"))

    envelope = unwrap_envelope(value)

    if isinstance(envelope, IdEnvelope):
        typed = envelope.inner
        if typed is None:
            logger.debug(f"Id envelope {envelope.id!r} without typed data")
            return UnknownMsg(raw_data=value)
    elif isinstance(envelope, TypedEnvelope):
        typed = envelope
    else:
        logger.debug(f"Unrecognized envelope shape: {str(value)[:200]}")
        return UnknownMsg(raw_data=value)

    return parse_typed(typed)


def parse_typed(envelope: TypedEnvelope) -> Any:
    """Dispatch a typed envelope on its message type number."""
    msg_type = envelope.type
    payload = envelope.payload

    try:
        if msg_type == config.MSG_TYPE_GAME_SNAPSHOT:
            return _parse_game_snapshot(payload)
        if msg_type == config.MSG_TYPE_GAME_STATE_DIFF:
            return _parse_game_state_diff(payload)
        if msg_type == config.MSG_TYPE_RESOURCE_DISTRIBUTION:
            return _parse_resource_distribution(payload)
        if msg_type in config.AVAILABLE_SPOT_TYPES:
            return _parse_available_actions(msg_type, payload)
        if msg_type == config.MSG_TYPE_TRADE_EXECUTION:
            return _parse_trade_execution(payload)
        if msg_type == config.MSG_TYPE_GAME_OVER:
            return _parse_game_over(payload)

        # Other types occasionally piggyback a diff or partial state
        if isinstance(payload, dict):
            if isinstance(payload.get("diff"), dict):
                return _parse_game_state_diff(payload)
            partial = {
                key: payload[key]
                for key in ("playerStates", "currentState")
                if isinstance(payload.get(key), dict)
            }
            if partial:
                return GameStateDiffMsg(diff=partial)
    except (KeyError, TypeError, ValueError, IndexError) as e:
        logger.warning(f"Error parsing type {msg_type} message: {e}")
        return UnknownMsg(raw_data=payload)

    return UnknownMsg(raw_data={"type": msg_type, "payload": payload})


# ---------------------------------------------------------------------------
# Individual parsers
# ---------------------------------------------------------------------------

def _parse_game_snapshot(payload: Any) -> Any:
    """Parse type 4: full game snapshot."""
    if not isinstance(payload, dict):
        return UnknownMsg(raw_data=payload)

    player_color = payload.get("playerColor")
    game_state = payload.get("gameState")

    if player_color is None or not isinstance(game_state, dict):
        # Type 4 is also used for non-game messages (lobby info, etc.)
        return UnknownMsg(raw_data=payload)

    play_order = payload.get("playOrder") or []
    return GameSnapshotMsg(
        player_color=int(player_color),
        play_order=[int(c) for c in play_order],
        game_state=game_state,
        payload=payload,
    )


def _parse_game_state_diff(payload: Any) -> Any:
    """Parse type 91: incremental state diff."""
    if not isinstance(payload, dict):
        return UnknownMsg(raw_data=payload)

    diff = payload.get("diff")
    if not isinstance(diff, dict):
        return UnknownMsg(raw_data=payload)

    time_left = payload.get("timeLeftInState")
    if not isinstance(time_left, (int, float)) or isinstance(time_left, bool):
        time_left = 0.0
    return GameStateDiffMsg(diff=diff, time_left=float(time_left))


def _parse_resource_distribution(payload: Any) -> Any:
    """Parse type 28: resource distribution.

    Payload is a list of dicts: [{owner, tileIndex, distributionType, card}, ...]
    Can be an empty list when no resources are distributed (e.g. robber tile).
    """
    if not isinstance(payload, list):
        return UnknownMsg(raw_data=payload)

    return ResourceDistributionMsg(
        distributions=[d for d in payload if isinstance(d, dict)]
    )


def _parse_available_actions(msg_type: int, payload: Any) -> Any:
    """Parse types 30/31/32/33: legal action positions."""
    if not isinstance(payload, list):
        indices = []
    else:
        indices = [i for i in payload if _is_int(i)]

    return AvailableActionsMsg(action_type=msg_type, indices=indices)


def _parse_trade_execution(payload: Any) -> Any:
    """Parse type 43: trade execution.

    Payload: {givingPlayer, givingCards, receivingPlayer, receivingCards}
    receivingPlayer=0 means a bank trade.
    """
    if not isinstance(payload, dict):
        return UnknownMsg(raw_data=payload)

    return TradeExecutionMsg(
        giving_player=int(payload.get("givingPlayer", -1)),
        receiving_player=int(payload.get("receivingPlayer", -1)),
        giving_cards=list(payload.get("givingCards", [])),
        receiving_cards=list(payload.get("receivingCards", [])),
    )


def _parse_game_over(payload: Any) -> Any:
    """Parse type 45: game over."""
    if not isinstance(payload, dict):
        return GameOverMsg(end_game_state={})

    return GameOverMsg(end_game_state=payload.get("endGameState", {}) or {})
