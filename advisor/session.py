"""Observation pipeline: decode -> classify -> parse -> reduce -> advise.

AdvisorSession is the surface a presentation layer talks to. Frames go in
through process_frame() (transport records) or process_value() (already
decoded values); queries read the current model. Everything is
synchronous, and only reset() and the process_* calls mutate state.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from advisor.classifier import is_negligible
from advisor.decoder import WireFrame, decode_frame
from advisor.message_log import LatestByType, MessageCatalog
from advisor.model import GameModel
from advisor.protocol import parse_message
from advisor.reducer import ModelUpdate, StateReducer
from advisor.strategy import Advisor, BuildOption, Recommendation, Suggestion
from advisor.topology import CoordinateScheme, TopologyError

logger = logging.getLogger(__name__)

AdviceListener = Callable[[Recommendation], None]


@dataclass
class FrameResult:
    value: Any = None
    message: Any = None
    negligible: bool = False
    applied: bool = False
    error: Optional[str] = None


class AdvisorSession:
    """One observed game session."""

    def __init__(
        self,
        scheme: Optional[CoordinateScheme] = None,
        strict_topology: bool = False,
        catalog_limit: Optional[int] = None,
    ):
        self.reducer = StateReducer(scheme=scheme, strict_topology=strict_topology)
        self.catalog = MessageCatalog(limit=catalog_limit)
        self.latest = LatestByType(limit=catalog_limit)
        self._advice_listeners: List[AdviceListener] = []
        self.frames_seen = 0
        self.frames_dropped = 0
        self.reducer.add_listener(self._on_update)

    @property
    def advisor(self) -> Advisor:
        return Advisor(self.reducer.model)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def process_frame(self, frame: Union[WireFrame, Dict]) -> FrameResult:
        """Decode and process one transport frame."""
        if isinstance(frame, dict):
            frame = WireFrame.from_dict(frame)
        self.frames_seen += 1
        value = decode_frame(frame)
        if value is None:
            self.frames_dropped += 1
            return FrameResult(negligible=True)
        return self._process(value, frame.direction)

    def process_value(self, value: Any, direction: str = "incoming") -> FrameResult:
        """Process an already-decoded frame value."""
        self.frames_seen += 1
        return self._process(value, direction)

    def _process(self, value: Any, direction: str) -> FrameResult:
        if is_negligible(value):
            self.frames_dropped += 1
            return FrameResult(value=value, negligible=True)

        self.catalog.add(value, direction)
        self.latest.add(value, direction)

        # Outgoing frames are the player's own commands; the server echoes
        # their effects back as incoming diffs.
        if direction != "incoming":
            return FrameResult(value=value)

        message = None
        try:
            message = parse_message(value)
            applied = self.reducer.handle(message)
        except TopologyError:
            raise
        except Exception as e:
            logger.error(f"Error handling message: {e}", exc_info=True)
            return FrameResult(value=value, message=message, error=str(e))
        return FrameResult(value=value, message=message, applied=applied)

    # ------------------------------------------------------------------
    # Advice hook
    # ------------------------------------------------------------------

    def add_advice_listener(self, listener: AdviceListener) -> None:
        """Called with fresh advice after each mutation while we are acting."""
        self._advice_listeners.append(listener)

    def _on_update(self, update: ModelUpdate) -> None:
        if not self._advice_listeners:
            return
        advice = self.advisor.recommend_for_current_action()
        if advice is None:
            return
        logger.debug(f"Advice after {update.kind}: {advice.action}")
        for listener in list(self._advice_listeners):
            try:
                listener(advice)
            except Exception as e:
                logger.error(f"Advice listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_model(self) -> GameModel:
        return self.reducer.model

    def score_corner(self, corner_id: int) -> Optional[float]:
        return self.advisor.score_corner(corner_id)

    def suggest_initial_placement(self) -> List[Suggestion]:
        return self.advisor.suggest_initial_placement()

    def suggest_road_placement(self) -> List[Suggestion]:
        return self.advisor.suggest_road_placement()

    def suggest_build_priority(self) -> List[BuildOption]:
        return self.advisor.suggest_build_priority()

    def suggest_robber_placement(self) -> List[Suggestion]:
        return self.advisor.suggest_robber_placement()

    def get_strategic_recommendation(self) -> Recommendation:
        return self.advisor.get_strategic_recommendation()

    def analyze(self) -> Dict:
        return self.advisor.analyze()

    def reset(self) -> GameModel:
        """Start over with an empty model and empty message catalogs."""
        self.catalog.clear()
        self.latest.clear()
        self.frames_seen = 0
        self.frames_dropped = 0
        return self.reducer.reset()
