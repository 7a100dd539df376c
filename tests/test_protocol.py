"""Tests for advisor/protocol.py - envelope unwrapping and message parsing."""
import pytest

from advisor.protocol import (
    AvailableActionsMsg,
    GameOverMsg,
    GameSnapshotMsg,
    GameStateDiffMsg,
    HeartbeatMsg,
    IdEnvelope,
    ResourceDistributionMsg,
    TradeExecutionMsg,
    TypedEnvelope,
    UnknownEnvelope,
    UnknownMsg,
    parse_message,
    unwrap_envelope,
)


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------

class TestUnwrapEnvelope:
    def test_typed(self):
        env = unwrap_envelope({"type": 91, "payload": {"diff": {}}, "sequence": 7})
        assert isinstance(env, TypedEnvelope)
        assert env.type == 91
        assert env.sequence == 7

    def test_id_with_nested_type(self):
        env = unwrap_envelope({"id": 130, "data": {"type": 4, "payload": {"a": 1}}})
        assert isinstance(env, IdEnvelope)
        assert env.inner == TypedEnvelope(type=4, payload={"a": 1})

    def test_id_with_string_id(self):
        env = unwrap_envelope({"id": "abc", "data": {}})
        assert isinstance(env, IdEnvelope)
        assert env.inner is None

    def test_string_type_is_not_typed(self):
        assert isinstance(unwrap_envelope({"type": "Connected"}), UnknownEnvelope)

    def test_non_dict(self):
        assert isinstance(unwrap_envelope([1, 2]), UnknownEnvelope)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestParseHeartbeat:
    def test_bare(self):
        result = parse_message({"timestamp": 1234567890})
        assert isinstance(result, HeartbeatMsg)
        assert result.timestamp == 1234567890

    def test_id_envelope(self):
        result = parse_message({"id": 136, "data": {"timestamp": 123}})
        assert isinstance(result, HeartbeatMsg)
        assert result.timestamp == 123


class TestParseSnapshot:
    def test_typed_snapshot(self):
        result = parse_message({
            "type": 4,
            "payload": {
                "playerColor": 2,
                "playOrder": [3, 2, 1, 4],
                "gameState": {"mapState": {"tileHexStates": {}}},
            },
            "sequence": 1,
        })
        assert isinstance(result, GameSnapshotMsg)
        assert result.player_color == 2
        assert result.play_order == [3, 2, 1, 4]
        assert "mapState" in result.game_state
        assert result.payload["playerColor"] == 2

    def test_snapshot_inside_id_envelope(self):
        result = parse_message({
            "id": 130,
            "data": {"type": 4, "payload": {"playerColor": 1, "gameState": {}}},
        })
        assert isinstance(result, GameSnapshotMsg)
        assert result.play_order == []

    def test_type_4_without_game_fields_returns_unknown(self):
        """Type 4 without playerColor/gameState is lobby info, not a snapshot."""
        result = parse_message({"type": 4, "payload": {"someOtherField": True}})
        assert isinstance(result, UnknownMsg)


class TestParseDiff:
    def test_diff(self):
        result = parse_message({
            "type": 91,
            "payload": {"diff": {"currentState": {"actionState": 0}}, "timeLeftInState": 30.5},
        })
        assert isinstance(result, GameStateDiffMsg)
        assert "currentState" in result.diff
        assert result.time_left == 30.5

    def test_type_91_without_diff_returns_unknown(self):
        assert isinstance(parse_message({"type": 91, "payload": {}}), UnknownMsg)

    def test_other_type_carrying_diff(self):
        result = parse_message({"id": 130, "data": {"type": 77, "payload": {"diff": {"diceState": {}}}}})
        assert isinstance(result, GameStateDiffMsg)
        assert "diceState" in result.diff

    def test_other_type_carrying_partial_state(self):
        result = parse_message({"type": 80, "payload": {"playerStates": {"1": {}}, "other": 1}})
        assert isinstance(result, GameStateDiffMsg)
        assert result.diff == {"playerStates": {"1": {}}}

    @pytest.mark.parametrize("time_left", ["soon", [30], None, True])
    def test_bad_time_left_keeps_diff(self, time_left):
        result = parse_message({
            "type": 91,
            "payload": {"diff": {"diceState": {}}, "timeLeftInState": time_left},
        })
        assert isinstance(result, GameStateDiffMsg)
        assert result.time_left == 0.0

    def test_piggybacked_diff_with_bad_time_left(self):
        result = parse_message({
            "id": 130,
            "data": {"type": 77, "payload": {"diff": {"diceState": {}}, "timeLeftInState": "x"}},
        })
        assert isinstance(result, GameStateDiffMsg)
        assert result.time_left == 0.0


class TestParseOtherTypes:
    def test_resource_distribution(self):
        result = parse_message({
            "type": 28,
            "payload": [
                {"owner": 2, "tileIndex": 5, "distributionType": 1, "card": 1},
                {"owner": 3, "tileIndex": 5, "distributionType": 1, "card": 1},
                "junk",
            ],
        })
        assert isinstance(result, ResourceDistributionMsg)
        assert len(result.distributions) == 2

    def test_resource_distribution_empty(self):
        result = parse_message({"type": 28, "payload": []})
        assert isinstance(result, ResourceDistributionMsg)
        assert result.distributions == []

    @pytest.mark.parametrize("msg_type", [30, 31, 32, 33])
    def test_available_spots(self, msg_type):
        result = parse_message({"type": msg_type, "payload": [1, 5, "x", 9]})
        assert isinstance(result, AvailableActionsMsg)
        assert result.action_type == msg_type
        assert result.indices == [1, 5, 9]

    def test_available_spots_non_list(self):
        result = parse_message({"type": 30, "payload": None})
        assert isinstance(result, AvailableActionsMsg)
        assert result.indices == []

    def test_trade_execution(self):
        result = parse_message({
            "type": 43,
            "payload": {"givingPlayer": 2, "givingCards": [1, 1], "receivingPlayer": 3, "receivingCards": [5]},
        })
        assert isinstance(result, TradeExecutionMsg)
        assert result.giving_player == 2
        assert result.receiving_cards == [5]

    def test_trade_bad_player_returns_unknown(self):
        result = parse_message({"type": 43, "payload": {"givingPlayer": "nobody"}})
        assert isinstance(result, UnknownMsg)

    def test_game_over(self):
        result = parse_message({"type": 45, "payload": {"endGameState": {"winner": 1}}})
        assert isinstance(result, GameOverMsg)
        assert result.end_game_state == {"winner": 1}


class TestParseUnknown:
    @pytest.mark.parametrize("frame", [
        {"type": 999, "payload": "x"},
        {"id": 130, "data": {"something": 1}},
        {"random": "stuff"},
        [1, 2, 3],
        None,
    ])
    def test_unknown(self, frame):
        assert isinstance(parse_message(frame), UnknownMsg)
