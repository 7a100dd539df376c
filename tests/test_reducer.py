"""Tests for advisor/reducer.py - snapshot and diff application."""
import pytest

from advisor.model import ActionState, Building, DiceRoll
from advisor.protocol import HeartbeatMsg, UnknownMsg, parse_message
from advisor.reducer import ModelUpdate, StateReducer, count_resources
from advisor.topology import AXIAL_SCHEME
from board_fixtures import DESERT_INDEX, snapshot_frame, snapshot_payload, standard_map_state


MAIN_PHASE = {"actionState": 7, "currentTurnPlayerColor": 2, "completedTurns": 8, "turnState": 2}


def make_reducer(**snapshot_kwargs):
    r = StateReducer(scheme=AXIAL_SCHEME)
    r.apply_full_snapshot(snapshot_payload(**snapshot_kwargs))
    return r


def corner_diff(states):
    return {"mapState": {"tileCornerStates": states}}


def edge_diff(states):
    return {"mapState": {"tileEdgeStates": states}}


class TestCountResources:
    def test_counts_by_card_id(self):
        # ids 1..5 are wood, brick, sheep, wheat, ore (DESIGN.md, resource id mapping)
        assert count_resources([1, 1, 2, 4, 4, 4]) == {
            "wood": 2, "brick": 1, "sheep": 0, "wheat": 3, "ore": 0,
        }

    def test_unknown_ids_ignored(self):
        assert sum(count_resources([0, 7, 10, "x"]).values()) == 0

    def test_unhashable_ids_ignored(self):
        assert count_resources([1, [1], {"id": 1}, None, True]) == {
            "wood": 1, "brick": 0, "sheep": 0, "wheat": 0, "ore": 0,
        }


# ---------------------------------------------------------------------------
# Full snapshot
# ---------------------------------------------------------------------------

class TestSnapshot:
    def test_identity_and_roster(self):
        m = make_reducer(my_color=2, play_order=(3, 2, 1, 4)).model
        assert m.my_color == 2
        assert m.play_order == [3, 2, 1, 4]
        assert set(m.players) == {1, 2, 3, 4}
        assert m.players[3].username == "player3"
        assert m.players[3].is_bot is True
        assert m.players[2].is_bot is False
        assert m.players[2].user_id == "u2"

    def test_board_loaded(self):
        m = make_reducer().model
        assert len(m.tiles) == 19
        assert len(m.corners) == 54
        assert len(m.edges) == 72
        assert m.tiles[DESERT_INDEX].is_desert
        assert m.tiles[DESERT_INDEX].pips == 0
        assert m.tiles[0].resource == "wood"
        assert m.tiles[0].pips == 4            # dice number 5
        assert all(len(e) == 2 for e in m.adjacency.edge_corners.values())

    def test_ports(self):
        m = make_reducer().model
        assert m.ports[1].resource == "ore"
        assert m.ports[1].ratio == 2
        assert m.ports[0].edge_index == 0
        assert m.ports[1].edge_index == 1
        for cid in m.adjacency.port_corners[1]:
            assert m.corners[cid].port.resource == "ore"

    def test_robber_defaults_to_desert(self):
        assert make_reducer().model.robber_tile == DESERT_INDEX

    def test_robber_from_state(self):
        m = make_reducer(mechanicRobberState={"locationTileIndex": 4}).model
        assert m.robber_tile == 4

    def test_current_state(self):
        m = make_reducer().model
        assert m.current_action == ActionState.PLACE_SETTLEMENT
        assert m.current_turn_color == 1
        assert m.is_my_turn
        assert m.is_setup_phase

    def test_my_resources(self):
        m = make_reducer(player_states={
            "1": {"resourceCards": {"cards": [1, 1, 2, 4, 4, 4]}},
            "2": {"resourceCards": {"cards": [0, 0, 0]}},
        }).model
        assert m.my_resources == {"wood": 2, "brick": 1, "sheep": 0, "wheat": 3, "ore": 0}
        assert m.players[2].resource_count == 3
        assert sum(m.opponent_resources[2].values()) == 3

    def test_buildings_in_snapshot(self):
        map_state = standard_map_state()
        map_state["tileCornerStates"]["20"].update(owner=3, buildingType=2)
        map_state["tileEdgeStates"]["4"].update(owner=3)
        m = make_reducer(map_state=map_state).model
        assert m.corners[20].owner == 3
        assert m.corners[20].building == Building.CITY
        assert m.edges_owned_by(3) == [4]
        assert m.corners_owned_by(3) == [20]

    def test_same_snapshot_gives_equal_model(self):
        payload = snapshot_payload(my_color=3, mechanicRobberState={"locationTileIndex": 2})
        a = StateReducer(scheme=AXIAL_SCHEME)
        b = StateReducer(scheme=AXIAL_SCHEME)
        a.apply_full_snapshot(payload)
        b.apply_full_snapshot(payload)
        assert a.model == b.model

    def test_replaying_snapshot_is_idempotent(self):
        map_state = standard_map_state()
        map_state["tileCornerStates"]["10"].update(owner=1, buildingType=1)
        map_state["tileCornerStates"]["20"].update(owner=3, buildingType=2)
        map_state["tileEdgeStates"]["4"].update(owner=3)
        payload = snapshot_payload(
            map_state=map_state,
            current_state=MAIN_PHASE,
            player_states={
                "1": {"victoryPointsState": {"0": 1}, "resourceCards": {"cards": [1, 4, 4]}},
                "2": {"victoryPointsState": {}, "resourceCards": {"cards": [1, 2, 3]}},
                "3": {"victoryPointsState": {"0": 2}, "resourceCards": {"cards": [5]}},
                "4": {"victoryPointsState": {}, "resourceCards": {"cards": []}},
            },
            diceState={"dice1": 3, "dice2": 4, "diceThrown": True},
            mechanicDevelopmentCardsState={"players": {
                "2": {"developmentCards": {"cards": [11]}, "developmentCardsUsed": [11, 11, 11]},
            }},
            mechanicRobberState={"locationTileIndex": 2},
        )
        once = StateReducer(scheme=AXIAL_SCHEME)
        once.apply_full_snapshot(payload)
        twice = StateReducer(scheme=AXIAL_SCHEME)
        twice.apply_full_snapshot(payload)
        twice.apply_full_snapshot(payload)

        assert twice.model == once.model
        assert twice.model.dice_history == []
        assert twice.model.dice_state == {"dice1": 3, "dice2": 4, "diceThrown": True}
        assert twice.model.players == once.model.players
        assert twice.model.players[2].played_knights == 3
        assert twice.model.largest_army_color == 2
        assert twice.model.opponent_resources == once.model.opponent_resources
        assert sum(twice.model.opponent_resources[2].values()) == 3
        assert twice.model.corners[20].building == Building.CITY
        assert twice.card_tracker.hands == once.card_tracker.hands

    def test_snapshot_replaces_model(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        first = r.model
        r.apply_full_snapshot(snapshot_payload())
        assert r.model is not first
        assert r.model.corners[10].owner is None

    def test_non_dict_payload_ignored(self, caplog):
        r = make_reducer()
        before = r.model
        with caplog.at_level("WARNING", logger="advisor.reducer"):
            r.apply_full_snapshot(["not", "a", "dict"])
        assert r.model is before
        assert "not a dict" in caplog.text

    def test_missing_sections_tolerated(self):
        r = StateReducer(scheme=AXIAL_SCHEME)
        r.apply_full_snapshot({"playerColor": 1, "gameState": {}})
        assert r.model.my_color == 1
        assert r.model.tiles == {}
        assert r.model.robber_tile is None


# ---------------------------------------------------------------------------
# Diffs: board ownership
# ---------------------------------------------------------------------------

class TestCornerDiffs:
    def test_owner_and_settlement(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        assert r.model.corners[10].owner == 2
        assert r.model.corners[10].building == Building.SETTLEMENT

    def test_owner_without_type_is_settlement(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"11": {"owner": 4}}))
        assert r.model.corners[11].building == Building.SETTLEMENT

    def test_owner_conflict_ignored(self, caplog):
        r = make_reducer()
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        with caplog.at_level("WARNING", logger="advisor.reducer"):
            r.apply_diff(corner_diff({"10": {"owner": 3, "buildingType": 2}}))
        assert r.model.corners[10].owner == 2
        assert r.model.corners[10].building == Building.SETTLEMENT
        assert "ignoring reassignment" in caplog.text

    def test_city_upgrade_keeps_owner(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        r.apply_diff(corner_diff({"10": {"buildingType": 2}}))
        assert r.model.corners[10].owner == 2
        assert r.model.corners[10].building == Building.CITY

    def test_city_never_downgrades(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 2}}))
        r.apply_diff(corner_diff({"10": {"buildingType": 1}}))
        assert r.model.corners[10].building == Building.CITY

    def test_owner_never_cleared(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        r.apply_diff(corner_diff({"10": {"owner": -1, "buildingType": 0}}))
        assert r.model.corners[10].owner == 2
        assert r.model.corners[10].building == Building.SETTLEMENT

    def test_unknown_corner_created_lazily(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"999": {"owner": 2}}))
        corner = r.model.corners[999]
        assert corner.owner == 2
        assert corner.x is None
        assert r.model.adjacency.corner_tiles[999] == []

    def test_non_integer_key_skipped(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"abc": {"owner": 2}}))
        assert len(r.model.corners) == 54

    def test_unknown_player_discovered(self):
        r = make_reducer(play_order=(1, 2))
        r.apply_diff(corner_diff({"10": {"owner": 5}}))
        assert 5 in r.model.players


class TestEdgeDiffs:
    def test_road(self):
        r = make_reducer()
        r.apply_diff(edge_diff({"5": {"owner": 3}}))
        assert r.model.edges[5].owner == 3

    def test_road_conflict_and_clear_ignored(self):
        r = make_reducer()
        r.apply_diff(edge_diff({"5": {"owner": 3}}))
        r.apply_diff(edge_diff({"5": {"owner": 4}}))
        r.apply_diff(edge_diff({"5": {"owner": -1}}))
        assert r.model.edges[5].owner == 3


# ---------------------------------------------------------------------------
# Diffs: players, dice, turn
# ---------------------------------------------------------------------------

class TestVictoryPoints:
    def test_breakdown_merged_and_summed(self):
        r = make_reducer()
        r.apply_diff({"playerStates": {"2": {"victoryPointsState": {"0": 2}}}})
        r.apply_diff({"playerStates": {"2": {"victoryPointsState": {"1": 1}}}})
        assert r.model.players[2].victory_points == 3
        r.apply_diff({"playerStates": {"2": {"victoryPointsState": {"0": 3}}}})
        assert r.model.players[2].victory_points == 4

    def test_my_resources_recomputed(self):
        r = make_reducer()
        r.apply_diff({"playerStates": {"1": {"resourceCards": {"cards": [5, 5, 5]}}}})
        assert r.model.my_resources["ore"] == 3
        r.apply_diff({"playerStates": {"1": {"resourceCards": {"cards": [5]}}}})
        assert r.model.my_resources["ore"] == 1


class TestDevCards:
    def _knights(self, r, color, n):
        r.apply_diff({"mechanicDevelopmentCardsState": {
            "players": {str(color): {"developmentCardsUsed": [11] * n}}
        }})

    def test_my_dev_cards(self):
        r = make_reducer()
        r.apply_diff({"mechanicDevelopmentCardsState": {
            "players": {"1": {"developmentCards": {"cards": [11, 12]}}}
        }})
        assert r.model.my_dev_cards == [11, 12]

    def test_top_level_player_dict(self):
        r = make_reducer()
        r.apply_diff({"mechanicDevelopmentCardsState": {"2": {"developmentCardsUsed": [11, 13, 11]}}})
        assert r.model.players[2].played_knights == 2

    def test_below_minimum_no_army(self):
        r = make_reducer()
        self._knights(r, 2, 2)
        assert r.model.largest_army_color is None

    def test_first_to_three(self):
        r = make_reducer()
        self._knights(r, 2, 3)
        assert r.model.largest_army_color == 2
        assert r.model.players[2].has_largest_army

    def test_holder_keeps_on_tie(self):
        r = make_reducer()
        self._knights(r, 2, 3)
        self._knights(r, 3, 3)
        assert r.model.largest_army_color == 2

    def test_overtaken(self):
        r = make_reducer()
        self._knights(r, 2, 3)
        self._knights(r, 3, 4)
        assert r.model.largest_army_color == 3
        assert not r.model.players[2].has_largest_army

    def test_fresh_tie_gives_nobody(self):
        r = make_reducer()
        r.apply_diff({"mechanicDevelopmentCardsState": {"players": {
            "2": {"developmentCardsUsed": [11, 11, 11]},
            "3": {"developmentCardsUsed": [11, 11, 11]},
        }}})
        assert r.model.largest_army_color is None


class TestDice:
    def test_roll_recorded(self):
        r = make_reducer()
        r.apply_diff({"diceState": {"diceThrown": True, "dice1": 3, "dice2": 4}})
        assert r.model.dice_history == [DiceRoll(3, 4)]
        assert r.model.dice_history[-1].total == 7

    def test_partial_dice_merged(self):
        r = make_reducer()
        r.apply_diff({"diceState": {"diceThrown": True, "dice1": 3, "dice2": 4}})
        r.apply_diff({"diceState": {"dice1": 5}})
        assert r.model.dice_history[-1] == DiceRoll(5, 4)

    def test_reset_flag_not_a_roll(self):
        r = make_reducer()
        r.apply_diff({"diceState": {"diceThrown": False}})
        assert r.model.dice_history == []
        assert r.model.dice_state["diceThrown"] is False

    def test_incomplete_dice_not_recorded(self):
        r = make_reducer()
        r.apply_diff({"diceState": {"dice1": 2}})
        assert r.model.dice_history == []

    def test_snapshot_dice_not_a_roll(self):
        m = make_reducer(diceState={"diceThrown": True, "dice1": 1, "dice2": 1}).model
        assert m.dice_history == []
        assert m.dice_state["dice1"] == 1


class TestCurrentState:
    def test_action_change_clears_legal_sets(self):
        r = make_reducer()
        r.apply_available(30, [1, 2, 3])
        r.apply_available(33, [4])
        r.apply_diff({"currentState": {"actionState": 3}})
        assert r.model.current_action == ActionState.PLACE_ROAD
        assert r.model.available_settlements == set()
        assert r.model.available_robber_spots == set()

    def test_turn_change_clears_legal_sets(self):
        r = make_reducer()
        r.apply_available(31, [7])
        r.apply_diff({"currentState": {"currentTurnPlayerColor": 2}})
        assert r.model.available_roads == set()
        assert not r.model.is_my_turn

    def test_same_action_keeps_legal_sets(self):
        r = make_reducer()
        r.apply_available(30, [1, 2])
        r.apply_diff({"currentState": {"actionState": 1, "turnState": 1}})
        assert r.model.available_settlements == {1, 2}

    def test_unknown_action_code_kept_raw(self):
        r = make_reducer()
        r.apply_diff({"currentState": {"actionState": 99}})
        assert r.model.current_action is None
        assert r.model.action_code == 99

    def test_setup_phase_derived_from_completed_turns(self):
        r = make_reducer()
        r.apply_diff({"currentState": {"completedTurns": 7}})
        assert r.model.is_setup_phase
        r.apply_diff({"currentState": {"completedTurns": 8}})
        assert not r.model.is_setup_phase

    def test_robber_moves(self):
        r = make_reducer()
        r.apply_diff({"mechanicRobberState": {"locationTileIndex": 7}})
        assert r.model.robber_tile == 7


class TestAvailable:
    def test_each_type_fills_its_set(self):
        r = make_reducer()
        r.apply_available(30, [1])
        r.apply_available(31, [2])
        r.apply_available(32, [3])
        r.apply_available(33, [4])
        m = r.model
        assert (m.available_settlements, m.available_roads, m.available_cities,
                m.available_robber_spots) == ({1}, {2}, {3}, {4})

    def test_replaces_previous(self):
        r = make_reducer()
        r.apply_available(30, [1, 2])
        r.apply_available(30, [5])
        assert r.model.available_settlements == {5}


# ---------------------------------------------------------------------------
# Opponent cost tracking
# ---------------------------------------------------------------------------

class TestOpponentCosts:
    def test_setup_builds_are_free(self):
        r = make_reducer()
        r.apply_resource_distribution([{"owner": 2, "card": 1}, {"owner": 2, "card": 2}])
        r.apply_diff(edge_diff({"0": {"owner": 2}}))
        assert r.model.opponent_resources[2]["wood"] == 1
        assert r.model.opponent_resources[2]["brick"] == 1

    def test_main_phase_road_deducted(self):
        r = make_reducer(current_state=MAIN_PHASE)
        r.apply_resource_distribution([{"owner": 2, "card": 1}, {"owner": 2, "card": 2}])
        r.apply_diff(edge_diff({"0": {"owner": 2}}))
        assert r.model.opponent_resources[2]["wood"] == 0
        assert r.model.opponent_resources[2]["brick"] == 0

    def test_city_upgrade_deducts_city_cost(self):
        map_state = standard_map_state()
        map_state["tileCornerStates"]["20"].update(owner=3, buildingType=1)
        r = make_reducer(map_state=map_state, current_state=MAIN_PHASE)
        r.apply_resource_distribution([{"owner": 3, "card": c} for c in (4, 4, 5, 5, 5, 1)])
        r.apply_diff(corner_diff({"20": {"buildingType": 2}}))
        assert r.model.opponent_resources[3] == {
            "wood": 1, "brick": 0, "sheep": 0, "wheat": 0, "ore": 0,
        }

    def test_trade_between_opponents(self):
        r = make_reducer()
        r.apply_resource_distribution([{"owner": 2, "card": 1}])
        r.apply_trade(2, 3, [1], [5])
        assert r.model.opponent_resources[2]["ore"] == 1
        assert r.model.opponent_resources[3]["wood"] == 1

    def test_my_color_never_estimated(self):
        r = make_reducer()
        r.apply_resource_distribution([{"owner": 1, "card": 1}])
        assert 1 not in r.model.opponent_resources


# ---------------------------------------------------------------------------
# Dispatch and listeners
# ---------------------------------------------------------------------------

class TestDispatch:
    def test_handle_snapshot(self):
        r = StateReducer(scheme=AXIAL_SCHEME)
        assert r.handle(parse_message(snapshot_frame(my_color=4)))
        assert r.model.my_color == 4

    def test_handle_ignores_noise(self):
        r = make_reducer()
        assert not r.handle(HeartbeatMsg(timestamp=1))
        assert not r.handle(UnknownMsg(raw_data={}))
        assert not r.handle("string")

    def test_game_over(self):
        r = make_reducer()
        r.apply_game_over({"winner": 2})
        assert r.model.game_over

    def test_reset(self):
        r = make_reducer()
        model = r.reset()
        assert model is r.model
        assert model.tiles == {}
        assert r.card_tracker.hands == {}


class TestListeners:
    def test_snapshot_notifies(self):
        r = StateReducer(scheme=AXIAL_SCHEME)
        updates = []
        r.add_listener(updates.append)
        r.apply_full_snapshot(snapshot_payload())
        assert updates == [ModelUpdate(kind="snapshot", action_changed=True)]

    def test_diff_reports_ownership_changes(self):
        r = make_reducer()
        updates = []
        r.add_listener(updates.append)
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        (update,) = updates
        assert update.kind == "diff"
        assert not update.action_changed
        (change,) = update.ownership_changes
        assert (change.kind, change.index, change.owner) == ("corner", 10, 2)
        assert change.building == Building.SETTLEMENT
        assert change.previous_building == Building.NONE

    def test_unchanged_owner_reports_nothing(self):
        r = make_reducer()
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        updates = []
        r.add_listener(updates.append)
        r.apply_diff(corner_diff({"10": {"owner": 2, "buildingType": 1}}))
        assert updates[0].ownership_changes == []

    def test_failing_listener_does_not_break_others(self, caplog):
        r = make_reducer()
        seen = []

        def broken(update):
            raise RuntimeError("boom")

        r.add_listener(broken)
        r.add_listener(seen.append)
        with caplog.at_level("ERROR", logger="advisor.reducer"):
            r.apply_diff({"currentState": {"actionState": 0}})
        assert len(seen) == 1
        assert seen[0].action_changed
        assert "boom" in caplog.text

    def test_remove_listener(self):
        r = make_reducer()
        seen = []
        r.add_listener(seen.append)
        r.remove_listener(seen.append)
        r.apply_game_over()
        assert seen == []
