"""Tests for bus message parsing."""

import json

import pytest

from cortexbot.messages import (
    Attack,
    ForceStartCommand,
    JoinCommand,
    LeaveCommand,
    MessageParseError,
    OptionsCommand,
    StatusCommand,
    parse_command,
    parse_recommendation,
)


class TestParseCommand:
    """Test command channel messages."""

    def test_join(self):
        command = parse_command('{"join": {"gameType": "custom", "gameId": "lab"}}')
        assert command == JoinCommand(game_type="custom", game_id="lab")

    def test_join_without_game_id(self):
        assert parse_command('{"join": {"gameType": "ffa"}}') == JoinCommand(game_type="ffa")

    def test_join_from_bytes(self):
        assert parse_command(b'{"join": {"gameType": "1v1"}}') == JoinCommand(game_type="1v1")

    def test_leave(self):
        assert parse_command('{"leave": true}') == LeaveCommand()

    def test_options(self):
        assert parse_command('{"options": {"customGameSpeed": 2}}') == OptionsCommand(game_speed=2)

    def test_options_without_speed(self):
        assert parse_command('{"options": {}}') == OptionsCommand()

    def test_force_start(self):
        assert parse_command('{"forceStart": true}') == ForceStartCommand()

    def test_status(self):
        assert parse_command('{"status": true}') == StatusCommand()

    @pytest.mark.parametrize("raw", [
        "not json",
        "[1, 2]",
        '"join"',
        "{}",
        '{"dance": true}',
        '{"join": "ffa"}',
        '{"join": {"gameId": "x"}}',
        '{"options": {"customGameSpeed": "fast"}}',
        b"\xff\xfe",
    ])
    def test_malformed(self, raw):
        with pytest.raises(MessageParseError):
            parse_command(raw)


class TestParseRecommendation:
    """Test recommendation and action channel messages."""

    def test_full_recommendation(self):
        raw = json.dumps({
            "recommender": "expand",
            "confidence": 0.8,
            "priority": 1,
            "interrupt": True,
            "actions": [{"start": 4, "end": 5}, {"start": 5, "end": 9, "is50": True}],
        })
        recommendation = parse_recommendation(raw)
        assert recommendation.actions == [Attack(4, 5), Attack(5, 9, True)]
        assert recommendation.interrupt
        assert recommendation.recommender == "expand"
        assert recommendation.confidence == 0.8

    def test_defaults(self):
        recommendation = parse_recommendation("{}")
        assert recommendation.actions == []
        assert not recommendation.interrupt

    def test_attack_to_dict(self):
        assert Attack(1, 2).to_dict() == {"start": 1, "end": 2, "is50": False}

    @pytest.mark.parametrize("raw", [
        '{"actions": {"start": 1}}',
        '{"actions": [1, 2]}',
        '{"actions": [{"start": -1, "end": 2}]}',
        '{"actions": [{"start": 1}]}',
        '{"actions": [{"start": true, "end": 2}]}',
        '{"actions": [{"start": "1", "end": 2}]}',
    ])
    def test_malformed(self, raw):
        with pytest.raises(MessageParseError):
            parse_recommendation(raw)
