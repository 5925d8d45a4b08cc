"""
网络协议测试
测试消息序列化、工厂方法和快速解析
"""

import json

import pytest

from relay.exceptions import ProtocolError
from relay.protocol import (
    SNAPSHOT_TYPES,
    Message,
    MsgType,
    encode_snapshot,
    parse_message,
    validate_msg_type,
)
from relay.registry import PlayerState, Segment


class TestMsgType:
    def test_client_types(self):
        assert MsgType("authenticate") == MsgType.AUTHENTICATE
        assert MsgType("join_game") == MsgType.JOIN_GAME
        assert MsgType("move") == MsgType.MOVE
        assert MsgType("leave_game") == MsgType.LEAVE_GAME

    def test_snapshot_types(self):
        assert MsgType.PLAYERS in SNAPSHOT_TYPES
        assert MsgType.GAME_STATE in SNAPSHOT_TYPES
        assert MsgType.GAME_UPDATE in SNAPSHOT_TYPES
        assert MsgType.WELCOME not in SNAPSHOT_TYPES

    def test_validate_msg_type(self):
        assert validate_msg_type("players")
        assert not validate_msg_type("teleport")


class TestMessage:
    def test_to_json_envelope(self):
        obj = json.loads(Message.move("up").to_json())
        assert obj == {"type": "move", "payload": {"direction": "up"}}

    def test_from_json(self):
        msg = Message.from_json('{"type": "welcome", "payload": {"connectionId": "1-ab"}}')
        assert msg.type == MsgType.WELCOME
        assert msg.payload["connectionId"] == "1-ab"

    def test_from_json_missing_payload(self):
        msg = Message.from_json('{"type": "leave_game"}')
        assert msg.payload == {}

    def test_from_json_null_payload(self):
        msg = Message.from_json('{"type": "leave_game", "payload": null}')
        assert msg.payload == {}

    def test_from_json_unknown_type(self):
        with pytest.raises(ProtocolError):
            Message.from_json('{"type": "teleport", "payload": {}}')

    def test_from_json_missing_type(self):
        with pytest.raises(ProtocolError):
            Message.from_json('{"payload": {}}')

    def test_from_json_payload_not_object(self):
        with pytest.raises(ProtocolError):
            Message.from_json('{"type": "players", "payload": [1, 2]}')

    def test_authenticate_uses_wire_name(self):
        assert Message.authenticate("u-1").payload == {"userId": "u-1"}

    def test_join_game_uses_wire_name(self):
        assert Message.join_game("g-9").payload == {"gameId": "g-9"}

    def test_update_omits_missing_fields(self):
        msg = Message.update(color="#00ff00")
        assert msg.type == MsgType.UPDATE
        assert msg.payload == {"color": "#00ff00"}

    def test_update_keeps_zero_money(self):
        assert Message.update(money=0).payload == {"money": 0}

    def test_error_factory(self):
        msg = Message.error("bad", code=429)
        assert msg.payload == {"message": "bad", "code": 429}

    def test_unicode_not_escaped(self):
        assert "消息" in Message.error("消息").to_json()


class TestParseMessage:
    def test_returns_type_and_obj(self):
        type_str, obj = parse_message('{"type": "move", "payload": {"direction": "up"}}')
        assert type_str == "move"
        assert obj["payload"]["direction"] == "up"

    def test_untyped_object(self):
        type_str, obj = parse_message('{"color": "#fff"}')
        assert type_str == ""
        assert obj == {"color": "#fff"}

    def test_not_json(self):
        with pytest.raises(ProtocolError):
            parse_message("not json")

    def test_not_object(self):
        with pytest.raises(ProtocolError):
            parse_message("[1, 2, 3]")

    def test_type_not_string(self):
        with pytest.raises(ProtocolError):
            parse_message('{"type": 5}')

    @pytest.mark.parametrize("raw", [
        "[" * 5000,
        '{"type": "players", "n": ' + "1" * 5000 + "}",
    ])
    def test_pathological_json(self, raw):
        with pytest.raises(ProtocolError):
            parse_message(raw)

    def test_bytes_input(self):
        type_str, _ = parse_message(b'{"type": "players"}')
        assert type_str == "players"


class TestEncodeSnapshot:
    def test_players_frame(self):
        states = (
            PlayerState(id="a", segments=(Segment(1, 2),), color="#ff0000", money=5),
            PlayerState(id="b"),
        )
        obj = json.loads(encode_snapshot(states))
        assert obj["type"] == "players"
        players = {p["id"]: p for p in obj["payload"]["players"]}
        assert players["a"]["segments"] == [{"x": 1, "y": 2}]
        assert players["b"] == {"id": "b", "segments": [], "color": "#d55400", "money": 1.0}

    def test_empty_snapshot(self):
        obj = json.loads(encode_snapshot(()))
        assert obj["payload"]["players"] == []
