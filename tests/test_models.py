"""
Pydantic 网络消息校验模型测试
"""

import json

import pytest
from pydantic import ValidationError

from relay.exceptions import ProtocolError
from relay.models import (
    AuthenticateData,
    EnvelopeModel,
    JoinGameData,
    MoveData,
    PlayerUpdateData,
    SegmentModel,
    validate_client_message,
)


class TestEnvelopeModel:
    """外层消息结构校验"""

    def test_valid(self):
        msg = EnvelopeModel(type="move", payload={"direction": "up"})
        assert msg.type == "move"

    def test_empty_type_rejected(self):
        with pytest.raises(ValidationError):
            EnvelopeModel(type="  ")

    def test_extra_field_ignored(self):
        msg = EnvelopeModel(type="move", payload={}, hack="inject")
        assert not hasattr(msg, "hack")

    def test_null_payload_becomes_empty(self):
        assert EnvelopeModel(type="leave_game", payload=None).payload == {}


class TestPayloadModels:
    def test_segment_requires_xy(self):
        with pytest.raises(ValidationError):
            SegmentModel(x=1)

    def test_segment_keeps_opacity(self):
        assert SegmentModel(x=1, y=2, opacity=0.5).opacity == 0.5

    def test_segment_rejects_nan(self):
        with pytest.raises(ValidationError):
            SegmentModel(x=float("nan"), y=0)

    def test_update_all_optional(self):
        data = PlayerUpdateData()
        assert data.segments is None
        assert data.color is None
        assert data.money is None

    def test_update_ignores_extra(self):
        data = PlayerUpdateData.model_validate({"color": "#fff", "angle": 1.2, "isBoosting": True})
        assert data.color == "#fff"

    def test_update_wrong_types(self):
        with pytest.raises(ValidationError):
            PlayerUpdateData.model_validate({"segments": "abc"})
        with pytest.raises(ValidationError):
            PlayerUpdateData.model_validate({"money": "lots"})

    def test_authenticate_alias(self):
        assert AuthenticateData.model_validate({"userId": "u1"}).user_id == "u1"

    def test_authenticate_missing_user(self):
        with pytest.raises(ValidationError):
            AuthenticateData.model_validate({})

    def test_join_game_empty_rejected(self):
        with pytest.raises(ValidationError):
            JoinGameData.model_validate({"gameId": ""})

    def test_move_requires_direction(self):
        with pytest.raises(ValidationError):
            MoveData.model_validate({})


class TestValidateClientMessage:
    def test_typed_update(self):
        raw = json.dumps({"type": "update", "payload": {"color": "#123456"}})
        type_str, data = validate_client_message(raw)
        assert type_str == "update"
        assert isinstance(data, PlayerUpdateData)
        assert data.color == "#123456"

    def test_untyped_object_is_update(self):
        raw = json.dumps({"segments": [{"x": 1, "y": 1}], "color": "#ff0000", "money": 5})
        type_str, data = validate_client_message(raw)
        assert type_str == "update"
        assert data.segments[0].x == 1
        assert data.money == 5

    def test_authenticate(self):
        type_str, data = validate_client_message('{"type": "authenticate", "payload": {"userId": "u"}}')
        assert type_str == "authenticate"
        assert data.user_id == "u"

    def test_unknown_type_passes_outer_check(self):
        type_str, data = validate_client_message('{"type": "boost", "payload": {}}')
        assert type_str == "boost"
        assert data is None

    def test_not_json(self):
        with pytest.raises(ProtocolError):
            validate_client_message("not json")

    def test_not_object(self):
        with pytest.raises(ProtocolError):
            validate_client_message('"hello"')

    def test_missing_required_field(self):
        with pytest.raises(ProtocolError):
            validate_client_message('{"type": "join_game", "payload": {}}')

    def test_bad_segments_in_legacy_update(self):
        with pytest.raises(ProtocolError):
            validate_client_message('{"segments": [{"x": 1}]}')

    def test_flat_typed_update(self):
        raw = '{"type": "update", "segments": [{"x": 1, "y": 2}], "money": 3}'
        type_str, data = validate_client_message(raw)
        assert type_str == "update"
        assert data.money == 3
        assert data.segments[0].y == 2

    def test_flat_typed_update_bad_fields(self):
        with pytest.raises(ProtocolError):
            validate_client_message('{"type": "update", "money": "lots"}')

    def test_oversized_integer(self):
        with pytest.raises(ProtocolError):
            validate_client_message('{"money": ' + "1" * 5000 + "}")

    def test_deeply_nested(self):
        with pytest.raises(ProtocolError):
            validate_client_message("[" * 5000)
