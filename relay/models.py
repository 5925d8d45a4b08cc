"""网络消息 Pydantic 校验模型

为 relay/protocol.py 中的消息提供严格的输入校验。
服务端在 _handle_message 中先经 Pydantic 模型校验，
再把经过校验的数据交给注册表，拒绝不合法的字段类型/缺失字段。

设计原则:
  - 校验模型与内部 dataclass 分离 (校验层 vs 业务层)
  - 校验失败统一转换为 ProtocolError，由调用方记录并丢弃
  - 完整状态上报允许多余字段 (旧客户端会附带 angle / mass 等)
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .exceptions import ProtocolError

# ====================================================================== #
#  外层信封                                                                #
# ====================================================================== #


class EnvelopeModel(BaseModel):
    """{"type": ..., "payload": {...}} 外层结构"""

    model_config = ConfigDict(extra="ignore")

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def type_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("消息类型不能为空")
        return v

    @field_validator("payload", mode="before")
    @classmethod
    def null_payload(cls, v: Any) -> Any:
        return {} if v is None else v


# ====================================================================== #
#  payload 校验模型                                                         #
# ====================================================================== #


class SegmentModel(BaseModel):
    """蛇身一节坐标"""

    model_config = ConfigDict(extra="ignore")

    x: float = Field(allow_inf_nan=False)
    y: float = Field(allow_inf_nan=False)
    opacity: float | None = Field(default=None, allow_inf_nan=False)


class PlayerUpdateData(BaseModel):
    """完整状态上报 (update / 无 type 的旧格式)

    缺省字段保持 None，由 PlayerState.from_update 按固定默认值补齐。
    """

    model_config = ConfigDict(extra="ignore")

    segments: list[SegmentModel] | None = None
    color: str | None = Field(default=None, max_length=64)
    money: float | None = Field(default=None, allow_inf_nan=False)


class AuthenticateData(BaseModel):
    """authenticate 消息的 payload 校验"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1, max_length=128)


class JoinGameData(BaseModel):
    """join_game 消息的 payload 校验"""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    game_id: str = Field(alias="gameId", min_length=1, max_length=64)


class MoveData(BaseModel):
    """move 消息的 payload 校验"""

    model_config = ConfigDict(extra="ignore")

    direction: str = Field(min_length=1, max_length=32)


class LeaveGameData(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ====================================================================== #
#  消息类型 → payload 校验模型映射                                           #
# ====================================================================== #

DATA_VALIDATORS: dict[str, type[BaseModel]] = {
    "authenticate": AuthenticateData,
    "join_game": JoinGameData,
    "move": MoveData,
    "leave_game": LeaveGameData,
    "update": PlayerUpdateData,
}


def validate_client_message(raw: str | bytes) -> tuple[str, BaseModel | None]:
    """校验客户端原始帧，返回 (type_str, payload 模型)。

    流程:
      1. 解析 JSON，顶层必须是对象
      2. 没有 type 字段 → 旧版完整状态上报，整个对象按 PlayerUpdateData 校验
      3. type 为 update 且没有 payload → 扁平格式，其余顶层字段按 PlayerUpdateData 校验
      4. 否则按 EnvelopeModel 校验外层，再按 DATA_VALIDATORS 校验 payload
      5. 未知类型只校验外层，payload 模型返回 None

    Raises:
        ProtocolError: JSON 无效或校验失败
    """
    try:
        obj = json.loads(raw)
    except (ValueError, RecursionError) as e:
        # ValueError 涵盖 JSONDecodeError / UnicodeDecodeError / 超长整数
        raise ProtocolError(f"无效 JSON: {e}", raw=raw) from e
    if not isinstance(obj, dict):
        raise ProtocolError("消息顶层必须是 JSON 对象", raw=raw)

    try:
        if "type" not in obj:
            return "update", PlayerUpdateData.model_validate(obj)

        if obj["type"] == "update" and "payload" not in obj:
            fields = {k: v for k, v in obj.items() if k != "type"}
            return "update", PlayerUpdateData.model_validate(fields)

        envelope = EnvelopeModel.model_validate(obj)
        validator_cls = DATA_VALIDATORS.get(envelope.type)
        if validator_cls is None:
            return envelope.type, None
        return envelope.type, validator_cls.model_validate(envelope.payload)
    except ValidationError as e:
        raise ProtocolError(
            f"消息校验失败: {e.error_count()} 处错误", raw=raw
        ) from e
