"""Validated boundary between raw client messages and the room core.

Every inbound message is parsed into one of the command models below.
Anything malformed is rejected as ``InvalidInput`` before it reaches a room.
"""
import math
import re
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, StrictBool, TypeAdapter, ValidationError, field_validator

import config
from errors import InvalidInput


def sanitize_name(value, max_length: int) -> str:
    """Strip HTML tags and control characters, trim, and cap the length."""
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError("must be a string")
    value = re.sub(r'<[^>]+>', '', value)
    value = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', value)
    return value.strip()[:max_length].strip()


class RoomCommand(BaseModel):
    code: str

    @field_validator('code', mode='before')
    @classmethod
    def normalize_code(cls, v) -> str:
        if not isinstance(v, str):
            raise ValueError('Room code must be a string')
        v = v.strip().upper()
        if not v:
            raise ValueError('Room code is required')
        return v


class CreateRoom(BaseModel):
    type: Literal["CREATE_ROOM"]
    host_name: str = ""
    room_name: str = ""
    num_teams: int = config.MIN_TEAMS

    @field_validator('host_name', mode='before')
    @classmethod
    def validate_host_name(cls, v) -> str:
        return sanitize_name(v, config.MAX_NAME_LENGTH)

    @field_validator('room_name', mode='before')
    @classmethod
    def validate_room_name(cls, v) -> str:
        return sanitize_name(v, config.MAX_ROOM_NAME_LENGTH)

    @field_validator('num_teams', mode='before')
    @classmethod
    def clamp_num_teams(cls, v) -> int:
        if v is None:
            return config.MIN_TEAMS
        if isinstance(v, bool):
            raise ValueError('Number of teams must be a number')
        try:
            n = float(v)
        except (TypeError, ValueError):
            raise ValueError('Number of teams must be a number')
        if not math.isfinite(n):
            raise ValueError('Number of teams must be a number')
        return min(config.MAX_TEAMS, max(config.MIN_TEAMS, int(round(n))))


class SetRoomName(RoomCommand):
    type: Literal["SET_ROOM_NAME"]
    room_name: str

    @field_validator('room_name', mode='before')
    @classmethod
    def validate_room_name(cls, v) -> str:
        v = sanitize_name(v, config.MAX_ROOM_NAME_LENGTH)
        if not v:
            raise ValueError('Room name cannot be empty')
        return v


class SetTeamName(RoomCommand):
    type: Literal["SET_TEAM_NAME"]
    team_id: str
    name: str

    @field_validator('name', mode='before')
    @classmethod
    def validate_name(cls, v) -> str:
        v = sanitize_name(v, config.MAX_NAME_LENGTH)
        if not v:
            raise ValueError('Team name cannot be empty')
        return v


class JoinRoom(RoomCommand):
    type: Literal["JOIN_ROOM"]
    name: str = "Player"
    team_id: Optional[str] = None
    spectate: bool = False

    @field_validator('name', mode='before')
    @classmethod
    def validate_name(cls, v) -> str:
        return sanitize_name(v, config.MAX_NAME_LENGTH) or "Player"


class StartTossupReading(RoomCommand):
    type: Literal["START_TOSSUP_READING"]


class DoneReadingTossup(RoomCommand):
    type: Literal["DONE_READING_TOSSUP"]


class Buzz(RoomCommand):
    type: Literal["BUZZ"]


class ClearBuzz(RoomCommand):
    type: Literal["CLEAR_BUZZ"]


class SetInterruptChoice(RoomCommand):
    type: Literal["SET_INTERRUPT_CHOICE"]
    interrupt: StrictBool


class MarkAnswer(RoomCommand):
    type: Literal["MARK_ANSWER"]
    correct: StrictBool


class DoneReadingBonus(RoomCommand):
    type: Literal["DONE_READING_BONUS"]


class AwardBonus(RoomCommand):
    type: Literal["AWARD_BONUS"]
    points: int

    @field_validator('points')
    @classmethod
    def validate_points(cls, v: int) -> int:
        if v < config.MIN_BONUS_POINTS or v > config.MAX_BONUS_POINTS:
            raise ValueError(f'Bonus points must be {config.MIN_BONUS_POINTS}-{config.MAX_BONUS_POINTS}')
        return v


class SkipBonus(RoomCommand):
    type: Literal["SKIP_BONUS"]


class DeleteLedgerRow(RoomCommand):
    type: Literal["DELETE_LEDGER_ROW"]
    num: int


Command = Annotated[
    Union[
        CreateRoom, SetRoomName, SetTeamName, JoinRoom, StartTossupReading,
        DoneReadingTossup, Buzz, ClearBuzz, SetInterruptChoice, MarkAnswer,
        DoneReadingBonus, AwardBonus, SkipBonus, DeleteLedgerRow,
    ],
    Field(discriminator="type"),
]

_command_adapter = TypeAdapter(Command)


def _describe(exc: ValidationError) -> str:
    err = exc.errors()[0]
    if err.get("type") == "union_tag_invalid":
        return "Unknown message type"
    if err.get("type") == "union_tag_not_found":
        return "Message type is required"
    loc = ".".join(str(part) for part in err.get("loc", ())[1:])
    msg = err.get("msg", "Invalid value")
    msg = msg.removeprefix("Value error, ")
    return f"{loc}: {msg}" if loc else msg


def parse_command(message) -> Command:
    if not isinstance(message, dict):
        raise InvalidInput("Invalid message format")
    try:
        return _command_adapter.validate_python(message)
    except ValidationError as exc:
        raise InvalidInput(_describe(exc)) from None
