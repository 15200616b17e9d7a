from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Speaker(str, Enum):
    local = "me"
    remote = "them"


# --- Transcript data ---

class WordUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    start_ms: int
    end_ms: int


class AudioEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    speaker: Speaker
    text: str
    is_final: bool = False
    words: Optional[list[WordUnit]] = None
    energy: Optional[float] = None


class TranscriptRow(BaseModel):
    id: str
    speaker: Speaker
    text: str
    is_final: bool
    interim: Optional[str] = None  # live suffix attached to a finalized paragraph


# --- WebSocket messages: capture client -> transcript service ---

class ClientMessageType(str, Enum):
    start = "start"
    transcript = "transcript"
    system_state = "system_state"
    reset = "reset"
    end = "end"


class StartMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.start
    stream_id: str
    system_active: bool = False


class TranscriptEventMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.transcript
    speaker: Speaker
    text: str
    is_final: bool = False
    words: Optional[list[WordUnit]] = None
    energy: Optional[float] = None

    def to_event(self) -> AudioEvent:
        return AudioEvent(
            speaker=self.speaker,
            text=self.text,
            is_final=self.is_final,
            words=self.words,
            energy=self.energy,
        )


class SystemStateMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.system_state
    active: bool


class ResetMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.reset


class EndMessage(BaseModel):
    type: ClientMessageType = ClientMessageType.end


# --- WebSocket messages: transcript service -> display client ---

class ServerMessageType(str, Enum):
    rows = "rows"
    error = "error"


class RowsMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.rows
    stream_id: str
    rows: list[TranscriptRow]
    finals: list[TranscriptRow] = []


class ErrorMessage(BaseModel):
    type: ServerMessageType = ServerMessageType.error
    stream_id: str
    detail: str


# --- HTTP responses ---

class LastFinalResponse(BaseModel):
    stream_id: str
    speaker: Speaker
    text: Optional[str] = None
