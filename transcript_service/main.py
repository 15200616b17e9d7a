from __future__ import annotations

import asyncio
import json
import logging

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from common.config import TranscriptSettings
from common.schemas import (
    ClientMessageType,
    ErrorMessage,
    LastFinalResponse,
    RowsMessage,
    Speaker,
    StartMessage,
    SystemStateMessage,
    TranscriptEventMessage,
    TranscriptRow,
)
from transcript_service.models import FlushSnapshot
from transcript_service.session import SessionManager, TranscriptSession

logger = logging.getLogger(__name__)

settings = TranscriptSettings()
app = FastAPI(title="Transcript Service")
manager = SessionManager(max_sessions=settings.max_sessions)


class SnapshotOutbox:
    """Latest-wins slot for flush snapshots. Finals of a replaced snapshot are carried forward."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[FlushSnapshot] = asyncio.Queue(maxsize=1)

    def put(self, snapshot: FlushSnapshot) -> None:
        try:
            stale = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            pass
        else:
            self._queue.task_done()
            snapshot = FlushSnapshot(rows=snapshot.rows, finals=stale.finals + snapshot.finals)
        self._queue.put_nowait(snapshot)

    async def get(self) -> FlushSnapshot:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()


@app.get("/health")
async def health():
    return {"status": "ok", "active_sessions": manager.active_count}


def _get_session(stream_id: str) -> TranscriptSession:
    session = manager.get(stream_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Unknown stream {stream_id}")
    return session


@app.get("/sessions/{stream_id}/rows", response_model=list[TranscriptRow])
async def display_rows(stream_id: str):
    return _get_session(stream_id).get_display_rows()


@app.get("/sessions/{stream_id}/last-final/{speaker}", response_model=LastFinalResponse)
async def last_final(stream_id: str, speaker: Speaker):
    session = _get_session(stream_id)
    return LastFinalResponse(stream_id=stream_id, speaker=speaker, text=session.get_last_final(speaker))


@app.post("/sessions/{stream_id}/reset")
async def reset_session(stream_id: str):
    _get_session(stream_id).reset()
    return {"status": "ok"}


@app.websocket("/stream")
async def stream_endpoint(ws: WebSocket):
    await ws.accept()
    stream_id: str | None = None
    try:
        # Expect a start message first (text frame)
        raw = await ws.receive_text()
        try:
            msg = json.loads(raw)
            if not isinstance(msg, dict) or msg.get("type") != ClientMessageType.start:
                raise ValueError("Expected start message")
            start = StartMessage(**msg)
        except ValueError as exc:
            await ws.send_text(ErrorMessage(stream_id="", detail=str(exc)).model_dump_json())
            await ws.close()
            return

        outbox = SnapshotOutbox()
        session = await manager.create(
            start.stream_id,
            settings,
            on_flush=outbox.put,
            system_active=start.system_active,
        )
        stream_id = start.stream_id
        session.start()

        sender = asyncio.create_task(_send_snapshots(ws, outbox, stream_id))
        try:
            while True:
                message = await ws.receive()
                if message.get("type") == "websocket.disconnect":
                    break

                if message.get("bytes") is not None:
                    session.add_mic_audio(message["bytes"])
                elif message.get("text") is not None:
                    if await _handle_client_message(ws, session, message["text"]):
                        # Deliver the final flush before closing
                        await session.drain()
                        await outbox.join()
                        await ws.close()
                        break
        finally:
            sender.cancel()
            try:
                await sender
            except asyncio.CancelledError:
                pass

    except WebSocketDisconnect:
        logger.info("Client disconnected: %s", stream_id)
    except RuntimeError as exc:
        logger.warning("Session error: %s", exc)
        await ws.send_text(ErrorMessage(stream_id=stream_id or "", detail=str(exc)).model_dump_json())
    except Exception:
        logger.exception("Unexpected error in stream endpoint")
    finally:
        if stream_id:
            await manager.remove(stream_id)


async def _handle_client_message(ws: WebSocket, session: TranscriptSession, raw: str) -> bool:
    """Apply one text frame. Returns True when the client ended the stream."""
    try:
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("Expected a JSON object")
        msg_type = ClientMessageType(data.get("type"))

        if msg_type == ClientMessageType.transcript:
            await session.submit(TranscriptEventMessage(**data).to_event())
        elif msg_type == ClientMessageType.system_state:
            session.set_system_active(SystemStateMessage(**data).active)
        elif msg_type == ClientMessageType.reset:
            session.reset()
        elif msg_type == ClientMessageType.end:
            return True
        else:
            raise ValueError(f"Unexpected message type {msg_type.value}")
    except (ValidationError, ValueError) as exc:
        logger.warning("Malformed message on %s: %s", session.stream_id, exc)
        await ws.send_text(ErrorMessage(stream_id=session.stream_id, detail=str(exc)).model_dump_json())
    return False


async def _send_snapshots(ws: WebSocket, outbox: SnapshotOutbox, stream_id: str):
    """Push flushed transcript snapshots to the client."""
    while True:
        snapshot = await outbox.get()
        try:
            await ws.send_text(
                RowsMessage(stream_id=stream_id, rows=snapshot.rows, finals=snapshot.finals).model_dump_json()
            )
        except Exception:
            logger.warning("Failed to send rows for %s", stream_id, exc_info=True)
        finally:
            outbox.task_done()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
