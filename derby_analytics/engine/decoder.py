from __future__ import annotations

import base64
import binascii
import gzip
import re
import struct
import zlib
from typing import List, Optional, Tuple, Union

import numpy as np

from .data_models import (
    MAX_EVENT_PARAMS,
    MAX_PARTICIPANTS,
    EventRecord,
    Frame,
    ParticipantFrame,
    ParticipantResult,
    RaceLog,
    RunningStyle,
)
from .errors import DecodeError

GZIP_MAGIC = b"\x1f\x8b"
WHITESPACE_RE = re.compile(r"\s+")

PARTICIPANT_FRAME_FIELDS = [
    ("distance", "<f4"),
    ("lane_position", "<u2"),
    ("speed", "<u2"),
    ("hp", "<u2"),
    ("temptation_mode", "i1"),
    ("blocked_by_index", "i1"),
]
PARTICIPANT_FRAME_MIN_SIZE = np.dtype(PARTICIPANT_FRAME_FIELDS).itemsize

RESULT_STRUCT = struct.Struct("<ifffBBfBif")
EVENT_HEAD_STRUCT = struct.Struct("<fbb")

Payload = Union[bytes, bytearray, memoryview, str]


class _ByteReader:
    """Cursor over the decompressed payload that turns truncation into DecodeError."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    @property
    def remaining(self) -> int:
        return len(self.data) - self.offset

    def take(self, size: int, what: str) -> bytes:
        if size < 0:
            raise DecodeError(f"Negative length {size} for {what}")
        if size > self.remaining:
            raise DecodeError(
                f"Truncated payload reading {what}: need {size} bytes at offset {self.offset}, "
                f"have {self.remaining}"
            )
        chunk = self.data[self.offset:self.offset + size]
        self.offset += size
        return chunk

    def skip(self, size: int, what: str) -> None:
        self.take(size, what)

    def int32(self, what: str) -> int:
        return struct.unpack("<i", self.take(4, what))[0]

    def int16(self, what: str) -> int:
        return struct.unpack("<h", self.take(2, what))[0]

    def float32(self, what: str) -> float:
        return struct.unpack("<f", self.take(4, what))[0]

    def count(self, what: str) -> int:
        value = self.int32(what)
        if value < 0:
            raise DecodeError(f"Negative {what}: {value}")
        return value


def decode(payload: Payload) -> RaceLog:
    """Decodes a race scenario (base64 text or raw bytes) into a RaceLog."""
    if isinstance(payload, str):
        return decode_base64(payload)
    if not isinstance(payload, (bytes, bytearray, memoryview)):
        raise DecodeError(f"Unsupported payload type: {type(payload).__name__}")
    return _decode_binary(_maybe_decompress(bytes(payload)))


def decode_base64(text: str) -> RaceLog:
    return _decode_binary(_maybe_decompress(_b64_to_bytes(text)))


def _b64_to_bytes(text: str) -> bytes:
    cleaned = WHITESPACE_RE.sub("", text or "")
    if not cleaned:
        raise DecodeError("Race scenario is empty")
    cleaned = cleaned.replace("-", "+").replace("_", "/")
    cleaned += "=" * (-len(cleaned) % 4)
    try:
        return base64.b64decode(cleaned, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecodeError(f"Race scenario is not valid base64: {exc}") from exc


def _maybe_decompress(data: bytes) -> bytes:
    if not data.startswith(GZIP_MAGIC):
        return data
    try:
        return gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as exc:
        raise DecodeError(f"Corrupt gzip stream: {exc}") from exc


def _decode_binary(data: bytes) -> RaceLog:
    reader = _ByteReader(data)

    header_length = reader.int32("header length")
    if header_length < 4:
        raise DecodeError(f"Header length {header_length} is too small")
    version = reader.int32("header version")
    reader.skip(header_length - 4, "header body")

    distance_diff_max = reader.float32("distance_diff_max")
    participant_count = reader.count("participant count")
    if participant_count > MAX_PARTICIPANTS:
        raise DecodeError(f"Participant count {participant_count} exceeds {MAX_PARTICIPANTS}")
    participant_frame_size = reader.count("participant frame size")
    participant_result_size = reader.count("participant result size")
    if participant_count and participant_frame_size < PARTICIPANT_FRAME_MIN_SIZE:
        raise DecodeError(f"Participant frame size {participant_frame_size} is too small")
    if participant_count and participant_result_size < RESULT_STRUCT.size:
        raise DecodeError(f"Participant result size {participant_result_size} is too small")
    reader.skip(reader.count("padding 1"), "padding 1")

    frames = _read_frames(reader, participant_count, participant_frame_size)

    reader.skip(reader.count("padding 2"), "padding 2")
    results = _read_results(reader, participant_count, participant_result_size)

    reader.skip(reader.count("padding 3"), "padding 3")
    events = _read_events(reader)

    return RaceLog(
        frames=frames,
        results=results,
        events=events,
        version=version,
        distance_diff_max=float(distance_diff_max),
    )


def _frame_dtype(participant_count: int, participant_frame_size: int, frame_size: int) -> np.dtype:
    if participant_count == 0:
        return np.dtype({"names": ["time"], "formats": ["<f4"], "offsets": [0], "itemsize": frame_size})
    names = [name for name, _ in PARTICIPANT_FRAME_FIELDS]
    formats = [fmt for _, fmt in PARTICIPANT_FRAME_FIELDS]
    offsets = [0, 4, 6, 8, 10, 11]
    participant = np.dtype(
        {"names": names, "formats": formats, "offsets": offsets, "itemsize": participant_frame_size}
    )
    return np.dtype(
        {
            "names": ["time", "participants"],
            "formats": ["<f4", (participant, (participant_count,))],
            "offsets": [0, 4],
            "itemsize": frame_size,
        }
    )


def _read_frames(reader: _ByteReader, participant_count: int, participant_frame_size: int) -> Tuple[Frame, ...]:
    frame_count = reader.count("frame count")
    frame_size = reader.count("frame size")
    minimum = 4 + participant_count * participant_frame_size
    if frame_count and frame_size < minimum:
        raise DecodeError(f"Frame size {frame_size} cannot hold {participant_count} participants")

    raw = reader.take(frame_count * frame_size, "frames")
    if frame_count == 0:
        return tuple()

    table = np.frombuffer(raw, dtype=_frame_dtype(participant_count, participant_frame_size, frame_size), count=frame_count)
    times = table["time"].astype(np.float64)
    if np.any(np.diff(times) < 0):
        raise DecodeError("Frame times go backwards")

    frames: List[Frame] = []
    for row_index in range(frame_count):
        participants: Tuple[ParticipantFrame, ...] = tuple()
        if participant_count:
            row = table["participants"][row_index]
            participants = tuple(
                ParticipantFrame(
                    distance=float(row["distance"][slot]),
                    lane_position=int(row["lane_position"][slot]),
                    speed=int(row["speed"][slot]),
                    hp=int(row["hp"][slot]),
                    temptation_mode=int(row["temptation_mode"][slot]),
                    blocked_by_index=_optional_index(int(row["blocked_by_index"][slot])),
                )
                for slot in range(participant_count)
            )
        frames.append(Frame(time=float(times[row_index]), participants=participants))
    return tuple(frames)


def _optional_index(value: int) -> Optional[int]:
    return value if value >= 0 else None


def _read_results(reader: _ByteReader, participant_count: int, result_size: int) -> Tuple[ParticipantResult, ...]:
    results: List[ParticipantResult] = []
    for slot in range(participant_count):
        record = reader.take(result_size, f"result {slot}")
        (
            finish_order,
            finish_time,
            finish_diff_time,
            start_delay_time,
            guts_order,
            wiz_order,
            last_spurt_start_distance,
            running_style,
            defeat,
            finish_time_raw,
        ) = RESULT_STRUCT.unpack_from(record)
        try:
            RunningStyle.from_legacy(running_style)
        except ValueError as exc:
            raise DecodeError(f"Result {slot} has unknown running style {running_style}") from exc
        results.append(
            ParticipantResult(
                finish_order=finish_order,
                finish_time=finish_time,
                finish_diff_time=finish_diff_time,
                start_delay_time=start_delay_time,
                guts_order=guts_order,
                wiz_order=wiz_order,
                last_spurt_start_distance=last_spurt_start_distance,
                running_style=running_style,
                defeat=defeat,
                finish_time_raw=finish_time_raw,
            )
        )

    winners = sum(1 for result in results if result.finish_order == 0)
    if winners > 1:
        raise DecodeError(f"Race log lists {winners} winners")
    return tuple(results)


def _read_events(reader: _ByteReader) -> Tuple[EventRecord, ...]:
    event_count = reader.count("event count")
    events: List[EventRecord] = []
    for index in range(event_count):
        event_size = reader.int16(f"event {index} size")
        body = reader.take(event_size, f"event {index}")
        if len(body) < EVENT_HEAD_STRUCT.size:
            raise DecodeError(f"Event {index} is shorter than its header")
        frame_time, event_type, param_count = EVENT_HEAD_STRUCT.unpack_from(body)
        if not 0 <= param_count <= MAX_EVENT_PARAMS:
            raise DecodeError(f"Event {index} has invalid parameter count {param_count}")
        if EVENT_HEAD_STRUCT.size + 4 * param_count > event_size:
            raise DecodeError(f"Event {index} parameters overrun its {event_size} byte record")
        params = struct.unpack_from(f"<{param_count}i", body, EVENT_HEAD_STRUCT.size)
        events.append(
            EventRecord(frame_time=frame_time, type=event_type, param_count=param_count, params=tuple(params))
        )
    return tuple(events)
