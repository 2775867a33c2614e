from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .data_models import Frame, ParticipantFrame, RaceLog
from .errors import OutOfRangeError

MIN_INTERVAL = 1e-9


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def _lerp(a: float, b: float, t: float) -> float:
    if t == 0.0:
        return a
    return a + (b - a) * t


@dataclass(frozen=True)
class InterpolatedParticipant:
    distance: float
    lane_position: float
    speed: float
    hp: float
    temptation_mode: int
    blocked_by_index: Optional[int]


@dataclass(frozen=True)
class InterpolatedFrame:
    time: float
    frame_index: int
    participants: Tuple[InterpolatedParticipant, ...] = field(default_factory=tuple)


class FrameIndex:
    """Time-indexed access to a race log's frames with linear blending between samples."""

    def __init__(self, log: RaceLog) -> None:
        self.log = log
        self.frames: Sequence[Frame] = log.frames
        self._times: Tuple[float, ...] = tuple(frame.time for frame in log.frames)

    def __len__(self) -> int:
        return len(self.frames)

    @property
    def participant_count(self) -> int:
        if self.frames:
            return len(self.frames[0].participants)
        return self.log.participant_count

    @property
    def start_time(self) -> float:
        return self._times[0] if self._times else 0.0

    @property
    def end_time(self) -> float:
        return self._times[-1] if self._times else 0.0

    def frame_at(self, t: float) -> int:
        """Returns the index of the frame whose [time, next time) interval holds t."""
        if not self._times:
            return 0
        last = len(self._times) - 1
        if t <= self._times[0]:
            return 0
        if t >= self._times[last]:
            return last

        lo = 0
        hi = last
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if self._times[mid] <= t:
                lo = mid
            else:
                hi = mid - 1
        return lo

    def interpolate(self, t: float) -> InterpolatedFrame:
        if not self.frames:
            return InterpolatedFrame(time=0.0, frame_index=0)

        index = self.frame_at(t)
        f0 = self.frames[index]
        f1 = self.frames[index + 1] if index + 1 < len(self.frames) else f0
        t0 = f0.time
        t1 = f1.time
        if f1 is f0:
            a = 0.0
        else:
            a = _clamp01((t - t0) / max(MIN_INTERVAL, t1 - t0))

        count = min(len(f0.participants), len(f1.participants))
        take_later = a >= 0.5
        participants: List[InterpolatedParticipant] = []
        for slot in range(count):
            h0 = f0.participants[slot]
            h1 = f1.participants[slot]
            discrete = h1 if take_later else h0
            participants.append(
                InterpolatedParticipant(
                    distance=_lerp(h0.distance, h1.distance, a),
                    lane_position=_lerp(h0.lane_position, h1.lane_position, a),
                    speed=_lerp(h0.speed, h1.speed, a),
                    hp=_lerp(h0.hp, h1.hp, a),
                    temptation_mode=discrete.temptation_mode,
                    blocked_by_index=discrete.blocked_by_index,
                )
            )
        return InterpolatedFrame(time=_lerp(t0, t1, a), frame_index=index, participants=tuple(participants))

    def current_acceleration(self, frame_index: int) -> Tuple[float, ...]:
        """Forward difference of raw speed per participant between frame_index and the next frame."""
        if not self.frames:
            return tuple()
        if not 0 <= frame_index < len(self.frames):
            raise OutOfRangeError(f"Frame index {frame_index} outside 0..{len(self.frames) - 1}")

        f0 = self.frames[frame_index]
        if frame_index + 1 >= len(self.frames):
            return tuple(0.0 for _ in f0.participants)
        f1 = self.frames[frame_index + 1]
        dt = max(MIN_INTERVAL, f1.time - f0.time)

        values: List[float] = []
        for slot in range(len(f0.participants)):
            if slot >= len(f1.participants):
                values.append(0.0)
                continue
            values.append((f1.participants[slot].speed - f0.participants[slot].speed) / dt)
        return tuple(values)

    # --- Per participant helpers --------------------------------------------

    def _check_participant(self, participant: int) -> None:
        if not 0 <= participant < self.participant_count:
            raise OutOfRangeError(f"Participant index {participant} outside 0..{self.participant_count - 1}")

    def participant_frames(self, participant: int) -> List[ParticipantFrame]:
        self._check_participant(participant)
        return [frame.participants[participant] for frame in self.frames]

    def distance_at(self, participant: int, t: float) -> float:
        self._check_participant(participant)
        snapshot = self.interpolate(t)
        if participant >= len(snapshot.participants):
            return 0.0
        return snapshot.participants[participant].distance

    def speed_at(self, participant: int, t: float) -> float:
        self._check_participant(participant)
        snapshot = self.interpolate(t)
        if participant >= len(snapshot.participants):
            return 0.0
        return snapshot.participants[participant].speed

    def max_distance(self, participant: int) -> float:
        if not self.frames:
            return 0.0
        return max(sample.distance for sample in self.participant_frames(participant))

    def first_frame_reaching(self, participant: int, distance: float) -> Optional[int]:
        """Index of the first frame where the participant has covered at least distance."""
        for index, sample in enumerate(self.participant_frames(participant)):
            if sample.distance >= distance:
                return index
        return None
