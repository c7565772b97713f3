from bisect import bisect_right
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Sequence

BCS_PER_ORBIT = 3564


@dataclass(frozen=True, order=True)
class InteractionRecord:
    orbit: int
    bc: int

    @classmethod
    def from_long(cls, global_bc: int) -> "InteractionRecord":
        global_bc = int(global_bc)
        return cls(orbit=global_bc // BCS_PER_ORBIT, bc=global_bc % BCS_PER_ORBIT)

    def to_long(self) -> int:
        return self.orbit * BCS_PER_ORBIT + self.bc


@dataclass(frozen=True)
class IRFrame:
    """Closed interval [start, end] of interaction records."""

    start: InteractionRecord
    end: InteractionRecord

    @classmethod
    def from_longs(cls, bc_start: int, bc_end: int) -> "IRFrame":
        return cls(InteractionRecord.from_long(bc_start), InteractionRecord.from_long(bc_end))

    def is_outside(self, ir: InteractionRecord) -> int:
        if ir < self.start:
            return -1
        if ir > self.end:
            return 1
        return 0


def find_uncovered(frames: Iterable[IRFrame], points: Sequence[InteractionRecord]) -> list[bool]:
    """For each point, True if no frame contains it. Result follows the order of `points`."""
    spans = sorted((f.start.to_long(), f.end.to_long()) for f in frames)
    starts = [s for s, _ in spans]
    reach: list[int] = []
    best = -1
    for _, end in spans:
        best = max(best, end)
        reach.append(best)

    out = []
    for point in points:
        value = point.to_long()
        idx = bisect_right(starts, value) - 1
        out.append(idx < 0 or reach[idx] < value)
    return out


@dataclass(frozen=True)
class BCRangeSummary:
    directory: str
    n_selected: int
    n_not_found: int

    @property
    def n_found(self) -> int:
        return self.n_selected - self.n_not_found

    def message(self) -> str:
        return f"Found {self.n_not_found} BCs not in ranges out of {self.n_selected}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def summarize(directory: str, frames: Iterable[IRFrame], points: Sequence[InteractionRecord]) -> BCRangeSummary:
    missing = find_uncovered(frames, points)
    return BCRangeSummary(directory=directory, n_selected=len(points), n_not_found=sum(missing))


def selected_records(global_bc_ids: Iterable[int], cefp_selected: Iterable[int]) -> list[InteractionRecord]:
    """Interaction records of the decisions with a non-zero selection mask."""
    return [
        InteractionRecord.from_long(bc_id)
        for bc_id, mask in zip(global_bc_ids, cefp_selected)
        if int(mask) != 0
    ]
