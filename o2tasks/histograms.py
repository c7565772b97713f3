from dataclasses import dataclass
from typing import Iterator, Sequence

HIST_KINDS = {"TH1F": 1, "TH1D": 1, "TH2F": 2, "TH2D": 2, "TH3F": 3, "TH3D": 3, "THnSparseF": None}


@dataclass(frozen=True)
class AxisSpec:
    """Fixed-width (nbins, lo, hi) or variable-width (edges) histogram axis."""

    nbins: int = 0
    lo: float = 0.0
    hi: float = 0.0
    title: str = ""
    edges: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        if self.edges:
            if len(self.edges) < 2 or any(b <= a for a, b in zip(self.edges, self.edges[1:])):
                raise ValueError(f"Axis '{self.title}' edges must contain at least 2 increasing values.")
            object.__setattr__(self, "nbins", len(self.edges) - 1)
            object.__setattr__(self, "lo", float(self.edges[0]))
            object.__setattr__(self, "hi", float(self.edges[-1]))
        elif self.nbins <= 0 or self.hi <= self.lo:
            raise ValueError(f"Axis '{self.title}' must have nbins > 0 and hi > lo.")

    @classmethod
    def from_edges(cls, edges: Sequence[float], title: str = "") -> "AxisSpec":
        return cls(title=title, edges=tuple(float(e) for e in edges))

    @property
    def variable(self) -> bool:
        return bool(self.edges)


@dataclass(frozen=True)
class HistSpec:
    name: str
    title: str
    kind: str
    axes: tuple[AxisSpec, ...]

    @property
    def directory(self) -> str:
        return self.name.rpartition("/")[0]

    @property
    def basename(self) -> str:
        return self.name.rpartition("/")[2]

    @property
    def ndim(self) -> int:
        return len(self.axes)

    def full_title(self) -> str:
        """ROOT title string with the axis titles appended (`title;x;y`)."""
        return ";".join([self.title] + [axis.title for axis in self.axes])


class HistogramRegistry:
    """Ordered collection of histogram declarations written to one output directory."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._specs: dict[str, HistSpec] = {}

    def add(self, path: str, title: str, kind: str, axes: Sequence[AxisSpec]) -> HistSpec:
        if kind not in HIST_KINDS:
            raise ValueError(f"Unsupported histogram kind '{kind}' for '{self.name}/{path}'.")
        if path.count("/") > 1 or not path.rpartition("/")[2]:
            raise ValueError(f"Invalid histogram path '{path}' in registry '{self.name}'.")
        if path in self._specs:
            raise ValueError(f"Histogram '{path}' already booked in registry '{self.name}'.")
        expected = HIST_KINDS[kind]
        if expected is not None and expected != len(axes):
            raise ValueError(f"{kind} '{path}' needs {expected} axes, got {len(axes)}.")
        spec = HistSpec(path, title, kind, tuple(axes))
        self._specs[path] = spec
        return spec

    def get(self, path: str) -> HistSpec:
        try:
            return self._specs[path]
        except KeyError:
            raise KeyError(f"Histogram '{path}' not booked in registry '{self.name}'.") from None

    def names(self) -> list[str]:
        return list(self._specs)

    def __contains__(self, path: object) -> bool:
        return path in self._specs

    def __iter__(self) -> Iterator[HistSpec]:
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)
