from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from .kinematics import hits_in_layers


class TrackCuts(Enum):
    PT_RANGE = "kPtRange"
    ETA_RANGE = "kEtaRange"
    TPC_NCLS = "kTPCNCls"
    TPC_CROSSED_ROWS = "kTPCCrossedRows"
    TPC_CROSSED_ROWS_OVER_NCLS = "kTPCCrossedRowsOverNCls"
    TPC_CHI2_NDF = "kTPCChi2NDF"
    TPC_REFIT = "kTPCRefit"
    ITS_NCLS = "kITSNCls"
    ITS_CHI2_NDF = "kITSChi2NDF"
    ITS_REFIT = "kITSRefit"
    ITS_HITS = "kITSHits"
    DCA_XY = "kDCAxy"
    DCA_Z = "kDCAz"


def _fmt(value: float) -> str:
    return repr(float(value))


def _layer_mask(layers: set[int]) -> int:
    mask = 0
    for layer in layers:
        mask |= 1 << layer
    return mask


@dataclass
class TrackSelection:
    """Per-track quality selection, evaluable on a row mapping or as an RDataFrame filter."""

    min_pt: float = 0.0
    max_pt: float = 1e10
    min_eta: float = -1e10
    max_eta: float = 1e10
    min_nclusters_tpc: int = 0
    min_ncrossed_rows_tpc: int = 0
    min_ncrossed_rows_over_findable_clusters_tpc: float = 0.0
    max_chi2_per_cluster_tpc: float = 1e10
    require_tpc_refit: bool = False
    min_nclusters_its: int = 0
    max_chi2_per_cluster_its: float = 1e10
    require_its_refit: bool = False
    max_dca_xy: float = 1e10
    max_dca_z: float = 1e10
    required_its_hits: list[tuple[int, set[int]]] = field(default_factory=list)

    def set_pt_range(self, min_pt: float, max_pt: float) -> None:
        self.min_pt, self.max_pt = float(min_pt), float(max_pt)

    def set_eta_range(self, min_eta: float, max_eta: float) -> None:
        self.min_eta, self.max_eta = float(min_eta), float(max_eta)

    def require_hits_in_its_layers(self, min_hits: int, layers: set[int]) -> None:
        if min_hits > len(layers):
            raise ValueError(f"Cannot require {min_hits} ITS hits among only {len(layers)} layers.")
        self.required_its_hits.append((int(min_hits), set(layers)))

    def is_selected(self, track: Mapping[str, Any], cut: TrackCuts | None = None) -> bool:
        if cut is None:
            return all(self.is_selected(track, c) for c in TrackCuts)
        if cut is TrackCuts.PT_RANGE:
            return self.min_pt <= track["pt"] <= self.max_pt
        if cut is TrackCuts.ETA_RANGE:
            return self.min_eta <= track["eta"] <= self.max_eta
        if cut is TrackCuts.TPC_NCLS:
            return track["tpcNClsFound"] >= self.min_nclusters_tpc
        if cut is TrackCuts.TPC_CROSSED_ROWS:
            return track["tpcNClsCrossedRows"] >= self.min_ncrossed_rows_tpc
        if cut is TrackCuts.TPC_CROSSED_ROWS_OVER_NCLS:
            return track["tpcCrossedRowsOverFindableCls"] >= self.min_ncrossed_rows_over_findable_clusters_tpc
        if cut is TrackCuts.TPC_CHI2_NDF:
            return track["tpcChi2NCl"] <= self.max_chi2_per_cluster_tpc
        if cut is TrackCuts.TPC_REFIT:
            return bool(track["passedTPCRefit"]) if self.require_tpc_refit else True
        if cut is TrackCuts.ITS_NCLS:
            return track["itsNCls"] >= self.min_nclusters_its
        if cut is TrackCuts.ITS_CHI2_NDF:
            return track["itsChi2NCl"] <= self.max_chi2_per_cluster_its
        if cut is TrackCuts.ITS_REFIT:
            return bool(track["passedITSRefit"]) if self.require_its_refit else True
        if cut is TrackCuts.ITS_HITS:
            cluster_map = int(track["itsClusterMap"])
            return all(hits_in_layers(cluster_map, layers) >= n for n, layers in self.required_its_hits)
        if cut is TrackCuts.DCA_XY:
            return abs(track["dcaXY"]) <= self.max_dca_xy
        if cut is TrackCuts.DCA_Z:
            return abs(track["dcaZ"]) <= self.max_dca_z
        raise ValueError(f"Unknown track cut: {cut}")

    def expression(self, cut: TrackCuts | None = None) -> str:
        if cut is None:
            return " && ".join(f"({self.expression(c)})" for c in TrackCuts)
        if cut is TrackCuts.PT_RANGE:
            return f"pt >= {_fmt(self.min_pt)} && pt <= {_fmt(self.max_pt)}"
        if cut is TrackCuts.ETA_RANGE:
            return f"eta >= {_fmt(self.min_eta)} && eta <= {_fmt(self.max_eta)}"
        if cut is TrackCuts.TPC_NCLS:
            return f"tpcNClsFound >= {int(self.min_nclusters_tpc)}"
        if cut is TrackCuts.TPC_CROSSED_ROWS:
            return f"tpcNClsCrossedRows >= {int(self.min_ncrossed_rows_tpc)}"
        if cut is TrackCuts.TPC_CROSSED_ROWS_OVER_NCLS:
            return f"tpcCrossedRowsOverFindableCls >= {_fmt(self.min_ncrossed_rows_over_findable_clusters_tpc)}"
        if cut is TrackCuts.TPC_CHI2_NDF:
            return f"tpcChi2NCl <= {_fmt(self.max_chi2_per_cluster_tpc)}"
        if cut is TrackCuts.TPC_REFIT:
            return "passedTPCRefit" if self.require_tpc_refit else "true"
        if cut is TrackCuts.ITS_NCLS:
            return f"itsNCls >= {int(self.min_nclusters_its)}"
        if cut is TrackCuts.ITS_CHI2_NDF:
            return f"itsChi2NCl <= {_fmt(self.max_chi2_per_cluster_its)}"
        if cut is TrackCuts.ITS_REFIT:
            return "passedITSRefit" if self.require_its_refit else "true"
        if cut is TrackCuts.ITS_HITS:
            if not self.required_its_hits:
                return "true"
            return " && ".join(
                f"o2tasks_hits_in_layers(itsClusterMap, {_layer_mask(layers)}) >= {n}"
                for n, layers in self.required_its_hits
            )
        if cut is TrackCuts.DCA_XY:
            return f"std::abs(dcaXY) <= {_fmt(self.max_dca_xy)}"
        if cut is TrackCuts.DCA_Z:
            return f"std::abs(dcaZ) <= {_fmt(self.max_dca_z)}"
        raise ValueError(f"Unknown track cut: {cut}")

    def combined_expression(self, cuts: list[TrackCuts]) -> str:
        if not cuts:
            return "true"
        return " && ".join(f"({self.expression(c)})" for c in cuts)
