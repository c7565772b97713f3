from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Any, Callable, Mapping

LOGGER = logging.getLogger("o2tasks.cuts")

LEG_PREFIXES = ("pos", "ele")


def _fmt(value: float) -> str:
    return repr(float(value))


@dataclass(frozen=True)
class PowerLawWindow:
    """offset + (pt + shift)^power, used for pT-dependent matching windows."""

    offset: float
    shift: float
    power: float

    def __call__(self, pt: float) -> float:
        return self.offset + (pt + self.shift) ** self.power

    def expression(self, var: str) -> str:
        return f"({_fmt(self.offset)} + std::pow({var} + {_fmt(self.shift)}, {_fmt(self.power)}))"


@dataclass(frozen=True)
class ConstantWindow:
    value: float

    def __call__(self, pt: float) -> float:
        return self.value

    def expression(self, var: str) -> str:
        return _fmt(self.value)


@dataclass(frozen=True)
class StepFunction:
    """below if x < threshold else above."""

    threshold: float
    below: float
    above: float

    def __call__(self, x: float) -> float:
        return self.below if x < self.threshold else self.above

    def expression(self, var: str) -> str:
        return f"({var} < {_fmt(self.threshold)} ? {_fmt(self.below)} : {_fmt(self.above)})"


def _render(func: Callable[[float], float], var: str) -> str:
    render = getattr(func, "expression", None)
    if render is None:
        raise ValueError(f"Cut function {func!r} cannot be rendered as a dataframe expression.")
    return render(var)


class EMCPhotonCuts(Enum):
    ENERGY = "kEnergy"
    NCELL = "kNCell"
    M02 = "kM02"
    TIMING = "kTiming"
    TM = "kTM"
    EXOTIC = "kExotic"


@dataclass
class EMCPhotonCut:
    name: str
    min_e: float = 0.7
    min_ncell: int = 1
    min_m02: float = 0.1
    max_m02: float = 0.7
    min_time: float = -20.0
    max_time: float = 25.0
    min_e_over_p: float = 1.75
    use_exotic_cut: bool = True
    track_matching_eta: Callable[[float], float] = field(default_factory=lambda: ConstantWindow(-1.0))
    track_matching_phi: Callable[[float], float] = field(default_factory=lambda: ConstantWindow(-1.0))

    def set_m02_range(self, min_m02: float, max_m02: float) -> None:
        self.min_m02, self.max_m02 = float(min_m02), float(max_m02)

    def set_time_range(self, min_time: float, max_time: float) -> None:
        self.min_time, self.max_time = float(min_time), float(max_time)

    def is_selected_cut(
        self, cluster: Mapping[str, Any], cut: EMCPhotonCuts, track: Mapping[str, Any] | None = None
    ) -> bool:
        if cut is EMCPhotonCuts.ENERGY:
            return cluster["e"] > self.min_e
        if cut is EMCPhotonCuts.NCELL:
            return cluster["nCells"] >= self.min_ncell
        if cut is EMCPhotonCuts.M02:
            return self.min_m02 <= cluster["m02"] <= self.max_m02
        if cut is EMCPhotonCuts.TIMING:
            return self.min_time <= cluster["time"] <= self.max_time
        if cut is EMCPhotonCuts.TM:
            if track is None:
                return True
            d_eta = abs(track["trackEta"] - cluster["eta"])
            d_phi = abs(track["trackPhi"] - cluster["phi"])
            return (
                d_eta > self.track_matching_eta(track["trackPt"])
                or d_phi > self.track_matching_phi(track["trackPt"])
                or cluster["e"] / track["trackP"] >= self.min_e_over_p
            )
        if cut is EMCPhotonCuts.EXOTIC:
            return bool(cluster["isExotic"]) if self.use_exotic_cut else True
        raise ValueError(f"Unknown EMCal photon cut: {cut}")

    def failed_cut(self, cluster: Mapping[str, Any], track: Mapping[str, Any] | None = None) -> EMCPhotonCuts | None:
        for cut in EMCPhotonCuts:
            if not self.is_selected_cut(cluster, cut, track):
                return cut
        return None

    def is_selected(self, cluster: Mapping[str, Any], track: Mapping[str, Any] | None = None) -> bool:
        return self.failed_cut(cluster, track) is None

    def expression(self, cut: EMCPhotonCuts | None = None) -> str:
        if cut is None:
            return " && ".join(f"({self.expression(c)})" for c in EMCPhotonCuts)
        if cut is EMCPhotonCuts.ENERGY:
            return f"e > {_fmt(self.min_e)}"
        if cut is EMCPhotonCuts.NCELL:
            return f"nCells >= {int(self.min_ncell)}"
        if cut is EMCPhotonCuts.M02:
            return f"m02 >= {_fmt(self.min_m02)} && m02 <= {_fmt(self.max_m02)}"
        if cut is EMCPhotonCuts.TIMING:
            return f"time >= {_fmt(self.min_time)} && time <= {_fmt(self.max_time)}"
        if cut is EMCPhotonCuts.TM:
            eta_window = _render(self.track_matching_eta, "trackPt")
            phi_window = _render(self.track_matching_phi, "trackPt")
            return (
                f"!hasTrack || std::abs(trackEta - eta) > {eta_window}"
                f" || std::abs(trackPhi - phi) > {phi_window}"
                f" || e / trackP >= {_fmt(self.min_e_over_p)}"
            )
        if cut is EMCPhotonCuts.EXOTIC:
            return "isExotic" if self.use_exotic_cut else "true"
        raise ValueError(f"Unknown EMCal photon cut: {cut}")

    def describe(self) -> str:
        return "\n".join(
            [
                f"EMCal photon cut '{self.name}':",
                f"  E > {self.min_e} GeV",
                f"  nCells >= {self.min_ncell}",
                f"  {self.min_m02} <= M02 <= {self.max_m02}",
                f"  {self.min_time} <= time <= {self.max_time} ns",
                f"  track matching: eta window {self.track_matching_eta}, phi window {self.track_matching_phi}, E/p >= {self.min_e_over_p}",
                f"  exotic cut: {'on' if self.use_exotic_cut else 'off'}",
            ]
        )

    def print(self) -> None:
        LOGGER.info("%s", self.describe())


class V0PhotonCuts(Enum):
    V0_PT_RANGE = "kV0PtRange"
    V0_ETA_RANGE = "kV0EtaRange"
    MEE = "kMee"
    RXY = "kRxy"
    TPC_NCLS = "kTPCNCls"
    TPC_CROSSED_ROWS = "kTPCCrossedRows"
    TPC_CROSSED_ROWS_OVER_NCLS = "kTPCCrossedRowsOverNCls"
    TPC_CHI2_NDF = "kTPCChi2NDF"
    TPC_NSIGMA_EL = "kTPCNsigmaEl"


LEG_CUTS = (
    V0PhotonCuts.TPC_NCLS,
    V0PhotonCuts.TPC_CROSSED_ROWS,
    V0PhotonCuts.TPC_CROSSED_ROWS_OVER_NCLS,
    V0PhotonCuts.TPC_CHI2_NDF,
    V0PhotonCuts.TPC_NSIGMA_EL,
)


@dataclass
class V0PhotonCut:
    name: str
    min_pt: float = 0.0
    max_pt: float = 1e10
    min_eta: float = -1e10
    max_eta: float = 1e10
    min_rxy: float = 0.0
    max_rxy: float = 1e10
    min_ncls_tpc: int = 0
    min_ncrossed_rows_tpc: int = 0
    min_ncrossed_rows_over_findable_clusters_tpc: float = 0.0
    max_chi2_per_cluster_tpc: float = 1e10
    min_tpc_nsigma_el: float = -1e10
    max_tpc_nsigma_el: float = 1e10
    max_mee_psi_pair_dep: Callable[[float], float] | None = None

    def set_pt_range(self, min_pt: float, max_pt: float) -> None:
        self.min_pt, self.max_pt = float(min_pt), float(max_pt)

    def set_eta_range(self, min_eta: float, max_eta: float) -> None:
        self.min_eta, self.max_eta = float(min_eta), float(max_eta)

    def set_rxy_range(self, min_rxy: float, max_rxy: float) -> None:
        self.min_rxy, self.max_rxy = float(min_rxy), float(max_rxy)

    def set_tpc_nsigma_el_range(self, min_nsigma: float, max_nsigma: float) -> None:
        self.min_tpc_nsigma_el, self.max_tpc_nsigma_el = float(min_nsigma), float(max_nsigma)

    def is_selected_leg(self, leg: Mapping[str, Any], cut: V0PhotonCuts) -> bool:
        if cut is V0PhotonCuts.TPC_NCLS:
            return leg["tpcNClsFound"] >= self.min_ncls_tpc
        if cut is V0PhotonCuts.TPC_CROSSED_ROWS:
            return leg["tpcNClsCrossedRows"] >= self.min_ncrossed_rows_tpc
        if cut is V0PhotonCuts.TPC_CROSSED_ROWS_OVER_NCLS:
            return leg["tpcCrossedRowsOverFindableCls"] >= self.min_ncrossed_rows_over_findable_clusters_tpc
        if cut is V0PhotonCuts.TPC_CHI2_NDF:
            return leg["tpcChi2NCl"] <= self.max_chi2_per_cluster_tpc
        if cut is V0PhotonCuts.TPC_NSIGMA_EL:
            return self.min_tpc_nsigma_el <= leg["tpcNSigmaEl"] <= self.max_tpc_nsigma_el
        raise ValueError(f"{cut} is not a leg cut")

    def is_selected_cut(self, v0: Mapping[str, Any], cut: V0PhotonCuts, legs: tuple[Mapping[str, Any], ...] = ()) -> bool:
        if cut in LEG_CUTS:
            return all(self.is_selected_leg(leg, cut) for leg in legs)
        if cut is V0PhotonCuts.V0_PT_RANGE:
            return self.min_pt <= v0["pt"] <= self.max_pt
        if cut is V0PhotonCuts.V0_ETA_RANGE:
            return self.min_eta <= v0["eta"] <= self.max_eta
        if cut is V0PhotonCuts.RXY:
            return self.min_rxy <= v0["rxy"] <= self.max_rxy
        if cut is V0PhotonCuts.MEE:
            if self.max_mee_psi_pair_dep is None:
                return True
            return v0["mee"] <= self.max_mee_psi_pair_dep(v0["psipair"])
        raise ValueError(f"Unknown V0 photon cut: {cut}")

    def failed_cut(self, v0: Mapping[str, Any], legs: tuple[Mapping[str, Any], ...] = ()) -> V0PhotonCuts | None:
        for cut in V0PhotonCuts:
            if not self.is_selected_cut(v0, cut, legs):
                return cut
        return None

    def is_selected(self, v0: Mapping[str, Any], legs: tuple[Mapping[str, Any], ...] = ()) -> bool:
        return self.failed_cut(v0, legs) is None

    def _leg_expression(self, prefix: str, cut: V0PhotonCuts) -> str:
        if cut is V0PhotonCuts.TPC_NCLS:
            return f"{prefix}_tpcNClsFound >= {int(self.min_ncls_tpc)}"
        if cut is V0PhotonCuts.TPC_CROSSED_ROWS:
            return f"{prefix}_tpcNClsCrossedRows >= {int(self.min_ncrossed_rows_tpc)}"
        if cut is V0PhotonCuts.TPC_CROSSED_ROWS_OVER_NCLS:
            return f"{prefix}_tpcCrossedRowsOverFindableCls >= {_fmt(self.min_ncrossed_rows_over_findable_clusters_tpc)}"
        if cut is V0PhotonCuts.TPC_CHI2_NDF:
            return f"{prefix}_tpcChi2NCl <= {_fmt(self.max_chi2_per_cluster_tpc)}"
        if cut is V0PhotonCuts.TPC_NSIGMA_EL:
            return (
                f"{prefix}_tpcNSigmaEl >= {_fmt(self.min_tpc_nsigma_el)}"
                f" && {prefix}_tpcNSigmaEl <= {_fmt(self.max_tpc_nsigma_el)}"
            )
        raise ValueError(f"{cut} is not a leg cut")

    def expression(self, cut: V0PhotonCuts | None = None) -> str:
        if cut is None:
            return " && ".join(f"({self.expression(c)})" for c in V0PhotonCuts)
        if cut in LEG_CUTS:
            return " && ".join(f"({self._leg_expression(prefix, cut)})" for prefix in LEG_PREFIXES)
        if cut is V0PhotonCuts.V0_PT_RANGE:
            return f"pt >= {_fmt(self.min_pt)} && pt <= {_fmt(self.max_pt)}"
        if cut is V0PhotonCuts.V0_ETA_RANGE:
            return f"eta >= {_fmt(self.min_eta)} && eta <= {_fmt(self.max_eta)}"
        if cut is V0PhotonCuts.RXY:
            return f"rxy >= {_fmt(self.min_rxy)} && rxy <= {_fmt(self.max_rxy)}"
        if cut is V0PhotonCuts.MEE:
            if self.max_mee_psi_pair_dep is None:
                return "true"
            return f"mee <= {_render(self.max_mee_psi_pair_dep, 'psipair')}"
        raise ValueError(f"Unknown V0 photon cut: {cut}")

    def describe(self) -> str:
        return "\n".join(
            [
                f"V0 photon cut '{self.name}':",
                f"  {self.min_pt} <= pT <= {self.max_pt} GeV/c",
                f"  {self.min_eta} <= eta <= {self.max_eta}",
                f"  {self.min_rxy} <= Rxy <= {self.max_rxy} cm",
                f"  mee max vs psi pair: {self.max_mee_psi_pair_dep}",
                f"  legs: TPC ncls >= {self.min_ncls_tpc}, crossed rows >= {self.min_ncrossed_rows_tpc}, "
                f"crossed/findable >= {self.min_ncrossed_rows_over_findable_clusters_tpc}, "
                f"chi2/cl <= {self.max_chi2_per_cluster_tpc}, "
                f"{self.min_tpc_nsigma_el} <= n#sigma_e <= {self.max_tpc_nsigma_el}",
            ]
        )

    def print(self) -> None:
        LOGGER.info("%s", self.describe())
