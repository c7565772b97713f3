from dataclasses import dataclass

from .histograms import AxisSpec, HistogramRegistry
from .kinematics import MASS_ALPHA, MASS_DEUTERON, MASS_HELIUM3, MASS_PROTON, MASS_TRITON
from .settings import NucleiHistConfig

SPECTRA = "spectra"

# Stages of the track selection a histogram is filled from.
STAGE_EVENT = "event"
STAGE_QUALITY = "quality"
STAGE_SELECTED = "selected"
STAGE_CENTRALITY = "centrality"


@dataclass(frozen=True)
class Species:
    registry: str
    anti_registry: str
    label: str
    anti_label: str
    mass: float
    charge: int
    tpc_nsigma: str
    tof_nsigma: str

    @property
    def momentum_scale(self) -> float:
        # Z=2 tracks are reconstructed with rigidity, scale back to momentum.
        return 2.0 if self.charge == 2 else 1.0

    @property
    def pt_column(self) -> str:
        return "pt2" if self.charge == 2 else "pt"

    @property
    def inner_param_column(self) -> str:
        return "innerParam2" if self.charge == 2 else "tpcInnerParam"

    @property
    def signed_inner_param_column(self) -> str:
        return "signedInnerParam2" if self.charge == 2 else "signedInnerParam"


SPECIES = (
    Species("proton", "aproton", "p", "antip", MASS_PROTON, 1, "tpcNSigmaPr", "tofNSigmaPr"),
    Species("deuteron", "adeuteron", "d", "antid", MASS_DEUTERON, 1, "tpcNSigmaDe", "tofNSigmaDe"),
    Species("triton", "atriton", "t", "antit", MASS_TRITON, 1, "tpcNSigmaTr", "tofNSigmaTr"),
    Species("Helium3", "aHelium3", "He-3", "antiHe-3", MASS_HELIUM3, 2, "tpcNSigmaHe", "tofNSigmaHe"),
    Species("Helium4", "aHelium4", "He-4", "antiHe-4", MASS_ALPHA, 2, "tpcNSigmaAl", "tofNSigmaAl"),
)

# Columns derived on top of the track table before any histogram is booked.
DERIVED_COLUMNS = {
    "pt2": "pt * 2.0",
    "innerParam2": "tpcInnerParam * 2.0",
    "signedInnerParam": "tpcInnerParam * sign",
    "signedInnerParam2": "tpcInnerParam * 2.0 * sign",
    "tofMass2": "mass * mass",
}


@dataclass(frozen=True)
class FillSpec:
    registry: str
    hist: str
    stage: str
    selection: str
    columns: tuple[str, ...]


def validate_process_switches(cfg: NucleiHistConfig) -> None:
    if cfg.process_data and cfg.process_data_cent:
        raise ValueError("Can't enable nuclei_hist.process_data and nuclei_hist.process_data_cent at the same time, pick one!")
    if not (cfg.process_data or cfg.process_data_cent):
        raise ValueError("No nuclei_hist process switch enabled: set process_data or process_data_cent.")


def registry_names() -> list[str]:
    names = [SPECTRA]
    for species in SPECIES:
        names.extend([species.registry, species.anti_registry])
    return names


def _species_registry(name: str, label: str, pt_axis: AxisSpec) -> HistogramRegistry:
    centrality_axis = AxisSpec(100, 0.0, 100.0, "VT0C (%)")
    reg = HistogramRegistry(name)
    reg.add("histKeepEventData", f"skimming histogram ({label})", "TH1F", [AxisSpec(2, -0.5, 1.5, "true: keep event, false: reject event")])
    reg.add("histTpcSignalData", f"Specific energy loss ({label})", "TH2F", [AxisSpec(600, 0.0, 6.0, "#it{p} (GeV/#it{c})"), AxisSpec(1400, 0, 1400, "d#it{E} / d#it{X} (a. u.)")])
    reg.add("histTofSignalData", f"TOF signal ({label})", "TH2F", [AxisSpec(600, 0.0, 6.0, "#it{p} (GeV/#it{c})"), AxisSpec(550, 0.0, 1.1, "#beta (TOF)")])
    reg.add("histDcaVsPtData", f"dcaXY vs Pt ({label})", "TH2F", [pt_axis, AxisSpec(250, -0.5, 0.5, "dca")])
    reg.add("histDcaZVsPtData", f"dcaZ vs Pt ({label})", "TH2F", [pt_axis, AxisSpec(1000, -2.0, 2.0, "dca")])
    reg.add("histTOFm2", f"TOF m^2 vs Pt ({label})", "TH2F", [pt_axis, AxisSpec(400, 0.0, 10.0, "m^2")])
    reg.add("histTpcNsigmaData", f"n-sigma TPC ({label})", "TH2F", [pt_axis, AxisSpec(160, -20.0, 20.0, f"n#sigma_{{{label}}}")])
    reg.add("histTofNsigmaData", f"n-sigma TOF ({label})", "TH2F", [pt_axis, AxisSpec(160, -20.0, 20.0, f"n#sigma_{{{label}}}")])
    reg.add("histNClusterTPC", f"Number of Clusters in TPC vs Pt ({label})", "TH2F", [pt_axis, AxisSpec(160, 0.0, 160.0, "nCluster")])
    reg.add("histNClusterITS", f"Number of Clusters in ITS vs Pt ({label})", "TH2F", [pt_axis, AxisSpec(10, 0.0, 10.0, "nCluster")])
    reg.add("histChi2TPC", f"chi^2 TPC vs Pt ({label})", "TH2F", [pt_axis, AxisSpec(100, 0.0, 5.0, "chi^2")])
    reg.add("histChi2ITS", f"chi^2 ITS vs Pt ({label})", "TH2F", [pt_axis, AxisSpec(500, 0.0, 50.0, "chi^2")])
    reg.add("histTpcNsigmaData_cent", f"n-sigma TPC ({label}) centrality", "TH3F", [pt_axis, AxisSpec(160, -20.0, 20.0, f"n#sigma_{{{label}}}"), centrality_axis])
    reg.add("histTofNsigmaData_cent", f"n-sigma TOF ({label}) centrality", "TH3F", [pt_axis, AxisSpec(160, -20.0, 20.0, f"n#sigma_{{{label}}}"), centrality_axis])
    reg.add("histTofm2_cent", f"mass^2 TOF ({label}) centrality", "TH3F", [pt_axis, AxisSpec(400, 0.0, 10.0, f"m^2_{{{label}}}"), centrality_axis])
    return reg


def build_registries(pt_binning: list[float]) -> dict[str, HistogramRegistry]:
    pt_axis = AxisSpec.from_edges(pt_binning, "#it{p}_{T} (GeV/#it{c})")

    spectra = HistogramRegistry(SPECTRA)
    spectra.add("histRecVtxZData", "collision z position", "TH1F", [AxisSpec(200, -20.0, 20.0, "z position (cm)")])
    spectra.add("histTpcSignalData", "Specific energy loss", "TH2F", [AxisSpec(600, -6.0, 6.0, "#it{p} (GeV/#it{c})"), AxisSpec(1400, 0, 1400, "d#it{E} / d#it{X} (a. u.)")])
    spectra.add("histTofSignalData", "TOF signal", "TH2F", [AxisSpec(600, -6.0, 6.0, "#it{p} (GeV/#it{c})"), AxisSpec(550, 0.0, 1.1, "#beta (TOF)")])
    spectra.add("histDcaVsPtData_particle", "dcaXY vs Pt (particle)", "TH2F", [pt_axis, AxisSpec(250, -0.5, 0.5, "dca")])
    spectra.add("histDcaZVsPtData_particle", "dcaZ vs Pt (particle)", "TH2F", [pt_axis, AxisSpec(1000, -2.0, 2.0, "dca")])
    spectra.add("histDcaVsPtData_antiparticle", "dcaXY vs Pt (antiparticle)", "TH2F", [pt_axis, AxisSpec(250, -0.5, 0.5, "dca")])
    spectra.add("histDcaZVsPtData_antiparticle", "dcaZ vs Pt (antiparticle)", "TH2F", [pt_axis, AxisSpec(1000, -2.0, 2.0, "dca")])
    spectra.add("histTOFm2", "TOF m^2 vs Pt", "TH2F", [pt_axis, AxisSpec(400, 0.0, 10.0, "m^2")])
    spectra.add("histNClusterTPC", "Number of Clusters in TPC vs Pt", "TH2F", [pt_axis, AxisSpec(160, 0.0, 160.0, "nCluster")])
    spectra.add("histNClusterITS", "Number of Clusters in ITS vs Pt", "TH2F", [pt_axis, AxisSpec(10, 0.0, 10.0, "nCluster")])
    spectra.add("histChi2TPC", "chi^2 TPC vs Pt", "TH2F", [pt_axis, AxisSpec(100, 0.0, 5.0, "chi^2")])
    spectra.add("histChi2ITS", "chi^2 ITS vs Pt", "TH2F", [pt_axis, AxisSpec(500, 0.0, 50.0, "chi^2")])

    registries = {SPECTRA: spectra}
    for species in SPECIES:
        registries[species.registry] = _species_registry(species.registry, species.label, pt_axis)
        registries[species.anti_registry] = _species_registry(species.anti_registry, species.anti_label, pt_axis)
    return registries


def quality_expression(cfg: NucleiHistConfig) -> str:
    """Track quality selection shared by the data and the centrality paths."""
    return " && ".join(
        [
            f"tpcNClsFound >= {cfg.min_tpc_ncls_found!r}",
            f"tpcNClsCrossedRows >= {cfg.min_ncrossed_rows_tpc!r}",
            f"tpcCrossedRowsOverFindableCls >= {cfg.min_ratio_crossed_rows_tpc!r}",
            f"tpcCrossedRowsOverFindableCls <= {cfg.max_ratio_crossed_rows_tpc!r}",
            f"tpcChi2NCl <= {cfg.max_chi2_tpc!r}",
            f"itsChi2NCl <= {cfg.max_chi2_its!r}",
            "passedTPCRefit",
            "passedITSRefit",
            f"itsNCls >= {cfg.min_req_cluster_its!r}",
            "isPVContributor",
        ]
    )


def track_preselection(cfg: NucleiHistConfig) -> str:
    return f"std::abs(eta) < {cfg.cut_eta!r}"


def event_selection(cfg: NucleiHistConfig) -> str:
    return f"std::abs(posZ) < {cfg.cut_vertex!r}"


def dca_expression(cfg: NucleiHistConfig) -> str:
    return f"std::abs(dcaXY) <= {cfg.max_dca_xy!r} && std::abs(dcaZ) <= {cfg.max_dca_z!r}"


def rapidity_expression(cfg: NucleiHistConfig) -> str:
    parts = []
    for species in SPECIES:
        pt = f"pt * {species.momentum_scale!r}" if species.charge == 2 else "pt"
        y = f"o2tasks_rapidity({pt}, eta, {species.mass!r})"
        parts.append(f"{y} >= {cfg.y_min!r} && {y} <= {cfg.y_max!r}")
    return " && ".join(f"({p})" for p in parts)


def nsigma_window(column: str, cfg: NucleiHistConfig) -> str:
    return f"{column} > {cfg.nsigma_cut_low!r} && {column} < {cfg.nsigma_cut_high!r}"


def keep_event_selections(cfg: NucleiHistConfig) -> dict[str, str]:
    """Per registry, the selected-track condition that flags the event as kept."""
    out: dict[str, str] = {}
    for species in SPECIES:
        window = nsigma_window(species.tpc_nsigma, cfg)
        out[species.registry] = f"sign > 0 && {window}"
        out[species.anti_registry] = f"sign < 0 && {window}"
    return out


def _species_fills(species: Species, registry: str, sign_sel: str, cfg: NucleiHistConfig) -> list[FillSpec]:
    pt = species.pt_column
    inner = species.inner_param_column
    window = f"{sign_sel} && {nsigma_window(species.tpc_nsigma, cfg)}"
    with_tof = f"{window} && hasTOF"
    return [
        FillSpec(registry, "histTpcNsigmaData", STAGE_SELECTED, sign_sel, (pt, species.tpc_nsigma)),
        FillSpec(registry, "histDcaVsPtData", STAGE_SELECTED, window, (pt, "dcaXY")),
        FillSpec(registry, "histDcaZVsPtData", STAGE_SELECTED, window, (pt, "dcaZ")),
        FillSpec(registry, "histTpcSignalData", STAGE_SELECTED, window, (inner, "tpcSignal")),
        FillSpec(registry, "histNClusterTPC", STAGE_SELECTED, window, (pt, "tpcNClsFound")),
        FillSpec(registry, "histNClusterITS", STAGE_SELECTED, window, (pt, "itsNCls")),
        FillSpec(registry, "histChi2TPC", STAGE_SELECTED, window, (pt, "tpcChi2NCl")),
        FillSpec(registry, "histChi2ITS", STAGE_SELECTED, window, (pt, "itsChi2NCl")),
        FillSpec(registry, "histTOFm2", STAGE_SELECTED, with_tof, (inner, "tofMass2")),
        FillSpec(registry, "histTofSignalData", STAGE_SELECTED, with_tof, (inner, "beta")),
        FillSpec(registry, "histTofNsigmaData", STAGE_SELECTED, with_tof, (pt, species.tof_nsigma)),
    ]


def _centrality_fills(species: Species, registry: str, sign_sel: str) -> list[FillSpec]:
    pt = species.pt_column
    return [
        FillSpec(registry, "histTpcNsigmaData_cent", STAGE_CENTRALITY, sign_sel, (pt, species.tpc_nsigma, "centFT0C")),
        FillSpec(registry, "histTofNsigmaData_cent", STAGE_CENTRALITY, sign_sel, (pt, species.tof_nsigma, "centFT0C")),
        FillSpec(
            registry,
            "histTofm2_cent",
            STAGE_CENTRALITY,
            f"{sign_sel} && hasTOF",
            (species.inner_param_column, "tofMass2", "centFT0C"),
        ),
    ]


def fill_plan(cfg: NucleiHistConfig, with_centrality: bool = False) -> list[FillSpec]:
    plan = [
        FillSpec(SPECTRA, "histRecVtxZData", STAGE_EVENT, "true", ("posZ",)),
        FillSpec(SPECTRA, "histDcaVsPtData_particle", STAGE_QUALITY, "sign > 0", ("pt", "dcaXY")),
        FillSpec(SPECTRA, "histDcaZVsPtData_particle", STAGE_QUALITY, "sign > 0", ("pt", "dcaZ")),
        FillSpec(SPECTRA, "histDcaVsPtData_antiparticle", STAGE_QUALITY, "sign < 0", ("pt", "dcaXY")),
        FillSpec(SPECTRA, "histDcaZVsPtData_antiparticle", STAGE_QUALITY, "sign < 0", ("pt", "dcaZ")),
        FillSpec(SPECTRA, "histTpcSignalData", STAGE_SELECTED, "true", ("signedInnerParam", "tpcSignal")),
        FillSpec(SPECTRA, "histNClusterTPC", STAGE_SELECTED, "true", ("pt", "tpcNClsCrossedRows")),
        FillSpec(SPECTRA, "histNClusterITS", STAGE_SELECTED, "true", ("pt", "itsNCls")),
        FillSpec(SPECTRA, "histChi2TPC", STAGE_SELECTED, "true", ("pt", "tpcChi2NCl")),
        FillSpec(SPECTRA, "histChi2ITS", STAGE_SELECTED, "true", ("pt", "itsChi2NCl")),
        FillSpec(SPECTRA, "histTOFm2", STAGE_SELECTED, "sign != 0 && hasTOF", ("tpcInnerParam", "tofMass2")),
    ]
    for species in SPECIES:
        # The global TOF plot gets one entry per species hypothesis the track satisfies.
        plan.append(
            FillSpec(
                SPECTRA,
                "histTofSignalData",
                STAGE_SELECTED,
                f"hasTOF && {nsigma_window(species.tpc_nsigma, cfg)}",
                (species.signed_inner_param_column, "beta"),
            )
        )
    for species in SPECIES:
        plan.extend(_species_fills(species, species.registry, "sign > 0", cfg))
        plan.extend(_species_fills(species, species.anti_registry, "sign < 0", cfg))
    if with_centrality:
        for species in SPECIES:
            plan.extend(_centrality_fills(species, species.registry, "sign > 0"))
            plan.extend(_centrality_fills(species, species.anti_registry, "sign < 0"))
    return plan
