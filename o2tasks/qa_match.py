from dataclasses import dataclass
import math

from .histograms import AxisSpec, HistogramRegistry
from .kinematics import layers_from_hitmap
from .settings import QAMatchEffConfig
from .track_selection import TrackCuts, TrackSelection

REGISTRY_NAME = "Histos"

# PDG codes stored explicitly in the pdghist_* plots, anything else goes to the underflow.
PDG_CHOICE = (211, 213, 215, 217, 219, 221, 223, 321, 411, 521, 2212, 1114, 2214)
PDG_NOT_LISTED = -10.0

ORIGIN_PRIMARY = 0
ORIGIN_DECAY = 1
ORIGIN_MATERIAL = 2
PROCESS_DECAY = 4

SPECIES_INDEX = {11: 1, 211: 2, 321: 3, 2212: 4}
SPECIES_OTHER = 5

DATA_PROCESSES = ("process_data", "process_data_no_coll", "process_trk_iu_data")
MC_PROCESSES = ("process_mc", "process_mc_no_coll", "process_trk_iu_mc")
IU_PROCESSES = ("process_trk_iu_data", "process_trk_iu_mc")
NO_COLL_PROCESSES = ("process_data_no_coll", "process_mc_no_coll")

KINE_CUTS = [TrackCuts.PT_RANGE, TrackCuts.ETA_RANGE, TrackCuts.DCA_XY]
TPC_CUTS = [TrackCuts.TPC_NCLS, TrackCuts.TPC_CROSSED_ROWS, TrackCuts.TPC_CROSSED_ROWS_OVER_NCLS, TrackCuts.TPC_CHI2_NDF]
ITS_CUTS = [TrackCuts.ITS_CHI2_NDF, TrackCuts.ITS_HITS]


def pdg_class(pdg: int) -> float:
    try:
        return PDG_CHOICE.index(abs(int(pdg))) + 1.5
    except ValueError:
        return PDG_NOT_LISTED


def origin_index(is_physical_primary: bool, process: int) -> int:
    if is_physical_primary:
        return ORIGIN_PRIMARY
    if process == PROCESS_DECAY:
        return ORIGIN_DECAY
    return ORIGIN_MATERIAL


def species_index(pdg: int) -> int:
    return SPECIES_INDEX.get(abs(int(pdg)), SPECIES_OTHER)


def validate_process_switches(cfg: QAMatchEffConfig) -> None:
    enabled = set(cfg.enabled_processes())
    if not cfg.is_mc and enabled.intersection(MC_PROCESSES):
        raise ValueError("Initialization set for data and an MC process function flagged! Fix the configuration.")
    if cfg.is_mc and enabled.intersection(DATA_PROCESSES):
        raise ValueError("Initialization set for MC and a data process function flagged! Fix the configuration.")
    with_coll = enabled - set(NO_COLL_PROCESSES)
    if enabled.intersection(NO_COLL_PROCESSES) and with_coll:
        raise ValueError(
            "Cannot process for both without collision tag and with collision tag at the same time! Fix the configuration."
        )
    if cfg.make_thn and enabled.intersection(IU_PROCESSES):
        raise ValueError("No DCA for IU tracks. Put make_thn = false.")
    if not enabled:
        raise ValueError("No qa_match_eff process switch enabled.")


def build_track_selection(cfg: QAMatchEffConfig) -> TrackSelection:
    sel = TrackSelection()
    sel.set_eta_range(cfg.eta_min_cut, cfg.eta_max_cut)
    sel.set_pt_range(cfg.pt_min_cut, cfg.pt_max_cut)
    sel.max_dca_xy = cfg.dca_xy_max_cut
    sel.min_nclusters_tpc = cfg.tpc_ncluster_min
    sel.min_ncrossed_rows_tpc = cfg.tpc_ncrossed_rows_min
    sel.min_ncrossed_rows_over_findable_clusters_tpc = cfg.tpc_ncrossed_rows_over_findable_clst_min
    sel.max_chi2_per_cluster_tpc = cfg.tpc_chi2_max
    sel.max_chi2_per_cluster_its = cfg.its_chi2_max
    sel.require_hits_in_its_layers(cfg.custom_min_its_hits, layers_from_hitmap(cfg.custom_its_hitmap))
    return sel


def kine_expression(cfg: QAMatchEffConfig, sel: TrackSelection) -> str:
    if not cfg.use_track_selections:
        return "true"
    expr = sel.combined_expression(KINE_CUTS)
    if cfg.use_tpc_inner_wall_pt:
        expr = f"{expr} && (ptInnerWallTPC >= {cfg.pt_min_cut_inner_wall_tpc!r})"
    return expr


def tpc_expression(cfg: QAMatchEffConfig, sel: TrackSelection) -> str:
    return sel.combined_expression(TPC_CUTS) if cfg.use_track_selections else "true"


def its_expression(cfg: QAMatchEffConfig, sel: TrackSelection) -> str:
    return sel.combined_expression(ITS_CUTS) if cfg.use_track_selections else "true"


def trd_expression(is_trd_there: int) -> str:
    if is_trd_there == 1:
        return "hasTRD"
    if is_trd_there == 0:
        return "!hasTRD"
    return "true"


@dataclass(frozen=True)
class Category:
    suffix: str
    label: str
    extra: str
    tpc_selection: str
    tpcits_selection: str


_PRIM = "mcIsPhysicalPrimary"
_SECD = f"!mcIsPhysicalPrimary && mcProcess == {PROCESS_DECAY}"
_SECM = f"!mcIsPhysicalPrimary && mcProcess != {PROCESS_DECAY}"
_PI = "mcAbsPdg == 211"
_NEVER = "false"


def categories(mc: bool) -> list[Category]:
    tag = "MC" if mc else "data"
    out = [
        Category("", tag, "", "true", "true"),
        Category("_pos", f"{tag} q>0", "", "sign > 0", "sign > 0"),
        Category("_neg", f"{tag} q<0", "", "sign < 0", "sign < 0"),
        Category("_05", tag, ", #it{p}_{T}>0.5", "trackPt > 0.5", "trackPt > 0.5"),
    ]
    if not mc:
        return out
    out += [
        Category("_prim", "MC prim", "", _PRIM, _PRIM),
        Category("_secd", "MC dec. sec.", "", _SECD, _SECD),
        Category("_secm", "MC mat. sec.", "", _SECM, _SECM),
        Category("_pi", "#pi MC", "", _PI, _PI),
        Category("_pi_prim", "#pi MC prim", "", f"{_PI} && {_PRIM}", f"{_PI} && {_PRIM}"),
        # Matched material-secondary pions are counted together with the decay ones.
        Category("_pi_secd", "#pi MC dec. sec.", "", f"{_PI} && {_SECD}", f"{_PI} && !mcIsPhysicalPrimary"),
        Category("_pi_secm", "#pi MC mat. sec.", "", f"{_PI} && {_SECM}", _NEVER),
        Category("_P", "prot MC", "", "mcAbsPdg == 2212", "mcAbsPdg == 2212"),
        Category("_K", "kaons MC", "", "mcAbsPdg == 321", "mcAbsPdg == 321"),
        Category("_piK", "#pi+kaons MC", "", "mcAbsPdg == 211 || mcAbsPdg == 321", "mcAbsPdg == 211 || mcAbsPdg == 321"),
        Category("_nopi", "MC", " ! prim/secd #pi", f"!({_PI} && {_PRIM})", f"!({_PI} && {_PRIM})"),
    ]
    return out


@dataclass(frozen=True)
class FillSpec:
    hist: str
    selection: str
    columns: tuple[str, ...]


VARIABLES = (("pthist", "#it{p}_{T}", "trackPt"), ("etahist", "#eta", "eta"), ("phihist", "#phi", "phi"))


def thn_axes(cfg: QAMatchEffConfig) -> list[AxisSpec]:
    titles = {
        "d0": "#it{d}_{r#it{#varphi}} [cm]",
        "pt": "#it{p}_{T}^{reco} [GeV/#it{c}]",
        "phi": "#varphi",
        "eta": "#it{#eta}",
        "type": "0:prim-1:sec-2:matsec",
        "label_sign": "+/- 1 for part./antipart.",
        "spec": "particle from MC (1,2,3,4,5 -> e,pi,K,P,other)",
    }
    return [AxisSpec(*cfg.thn_axes[name], title=title) for name, title in titles.items()]


def build_registry(cfg: QAMatchEffConfig, mc: bool) -> HistogramRegistry:
    top = "MC" if mc else "data"
    axis_pt = AxisSpec(*cfg.pt_bins, title="#it{p}_{T} (GeV/#it{c})")
    axis_eta = AxisSpec(cfg.eta_bins, cfg.eta_min, cfg.eta_max, "#eta")
    axis_phi = AxisSpec(cfg.phi_bins, cfg.phi_min, cfg.phi_max, "#it{#varphi} (rad)")
    axes = {"pthist": axis_pt, "etahist": axis_eta, "phihist": axis_phi}

    reg = HistogramRegistry(REGISTRY_NAME)
    if cfg.make_thn:
        reg.add(
            f"{top}/thnsforfrac",
            f"Sparse histo for imp. par. fraction analysis - {top}",
            "THnSparseF",
            thn_axes(cfg),
        )
    reg.add(
        f"{top}/itsHitsMatched",
        "No. of hits vs ITS layer for ITS-TPC matched tracks",
        "TH2D",
        [AxisSpec(8, -1.5, 6.5, "layer ITS"), AxisSpec(8, -0.5, 7.5, "No. of hits")],
    )
    for cat in categories(mc):
        for tag, tag_label in (("tpc", "TPC"), ("tpcits", "TPC+ITS")):
            for prefix, var_label, _ in VARIABLES:
                reg.add(
                    f"{top}/{prefix}_{tag}{cat.suffix}",
                    f"{var_label} distribution - {cat.label} {tag_label} tag{cat.extra}",
                    "TH1D",
                    [axes[prefix]],
                )
    if mc:
        reg.add("MC/etahist_diff", "#eta difference track-MC ", "TH1D", [AxisSpec(cfg.eta_bins, cfg.eta_min, cfg.eta_max, "D#eta")])
        reg.add("MC/phihist_diff", "#phi difference track-MC", "TH1D", [AxisSpec(cfg.phi_bins, -math.pi, math.pi, "D#it{#varphi} (rad)")])
        axis_pdg = AxisSpec(cfg.pdg_bins, 0, cfg.pdg_bins + 1.0, "pdgclass")
        reg.add("MC/pdghist_num", "PDG code - when non primary #pi TPC+ITS tag", "TH1D", [axis_pdg])
        reg.add("MC/pdghist_den", "PDG code - when non primary #pi TPC tag", "TH1D", [axis_pdg])
    return reg


def fill_plan(cfg: QAMatchEffConfig, mc: bool) -> list[FillSpec]:
    """Histogram fills on the kinematically selected tracks (`tpcTag`/`tpcItsTag` defined by the task)."""
    top = "MC" if mc else "data"
    plan: list[FillSpec] = []
    if cfg.make_thn:
        plan.append(
            FillSpec(
                f"{top}/thnsforfrac",
                "true",
                ("dcaXY", "trackPt", "phi", "eta", "originIndex", "pdgSign", "speciesIndex"),
            )
        )
    plan.append(FillSpec(f"{top}/itsHitsMatched", "tpcItsTag", ("itsHitLayers", "itsHitCounts")))
    for cat in categories(mc):
        for tag, selection, tag_sel in (("tpc", cat.tpc_selection, "tpcTag"), ("tpcits", cat.tpcits_selection, "tpcItsTag")):
            for prefix, _, column in VARIABLES:
                plan.append(FillSpec(f"{top}/{prefix}_{tag}{cat.suffix}", f"{tag_sel} && ({selection})", (column,)))
    if mc:
        nopi = f"!({_PI} && {_PRIM})"
        plan += [
            FillSpec("MC/etahist_diff", _PRIM, ("etaDiff",)),
            FillSpec("MC/phihist_diff", _PRIM, ("phiDiff",)),
            FillSpec("MC/pdghist_den", f"tpcTag && {nopi}", ("pdgClass",)),
            FillSpec("MC/pdghist_num", f"tpcItsTag && {nopi}", ("pdgClass",)),
        ]
    return plan
