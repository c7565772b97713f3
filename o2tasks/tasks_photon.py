import logging
import math
from typing import Any

from . import cuts_library
from .histograms import AxisSpec, HistogramRegistry
from .photon_cuts import EMCPhotonCut, EMCPhotonCuts, V0PhotonCut, V0PhotonCuts
from .root_io import (
    apply_column_aliases,
    book,
    build_rdf_from_ao2d,
    column_names,
    empty_hist,
    require_columns,
    write_registries,
)
from .settings import PhotonQAConfig, RuntimeConfig
from .tasks_common import add_result, collect_rresult_ptrs, run_graphs


LOGGER = logging.getLogger("o2tasks.tasks")

EMC_REGISTRY = "EMC"
PCM_REGISTRY = "PCM"
CUT_FLOW = "hCutFlow"

CLUSTER_COLUMNS = ("e", "nCells", "m02", "time", "eta", "phi", "isExotic", "hasTrack", "trackEta", "trackPhi", "trackPt", "trackP")
V0_COLUMNS = ("pt", "eta", "phi", "rxy", "mee", "psipair")
LEG_COLUMNS = ("tpcNClsFound", "tpcNClsCrossedRows", "tpcCrossedRowsOverFindableCls", "tpcChi2NCl", "tpcNSigmaEl")


def validate_photon_config(cfg: PhotonQAConfig) -> None:
    if not (cfg.process_emc or cfg.process_pcm):
        raise ValueError("No photon_qa process switch enabled: set process_emc or process_pcm.")
    if cfg.process_emc and not cfg.emc_cuts:
        raise ValueError("photon_qa.emc_cuts is empty while process_emc is enabled.")
    if cfg.process_pcm and not cfg.pcm_cuts:
        raise ValueError("photon_qa.pcm_cuts is empty while process_pcm is enabled.")


def resolve_cuts(detector: str, names: list[str], custom: dict[str, dict[str, Any]]) -> list[Any]:
    """Library cuts by name; a custom table with the same name takes precedence."""
    cuts = []
    for name in names:
        if name in custom:
            cut = cuts_library.cut_from_config(detector, name, custom[name])
        elif detector == "emc":
            cut = cuts_library.get_emc_cut(name)
        else:
            cut = cuts_library.get_pcm_cut(name)
        if cut is None:
            raise ValueError(
                f"Unknown {detector} cut '{name}'. Library: {', '.join(cuts_library.available_cuts()[detector])}."
            )
        cut.print()
        cuts.append(cut)
    return cuts


def _cut_flow_axis(enum_type: Any) -> AxisSpec:
    n = len(enum_type) + 1
    return AxisSpec(n, -0.5, n - 0.5, "cut")


def build_emc_registry(cuts: list[EMCPhotonCut]) -> HistogramRegistry:
    reg = HistogramRegistry(EMC_REGISTRY)
    for cut in cuts:
        reg.add(f"{cut.name}/{CUT_FLOW}", f"EMCal clusters surviving each cut ({cut.name})", "TH1D", [_cut_flow_axis(EMCPhotonCuts)])
        reg.add(f"{cut.name}/hE", "cluster energy", "TH1D", [AxisSpec(500, 0.0, 50.0, "#it{E}_{cluster} (GeV)")])
        reg.add(f"{cut.name}/hPt", "cluster transverse momentum", "TH1D", [AxisSpec(500, 0.0, 50.0, "#it{p}_{T} (GeV/#it{c})")])
        reg.add(f"{cut.name}/hEtaPhi", "cluster #eta vs #varphi", "TH2D", [AxisSpec(180, 0.0, 2 * math.pi, "#varphi (rad)"), AxisSpec(200, -1.0, 1.0, "#eta")])
        reg.add(f"{cut.name}/hM02", "cluster M02 vs energy", "TH2D", [AxisSpec(500, 0.0, 50.0, "#it{E}_{cluster} (GeV)"), AxisSpec(500, 0.0, 5.0, "#it{M}_{02}")])
        reg.add(f"{cut.name}/hTime", "cluster time vs energy", "TH2D", [AxisSpec(500, 0.0, 50.0, "#it{E}_{cluster} (GeV)"), AxisSpec(600, -300.0, 300.0, "#it{t}_{cluster} (ns)")])
        reg.add(f"{cut.name}/hNCell", "cluster cells vs energy", "TH2D", [AxisSpec(500, 0.0, 50.0, "#it{E}_{cluster} (GeV)"), AxisSpec(51, -0.5, 50.5, "#it{N}_{cells}")])
    return reg


def build_pcm_registry(cuts: list[V0PhotonCut]) -> HistogramRegistry:
    reg = HistogramRegistry(PCM_REGISTRY)
    for cut in cuts:
        reg.add(f"{cut.name}/{CUT_FLOW}", f"V0 photons surviving each cut ({cut.name})", "TH1D", [_cut_flow_axis(V0PhotonCuts)])
        reg.add(f"{cut.name}/hPt", "V0 photon transverse momentum", "TH1D", [AxisSpec(500, 0.0, 50.0, "#it{p}_{T} (GeV/#it{c})")])
        reg.add(f"{cut.name}/hEtaPhi", "V0 photon #eta vs #varphi", "TH2D", [AxisSpec(180, 0.0, 2 * math.pi, "#varphi (rad)"), AxisSpec(200, -1.0, 1.0, "#eta")])
        reg.add(f"{cut.name}/hRxy", "conversion radius", "TH1D", [AxisSpec(200, 0.0, 200.0, "#it{R}_{xy} (cm)")])
        reg.add(f"{cut.name}/hMeePsiPair", "#it{m}_{ee} vs #psi_{pair}", "TH2D", [AxisSpec(160, -1.6, 1.6, "#psi_{pair} (rad)"), AxisSpec(100, 0.0, 0.1, "#it{m}_{ee} (GeV/#it{c}^{2})")])
    return reg


EMC_FILLS = (
    ("hE", ("e",)),
    ("hPt", ("pt",)),
    ("hEtaPhi", ("phi", "eta")),
    ("hM02", ("e", "m02")),
    ("hTime", ("e", "time")),
    ("hNCell", ("e", "nCells")),
)

PCM_FILLS = (
    ("hPt", ("pt",)),
    ("hEtaPhi", ("phi", "eta")),
    ("hRxy", ("rxy",)),
    ("hMeePsiPair", ("psipair", "mee")),
)


def _book_cut(df: Any, registry: HistogramRegistry, cut: Any, enum_type: Any, fills: tuple, results: dict) -> list[Any]:
    """Book the accepted-sample histograms of one cut and return the cumulative cut-flow counters."""
    counts = [df.Count()]
    node = df
    for step in enum_type:
        node = node.Filter(cut.expression(step), f"{cut.name}:{step.value}")
        counts.append(node.Count())
    for hist, columns in fills:
        add_result(results, registry.name, f"{cut.name}/{hist}", book(node, registry.get(f"{cut.name}/{hist}"), columns))
    return counts


def _fill_cut_flow(registry: HistogramRegistry, cut_name: str, enum_type: Any, counts: list[Any], results: dict) -> None:
    hist = empty_hist(registry.get(f"{cut_name}/{CUT_FLOW}"))
    labels = ["all"] + [step.value for step in enum_type]
    for i, (label, count) in enumerate(zip(labels, counts), start=1):
        hist.GetXaxis().SetBinLabel(i, label)
        hist.SetBinContent(i, int(count.GetValue()))
    hist.SetEntries(int(counts[0].GetValue()))
    add_result(results, registry.name, f"{cut_name}/{CUT_FLOW}", hist)
    LOGGER.info(
        "%s/%s: %d of %d candidates accepted",
        registry.name,
        cut_name,
        int(counts[-1].GetValue()),
        int(counts[0].GetValue()),
    )


def book_photon_qa(clusters: Any, v0s: Any, emc_cuts: list[EMCPhotonCut], pcm_cuts: list[V0PhotonCut]) -> dict[str, Any]:
    results: dict[str, dict[str, list[Any]]] = {}
    registries: list[HistogramRegistry] = []
    flows: list[tuple[HistogramRegistry, str, Any, list[Any]]] = []
    if clusters is not None:
        reg = build_emc_registry(emc_cuts)
        registries.append(reg)
        for cut in emc_cuts:
            flows.append((reg, cut.name, EMCPhotonCuts, _book_cut(clusters, reg, cut, EMCPhotonCuts, EMC_FILLS, results)))
    if v0s is not None:
        reg = build_pcm_registry(pcm_cuts)
        registries.append(reg)
        for cut in pcm_cuts:
            flows.append((reg, cut.name, V0PhotonCuts, _book_cut(v0s, reg, cut, V0PhotonCuts, PCM_FILLS, results)))
    return {"registries": registries, "results": results, "flows": flows}


def _cluster_df(input_file: str, runtime_config: RuntimeConfig) -> Any:
    df = apply_column_aliases(
        build_rdf_from_ao2d(runtime_config.input.cluster_tree, input_file, mode=runtime_config.input.mode),
        runtime_config.columns,
    )
    require_columns(df, CLUSTER_COLUMNS, "photon_qa clusters")
    if "pt" not in column_names(df):
        df = df.Define("pt", "e / std::cosh(eta)")
    return df


def _v0_df(input_file: str, runtime_config: RuntimeConfig) -> Any:
    df = apply_column_aliases(
        build_rdf_from_ao2d(runtime_config.input.v0_tree, input_file, mode=runtime_config.input.mode),
        runtime_config.columns,
    )
    legs = [f"{prefix}_{column}" for prefix in ("pos", "ele") for column in LEG_COLUMNS]
    require_columns(df, list(V0_COLUMNS) + legs, "photon_qa V0s")
    return df


def photon_qa(input_file: str, output_file: str, runtime_config: RuntimeConfig) -> None:
    cfg = runtime_config.photon_qa
    validate_photon_config(cfg)
    emc_cuts = resolve_cuts("emc", cfg.emc_cuts, cfg.custom_emc) if cfg.process_emc else []
    pcm_cuts = resolve_cuts("pcm", cfg.pcm_cuts, cfg.custom_pcm) if cfg.process_pcm else []

    clusters = _cluster_df(input_file, runtime_config) if cfg.process_emc else None
    v0s = _v0_df(input_file, runtime_config) if cfg.process_pcm else None
    bundle = book_photon_qa(clusters, v0s, emc_cuts, pcm_cuts)
    run_graphs(collect_rresult_ptrs([bundle["results"], [flow[3] for flow in bundle["flows"]]]))
    for reg, cut_name, enum_type, counts in bundle["flows"]:
        _fill_cut_flow(reg, cut_name, enum_type, counts, bundle["results"])
    write_registries(output_file, bundle["registries"], bundle["results"])
