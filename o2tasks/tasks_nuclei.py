import logging
from typing import Any

from . import nuclei
from .root_io import (
    apply_column_aliases,
    book,
    build_rdf_from_ao2d,
    column_names,
    declare_helpers,
    define_track_columns,
    empty_hist,
    require_columns,
    write_registries,
)
from .settings import RuntimeConfig
from .tasks_common import add_result, collect_rresult_ptrs, run_graphs


LOGGER = logging.getLogger("o2tasks.tasks")

TRACK_COLUMNS = (
    "eventId",
    "posZ",
    "pt",
    "eta",
    "sign",
    "tpcInnerParam",
    "tpcSignal",
    "tpcNClsFound",
    "tpcNClsCrossedRows",
    "tpcCrossedRowsOverFindableCls",
    "tpcChi2NCl",
    "itsChi2NCl",
    "itsNCls",
    "passedTPCRefit",
    "passedITSRefit",
    "isPVContributor",
    "dcaXY",
    "dcaZ",
    "hasTOF",
    "beta",
    "mass",
)


def _required_track_columns(with_centrality: bool) -> list[str]:
    cols = list(TRACK_COLUMNS)
    for species in nuclei.SPECIES:
        cols.extend([species.tpc_nsigma, species.tof_nsigma])
    if with_centrality:
        cols.append("centFT0C")
    return cols


def _define_derived(df: Any) -> Any:
    available = column_names(df)
    for name, expression in nuclei.DERIVED_COLUMNS.items():
        if name not in available:
            df = df.Define(name, expression)
    return df


def book_nuclei_hist(events: Any, tracks: Any, runtime_config: RuntimeConfig) -> dict[str, Any]:
    """Book every histogram of the nuclei task on the event and track dataframes."""
    cfg = runtime_config.nuclei_hist
    with_centrality = cfg.process_data_cent
    registries = nuclei.build_registries(cfg.pt_binning)

    events = events.Filter(nuclei.event_selection(cfg), "vertex")
    tracks = tracks.Filter(nuclei.event_selection(cfg), "vertex").Filter(nuclei.track_preselection(cfg), "eta")
    quality = tracks.Filter(nuclei.quality_expression(cfg), "quality")
    rapidity = nuclei.rapidity_expression(cfg)
    stages = {
        nuclei.STAGE_EVENT: events,
        nuclei.STAGE_QUALITY: quality,
        nuclei.STAGE_SELECTED: quality.Filter(nuclei.dca_expression(cfg), "dca").Filter(rapidity, "rapidity"),
    }
    if with_centrality:
        stages[nuclei.STAGE_CENTRALITY] = quality.Filter(rapidity, "rapidity")

    results: dict[str, dict[str, list[Any]]] = {}
    for fill in nuclei.fill_plan(cfg, with_centrality):
        spec = registries[fill.registry].get(fill.hist)
        df = stages[fill.stage]
        if fill.selection != "true":
            df = df.Filter(fill.selection)
        add_result(results, fill.registry, fill.hist, book(df, spec, fill.columns))

    selected = stages[nuclei.STAGE_SELECTED].Define("keepEventId", "static_cast<Long64_t>(eventId)")
    kept_ids = {
        registry: selected.Filter(selection).Take["Long64_t"]("keepEventId")
        for registry, selection in nuclei.keep_event_selections(cfg).items()
    }
    return {
        "registries": registries,
        "results": results,
        "n_events": events.Count(),
        "kept_ids": kept_ids,
    }


def _fill_keep_event(bundle: dict[str, Any]) -> None:
    n_events = int(bundle["n_events"].GetValue())
    for registry, take in bundle["kept_ids"].items():
        n_kept = len(set(int(v) for v in take.GetValue()))
        hist = empty_hist(bundle["registries"][registry].get("histKeepEventData"))
        hist.SetBinContent(hist.FindBin(0), n_events - n_kept)
        hist.SetBinContent(hist.FindBin(1), n_kept)
        hist.SetEntries(n_events)
        add_result(bundle["results"], registry, "histKeepEventData", hist)
        LOGGER.debug("%s: kept %d of %d events", registry, n_kept, n_events)


def nuclei_hist(input_file: str, output_file: str, runtime_config: RuntimeConfig) -> None:
    cfg = runtime_config.nuclei_hist
    nuclei.validate_process_switches(cfg)
    declare_helpers()
    inp = runtime_config.input

    events = apply_column_aliases(
        build_rdf_from_ao2d(inp.nuclei_event_tree, input_file, mode=inp.mode), runtime_config.columns
    )
    require_columns(events, ["posZ"], "nuclei_hist events")
    tracks = _define_derived(
        define_track_columns(build_rdf_from_ao2d(inp.nuclei_tree, input_file, mode=inp.mode), runtime_config.columns)
    )
    require_columns(tracks, _required_track_columns(cfg.process_data_cent), "nuclei_hist tracks")

    LOGGER.info(
        "nuclei_hist mode=%s |y| in [%s, %s] nsigma in (%s, %s)",
        "centrality" if cfg.process_data_cent else "data",
        cfg.y_min,
        cfg.y_max,
        cfg.nsigma_cut_low,
        cfg.nsigma_cut_high,
    )
    bundle = book_nuclei_hist(events, tracks, runtime_config)
    run_graphs(collect_rresult_ptrs([bundle["results"], bundle["n_events"], bundle["kept_ids"]]))
    _fill_keep_event(bundle)
    LOGGER.info("nuclei_hist processed %d events", int(bundle["n_events"].GetValue()))
    write_registries(output_file, bundle["registries"].values(), bundle["results"])
