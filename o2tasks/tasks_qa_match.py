import logging
from typing import Any

from . import qa_match
from .root_io import (
    book,
    build_rdf_from_ao2d,
    column_names,
    declare_helpers,
    define_track_columns,
    require_columns,
    write_registries,
)
from .settings import RuntimeConfig
from .tasks_common import add_result, collect_rresult_ptrs, run_graphs


LOGGER = logging.getLogger("o2tasks.tasks")

TRACK_COLUMNS = ("pt", "eta", "phi", "sign", "hasTPC", "hasITS", "hasTRD", "itsClusterMap")
MC_COLUMNS = ("mcPdgCode", "mcIsPhysicalPrimary", "mcProcess", "mcEta", "mcPhi", "hasMcParticle")


def _input_trees(runtime_config: RuntimeConfig) -> tuple[str, list[str]]:
    cfg = runtime_config.qa_match_eff
    inp = runtime_config.input
    if set(cfg.enabled_processes()).intersection(qa_match.IU_PROCESSES):
        tree, friends = inp.track_iu_tree, list(inp.track_iu_friends)
    else:
        tree, friends = inp.track_tree, list(inp.track_friends)
    if cfg.is_mc:
        friends += inp.mc_friends
    return tree, friends


def _define_has_mc_particle(df: Any) -> Any:
    available = column_names(df)
    if "hasMcParticle" not in available and "fIndexMcParticles" in available:
        df = df.Define("hasMcParticle", "fIndexMcParticles >= 0")
    return df


def _define_mc_columns(df: Any) -> Any:
    return (
        df.Define("mcAbsPdg", "std::abs(static_cast<int>(mcPdgCode))")
        .Define("etaDiff", "mcEta - eta")
        .Define("phiDiff", "o2tasks_delta_phi(mcPhi - phi)")
        .Define("pdgClass", "o2tasks_pdg_class(mcAbsPdg)")
        .Define("originIndex", "o2tasks_origin_index(mcIsPhysicalPrimary, mcProcess)")
        .Define("pdgSign", "(mcPdgCode > 0) - (mcPdgCode < 0)")
        .Define("speciesIndex", "o2tasks_species_index(mcAbsPdg)")
    )


def _define_data_columns(df: Any) -> Any:
    # No MC truth: fraction axes sit at their "unknown" values.
    return df.Define("originIndex", "-1").Define("pdgSign", "-2").Define("speciesIndex", "0")


def book_qa_match_eff(df: Any, runtime_config: RuntimeConfig) -> dict[str, Any]:
    """Book the matching-efficiency histograms on a track dataframe with the logical columns defined."""
    cfg = runtime_config.qa_match_eff
    mc = cfg.is_mc
    sel = qa_match.build_track_selection(cfg)
    registry = qa_match.build_registry(cfg, mc)

    enabled = set(cfg.enabled_processes())
    if not enabled.intersection(qa_match.NO_COLL_PROCESSES) and "collisionIndex" in column_names(df):
        df = df.Filter("collisionIndex >= 0", "collision")
    df = df.Filter(qa_match.trd_expression(cfg.is_trd_there), "trd")

    counters: dict[str, Any] = {}
    if mc:
        df = _define_has_mc_particle(df)
        counters["no_mc"] = df.Filter("!hasMcParticle").Count()
        df = _define_mc_columns(df.Filter("hasMcParticle", "mc particle"))
    else:
        df = _define_data_columns(df)

    df = df.Define("trackPt", "ptInnerWallTPC" if cfg.use_tpc_inner_wall_pt else "pt")
    df = df.Filter(qa_match.kine_expression(cfg, sel), "kine")
    df = (
        df.Define("tpcTag", f"hasTPC && ({qa_match.tpc_expression(cfg, sel)})")
        .Define("tpcItsTag", f"tpcTag && hasITS && ({qa_match.its_expression(cfg, sel)})")
        .Define("itsHitLayers", "o2tasks_its_hit_layers(itsClusterMap)")
        .Define("itsHitCounts", "o2tasks_its_hit_counts(itsClusterMap)")
    )
    counters["selected"] = df.Count()

    results: dict[str, dict[str, list[Any]]] = {}
    for fill in qa_match.fill_plan(cfg, mc):
        spec = registry.get(fill.hist)
        node = df if fill.selection == "true" else df.Filter(fill.selection)
        add_result(results, registry.name, fill.hist, book(node, spec, fill.columns))
    return {"registry": registry, "results": results, "counters": counters}


def qa_match_eff(input_file: str, output_file: str, runtime_config: RuntimeConfig) -> None:
    cfg = runtime_config.qa_match_eff
    qa_match.validate_process_switches(cfg)
    declare_helpers()

    tree, friends = _input_trees(runtime_config)
    df = define_track_columns(
        build_rdf_from_ao2d(tree, input_file, friends, mode=runtime_config.input.mode), runtime_config.columns
    )
    required = list(TRACK_COLUMNS)
    if cfg.use_track_selections:
        required += ["dcaXY", "tpcNClsFound", "tpcNClsCrossedRows", "tpcCrossedRowsOverFindableCls", "tpcChi2NCl", "itsChi2NCl"]
    if cfg.use_tpc_inner_wall_pt:
        required.append("ptInnerWallTPC")
    if cfg.make_thn:
        required.append("dcaXY")
    if cfg.is_mc:
        required += [c for c in MC_COLUMNS if c != "hasMcParticle"]
    require_columns(df, required, "qa_match_eff")
    if cfg.is_mc and "hasMcParticle" not in column_names(df) and "fIndexMcParticles" not in column_names(df):
        raise RuntimeError("qa_match_eff: MC input needs hasMcParticle or fIndexMcParticles.")

    LOGGER.info("qa_match_eff processes=%s tree=%s friends=%s", ",".join(cfg.enabled_processes()), tree, ",".join(friends))
    bundle = book_qa_match_eff(df, runtime_config)
    run_graphs(collect_rresult_ptrs([bundle["results"], bundle["counters"]]))

    counters = bundle["counters"]
    n_selected = int(counters["selected"].GetValue())
    if cfg.is_mc:
        n_no_mc = int(counters["no_mc"].GetValue())
        if n_no_mc:
            LOGGER.warning("%d tracks without MC particle, skipped", n_no_mc)
        LOGGER.info("Selected tracks with MC: %d, tracks w/o MC: %d", n_selected, n_no_mc)
    else:
        LOGGER.info("Selected tracks: %d", n_selected)
    write_registries(output_file, [bundle["registry"]], bundle["results"])
