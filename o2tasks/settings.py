import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # pragma: no cover - runtime compatibility path
    import tomli as tomllib


DEFAULTS_PATH = Path(__file__).parent / "defaults.toml"
TASKS = ("nuclei_hist", "qa_match_eff", "photon_qa", "bc_range")
INPUT_MODES = ("DF", "tree")


def load_toml(path: str | Path) -> dict[str, Any]:
    with open(path, "rb") as f:
        cfg = tomllib.load(f)
    if not isinstance(cfg, dict):
        raise ValueError(f"Invalid TOML at {path}: top-level table is missing.")
    return cfg


_DEFAULT_CONFIG_CACHE: dict[str, Any] = {}


def default_config_template() -> dict[str, Any]:
    if not _DEFAULT_CONFIG_CACHE:
        _DEFAULT_CONFIG_CACHE.update(load_toml(DEFAULTS_PATH))
    return copy.deepcopy(_DEFAULT_CONFIG_CACHE)


def _required_table(table: dict[str, Any], key: str, context: str = "defaults") -> dict[str, Any]:
    value = table.get(key)
    if not isinstance(value, dict):
        raise ValueError(f"Missing or invalid [{key}] table in {context} config")
    return value


def _required_value(table: dict[str, Any], key: str, context: str) -> Any:
    if key not in table:
        raise ValueError(f"Missing required key '{context}.{key}'")
    return table[key]


def _float_list(table: dict[str, Any], key: str, context: str) -> list[float]:
    raw = _required_value(table, key, context)
    if isinstance(raw, (str, bytes)) or not hasattr(raw, "__iter__"):
        raise ValueError(f"'{context}.{key}' must be a list of numbers.")
    return [float(v) for v in raw]


def _str_list(table: dict[str, Any], key: str, context: str) -> list[str]:
    raw = _required_value(table, key, context)
    if isinstance(raw, str):
        return [raw]
    return [str(v) for v in raw]


def _axis_triplet(table: dict[str, Any], key: str, context: str) -> tuple[int, float, float]:
    values = _float_list(table, key, context)
    if len(values) != 3:
        raise ValueError(f"'{context}.{key}' must have 3 values: [nbins, min, max].")
    nbins = int(values[0])
    if nbins <= 0 or values[2] <= values[1]:
        raise ValueError(f"'{context}.{key}' must have nbins > 0 and max > min.")
    return nbins, values[1], values[2]


def _deep_merge_dict(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge_dict(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def merge_config(cfg: dict[str, Any] | None) -> dict[str, Any]:
    merged = default_config_template()
    if not isinstance(cfg, dict):
        return merged
    return _deep_merge_dict(merged, cfg)


@dataclass(frozen=True)
class RuntimePaths:
    base_output_dir: str
    base_variant_output_dir: str
    input: str
    output: str
    metadata_output: str
    log_file: str


@dataclass(frozen=True)
class InputConfig:
    mode: str
    track_tree: str
    track_iu_tree: str
    track_friends: list[str]
    track_iu_friends: list[str]
    mc_friends: list[str]
    collision_tree: str
    nuclei_tree: str
    nuclei_event_tree: str
    cluster_tree: str
    v0_tree: str


@dataclass(frozen=True)
class NucleiHistConfig:
    process_data: bool
    process_data_cent: bool
    y_min: float
    y_max: float
    cut_vertex: float
    cut_eta: float
    nsigma_cut_low: float
    nsigma_cut_high: float
    min_req_cluster_its: float
    min_tpc_ncls_found: float
    min_ncrossed_rows_tpc: float
    min_ratio_crossed_rows_tpc: float
    max_ratio_crossed_rows_tpc: float
    max_chi2_its: float
    max_chi2_tpc: float
    max_dca_xy: float
    max_dca_z: float
    pt_binning: list[float]


@dataclass(frozen=True)
class QAMatchEffConfig:
    is_mc: bool
    process_data: bool
    process_data_no_coll: bool
    process_trk_iu_data: bool
    process_mc: bool
    process_mc_no_coll: bool
    process_trk_iu_mc: bool
    use_track_selections: bool
    pt_min_cut_inner_wall_tpc: float
    pt_min_cut: float
    pt_max_cut: float
    eta_min_cut: float
    eta_max_cut: float
    dca_xy_max_cut: float
    use_tpc_inner_wall_pt: bool
    tpc_ncluster_min: int
    tpc_ncrossed_rows_min: int
    tpc_ncrossed_rows_over_findable_clst_min: float
    tpc_chi2_max: float
    its_chi2_max: float
    custom_its_hitmap: int
    custom_min_its_hits: int
    is_trd_there: int
    make_thn: bool
    eta_min: float
    eta_max: float
    phi_min: float
    phi_max: float
    eta_bins: int
    phi_bins: int
    pdg_bins: int
    pt_bins: tuple[int, float, float]
    thn_axes: dict[str, tuple[int, float, float]]

    def enabled_processes(self) -> list[str]:
        names = (
            "process_data",
            "process_data_no_coll",
            "process_trk_iu_data",
            "process_mc",
            "process_mc_no_coll",
            "process_trk_iu_mc",
        )
        return [name for name in names if getattr(self, name)]


@dataclass(frozen=True)
class PhotonQAConfig:
    emc_cuts: list[str]
    pcm_cuts: list[str]
    process_emc: bool
    process_pcm: bool
    custom_emc: dict[str, dict[str, Any]] = field(default_factory=dict)
    custom_pcm: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class BCRangeConfig:
    range_tree: str
    decision_tree: str
    range_file: str
    summary_output: str


@dataclass(frozen=True)
class RuntimeConfig:
    task: str
    log_level: str
    enable_mt: bool
    nthreads: int
    paths: RuntimePaths
    input: InputConfig
    columns: dict[str, str]
    nuclei_hist: NucleiHistConfig
    qa_match_eff: QAMatchEffConfig
    photon_qa: PhotonQAConfig
    bc_range: BCRangeConfig


def _build_runtime_paths(common: dict[str, Any], paths: dict[str, Any], task: str) -> RuntimePaths:
    period = str(_required_value(common, "period", "common"))
    reco_pass = str(_required_value(common, "reco_pass", "common"))
    variant = str(_required_value(common, "variant", "common"))
    base_input_dir = str(_required_value(common, "base_input_dir", "common"))
    base_output_root = str(_required_value(common, "base_output_root", "common"))
    input_basename = str(_required_value(common, "input_basename", "common"))
    output_basename = str(_required_value(common, "output_basename", "common"))

    base_output_dir = f"{base_output_root}{period}/{reco_pass}/"
    base_variant_output_dir = f"{base_output_dir}{variant}/"
    task_dir = f"{base_variant_output_dir}{task}/"

    return RuntimePaths(
        base_output_dir=base_output_dir,
        base_variant_output_dir=base_variant_output_dir,
        input=str(paths.get("input") or f"{base_input_dir}{period}/{reco_pass}/{input_basename}"),
        output=str(paths.get("output") or f"{task_dir}{output_basename}"),
        metadata_output=str(paths.get("metadata_output") or f"{task_dir}run_metadata.json"),
        log_file=str(paths.get("log_file") or ""),
    )


def _build_input_config(table: dict[str, Any]) -> InputConfig:
    mode = str(_required_value(table, "mode", "input"))
    if mode not in INPUT_MODES:
        raise ValueError(f"Unsupported input.mode '{mode}'. Allowed: {', '.join(INPUT_MODES)}.")
    return InputConfig(
        mode=mode,
        track_tree=str(_required_value(table, "track_tree", "input")),
        track_iu_tree=str(_required_value(table, "track_iu_tree", "input")),
        track_friends=_str_list(table, "track_friends", "input"),
        track_iu_friends=_str_list(table, "track_iu_friends", "input"),
        mc_friends=_str_list(table, "mc_friends", "input"),
        collision_tree=str(_required_value(table, "collision_tree", "input")),
        nuclei_tree=str(_required_value(table, "nuclei_tree", "input")),
        nuclei_event_tree=str(_required_value(table, "nuclei_event_tree", "input")),
        cluster_tree=str(_required_value(table, "cluster_tree", "input")),
        v0_tree=str(_required_value(table, "v0_tree", "input")),
    )


def _build_nuclei_config(table: dict[str, Any]) -> NucleiHistConfig:
    ctx = "nuclei_hist"
    floats = {
        key: float(_required_value(table, key, ctx))
        for key in (
            "y_min",
            "y_max",
            "cut_vertex",
            "cut_eta",
            "nsigma_cut_low",
            "nsigma_cut_high",
            "min_req_cluster_its",
            "min_tpc_ncls_found",
            "min_ncrossed_rows_tpc",
            "min_ratio_crossed_rows_tpc",
            "max_ratio_crossed_rows_tpc",
            "max_chi2_its",
            "max_chi2_tpc",
            "max_dca_xy",
            "max_dca_z",
        )
    }
    if floats["y_min"] >= floats["y_max"]:
        raise ValueError("nuclei_hist.y_min must be smaller than nuclei_hist.y_max.")
    if floats["nsigma_cut_low"] >= floats["nsigma_cut_high"]:
        raise ValueError("nuclei_hist.nsigma_cut_low must be smaller than nuclei_hist.nsigma_cut_high.")
    pt_binning = _float_list(table, "pt_binning", ctx)
    if len(pt_binning) < 2 or any(b <= a for a, b in zip(pt_binning, pt_binning[1:])):
        raise ValueError("nuclei_hist.pt_binning must contain at least 2 increasing edges.")
    return NucleiHistConfig(
        process_data=bool(_required_value(table, "process_data", ctx)),
        process_data_cent=bool(_required_value(table, "process_data_cent", ctx)),
        pt_binning=pt_binning,
        **floats,
    )


def _build_qa_match_config(table: dict[str, Any]) -> QAMatchEffConfig:
    ctx = "qa_match_eff"
    bools = {
        key: bool(_required_value(table, key, ctx))
        for key in (
            "is_mc",
            "process_data",
            "process_data_no_coll",
            "process_trk_iu_data",
            "process_mc",
            "process_mc_no_coll",
            "process_trk_iu_mc",
            "use_track_selections",
            "use_tpc_inner_wall_pt",
            "make_thn",
        )
    }
    floats = {
        key: float(_required_value(table, key, ctx))
        for key in (
            "pt_min_cut_inner_wall_tpc",
            "pt_min_cut",
            "pt_max_cut",
            "eta_min_cut",
            "eta_max_cut",
            "dca_xy_max_cut",
            "tpc_ncrossed_rows_over_findable_clst_min",
            "tpc_chi2_max",
            "its_chi2_max",
            "eta_min",
            "eta_max",
            "phi_min",
            "phi_max",
        )
    }
    ints = {
        key: int(_required_value(table, key, ctx))
        for key in (
            "tpc_ncluster_min",
            "tpc_ncrossed_rows_min",
            "custom_its_hitmap",
            "custom_min_its_hits",
            "is_trd_there",
            "eta_bins",
            "phi_bins",
            "pdg_bins",
        )
    }
    if not 0 <= ints["custom_its_hitmap"] < (1 << 7):
        raise ValueError("qa_match_eff.custom_its_hitmap must be a 7-bit ITS layer mask.")
    thn_axes = {
        name: _axis_triplet(table, f"thn_{name}", ctx)
        for name in ("d0", "pt", "phi", "eta", "type", "label_sign", "spec")
    }
    return QAMatchEffConfig(
        pt_bins=_axis_triplet(table, "pt_bins", ctx),
        thn_axes=thn_axes,
        **bools,
        **floats,
        **ints,
    )


def _build_custom_cuts(table: dict[str, Any], key: str) -> dict[str, dict[str, Any]]:
    raw = table.get(key, {})
    if not isinstance(raw, dict):
        raise ValueError(f"photon_qa.{key} must be a table of cut tables.")
    out: dict[str, dict[str, Any]] = {}
    for name, body in raw.items():
        if not isinstance(body, dict):
            raise ValueError(f"photon_qa.{key}.{name} must be a table.")
        out[str(name)] = copy.deepcopy(body)
    return out


def _build_photon_config(table: dict[str, Any]) -> PhotonQAConfig:
    ctx = "photon_qa"
    return PhotonQAConfig(
        emc_cuts=_str_list(table, "emc_cuts", ctx),
        pcm_cuts=_str_list(table, "pcm_cuts", ctx),
        process_emc=bool(_required_value(table, "process_emc", ctx)),
        process_pcm=bool(_required_value(table, "process_pcm", ctx)),
        custom_emc=_build_custom_cuts(table, "custom_emc"),
        custom_pcm=_build_custom_cuts(table, "custom_pcm"),
    )


def _build_bc_range_config(table: dict[str, Any]) -> BCRangeConfig:
    ctx = "bc_range"
    return BCRangeConfig(
        range_tree=str(_required_value(table, "range_tree", ctx)),
        decision_tree=str(_required_value(table, "decision_tree", ctx)),
        range_file=str(table.get("range_file", "") or ""),
        summary_output=str(table.get("summary_output", "") or ""),
    )


def current_runtime_config(cfg: dict[str, Any] | None = None) -> RuntimeConfig:
    merged = merge_config(cfg)

    run_cfg = _required_table(merged, "run", "config")
    task = str(_required_value(run_cfg, "task", "run")).strip().lower()
    if task not in TASKS:
        raise ValueError(f"Unsupported run.task '{task}'. Allowed: {', '.join(TASKS)}.")

    common = _required_table(merged, "common", "config")
    paths = merged.get("paths", {})
    if not isinstance(paths, dict):
        raise ValueError("Missing or invalid [paths] table in config")
    columns = {str(k): str(v) for k, v in _required_table(merged, "columns", "config").items()}

    return RuntimeConfig(
        task=task,
        log_level=str(run_cfg.get("log_level", "INFO")),
        enable_mt=bool(run_cfg.get("enable_mt", True)),
        nthreads=int(run_cfg.get("nthreads", 0)),
        paths=_build_runtime_paths(common, paths, task),
        input=_build_input_config(_required_table(merged, "input", "config")),
        columns=columns,
        nuclei_hist=_build_nuclei_config(_required_table(merged, "nuclei_hist", "config")),
        qa_match_eff=_build_qa_match_config(_required_table(merged, "qa_match_eff", "config")),
        photon_qa=_build_photon_config(_required_table(merged, "photon_qa", "config")),
        bc_range=_build_bc_range_config(_required_table(merged, "bc_range", "config")),
    )
