import copy
from dataclasses import fields
import logging
from typing import Any

from .photon_cuts import ConstantWindow, EMCPhotonCut, PowerLawWindow, StepFunction, V0PhotonCut

LOGGER = logging.getLogger("o2tasks.cuts")

DETECTORS = ("emc", "pcm")
_WINDOW_FIELDS = ("track_matching_eta", "track_matching_phi", "max_mee_psi_pair_dep")


def _mee_psipair_step() -> StepFunction:
    return StepFunction(threshold=0.4, below=0.06, above=0.015)


def _pcm_analysis(name: str) -> V0PhotonCut:
    cut = V0PhotonCut(name)
    cut.set_pt_range(0.01, 1e10)
    cut.set_eta_range(-0.9, +0.9)
    cut.min_ncrossed_rows_tpc = 30
    cut.min_ncrossed_rows_over_findable_clusters_tpc = 0.6
    cut.max_chi2_per_cluster_tpc = 4.0
    cut.set_tpc_nsigma_el_range(-3, +3)
    cut.set_rxy_range(1, 90)
    cut.max_mee_psi_pair_dep = _mee_psipair_step()
    return cut


def _pcm_qc(name: str) -> V0PhotonCut:
    cut = _pcm_analysis(name)
    cut.set_rxy_range(0, 180)
    return cut


def _pcm_nocut(name: str) -> V0PhotonCut:
    cut = V0PhotonCut(name)
    cut.set_pt_range(0.01, 1e10)
    cut.set_eta_range(-0.9, +0.9)
    cut.min_ncrossed_rows_tpc = 20
    cut.min_ncrossed_rows_over_findable_clusters_tpc = 0.6
    cut.max_chi2_per_cluster_tpc = 4.0
    return cut


def _emc_standard(name: str) -> EMCPhotonCut:
    cut = EMCPhotonCut(name)
    cut.min_e = 0.7
    cut.min_ncell = 1
    cut.set_m02_range(0.1, 0.7)
    cut.set_time_range(-20.0, 25.0)
    cut.track_matching_eta = PowerLawWindow(offset=0.01, shift=4.07, power=-2.5)
    cut.track_matching_phi = PowerLawWindow(offset=0.015, shift=3.65, power=-2.0)
    cut.min_e_over_p = 1.75
    cut.use_exotic_cut = True
    return cut


def _emc_nocut(name: str) -> EMCPhotonCut:
    cut = EMCPhotonCut(name)
    cut.min_e = 0.0
    cut.min_ncell = 1
    cut.set_m02_range(0.0, 1000.0)
    cut.set_time_range(-500.0, 500.0)
    cut.track_matching_eta = ConstantWindow(-1.0)
    cut.track_matching_phi = ConstantWindow(-1.0)
    cut.min_e_over_p = 0.0
    cut.use_exotic_cut = False
    return cut


_PCM_CUTS = {"analysis": _pcm_analysis, "qc": _pcm_qc, "nocut": _pcm_nocut}
_EMC_CUTS = {"standard": _emc_standard, "nocut": _emc_nocut}


def get_pcm_cut(name: str) -> V0PhotonCut | None:
    factory = _PCM_CUTS.get(name)
    if factory is None:
        LOGGER.info("Did not find cut %s", name)
        return None
    return factory(name)


def get_emc_cut(name: str) -> EMCPhotonCut | None:
    factory = _EMC_CUTS.get(name)
    if factory is None:
        LOGGER.info("Did not find cut %s", name)
        return None
    return factory(name)


def available_cuts() -> dict[str, list[str]]:
    return {"emc": list(_EMC_CUTS), "pcm": list(_PCM_CUTS)}


def _window_from_config(value: Any, context: str):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return ConstantWindow(float(value))
    if isinstance(value, dict):
        keys = set(value)
        if keys == {"offset", "shift", "power"}:
            return PowerLawWindow(float(value["offset"]), float(value["shift"]), float(value["power"]))
        if keys == {"threshold", "below", "above"}:
            return StepFunction(float(value["threshold"]), float(value["below"]), float(value["above"]))
    raise ValueError(
        f"'{context}' must be a number, {{offset, shift, power}} or {{threshold, below, above}}."
    )


def cut_from_config(detector: str, name: str, table: dict[str, Any]) -> EMCPhotonCut | V0PhotonCut:
    """Build a named cut from a config table: start from the library cut `base` and override fields."""
    if detector not in DETECTORS:
        raise ValueError(f"Unknown cut detector '{detector}'. Allowed: {', '.join(DETECTORS)}.")
    context = f"photon_qa.custom_{detector}.{name}"
    body = copy.deepcopy(table)
    base_name = str(body.pop("base", "nocut"))
    base = get_emc_cut(base_name) if detector == "emc" else get_pcm_cut(base_name)
    if base is None:
        raise ValueError(f"'{context}.base' refers to unknown {detector} cut '{base_name}'.")
    base.name = name

    allowed = {f.name for f in fields(base)} - {"name"}
    for key, value in body.items():
        if key not in allowed:
            raise ValueError(f"Unknown field '{context}.{key}'.")
        if key in _WINDOW_FIELDS:
            setattr(base, key, _window_from_config(value, f"{context}.{key}"))
        elif isinstance(getattr(base, key), bool):
            setattr(base, key, bool(value))
        elif isinstance(getattr(base, key), int):
            setattr(base, key, int(value))
        else:
            setattr(base, key, float(value))
    return base
