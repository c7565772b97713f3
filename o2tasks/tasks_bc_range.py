import logging
from typing import Any

import ROOT

from .bc_range import BCRangeSummary, IRFrame, InteractionRecord, selected_records, summarize
from .root_io import expand, list_directories, read_uint64_columns
from .settings import RuntimeConfig
from .tasks_common import write_json


LOGGER = logging.getLogger("o2tasks.tasks")

RANGE_COLUMNS = ("fBCstart", "fBCend")
DECISION_COLUMNS = ("fGlobalBCId", "fCefpSelected")


def _open(path: str) -> Any:
    root_file = ROOT.TFile.Open(expand(path))
    if not root_file or root_file.IsZombie():
        raise RuntimeError(f"Cannot open input file '{path}'.")
    return root_file


def _get_tree(root_file: Any, directory: str, tree_name: str) -> Any | None:
    obj = root_file.Get(f"{directory}/{tree_name}")
    if not obj or not obj.InheritsFrom("TTree"):
        return None
    return obj


def _frames(tree: Any) -> list[IRFrame]:
    cols = read_uint64_columns(tree, RANGE_COLUMNS)
    return [IRFrame.from_longs(start, end) for start, end in zip(cols["fBCstart"], cols["fBCend"])]


def _selected(tree: Any) -> list[InteractionRecord]:
    cols = read_uint64_columns(tree, DECISION_COLUMNS)
    return selected_records(cols["fGlobalBCId"], cols["fCefpSelected"])


def check_per_directory(input_file: str, range_tree: str, decision_tree: str) -> list[BCRangeSummary]:
    """One report per directory, using the ranges stored next to the decisions."""
    root_file = _open(input_file)
    summaries = []
    try:
        for directory in list_directories(root_file):
            ranges = _get_tree(root_file, directory, range_tree)
            decisions = _get_tree(root_file, directory, decision_tree)
            if ranges is None or decisions is None:
                LOGGER.error("could not find the required trees in directory %s", directory)
                continue
            summary = summarize(directory, _frames(ranges), _selected(decisions))
            LOGGER.info("%s: %s", directory, summary.message())
            summaries.append(summary)
    finally:
        root_file.Close()
    return summaries


def check_against_range_file(input_file: str, range_file: str, range_tree: str, decision_tree: str) -> BCRangeSummary:
    """Single report: selected BCs of every directory of the input against the ranges of every directory of the range file."""
    frames: list[IRFrame] = []
    ranges_file = _open(range_file)
    try:
        for directory in list_directories(ranges_file):
            tree = _get_tree(ranges_file, directory, range_tree)
            if tree is None:
                LOGGER.debug("no %s in %s/%s", range_tree, range_file, directory)
                continue
            frames.extend(_frames(tree))
    finally:
        ranges_file.Close()

    points: list[InteractionRecord] = []
    root_file = _open(input_file)
    try:
        for directory in list_directories(root_file):
            tree = _get_tree(root_file, directory, decision_tree)
            if tree is None:
                LOGGER.debug("no %s in %s/%s", decision_tree, input_file, directory)
                continue
            points.extend(_selected(tree))
    finally:
        root_file.Close()

    summary = summarize("*", frames, points)
    LOGGER.info("%s", summary.message())
    return summary


def bc_range(input_file: str, runtime_config: RuntimeConfig) -> list[BCRangeSummary]:
    cfg = runtime_config.bc_range
    if cfg.range_file:
        summaries = [check_against_range_file(input_file, cfg.range_file, cfg.range_tree, cfg.decision_tree)]
    else:
        summaries = check_per_directory(input_file, cfg.range_tree, cfg.decision_tree)
    if cfg.summary_output:
        write_json(
            expand(cfg.summary_output),
            {
                "input": input_file,
                "range_file": cfg.range_file,
                "n_not_found": sum(s.n_not_found for s in summaries),
                "n_selected": sum(s.n_selected for s in summaries),
                "reports": [s.to_dict() for s in summaries],
            },
        )
    return summaries
