import json
import logging
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger("o2tasks.tasks")


def collect_rresult_ptrs(obj: Any) -> list[Any]:
    out: list[Any] = []
    if isinstance(obj, dict):
        for value in obj.values():
            out.extend(collect_rresult_ptrs(value))
        return out
    if isinstance(obj, (list, tuple)):
        for value in obj:
            out.extend(collect_rresult_ptrs(value))
        return out
    if hasattr(obj, "GetValue") and hasattr(obj, "GetPtr"):
        out.append(obj)
    return out


def run_graphs(actions: list[Any]) -> None:
    if not actions:
        return
    import ROOT

    run_graphs_impl = getattr(getattr(ROOT, "RDF", None), "RunGraphs", None)
    if run_graphs_impl:
        run_graphs_impl(actions)
        return
    # Fallback for ROOT builds without RunGraphs.
    for action in actions:
        action.GetValue()


def add_result(results: dict[str, dict[str, list[Any]]], registry: str, hist: str, result: Any) -> None:
    """Append a booked result; results booked under the same name are summed when written."""
    results.setdefault(registry, {}).setdefault(hist, []).append(result)


def write_json(path: str, payload: Any) -> None:
    out = Path(path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
    LOGGER.info("summary written to %s", out)
