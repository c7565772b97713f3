import argparse
import copy
from datetime import datetime, timezone
import json
import logging
import subprocess
import sys
import time

import ROOT

from . import settings as s


LOGGER = logging.getLogger("o2tasks")


def _setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    lvl = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)] + ([logging.FileHandler(log_file)] if log_file else []),
        force=True,
    )


def _git_revision() -> str:
    try:
        out = subprocess.run(["git", "rev-parse", "HEAD"], check=True, capture_output=True, text=True)
        return out.stdout.strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _write_metadata(path: str, payload: dict) -> None:
    from .root_io import ensure_parent, expand

    out = expand(path)
    ensure_parent(out)
    with open(out, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)


def default_config() -> dict:
    return s.default_config_template()


def run(cfg: dict) -> None:
    runtime_cfg = s.current_runtime_config(cfg)
    _setup_logging(runtime_cfg.log_level, runtime_cfg.paths.log_file or None)
    task = runtime_cfg.task
    paths = runtime_cfg.paths
    LOGGER.info("Starting run task=%s input=%s", task, paths.input)

    if runtime_cfg.enable_mt:
        if runtime_cfg.nthreads > 0:
            ROOT.EnableImplicitMT(runtime_cfg.nthreads)
        else:
            ROOT.EnableImplicitMT()

    t0 = time.time()
    if task == "nuclei_hist":
        from .tasks_nuclei import nuclei_hist

        nuclei_hist(paths.input, paths.output, runtime_cfg)
    elif task == "qa_match_eff":
        from .tasks_qa_match import qa_match_eff

        qa_match_eff(paths.input, paths.output, runtime_cfg)
    elif task == "photon_qa":
        from .tasks_photon import photon_qa

        photon_qa(paths.input, paths.output, runtime_cfg)
    elif task == "bc_range":
        from .tasks_bc_range import bc_range

        bc_range(paths.input, runtime_cfg)
    else:
        raise ValueError(f"Unsupported task: {task}")
    LOGGER.info("Finished run task=%s elapsed_sec=%.2f", task, time.time() - t0)


def _metadata_path(merged: dict) -> str:
    try:
        return s.current_runtime_config(merged).paths.metadata_output
    except ValueError:
        paths = merged.get("paths", {})
        return str((paths if isinstance(paths, dict) else {}).get("metadata_output") or "run_metadata.json")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="PyROOT CLI for O2 track QA, nuclei spectra and photon cut tasks")
    parser.add_argument("--config", help="Path to TOML config")
    parser.add_argument("--task", choices=s.TASKS, help="Override run.task")
    parser.add_argument("--input", help="Override paths.input")
    parser.add_argument("--output", help="Override paths.output")
    parser.add_argument("--dump-default-config", action="store_true", help="Print default config and exit")
    args = parser.parse_args(argv)

    if args.dump_default_config:
        print(json.dumps(default_config(), indent=2, sort_keys=True))
        return 0
    if not args.config:
        parser.error("--config is required")

    cfg = s.load_toml(args.config)
    overrides: dict = {}
    if args.task:
        overrides.setdefault("run", {})["task"] = args.task
    if args.input:
        overrides.setdefault("paths", {})["input"] = args.input
    if args.output:
        overrides.setdefault("paths", {})["output"] = args.output
    merged = s.merge_config(s._deep_merge_dict(cfg, overrides))

    started = datetime.now(timezone.utc)
    status = "success"
    error = ""
    try:
        run(merged)
    except Exception as exc:
        status = "failed"
        error = str(exc)
        raise
    finally:
        ended = datetime.now(timezone.utc)
        metadata = {
            "status": status,
            "error": error,
            "started_utc": started.isoformat(),
            "ended_utc": ended.isoformat(),
            "duration_sec": (ended - started).total_seconds(),
            "git_revision": _git_revision(),
            "config": copy.deepcopy(merged),
        }
        try:
            _write_metadata(_metadata_path(merged), metadata)
        except OSError as meta_exc:
            LOGGER.error("Failed to write metadata: %s", meta_exc)
    return 0


if __name__ == "__main__":
    sys.exit(main())
