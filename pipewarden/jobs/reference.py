"""Reference pipeline job — a small, resumable computation.

Launched by the Process Supervisor with ``cwd`` set to the project's
pipeline root.  Reads the project configuration as JSON::

    {"iterations": 10, "step_seconds": 0.1}

Progress is checkpointed to ``progress.json`` after every iteration.  A
restarted run with the same configuration skips the iterations already
completed.  When all iterations are done the job writes ``result.json``
and exits 0.

Run directly with ``python -m pipewarden.jobs.reference``.
"""

from __future__ import annotations

import json
import os
import sys
import time
from pathlib import Path
from typing import Any

from pipewarden.core.fsio import atomic_write_text
from pipewarden.core.hasher import canonical_json_bytes, config_hash
from pipewarden.core.workdir import working_directory

DEFAULT_ITERATIONS = 5
DEFAULT_STEP_SECONDS = 0.2

PROGRESS_NAME = "progress.json"
RESULT_NAME = "result.json"


def load_settings(raw: bytes) -> dict[str, Any]:
    """Parse the opaque config blob; an empty blob means defaults."""
    settings: dict[str, Any] = {}
    if raw.strip():
        parsed = json.loads(raw.decode("utf-8"))
        if not isinstance(parsed, dict):
            raise ValueError("configuration must be a JSON object")
        settings = parsed
    iterations = int(settings.get("iterations", DEFAULT_ITERATIONS))
    step_seconds = float(settings.get("step_seconds", DEFAULT_STEP_SECONDS))
    if iterations < 0 or step_seconds < 0:
        raise ValueError("iterations and step_seconds must be non-negative")
    return {"iterations": iterations, "step_seconds": step_seconds}


def load_progress(path: Path, cfg_hash: str) -> list[int]:
    """Values computed by an earlier run of the same configuration."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (FileNotFoundError, ValueError):
        return []
    if data.get("config_hash") != cfg_hash:
        return []
    return [int(v) for v in data.get("values", [])]


def step(index: int) -> int:
    return index * index


def run(pipeline_root: Path, raw_config: bytes) -> dict[str, Any]:
    """Execute the job inside *pipeline_root* and return the result payload."""
    settings = load_settings(raw_config)
    cfg_hash = config_hash(raw_config)
    progress_path = pipeline_root / PROGRESS_NAME

    values = load_progress(progress_path, cfg_hash)[: settings["iterations"]]
    if values:
        print(f"resuming at iteration {len(values)}/{settings['iterations']}", flush=True)

    for index in range(len(values), settings["iterations"]):
        time.sleep(settings["step_seconds"])
        values.append(step(index))
        atomic_write_text(
            progress_path,
            canonical_json_bytes({"config_hash": cfg_hash, "values": values}).decode(),
        )
        print(f"iteration {index + 1}/{settings['iterations']} value={values[-1]}", flush=True)

    result = {
        "config_hash": cfg_hash,
        "iterations": settings["iterations"],
        "values": values,
        "total": sum(values),
    }
    atomic_write_text(pipeline_root / RESULT_NAME, json.dumps(result, indent=2))
    print(f"done total={result['total']}", flush=True)
    return result


def main() -> int:
    pipeline_root = Path(os.environ.get("PIPEWARDEN_PIPELINE_ROOT", os.getcwd()))
    config_path = Path(
        os.environ.get("PIPEWARDEN_CONFIG_PATH", pipeline_root.parent / "config.bin")
    )
    try:
        raw_config = config_path.read_bytes()
    except FileNotFoundError:
        raw_config = b""
    try:
        with working_directory(pipeline_root):
            run(pipeline_root, raw_config)
    except ValueError as exc:
        print(f"invalid configuration: {exc}", file=sys.stderr, flush=True)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
