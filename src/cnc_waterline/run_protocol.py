"""Per-invocation run folders for the analysis and G-code scripts.

Layout::

    <runs_root>/<run_id>/
        input/<mesh>.stl       copy of the STL that was processed
        artifacts/<artifact>   files named by :class:`Artifact`
        run.json               tool, config, input hash, results, artifact paths
    <runs_root>/latest         symlink (or name file) to the newest run
"""

from __future__ import annotations

import hashlib
import json
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union

RUN_RECORD = "run.json"
LATEST = "latest"


class Artifact(Enum):
    """Files a run can produce; the value is the file name."""

    ANALYSIS = "analysis.json"
    PREPARED_MESH = "prepared.stl"
    PROGRAM = "program.nc"
    REPORT = "report.md"


@dataclass
class RunFolder:
    run_id: str
    root: Path
    input_mesh: Path
    mesh_sha256: str
    written: Dict[Artifact, Path] = field(default_factory=dict)

    @property
    def artifacts_dir(self) -> Path:
        return self.root / "artifacts"

    def path(self, artifact: Artifact) -> Path:
        return self.artifacts_dir / artifact.value

    def write(self, artifact: Artifact, content: Union[str, bytes, Dict[str, Any]]) -> Path:
        """Store one artifact. Dicts become JSON, bytes are written raw."""
        target = self.path(artifact)
        if isinstance(content, bytes):
            target.write_bytes(content)
        elif isinstance(content, dict):
            target.write_text(json.dumps(content, indent=2), encoding="utf-8")
        else:
            target.write_text(content, encoding="utf-8")
        self.written[artifact] = target
        return target

    def finish(self, tool: str, config: Dict[str, Any], results: Dict[str, Any]) -> Path:
        """Write ``run.json`` and move the ``latest`` pointer here."""
        record = {
            "run_id": self.run_id,
            "tool": tool,
            "created_utc": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "input_mesh": str(self.input_mesh),
            "mesh_sha256": self.mesh_sha256,
            "config": config,
            "results": results,
            "artifacts": {a.name.lower(): str(p) for a, p in self.written.items()},
        }
        path = self.root / RUN_RECORD
        path.write_text(json.dumps(record, indent=2), encoding="utf-8")
        _point_latest(self.root)
        return path


def open_run(runs_root: Union[str, Path], name: str, mesh_path: Union[str, Path]) -> RunFolder:
    """Create a fresh run folder holding a hashed copy of *mesh_path*."""
    source = Path(mesh_path)
    if not source.is_file():
        raise FileNotFoundError(f"Mesh file not found: {source}")
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    run_id = f"{stamp}_{_slug(name)}"
    Path(runs_root).mkdir(parents=True, exist_ok=True)
    root = Path(runs_root) / run_id
    suffix = 1
    while True:
        try:
            root.mkdir()
            break
        except FileExistsError:
            suffix += 1
            root = Path(runs_root) / f"{run_id}-{suffix}"
    run_id = root.name
    (root / "input").mkdir()
    (root / "artifacts").mkdir()

    copied = root / "input" / source.name
    shutil.copy2(source, copied)
    return RunFolder(run_id=run_id, root=root, input_mesh=copied, mesh_sha256=_sha256(copied))


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.strip().lower()).strip("-") or "run"


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 20), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _point_latest(run_dir: Path) -> None:
    latest = run_dir.parent / LATEST
    if latest.is_symlink() or latest.is_file():
        latest.unlink()
    elif latest.is_dir():
        shutil.rmtree(latest)
    try:
        latest.symlink_to(run_dir.name, target_is_directory=True)
    except OSError:
        latest.write_text(run_dir.name + "\n", encoding="utf-8")
