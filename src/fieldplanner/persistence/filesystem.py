"""Plan run archive on the local filesystem.

Runs are grouped by the first date of their horizon::

    <data_root>/plans/<from_date>/<label>_<timestamp>/
        summary.json
        routes.csv
        manifest.json

Files are written to a temporary name and moved into place, and the manifest is
written last, so a run directory without a manifest is an incomplete run.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..config import settings

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
SUMMARY_NAME = "summary.json"
ROUTES_NAME = "routes.csv"


def slugify(label: str | None) -> str:
    slug = re.sub(r"[^A-Za-z0-9]+", "-", label or "").strip("-").lower()
    return slug or "plan"


class PlanRunStore:
    """Archive of persisted planning passes below ``<data_root>/plans``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.plans_root = self.root / "plans"
        self.plans_root.mkdir(parents=True, exist_ok=True)

    def create_run(self, from_date: date, label: str | None = None) -> Path:
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
        path = self.plans_root / from_date.isoformat() / f"{slugify(label)}_{timestamp}"
        path.mkdir(parents=True, exist_ok=False)
        return path

    def save_run(self, run_dir: Path, summary: dict[str, Any], routes_csv: str) -> Path:
        """Write the summary and route table, then seal the run with its manifest."""
        self._write_atomic(run_dir / SUMMARY_NAME, json.dumps(summary, ensure_ascii=False, indent=2, default=str))
        self._write_atomic(run_dir / ROUTES_NAME, routes_csv)
        manifest = {
            "from_date": summary.get("from_date"),
            "days": summary.get("days"),
            "written_at": datetime.now(timezone.utc).isoformat(),
            "files": [self._describe(run_dir / name) for name in (SUMMARY_NAME, ROUTES_NAME)],
        }
        self._write_atomic(run_dir / MANIFEST_NAME, json.dumps(manifest, indent=2))
        logger.info(f"Persisted plan run {run_dir.name} for {manifest['from_date']}")
        return run_dir

    def list_runs(self, from_date: date | None = None) -> list[Path]:
        """Completed runs, oldest first; incomplete directories are skipped."""
        if from_date is not None:
            candidates = (self.plans_root / from_date.isoformat()).glob("*")
        else:
            candidates = self.plans_root.glob("*/*")
        runs = [path for path in candidates if (path / MANIFEST_NAME).is_file()]
        return sorted(runs, key=lambda path: (path.parent.name, path.name.rsplit("_", 1)[-1]))

    def latest_run(self, from_date: date | None = None) -> Optional[Path]:
        runs = self.list_runs(from_date)
        return runs[-1] if runs else None

    def load_summary(self, run_dir: Path) -> dict[str, Any]:
        if not (run_dir / MANIFEST_NAME).is_file():
            raise FileNotFoundError(f"Plan run {run_dir} has no manifest; it was never completed.")
        with (run_dir / SUMMARY_NAME).open("r", encoding="utf-8") as handle:
            return json.load(handle)

    @staticmethod
    def _describe(path: Path) -> dict[str, Any]:
        payload = path.read_bytes()
        return {"name": path.name, "bytes": len(payload), "sha256": hashlib.sha256(payload).hexdigest()}

    @staticmethod
    def _write_atomic(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        partial = path.with_name(f".{path.name}.partial")
        with partial.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        os.replace(partial, path)
