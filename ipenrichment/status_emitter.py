"""Utilities for publishing enrichment job progress to status files."""

from __future__ import annotations

import json
import threading
from dataclasses import fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping

_DEFAULT_STATUS_DIR = Path.home() / ".cache" / "ipenrichment" / "status"


def _to_dict(obj: Any) -> Dict[str, Any]:
    if is_dataclass(obj) and not isinstance(obj, type):
        result = _normalize({field.name: getattr(obj, field.name) for field in fields(obj)})
    elif isinstance(obj, Mapping):
        result = _normalize(dict(obj))
    elif hasattr(obj, "__dict__"):
        result = _normalize(dict(obj.__dict__))
    else:
        raise TypeError(f"Unsupported object type for status serialization: {type(obj)!r}")
    return result if isinstance(result, dict) else {}


class StatusEmitter:
    """Writes job progress to JSON files consumable by external monitors.

    Each emitter owns ``<status_dir>/<phase>.json`` and, unless disabled,
    merges its snapshot into the shared ``status.json``. Both files are
    replaced atomically (write to ``.tmp`` then rename).
    """

    def __init__(
        self,
        phase: str,
        status_dir: str | Path | None = None,
        *,
        aggregate: bool = True,
    ) -> None:
        self.phase = phase
        self.status_dir = Path(status_dir) if status_dir else _DEFAULT_STATUS_DIR
        self.status_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.status_dir / f"{phase}.json"
        self._aggregate_enabled = aggregate
        self._aggregate_path = self.status_dir / "status.json"
        self._lock = threading.Lock()
        self._state: Dict[str, Any] = {
            "phase": phase,
            "job_id": None,
            "status": None,
            "last_updated": None,
            "metrics": {},
            "checkpoint": {},
        }

    def record_metrics(self, metrics: Any) -> None:
        """Persist the latest pipeline metrics snapshot."""
        with self._lock:
            metrics_dict = _enhance_metrics(_to_dict(metrics))
            if metrics_dict.get("job_id") is not None:
                self._state["job_id"] = metrics_dict["job_id"]
            self._state["metrics"] = metrics_dict
            self._state["last_updated"] = datetime.now(UTC).isoformat()
            self._write_state()

    def record_checkpoint(self, checkpoint: Any) -> None:
        """Update the emitted status with the latest durable batch checkpoint."""
        with self._lock:
            self._state["checkpoint"] = _to_dict(checkpoint)
            self._state["last_updated"] = datetime.now(UTC).isoformat()
            self._write_state()

    def record_job(self, job: Any) -> None:
        """Record the job's current status and error."""
        with self._lock:
            self._state["job_id"] = getattr(job, "id", self._state["job_id"])
            self._state["status"] = _normalize(getattr(job, "status", None))
            self._state["error"] = getattr(job, "error", None)
            self._state["last_updated"] = datetime.now(UTC).isoformat()
            self._write_state()

    def _write_state(self) -> None:
        tmp_path = self.path.with_suffix(".tmp")
        payload = json.dumps(self._state, separators=(",", ":"))
        tmp_path.write_text(payload, encoding="utf-8")
        tmp_path.replace(self.path)
        if self._aggregate_enabled:
            self._update_aggregate()

    def _update_aggregate(self) -> None:
        """Update the consolidated status file with the current phase snapshot."""
        aggregate_snapshot = {
            "phase": self.phase,
            "job_id": self._state.get("job_id"),
            "status": self._state.get("status"),
            "last_updated": self._state.get("last_updated"),
            "metrics": self._state.get("metrics", {}),
            "checkpoint": self._state.get("checkpoint", {}),
            "status_file": self.path.name,
        }

        try:
            current = json.loads(self._aggregate_path.read_text(encoding="utf-8"))
        except (FileNotFoundError, json.JSONDecodeError):
            current = {}

        phases = current.get("phases", {})
        phases[self.phase] = aggregate_snapshot
        aggregate = {
            "last_updated": datetime.now(UTC).isoformat(),
            "phases": phases,
        }

        aggregate_tmp = self._aggregate_path.with_suffix(".tmp")
        aggregate_tmp.write_text(json.dumps(aggregate, separators=(",", ":")), encoding="utf-8")
        aggregate_tmp.replace(self._aggregate_path)


def _normalize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize(val) for key, val in value.items()}
    return value


def _enhance_metrics(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """Add derived telemetry fields to metrics dictionaries."""
    duration = metrics.get("duration_seconds") or 0
    processed = metrics.get("rows_processed")
    if duration and duration > 0 and processed is not None:
        metrics["rows_per_second"] = round((processed or 0) / duration, 2)

    if processed:
        failed = metrics.get("rows_failed") or 0
        metrics["failure_rate"] = round(failed / processed, 4)

    return metrics


__all__ = ["StatusEmitter"]
