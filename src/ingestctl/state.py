"""
Per-domain state persistence for setup runs.

Each deployment domain owns one JSON record holding two sections:
- ``values``: string facts collected or produced by workflow steps
  (``PROJECT_ID``, ``ADMIN_EMAIL``, ``ENABLE_TELEGRAM`` ...)
- ``steps``: completion records consumed by ``ingestctl.ledger.StepLedger``

Every mutation is a read-modify-write of the whole record, written to a
temporary file in the same directory and renamed into place, so a crash
never leaves a partial record. Concurrent runs for the same domain are not
coordinated.

Records live at ``<state_dir>/<domain>.json``.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ingestctl.errors import StorageError, UserInputError
from ingestctl.naming import is_valid_domain, normalize_domain

__all__ = [
    "StepStatus",
    "StepRecord",
    "DeploymentRecord",
    "StateStore",
    "atomic_write_json",
]

logger = logging.getLogger(__name__)

RECORD_VERSION = 1


def atomic_write_json(path: Path, data: Any) -> None:
    """
    Write JSON to ``path`` through a temp file in the same directory.

    Permissions are 600 (owner read/write only).

    Raises:
        StorageError: The directory or file is not writable
    """
    temp_path = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)

        os.chmod(temp_path, 0o600)
        os.replace(temp_path, path)
    except OSError as e:
        if temp_path and os.path.exists(temp_path):
            os.unlink(temp_path)
        raise StorageError(f"Cannot write {path}: {e}", path=str(path)) from e


class StepStatus(str, Enum):
    """Status values for workflow steps."""
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_state_value(value: Any) -> str:
    """Stored form of a value: booleans as true/false, None as empty."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def is_true(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("true", "1", "yes")


@dataclass
class StepRecord:
    """Outcome of the last attempt of a single workflow step."""
    step_id: str
    status: StepStatus = StepStatus.COMPLETED
    recorded_at: str = field(default_factory=_now)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "status": self.status.value,
            "recorded_at": self.recorded_at,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepRecord":
        return cls(
            step_id=data["step_id"],
            status=StepStatus(data.get("status", "completed")),
            recorded_at=data.get("recorded_at") or _now(),
            error=data.get("error"),
        )


@dataclass
class DeploymentRecord:
    """Complete persisted state of one deployment domain."""
    domain: str
    version: int = RECORD_VERSION
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    values: Dict[str, str] = field(default_factory=dict)
    steps: Dict[str, StepRecord] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "version": self.version,
            "domain": self.domain,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "values": dict(self.values),
            "steps": {k: v.to_dict() for k, v in self.steps.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentRecord":
        """Create from dictionary."""
        steps = {
            k: StepRecord.from_dict(v)
            for k, v in data.get("steps", {}).items()
        }
        return cls(
            domain=data["domain"],
            version=data.get("version", RECORD_VERSION),
            created_at=data.get("created_at", _now()),
            updated_at=data.get("updated_at", _now()),
            values={str(k): str(v) for k, v in data.get("values", {}).items()},
            steps=steps,
        )


class StateStore:
    """
    Key-value store of string facts, one atomic JSON record per domain.

    Args:
        state_dir: Directory holding the records. Defaults to the configured
            ``state_dir``.
    """

    def __init__(self, state_dir: Optional[Path] = None):
        if state_dir is None:
            from ingestctl.config import get_config
            state_dir = get_config().get_state_path()
        self.state_dir = Path(state_dir)

    def path_for(self, domain: str) -> Path:
        domain = normalize_domain(domain)
        if not is_valid_domain(domain):
            raise UserInputError(f"Invalid deployment domain: {domain!r}")
        return self.state_dir / f"{domain}.json"

    def exists(self, domain: str) -> bool:
        return self.path_for(domain).exists()

    def load(self, domain: str) -> DeploymentRecord:
        """
        Load the record for a domain.

        Returns:
            DeploymentRecord, empty if no record exists yet.
        """
        path = self.path_for(domain)
        if not path.exists():
            return DeploymentRecord(domain=normalize_domain(domain))

        try:
            with open(path, "r") as f:
                data = json.load(f)
            return DeploymentRecord.from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError):
            logger.warning("Corrupted state record %s, starting from empty state", path)
            return DeploymentRecord(domain=normalize_domain(domain))
        except OSError as e:
            raise StorageError(f"Cannot read state record {path}: {e}", path=str(path)) from e

    def save(self, record: DeploymentRecord) -> None:
        """
        Write a record atomically.

        Uses temporary file + rename so a crash never leaves a partial
        record. Sets file permissions to 600 (owner read/write only).
        """
        record.updated_at = _now()
        atomic_write_json(self.path_for(record.domain), record.to_dict())

    def put(self, domain: str, key: str, value: Any) -> None:
        """Upsert one key. Values are stored as strings."""
        self.update(domain, {key: value})

    def update(self, domain: str, values: Mapping[str, Any]) -> None:
        """Upsert several keys in one atomic write."""
        record = self.load(domain)
        for key, value in values.items():
            record.values[key] = to_state_value(value)
        self.save(record)

    def get(self, domain: str, key: str, default: Optional[str] = None) -> Optional[str]:
        """Stored value for ``key``, or ``default`` when absent."""
        return self.load(domain).values.get(key, default)

    def snapshot(self, domain: str) -> Dict[str, str]:
        return dict(self.load(domain).values)

    def clear(self, domain: str) -> bool:
        """
        Remove the whole record (values and step records).

        Returns:
            True if a record was removed, False if none existed.
        """
        path = self.path_for(domain)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Cannot remove state record {path}: {e}", path=str(path)) from e
        logger.debug("Cleared state record %s", path)
        return True
