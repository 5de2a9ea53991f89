from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Optional, Sequence

ERROR_STAGE_FETCH = "fetch"
ERROR_STAGE_VIN = "vin_validation"
ERROR_STAGE_HISTORY = "history_check"
ERROR_STAGE_STORE = "store"
ERROR_STAGE_LOG = "log"
ERROR_STAGE_PIPELINE = "pipeline"


class PipelineStage(str, Enum):
    STARTED = "started"
    FETCHED = "fetched"
    HARD_FILTERED = "hard_filtered"
    VIN_VALIDATED = "vin_validated"
    HISTORY_CHECKED = "history_checked"
    SCORED = "scored"
    DEDUPED = "deduped"
    STORED = "stored"
    LOGGED = "logged"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class RunError:
    stage: str
    message: str
    vin: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"stage": self.stage, "message": self.message}
        if self.vin:
            data["vin"] = self.vin
        return data


@dataclass
class RunSummary:
    """Audit record of one pipeline invocation.

    Counters are filled in stage by stage; :meth:`finalize` stamps the terminal
    status and locks the object, after which any assignment raises.
    """

    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    status: RunStatus = RunStatus.RUNNING
    stage: PipelineStage = PipelineStage.STARTED
    incomplete: bool = False
    source_name: Optional[str] = None
    fetched: int = 0
    passed_hard_filter: int = 0
    passed_vin_validation: int = 0
    passed_history_check: int = 0
    stored: int = 0
    updated: int = 0
    duplicates_skipped: int = 0
    api_calls: int = 0
    api_cost_usd: float = 0.0
    rejections: Dict[str, int] = field(default_factory=dict)
    errors: Sequence[RunError] = field(default_factory=list)
    _finalized: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_finalized", False):
            raise AttributeError(f"RunSummary {self.run_id} is finalized; cannot set {name}")
        super().__setattr__(name, value)

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def execution_time_ms(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def advance(self, stage: PipelineStage) -> None:
        self.stage = stage

    def record_rejection(self, rule: str) -> None:
        self._ensure_open()
        self.rejections[rule] = self.rejections.get(rule, 0) + 1

    def record_error(self, stage: str, message: str, vin: Optional[str] = None) -> RunError:
        self._ensure_open()
        error = RunError(stage=stage, message=message, vin=vin)
        self.errors.append(error)
        return error

    def finalize(self, status: RunStatus, *, incomplete: bool = False) -> "RunSummary":
        self._ensure_open()
        self.status = status
        self.incomplete = incomplete
        self.completed_at = datetime.now(timezone.utc)
        self.errors = tuple(self.errors)
        self.rejections = MappingProxyType(dict(self.rejections))
        super().__setattr__("_finalized", True)
        return self

    def _ensure_open(self) -> None:
        if self._finalized:
            raise AttributeError(f"RunSummary {self.run_id} is finalized")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": RunStatus(self.status).value,
            "stage": PipelineStage(self.stage).value,
            "incomplete": self.incomplete,
            "source": self.source_name,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "execution_time_ms": self.execution_time_ms,
            "stats": {
                "fetched": self.fetched,
                "passed_hard_filter": self.passed_hard_filter,
                "passed_vin_validation": self.passed_vin_validation,
                "passed_history_check": self.passed_history_check,
                "stored": self.stored,
                "updated": self.updated,
                "duplicates_skipped": self.duplicates_skipped,
                "errors": self.error_count,
                "api_calls": self.api_calls,
            },
            "rejections": dict(self.rejections),
            "errors": [error.to_dict() for error in self.errors],
        }

