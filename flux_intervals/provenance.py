from __future__ import annotations

import contextlib
import dataclasses
import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .utils import ensure_dir

_LEDGER_LOCK = threading.Lock()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclasses.dataclass
class Step:
    name: str
    module: Optional[str] = None
    args: Optional[Dict[str, Any]] = None
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    error: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


class ReplicateProvenance:
    """Captures what happened to one bootstrap replicate and appends it to a JSONL ledger.

    With ``ledger_path=None`` the record is only kept in memory (``to_dict``).
    """

    def __init__(
        self,
        *,
        ledger_path: Optional[Path],
        replicate: int,
        run_id: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.ledger_path = Path(ledger_path) if ledger_path else None
        self.replicate = int(replicate)
        self.run_id = run_id
        self.created_at = _now_iso()
        self.parameters = parameters or {}
        self.schema_version = "1"
        self.steps: List[Step] = []
        self.status: Optional[str] = None
        self.error: Optional[str] = None
        self.columns: Optional[List[int]] = None
        self._finalized = False

    @contextlib.contextmanager
    def step(
        self,
        name: str,
        *,
        module: Optional[str] = None,
        args: Optional[Dict[str, Any]] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        st = Step(name=name, module=module, args=args, started_at=_now_iso(), extra=extra)
        self.steps.append(st)
        try:
            yield st
        except Exception as e:
            st.error = f"{type(e).__name__}: {e}"
            raise
        finally:
            st.ended_at = _now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "run_id": self.run_id,
            "replicate": self.replicate,
            "created_at": self.created_at,
            "parameters": self.parameters,
            "steps": [dataclasses.asdict(s) for s in self.steps],
            "status": self.status,
            "error": self.error,
            "columns": self.columns,
        }

    def finalize(
        self,
        *,
        success: bool,
        error: Optional[str] = None,
        columns: Optional[List[int]] = None,
        additional_fields: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        if self._finalized:
            return self.to_dict()
        self._finalized = True
        self.status = "success" if success else "discarded"
        self.error = error
        self.columns = columns
        rec = self.to_dict()
        if additional_fields:
            rec.update(additional_fields)
        if self.ledger_path is not None:
            ensure_dir(self.ledger_path.parent)
            line = json.dumps(rec, ensure_ascii=False, default=str) + "\n"
            with _LEDGER_LOCK:
                with self.ledger_path.open("a", encoding="utf-8") as f:
                    f.write(line)
        return rec
