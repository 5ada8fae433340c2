"""
Local state as JSON snapshots: the Job Store and per-requester conversations.

Both files are rewritten wholesale on every change (write to a temp file, then
rename). Disk errors propagate to the caller.
"""

import hashlib
import json
import os
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from bsvclaw.errors import ConversationBusyError
from bsvclaw.logging_config import get_logger
from bsvclaw.schema import (
    ConversationEntry,
    FailedJob,
    JobSummary,
    SettledJob,
    job_record_from_dict,
    job_record_to_dict,
)

logger = get_logger(__name__)

AnyJob = Union[SettledJob, FailedJob]


def _read_json_list(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} does not hold a JSON array")
    return data


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, indent=2), encoding="utf-8")
    os.replace(tmp, path)


class JobStore:
    """
    Append-only record of processed jobs, keyed by request txid.

    The key set is exactly the set of request txids already handled: a
    settled or failed record means the job is never processed again.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def load(self) -> List[AnyJob]:
        with self._lock:
            return [job_record_from_dict(d) for d in _read_json_list(self.path)]

    def get(self, request_txid: str) -> Optional[AnyJob]:
        for record in self.load():
            if record.request_txid == request_txid:
                return record
        return None

    def contains(self, request_txid: str) -> bool:
        return self.get(request_txid) is not None

    def txids(self) -> List[str]:
        return [r.request_txid for r in self.load()]

    def append(self, record: AnyJob) -> bool:
        """Add a record. Returns False (and writes nothing) if the txid is already recorded."""
        with self._lock:
            raw = _read_json_list(self.path)
            if any(d.get("jobTxid") == record.request_txid for d in raw):
                logger.info(f"Job {record.request_txid[:16]}... already recorded, skipping")
                return False
            raw.append(job_record_to_dict(record))
            _write_json(self.path, raw)
            return True

    def recent(self, limit: int = 50) -> List[AnyJob]:
        """Most recent first."""
        return list(reversed(self.load()))[:limit]

    def summary(self) -> JobSummary:
        s = JobSummary()
        for record in self.load():
            s.total += 1
            s.total_received += record.sats_received
            s.total_earned += record.sats_kept
            if isinstance(record, SettledJob):
                s.settled += 1
            elif isinstance(record, FailedJob):
                s.failed += 1
        return s


def requester_key(requester: str, salt: str = "") -> str:
    """Directory name for a requester: salted sha256, never the raw address."""
    return hashlib.sha256(f"{salt}{requester}".encode("utf-8")).hexdigest()[:16]


def build_context_prompt(history: List[ConversationEntry], new_prompt: str, limit: int = 5) -> str:
    """
    Prompt with the last `limit` completed exchanges as context, oldest first,
    followed by the new prompt. No history means the bare prompt.
    """
    completed = [e for e in history if not e.pending]
    recent = completed[-limit:] if limit > 0 else []
    if not recent:
        return new_prompt
    context = "Previous conversation:\n"
    for msg in recent:
        context += f"User: {msg.prompt}\nAssistant: {msg.result or ''}\n"
    context += f"\nUser: {new_prompt}"
    return context


class ConversationStore:
    """
    Ordered prompt/result history per requester.

    At most one entry per requester is pending at a time: begin() appends it,
    complete() replaces it in place, abandon() removes it.
    """

    def __init__(self, root: Path, salt: str = ""):
        self.root = Path(root)
        self.salt = salt
        self._lock = threading.RLock()

    def _file(self, requester: str) -> Path:
        return self.root / requester_key(requester, self.salt) / "history.json"

    def load(self, requester: str) -> List[ConversationEntry]:
        with self._lock:
            return [ConversationEntry.model_validate(d) for d in _read_json_list(self._file(requester))]

    def _save(self, requester: str, history: List[ConversationEntry]) -> None:
        _write_json(self._file(requester), [e.model_dump(by_alias=True) for e in history])

    def recent(self, requester: str, limit: int = 5) -> List[ConversationEntry]:
        completed = [e for e in self.load(requester) if not e.pending]
        return completed[-limit:] if limit > 0 else []

    def pending(self, requester: str) -> Optional[ConversationEntry]:
        for entry in self.load(requester):
            if entry.pending:
                return entry
        return None

    def begin(self, requester: str, prompt: str) -> ConversationEntry:
        with self._lock:
            history = self.load(requester)
            if any(e.pending for e in history):
                raise ConversationBusyError(requester_key(requester, self.salt))
            entry = ConversationEntry(prompt=prompt, pending=True)
            history.append(entry)
            self._save(requester, history)
            return entry

    def complete(
        self,
        requester: str,
        result: str,
        job_txid: Optional[str] = None,
        res_txid: Optional[str] = None,
    ) -> ConversationEntry:
        with self._lock:
            history = self.load(requester)
            for i, entry in enumerate(history):
                if entry.pending:
                    done = entry.model_copy(
                        update={"result": result, "job_txid": job_txid, "res_txid": res_txid, "pending": False}
                    )
                    history[i] = done
                    self._save(requester, history)
                    return done
            raise LookupError(f"No pending exchange for requester {requester_key(requester, self.salt)}")

    def abandon(self, requester: str) -> None:
        with self._lock:
            history = self.load(requester)
            kept = [e for e in history if not e.pending]
            if len(kept) != len(history):
                self._save(requester, kept)
