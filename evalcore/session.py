"""
Eval session context.

Ties together the eval, run and test-criteria ids a reviewer is working on.
A session is (re)started when a run is created, re-pointed when an existing
run is opened, and cleared when the user moves on.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from evalcore.logging_config import DebugLogger
from evalcore.models import RunContext

log = DebugLogger("session")


class SessionError(ValueError):
    """The session does not hold the ids an operation needs."""


@dataclass
class EvalSession:
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    eval_id: Optional[str] = None
    run_id: Optional[str] = None
    test_id: Optional[str] = None
    api_key: Optional[str] = None
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

    def start_run(self, eval_id: str, run_id: str) -> None:
        """A new run was created: link it and forget the previous test id."""
        self.eval_id = eval_id
        self.run_id = run_id
        self.test_id = None
        self.touch()
        log.session("start_run", eval_id=eval_id, run_id=run_id)

    def open_run(self, eval_id: Optional[str], run_id: str) -> None:
        """
        Point the session at an existing run.

        eval_id may be omitted when reopening the run already linked.
        """
        if run_id != self.run_id or (eval_id and eval_id != self.eval_id):
            self.test_id = None
        if eval_id:
            self.eval_id = eval_id
        elif run_id != self.run_id:
            self.eval_id = None
        self.run_id = run_id
        self.touch()
        log.session("open_run", eval_id=self.eval_id, run_id=run_id)

    def invalidate(self) -> None:
        self.eval_id = None
        self.run_id = None
        self.test_id = None
        self.touch()
        log.session("invalidate", session=self.session_id[:8])

    def set_api_key(self, api_key: Optional[str]) -> None:
        self.api_key = api_key or None
        self.touch()

    def run_context(self, client, eval_id: Optional[str] = None, run_id: Optional[str] = None) -> RunContext:
        """
        Resolve the eval/run/test triple.

        Explicit ids win over the session's own. The test-criteria id is
        taken from the run's report_url and cached.
        """
        eval_id = eval_id or self.eval_id
        run_id = run_id or self.run_id
        if not eval_id:
            raise SessionError("Evaluation ID not available")
        if not run_id:
            raise SessionError("Run ID not available")

        same_run = eval_id == self.eval_id and run_id == self.run_id
        test_id = self.test_id if same_run else None
        if not test_id:
            details = client.get_run(eval_id, run_id)
            if not details.report_url:
                raise SessionError("No report URL found in run details")
            test_id = details.test_criteria_id
            if not test_id:
                raise SessionError("Could not extract test criteria ID from report URL")
            if same_run:
                self.test_id = test_id
                log.session("test_id", test_id=test_id)

        return RunContext(eval_id=eval_id, run_id=run_id, test_id=test_id)

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "evalId": self.eval_id,
            "runId": self.run_id,
            "testCriteriaId": self.test_id,
            "hasApiKey": bool(self.api_key),
            "updatedAt": self.updated_at.isoformat(),
        }


class SessionStore:
    """
    In-memory sessions keyed by id (one per browser cookie).

    Sessions idle for longer than max_idle are dropped on lookup and whenever
    a new session is created. At max_sessions the least recently used
    session makes room for the new one.
    """

    def __init__(self, max_idle: timedelta = timedelta(hours=24), max_sessions: int = 10000):
        self.max_idle = max_idle
        self.max_sessions = max_sessions
        self._sessions: Dict[str, EvalSession] = {}
        self._lock = threading.Lock()

    def _expired(self, session: EvalSession, now: datetime) -> bool:
        return now - session.updated_at > self.max_idle

    def _prune_locked(self, now: datetime) -> int:
        stale = [sid for sid, s in self._sessions.items() if self._expired(s, now)]
        for sid in stale:
            del self._sessions[sid]
        return len(stale)

    def get(self, session_id: Optional[str]) -> Optional[EvalSession]:
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._expired(session, datetime.now(timezone.utc)):
                del self._sessions[session_id]
                log.session("expired", session=session_id[:8])
                return None
            session.touch()
            return session

    def create(self) -> EvalSession:
        session = EvalSession()
        with self._lock:
            pruned = self._prune_locked(session.updated_at)
            while self._sessions and len(self._sessions) >= self.max_sessions:
                oldest = min(self._sessions.values(), key=lambda s: s.updated_at)
                del self._sessions[oldest.session_id]
                pruned += 1
            self._sessions[session.session_id] = session
        log.session("create", session=session.session_id[:8], evicted=pruned)
        return session

    def get_or_create(self, session_id: Optional[str]) -> EvalSession:
        return self.get(session_id) or self.create()

    def discard(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def prune(self) -> int:
        """Drop idle sessions now; returns how many went."""
        with self._lock:
            return self._prune_locked(datetime.now(timezone.utc))

    def __len__(self) -> int:
        return len(self._sessions)
