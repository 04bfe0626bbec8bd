"""
Run status polling.

The evaluation service has no push channel, so progress is followed by
re-fetching the run at a fixed interval until it reaches a terminal status.
Stopping only ends the local loop; the run keeps going on the service.
"""

import threading
from typing import Callable, Optional

from evalcore.client import EvalServiceClient, ExternalServiceError
from evalcore.logging_config import DebugLogger
from evalcore.models import RunDetails

log = DebugLogger("polling")

DEFAULT_POLL_INTERVAL = 10.0


class RunMonitor:
    """
    Poll one run until it completes, fails or the monitor is stopped.

    Args:
        client: Evaluation service client
        eval_id / run_id: Run to follow
        interval: Seconds between fetches (fixed, no backoff)
        on_update: Called with (details, changed) after every fetch
    """

    def __init__(self, client: EvalServiceClient, eval_id: str, run_id: str,
                 interval: float = DEFAULT_POLL_INTERVAL,
                 on_update: Optional[Callable[[RunDetails, bool], None]] = None):
        self.client = client
        self.eval_id = eval_id
        self.run_id = run_id
        self.interval = interval
        self.on_update = on_update
        self.last: Optional[RunDetails] = None
        self.errors = 0
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def poll_once(self) -> RunDetails:
        """Fetch the run once and report status changes."""
        details = self.client.get_run(self.eval_id, self.run_id)
        changed = self.last is None or self.last.status != details.status

        if changed:
            if details.status == "in_progress":
                log.info(f"Run {details.id} is in progress...")
            elif details.status == "completed":
                log.info(f"Run {details.id} completed successfully! Results: {details.summary()}")
            elif details.status == "failed":
                log.warning(f"Run {details.id} failed. Error: {details.error or 'Unknown error'}")

        self.last = details
        if self.on_update:
            self.on_update(details, changed)
        return details

    def run(self, max_polls: Optional[int] = None) -> Optional[RunDetails]:
        """
        Block until the run is terminal.

        Returns the terminal details, or the last seen details when stopped
        (or when max_polls is reached) first.
        """
        polls = 0
        while not self._stop.is_set():
            try:
                details = self.poll_once()
                if details.is_terminal:
                    log.info("Polling stopped - run is in final state")
                    return details
            except ExternalServiceError as e:
                self.errors += 1
                log.error(f"Error fetching run details for {self.run_id}", e)

            polls += 1
            if max_polls is not None and polls >= max_polls:
                break
            self._stop.wait(self.interval)

        return self.last
