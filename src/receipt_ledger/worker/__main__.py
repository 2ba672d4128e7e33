from __future__ import annotations

import signal
import threading

from receipt_ledger.bootstrap import bootstrap
from receipt_ledger.core.logging import get_logger, log_event
from receipt_ledger.worker.consumer import QueueWorker

logger = get_logger("receipt_ledger.worker")


def main() -> None:
    bootstrap()
    stop_event = threading.Event()

    def _request_stop(signum, _frame) -> None:
        log_event(logger, "worker.signal", signal=signal.Signals(signum).name)
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    QueueWorker().run(stop_event)


if __name__ == "__main__":
    main()
