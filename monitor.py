# Health + retention supervisors:
#   python monitor.py
import os
import signal
import logging
import threading

from replay_pipeline import create_app
from replay_pipeline.context import ServiceContext

logger = logging.getLogger("replay_pipeline.monitor")


def main():
    context = ServiceContext.of(create_app(os.getenv("FLASK_ENV", "production")))
    scheduler = context.scheduler()
    stop = threading.Event()

    def _shutdown(signum, _frame):
        logger.info(f"{signal.Signals(signum).name} received, closing monitor...")
        stop.set()

    signal.signal(signal.SIGTERM, _shutdown)
    signal.signal(signal.SIGINT, _shutdown)

    try:
        scheduler.run_forever(stop)
    finally:
        context.close()


if __name__ == "__main__":
    main()
