"""Run the background task worker as a standalone process."""

import logging
import time

from growi_api.config import settings
from growi_api.services.task_worker import task_worker


def main() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    requeued = task_worker.requeue_stale()
    if requeued:
        logging.getLogger(__name__).info(f"Requeued {requeued} stale task(s)")
    task_worker.start()
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        task_worker.stop()


if __name__ == "__main__":
    main()
