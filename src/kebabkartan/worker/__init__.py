"""Rating queue consumer."""

from kebabkartan.worker.rating_worker import RatingWorker, WorkerIteration, WorkerStats, supervise

__all__ = [
    "RatingWorker",
    "WorkerIteration",
    "WorkerStats",
    "supervise",
]
