"""Background processes for tenant deletion.

- ``celery_app``: Celery application and beat schedule
- ``tasks.deletion``: periodic claim cycle that drives approved deletions
- ``deletion_worker``: standalone worker pool for running without Celery
"""

__all__: list[str] = []
