from .celery_app import TASK_NAMESPACE, celery_app

__all__ = ["TASK_NAMESPACE", "celery_app"]
