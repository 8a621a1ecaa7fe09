from celery import Celery

from tenant_billing.scheduler_config import build_beat_schedule, get_celery_config

celery_app = Celery("tenant_billing")
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()
celery_app.conf.task_acks_late = True
celery_app.conf.imports = ("tenant_billing.tasks",)
