from celery import Celery
import os
from utils.logging_config import init_worker_logging

CELERY_BROKER_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

celery_app = Celery(
	"docsflip",
	broker=CELERY_BROKER_URL,
	backend=CELERY_BROKER_URL,
	include=["tasks.celery_tasks"],
)

celery_app.conf.update(
	task_serializer="json",
	accept_content=["json"],
	result_serializer="json",
	# Run tasks inline (tests, single-process development)
	task_always_eager=os.getenv("CELERY_TASK_ALWAYS_EAGER", "0") == "1",
	task_eager_propagates=True,
	# A conversion is not retried by redelivery; the reconcile sweep handles stuck documents
	task_acks_late=False,
	worker_prefetch_multiplier=1,
	beat_schedule={
		"reconcile-stale-conversions": {
			"task": "tasks.reconcile_stale_conversions",
			"schedule": float(os.getenv("RECONCILE_INTERVAL_SECONDS", "300")),
		},
	},
)

# Initialize logging for worker
init_worker_logging()
