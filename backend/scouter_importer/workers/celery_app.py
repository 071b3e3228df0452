"""Celery application for background import runs."""

import ssl

from celery import Celery

from scouter_importer.core.config import get_settings
from scouter_importer.utils.redis_client import is_tls_url, normalize_redis_url

settings = get_settings()

IMPORT_QUEUE = "imports"


def _with_ssl_param(url: str) -> str:
    # The Redis result backend reads TLS options from the URL during init
    if "ssl_cert_reqs" in url:
        return url
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}ssl_cert_reqs=none"


broker_url = normalize_redis_url(settings.celery_broker_url or settings.redis_url)
backend_url = normalize_redis_url(settings.celery_result_url or settings.redis_url)
is_ssl = is_tls_url(broker_url) or is_tls_url(backend_url)
if is_ssl:
    broker_url = _with_ssl_param(broker_url)
    backend_url = _with_ssl_param(backend_url)

celery_app = Celery(
    "scouter_importer",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    # A redelivered run finds the job still processing and continues from its checkpoint
    "task_acks_late": True,
    "task_reject_on_worker_lost": True,
    "worker_prefetch_multiplier": 1,
    # The timeout guard pauses at timeout_threshold_ratio of the window, before either limit
    "task_time_limit": settings.max_execution_seconds,
    "task_soft_time_limit": settings.celery_soft_time_limit,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "result_backend_always_retry": True,
    "result_backend_max_retries": 3,
    "task_default_queue": IMPORT_QUEUE,
    "task_routes": {
        "scouter_importer.workers.tasks.process_import": {"queue": IMPORT_QUEUE},
    },
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["result_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = ssl_dict.copy()
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)

# Registers the tasks with celery_app
from scouter_importer.workers.tasks import import_leads  # noqa: E402,F401
