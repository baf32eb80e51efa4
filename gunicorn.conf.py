# gunicorn.conf.py
import multiprocessing
import os

# import path to the app factory (PYTHONPATH=/app/src in the container)
wsgi_app = "PACE.main:create_app"
factory = True

# networking
host = os.getenv("HOST", "0.0.0.0")
port = int(os.getenv("PORT", "8000"))
bind = f"{host}:{port}"

# workers; each worker builds its own engine and catalog cache in the app lifespan
workers = int(os.getenv("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_tmp_dir = "/dev/shm"

# timeouts; reconciliation jobs over HTTP can run long on big stores
timeout = int(os.getenv("GUNICORN_TIMEOUT", "120"))
graceful_timeout = int(os.getenv("GUNICORN_GRACEFUL_TIMEOUT", "30"))
keepalive = int(os.getenv("GUNICORN_KEEPALIVE", "5"))

# logging
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
capture_output = True

max_requests = int(os.getenv("GUNICORN_MAX_REQUESTS", "1000"))
max_requests_jitter = int(os.getenv("GUNICORN_MAX_REQUESTS_JITTER", "100"))

LOG_FMT = "%(asctime)s %(levelname)s %(name)s %(message)s %(process)d %(module)s"
logconfig_dict = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.jsonlogger.JsonFormatter",
            "fmt": LOG_FMT,
        }
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "stream": "ext://sys.stdout",
        }
    },
    "root": {"level": os.getenv("LOG_LEVEL", "INFO").upper(), "handlers": ["console"]},
    "loggers": {
        "gunicorn.error":  {"level": "INFO", "handlers": ["console"], "propagate": False},
        "gunicorn.access": {"level": "INFO", "handlers": ["console"], "propagate": False},
        "uvicorn.error":   {"level": "INFO", "handlers": ["console"], "propagate": False},
        "uvicorn.access":  {"level": "INFO", "handlers": ["console"], "propagate": False},
    },
}
