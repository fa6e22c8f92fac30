"""
Gunicorn Configuration for the LinguaLink settlement webhook server
Uvicorn workers serving webhook_server:app
"""
import logging
import os
import sys

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '8000')}"
backlog = 1024

# Worker processes - each worker owns its own rate cache and cooldown tracker
workers = int(os.getenv("WEB_CONCURRENCY", "2"))
worker_class = "uvicorn.workers.UvicornWorker"
max_requests = 10000
max_requests_jitter = 1000
timeout = 60  # Provider calls time out after 30s
keepalive = 30

wsgi_app = "webhook_server:app"

# Logging
accesslog = "-"
errorlog = "-"
loglevel = "info"

proc_name = "lingualink_settlement"

preload_app = False


def on_starting(server):
    """Called just before the master process is initialized."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    print("🚀 Gunicorn master process starting...")


def when_ready(server):
    """Called just after the server is started."""
    print(f"✅ Gunicorn ready with {workers} uvicorn workers on {bind}")


def post_fork(server, worker):
    """Called just after a worker has been forked."""
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    print(f"🔧 Worker {worker.pid} started")


def worker_exit(server, worker):
    """Called just after a worker has been exited."""
    print(f"👋 Worker {worker.pid} exited")
