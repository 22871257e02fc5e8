"""
Gunicorn configuration for the ledger service.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Ledger writes are short row-locked transactions; sync workers keep one
# DB session per request.
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'loyalty-ledger'

# Preload so the scheduler starts once in the master process
preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting loyalty ledger...")


def on_exit(server):
    print("[Gunicorn] Loyalty ledger shutting down...")
