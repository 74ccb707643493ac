import os

# gunicorn -c gunicorn_config.py "app:create_app()"

port = int(os.environ.get('PORT', 5000))
bind = f'0.0.0.0:{port}'

workers = int(os.environ.get('WEB_CONCURRENCY', 2))
worker_class = 'sync'

loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
accesslog = '-'
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s"'
errorlog = '-'
capture_output = True

# Uploads up to MAX_UPLOAD_MB can be slow on school networks
timeout = int(os.environ.get('GUNICORN_TIMEOUT', 120))
keepalive = 5

limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190

max_requests = 1000
max_requests_jitter = 50

reload = os.environ.get('APP_ENV') == 'development'
