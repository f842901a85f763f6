import os
import datetime

import environ

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

env = environ.Env(
    DEV_ENV=(bool, False),
    SECRET_KEY=(str, 'krt-insecure-secret'),
    DATABASE_URL=(str, 'sqlite:///' + os.path.join(BASE_DIR, 'krt.sqlite3')),
    LOG_LEVEL=(str, 'INFO'),
)

env.scheme['TARGET_NAMESPACE'] = (str, os.environ.get('POD_NAMESPACE') or 'default')
env.scheme['SAMPLE_INTERVAL_SECONDS'] = (int, 30)
env.scheme['MAX_RETENTION_DAYS'] = (int, 30)
env.scheme['SAMPLES_QUERY_LIMIT'] = (int, 120)
env.scheme['KUBE_TOKEN'] = (str, None)
env.scheme['KUBE_REQUEST_TIMEOUT'] = (int, 30)

if env('DEV_ENV'):
    env.scheme['KUBE_API_URL'] = (str, 'http://127.0.0.1:8001')
    env.scheme['KUBE_IN_CLUSTER'] = (bool, False)
else:
    env.scheme['KUBE_API_URL'] = (str, None)
    env.scheme['KUBE_IN_CLUSTER'] = (bool, True)

DEBUG = env('DEV_ENV')
SECRET_KEY = env('SECRET_KEY')

INSTALLED_APPS = [
    'krt.App',
]

DATABASES = {
    'default': env.db_url('DATABASE_URL'),
}
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

USE_TZ = True
TIME_ZONE = 'UTC'

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'default': {
            'format': '%(asctime)s %(levelname)s %(name)s: %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'default',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': env('LOG_LEVEL'),
    },
    'loggers': {
        'kubernetes': {
            'level': 'WARNING',
        },
        'urllib3': {
            'level': 'WARNING',
        },
    },
}

KUBE_API_URL = env('KUBE_API_URL')
KUBE_IN_CLUSTER = env('KUBE_IN_CLUSTER')
KUBE_TOKEN = env('KUBE_TOKEN')
KUBE_REQUEST_TIMEOUT = env('KUBE_REQUEST_TIMEOUT')

TARGET_NAMESPACE = env('TARGET_NAMESPACE')
SAMPLE_INTERVAL = datetime.timedelta(seconds=env('SAMPLE_INTERVAL_SECONDS'))
SAMPLES_QUERY_LIMIT = env('SAMPLES_QUERY_LIMIT')
MAX_RETENTION = datetime.timedelta(days=env('MAX_RETENTION_DAYS'))

IMPACT_PERCENTILE = 95
IMPACT_DEGRADED_PERCENT = 10
IMPACT_IMPROVED_PERCENT = -10
IMPACT_WINDOWS = {
    '5m': datetime.timedelta(minutes=5),
    '30m': datetime.timedelta(minutes=30),
    '24h': datetime.timedelta(hours=24),
}
IMPACT_DEFAULT_WINDOW = '30m'
MAX_VERSION_SNAPSHOTS = 10
