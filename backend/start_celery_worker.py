#!/usr/bin/env python3
"""Start the Celery worker for the import and webhook queues."""

import sys
import warnings

# Suppress the superuser privilege warning
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from land_importer.core.config import get_settings
from land_importer.workers.celery_app import celery_app

if __name__ == '__main__':
    settings = get_settings()
    celery_app.worker_main(
        argv=[
            'worker',
            f'--loglevel={settings.log_level.lower()}',
            '--queues=imports,webhooks',
            f'--concurrency={settings.max_concurrent_jobs}',
            '--without-mingle',
            '--without-gossip',
        ] + sys.argv[1:]
    )
