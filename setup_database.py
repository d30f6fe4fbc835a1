#!/usr/bin/env python
"""
One-off database setup for a fresh deployment.

    APP_CONFIG=production python setup_database.py

Creates missing tables, seeds permissions and the default roles and, when no
staff account exists yet, the administrator from DEFAULT_ADMIN_EMAIL /
DEFAULT_ADMIN_PASSWORD.
"""

import os
import sys

from config import config
from init_db import run_on_startup

if __name__ == '__main__':
    config_name = os.environ.get('APP_CONFIG', 'default')
    config_class = config.get(config_name, config['default'])
    print(f"Setting up the portal database ({config_name})")

    if not run_on_startup(config=config_class()):
        print("Database setup failed; see the messages above.")
        sys.exit(1)

    print("Database ready. Start the portal with: flask --app main:create_app run")
