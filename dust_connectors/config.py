#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#
from envyaml import EnvYAML

from dust_connectors.logger import logger

DEFAULT_ELASTICSEARCH_MAX_RETRIES = 5
DEFAULT_ELASTICSEARCH_RETRY_INTERVAL = 10

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR


def load_config(config_file):
    logger.info(f"Loading config from {config_file}")
    return dict(_merge_dicts(_default_config(), EnvYAML(config_file).export()))


def _default_config():
    return {
        "elasticsearch": {
            "host": "http://localhost:9200",
            "ssl": True,
            "request_timeout": 120,
            "max_retries": DEFAULT_ELASTICSEARCH_MAX_RETRIES,
            "retry_interval": DEFAULT_ELASTICSEARCH_RETRY_INTERVAL,
            "max_wait_duration": 120,
            "initial_backoff_duration": 1,
            "backoff_multiplier": 2,
            "log_level": "info",
        },
        "service": {
            "idling": 30,
            "heartbeat_timeout": 5 * MINUTE,
            "max_errors": 20,
            "max_errors_span": 600,
            "activity_max_attempts": 5,
            "activity_retry_interval": 2,
            "log_level": "INFO",
        },
        "indices": {
            "connectors": ".dust-connectors",
            "mirrored_objects": ".dust-gdrive-files",
            "sync_tokens": ".dust-gdrive-sync-tokens",
            "webhooks": ".dust-gdrive-webhooks",
            "watched_folders": ".dust-gdrive-folders",
            "workflows": ".dust-workflows",
            "documents": "dust-documents",
        },
        "google_drive": {
            "files_sync_concurrency": 10,
            "files_gc_concurrency": 5,
            "gc_page_size": 100,
            "gc_interval": DAY,
            "children_page_size": 200,
            "changes_page_size": 100,
            "api_timeout": MINUTE,
            "max_file_size": 10485760,
            "webhook_url": "http://localhost:3002",
            "webhook_secret": "changeme",
            "webhook_life": 7 * DAY,
            "webhook_renew_margin": HOUR,
            "webhook_renew_cooldown": 2 * HOUR,
            "webhook_retention": 3 * DAY,
            "webhook_renew_interval": 30 * MINUTE,
            "webhook_renew_batch_size": 1000,
            "incremental_sync_debounce": 10,
        },
        "connectors": [],
    }


def _merge_dicts(hsh1, hsh2):
    for k in set(hsh1.keys()).union(hsh2.keys()):
        if k in hsh1 and k in hsh2:
            if isinstance(hsh1[k], dict) and isinstance(hsh2[k], dict):  # only merge objects
                yield (k, dict(_merge_dicts(hsh1[k], hsh2[k])))
            else:
                yield (k, hsh2[k])
        elif k in hsh1:
            yield (k, hsh1[k])
        else:
            yield (k, hsh2[k])


def default_config():
    """Built-in configuration, used when no config file is given (tests, CLI defaults)."""
    return _default_config()
