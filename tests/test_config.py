#
# Copyright Elasticsearch B.V. and/or licensed to Elasticsearch B.V. under one
# or more contributor license agreements. Licensed under the Elastic License 2.0;
# you may not use this file except in compliance with the Elastic License 2.0.
#

import os
from unittest import mock

import pytest

from dust_connectors.config import DAY, HOUR, _merge_dicts, default_config, load_config

HERE = os.path.dirname(__file__)
FIXTURES_DIR = os.path.abspath(os.path.join(HERE, "fixtures"))

CONFIG_FILE = os.path.join(FIXTURES_DIR, "config.yml")


@pytest.fixture
def set_env():
    with mock.patch.dict(os.environ, {"elasticsearch.password": "password"}):
        yield


def test_bad_config_file():
    with pytest.raises(FileNotFoundError):
        load_config("BEEUUUAH")


def test_config(set_env):
    config = load_config(CONFIG_FILE)
    assert isinstance(config, dict)
    assert config["elasticsearch"]["host"] == "http://nowhere.com:9200"
    assert config["elasticsearch"]["user"] == "elastic"
    assert config["elasticsearch"]["password"] == "password"
    assert config["connectors"] == ["connector-1"]


def test_config_is_merged_over_defaults(set_env):
    config = load_config(CONFIG_FILE)

    # overridden
    assert config["service"]["idling"] == 5
    assert config["google_drive"]["gc_page_size"] == 10
    assert config["google_drive"]["webhook_secret"] == "s3cr3t"

    # defaults
    assert config["service"]["activity_max_attempts"] == 5
    assert config["google_drive"]["files_sync_concurrency"] == 10
    assert config["google_drive"]["gc_interval"] == DAY
    assert config["indices"]["mirrored_objects"] == ".dust-gdrive-files"
    assert config["elasticsearch"]["max_retries"] == 5


def test_default_config():
    config = default_config()
    settings = config["google_drive"]

    assert settings["files_gc_concurrency"] == 5
    assert settings["gc_page_size"] == 100
    assert settings["webhook_life"] == 7 * DAY
    assert settings["webhook_renew_margin"] == HOUR
    assert settings["incremental_sync_debounce"] == 10
    assert config["connectors"] == []

    # every call gets its own copy
    config["google_drive"]["gc_page_size"] = 1
    assert default_config()["google_drive"]["gc_page_size"] == 100


def test_merge_dicts():
    merged = dict(
        _merge_dicts({"a": {"b": 1, "c": 2}, "d": 3}, {"a": {"c": 4}, "e": 5})
    )

    assert merged == {"a": {"b": 1, "c": 4}, "d": 3, "e": 5}
