# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
from os import environ


class BaseConfiguration(object):
    SQLALCHEMY_DATABASE_URI = "postgresql:///build_farm"
    MESSAGING = "pg"
    LOG_LEVEL = "info"

    EVAL_JOBS_COMMAND = ["hydra-eval-jobs"]
    EVAL_JOBS_WORKERS = 1
    EVALUATOR_TIMEOUT = 600
    # Hard ceiling for a whole jobset evaluation run, in seconds.
    MAX_RUN_TIME = 3600

    NIX_STORE_COMMAND = "nix-store"
    STORE_REMOTE = ""
    STORE_FETCH_TIMEOUT = 600


class TestConfiguration(BaseConfiguration):
    LOG_LEVEL = "debug"
    SQLALCHEMY_DATABASE_URI = environ.get("DATABASE_URI", "sqlite://")
    MESSAGING = "in_memory"

    # Network and subprocess values, in seconds
    EVALUATOR_TIMEOUT = 5
    MAX_RUN_TIME = 0
    STORE_FETCH_TIMEOUT = 1
    NET_RETRY_INTERVAL = 0
    GIT_TIMEOUT = 1
    NOTIFY_POLL_INTERVAL = 0

    GC_ROOTS_DIR = "/tmp/build-farm-test-gcroots"


class ProdConfiguration(BaseConfiguration):
    pass


class OfflineConfiguration(BaseConfiguration):
    """Evaluate without a PostgreSQL server, e.g. for local debugging."""

    SQLALCHEMY_DATABASE_URI = "sqlite:///build_farm.db"
    MESSAGING = "in_memory"
    MAX_RUN_TIME = 0


class DevConfiguration(OfflineConfiguration):
    LOG_LEVEL = "debug"
    DEBUG = True
