# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
import logging
import os

import pytest

from build_farm_service.config import Config, asbool, init_config


class TestConfig:

    def test_defaults(self):
        conf = Config()
        assert conf.messaging == "pg"
        assert conf.eval_jobs_command == ["hydra-eval-jobs"]
        assert conf.max_run_time == 3600
        assert conf.log_backend == "console"
        assert conf.log_level == logging.INFO
        assert conf.plugins == []
        assert conf.dry_run is False

    def test_section_overrides_defaults(self):
        class Section(object):
            MESSAGING = "in_memory"
            EVAL_JOBS_COMMAND = "nix-eval-jobs --meta"
            EVAL_JOBS_WORKERS = 4
            SOMETHING_ELSE = "passed through"

        conf = Config(Section)
        assert conf.messaging == "in_memory"
        assert conf.eval_jobs_command == ["nix-eval-jobs", "--meta"]
        assert conf.eval_jobs_workers == 4
        assert conf.something_else == "passed through"

    @pytest.mark.parametrize("key, value, error", [
        ("messaging", "fedmsg", ValueError),
        ("log_backend", "syslog", ValueError),
        ("eval_jobs_workers", 0, ValueError),
        ("eval_jobs_workers", "2", TypeError),
        ("evaluator_timeout", -1, ValueError),
        ("max_run_time", "1h", TypeError),
        ("plugins", "mymodule:MyPlugin", TypeError),
        ("plugins", ["mymodule.MyPlugin"], ValueError),
        ("run_command", [{"job": "*:*:*"}], ValueError),
    ])
    def test_invalid_values(self, key, value, error):
        conf = Config()
        with pytest.raises(error):
            conf.set_item(key, value)

    def test_reserved_names(self):
        with pytest.raises(Exception):
            Config().set_item("_defaults", {})

    def test_asbool(self):
        assert asbool("1") and asbool("yes") and asbool("True")
        assert not asbool("0") and not asbool("") and not asbool("off")

    def test_init_config_test_section(self, conf):
        assert conf.messaging == "in_memory"
        assert conf.max_run_time == 0
        assert conf.log_level == logging.DEBUG

    def test_init_config_environment_toggles(self, conf, monkeypatch):
        monkeypatch.setenv("BFS_EVALUATOR_DRY_RUN", "1")
        monkeypatch.setenv("BFS_EVALUATOR_DEBUG", "true")
        conf = init_config()
        assert conf.dry_run is True
        assert conf.debug is True

    def test_init_config_missing_section(self, conf, monkeypatch):
        monkeypatch.setenv("BFS_CONFIG_SECTION", "NoSuchConfiguration")
        with pytest.raises(SystemError):
            init_config()

    def test_init_config_missing_file(self, conf, monkeypatch, tmpdir):
        monkeypatch.setenv("BFS_CONFIG_FILE", os.path.join(str(tmpdir), "missing.py"))
        with pytest.raises(SystemError):
            init_config()
