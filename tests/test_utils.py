# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
import os
import re
import signal
import subprocess as sp

import pytest
from mock import MagicMock, patch

from build_farm_service.errors import (
    ConfigurationError,
    EvaluatorInvocationError,
    RunTimeout,
    StoreError,
)
from build_farm_service.evaluator import run_time_limit
from build_farm_service.store import ContentStore
from build_farm_service.utils import (
    make_correlation_id,
    parse_job_name,
    retry,
    run_command,
    sha256_hex,
)


class TestParseJobName:

    def test_jobset_and_job(self):
        assert parse_job_name("main:hello") == (None, "main", "hello", {})

    def test_full_specifier_with_attributes(self):
        project, jobset, job, attrs = parse_job_name(
            'nixpkgs:trunk:hello.x86_64-linux [system="x86_64-linux", stdenv="abc"]')
        assert (project, jobset, job) == ("nixpkgs", "trunk", "hello.x86_64-linux")
        assert attrs == {"system": "x86_64-linux", "stdenv": "abc"}

    @pytest.mark.parametrize("spec", [
        "hello",
        "a:b:c:d",
        'main:hello [system=x86_64-linux]',
        "",
    ])
    def test_malformed(self, spec):
        with pytest.raises(ConfigurationError):
            parse_job_name(spec)


class TestRetry:

    @patch("build_farm_service.utils.time.sleep")
    def test_retries_until_success(self, sleep):
        calls = MagicMock(side_effect=[StoreError("down"), StoreError("down"), "ok"])

        @retry(timeout=60, interval=5, wait_on=StoreError)
        def flaky():
            return calls()

        assert flaky() == "ok"
        assert calls.call_count == 3
        sleep.assert_called_with(5)

    def test_reraises_after_timeout(self):
        @retry(timeout=0, interval=0, wait_on=StoreError)
        def broken():
            raise StoreError("down")

        with pytest.raises(StoreError):
            broken()

    def test_other_exceptions_are_not_retried(self):
        calls = MagicMock(side_effect=KeyError("x"))

        @retry(timeout=60, interval=0, wait_on=StoreError)
        def broken():
            calls()

        with pytest.raises(KeyError):
            broken()
        assert calls.call_count == 1


class TestRunCommand:

    def test_returns_stdout(self):
        assert run_command(["sh", "-c", "echo hello"]) == "hello\n"

    def test_nonzero_exit_carries_stderr(self):
        with pytest.raises(EvaluatorInvocationError) as excinfo:
            run_command(["sh", "-c", "echo oops >&2; exit 3"],
                        error_cls=EvaluatorInvocationError)
        assert "exit code 3" in str(excinfo.value)
        assert excinfo.value.stderr == "oops\n"

    def test_timeout(self):
        with pytest.raises(StoreError) as excinfo:
            run_command(["sleep", "5"], timeout=0.2, error_cls=StoreError)
        assert "timed out" in str(excinfo.value)

    def test_missing_command(self):
        with pytest.raises(RuntimeError):
            run_command(["/nonexistent/command"])

    def test_interrupted_command_is_killed(self):
        procs = []
        real_popen = sp.Popen

        def popen(*args, **kwargs):
            procs.append(real_popen(*args, **kwargs))
            return procs[-1]

        with patch("build_farm_service.utils.sp.Popen", side_effect=popen):
            with pytest.raises(RunTimeout):
                with run_time_limit(1):
                    run_command(["sleep", "30"])

        [proc] = procs
        assert proc.poll() == -signal.SIGKILL


def test_correlation_id():
    correlation_id = make_correlation_id()
    assert re.match(r"^[\d.]+\.%d$" % os.getpid(), correlation_id)


def test_sha256_hex():
    assert sha256_hex("") == (
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855")


class TestContentStore:

    @patch("build_farm_service.store.run_command")
    def test_valid_path(self, run_command, conf):
        assert ContentStore(conf).ensure_path("/nix/store/abc-hello") is True
        run_command.assert_called_once()
        assert run_command.call_args[0][0] == [
            "nix-store", "--check-validity", "/nix/store/abc-hello"]

    @patch("build_farm_service.store.run_command")
    def test_missing_path_without_remote(self, run_command, conf):
        run_command.side_effect = StoreError("invalid")
        assert ContentStore(conf).ensure_path("/nix/store/abc-hello") is False

    @patch("build_farm_service.store.run_command")
    def test_missing_path_fetched_from_remote(self, run_command, conf):
        conf.store_remote = "https://cache.example.com"
        # invalid, fetched, then valid
        run_command.side_effect = [StoreError("invalid"), "", ""]
        assert ContentStore(conf).ensure_path("/nix/store/abc-hello") is True
        fetch_cmd = run_command.call_args_list[1][0][0]
        assert fetch_cmd[:3] == ["nix-store", "--realise", "/nix/store/abc-hello"]
        assert "https://cache.example.com" in fetch_cmd
