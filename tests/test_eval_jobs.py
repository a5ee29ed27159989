# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
import json

import pytest
from mock import patch

from build_farm_service.errors import (
    ConfigurationError,
    EvaluatorInvocationError,
    InputResolutionError,
)
from build_farm_service.eval_jobs import (
    EvaluatedJob,
    build_command,
    content_hash,
    evaluate_jobs,
    inputs_to_args,
    lock_flake,
    parse_evaluator_output,
)
from build_farm_service.models import JOBSET_TYPES, Jobset
from tests import evaluator_output, job_record


def _alt(input_type, **kwargs):
    kwargs["type"] = input_type
    return kwargs


class TestInputsToArgs:

    def test_literals(self):
        args = inputs_to_args({
            "version": [_alt("string", value="1.0")],
            "debug": [_alt("boolean", value="true")],
            "systems": [_alt("nix", value='[ "x86_64-linux" ]')],
        })
        assert args == [
            "--arg", "debug", "true",
            "--arg", "systems", '[ "x86_64-linux" ]',
            "--argstr", "version", "1.0",
        ]

    def test_fetched_input_adds_search_path(self):
        args = inputs_to_args({
            "src": [_alt("git", store_path="/nix/store/abc-src", revision="deadbeef")],
        })
        assert args[:2] == ["-I", "src=/nix/store/abc-src"]
        assert args[2:4] == ["--arg", "src"]
        assert args[4] == ('{ outPath = builtins.storePath /nix/store/abc-src; '
                           'rev = "deadbeef"; }')

    def test_build_input(self):
        args = inputs_to_args({"dep": [_alt(
            "build", store_path="/nix/store/abc-dep", version="2.1",
            output_name="out", drv_path="/nix/store/abc-dep.drv", id=3)]})
        assert args[-1] == (
            '{ outPath = builtins.storePath /nix/store/abc-dep; version = "2.1"; '
            'outputName = "out"; drvPath = builtins.storePath /nix/store/abc-dep.drv; }')

    def test_eval_input_lists_jobs_sorted(self):
        args = inputs_to_args({"prev": [_alt("eval", id=4, jobs={
            "zlib": "/nix/store/z-zlib", "hello": "/nix/store/h-hello"})]})
        assert args == ["--arg", "prev", "{ hello = builtins.storePath /nix/store/h-hello; "
                        "zlib = builtins.storePath /nix/store/z-zlib; }"]

    def test_sysbuild_alternatives_have_no_search_path(self):
        args = inputs_to_args({"dep": [
            _alt("sysbuild", store_path="/nix/store/a-dep", system="aarch64-linux"),
            _alt("sysbuild", store_path="/nix/store/b-dep", system="x86_64-linux"),
        ]})
        assert "-I" not in args
        assert args.count("--arg") == 2

    def test_deterministic(self):
        inputs = {"b": [_alt("string", value="2")], "a": [_alt("string", value="1")]}
        assert inputs_to_args(inputs) == inputs_to_args(dict(reversed(list(inputs.items()))))


class TestContentHash:

    def test_depends_on_every_part(self):
        base = content_hash("src", "release.nix", ["--argstr", "v", "1"])
        assert base == content_hash("src", "release.nix", ["--argstr", "v", "1"])
        assert base != content_hash("src", "default.nix", ["--argstr", "v", "1"])
        assert base != content_hash("other", "release.nix", ["--argstr", "v", "1"])
        assert base != content_hash("src", "release.nix", ["--argstr", "v", "2"])


class TestEvaluatedJob:

    def test_defaults(self):
        job = EvaluatedJob("hello", job_record("hello"))
        assert job.error is None
        assert (job.priority, job.timeout, job.max_silent) == (100, 36000, 7200)
        assert job.first_output_path == "/nix/store/hello-out"
        assert job.is_channel is False

    def test_first_output_is_alphabetical(self):
        job = EvaluatedJob("hello", job_record(
            "hello", outputs={"out": "/nix/store/o", "dev": "/nix/store/d"}))
        assert job.first_output_name == "dev"

    @pytest.mark.parametrize("name, record, error", [
        ("hello", {"error": "attribute missing"}, "attribute missing"),
        ("hello", job_record("hello", outputs={}), "has no outputs"),
        ("hello", job_record("hello", drvPath=None), "has no derivation"),
        ("", job_record("x"), "empty name"),
        ("hello", "garbage", "malformed record"),
        ("hello", job_record("hello", timeout="forever"), "malformed scheduling"),
    ])
    def test_errors(self, name, record, error):
        assert error in EvaluatedJob(name, record).error


class TestParseEvaluatorOutput:

    def test_jobs(self):
        jobs = parse_evaluator_output(evaluator_output({
            "hello": job_record("hello"), "broken": {"error": "boom"}}))
        assert sorted(jobs) == ["broken", "hello"]
        assert jobs["broken"].error == "boom"

    @pytest.mark.parametrize("output", ["not json", "[1, 2]"])
    def test_malformed(self, output):
        with pytest.raises(EvaluatorInvocationError):
            parse_evaluator_output(output, "some stderr")


class TestBuildCommand:

    def test_legacy(self, conf):
        jobset = Jobset(project="proj", name="main", type=JOBSET_TYPES["legacy"],
                        nixexprinput="src", nixexprpath="release.nix")
        inputs = {"src": [_alt("git", store_path="/nix/store/abc-src")]}
        cmd = build_command(conf, jobset, inputs)
        assert cmd[:2] == ["hydra-eval-jobs", "<src/release.nix>"]
        assert cmd[2:6] == ["--gc-roots-dir", conf.gc_roots_dir, "-j", "1"]
        assert cmd[6:8] == ["-I", "src=/nix/store/abc-src"]

    def test_legacy_without_expression_input(self, conf):
        jobset = Jobset(project="proj", name="main", type=JOBSET_TYPES["legacy"],
                        nixexprinput="src", nixexprpath="release.nix")
        with pytest.raises(ConfigurationError):
            build_command(conf, jobset, {})

    def test_flake(self, conf):
        jobset = Jobset(project="proj", name="main", type=JOBSET_TYPES["flake"],
                        flake="github:example/repo")
        cmd = build_command(conf, jobset, {}, flake="github:example/repo/abc123")
        assert cmd == ["hydra-eval-jobs", "--flake", "github:example/repo/abc123",
                       "--gc-roots-dir", conf.gc_roots_dir, "-j", "1"]

    @patch("build_farm_service.eval_jobs.run_command")
    def test_evaluate_jobs(self, run_command, conf):
        run_command.return_value = evaluator_output({"hello": job_record("hello")})
        jobset = Jobset(project="proj", name="main", type=JOBSET_TYPES["flake"],
                        flake="github:example/repo")
        jobs = evaluate_jobs(conf, jobset, {}, flake="github:example/repo/abc123")
        assert list(jobs) == ["hello"]
        assert run_command.call_args[1]["timeout"] == conf.evaluator_timeout
        assert run_command.call_args[1]["error_cls"] is EvaluatorInvocationError


class TestLockFlake:

    @patch("build_farm_service.eval_jobs.run_command")
    def test_locked_url(self, run_command, conf):
        run_command.return_value = json.dumps({"url": "github:example/repo/abc123"})
        assert lock_flake(conf, "github:example/repo") == "github:example/repo/abc123"
        assert run_command.call_args[0][0][-1] == "github:example/repo"

    @patch("build_farm_service.eval_jobs.run_command")
    def test_unexpected_metadata(self, run_command, conf):
        run_command.return_value = "{}"
        with pytest.raises(InputResolutionError):
            lock_flake(conf, "github:example/repo")
