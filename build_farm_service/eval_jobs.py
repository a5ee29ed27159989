# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Invocation of the external expression evaluator.

The evaluator gets the resolved inputs as command line arguments and prints
one JSON object mapping job names to job records, or to ``{"error": ...}``
for jobs whose expression failed.
"""

import json
import shlex

from build_farm_service import log
from build_farm_service.errors import (
    ConfigurationError,
    EvaluatorInvocationError,
    InputResolutionError,
)
from build_farm_service.utils import run_command, sha256_hex


def _build_input_to_string(alternative):
    s = "{ outPath = builtins.storePath %s" % alternative["store_path"]
    if alternative.get("revision") is not None:
        s += '; rev = "%s"' % alternative["revision"]
    if alternative.get("version") is not None:
        s += '; version = "%s"' % alternative["version"]
    if alternative.get("output_name") is not None:
        s += '; outputName = "%s"' % alternative["output_name"]
    if alternative.get("drv_path") is not None:
        s += "; drvPath = builtins.storePath %s" % alternative["drv_path"]
    return s + "; }"


def inputs_to_args(inputs):
    """ Serialize resolved inputs to evaluator arguments.

    Inputs are processed in name order so that identical inputs always give
    identical arguments.
    """
    args = []
    for name in sorted(inputs):
        alternatives = inputs[name]
        if len(alternatives) == 1 and alternatives[0].get("store_path"):
            args += ["-I", "%s=%s" % (name, alternatives[0]["store_path"])]
        for alternative in alternatives:
            input_type = alternative["type"]
            if input_type == "string":
                args += ["--argstr", name, alternative["value"]]
            elif input_type in ("boolean", "nix"):
                args += ["--arg", name, alternative["value"]]
            elif input_type == "eval":
                jobs = alternative["jobs"]
                s = "{ " + "".join(
                    "%s = builtins.storePath %s; " % (job, jobs[job]) for job in sorted(jobs))
                args += ["--arg", name, s + "}"]
            else:
                args += ["--arg", name, _build_input_to_string(alternative)]
    return args


def content_hash(nixexprinput, nixexprpath, args):
    """ Hash of everything the evaluation of a legacy jobset depends on. """
    return sha256_hex(" ".join([nixexprinput or "", nixexprpath or ""] + list(args)))


def lock_flake(conf, flake):
    """ Return the locked URL of a flake reference. """
    output = run_command(
        conf.flake_metadata_command + [flake], timeout=conf.flake_metadata_timeout,
        error_cls=InputResolutionError)
    try:
        return json.loads(output)["url"]
    except (ValueError, KeyError, TypeError):
        raise InputResolutionError("Cannot lock flake %s: unexpected metadata %r" % (
            flake, output[:200]))


class EvaluatedJob(object):
    """ One entry of the evaluator output. """

    def __init__(self, name, record):
        self.name = name
        self.error = None
        if not isinstance(record, dict):
            self.error = "Job %r has a malformed record" % name
            record = {}
        elif record.get("error"):
            self.error = str(record["error"])

        self.nixname = record.get("nixName")
        self.system = record.get("system")
        self.drvpath = record.get("drvPath")
        self.description = record.get("description")
        self.license = record.get("license")
        self.homepage = record.get("homepage")
        self.maintainers = record.get("maintainers")
        self.priority, self.timeout, self.max_silent = 100, 36000, 7200
        try:
            self.priority = int(record.get("schedulingPriority", 100))
            self.timeout = int(record.get("timeout", 36000))
            self.max_silent = int(record.get("maxSilent", 7200))
        except (TypeError, ValueError) as e:
            self.error = self.error or "Job %s has malformed scheduling metadata: %s" % (name, e)
        self.is_channel = bool(record.get("isChannel", False))
        self.outputs = dict(record.get("outputs") or {})
        self.constituents = list(record.get("constituents") or [])

        if self.error is None:
            if name == "":
                self.error = "Job with an empty name"
            elif not self.drvpath or not self.system:
                self.error = "Job %s has no derivation" % name
            elif not self.outputs:
                self.error = "Job %s has no outputs" % name

    def __repr__(self):
        return "<EvaluatedJob %s%s>" % (self.name, " (error)" if self.error else "")

    @property
    def first_output_name(self):
        return sorted(self.outputs)[0]

    @property
    def first_output_path(self):
        return self.outputs[self.first_output_name]


def parse_evaluator_output(output, stderr=None):
    """ Decode the evaluator output into a dict of EvaluatedJob objects. """
    try:
        records = json.loads(output)
    except ValueError as e:
        raise EvaluatorInvocationError("Evaluator returned malformed JSON: %s" % e, stderr)
    if not isinstance(records, dict):
        raise EvaluatorInvocationError("Evaluator returned a %s instead of an object" % (
            type(records).__name__), stderr)
    return {name: EvaluatedJob(name, record) for name, record in records.items()}


def build_command(conf, jobset, inputs, flake=None):
    """ Return the evaluator command line for the jobset. """
    cmd = list(conf.eval_jobs_command)
    if jobset.is_flake:
        cmd += ["--flake", flake or jobset.flake]
    else:
        if not inputs.get(jobset.nixexprinput):
            raise ConfigurationError(
                "Cannot find the input %s containing the job expression" % jobset.nixexprinput)
        cmd.append("<%s/%s>" % (jobset.nixexprinput, jobset.nixexprpath))
    cmd += ["--gc-roots-dir", conf.gc_roots_dir, "-j", str(conf.eval_jobs_workers)]
    if not jobset.is_flake:
        cmd += inputs_to_args(inputs)
    return cmd


def evaluate_jobs(conf, jobset, inputs, flake=None):
    """ Run the evaluator for the jobset and return its jobs.

    :param jobset: the Jobset
    :param inputs: resolved inputs as returned by the InputResolver
    :param flake: the locked flake reference of a flake jobset
    :raises EvaluatorInvocationError: if the evaluator fails, times out or
        prints something unusable
    """
    cmd = build_command(conf, jobset, inputs, flake)
    if conf.debug:
        log.info("evaluator: %s", " ".join(shlex.quote(part) for part in cmd))
    output = run_command(cmd, timeout=conf.evaluator_timeout, error_cls=EvaluatorInvocationError)
    jobs = parse_evaluator_output(output)
    log.info("Evaluator returned %d jobs for %s", len(jobs), jobset.full_name)
    return jobs
