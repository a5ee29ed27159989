# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Resolution of the declared jobset inputs into concrete values.

Every resolved *alternative* is a dict. All of them carry ``type`` and
``email_responsible``; depending on the type they also carry:

- ``value``: the literal of string, nix and boolean inputs
- ``store_path``, ``id``, ``version``, ``output_name``, ``drv_path`` and
  ``system``: the output of a build taken from an earlier build
- ``jobs``: job name to output path of an earlier evaluation
- ``store_path``, ``uri``, ``revision``, ``sha256hash``: whatever a plugin
  resolved its input type to
"""

import re

from sqlalchemy import and_, exists

from build_farm_service import log
from build_farm_service.errors import ConfigurationError, InputResolutionError
from build_farm_service.models import (
    BUILD_STATUSES,
    Build,
    Jobset,
    JobsetEval,
    JobsetEvalInput,
    JobsetEvalMember,
)
from build_farm_service.utils import parse_job_name

LITERAL_TYPES = ("string", "nix", "boolean")
BUILD_TYPES = ("build", "sysbuild")

_project_jobset_re = re.compile(r"^([\w\-]+):([\w\-\.]+)$")
_project_jobset_job_re = re.compile(r"^([\w\-]+):([\w\-\.]+):([\w\-\.]+)$")


def main_output(build):
    """ Return the ``out`` output of the build, or its first one. """
    outputs = sorted(build.outputs, key=lambda o: o.name)
    for output in outputs:
        if output.name == "out":
            return output
    return outputs[0] if outputs else None


def split_version(nixname):
    """ Return the version part of a ``name-version`` package name. """
    match = re.match(r"^(.*?)-(\d.*)$", nixname or "")
    return match.group(2) if match else None


class InputResolver(object):
    """ Resolve the inputs of jobsets.

    :param conf: the service configuration
    :param session: the database session the referenced builds and
        evaluations are looked up in
    :param store: a ContentStore the outputs of referenced builds are
        checked against
    :param plugins: plugins consulted for input types not handled here
    """

    def __init__(self, conf, session, store, plugins=()):
        self.conf = conf
        self.session = session
        self.store = store
        self.plugins = list(plugins)

    def resolve_inputs(self, jobset):
        """ Resolve all inputs of the jobset.

        :return: a dict mapping input names to lists of alternatives
        :raises ConfigurationError: if an input declares several alternatives
            or is otherwise malformed
        :raises InputResolutionError: if a required input cannot be resolved
        """
        resolved = {}
        for jobset_input in jobset.inputs:
            alternatives = jobset_input.alternatives
            if len(alternatives) > 1:
                raise ConfigurationError(
                    "Multiple alternatives for input %s are not supported" % jobset_input.name)
            value = alternatives[0].value if alternatives else ""
            try:
                resolved[jobset_input.name] = self.fetch_input(
                    jobset.project, jobset.name, jobset_input.name, jobset_input.type,
                    value or "", jobset_input.emailresponsible)
            except (ConfigurationError, InputResolutionError) as e:
                if jobset_input.required:
                    raise
                log.warning("Skipping optional input %s of %s: %s",
                            jobset_input.name, jobset.full_name, e)
        log.debug("Resolved inputs of %s: %r", jobset.full_name, resolved)
        return resolved

    def fetch_input(self, project, jobset, name, type, value, email_responsible=False):
        """ Resolve one input value according to its type.

        :return: a list of alternatives
        """
        if type == "build":
            alternatives = [self._fetch_build(project, jobset, name, value)]
        elif type == "sysbuild":
            alternatives = self._fetch_sysbuild(project, jobset, name, value)
        elif type == "eval":
            alternatives = [self._fetch_eval(name, value)]
        elif type in LITERAL_TYPES:
            if type == "boolean" and value not in ("true", "false"):
                raise ConfigurationError(
                    "Input %s has invalid boolean value %r" % (name, value))
            alternatives = [{"value": value}]
        else:
            alternatives = [self._fetch_from_plugins(project, jobset, name, type, value)]

        for alternative in alternatives:
            alternative["type"] = type
            alternative["email_responsible"] = email_responsible
        return alternatives

    def _fetch_from_plugins(self, project, jobset, name, type, value):
        for plugin in self.plugins:
            if type not in plugin.supported_input_types():
                continue
            alternative = plugin.fetch_input(type, name, value, project, jobset)
            if alternative:
                return dict(alternative)
        raise ConfigurationError("Input %s has unknown type %s" % (name, type))

    def _build_query(self, project, jobset, job, attrs):
        query = self.session.query(Build).filter(
            Build.finished.is_(True),
            Build.buildstatus == BUILD_STATUSES["succeeded"],
            Build.project == project,
            Build.job == job,
            Build.jobset_id == Jobset.id,
            Jobset.name == jobset,
        )
        for attr_name, attr_value in attrs.items():
            query = query.filter(exists().where(and_(
                JobsetEvalMember.build_id == Build.id,
                JobsetEvalInput.eval_id == JobsetEvalMember.eval_id,
                JobsetEvalInput.name == attr_name,
                (JobsetEvalInput.value == attr_value)
                | (JobsetEvalInput.revision == attr_value),
            )))
        return query.order_by(Build.id.desc())

    def _parse_spec(self, project, jobset, value):
        spec_project, spec_jobset, job, attrs = parse_job_name(value)
        return spec_project or project, spec_jobset or jobset, job, attrs

    def _build_alternative(self, name, build):
        output = main_output(build)
        if output is None:
            raise InputResolutionError("Build %d of input %s has no outputs" % (build.id, name))
        if not self.store.ensure_path(output.path):
            raise InputResolutionError(
                "Output %s of build %d for input %s is not available" % (
                    output.path, build.id, name))
        return {
            "store_path": output.path,
            "id": build.id,
            "version": split_version(build.nixname),
            "output_name": output.name,
            "drv_path": build.drvpath,
            "system": build.system,
        }

    def _fetch_build(self, project, jobset, name, value):
        if value.strip().isdigit():
            build = Build.get_by_id(self.session, int(value))
            if build is None:
                raise InputResolutionError("Build %s of input %s does not exist" % (value, name))
        else:
            spec = self._parse_spec(project, jobset, value)
            build = self._build_query(*spec).first()
            if build is None:
                raise InputResolutionError(
                    "No finished successful build of %s for input %s" % (value, name))
        return self._build_alternative(name, build)

    def _fetch_sysbuild(self, project, jobset, name, value):
        spec = self._parse_spec(project, jobset, value)
        latest = {}
        for build in self._build_query(*spec):
            latest.setdefault(build.system, build)

        alternatives = []
        for system in sorted(latest):
            try:
                alternatives.append(self._build_alternative(name, latest[system]))
            except InputResolutionError as e:
                log.warning("Skipping %s build of input %s: %s", system, name, e)
        if not alternatives:
            log.warning("Input %s: no previous build of %s available for any system",
                        name, value)
        return alternatives

    def _fetch_eval(self, name, value):
        value = value.strip()
        if value.isdigit():
            jobset_eval = self.session.query(JobsetEval).filter_by(id=int(value)).first()
            if jobset_eval is None:
                raise InputResolutionError("Evaluation %s of input %s does not exist" % (value, name))
        elif _project_jobset_re.match(value):
            other = self._jobset(name, *_project_jobset_re.match(value).groups())
            jobset_eval = JobsetEval.latest_finished(self.session, other)
            if jobset_eval is None:
                raise InputResolutionError(
                    "Jobset %s of input %s does not have a finished evaluation" % (value, name))
        elif _project_jobset_job_re.match(value):
            project, jobset, job = _project_jobset_job_re.match(value).groups()
            other = self._jobset(name, project, jobset)
            jobset_eval = (
                self.session.query(JobsetEval)
                .join(JobsetEvalMember, JobsetEvalMember.eval_id == JobsetEval.id)
                .join(Build, Build.id == JobsetEvalMember.build_id)
                .filter(
                    JobsetEval.jobset_id == other.id,
                    JobsetEval.hasnewbuilds.is_(True),
                    Build.job == job,
                    Build.finished.is_(True),
                    Build.buildstatus == BUILD_STATUSES["succeeded"],
                )
                .order_by(JobsetEval.id.desc())
                .first()
            )
            if jobset_eval is None:
                raise InputResolutionError(
                    "No evaluation with a successful build of %s for input %s" % (value, name))
        else:
            raise ConfigurationError("Invalid evaluation specifier %r of input %s" % (value, name))

        jobs = {}
        for build in jobset_eval.builds:
            if not build.is_successful:
                continue
            path = build.output_path("out")
            if path is None or not self.store.is_valid_path(path):
                continue
            jobs[build.job] = path
        return {"id": jobset_eval.id, "jobs": jobs}

    def _jobset(self, name, project, jobset):
        other = Jobset.get_by_name(self.session, project, jobset)
        if other is None:
            raise InputResolutionError(
                "Jobset %s:%s of input %s does not exist" % (project, jobset, name))
        return other
