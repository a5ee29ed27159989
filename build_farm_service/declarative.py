# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Jobsets of declarative projects.

A declarative project keeps the definition of its jobsets in a JSON file
inside one of its inputs. Evaluating the special ``.jobsets`` jobset of such
a project reads that file and creates, updates and disables the other
jobsets of the project accordingly; no builds are scheduled for it.

The file maps jobset names to jobset attributes::

    {
        "main": {
            "enabled": 1,
            "nixexprinput": "src",
            "nixexprpath": "release.nix",
            "inputs": {
                "src": {"type": "git", "value": "https://example.com/repo.git main"}
            }
        }
    }
"""

import json
import os
from datetime import datetime

from build_farm_service import log
from build_farm_service.errors import ConfigurationError, InputResolutionError
from build_farm_service.models import (
    JOBSET_STATES,
    JOBSET_TYPES,
    Jobset,
    JobsetInput,
    JobsetInputAlt,
)

DECLARATIVE_JOBSET = ".jobsets"

ALLOWED_KEYS = (
    "enabled", "hidden", "type", "flake", "description", "nixexprinput",
    "nixexprpath", "checkinterval", "schedulingshares", "enableemail",
    "emailoverride", "keepnr",
)


def ensure_declarative_jobset(session, project):
    """ Create or refresh the ``.jobsets`` jobset of a declarative project.

    The jobset is triggered so that it is evaluated at the next opportunity.
    """
    if not project.is_declarative:
        raise ConfigurationError("Project %s is not declarative" % project.name)
    jobset = Jobset.get_by_name(session, project.name, DECLARATIVE_JOBSET)
    if jobset is None:
        jobset = Jobset(project=project.name, name=DECLARATIVE_JOBSET)
        session.add(jobset)
    jobset.nixexprinput = ""
    jobset.nixexprpath = ""
    jobset.emailoverride = ""
    jobset.triggertime = datetime.utcnow()
    session.flush()
    return jobset


def _parse_jobset_spec(name, spec):
    """ Validate one jobset entry, returning its attributes and inputs. """
    if not isinstance(spec, dict):
        raise ConfigurationError("Specification of jobset %s is not an object" % name)
    spec = dict(spec)
    attrs = {key: spec.pop(key) for key in ALLOWED_KEYS if spec.get(key) is not None}
    inputs = spec.pop("inputs", {}) or {}
    if spec:
        raise ConfigurationError("Invalid keys %s in specification of jobset %s" % (
            ", ".join(sorted(spec)), name))

    if isinstance(attrs.get("type"), str):
        if attrs["type"] not in JOBSET_TYPES:
            raise ConfigurationError("Jobset %s has unknown type %r" % (name, attrs["type"]))
        attrs["type"] = JOBSET_TYPES[attrs["type"]]
    if attrs.get("type", JOBSET_TYPES["legacy"]) == JOBSET_TYPES["legacy"]:
        attrs.pop("flake", None)
    else:
        attrs.pop("nixexprinput", None)
        attrs.pop("nixexprpath", None)
    enabled = attrs.get("enabled")
    if enabled is not None and enabled not in JOBSET_STATES.values() \
            and enabled not in JOBSET_STATES:
        raise ConfigurationError("Jobset %s has invalid enabled value %r" % (name, enabled))

    if not isinstance(inputs, dict):
        raise ConfigurationError("Inputs of jobset %s are not an object" % name)
    for input_name, data in inputs.items():
        if not isinstance(data, dict) or "type" not in data:
            raise ConfigurationError("Input %s of jobset %s has no type" % (input_name, name))
    return attrs, inputs


def update_declarative_jobset(session, project, name, spec):
    """ Create or update one jobset and replace its inputs. """
    attrs, inputs = _parse_jobset_spec(name, spec)

    jobset = Jobset.get_by_name(session, project.name, name)
    if jobset is None:
        jobset = Jobset(project=project.name, name=name)
        session.add(jobset)
    for key, value in attrs.items():
        setattr(jobset, key, value)

    jobset.inputs = []
    session.flush()
    for input_name in sorted(inputs):
        data = inputs[input_name]
        jobset_input = JobsetInput(
            name=input_name,
            type=data["type"],
            emailresponsible=bool(data.get("emailresponsible", False)),
        )
        jobset_input.alternatives.append(
            JobsetInputAlt(altnr=0, value=None if data.get("value") is None else str(data["value"])))
        jobset.inputs.append(jobset_input)
    session.flush()
    return jobset


def apply_declarative_spec(session, project, spec):
    """ Make the jobsets of the project match the declarative specification.

    Jobsets not in the specification are disabled and hidden. A malformed
    entry is logged and skipped; the other entries still apply.
    """
    kept = set(spec) | {DECLARATIVE_JOBSET}
    for jobset in session.query(Jobset).filter_by(project=project.name):
        if jobset.name not in kept:
            log.info("Disabling jobset %s, it is no longer declared", jobset.full_name)
            jobset.enabled = JOBSET_STATES["disabled"]
            jobset.hidden = True

    updated = []
    for name in sorted(spec):
        try:
            updated.append(update_declarative_jobset(session, project, name, spec[name]))
        except ConfigurationError as e:
            log.error("Failed to process declarative jobset %s:%s: %s", project.name, name, e)
    return updated


def read_declarative_spec(project, resolver):
    """ Fetch the declarative input of the project and load its spec file. """
    alternatives = resolver.fetch_input(
        project.name, DECLARATIVE_JOBSET, "decl", project.decltype, project.declvalue or "")
    if len(alternatives) != 1:
        raise ConfigurationError(
            "The input containing the declarative specification of %s must have exactly "
            "one alternative" % project.name)
    store_path = alternatives[0].get("store_path")
    if not store_path:
        raise InputResolutionError(
            "Cannot find the input containing the jobset definitions of %s" % project.name)

    path = os.path.join(store_path, project.declfile)
    try:
        with open(path) as f:
            spec = json.load(f)
    except OSError as e:
        raise InputResolutionError("Couldn't read declarative specification %s: %s" % (path, e))
    except ValueError as e:
        raise ConfigurationError("Declarative specification %s is not valid JSON: %s" % (path, e))

    if not isinstance(spec, dict) or not all(isinstance(v, dict) for v in spec.values()):
        raise ConfigurationError(
            "Declarative specification %s is not an object of jobsets" % path)
    return spec


def handle_declarative_jobsets(session, project, resolver):
    """ Apply the declarative specification of the project. """
    spec = read_declarative_spec(project, resolver)
    log.info("Applying declarative specification of %s with %d jobsets",
             project.name, len(spec))
    return apply_declarative_spec(session, project, spec)
