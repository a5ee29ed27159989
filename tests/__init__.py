# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
import json
from datetime import datetime

from build_farm_service import messaging
from build_farm_service.models import (
    BUILD_STATUSES,
    Build,
    BuildOutput,
    Jobset,
    JobsetEval,
    JobsetEvalInput,
    JobsetEvalMember,
    JobsetInput,
    JobsetInputAlt,
    Project,
)


def make_project(session, name="proj", **kwargs):
    project = session.get(Project, name)
    if project is None:
        project = Project(name=name, **kwargs)
        session.add(project)
        session.flush()
    return project


def make_jobset(session, project="proj", name="main", inputs=None, **kwargs):
    """ Create a legacy jobset whose expression lives in the ``src`` input.

    :param inputs: dict of input name to ``(type, value)`` or
        ``(type, value, extra column dict)``
    """
    make_project(session, project)
    kwargs.setdefault("nixexprinput", "src")
    kwargs.setdefault("nixexprpath", "release.nix")
    jobset = Jobset(project=project, name=name, **kwargs)
    if inputs is None:
        inputs = {"src": ("string", "/srv/src")}
    for input_name, spec in sorted(inputs.items()):
        input_type, value = spec[0], spec[1]
        extra = spec[2] if len(spec) > 2 else {}
        jobset_input = JobsetInput(name=input_name, type=input_type, **extra)
        jobset_input.alternatives.append(JobsetInputAlt(altnr=0, value=value))
        jobset.inputs.append(jobset_input)
    session.add(jobset)
    session.flush()
    return jobset


def set_input_value(session, jobset, name, value):
    jobset_input = [i for i in jobset.inputs if i.name == name][0]
    jobset_input.alternatives[0].value = value
    session.commit()


def make_build(session, jobset, job, out_path, system="x86_64-linux", finished=True,
               buildstatus=BUILD_STATUSES["succeeded"], nixname=None, drvpath=None):
    build = Build(
        project=jobset.project,
        jobset_id=jobset.id,
        job=job,
        nixname=nixname or job,
        drvpath=drvpath or out_path + ".drv",
        system=system,
        finished=finished,
        buildstatus=buildstatus if finished else None,
        timestamp=datetime.utcnow(),
    )
    build.outputs.append(BuildOutput(name="out", path=out_path))
    session.add(build)
    session.flush()
    return build


def make_eval(session, jobset, builds, hasnewbuilds=True, inputs=None):
    jobset_eval = JobsetEval(
        jobset_id=jobset.id, hasnewbuilds=hasnewbuilds, hash="h%d" % len(builds))
    session.add(jobset_eval)
    session.flush()
    for build in builds:
        session.add(JobsetEvalMember(eval_id=jobset_eval.id, build_id=build.id, isnew=True))
    for name, value in (inputs or {}).items():
        session.add(JobsetEvalInput(
            eval_id=jobset_eval.id, name=name, altnr=0, type="string", value=value))
    session.flush()
    return jobset_eval


def job_record(name, out=None, drv=None, system="x86_64-linux", **extra):
    out = out or "/nix/store/%s-out" % name
    record = {
        "nixName": "%s-1.0" % name,
        "system": system,
        "drvPath": drv or "/nix/store/%s.drv" % name,
        "description": "The %s job" % name,
        "outputs": {"out": out},
    }
    record.update(extra)
    return record


def evaluator_output(records):
    return json.dumps(records)


def drain_notifications():
    """ Return and forget the notifications published with the in_memory backend. """
    notifications = list(messaging._in_memory_queue)
    messaging._in_memory_queue.clear()
    return notifications


def channels(notifications):
    return [channel for channel, _ in notifications]
