# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
"""Deduplication of evaluated jobs against existing builds and creation of
the evaluation record.

Everything here runs inside the session of one evaluator run; nothing is
committed by these functions.
"""

import random
from datetime import datetime

from build_farm_service import log, messaging
from build_farm_service.models import (
    AggregateConstituent,
    Build,
    BuildOutput,
    JobsetEval,
    JobsetEvalInput,
    JobsetEvalMember,
    set_current_builds,
)
from build_farm_service.notifications import events


class BuildMapEntry(object):
    """ A build taking part in an evaluation. """

    def __init__(self, id, job, drvpath, new):
        self.id = id
        self.job = job
        self.drvpath = drvpath
        self.new = new

    def __repr__(self):
        return "<BuildMapEntry %r %s%s>" % (self.id, self.job, " (new)" if self.new else "")


def check_build(session, jobset, job, prev_eval, build_map, job_out_path_map):
    """ Reuse or create the build of one successfully evaluated job.

    - A build of the previous winning evaluation with the same job name and
      first output path is reused and recorded as not new.
    - A job whose (name, first output path) was already scheduled during
      this run is skipped.
    - Otherwise a new current build is created with all its outputs.

    :return: the new Build, or None if nothing was created
    """
    first_name = job.first_output_name
    first_path = job.first_output_path

    if prev_eval is not None:
        prev_build = (
            session.query(Build)
            .join(JobsetEvalMember, JobsetEvalMember.build_id == Build.id)
            .join(BuildOutput, BuildOutput.build_id == Build.id)
            .filter(
                JobsetEvalMember.eval_id == prev_eval.id,
                Build.job == job.name,
                BuildOutput.name == first_name,
                BuildOutput.path == first_path,
            )
            .first()
        )
        if prev_build is not None:
            build_map[prev_build.id] = BuildMapEntry(prev_build.id, job.name, job.drvpath, False)
            return None

    key = (job.name, first_path)
    if key in job_out_path_map:
        log.warning("Job %s of %s has the same output as build %d, skipping",
                    job.name, jobset.full_name, job_out_path_map[key])
        return None

    build = Build(
        timestamp=datetime.utcnow(),
        project=jobset.project,
        jobset_id=jobset.id,
        job=job.name,
        nixname=job.nixname,
        description=job.description,
        license=job.license,
        homepage=job.homepage,
        maintainers=job.maintainers,
        maxsilent=job.max_silent,
        timeout=job.timeout,
        priority=job.priority,
        globalpriority=0,
        ischannel=job.is_channel,
        iscurrent=True,
        drvpath=job.drvpath,
        system=job.system,
        finished=False,
    )
    for name in sorted(job.outputs):
        build.outputs.append(BuildOutput(name=name, path=job.outputs[name]))
    session.add(build)
    session.flush()

    build_map[build.id] = BuildMapEntry(build.id, job.name, job.drvpath, True)
    job_out_path_map[key] = build.id
    log.info("Added build %d (%s:%s)", build.id, jobset.full_name, job.name)
    return build


def canonical_builds(build_map):
    """ Map every derivation path to its canonical build.

    When several jobs share a derivation path the build of the shortest job
    name wins, and among equally long names the lexicographically smaller
    one.
    """
    canonical = {}
    for entry in build_map.values():
        current = canonical.get(entry.drvpath)
        if current is None or (len(entry.job), entry.job) < (len(current.job), current.job):
            canonical[entry.drvpath] = entry
    return canonical


def add_aggregate_constituents(session, jobs, build_map):
    by_drvpath = canonical_builds(build_map)
    for job in jobs.values():
        if not job.constituents or job.error:
            continue
        aggregate = by_drvpath.get(job.drvpath)
        if aggregate is None:
            log.warning("Aggregate job %s has no corresponding build", job.name)
            continue
        for drvpath in job.constituents:
            constituent = by_drvpath.get(drvpath)
            if constituent is None:
                log.warning("Aggregate job %s has a constituent %s without a build",
                            job.name, drvpath)
                continue
            # merge, since another run may have already linked them
            session.merge(AggregateConstituent(
                aggregate_id=aggregate.id, constituent_id=constituent.id))


def add_eval_inputs(session, jobset_eval, inputs):
    for name in sorted(inputs):
        for altnr, alternative in enumerate(inputs[name]):
            session.add(JobsetEvalInput(
                eval_id=jobset_eval.id,
                name=name,
                altnr=altnr,
                type=alternative["type"],
                uri=alternative.get("uri"),
                revision=alternative.get("revision"),
                value=alternative.get("value"),
                dependency_id=alternative.get("id") if alternative["type"] in (
                    "build", "sysbuild") else None,
                path=alternative.get("store_path") or "",
                sha256hash=alternative.get("sha256hash"),
            ))


def lowest_new_build_id(build_map):
    new_ids = [entry.id for entry in build_map.values() if entry.new]
    return min(new_ids) if new_ids else None


class ScheduleResult(object):

    def __init__(self, jobset_eval, build_map, changed):
        self.jobset_eval = jobset_eval
        self.build_map = build_map
        self.changed = changed

    @property
    def new_builds(self):
        return sorted(entry.id for entry in self.build_map.values() if entry.new)


def schedule_jobs(conf, session, jobset, jobs, inputs, eval_hash, evaluation_error,
                  correlation_id, checkout_time=0, eval_time=0, flake=None):
    """ Record the evaluation of the jobset and schedule its new builds.

    :param jobs: dict of EvaluatedJob objects by name; jobs with errors are
        not scheduled
    :param inputs: the resolved inputs, stored with a changed evaluation
    :param evaluation_error: the EvaluationError record of this run
    :return: a ScheduleResult
    """
    prev_eval = JobsetEval.get_previous(session, jobset, has_new_builds=True)

    # Hidden from other sessions until commit
    set_current_builds(session, jobset, [])

    build_map = {}
    job_out_path_map = {}
    good_jobs = [job for job in jobs.values() if not job.error]
    for job in random.sample(good_jobs, len(good_jobs)):
        check_build(session, jobset, job, prev_eval, build_map, job_out_path_map)

    prev_count = prev_eval.member_count(session) if prev_eval is not None else 0
    changed = any(entry.new for entry in build_map.values()) or prev_count != len(build_map)

    jobset_eval = JobsetEval(
        jobset_id=jobset.id,
        timestamp=datetime.utcnow(),
        hash=eval_hash,
        checkouttime=int(abs(checkout_time)),
        evaltime=int(abs(eval_time)),
        hasnewbuilds=changed,
        nrbuilds=len(build_map) if changed else None,
        flake=flake,
        nixexprinput=jobset.nixexprinput,
        nixexprpath=jobset.nixexprpath,
        evaluationerror=evaluation_error,
    )
    session.add(jobset_eval)
    session.flush()
    messaging.publish(events.EVAL_ADDED, [correlation_id, jobset_eval.id], conf, session)

    if changed:
        for build_id in sorted(build_map):
            session.add(JobsetEvalMember(
                eval_id=jobset_eval.id, build_id=build_id, isnew=build_map[build_id].new))
        add_aggregate_constituents(session, jobs, build_map)
        add_eval_inputs(session, jobset_eval, inputs)
        session.flush()
        set_current_builds(session, jobset, list(build_map))
        log.info("Created new eval %d of %s with %d builds",
                 jobset_eval.id, jobset.full_name, len(build_map))

        lowest = lowest_new_build_id(build_map)
        if lowest is not None:
            messaging.publish(events.BUILDS_ADDED, [lowest], conf, session)
    else:
        if prev_eval is not None:
            set_current_builds(session, jobset, [b.id for b in prev_eval.builds])
        log.info("Created cached eval %d of %s", jobset_eval.id, jobset.full_name)

    return ScheduleResult(jobset_eval, build_map, changed)
