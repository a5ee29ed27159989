# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT
""" SQLAlchemy Database models for the build farm service """

import contextlib
from datetime import datetime

import sqlalchemy
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    and_,
    exists,
)
from sqlalchemy.orm import declarative_base, relationship, sessionmaker, validates
from sqlalchemy.pool import StaticPool

from build_farm_service import log

# Values of Jobset.enabled
JOBSET_STATES = {
    "disabled": 0,
    "enabled": 1,
    # Evaluated once, then disabled again.
    "one-shot": 2,
}

INVERSE_JOBSET_STATES = {v: k for k, v in JOBSET_STATES.items()}

JOBSET_TYPES = {
    "legacy": 0,
    "flake": 1,
}

# Values of Build.buildstatus, set by the build execution subsystem once a
# build is finished.
BUILD_STATUSES = {
    "succeeded": 0,
    "failed": 1,
    "dep-failed": 2,
    "aborted": 3,
    "cancelled": 4,
    "failed-with-output": 6,
    "timed-out": 7,
    "cached-failure": 8,
    "unsupported": 9,
    "log-limit-exceeded": 10,
    "narsize-limit-exceeded": 11,
    "not-deterministic": 12,
}

INVERSE_BUILD_STATUSES = {v: k for k, v in BUILD_STATUSES.items()}


def _utc_datetime_to_iso(datetime_object):
    """
    Takes a UTC datetime object and returns an ISO formatted string
    :param datetime_object: datetime.datetime
    :return: string with datetime in ISO format
    """
    if datetime_object:
        # Converts the datetime to ISO 8601
        return datetime_object.strftime("%Y-%m-%dT%H:%M:%SZ")

    return None


Base = declarative_base()

_engines = {}


def database_url(conf):
    """ Return the SQLAlchemy URL of the configured database. """
    url = sqlalchemy.engine.make_url(conf.sqlalchemy_database_uri)
    if url.drivername == "postgresql":
        # psycopg is the only driver the listener knows how to use
        url = url.set(drivername="postgresql+psycopg")
    return url


def get_engine(conf):
    """ Return the engine for the configured database, creating it once.

    In-memory SQLite databases use a static pool so that every session of
    the process sees the same database. This is used mostly by the tests.
    """
    uri = conf.sqlalchemy_database_uri
    if uri not in _engines:
        url = database_url(conf)
        options = {}
        if url.drivername.startswith("sqlite") and url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
            options["connect_args"] = {"check_same_thread": False}
        _engines[uri] = sqlalchemy.create_engine(url, **options)
    return _engines[uri]


@contextlib.contextmanager
def make_session(conf):
    """ Yield a session which commits on success and rolls back on error. """
    session = sessionmaker(bind=get_engine(conf))()
    try:
        yield session
        session.commit()
    except Exception:
        # This is a no-op if no transaction is in progress.
        session.rollback()
        raise
    finally:
        session.close()


def create_tables(conf):
    """ Creates our tables in the configured database. """
    Base.metadata.create_all(get_engine(conf))


class Project(Base):
    __tablename__ = "projects"
    name = Column(String, primary_key=True)
    displayname = Column(String)
    description = Column(Text)
    enabled = Column(Boolean, nullable=False, default=True)
    hidden = Column(Boolean, nullable=False, default=False)
    owner = Column(String)
    # Declarative projects keep their jobset definitions in a file that
    # lives in the input described by decltype/declvalue.
    declfile = Column(String)
    decltype = Column(String)
    declvalue = Column(String)

    jobsets = relationship("Jobset", back_populates="project_obj", order_by="Jobset.name")

    @property
    def is_declarative(self):
        return bool(self.declfile)

    def __repr__(self):
        return "<Project %s>" % self.name


class Jobset(Base):
    __tablename__ = "jobsets"
    __table_args__ = (UniqueConstraint("project", "name"),)

    id = Column(Integer, primary_key=True)
    project = Column(String, ForeignKey("projects.name"), nullable=False)
    name = Column(String, nullable=False)
    description = Column(Text)
    type = Column(Integer, nullable=False, default=JOBSET_TYPES["legacy"])
    # Legacy jobsets name the input holding the expression and the path of
    # the expression within it; flake jobsets carry a flake reference.
    nixexprinput = Column(String)
    nixexprpath = Column(String)
    flake = Column(String)
    enabled = Column(Integer, nullable=False, default=JOBSET_STATES["enabled"])
    hidden = Column(Boolean, nullable=False, default=False)
    forceeval = Column(Boolean, nullable=False, default=False)
    errormsg = Column(Text)
    errortime = Column(DateTime)
    fetcherrormsg = Column(Text)
    lastcheckedtime = Column(DateTime)
    triggertime = Column(DateTime)
    checkinterval = Column(Integer, nullable=False, default=300)
    schedulingshares = Column(Integer, nullable=False, default=100)
    enableemail = Column(Boolean, nullable=False, default=True)
    emailoverride = Column(String, nullable=False, default="")
    keepnr = Column(Integer, nullable=False, default=3)

    project_obj = relationship("Project", back_populates="jobsets")
    inputs = relationship(
        "JobsetInput", back_populates="jobset", order_by="JobsetInput.name",
        cascade="all, delete-orphan")

    @validates("enabled")
    def validate_enabled(self, key, field):
        if field in JOBSET_STATES.values():
            return field
        if field in JOBSET_STATES:
            return JOBSET_STATES[field]
        raise ValueError("%s: %s, not in %r" % (key, field, JOBSET_STATES))

    @property
    def full_name(self):
        return "%s:%s" % (self.project, self.name)

    @property
    def is_flake(self):
        return self.type == JOBSET_TYPES["flake"]

    @classmethod
    def get_by_name(cls, session, project, name):
        return session.query(cls).filter_by(project=project, name=name).first()

    def current_builds(self, session):
        return session.query(Build).filter_by(jobset_id=self.id, iscurrent=True).all()

    def __repr__(self):
        return "<Jobset %s, enabled %r>" % (
            self.full_name, INVERSE_JOBSET_STATES.get(self.enabled, self.enabled))


class JobsetInput(Base):
    __tablename__ = "jobsetinputs"
    __table_args__ = (UniqueConstraint("jobset_id", "name"),)

    id = Column(Integer, primary_key=True)
    jobset_id = Column(Integer, ForeignKey("jobsets.id"), nullable=False)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False)
    emailresponsible = Column(Boolean, nullable=False, default=False)
    # A failure to resolve an optional input only drops it from the
    # evaluator arguments.
    required = Column(Boolean, nullable=False, default=True)

    jobset = relationship("Jobset", back_populates="inputs")
    alternatives = relationship(
        "JobsetInputAlt", back_populates="input", order_by="JobsetInputAlt.altnr",
        cascade="all, delete-orphan")

    def __repr__(self):
        return "<JobsetInput %s, type %r>" % (self.name, self.type)


class JobsetInputAlt(Base):
    __tablename__ = "jobsetinputalts"

    id = Column(Integer, primary_key=True)
    input_id = Column(Integer, ForeignKey("jobsetinputs.id"), nullable=False)
    altnr = Column(Integer, nullable=False, default=0)
    value = Column(Text)
    revision = Column(String)

    input = relationship("JobsetInput", back_populates="alternatives")


class Build(Base):
    __tablename__ = "builds"
    __table_args__ = (
        Index("ix_builds_jobset_iscurrent", "jobset_id", "iscurrent"),
        Index("ix_builds_job_finished", "project", "job", "finished"),
    )

    id = Column(Integer, primary_key=True)
    finished = Column(Boolean, nullable=False, default=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    project = Column(String, ForeignKey("projects.name"), nullable=False)
    jobset_id = Column(Integer, ForeignKey("jobsets.id"), nullable=False)
    job = Column(String, nullable=False)

    nixname = Column(String)
    description = Column(Text)
    drvpath = Column(String, nullable=False)
    system = Column(String, nullable=False)
    license = Column(Text)
    homepage = Column(Text)
    maintainers = Column(Text)
    maxsilent = Column(Integer, default=3600)
    timeout = Column(Integer, default=36000)
    priority = Column(Integer, nullable=False, default=100)
    globalpriority = Column(Integer, nullable=False, default=0)
    ischannel = Column(Boolean, nullable=False, default=False)
    # Member of the latest winning evaluation of its jobset
    iscurrent = Column(Boolean, nullable=False, default=False)

    # Completion fields, owned by the build execution subsystem
    starttime = Column(DateTime)
    stoptime = Column(DateTime)
    buildstatus = Column(Integer)
    releasename = Column(String)
    keep = Column(Boolean, nullable=False, default=False)
    # Set when a build finished but its notification was not delivered yet
    notificationpendingsince = Column(DateTime)

    jobset = relationship("Jobset")
    outputs = relationship(
        "BuildOutput", back_populates="build", order_by="BuildOutput.name",
        cascade="all, delete-orphan")
    steps = relationship(
        "BuildStep", back_populates="build", order_by="BuildStep.stepnr",
        cascade="all, delete-orphan")

    @classmethod
    def get_by_id(cls, session, build_id):
        return session.query(cls).filter_by(id=build_id).first()

    @property
    def is_successful(self):
        return self.finished and self.buildstatus == BUILD_STATUSES["succeeded"]

    def output_path(self, name="out"):
        for output in self.outputs:
            if output.name == name:
                return output.path
        return None

    def json(self):
        return {
            "id": self.id,
            "project": self.project,
            "jobset": self.jobset.name if self.jobset else None,
            "job": self.job,
            "nixname": self.nixname,
            "drvpath": self.drvpath,
            "system": self.system,
            "finished": self.finished,
            "iscurrent": self.iscurrent,
            "buildstatus": self.buildstatus,
            "buildstatus_name": INVERSE_BUILD_STATUSES.get(self.buildstatus),
            "timestamp": _utc_datetime_to_iso(self.timestamp),
            "starttime": _utc_datetime_to_iso(self.starttime),
            "stoptime": _utc_datetime_to_iso(self.stoptime),
            "outputs": {output.name: output.path for output in self.outputs},
        }

    def __repr__(self):
        return "<Build %r, %s:%s, finished %r>" % (
            self.id, self.project, self.job, self.finished)


class BuildOutput(Base):
    __tablename__ = "buildoutputs"
    __table_args__ = (Index("ix_buildoutputs_path", "path"),)

    build_id = Column(Integer, ForeignKey("builds.id"), primary_key=True)
    name = Column(String, primary_key=True)
    path = Column(String, nullable=False)

    build = relationship("Build", back_populates="outputs")


class BuildStep(Base):
    __tablename__ = "buildsteps"

    build_id = Column(Integer, ForeignKey("builds.id"), primary_key=True)
    stepnr = Column(Integer, primary_key=True)
    type = Column(Integer, nullable=False, default=0)
    drvpath = Column(String)
    status = Column(Integer)
    errormsg = Column(Text)
    starttime = Column(DateTime)
    stoptime = Column(DateTime)
    machine = Column(String, nullable=False, default="")
    system = Column(String)

    build = relationship("Build", back_populates="steps")

    @classmethod
    def get(cls, session, build_id, stepnr):
        return session.query(cls).filter_by(build_id=build_id, stepnr=stepnr).first()

    def json(self):
        return {
            "build": self.build_id,
            "stepnr": self.stepnr,
            "drvpath": self.drvpath,
            "status": self.status,
            "machine": self.machine,
            "system": self.system,
            "starttime": _utc_datetime_to_iso(self.starttime),
            "stoptime": _utc_datetime_to_iso(self.stoptime),
        }

    def __repr__(self):
        return "<BuildStep %r of build %r>" % (self.stepnr, self.build_id)


class EvaluationError(Base):
    __tablename__ = "evaluationerrors"

    id = Column(Integer, primary_key=True)
    errormsg = Column(Text)
    errortime = Column(DateTime)


class JobsetEval(Base):
    __tablename__ = "jobsetevals"
    __table_args__ = (Index("ix_jobsetevals_jobset", "jobset_id", "hasnewbuilds"),)

    id = Column(Integer, primary_key=True)
    jobset_id = Column(Integer, ForeignKey("jobsets.id"), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    # Durations of input resolution and of the evaluator run, in seconds
    checkouttime = Column(Integer, nullable=False, default=0)
    evaltime = Column(Integer, nullable=False, default=0)
    hasnewbuilds = Column(Boolean, nullable=False)
    hash = Column(String, nullable=False)
    nrbuilds = Column(Integer)
    nrsucceeded = Column(Integer)
    flake = Column(String)
    nixexprinput = Column(String)
    nixexprpath = Column(String)
    evaluationerror_id = Column(Integer, ForeignKey("evaluationerrors.id"))

    jobset = relationship("Jobset")
    evaluationerror = relationship("EvaluationError")
    members = relationship("JobsetEvalMember", back_populates="eval")
    inputs = relationship(
        "JobsetEvalInput", back_populates="eval",
        order_by="[JobsetEvalInput.name, JobsetEvalInput.altnr]")
    builds = relationship("Build", secondary="jobsetevalmembers", viewonly=True)

    @classmethod
    def get_previous(cls, session, jobset, has_new_builds=True):
        """ Return the latest evaluation of the jobset.

        :param has_new_builds: only consider the evaluations which changed the
            set of current builds ("winning" evaluations)
        """
        query = session.query(cls).filter_by(jobset_id=jobset.id)
        if has_new_builds:
            query = query.filter_by(hasnewbuilds=True)
        return query.order_by(cls.id.desc()).first()

    @classmethod
    def latest_finished(cls, session, jobset):
        """ Return the latest winning evaluation all builds of which are finished. """
        unfinished = exists().where(and_(
            JobsetEvalMember.eval_id == cls.id,
            JobsetEvalMember.build_id == Build.id,
            Build.finished.is_(False),
        ))
        return (
            session.query(cls)
            .filter(cls.jobset_id == jobset.id, cls.hasnewbuilds.is_(True), ~unfinished)
            .order_by(cls.id.desc())
            .first()
        )

    def member_count(self, session):
        return session.query(JobsetEvalMember).filter_by(eval_id=self.id).count()

    def json(self):
        return {
            "id": self.id,
            "jobset_id": self.jobset_id,
            "timestamp": _utc_datetime_to_iso(self.timestamp),
            "hasnewbuilds": self.hasnewbuilds,
            "hash": self.hash,
            "nrbuilds": self.nrbuilds,
            "flake": self.flake,
        }

    def __repr__(self):
        return "<JobsetEval %r of jobset %r, hasnewbuilds %r>" % (
            self.id, self.jobset_id, self.hasnewbuilds)


class JobsetEvalInput(Base):
    __tablename__ = "jobsetevalinputs"

    id = Column(Integer, primary_key=True)
    eval_id = Column(Integer, ForeignKey("jobsetevals.id"), nullable=False)
    name = Column(String, nullable=False)
    altnr = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    uri = Column(String)
    revision = Column(String)
    value = Column(Text)
    dependency_id = Column(Integer, ForeignKey("builds.id"))
    path = Column(String)
    sha256hash = Column(String)

    eval = relationship("JobsetEval", back_populates="inputs")


class JobsetEvalMember(Base):
    __tablename__ = "jobsetevalmembers"
    __table_args__ = (Index("ix_jobsetevalmembers_build", "build_id"),)

    eval_id = Column(Integer, ForeignKey("jobsetevals.id"), primary_key=True)
    build_id = Column(Integer, ForeignKey("builds.id"), primary_key=True)
    isnew = Column(Boolean, nullable=False)

    eval = relationship("JobsetEval", back_populates="members")
    build = relationship("Build")


class AggregateConstituent(Base):
    __tablename__ = "aggregateconstituents"

    aggregate_id = Column(Integer, ForeignKey("builds.id"), primary_key=True)
    constituent_id = Column(Integer, ForeignKey("builds.id"), primary_key=True)


def set_current_builds(session, jobset, build_ids):
    """ Make exactly ``build_ids`` the current builds of the jobset. """
    cleared = (
        session.query(Build)
        .filter_by(jobset_id=jobset.id, iscurrent=True)
        .update({"iscurrent": False}, synchronize_session="fetch")
    )
    if build_ids:
        session.query(Build).filter(Build.id.in_(build_ids)).update(
            {"iscurrent": True}, synchronize_session="fetch")
    log.debug("%r: %d builds no longer current, %d current", jobset, cleared, len(build_ids))
