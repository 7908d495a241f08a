"""rq-based pass triggering and the status event stream.

The panel wakes the engine with ``hostpanel enqueue`` (or by calling
``enqueue_pass``): a pass job lands on the ``hostpanel:passes`` queue and a
burst worker is spawned to run it.  Passes are serialized by a
single-worker policy on top of the host lock.

Every status the processor commits can be published to a Redis stream so
the panel can refresh without polling the database.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import sys
import uuid
from contextlib import suppress
from datetime import UTC, datetime

from redis import ConnectionPool, Redis
from redis.exceptions import RedisError
from rq import Callback, Queue
from rq.job import Job
from rq.registry import FailedJobRegistry, StartedJobRegistry

from hostpanel.paths import LOG_DIR

log = logging.getLogger(__name__)

REDIS_URL = os.environ.get("HOSTPANEL_REDIS_URL", "redis://localhost:6379/0")

QUEUE_PASSES = "hostpanel:passes"
HOSTPANEL_QUEUE_NAMES = (QUEUE_PASSES,)

FAILURE_TTL = 7 * 24 * 3600  # 7 days

EVENTS_STREAM = "hostpanel:events:stream"
EVENTS_STREAM_MAXLEN = int(os.environ.get("HOSTPANEL_EVENTS_STREAM_MAXLEN", "1000"))
EVENT_VERSION = 1

_pool = ConnectionPool.from_url(REDIS_URL)


def get_redis() -> Redis:
    return Redis(connection_pool=_pool)


def get_queue(name: str = QUEUE_PASSES) -> Queue:
    # Passes bound their own external commands; no rq-level timeout.
    return Queue(name, connection=get_redis(), default_timeout=-1)


def publish_event(
    entity_type: str,
    entity_id: int,
    status: str | None,
    *,
    source: str = "processor",
    extra: dict | None = None,
) -> None:
    """Publish a status change to the Redis stream. Best-effort, never raises.

    ``status`` None means the row was removed.
    """
    event: dict = {
        "event_id": str(uuid.uuid4()),
        "type": f"{entity_type}:status",
        "entity_type": entity_type,
        "id": entity_id,
        "status": status,
        "source": source,
        "v": EVENT_VERSION,
        "ts": datetime.now(UTC).isoformat(),
    }
    if extra:
        event.update(extra)
    try:
        get_redis().xadd(
            EVENTS_STREAM,
            {"data": json.dumps(event)},
            maxlen=EVENTS_STREAM_MAXLEN,
            approximate=True,
        )
    except RedisError:
        log.warning("Event publish failed (Redis unavailable): %s %s", entity_type, entity_id)


def enqueue_pass(config_path: str | None = None) -> Job:
    """Queue one reconciliation pass and make sure a worker runs it.

    A pass already waiting in the queue covers every row pending now, so
    a second request while one is queued returns the waiting job.
    """
    from hostpanel.processor import run_pass_job

    q = get_queue(QUEUE_PASSES)
    for job_id in q.job_ids:
        job = q.fetch_job(job_id)
        if job is not None:
            log.info("Pass %s already queued", job_id)
            _spawn_worker(QUEUE_PASSES, single=True)
            return job

    job_id = f"pass-{datetime.now(UTC).strftime('%Y%m%dT%H%M%S')}-{uuid.uuid4().hex[:6]}"
    job = q.enqueue(
        run_pass_job,
        config_path,
        job_id=job_id,
        on_failure=Callback("hostpanel.processor.on_pass_failure"),
        failure_ttl=FAILURE_TTL,
        description="Reconciliation pass",
    )
    _spawn_worker(QUEUE_PASSES, single=True, job_id=job_id)
    return job


def _spawn_worker(
    queue_name: str = QUEUE_PASSES, *, single: bool = False, job_id: str | None = None
) -> None:
    """Spawn a burst rq worker for ``queue_name``.

    With ``single`` no second worker is started while one is running; the
    running worker drains the queue before it exits.  When ``job_id`` is
    given, worker output goes to ``LOG_DIR/<job_id>.log``.
    """
    if single:
        redis = get_redis()
        q = Queue(queue_name, connection=redis)
        started = StartedJobRegistry(queue=q)
        lock_key = f"hostpanel:worker-lock:{queue_name}"
        if len(started) > 0:
            log.info("Worker already active for %s, skipping spawn", queue_name)
            return
        # Registry empty: any leftover lock belongs to a worker that exited.
        redis.delete(lock_key)
        if not redis.set(lock_key, "1", nx=True, ex=300):
            log.info("Spawn lock held for %s, skipping spawn", queue_name)
            return
    cmd = [sys.executable, "-m", "rq.cli", "worker", "--burst", "--url", REDIS_URL, queue_name]

    log_fh = None
    try:
        if job_id:
            LOG_DIR.mkdir(parents=True, exist_ok=True, mode=0o700)
            log_fh = open(LOG_DIR / f"{job_id}.log", "w")  # noqa: SIM115
            stdout_target = log_fh
            stderr_target = subprocess.STDOUT
        else:
            stdout_target = subprocess.DEVNULL
            stderr_target = subprocess.DEVNULL
        proc = subprocess.Popen(
            cmd, stdout=stdout_target, stderr=stderr_target, start_new_session=True
        )
    finally:
        if log_fh is not None:
            log_fh.close()  # the child keeps its own descriptor

    log.info("Spawned worker pid=%d for %s", proc.pid, queue_name)


def _exception_context(exc: Exception) -> dict[str, str]:
    return {"error_type": type(exc).__name__, "error": str(exc) or repr(exc)}


def check_redis_connection_safe() -> dict[str, bool | str | None]:
    """Probe Redis connectivity and never raise."""
    try:
        get_redis().ping()
        return {"ok": True, "error_type": None, "error": None}
    except Exception as exc:
        return {"ok": False, **_exception_context(exc)}


def get_queue_counts_safe() -> dict:
    """Queue counts for doctor checks; never raises."""
    result: dict = {
        "ok": False,
        "queues": {name: {"queued": None, "running": None, "failed": None}
                   for name in HOSTPANEL_QUEUE_NAMES},
        "error_type": None,
        "error": None,
    }
    try:
        redis = get_redis()
        redis.ping()
        counts = {}
        for name in HOSTPANEL_QUEUE_NAMES:
            q = Queue(name, connection=redis)
            counts[name] = {
                "queued": len(q),
                "running": len(StartedJobRegistry(queue=q)),
                "failed": len(FailedJobRegistry(queue=q)),
            }
        result["ok"] = True
        result["queues"] = counts
    except Exception as exc:
        result.update(_exception_context(exc))
    return result


def flush_failed_jobs() -> int:
    """Clear failed pass jobs. Returns the number removed."""
    q = Queue(QUEUE_PASSES, connection=get_redis())
    registry = FailedJobRegistry(queue=q)
    job_ids = registry.get_job_ids()
    for job_id in job_ids:
        with suppress(Exception):
            registry.remove(job_id, delete_job=True)
    return len(job_ids)
