"""Idempotent enqueue helpers on top of the job_queue table."""

from __future__ import annotations

from typing import Any

from linkworkers.lib import simple_queue


def job_exists(queue: str, message_id: Any, *, client=None, field: str = "message_id") -> bool:
    """
    True if `queue` already holds a job whose payload->{field} equals message_id.
    Ids are compared as text so "42" and 42 are the same job.
    """
    sb = client or simple_queue.SB
    jobs = (
        sb.table("job_queue")
        .select("id")
        .eq("queue", queue)
        .filter(f"payload->>{field}", "eq", str(message_id))
        .limit(1)
        .execute()
        .data
    )
    return bool(jobs)


def enqueue_once(queue: str, payload: dict, *, client=None, field: str = "message_id") -> bool:
    """
    Send `payload` to `queue` unless a job for the same payload[field] is
    already waiting. Returns True when a job was enqueued.
    """
    if field not in payload:
        raise ValueError(f"payload is missing {field!r}: {payload}")
    if job_exists(queue, payload[field], client=client, field=field):
        return False
    simple_queue.send(queue, payload, client=client)
    return True


__all__ = ["enqueue_once", "job_exists"]
