"""
Supabase-backed job queue (job_queue table).

Jobs are claimed through the `claim_job` RPC when it is available; when the
RPC errors out we fall back to polling the table and pushing `available_at`
into the future as a visibility timeout.
"""

from __future__ import annotations

import datetime
import json
import os
import time

from supabase import create_client

SB = create_client(
    os.getenv("SUPABASE_URL"),
    os.getenv("SUPABASE_SERVICE_ROLE_KEY"),
)

USE_RPC = os.getenv("QUEUE_USE_RPC", "1").lower() not in {"0", "false", "no"}
# Also poll the table when the RPC succeeds but hands back nothing.
ALLOW_FALLBACK = os.getenv("QUEUE_ALLOW_FALLBACK", "0").lower() in {"1", "true", "yes"}

RPC_ERROR_LOG_INTERVAL = 60.0
_LAST_RPC_ERROR_LOG_AT = 0.0


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _decode_payload(value):
    if isinstance(value, (bytes, str)):
        return json.loads(value)
    return value


def _log_rpc_error(exc: Exception) -> None:
    global _LAST_RPC_ERROR_LOG_AT
    now = time.time()
    if now - _LAST_RPC_ERROR_LOG_AT < RPC_ERROR_LOG_INTERVAL:
        return
    _LAST_RPC_ERROR_LOG_AT = now
    print(f"[queue] claim_job rpc failed, polling table instead: {exc}", flush=True)


# ------------------------------------------------------------------
def send(queue: str, payload: dict, *, client=None):
    sb = client or SB
    sb.table("job_queue").insert(
        {"queue": queue, "payload": json.dumps(payload, ensure_ascii=False)}
    ).execute()


# ------------------------------------------------------------------
def _receive_via_rpc(queue: str, vt_seconds: int):
    rows = (
        SB.rpc("claim_job", {"p_queue": queue, "p_vt_seconds": vt_seconds})
        .execute()
        .data
    )
    if not rows:
        return None
    row = rows[0] if isinstance(rows, list) else rows
    return {"row_id": row["id"], "payload": _decode_payload(row["payload"])}


def _receive_via_table(queue: str, vt_seconds: int):
    now = _now()
    vt_until = (now + datetime.timedelta(seconds=vt_seconds)).isoformat()

    # 1 · pick one due job
    rows = (
        SB.table("job_queue")
        .select("id,payload")
        .eq("queue", queue)
        .lte("available_at", now.isoformat())
        .order("id")
        .limit(1)
        .execute()
        .data
    )
    if not rows:
        return None

    row_id = rows[0]["id"]

    # 2 · claim it by pushing its visibility timeout into the future
    SB.table("job_queue").update({"available_at": vt_until}).eq("id", row_id).execute()

    return {"row_id": row_id, "payload": _decode_payload(rows[0]["payload"])}


def receive(queue: str, vt_seconds: int = 30):
    if not USE_RPC:
        return _receive_via_table(queue, vt_seconds)

    try:
        job = _receive_via_rpc(queue, vt_seconds)
    except Exception as exc:  # noqa: BLE001
        _log_rpc_error(exc)
        return _receive_via_table(queue, vt_seconds)

    if job is None and ALLOW_FALLBACK:
        return _receive_via_table(queue, vt_seconds)
    return job


# ------------------------------------------------------------------
def ack(row_id: int):
    SB.table("job_queue").delete().eq("id", row_id).execute()
