"""
Link extractor worker: pulls safe links out of a fan message and stores them on
message_ai_details.extras.links, then hands them to the unfurl queue.
"""

from __future__ import annotations

import hashlib
import os
import time
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import ClientOptions, create_client

from linkworkers.lib.job_utils import enqueue_once
from linkworkers.lib.link_utils import extract_links_from_message, resolve_max_links
from linkworkers.lib.simple_queue import ack, receive

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

if not SUPABASE_URL or not SUPABASE_KEY:
    raise RuntimeError("Missing Supabase configuration for LinkExtractor")

SB = create_client(
    SUPABASE_URL,
    SUPABASE_KEY,
    options=ClientOptions(
        headers={
            "Authorization": f"Bearer {SUPABASE_KEY}",
        }
    ),
)

QUEUE = "links.extract"
UNFURL_QUEUE = os.getenv("LINK_EXTRACTOR_UNFURL_QUEUE", "links.unfurl")


def _parse_cap(value: Any) -> Optional[float]:
    """Best-effort numeric cap from env/payload; None lets the library default apply."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


MAX_LINKS = _parse_cap(os.getenv("LINK_EXTRACTOR_MAX_LINKS"))


def _merge_extras(existing: dict, patch: dict) -> dict:
    merged = {}
    merged.update(existing or {})
    merged.update(patch or {})
    return merged


def build_links_blob(urls: List[str], max_links: Optional[float]) -> Dict[str, Any]:
    return {
        "status": "ok" if urls else "empty",
        "urls": list(urls),
        "count": len(urls),
        "max_links": resolve_max_links(max_links),
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def _load_existing_extras(fan_msg_id: Any, thread_id: Any) -> dict:
    details_rows = (
        SB.table("message_ai_details")
        .select("extras")
        .eq("message_id", fan_msg_id)
        .limit(1)
        .execute()
        .data
        or []
    )
    if details_rows:
        return details_rows[0].get("extras") or {}

    # Seed a minimal row so the update below has something to land on.
    try:
        SB.table("message_ai_details").insert(
            {
                "message_id": fan_msg_id,
                "thread_id": thread_id,
                "sender": "fan",
                "raw_hash": hashlib.sha256(
                    f"link_extractor_seed:{thread_id}:{fan_msg_id}".encode("utf-8")
                ).hexdigest(),
                "extras": {},
            }
        ).execute()
    except Exception as exc:  # noqa: BLE001
        # Usually a concurrent writer created the row first.
        print(f"[LinkExtractor] seed row insert failed for {fan_msg_id}: {exc}", flush=True)
    return {}


def process_job(payload: Dict[str, Any]) -> bool:
    if not payload or "message_id" not in payload:
        raise ValueError(f"Malformed job payload: {payload}")

    fan_msg_id = payload["message_id"]
    max_links = _parse_cap(payload.get("max_links"))
    if max_links is None:
        max_links = MAX_LINKS

    msg_row = (
        SB.table("messages")
        .select("id,thread_id,message_text")
        .eq("id", fan_msg_id)
        .single()
        .execute()
        .data
    )
    if not msg_row:
        raise ValueError(f"Message {fan_msg_id} not found")

    thread_id = msg_row.get("thread_id")
    urls = extract_links_from_message(msg_row.get("message_text"), max_links=max_links)

    existing_extras = _load_existing_extras(fan_msg_id, thread_id)
    merged_extras = _merge_extras(existing_extras, {"links": build_links_blob(urls, max_links)})
    SB.table("message_ai_details").update({"extras": merged_extras}).eq(
        "message_id", fan_msg_id
    ).execute()

    if urls:
        enqueue_once(UNFURL_QUEUE, {"message_id": fan_msg_id, "urls": urls}, client=SB)

    return True


if __name__ == "__main__":
    print("[LinkExtractor] started - waiting for jobs", flush=True)
    while True:
        job = receive(QUEUE, 30)
        if not job:
            time.sleep(1)
            continue
        row_id = job["row_id"]
        try:
            payload = job["payload"]
            if process_job(payload):
                ack(row_id)
        except Exception as exc:  # noqa: BLE001
            print("[LinkExtractor] error:", exc, flush=True)
            traceback.print_exc()
            # Let the job retry
            time.sleep(2)
