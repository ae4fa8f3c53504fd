from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)
_settings = get_settings()
_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception as e:
        logger.warning("nats drain failed: %s", e)

async def _publish(subject: str, evt: dict) -> None:
    if not _settings.events_enabled:
        return
    try:
        await nats_connect()
        await _nats.publish(subject, json.dumps(evt).encode("utf-8"))
    except Exception as e:
        logger.warning("publish to %s failed: %s", subject, e)

async def publish_claimed(evt: dict):
    """
    evt = {
      "perk_id": str,
      "user_id": str,
      "claimed_at": iso8601,
      "idempotency_key": "perk_id:user_id"
    }
    """
    await _publish(_settings.nats_subject_claimed, evt)

async def publish_redeemed(evt: dict):
    """
    evt = {
      "perk_id": str,
      "redeemed": int,
      "redeemed_at": iso8601,
      "idempotency_key": "redeem:<claim id>"
    }
    """
    await _publish(_settings.nats_subject_redeemed, evt)
