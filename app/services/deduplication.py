"""
Deduplicación de eventos del gateway.

El gateway puede reenviar el mismo messages.upsert varias veces en
pocos segundos. Se reclama el id del mensaje antes de procesarlo; un
segundo reclamo dentro del TTL se descarta.
"""

import asyncio
import time
from typing import Dict

import structlog

logger = structlog.get_logger()


class EventDeduplicator:
    def __init__(self, ttl_seconds: float = 60.0, max_entries: int = 10000):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._seen: Dict[str, float] = {}
        self._lock = asyncio.Lock()
        self.duplicates_filtered = 0

    @staticmethod
    def key_for(instance_id: str, message_id: str) -> str:
        return f"{instance_id}:{message_id}"

    async def claim(self, instance_id: str, message_id: str) -> bool:
        """True si el evento es nuevo y debe procesarse."""
        key = self.key_for(instance_id, message_id)
        now = time.monotonic()
        async with self._lock:
            seen_at = self._seen.get(key)
            if seen_at is not None and now - seen_at <= self.ttl_seconds:
                self.duplicates_filtered += 1
                logger.info("duplicate_event_filtered", message_id=message_id, instance_id=instance_id)
                return False
            self._seen[key] = now
            if len(self._seen) > self.max_entries:
                self._evict(now)
        return True

    async def release(self, instance_id: str, message_id: str) -> None:
        """Libera el reclamo para permitir la reentrega (p. ej. tras un fallo de almacenamiento)."""
        async with self._lock:
            self._seen.pop(self.key_for(instance_id, message_id), None)

    def _evict(self, now: float) -> None:
        expired = [key for key, seen_at in self._seen.items() if now - seen_at > self.ttl_seconds]
        for key in expired:
            del self._seen[key]
        # Si todo sigue vigente, se descartan los más antiguos
        overflow = len(self._seen) - self.max_entries
        if overflow > 0:
            for key in sorted(self._seen, key=self._seen.get)[:overflow]:
                del self._seen[key]
        logger.debug("dedup_cache_evicted", removed=len(expired), size=len(self._seen))
