import json
import logging
from collections import deque
from hms_scheduling.platform.ports.event_bus import EventBusPort

log = logging.getLogger("bus.noop")

class NoopEventBus(EventBusPort):
    """Logs events instead of shipping them. The most recent ones are kept in
    ``published`` so local runs can inspect what the relay emitted."""

    def __init__(self, keep: int = 200):
        self.published: deque[tuple[str, str, dict]] = deque(maxlen=keep)

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None:
        self.published.append((topic, key, value))
        log.debug(f"[NOOP BUS] topic={topic} key={key} event={value.get('event_type')} value={json.dumps(value, default=str)}")

    async def close(self) -> None:
        self.published.clear()
