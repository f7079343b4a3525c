from typing import Protocol, runtime_checkable

@runtime_checkable
class EventBusPort(Protocol):
    """Publishes change notifications; delivery is at-least-once via the outbox relay."""

    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...

    async def close(self) -> None: ...
