import logging
from counselbook.core.config import settings
from counselbook.platform.ports.event_bus import EventBusPort
from counselbook.platform.adapters.bus_noop import NoopEventBus
from counselbook.platform.adapters.bus_redis import RedisEventBus

log = logging.getLogger("providers")

class ProviderRegistry:
    _event_bus: EventBusPort | None = None

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                cls._event_bus = RedisEventBus()
            else:
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def use_event_bus(cls, bus: EventBusPort | None):
        cls._event_bus = bus

    @classmethod
    async def close(cls):
        """Release the bus connection, if the adapter holds one. The next event_bus() call builds a fresh one."""
        bus, cls._event_bus = cls._event_bus, None
        close = getattr(bus, "close", None)
        if close is not None:
            await close()
            log.info("event bus %s closed", type(bus).__name__)

registry = ProviderRegistry()
