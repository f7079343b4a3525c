from datetime import date
from hms_scheduling.core.clock import Clock, system_clock
from hms_scheduling.modules.availability.slot_generator import SlotGeneratorContext, DayAvailability, compute_availability

def preview_availability(ctx: SlotGeneratorContext, start: date, end: date, clock: Clock = system_clock) -> list[DayAvailability]:
    """Offline preview of a draft schedule, computed by the same pipeline the server runs."""
    return compute_availability(ctx, start, end, clock.now())
