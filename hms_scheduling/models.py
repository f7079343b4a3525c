# Importing this module registers every table on Base.metadata.
from hms_scheduling.modules.directory.models import Doctor, Location  # noqa: F401
from hms_scheduling.modules.schedules.models import ScheduleTemplate, ScheduleException, Leave, Holiday  # noqa: F401
from hms_scheduling.modules.appointments.models import Appointment, AppointmentType  # noqa: F401
from hms_scheduling.modules.events.outbox import EventOutbox  # noqa: F401
