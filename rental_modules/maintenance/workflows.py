"""
Maintenance Workflows.

State machine for maintenance requests:

    pending ---start---> in_progress ---complete---> completed
       |                      |
       +-------cancel---------+-----------------> canceled

Completed and canceled are terminal.  Anything else (backward moves,
skipping in_progress, leaving a terminal state) is rejected.
"""

from rental_kernel.domain.workflow import Transition, Workflow
from rental_modules.maintenance.models import MaintenanceStatus

_PENDING = MaintenanceStatus.PENDING.value
_IN_PROGRESS = MaintenanceStatus.IN_PROGRESS.value
_COMPLETED = MaintenanceStatus.COMPLETED.value
_CANCELED = MaintenanceStatus.CANCELED.value

MAINTENANCE_WORKFLOW = Workflow(
    name="maintenance_request",
    description="Maintenance request lifecycle",
    initial_state=_PENDING,
    states=(_PENDING, _IN_PROGRESS, _COMPLETED, _CANCELED),
    transitions=(
        Transition(_PENDING, _IN_PROGRESS, action="start"),
        Transition(_IN_PROGRESS, _COMPLETED, action="complete"),
        Transition(_PENDING, _CANCELED, action="cancel"),
        Transition(_IN_PROGRESS, _CANCELED, action="cancel"),
    ),
    terminal_states=(_COMPLETED, _CANCELED),
)
