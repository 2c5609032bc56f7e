# CRUD operations package

from .member import member_crud
from .ledger import ledger_crud
from .processed_event import processed_event_crud
from .booking_pass import booking_pass_crud
from .booking import booking_crud
from .booking_issue import booking_issue_crud
from .waiver import waiver_crud, waiver_sync_run_crud

__all__ = [
    'member_crud',
    'ledger_crud',
    'processed_event_crud',
    'booking_pass_crud',
    'booking_crud',
    'booking_issue_crud',
    'waiver_crud',
    'waiver_sync_run_crud',
]
