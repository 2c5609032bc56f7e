# Database models package

from .base import Base
from .member import Member
from .ledger_entry import LedgerEntry, LedgerEntryType
from .processed_event import ProcessedEvent
from .booking_pass import BookingPass
from .booking import Booking, BookingStatus
from .booking_issue import BookingIssue, BookingIssueHistory, IssueResolution
from .waiver import Waiver, WaiverStatus, WaiverSyncRun, WaiverSyncStatus

__all__ = [
    'Base',
    'Member',
    'LedgerEntry',
    'LedgerEntryType',
    'ProcessedEvent',
    'BookingPass',
    'Booking',
    'BookingStatus',
    'BookingIssue',
    'BookingIssueHistory',
    'IssueResolution',
    'Waiver',
    'WaiverStatus',
    'WaiverSyncRun',
    'WaiverSyncStatus',
]
