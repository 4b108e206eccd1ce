#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from rackplan.capacity.validation import ConflictReport


class ScheduleConflictError(Exception):
    """Raised when a proposed rule overlaps an existing rule of the same side and day.

    The full report is available as `report`; the message lists every conflict.
    """

    def __init__(self, report: "ConflictReport"):
        self.report = report
        super().__init__(report.message)


class NoMatchingScheduleError(Exception):
    pass


class PersistenceError(Exception):
    pass


class InvalidTimeRangeError(ValueError):
    pass


class InvalidScheduleError(Exception):
    pass


class SideNotFoundError(Exception):
    pass
