"""
Expansion of a recurring anchor slot into dated series instances.

Pure domain logic: no ids, no persistence and no conflict checks happen here.
"""

from dataclasses import replace
from typing import List

from pendulum import Date

from .exceptions import InvalidDate
from .models import NO_RECURRENCE, Recurrence, RecurrencePattern, SlotDraft

DEFAULT_MAX_INSTANCES = 366


class RecurrenceExpander:
    """
    Materialises the instances of a recurring series.

    Step rules:
    - weekly:   anchor + 7 * k days
    - biweekly: anchor + 14 * k days
    - monthly:  anchor + k months, clamped to the last day of short months

    Every step is computed from the anchor date rather than from the previous
    instance, so a series anchored on the 31st returns to the 31st after a
    short month (Jan 31 -> Feb 29 -> Mar 31 -> Apr 30).
    """

    def __init__(self, max_instances: int = DEFAULT_MAX_INSTANCES):
        if max_instances < 1:
            raise ValueError(f"max_instances must be at least 1, got {max_instances}")
        self.max_instances = max_instances

    def expand(self, anchor: SlotDraft, recurrence: Recurrence) -> List[SlotDraft]:
        """
        Generate the instances that follow the anchor.

        The anchor itself is not part of the output. Instances are produced
        while their date is on or before ``recurrence.until_date``.

        Args:
            anchor: The user-authored first slot of the series
            recurrence: Pattern and end date of the series

        Returns:
            Ordered list of drafts, one per instance date

        Raises:
            InvalidDate: If a recurring pattern has no end date, or the series
                would exceed ``max_instances``
        """
        if not recurrence.is_recurring:
            return []

        if recurrence.until_date is None:
            raise InvalidDate(
                f"A {recurrence.pattern.value} series needs an end date"
            )

        if recurrence.until_date <= anchor.date:
            return []

        instances: List[SlotDraft] = []
        step = 1

        while True:
            occurrence = self.occurrence_date(anchor.date, recurrence.pattern, step)
            if occurrence > recurrence.until_date:
                break

            if len(instances) >= self.max_instances:
                raise InvalidDate(
                    f"Series from {anchor.date.to_date_string()} until "
                    f"{recurrence.until_date.to_date_string()} exceeds "
                    f"{self.max_instances} instances"
                )

            instances.append(
                replace(anchor, date=occurrence, recurrence=NO_RECURRENCE)
            )
            step += 1

        return instances

    @staticmethod
    def occurrence_date(anchor_date: Date, pattern: RecurrencePattern, step: int) -> Date:
        """Date of the ``step``-th occurrence after the anchor."""
        if pattern is RecurrencePattern.WEEKLY:
            return anchor_date.add(days=7 * step)
        if pattern is RecurrencePattern.BIWEEKLY:
            return anchor_date.add(days=14 * step)
        if pattern is RecurrencePattern.MONTHLY:
            return anchor_date.add(months=step)
        raise InvalidDate(f"Pattern {pattern.value!r} does not repeat")
