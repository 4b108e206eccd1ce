#
# For licensing see accompanying LICENSE file.
# Copyright © 2025 Apple Inc. All Rights Reserved.
#
import datetime
from typing import Sequence

from rich.console import Console
from rich.table import Table

from rackplan.capacity.bookings import BookingViews
from rackplan.capacity.lookup import CapacityBlock
from rackplan.capacity.schedule import PeriodType
from rackplan.capacity.time_utils import day_name, day_of_week

PERIOD_STYLES = {
    PeriodType.HighHybrid: "bold magenta",
    PeriodType.LowHybrid: "magenta",
    PeriodType.Performance: "bold cyan",
    PeriodType.GeneralUser: "green",
    PeriodType.Closed: "red",
}


def display_day_blocks(
    blocks_by_date: dict[datetime.date, list[CapacityBlock]],
    console: Console | None = None,
):
    """Display the capacity blocks of each date as a rich table with the following format

    ┏━━━━━━━━━━━━━━━━━━━━━━┳━━━━━━━━━━━━━━━┳━━━━━━━━━━━━━━┳━━━━━━━━━━┳━━━━━━━┓
    ┃ Day                  ┃ Time          ┃ Period       ┃ Capacity ┃ Slots ┃
    ┡━━━━━━━━━━━━━━━━━━━━━━╇━━━━━━━━━━━━━━━╇━━━━━━━━━━━━━━╇━━━━━━━━━━╇━━━━━━━┩
    """  # noqa

    console = console or Console()
    table = Table(show_header=True, header_style="bold magenta", expand=True)

    table.add_column("Day", style="cyan", no_wrap=True)
    table.add_column("Time", style="white", no_wrap=True)
    table.add_column("Period")
    table.add_column("Capacity", justify="right")
    table.add_column("Slots", justify="right", style="dim")

    for date, blocks in blocks_by_date.items():
        label = f"{day_name(day_of_week(date))} {date.isoformat()}"
        if not blocks:
            table.add_row(label, "-", "-", "-", "-")
            continue
        for i, block in enumerate(blocks):
            table.add_row(
                label if i == 0 else "",
                f"{block.start_time} - {block.end_time}",
                f"[{PERIOD_STYLES[block.period_type]}]{block.period_type}[/]",
                str(block.capacity),
                str(block.row_span),
            )
        table.add_section()

    console.print(table)


def display_booking_views(
    views: BookingViews,
    time_slots: Sequence[str],
    console: Console | None = None,
):
    """Display, per rack, occupied intervals, unavailable blocks and the slots where
    the rack is at capacity."""

    console = console or Console()
    table = Table(show_header=True, header_style="bold magenta", expand=True)

    table.add_column("Rack", justify="right", style="cyan", no_wrap=True)
    table.add_column("Booked", style="white")
    table.add_column("Unavailable", style="red")
    table.add_column("At capacity", style="yellow")

    racks = sorted(set(views.occupied) | set(views.unavailable))
    for rack in racks:
        booked = "\n".join(
            f"{o.start:%H:%M} - {o.end:%H:%M} {o.title or ''}".rstrip()
            for o in views.occupied.get(rack, [])
        )
        unavailable = "\n".join(
            f"{b.start_time} - {b.end_time} {b.period_type}"
            for b in views.unavailable.get(rack, [])
        )
        at_capacity = ", ".join(
            time_slots[index]
            for index, exhausted_racks in sorted(views.exhausted.items())
            if rack in exhausted_racks
        )
        table.add_row(str(rack), booked or "-", unavailable or "-", at_capacity or "-")

    console.print(table)
