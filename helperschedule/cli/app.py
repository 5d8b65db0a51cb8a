"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Annotated

import typer
from rich.console import Console
from rich.table import Table

from ..adapters.memory_gateway import InMemorySyncGateway
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import SchedulingError
from ..domain.models import RecurrencePattern, SlotDraft, SlotStatus
from ..domain.time_grid import as_date, format_clock_time, parse_clock_time
from ..services.availability_controller import (
    AvailabilityController,
    OperationResult,
    OperationState,
)

app = typer.Typer(
    name="helper-schedule",
    help="Manage a helper's bookable availability",
    add_completion=False
)

console = Console()

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]

STATUS_STYLES = {
    SlotStatus.AVAILABLE: "green",
    SlotStatus.BOOKED: "bold cyan",
    SlotStatus.UNAVAILABLE: "dim",
}


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    config = AppConfig.load_from_yaml(config_path)
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    return config


def _run(
    config_file: Optional[Path],
    action: Callable[[AvailabilityController], Awaitable[OperationResult]],
) -> OperationResult:
    """
    Load the schedule, run one controller action and save the schedule.

    Exits with code 1 on configuration errors or a failed operation.
    """
    try:
        config = _load_config(config_file)
        gateway = InMemorySyncGateway.from_json(config.data_file)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    async def session() -> OperationResult:
        controller = AvailabilityController.from_config(config, gateway)
        started = await controller.start()
        if not started.ok:
            return started
        try:
            return await action(controller)
        finally:
            controller.stop()

    result = asyncio.run(session())

    if not result.ok:
        console.print(f"[bold red]Error:[/bold red] {result.error}")
        raise typer.Exit(1)

    gateway.dump_json(config.data_file)
    return result


def _print_day(controller: AvailabilityController, day) -> None:
    slots = controller.get_slots_for_date(day)

    table = Table(
        title=day.format("dddd, MMMM D, YYYY"),
        show_header=True,
        header_style="bold cyan"
    )
    table.add_column("Time", style="bold")
    table.add_column("Status")
    table.add_column("Buffers", style="dim")
    table.add_column("Repeats")
    table.add_column("Notes", style="dim")
    table.add_column("ID", style="dim")

    for slot in slots:
        start = format_clock_time(slot.start_time, twelve_hour=True)
        end = format_clock_time(slot.end_time, twelve_hour=True)
        style = STATUS_STYLES[slot.status]
        status = slot.status.value
        if slot.booking_ref:
            status += f" ({slot.booking_ref})"
        repeats = ""
        if slot.recurrence.is_recurring:
            repeats = f"{slot.recurrence.pattern.label()} until {slot.recurrence.until_date.to_date_string()}"
        elif slot.series_id:
            repeats = "series instance"
        table.add_row(
            f"{start} - {end}",
            f"[{style}]{status}[/{style}]",
            f"-{slot.buffer_before} / +{slot.buffer_after} min",
            repeats,
            slot.notes,
            slot.id,
        )

    console.print()
    console.print(table)
    if controller.is_day_available(day):
        console.print("[green]Available on this day[/green]")
    else:
        console.print(f"[yellow]{len(slots)} time slot(s) on this day[/yellow]")
    console.print()


def _parse_day(value: str):
    try:
        return as_date(value)
    except SchedulingError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def show(
    date: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    config_file: ConfigOption = None,
):
    """
    Show the slots of one day.
    """
    day = _parse_day(date)

    async def action(controller: AvailabilityController) -> OperationResult:
        _print_day(controller, day)
        return OperationResult(ok=True, state=OperationState.CONFIRMED)

    _run(config_file, action)


@app.command()
def toggle(
    date: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    start: Annotated[str, typer.Argument(help="Start time (HH:MM)")],
    end: Annotated[str, typer.Argument(help="End time (HH:MM)")],
    buffer_before: Annotated[Optional[int], typer.Option("--buffer-before", help="Minutes reserved before the slot")] = None,
    buffer_after: Annotated[Optional[int], typer.Option("--buffer-after", help="Minutes reserved after the slot")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes", help="Notes about this availability")] = None,
    config_file: ConfigOption = None,
):
    """
    Add a time slot, or remove it if it already exists.

    Examples:

        helper-schedule toggle 2024-01-08 09:00 10:00
        helper-schedule toggle 2024-01-08 14:00 15:00 --buffer-after 30
    """
    day = _parse_day(date)

    async def action(controller: AvailabilityController) -> OperationResult:
        controller.set_defaults(buffer_before=buffer_before, buffer_after=buffer_after, notes=notes)
        return await controller.toggle_slot(day, start, end)

    result = _run(config_file, action)
    if result.removed:
        console.print("\n[green]✓ Availability removed.[/green]\n")
    else:
        console.print("\n[green]✓ Time slot added to your schedule.[/green]\n")


@app.command()
def repeat(
    date: Annotated[str, typer.Argument(help="Anchor date (YYYY-MM-DD)")],
    start: Annotated[str, typer.Argument(help="Start time (HH:MM)")],
    end: Annotated[str, typer.Argument(help="End time (HH:MM)")],
    pattern: Annotated[RecurrencePattern, typer.Option("--pattern", "-p", help="How the slot repeats")] = RecurrencePattern.WEEKLY,
    until: Annotated[Optional[str], typer.Option("--until", help="Last date of the series (YYYY-MM-DD)")] = None,
    buffer_before: Annotated[Optional[int], typer.Option("--buffer-before", help="Minutes reserved before each slot")] = None,
    buffer_after: Annotated[Optional[int], typer.Option("--buffer-after", help="Minutes reserved after each slot")] = None,
    notes: Annotated[str, typer.Option("--notes", help="Notes about this availability")] = "",
    config_file: ConfigOption = None,
):
    """
    Create a recurring series; either every slot is created or none.
    """
    anchor_day = _parse_day(date)
    until_day = _parse_day(until) if until else None

    async def action(controller: AvailabilityController) -> OperationResult:
        try:
            anchor = SlotDraft(
                date=anchor_day,
                start_time=parse_clock_time(start),
                end_time=parse_clock_time(end),
                buffer_before=controller.defaults.buffer_before if buffer_before is None else buffer_before,
                buffer_after=controller.defaults.buffer_after if buffer_after is None else buffer_after,
                notes=notes,
            )
        except SchedulingError as e:
            return OperationResult(ok=False, state=OperationState.ROLLED_BACK, error=e)
        return await controller.create_recurring_series(anchor, pattern, until_day)

    result = _run(config_file, action)
    count = len(result.slots)
    label = f"{count} time slots" if count > 1 else "Time slot"
    console.print(f"\n[green]✓ {label} added to your schedule.[/green]\n")


@app.command()
def day(
    date: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    available: Annotated[bool, typer.Option("--on/--off", help="Mark the whole day available or unavailable")] = True,
    config_file: ConfigOption = None,
):
    """
    Mark a whole day available (default hourly grid) or unavailable.
    """
    target = _parse_day(date)

    async def action(controller: AvailabilityController) -> OperationResult:
        result = await controller.set_day_availability(target, available)
        if result.ok:
            _print_day(controller, target)
        return result

    result = _run(config_file, action)
    if result.partially_cleared:
        console.print(
            "[yellow]⚠ Booked slots on this day were kept. "
            "Cancel them separately if needed.[/yellow]\n"
        )


@app.command()
def cancel(
    slot_id: Annotated[str, typer.Argument(help="ID of the booked slot")],
    delete: Annotated[bool, typer.Option("--delete", help="Remove the slot instead of releasing it")] = False,
    config_file: ConfigOption = None,
):
    """
    Cancel the booking on a slot.
    """
    async def action(controller: AvailabilityController) -> OperationResult:
        return await controller.cancel_booking(slot_id, release=not delete)

    _run(config_file, action)
    console.print("\n[green]✓ Booking cancelled.[/green]\n")


@app.command()
def remove(
    slot_id: Annotated[str, typer.Argument(help="ID of the slot")],
    config_file: ConfigOption = None,
):
    """
    Remove a single slot, for example one occurrence of a series.
    """
    async def action(controller: AvailabilityController) -> OperationResult:
        return await controller.remove_slot(slot_id)

    _run(config_file, action)
    console.print("\n[green]✓ Availability removed.[/green]\n")


@app.command()
def bookings(
    config_file: ConfigOption = None,
):
    """
    List upcoming bookings, soonest first.
    """
    async def action(controller: AvailabilityController) -> OperationResult:
        upcoming = controller.get_upcoming_bookings()
        if not upcoming:
            console.print("\n[yellow]No upcoming bookings.[/yellow]\n")
            return OperationResult(ok=True, state=OperationState.CONFIRMED)

        table = Table(title="Upcoming Bookings", show_header=True, header_style="bold cyan")
        table.add_column("Date", style="bold")
        table.add_column("Time")
        table.add_column("Booking", style="cyan")
        table.add_column("Repeats")
        table.add_column("Notes", style="dim")

        for slot in upcoming:
            start = format_clock_time(slot.start_time, twelve_hour=True)
            end = format_clock_time(slot.end_time, twelve_hour=True)
            table.add_row(
                slot.date.to_date_string(),
                f"{start} - {end}",
                slot.booking_ref,
                slot.recurrence.pattern.label(),
                slot.notes,
            )

        console.print()
        console.print(table)
        console.print(f"\n[bold]{len(upcoming)}[/bold] upcoming booking(s)\n")
        return OperationResult(ok=True, state=OperationState.CONFIRMED, slots=upcoming)

    _run(config_file, action)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]helper-schedule[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
