"""
Main CLI application using Typer.
"""

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional, Tuple

import pendulum
import typer
from pendulum import DateTime
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..adapters.memory_store import InMemoryAppointmentStore
from ..adapters.sql_store import SqlAppointmentStore
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import BookingError, ConflictOnCommit, RetryableBookingError
from ..domain.models import ANY_EMPLOYEE, DayStatus, ValidationResult
from ..services.engine import BookingEngine

app = typer.Typer(
    name="salonbooking",
    help="Check salon appointment availability and book without double booking",
    add_completion=False,
)

console = Console()

STATUS_STYLES = {
    DayStatus.AVAILABLE: "green",
    DayStatus.PARTIALLY_BOOKED: "yellow",
    DayStatus.FULLY_BOOKED: "red",
    DayStatus.UNAVAILABLE: "dim",
}

ConfigOption = Annotated[
    Optional[Path], typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml")
]
AppointmentsOption = Annotated[
    Optional[Path], typer.Option("--appointments", "-a", help="JSON file with existing appointments")
]
DatabaseOption = Annotated[
    Optional[str], typer.Option("--database", help="Database URL of the appointment store")
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")]


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    return AppConfig.load_from_yaml(config_path)


async def _open_store(
    config: AppConfig,
    appointments: Optional[Path],
    database: Optional[str],
):
    if appointments and database:
        console.print("[red]Error: --appointments and --database cannot be combined.[/red]")
        raise typer.Exit(1)

    if database:
        store = SqlAppointmentStore.from_url(database)
        await store.create_schema()
        return store

    if appointments:
        return InMemoryAppointmentStore.load_from_json(appointments, timezone=config.timezone)

    return InMemoryAppointmentStore()


async def _close_store(store) -> None:
    if isinstance(store, SqlAppointmentStore):
        await store.dispose()


def _parse_day(value: str, tz: str) -> pendulum.Date:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD", tz=tz).date()
    except ValueError as e:
        console.print(f"[red]Error parsing date '{value}': {e}[/red]")
        raise typer.Exit(1)


def _parse_start(value: str, tz: str) -> DateTime:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD HH:mm", tz=tz)
    except ValueError as e:
        console.print(f"[red]Error parsing start time '{value}' (expected YYYY-MM-DD HH:mm): {e}[/red]")
        raise typer.Exit(1)


def _determine_date_range(
    *,
    tz: str,
    horizon_days: int,
    this_week: bool,
    next_week: bool,
    start_option: Optional[str],
    end_option: Optional[str],
) -> Tuple[pendulum.Date, pendulum.Date]:
    """
    Resolve the desired date range based on shortcut flags or explicit dates.
    """
    if this_week and next_week:
        console.print("[red]Error: --this-week and --next-week cannot be used together.[/red]")
        raise typer.Exit(1)

    today = pendulum.now(tz).date()

    if this_week:
        return today, today.end_of("week")

    if next_week:
        next_monday = today.next(pendulum.MONDAY)
        return next_monday, next_monday.add(days=6)

    start_date = _parse_day(start_option, tz) if start_option else today
    end_date = _parse_day(end_option, tz) if end_option else start_date.add(days=horizon_days - 1)
    return start_date, end_date


def _print_validation(result: ValidationResult) -> None:
    if result.valid:
        console.print("[bold green]✓ Time is bookable[/bold green]")
        return

    console.print(f"[bold red]✗ {result.reason}[/bold red] [dim]({result.failure.value})[/dim]")
    if result.suggestions:
        console.print("\n[bold]Nearest alternatives:[/bold]")
        for slot in result.suggestions:
            employee = f" [dim]{slot.employee_id}[/dim]" if slot.employee_id else ""
            console.print(f"  {slot.format_display()}{employee}")


@app.command()
def days(
    salon: Annotated[str, typer.Argument(help="Salon id")],
    service: Annotated[str, typer.Option("--service", "-s", help="Service id")],
    employee: Annotated[Optional[str], typer.Option("--employee", "-e", help="Employee id or name. Omit for any employee.")] = None,
    start: Annotated[Optional[str], typer.Option("--start", help="Start date (YYYY-MM-DD)")] = None,
    end: Annotated[Optional[str], typer.Option("--end", help="End date (YYYY-MM-DD)")] = None,
    this_week: Annotated[bool, typer.Option("--this-week", help="From today to the end of this week.")] = False,
    next_week: Annotated[bool, typer.Option("--next-week", help="Next week, Monday to Sunday.")] = False,
    config_file: ConfigOption = None,
    appointments: AppointmentsOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
):
    """
    Show the occupancy of each day in a date range.

    Examples:

        salonbooking days salon-1 --service haircut
        salonbooking days salon-1 -s haircut -e alice --next-week
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file)
        start_date, end_date = _determine_date_range(
            tz=config.timezone,
            horizon_days=config.booking.default_horizon_days,
            this_week=this_week,
            next_week=next_week,
            start_option=start,
            end_option=end,
        )
        employee_id = config.resolve_employee(salon, employee) if employee else None

        async def run():
            store = await _open_store(config, appointments, database)
            try:
                engine = BookingEngine.from_config(config, store)
                return await engine.get_day_availability(salon, start_date, end_date, service, employee_id)
            finally:
                await _close_store(store)

        summary = asyncio.run(run())

        table = Table(
            title=f"Availability {salon} ({employee_id or 'any employee'})",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Date", style="bold")
        table.add_column("Status")
        table.add_column("Free", justify="right")
        table.add_column("Total", justify="right")

        for day in summary:
            style = STATUS_STYLES[day.status]
            table.add_row(
                day.date.format("ddd DD.MM.YYYY"),
                f"[{style}]{day.status.value}[/{style}]",
                str(day.available_slots),
                str(day.total_slots),
            )

        console.print()
        console.print(table)
        console.print()

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def slots(
    salon: Annotated[str, typer.Argument(help="Salon id")],
    day: Annotated[str, typer.Argument(help="Date (YYYY-MM-DD)")],
    service: Annotated[str, typer.Option("--service", "-s", help="Service id")],
    employee: Annotated[Optional[str], typer.Option("--employee", "-e", help="Employee id or name. Omit for any employee.")] = None,
    show_all: Annotated[bool, typer.Option("--all", help="Also list unavailable slots.")] = False,
    config_file: ConfigOption = None,
    appointments: AppointmentsOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
):
    """
    List the bookable slots of one day.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file)
        target = _parse_day(day, config.timezone)
        employee_id = config.resolve_employee(salon, employee) if employee else None

        async def run():
            store = await _open_store(config, appointments, database)
            try:
                engine = BookingEngine.from_config(config, store)
                return await engine.get_slots_for_date(salon, target, service, employee_id)
            finally:
                await _close_store(store)

        day_slots = asyncio.run(run())
        shown = day_slots if show_all else [slot for slot in day_slots if slot.available]

        console.print()
        if not shown:
            console.print(
                "[yellow]⚠ No available slots found.[/yellow]\n"
                "Try another day or another employee."
            )
        else:
            console.print(f"[bold green]✓ {len(shown)} slot(s):[/bold green]\n")
            for slot in shown:
                style = "green" if slot.available else "dim"
                employee_label = f"  [dim]{slot.employee_id}[/dim]" if slot.employee_id and not employee_id else ""
                console.print(f"  [{style}]{slot.format_display()}[/{style}]{employee_label}")
        console.print()

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def check(
    salon: Annotated[str, typer.Argument(help="Salon id")],
    employee: Annotated[str, typer.Argument(help="Employee id or name")],
    start: Annotated[str, typer.Argument(help="Start time (YYYY-MM-DD HH:mm)")],
    service: Annotated[str, typer.Option("--service", "-s", help="Service id")],
    config_file: ConfigOption = None,
    appointments: AppointmentsOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
):
    """
    Validate a requested start time for one employee.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file)
        employee_id = config.resolve_employee(salon, employee)
        requested_start = _parse_start(start, config.timezone)

        async def run():
            store = await _open_store(config, appointments, database)
            try:
                engine = BookingEngine.from_config(config, store)
                booked_service = await engine.aggregator.load_service(service)
                requested_end = requested_start.add(minutes=booked_service.duration_minutes)
                return await engine.validate_booking(
                    employee_id, service, requested_start, requested_end, salon_id=salon
                )
            finally:
                await _close_store(store)

        console.print()
        _print_validation(asyncio.run(run()))
        console.print()

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def book(
    salon: Annotated[str, typer.Argument(help="Salon id")],
    start: Annotated[str, typer.Argument(help="Start time (YYYY-MM-DD HH:mm)")],
    service: Annotated[str, typer.Option("--service", "-s", help="Service id")],
    employee: Annotated[str, typer.Option("--employee", "-e", help="Employee id or name, or 'any'")] = ANY_EMPLOYEE,
    customer: Annotated[Optional[str], typer.Option("--customer", help="Customer id")] = None,
    config_file: ConfigOption = None,
    appointments: AppointmentsOption = None,
    database: DatabaseOption = None,
    verbose: VerboseOption = False,
):
    """
    Book an appointment. With a JSON appointments file the booking is written back to it.
    """
    _setup_logging(verbose)
    try:
        config = _load_config(config_file)
        requested_start = _parse_start(start, config.timezone)
        employee_id = (
            ANY_EMPLOYEE if employee == ANY_EMPLOYEE else config.resolve_employee(salon, employee)
        )

        async def run():
            store = await _open_store(config, appointments, database)
            try:
                engine = BookingEngine.from_config(config, store)
                if employee_id == ANY_EMPLOYEE:
                    outcome = await engine.book_any_employee(
                        salon, service, requested_start, customer_id=customer
                    )
                else:
                    outcome = await engine.book_appointment(
                        employee_id, service, requested_start, salon_id=salon, customer_id=customer
                    )
            finally:
                await _close_store(store)
            if outcome.booked and isinstance(store, InMemoryAppointmentStore) and appointments:
                store.dump_to_json(appointments)
            return outcome

        outcome = asyncio.run(run())

        console.print()
        if outcome.booked:
            booked = outcome.appointment
            console.print(Panel.fit(
                f"[bold green]✓ Appointment booked[/bold green]\n\n"
                f"[bold]Id:[/bold] {booked.id}\n"
                f"[bold]Employee:[/bold] {booked.employee_id}\n"
                f"[bold]Time:[/bold] {booked.time_range}",
                title="Booking",
            ))
        else:
            _print_validation(outcome.validation)
        console.print()

    except ConflictOnCommit as e:
        console.print(f"[bold red]✗ {e}[/bold red] Refresh availability and pick another time.")
        for slot in e.suggestions:
            console.print(f"  {slot.format_display()}")
        raise typer.Exit(1)

    except RetryableBookingError as e:
        console.print(f"[bold red]✗ {e}[/bold red] Refresh availability and try again.")
        raise typer.Exit(1)

    except (FileNotFoundError, ValueError, BookingError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def staff(
    salon: Annotated[str, typer.Argument(help="Salon id")],
    config_file: ConfigOption = None,
):
    """
    List the employees of a salon.
    """
    try:
        config = _load_config(config_file)
        salon_config = config.find_salon(salon)
        if salon_config is None:
            console.print(f"[bold red]Error:[/bold red] Unknown salon '{salon}'")
            raise typer.Exit(1)

        if not salon_config.employees:
            console.print("[yellow]No employees configured, salon hours are used for availability.[/yellow]")
            return

        table = Table(
            title=f"Employees of {salon_config.name or salon_config.id}",
            show_header=True,
            header_style="bold cyan",
        )
        table.add_column("Id", style="bold yellow")
        table.add_column("Name")
        table.add_column("Active", style="dim")

        for employee in salon_config.employees:
            table.add_row(employee.id, employee.display_name(), "yes" if employee.active else "no")

        console.print()
        console.print(table)
        console.print()

    except (FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


@app.command()
def version():
    """
    Show version information.
    """
    from .. import __version__
    console.print(f"\n[bold cyan]salonbooking[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
