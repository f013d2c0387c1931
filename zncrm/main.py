"""Terminal entry point for the CRM backend.

Starts the backend with appointment reminders and shows reminders as they
fire while accepting a few commands for today's appointments.
"""

import asyncio
import sys
from typing import Optional

from zncrm.app.crm_app import CrmApp
from zncrm.app.list_state import OptimisticList
from zncrm.models.crm import Appointment
from zncrm.utils.date_parser import format_time, today_local
from zncrm.utils.logger import log_info, log_error


# Global queue for notifications
notification_queue: Optional[asyncio.Queue] = None


def display_notification(title: str, body: str):
    """Callback for displaying reminders from the reminder service.

    Called from the event loop by the notification dispatcher; the message is
    queued so it is printed by the display task.
    """
    message = f"{title} · {body}" if body else title
    if notification_queue is None:
        print(f"\n🔔 {message}\n")
        return
    try:
        notification_queue.put_nowait(message)
    except asyncio.QueueFull:
        print(f"\n🔔 {message}\n")


async def notification_display_task(prompt: str):
    """Background task that displays reminders as they arrive."""
    while True:
        try:
            message = await notification_queue.get()

            # Use carriage return to overwrite input prompt if needed
            print(f"\r🔔 {message}")
            print(prompt, end="", flush=True)

            log_info(f"Notification displayed: {message}")

        except asyncio.CancelledError:
            break
        except Exception as e:
            log_error(f"Error displaying notification: {e}")


def print_appointments(rows) -> None:
    if not rows:
        print("\nNo appointments today.\n")
        return
    print()
    for index, appointment in enumerate(rows, start=1):
        line = f"  {index}. {format_time(appointment.time)}  {appointment.title or 'Afspraak'}"
        if appointment.customer_display:
            line += f" ({appointment.customer_display})"
        if appointment.location:
            line += f" · {appointment.location}"
        print(line)
    print()


async def main():
    """Main application loop."""
    global notification_queue

    print("=" * 60)
    print("  ZN CRM")
    print("  Customers, cars, appointments and reminders")
    print("=" * 60)
    print()

    crm = CrmApp()
    notification_queue = asyncio.Queue(maxsize=100)
    notification_task = None

    try:
        await crm.startup()
        crm.register_notification_callback(display_notification)

        prompt = crm.config.terminal.prompt
        notification_task = asyncio.create_task(notification_display_task(prompt))

        today: OptimisticList[Appointment] = OptimisticList(
            lambda: crm.gateway.list_appointments(today_local())
        )

        print("Commands: /today, /delete <n>, /search <text>, /stats, /help, /quit")
        print("-" * 60)
        print()

        while True:
            try:
                user_input = await asyncio.to_thread(input, prompt)
                user_input = user_input.strip()

                if not user_input:
                    continue

                command, _, argument = user_input.partition(" ")

                if command in ("/quit", "/exit"):
                    print("\nTot ziens! 👋")
                    break

                elif command == "/help":
                    print("\nAvailable commands:")
                    print("  /today       - List today's appointments")
                    print("  /delete <n>  - Delete appointment n from the last /today list")
                    print("  /search <t>  - Search customers, cars and appointments")
                    print("  /stats       - Show reminder statistics")
                    print("  /quit        - Exit the application")
                    print()

                elif command == "/today":
                    print_appointments(await today.reload())

                elif command == "/delete":
                    rows = today.rows
                    if not argument.isdigit() or not 1 <= int(argument) <= len(rows):
                        print("\nUsage: /delete <n> (see /today)\n")
                        continue
                    target = rows[int(argument) - 1]
                    ok = await today.remove(target.id, lambda: crm.gateway.delete_appointment(target.id))
                    if ok:
                        print(f"\nDeleted '{target.title}'.\n")
                    else:
                        print("\nDelete failed, list reloaded.\n")
                    print_appointments(today.rows)

                elif command == "/search":
                    results = await crm.gateway.search(argument)
                    if not (results.customers or results.cars or results.appointments):
                        print("\nNo matches (type at least 2 characters).\n")
                        continue
                    print()
                    for customer in results.customers:
                        print(f"  Customer     {customer.full_name}  {customer.phone or ''}")
                    for car in results.cars:
                        owner = car.customer.full_name if car.customer else ""
                        print(f"  Car          {car.label}  {owner}")
                    for appointment in results.appointments:
                        print(f"  Appointment  {appointment.date} {format_time(appointment.time)}  "
                              f"{appointment.title} {appointment.customer_display or ''}")
                    print()

                elif command == "/stats":
                    stats = crm.get_reminder_stats()
                    monitor = stats["monitor"]
                    print("\nReminder Service:")
                    print(f"  Running: {'Yes' if stats['is_started'] else 'No'}")
                    print(f"  Permission: {monitor['permission']}")
                    print(f"  Polls run: {monitor['polls_run']}")
                    print(f"  Reminders sent: {monitor['reminders_sent']}")
                    print(f"  Fetch failures: {monitor['fetch_failures']}")
                    print()

                else:
                    print(f"\nUnknown command: {user_input}")
                    print("Type /help for available commands.\n")

            except KeyboardInterrupt:
                print("\n\nInterrupted. Type /quit to exit gracefully.\n")
                continue

            except Exception as e:
                log_error(f"Error in command loop: {e}")
                print("\nSomething went wrong. Please try again.\n")
                continue

    except Exception as e:
        log_error(f"Fatal error: {e}")
        import traceback
        log_error(traceback.format_exc())
        print(f"\nFatal error: {e}")

    finally:
        log_info("Shutting down...")

        if notification_task is not None:
            notification_task.cancel()
            try:
                await notification_task
            except asyncio.CancelledError:
                pass

        await crm.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)
