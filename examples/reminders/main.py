#!/usr/bin/env python3
"""
Reminders

Schedules a few one-off reminders, a recurring heartbeat and a flaky
delivery hook, then runs the scheduler for a few seconds and prints the
resulting status counts.

Demonstrates:
- One-off, interval and cron schedules
- Per-handler retry policies
- Graceful start/stop of the polling loop
- Reading the audit log of an action
"""

import asyncio
import random
import time

from actioncue import ActionScheduler, ActionStatus, SchedulerConfig


def main():
    config = SchedulerConfig(db_path="reminders.db", poll_interval=0.1, execution_timeout=5)
    scheduler = ActionScheduler(config)

    @scheduler.handler("remind")
    def remind(user, message):
        print(f"  -> {user}: {message}", flush=True)

    @scheduler.handler("heartbeat")
    async def heartbeat():
        print(f"  heartbeat at {time.strftime('%H:%M:%S')}", flush=True)

    @scheduler.handler("deliver", retry={"max_attempts": 4, "backoff": "fixed", "base_delay": 0.5})
    async def deliver(order_id):
        if random.random() < 0.6:
            raise ConnectionError(f"courier unavailable for order {order_id}")
        print(f"  delivered order {order_id}", flush=True)

    async def run():
        async with scheduler:
            now = time.time()
            await scheduler.schedule_single("remind", now + 1, args=("ada", "stand-up in 5 minutes"))
            await scheduler.schedule_single("remind", now + 2, args=("grace", "review the release notes"))
            beat = await scheduler.schedule_interval("heartbeat", 1.0, unique=True)
            await scheduler.schedule_cron("remind", "0 9 * * 1-5", args=("team", "good morning"), unique=True)
            order = await scheduler.enqueue("deliver", 1042)

            print("Running for 5 seconds...\n")
            scheduler.start()
            await asyncio.sleep(5)
            await scheduler.stop()

            await scheduler.cancel(beat)

            print("\nStatus counts:")
            for status, count in (await scheduler.counts()).items():
                print(f"  {status.value:<12} {count}")

            print(f"\nLog for delivery {order}:")
            for entry in await scheduler.logs(order):
                print(f"  {time.strftime('%H:%M:%S', time.localtime(entry.timestamp))}  {entry.message}")

            if (await scheduler.get(order)).status == ActionStatus.FAILED:
                print("\nDelivery gave up after all retries.")

    asyncio.run(run())


if __name__ == "__main__":
    main()
