"""Example: a diagnostics publisher and a subscriber on the loopback bus."""

import asyncio
import logging

from topicbus import InMemoryConnection, Topic

logging.basicConfig(level=logging.INFO)


async def main() -> None:
    bus = InMemoryConnection()
    bus.on("error", lambda error: print(f"bus error: {error}"))
    await bus.connect()

    topic = Topic(bus, "/robot/diagnostics_agg", "diagnostic_msgs/DiagnosticArray")

    def on_diagnostics(message) -> None:
        for status in message.status:
            print(f"{status['name']}: level {status['level']}")

    await topic.subscribe(on_diagnostics)
    topic.publish({"status": [{"name": "battery", "level": 0, "message": "OK"}]})
    await topic.publish({"status": [{"name": "motors", "level": 1, "message": "Hot"}]})
    await asyncio.sleep(0)

    await topic.close()
    await bus.close()


if __name__ == "__main__":
    asyncio.run(main())
