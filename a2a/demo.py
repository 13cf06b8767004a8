"""CLI demonstration of a multi-agent orchestration run."""
from __future__ import annotations

import argparse
import asyncio
from typing import NoReturn, Optional, Sequence

from a2a.config import Config
from a2a.core.event_bus import ConversationEventBus
from a2a.core.logging import configure_logging
from a2a.core.models import CollaborationPattern, OrchestrationRequest
from a2a.runtime import build_service


async def main(goal: str, pattern: CollaborationPattern) -> None:
    config = Config.from_env()
    bus = ConversationEventBus()
    service = build_service(config, event_bus=bus)
    service.initialize()
    print(f"Registered agents: {', '.join(agent.id for agent in service.get_agents())}")

    async with bus.subscribe() as events:
        run = asyncio.create_task(
            service.execute(
                OrchestrationRequest(user_id="demo-user", goal=goal, strategy={"pattern": pattern.value})
            )
        )
        while not run.done() or not events.empty():
            try:
                event = await asyncio.wait_for(events.get(), timeout=0.1)
            except asyncio.TimeoutError:
                continue
            print(f"[{event.type.value}] agent={event.agent_id or '-'} {dict(event.data)}")
        result = run.result()

    print(f"Status: {result.status.value} in {result.duration_ms:.0f} ms")
    for outcome in result.outputs:
        print(f"- {outcome.title} -> {outcome.agent_id}: {outcome.status.value}")
    if result.final_response:
        print(f"Final response:\n{result.final_response}")


def run(argv: Optional[Sequence[str]] = None) -> NoReturn:
    parser = argparse.ArgumentParser(description="Run one goal through the A2A orchestrator")
    parser.add_argument("goal", nargs="?", default="Research the market and estimate the cost of a booking app")
    parser.add_argument(
        "--pattern",
        choices=[pattern.value for pattern in CollaborationPattern],
        default=CollaborationPattern.HIERARCHICAL.value,
    )
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    asyncio.run(main(args.goal, CollaborationPattern(args.pattern)))
    raise SystemExit(0)


if __name__ == "__main__":
    run()
