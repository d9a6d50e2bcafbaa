"""Human-in-the-loop approval channels."""

from __future__ import annotations

import asyncio
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm

from ..utils.logger import get_logger

logger = get_logger(__name__)


class ConsoleApproval:
    """Asks the operator on the terminal whether a plan may be executed."""

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or Console()

    async def request_approval(self, plan_artifact_id: str) -> bool:
        # Confirm.ask blocks, so it runs in a worker thread; the caller's
        # timeout still applies to the await.
        answer = await asyncio.to_thread(
            Confirm.ask,
            f"Approve plan [cyan]{plan_artifact_id}[/cyan] for execution?",
            console=self.console,
            default=False,
        )
        logger.info(f"Operator answered {'yes' if answer else 'no'} for {plan_artifact_id}")
        return bool(answer)
