"""Completion calls bracketed by their own credit reservation.

How a reservation is settled depends on how the call ended:

- Usage reported: adjusted to the actual cost.
- Failed before the provider could consume tokens: refunded.
- Anything else (timeout, cancellation, missing usage): handed to the cost
  verification worker, or charged at the reserved amount when no worker can
  be reached.
"""

import logging
from collections.abc import Awaitable
from typing import Any

from chronomem.core.exceptions import LLMConnectionError, ModelNotFoundError
from chronomem.core.types import CreditReservation
from chronomem.credits.ledger import CreditContext, settle_safely
from chronomem.credits.pricing import estimate_completion_cost, usage_cost
from chronomem.llm.client import CompletionResult, OllamaClient
from chronomem.llm.credentials import ResolvedCredential
from chronomem.queue.cost_verification import CostVerificationQueue

logger = logging.getLogger(__name__)

COMPLETION_PROVIDER = "ollama"

# Failures raised before the provider could have consumed any tokens
NOTHING_CONSUMED = (LLMConnectionError, ModelNotFoundError)


class BilledCompletions:
    """Runs completions that each hold and settle one reservation.

    Attributes:
        llm_client: Completion client.
        description: Description recorded on settled charges.
        tool_call: Tool-call tag recorded on settled charges.
        cost_verification: Receives reservations whose usage is unknown.
        max_completion_tokens: Completion cap, also used to size reservations.
    """

    def __init__(
        self,
        llm_client: OllamaClient,
        *,
        description: str,
        tool_call: str,
        cost_verification: CostVerificationQueue | None = None,
        max_completion_tokens: int = 2000,
    ):
        self.llm_client = llm_client
        self.description = description
        self.tool_call = tool_call
        self.cost_verification = cost_verification
        self.max_completion_tokens = max_completion_tokens

    async def complete(
        self,
        model: str,
        system: str,
        messages: list[dict[str, str]],
        credential: ResolvedCredential,
        workspace_id: str | None,
        *,
        agent_id: str | None = None,
        conversation_id: str | None = None,
        credit_context: CreditContext | None = None,
    ) -> CompletionResult:
        """Call the model, reserving credits first when a context is given.

        No reservation is made without both a credit context and a workspace.

        Raises:
            InsufficientCreditsError: If the reservation cannot be made.
            LLMError: If the model call fails; the reservation is settled
                before the error propagates.
        """
        reservation: CreditReservation | None = None
        if credit_context is not None and workspace_id:
            prompt_text = "\n".join([system, *(m["content"] for m in messages)])
            reservation = await credit_context.reserve(
                workspace_id,
                estimate_completion_cost(model, prompt_text, self.max_completion_tokens),
                uses_byok=credential.uses_byok,
                provider=COMPLETION_PROVIDER,
                model=model,
                conversation_id=conversation_id,
            )

        try:
            completion = await self.llm_client.complete(
                model,
                messages,
                system=system,
                api_key=credential.api_key,
                max_tokens=self.max_completion_tokens,
            )
        except BaseException as e:
            if reservation is not None:
                if isinstance(e, NOTHING_CONSUMED):
                    await self._settle(credit_context.refund(reservation), reservation)
                else:
                    await self._defer_settlement(
                        credit_context, reservation, model, agent_id, conversation_id
                    )
            raise

        if reservation is not None:
            actual = usage_cost(model, completion.usage)
            if actual is None:
                await self._defer_settlement(
                    credit_context, reservation, model, agent_id, conversation_id
                )
            else:
                await self._settle(
                    credit_context.adjust(
                        reservation,
                        actual,
                        description=self.description,
                        tool_call=self.tool_call,
                    ),
                    reservation,
                )

        return completion

    async def _settle(self, settlement: Awaitable[Any], reservation: CreditReservation) -> None:
        try:
            await settlement
        except Exception as e:
            logger.error(f"Failed to settle reservation {reservation.reservation_id}: {e}")

    async def _defer_settlement(
        self,
        credit_context: CreditContext,
        reservation: CreditReservation,
        model: str,
        agent_id: str | None,
        conversation_id: str | None,
    ) -> None:
        """Hand a reservation with unknown usage to the verification worker.

        Without a verification queue, or if enqueueing fails, the reservation
        is settled at its reserved amount so it never stays open.
        """
        if not reservation.is_chargeable:
            return

        if self.cost_verification is not None:
            try:
                await settle_safely(
                    self.cost_verification.enqueue(
                        reservation.reservation_id,
                        reservation.workspace_id,
                        reservation.model or model,
                        agent_id=agent_id,
                        conversation_id=conversation_id,
                    )
                )
                return
            except Exception as e:
                logger.error(
                    f"Failed to queue cost verification for {reservation.reservation_id}: {e}"
                )

        logger.warning(
            f"Usage unknown for reservation {reservation.reservation_id}, "
            f"charging the reserved amount"
        )
        await self._settle(
            credit_context.adjust(
                reservation,
                reservation.reserved_amount,
                description=f"{self.description} (estimated)",
                tool_call=self.tool_call,
            ),
            reservation,
        )
