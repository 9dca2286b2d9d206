"""Workspace credit ledger with a reserve, adjust or refund protocol.

Every paid model call is bracketed by a reservation: credits are held
before the call, then the hold is either adjusted to the actual cost or
refunded in full. Amounts are integer nano-dollars.

Example:
    reservation = await ledger.reserve("ws-1", 5_000, model="nomic-embed-text")
    try:
        result = await client.embed_with_usage(...)
    except LLMError:
        await settle_safely(ledger.refund(reservation.reservation_id))
        raise
    await settle_safely(ledger.adjust(reservation.reservation_id, actual_cost))
"""

import asyncio
import logging
import uuid
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import TypeVar

from chronomem.core.exceptions import InsufficientCreditsError, ReservationNotFoundError
from chronomem.core.types import CreditReservation, CreditTransaction
from chronomem.core.utils import utc_now
from chronomem.storage.sqlite import SQLiteStorage

logger = logging.getLogger(__name__)

T = TypeVar("T")

BYOK_RESERVATION_ID = "byok"
ZERO_COST_RESERVATION_ID = "zero-cost"

# Settlements still running after their caller was cancelled
_pending_settlements: set[asyncio.Task] = set()


async def settle_safely(operation: Awaitable[T]) -> T:
    """Run a settlement so that cancelling the caller does not abort it.

    The settlement keeps running in the background if the awaiting task is
    cancelled; the cancellation still propagates to the caller.
    """
    task = asyncio.ensure_future(operation)
    _pending_settlements.add(task)
    task.add_done_callback(_pending_settlements.discard)
    return await asyncio.shield(task)


class CreditLedger:
    """Credit balances, reservations and transactions stored in SQLite."""

    def __init__(self, storage: SQLiteStorage):
        self.storage = storage

    async def set_balance(self, workspace_id: str, balance: int) -> None:
        """Create a workspace or overwrite its balance."""
        await self.storage.execute(
            "INSERT INTO workspaces (id, credit_balance) VALUES (?, ?) "
            "ON CONFLICT(id) DO UPDATE SET credit_balance = excluded.credit_balance",
            (workspace_id, balance),
        )

    async def get_balance(self, workspace_id: str) -> int:
        """Current balance; unknown workspaces have a balance of zero."""
        row = await self.storage.fetch_one(
            "SELECT credit_balance FROM workspaces WHERE id = ?", (workspace_id,)
        )
        return int(row["credit_balance"]) if row else 0

    async def reserve(
        self,
        workspace_id: str,
        amount: int,
        *,
        uses_byok: bool = False,
        provider: str | None = None,
        model: str | None = None,
        agent_id: str | None = None,
        conversation_id: str | None = None,
    ) -> CreditReservation:
        """Hold credits against a workspace balance.

        Calls made with the workspace's own key, and calls that cost
        nothing, get a pseudo reservation that is never charged.

        Raises:
            InsufficientCreditsError: If the balance cannot cover ``amount``.
        """
        if uses_byok or amount <= 0:
            reservation_id = BYOK_RESERVATION_ID if uses_byok else ZERO_COST_RESERVATION_ID
            return CreditReservation(
                reservation_id=reservation_id,
                workspace_id=workspace_id,
                reserved_amount=0,
                provider=provider,
                model=model,
            )

        reservation = CreditReservation(
            reservation_id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            reserved_amount=amount,
            provider=provider,
            model=model,
            created_at=utc_now(),
        )

        async with self.storage.transaction() as conn:
            cursor = await conn.execute(
                "UPDATE workspaces SET credit_balance = credit_balance - ? "
                "WHERE id = ? AND credit_balance >= ?",
                (amount, workspace_id, amount),
            )
            if cursor.rowcount == 0:
                cursor = await conn.execute(
                    "SELECT credit_balance FROM workspaces WHERE id = ?", (workspace_id,)
                )
                row = await cursor.fetchone()
                available = int(row["credit_balance"]) if row else 0
                raise InsufficientCreditsError(workspace_id, amount, available)

            await conn.execute(
                "INSERT INTO credit_reservations (id, workspace_id, reserved_amount, provider, "
                "model, agent_id, conversation_id, created_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    reservation.reservation_id,
                    workspace_id,
                    amount,
                    provider,
                    model,
                    agent_id,
                    conversation_id,
                    reservation.created_at.isoformat(),  # type: ignore[union-attr]
                ),
            )

        logger.info(
            f"Reserved {amount} nano-dollars for workspace {workspace_id} "
            f"({reservation.reservation_id})"
        )
        return reservation

    async def get_reservation(self, reservation_id: str) -> CreditReservation:
        """Load an open reservation.

        Raises:
            ReservationNotFoundError: If it does not exist or was settled.
        """
        row = await self.storage.fetch_one(
            "SELECT * FROM credit_reservations WHERE id = ?", (reservation_id,)
        )
        if row is None:
            raise ReservationNotFoundError(reservation_id)
        return CreditReservation(
            reservation_id=row["id"],
            workspace_id=row["workspace_id"],
            reserved_amount=row["reserved_amount"],
            provider=row["provider"],
            model=row["model"],
            created_at=row["created_at"],
        )

    async def adjust(
        self,
        reservation_id: str,
        actual_cost: int,
        *,
        description: str = "Model usage",
        tool_call: str | None = None,
    ) -> CreditTransaction | None:
        """Settle a reservation to its actual cost.

        The difference between reserved and actual cost is returned to (or
        taken from) the balance, and the charge is recorded as a transaction.
        Settling a pseudo or already-settled reservation does nothing.

        Returns:
            The recorded transaction, or None if nothing was settled.
        """
        if reservation_id in (BYOK_RESERVATION_ID, ZERO_COST_RESERVATION_ID):
            logger.debug(f"Skipping adjustment for non-chargeable reservation {reservation_id}")
            return None

        actual_cost = max(0, actual_cost)
        async with self.storage.transaction() as conn:
            cursor = await conn.execute(
                "SELECT * FROM credit_reservations WHERE id = ?", (reservation_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Reservation {reservation_id} not found, assuming already processed"
                )
                return None

            workspace_id = row["workspace_id"]
            difference = int(row["reserved_amount"]) - actual_cost
            await conn.execute(
                "UPDATE workspaces SET credit_balance = credit_balance + ? WHERE id = ?",
                (difference, workspace_id),
            )
            await conn.execute("DELETE FROM credit_reservations WHERE id = ?", (reservation_id,))

            transaction = CreditTransaction(
                workspace_id=workspace_id,
                reservation_id=reservation_id,
                amount=actual_cost,
                description=description,
                agent_id=row["agent_id"],
                conversation_id=row["conversation_id"],
                tool_call=tool_call,
            )
            await conn.execute(
                "INSERT INTO credit_transactions (workspace_id, reservation_id, amount, "
                "description, agent_id, conversation_id, tool_call, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    workspace_id,
                    reservation_id,
                    actual_cost,
                    description,
                    transaction.agent_id,
                    transaction.conversation_id,
                    tool_call,
                    utc_now().isoformat(),
                ),
            )

        logger.info(
            f"Adjusted reservation {reservation_id}: charged {actual_cost}, "
            f"returned {difference} nano-dollars"
        )
        return transaction

    async def refund(self, reservation_id: str) -> int:
        """Release a reservation in full.

        Returns:
            The amount returned to the balance (0 for pseudo or settled
            reservations).
        """
        if reservation_id in (BYOK_RESERVATION_ID, ZERO_COST_RESERVATION_ID):
            return 0

        async with self.storage.transaction() as conn:
            cursor = await conn.execute(
                "SELECT workspace_id, reserved_amount FROM credit_reservations WHERE id = ?",
                (reservation_id,),
            )
            row = await cursor.fetchone()
            if row is None:
                logger.warning(
                    f"Reservation {reservation_id} not found, assuming already processed"
                )
                return 0

            amount = int(row["reserved_amount"])
            await conn.execute(
                "UPDATE workspaces SET credit_balance = credit_balance + ? WHERE id = ?",
                (amount, row["workspace_id"]),
            )
            await conn.execute("DELETE FROM credit_reservations WHERE id = ?", (reservation_id,))

        logger.info(f"Refunded reservation {reservation_id} ({amount} nano-dollars)")
        return amount

    async def list_transactions(self, workspace_id: str) -> list[CreditTransaction]:
        rows = await self.storage.fetch_all(
            "SELECT * FROM credit_transactions WHERE workspace_id = ? ORDER BY id",
            (workspace_id,),
        )
        return [
            CreditTransaction(
                workspace_id=row["workspace_id"],
                reservation_id=row["reservation_id"],
                amount=row["amount"],
                description=row["description"],
                agent_id=row["agent_id"],
                conversation_id=row["conversation_id"],
                tool_call=row["tool_call"],
            )
            for row in rows
        ]


@dataclass
class CreditContext:
    """Credit accounting for one request.

    Passing a context to a service switches accounting on; without one,
    calls are made without reservations.

    Attributes:
        ledger: Ledger reservations are made against.
        agent_id: Agent the charges are attributed to.
        conversation_id: Conversation the charges are attributed to.
        transactions: Charges settled during the request.
    """

    ledger: CreditLedger
    agent_id: str | None = None
    conversation_id: str | None = None
    transactions: list[CreditTransaction] = field(default_factory=list)

    async def reserve(
        self,
        workspace_id: str,
        amount: int,
        *,
        uses_byok: bool = False,
        provider: str | None = None,
        model: str | None = None,
        conversation_id: str | None = None,
    ) -> CreditReservation:
        return await self.ledger.reserve(
            workspace_id,
            amount,
            uses_byok=uses_byok,
            provider=provider,
            model=model,
            agent_id=self.agent_id,
            conversation_id=conversation_id or self.conversation_id,
        )

    async def adjust(
        self,
        reservation: CreditReservation,
        actual_cost: int,
        *,
        description: str = "Model usage",
        tool_call: str | None = None,
    ) -> None:
        """Settle a reservation to its actual cost, surviving cancellation."""
        transaction = await settle_safely(
            self.ledger.adjust(
                reservation.reservation_id,
                actual_cost,
                description=description,
                tool_call=tool_call,
            )
        )
        if transaction is not None:
            self.transactions.append(transaction)

    async def refund(self, reservation: CreditReservation) -> None:
        """Release a reservation in full, surviving cancellation."""
        await settle_safely(self.ledger.refund(reservation.reservation_id))
