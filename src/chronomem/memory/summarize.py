"""Roll lower-grain memory up into daily, weekly, monthly, quarterly and yearly summaries.

Each summary grain has a default system prompt; agents may override any of
them. The model call is billed like every other completion: it holds its own
credit reservation, settled when the call ends.
"""

import logging
from collections.abc import Mapping

from chronomem.core.config import DEFAULT_EXTRACTION_MODEL
from chronomem.core.exceptions import InvalidGrainError
from chronomem.core.types import TemporalGrain, parse_grain
from chronomem.credits.billing import BilledCompletions
from chronomem.credits.ledger import CreditContext
from chronomem.llm.client import OllamaClient
from chronomem.llm.credentials import CredentialResolver, ResolvedCredential
from chronomem.memory.prompts import SUMMARIZATION_PROMPTS, build_summarization_messages
from chronomem.queue.cost_verification import CostVerificationQueue

logger = logging.getLogger(__name__)

SUMMARIZATION_TOOL_CALL = "memory-summarization"

SUMMARIZATION_GRAINS: tuple[TemporalGrain, ...] = tuple(SUMMARIZATION_PROMPTS)


def get_summarization_prompt(grain: TemporalGrain | str) -> str:
    """Default system prompt for a summary grain.

    Raises:
        InvalidGrainError: If the grain is unknown or is not summarized
            (``working`` and ``docs``).
    """
    grain = parse_grain(grain)
    if grain not in SUMMARIZATION_PROMPTS:
        raise InvalidGrainError(grain.value, f"Summarization not supported for grain: {grain.value}")
    return SUMMARIZATION_PROMPTS[grain]


def normalize_summarization_prompts(
    prompts: Mapping[str, str | None] | None,
) -> dict[TemporalGrain, str] | None:
    """Keep the non-blank overrides for summary grains, trimmed.

    Keys that are not summary grains are ignored. Returns None when nothing
    is left.

    Example:
        >>> normalize_summarization_prompts({"daily": "  Be brief. ", "weekly": "  "})
        {<TemporalGrain.DAILY: 'daily'>: 'Be brief.'}
    """
    if not prompts:
        return None

    cleaned: dict[TemporalGrain, str] = {}
    for grain in SUMMARIZATION_GRAINS:
        value = prompts.get(grain.value)
        if isinstance(value, str) and value.strip():
            cleaned[grain] = value.strip()
    return cleaned or None


def resolve_summarization_prompt(
    grain: TemporalGrain | str,
    prompts: Mapping[TemporalGrain, str] | None = None,
) -> str:
    """The agent's override for a grain, or the default prompt."""
    grain = parse_grain(grain)
    override = (prompts or {}).get(grain)
    if override and override.strip():
        return override
    return get_summarization_prompt(grain)


class MemorySummarizationService:
    """Condenses memory entries into a summary for the next grain up.

    Attributes:
        llm_client: Completion client.
        credentials: Resolves the workspace's completion key; None always
            uses the platform client.
        completions: Runs the model call under its own credit reservation.
        default_model: Model used when a call does not name one.
    """

    def __init__(
        self,
        llm_client: OllamaClient,
        *,
        credentials: CredentialResolver | None = None,
        cost_verification: CostVerificationQueue | None = None,
        default_model: str = DEFAULT_EXTRACTION_MODEL,
        max_completion_tokens: int = 2000,
    ):
        self.llm_client = llm_client
        self.credentials = credentials
        self.completions = BilledCompletions(
            llm_client,
            description="Memory summarization",
            tool_call=SUMMARIZATION_TOOL_CALL,
            cost_verification=cost_verification,
            max_completion_tokens=max_completion_tokens,
        )
        self.default_model = default_model

    async def summarize(
        self,
        content: list[str],
        grain: TemporalGrain | str,
        workspace_id: str | None = None,
        agent_id: str | None = None,
        prompts: Mapping[str, str | None] | None = None,
        credit_context: CreditContext | None = None,
        model_name: str | None = None,
    ) -> str:
        """Summarize memory entries for a summary grain.

        Args:
            content: Entries to condense, usually facts of the grain below.
            grain: Summary grain being produced.
            workspace_id: Workspace billed for the call. Without one the
                platform key is used and no credits are reserved.
            agent_id: Agent the summary belongs to.
            prompts: Per-grain prompt overrides, keyed by grain name.
            credit_context: Enables a credit reservation for the call.
            model_name: Completion model; blank uses the default.

        Returns:
            The trimmed summary, or "" when there is nothing to summarize.

        Raises:
            InvalidGrainError: If the grain is not a summary grain.
            LLMError: If the model call fails.
            InsufficientCreditsError: If the reservation cannot be made.
        """
        system_prompt = resolve_summarization_prompt(
            grain, normalize_summarization_prompts(prompts)
        )
        entries = [entry.strip() for entry in content if entry and entry.strip()]
        if not entries:
            return ""

        model = model_name.strip() if model_name and model_name.strip() else self.default_model
        credential = ResolvedCredential()
        if workspace_id is None:
            logger.warning("No workspace for memory summarization, skipping credit reservation")
        elif self.credentials is not None:
            credential = await self.credentials.resolve(workspace_id)

        logger.info(
            f"Summarizing {len(entries)} entries into {parse_grain(grain).value} memory "
            f"for agent {agent_id} with {model}"
        )
        completion = await self.completions.complete(
            model,
            system_prompt,
            build_summarization_messages(entries),
            credential,
            workspace_id,
            agent_id=agent_id,
            credit_context=credit_context,
        )
        return completion.text.strip()
