"""
Page agent bound to one hidden tab.

The agent answers queries from snapshots of the tab's rendered DOM. A
freshly loaded SPA may not have rendered the facts yet, so callers ask until
answered: first a fixed-interval render wait for the query's ready
selectors, then exponential-backoff polling of the handler within the
query's budget.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import replace

from tabharvest.agent.handlers import dispatch
from tabharvest.agent.queries import (
    AgentResponse,
    ExtractionQuery,
    ExtractionResult,
    ExtractionStatus,
)
from tabharvest.browser.tab_session import TabSession
from tabharvest.errors import AgentTimeout, TabClosed
from tabharvest.extractor.app_pages import any_selector_present
from tabharvest.extractor.labels import parse_html
from tabharvest.utils.config import get_settings
from tabharvest.utils.logging import get_logger
from tabharvest.utils.polling import PollOutcome, PollPolicy, poll

logger = get_logger(__name__)


async def wait_for_render(
    session: TabSession,
    selectors: Sequence[str],
    *,
    policy: PollPolicy | None = None,
    settle_delay: float | None = None,
) -> bool:
    """Wait until any selector matches the tab's DOM.

    A timeout is not an error: the caller proceeds with whatever rendered.

    Returns:
        True if a selector matched, False on timeout.

    Raises:
        TabClosed: The tab disappeared while waiting.
    """
    if not selectors:
        return True

    render_config = get_settings().polling.render
    if policy is None:
        policy = PollPolicy.render(timeout=render_config.timeout, interval=render_config.interval)
    if settle_delay is None:
        settle_delay = render_config.settle_delay

    selector_tuple = tuple(selectors)
    outcome = await poll(
        session.content,
        accept=lambda html: any_selector_present(parse_html(html), selector_tuple),
        policy=replace(policy, fatal_exceptions=(TabClosed, *policy.fatal_exceptions)),
        operation="wait_for_render",
    )

    if not outcome.answered:
        logger.warning(
            "SPA ready check timed out, continuing anyway",
            tab_id=session.tab_id,
            url=session.source_url,
            elapsed=round(outcome.elapsed, 3),
        )
        return False

    if settle_delay > 0:
        await asyncio.sleep(settle_delay)
    return True


class PageAgent:
    """Answers extraction queries for one tab."""

    def __init__(self, session: TabSession):
        self._session = session

    @property
    def session(self) -> TabSession:
        return self._session

    async def ask(self, query: ExtractionQuery) -> AgentResponse:
        """One attempt: snapshot the DOM and run the handler.

        Raises:
            TabClosed: The tab is gone.
        """
        html = await self._session.content()
        return dispatch(query, parse_html(html), self._session.url)

    def policy_for(self, query: ExtractionQuery) -> PollPolicy:
        agent_config = get_settings().polling.agent
        return PollPolicy.agent(
            max_attempts=query.max_attempts,
            max_wait=query.timeout,
            base_delay=agent_config.base_delay,
            max_delay=agent_config.max_delay,
            fatal_exceptions=(TabClosed,),
        )

    async def _poll(self, query: ExtractionQuery, policy: PollPolicy | None) -> PollOutcome[AgentResponse]:
        await wait_for_render(self._session, query.ready_selectors)
        return await poll(
            lambda: self.ask(query),
            accept=lambda response: response.success,
            policy=policy or self.policy_for(query),
            operation=query.kind,
        )

    async def extract(
        self,
        query: ExtractionQuery,
        *,
        policy: PollPolicy | None = None,
    ) -> ExtractionResult:
        """Ask until answered; the outcome is a value, never a timeout exception.

        Returns:
            SUCCESS with the fields, NOT_FOUND when the agent kept answering
            without the facts, TIMEOUT when it never answered at all.
        """
        outcome = await self._poll(query, policy)

        if outcome.answered:
            assert outcome.response is not None
            return ExtractionResult(
                status=ExtractionStatus.SUCCESS,
                fields=outcome.response.fields,
                attempts=outcome.attempts,
            )

        if outcome.last_response is not None:
            return ExtractionResult(
                status=ExtractionStatus.NOT_FOUND,
                fields=outcome.last_response.fields,
                error=outcome.last_response.error,
                attempts=outcome.attempts,
            )

        return ExtractionResult(
            status=ExtractionStatus.TIMEOUT,
            error=outcome.last_error or "No response from page agent",
            attempts=outcome.attempts,
        )

    async def ask_until_answered(
        self,
        query: ExtractionQuery,
        *,
        policy: PollPolicy | None = None,
    ) -> AgentResponse:
        """Ask until answered.

        Raises:
            AgentTimeout: No successful answer within the budget.
            TabClosed: The tab disappeared.
        """
        outcome = await self._poll(query, policy)
        if outcome.answered:
            assert outcome.response is not None
            return outcome.response

        logger.warning(
            "Page agent did not answer",
            query=query.kind,
            tab_id=self._session.tab_id,
            url=self._session.source_url,
            attempts=outcome.attempts,
            last_error=(
                outcome.last_response.error if outcome.last_response else outcome.last_error
            ),
        )
        raise AgentTimeout(self._session.source_url, query.kind, outcome.attempts, outcome.elapsed)
