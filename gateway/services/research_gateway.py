import asyncio
import logging
from dataclasses import dataclass

from gateway.core.errors import ErrorKind, GatewayError
from gateway.identity.client import IdentityResolver, bearer_token
from gateway.metrics import inc_counter
from gateway.quota.ledger import QuotaLedger
from gateway.search.tavily import TavilySearchClient

logger = logging.getLogger("pgw.research")


@dataclass(frozen=True)
class ResearchResult:
    context: str
    remaining: int
    result_count: int


class ResearchGateway:
    """Web-search augmentation gated by the monthly research quota.

    Quota is consumed once, and only after the search succeeded; every
    failure before that point leaves the account untouched.
    """

    def __init__(
        self,
        identity: IdentityResolver,
        ledger: QuotaLedger,
        search_client: TavilySearchClient,
    ):
        self._identity = identity
        self._ledger = ledger
        self._search_client = search_client

    @property
    def search_client(self) -> TavilySearchClient:
        return self._search_client

    async def research(
        self, authorization: str | None, query: str, request_id: str | None = None
    ) -> ResearchResult:
        user_id = await self._identity.resolve(bearer_token(authorization))

        try:
            reservation = await asyncio.to_thread(self._ledger.check_and_reserve, user_id)
        except GatewayError as exc:
            self._log_rejection(exc, user_id, request_id)
            raise

        logger.debug(
            "research_quota_checked",
            extra={"request_id": request_id, "user_id": user_id, "remaining": reservation.remaining},
        )

        search_context = await self._search_client.search(query)

        try:
            account = await asyncio.to_thread(self._ledger.commit, user_id)
        except GatewayError as exc:
            self._log_rejection(exc, user_id, request_id)
            raise

        remaining = self._ledger.remaining(account)
        logger.info(
            "research_completed",
            extra={
                "request_id": request_id,
                "user_id": user_id,
                "remaining": remaining,
                "result_count": len(search_context.results),
            },
        )
        return ResearchResult(
            context=search_context.to_context(),
            remaining=remaining,
            result_count=len(search_context.results),
        )

    @staticmethod
    def _log_rejection(exc: GatewayError, user_id: str, request_id: str | None) -> None:
        if exc.kind is ErrorKind.QUOTA_EXCEEDED:
            inc_counter("pgw_research_quota_rejections_total", {})
        logger.info(
            "research_rejected",
            extra={"request_id": request_id, "user_id": user_id, "error_kind": exc.kind.value},
        )
