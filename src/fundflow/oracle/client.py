"""HTTP client for the on-chain vote oracle (OCV).

Read-only and possibly ~10 minutes stale. Every failure mode (timeout, transport
error, non-2xx, unparseable body) surfaces as ``OracleUnavailable`` so callers
can fall back to a cached snapshot instead of failing the request.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from fundflow.core.errors import OracleUnavailable
from fundflow.models.votes import OCVVoteSnapshot, RankedVoteSnapshot

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def to_epoch_millis(value: datetime) -> int:
    """Oracle time bounds are epoch milliseconds. Naive datetimes are read as UTC."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


class VoteOracleClient:
    """Async client for the OCV consideration and ranked-vote endpoints.

    Args:
        base_url: Oracle root, e.g. ``https://on-chain-voting.example``.
        timeout: Hard per-request timeout in seconds.
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=min(timeout, 3.0)),
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        try:
            resp = await self._client.get(path)
        except httpx.TimeoutException as exc:
            raise OracleUnavailable(f"oracle timed out: {path}") from exc
        except httpx.HTTPError as exc:
            raise OracleUnavailable(f"oracle request failed: {path}: {exc}") from exc

        if resp.is_error:
            raise OracleUnavailable(
                f"oracle returned {resp.status_code}: {path}", status_code=resp.status_code
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise OracleUnavailable(f"oracle returned invalid JSON: {path}") from exc

    async def get_consideration_votes(
        self,
        proposal_id: int,
        mef_id: int,
        start_time: datetime,
        end_time: datetime,
    ) -> OCVVoteSnapshot:
        """Community tally for one proposal over the consideration window."""
        path = (
            f"/api/mef_proposal_consideration/{mef_id}/{proposal_id}/"
            f"{to_epoch_millis(start_time)}/{to_epoch_millis(end_time)}"
        )
        data = await self._get_json(path)
        snapshot = OCVVoteSnapshot.from_payload(data)
        logger.debug(
            "ocv_consideration_fetched proposal=%s votes=%d eligible=%s",
            proposal_id,
            snapshot.total_community_votes,
            snapshot.eligible,
        )
        return snapshot

    async def get_ranked_votes(
        self,
        mef_id: int,
        start_time: datetime,
        end_time: datetime,
    ) -> RankedVoteSnapshot:
        """Ranked-vote tabulation (winners most-preferred first) for a whole round."""
        path = (
            f"/api/mef_ranked_vote/{mef_id}/"
            f"{to_epoch_millis(start_time)}/{to_epoch_millis(end_time)}"
        )
        data = await self._get_json(path)
        snapshot = RankedVoteSnapshot.from_payload(data)
        logger.debug(
            "ocv_ranked_fetched mef=%s winners=%d votes=%d",
            mef_id,
            len(snapshot.winners),
            snapshot.total_votes,
        )
        return snapshot
