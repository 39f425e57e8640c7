import datetime
import logging
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import requests

from ibc_watcher.config import parse_duration
from ibc_watcher.errors import QueryFailed

logger = logging.getLogger(__name__)

CHANNEL_ROUTE = "/ibc/core/channel/v1/channels/{channel}/ports/{port}"

# RFC3339 with up to nanosecond precision -> epoch seconds
_TS_RE = re.compile(
    r"^(?P<prefix>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})(?P<frac>\.\d+)?(?P<tz>Z|[+\-]\d{2}:\d{2})$"
)


def parse_timestamp(ts: str) -> float:
    """
    Parse timestamps like '2025-08-11T11:02:48.284737546Z' into seconds since
    the epoch. ``datetime`` only understands microseconds, so the fractional
    part is added separately to keep nanosecond timestamps exact enough.
    """
    m = _TS_RE.match((ts or "").strip().replace("z", "Z"))
    if not m:
        raise ValueError(f"invalid RFC3339 timestamp: {ts!r}")
    tz = m.group("tz")
    if tz == "Z":
        tz = "+00:00"
    whole = datetime.datetime.fromisoformat(f"{m.group('prefix')}{tz}")
    frac = float(m.group("frac") or 0)
    return whole.timestamp() + frac


@dataclass(frozen=True, order=True)
class Height:
    """Client height, ordered by revision number first, then revision height."""

    revision_number: int
    revision_height: int

    @classmethod
    def minimal(cls) -> "Height":
        return cls(0, 1)

    @classmethod
    def from_json(cls, raw: dict) -> "Height":
        return cls(int(raw.get("revision_number") or 0), int(raw["revision_height"]))

    def __str__(self):
        return f"{self.revision_number}-{self.revision_height}"


class QueryClient:
    """Read-only queries against a chain's REST gateway.

    Every call is a single ``GET`` on a fresh connection. Nothing is retried
    here: any transport error, error status, undecodable body or missing field
    is raised as :class:`QueryFailed` and the caller decides what to do next.
    """

    def _get(self, operation: str, endpoint: str, path: str, params: Optional[dict] = None) -> dict:
        url = f"{endpoint.rstrip('/')}{path}"
        logger.debug("GET %s params=%s", url, params)
        try:
            r = requests.get(url, params=params or {})
            logger.debug("Response %s -> %s", url, r.status_code)
            r.raise_for_status()
            data = r.json()
        except (requests.RequestException, ValueError) as e:
            raise QueryFailed(operation, endpoint, e) from e
        if not isinstance(data, dict):
            raise QueryFailed(operation, endpoint, "response is not a JSON object")
        return data

    @staticmethod
    def _channel_path(port_id: str, channel_id: str) -> str:
        return CHANNEL_ROUTE.format(channel=quote(channel_id, safe=""), port=quote(port_id, safe=""))

    def _client_state(self, operation: str, port_id: str, channel_id: str, endpoint: str) -> dict:
        res = self._get(operation, endpoint, f"{self._channel_path(port_id, channel_id)}/client_state")
        client_state = (res.get("identified_client_state") or {}).get("client_state")
        if not client_state:
            raise QueryFailed(operation, endpoint, "error in getting channel client state")
        return client_state

    def get_backlog_total(self, port_id: str, channel_id: str, endpoint: str) -> int:
        """Total number of packet commitments not yet relayed on the channel."""
        op = "get_backlog_total"
        res = self._get(
            op,
            endpoint,
            f"{self._channel_path(port_id, channel_id)}/packet_commitments",
            params={"pagination.count_total": "true", "pagination.limit": "1"},
        )
        total = (res.get("pagination") or {}).get("total")
        if total is None:
            raise QueryFailed(op, endpoint, "error in getting packet commitments total")
        try:
            return int(total)
        except (TypeError, ValueError) as e:
            raise QueryFailed(op, endpoint, f"invalid total {total!r}") from e

    def get_trusting_period(self, port_id: str, channel_id: str, endpoint: str) -> float:
        """Trusting period of the channel's client, in seconds."""
        op = "get_trusting_period"
        client_state = self._client_state(op, port_id, channel_id, endpoint)
        raw = client_state.get("trusting_period")
        if not raw:
            raise QueryFailed(op, endpoint, "client state has no trusting_period")
        try:
            return parse_duration(raw)
        except ValueError as e:
            raise QueryFailed(op, endpoint, e) from e

    def get_latest_client_height(self, port_id: str, channel_id: str, endpoint: str) -> Height:
        op = "get_latest_client_height"
        client_state = self._client_state(op, port_id, channel_id, endpoint)
        raw = client_state.get("latest_height")
        if not raw:
            raise QueryFailed(op, endpoint, "client state has no latest_height")
        try:
            return Height.from_json(raw)
        except (KeyError, TypeError, ValueError) as e:
            raise QueryFailed(op, endpoint, f"invalid latest_height {raw!r}") from e

    def get_consensus_timestamp(self, port_id: str, channel_id: str, height: Height, endpoint: str) -> float:
        """Timestamp recorded in the consensus state at ``height``, in seconds since the epoch."""
        op = "get_consensus_timestamp"
        path = (
            f"{self._channel_path(port_id, channel_id)}/consensus_state"
            f"/revision/{height.revision_number}/height/{height.revision_height}"
        )
        res = self._get(op, endpoint, path)
        ts = (res.get("consensus_state") or {}).get("timestamp")
        if not ts:
            raise QueryFailed(op, endpoint, "error in getting channel consensus state")
        try:
            return parse_timestamp(ts)
        except ValueError as e:
            raise QueryFailed(op, endpoint, e) from e
