import asyncio
import functools
import logging
import time
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Optional, Tuple

from ibc_watcher.config import ChainConfig, ChannelConfig, format_duration
from ibc_watcher.errors import QueryFailed
from ibc_watcher.metrics import MetricsStore
from ibc_watcher.query_client import Height, QueryClient

logger = logging.getLogger(__name__)


class IntervalTicker:
    """
    Fixed-period async ticker. The first tick fires immediately, later ticks
    follow a fixed schedule. A tick that is late (the previous iteration ran
    past its slot) fires at once and the schedule restarts from there, so
    ticks never pile up.
    """

    def __init__(self, period: float):
        self.period = period

    def __aiter__(self) -> AsyncIterator[None]:
        return self._ticks()

    async def _ticks(self) -> AsyncIterator[None]:
        loop = asyncio.get_running_loop()
        deadline = loop.time()
        while True:
            delay = deadline - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            yield
            deadline = max(deadline + self.period, loop.time())


class ChannelMonitor:
    """Shared plumbing for the per-channel monitors."""

    kind = 'channel'

    def __init__(
        self,
        chain: ChainConfig,
        channel: ChannelConfig,
        client: QueryClient,
        metrics: MetricsStore,
        ticker=None,
        executor: Optional[Executor] = None,
    ):
        self.chain = chain
        self.channel = channel
        self.client = client
        self.metrics = metrics
        self.ticker = ticker if ticker is not None else IntervalTicker(channel.refresh)
        # None means the loop default executor, which is shared and bounded
        self.executor = executor

    @property
    def name(self) -> str:
        return f"{self.kind}[{self.chain.chain_id} {self.channel.port_id}/{self.channel.channel_id}]"

    async def run(self) -> None:
        async for _ in self.ticker:
            await self.tick()

    async def tick(self) -> None:
        raise NotImplementedError

    async def _query(self, fn, *args):
        loop = asyncio.get_running_loop()
        call = functools.partial(fn, self.channel.port_id, self.channel.channel_id, *args)
        return await loop.run_in_executor(self.executor, call)

    def _set_query_status(self, status: int) -> None:
        self.metrics.set_ibc_query_status(
            self.chain.chain_id,
            self.channel.port_id,
            self.channel.channel_id,
            self.channel.destination_chain_id,
            self.chain.endpoint_address,
            status,
        )

    def _query_failed(self, error: QueryFailed) -> None:
        logger.error("%s: %s and retry next refresh", self.name, error)
        self._set_query_status(1)


class BacklogMonitor(ChannelMonitor):
    """Polls the packet commitment backlog and compares it to ``min_total``."""

    kind = 'backlog'

    async def tick(self) -> None:
        ch = self.channel
        chain_id = self.chain.chain_id
        try:
            total = await self._query(self.client.get_backlog_total, self.chain.endpoint_address)
        except QueryFailed as e:
            self._query_failed(e)
            return
        self._set_query_status(0)
        logger.info(
            "The latest total=%d with channel_id (%s) with destination_chain_id %s on (%s)",
            total, ch.channel_id, ch.destination_chain_id, chain_id,
        )

        # min_total was validated at load time; a ValueError here ends this task only
        if total < int(ch.min_total):
            status = 0
        else:
            logger.warning(
                "The current total %d with channel_id (%s) is higher than %s with destination_chain_id %s on (%s)",
                total, ch.channel_id, ch.min_total, ch.destination_chain_id, chain_id,
            )
            status = 1
        self.metrics.set_ibc_status(
            chain_id, ch.port_id, ch.channel_id, ch.destination_chain_id, ch.min_total, status
        )
        self.metrics.set_ibc_count(
            chain_id, ch.port_id, ch.channel_id, ch.destination_chain_id, ch.min_total, total
        )


@dataclass
class ClientMonitorState:
    """
    Facts cached by one client monitor between ticks.

    ``trusting_period`` is fetched once and kept. ``last_client_state_height``
    and ``last_consensus_state_duration`` always describe the same consensus
    state: they are only ever committed together.
    """

    trusting_period: Optional[float] = None
    last_client_state_height: Height = field(default_factory=Height.minimal)
    last_consensus_state_duration: Optional[float] = None

    def needs_consensus(self, height: Height) -> bool:
        return height > self.last_client_state_height

    def commit(self, height: Height, consensus_timestamp: float) -> None:
        if not self.needs_consensus(height):
            raise ValueError(
                f"client height must advance: {height} <= {self.last_client_state_height}"
            )
        self.last_client_state_height = height
        self.last_consensus_state_duration = consensus_timestamp


def evaluate_client_expiry(
    consensus_timestamp: float,
    trusting_period: float,
    min_time_before_expiration: float,
    now: float,
) -> Tuple[int, int]:
    """
    Return ``(seconds_before_expiry, status)`` for a client whose latest
    consensus state was recorded at ``consensus_timestamp``.

    status is 0 while more than ``min_time_before_expiration`` remains and 1
    once the client is within that window or already expired.
    """
    expiry_time = consensus_timestamp + trusting_period
    if expiry_time <= now:
        return 0, 1
    remaining = expiry_time - now
    return int(remaining), 0 if remaining > min_time_before_expiration else 1


class ClientMonitor(ChannelMonitor):
    """Tracks how long the channel's client has left before its trusting period lapses."""

    kind = 'client'

    def __init__(
        self,
        chain: ChainConfig,
        channel: ChannelConfig,
        client: QueryClient,
        metrics: MetricsStore,
        ticker=None,
        clock: Callable[[], float] = time.time,
        executor: Optional[Executor] = None,
    ):
        super().__init__(chain, channel, client, metrics, ticker, executor)
        self.clock = clock
        self.state = ClientMonitorState()
        self.min_time_before_expiration: Optional[float] = channel.min_time_before_client_expiration

    async def tick(self) -> None:
        ch = self.channel
        endpoint = self.chain.endpoint_address
        state = self.state

        if state.trusting_period is None:
            logger.info("%s: the trusting_period is not set, fetching from the chain", self.name)
            try:
                trusting_period = await self._query(self.client.get_trusting_period, endpoint)
            except QueryFailed as e:
                self._query_failed(e)
                return
            self._set_query_status(0)
            logger.info(
                "The trusting_period=%ss with channel_id (%s) with destination_chain_id %s on (%s)",
                trusting_period, ch.channel_id, ch.destination_chain_id, self.chain.chain_id,
            )
            state.trusting_period = trusting_period

        if self.min_time_before_expiration is None:
            logger.info(
                "%s: min_time_before_client_expiration is not set, using 1/3 of trusting_period",
                self.name,
            )
            self.min_time_before_expiration = state.trusting_period / 3

        try:
            height = await self._query(self.client.get_latest_client_height, endpoint)
        except QueryFailed as e:
            self._query_failed(e)
            return
        self._set_query_status(0)

        if state.needs_consensus(height):
            try:
                timestamp = await self._query(self.client.get_consensus_timestamp, height, endpoint)
            except QueryFailed as e:
                self._query_failed(e)
                return
            self._set_query_status(0)
            logger.info(
                "The consensus state timestamp=%s at height %s with channel_id (%s) "
                "with destination_chain_id %s on (%s)",
                timestamp, height, ch.channel_id, ch.destination_chain_id, self.chain.chain_id,
            )
            state.commit(height, timestamp)

        if state.last_consensus_state_duration is None:
            logger.debug("%s: no consensus state observed yet", self.name)
            return

        self.publish(self.clock())

    def publish(self, now: float) -> Tuple[int, int]:
        ch = self.channel
        threshold = format_duration(self.min_time_before_expiration)
        seconds, status = evaluate_client_expiry(
            self.state.last_consensus_state_duration,
            self.state.trusting_period,
            self.min_time_before_expiration,
            now,
        )
        if status:
            logger.warning(
                "The client of channel_id (%s) with destination_chain_id %s on (%s) "
                "expires in %ds (threshold %s)",
                ch.channel_id, ch.destination_chain_id, self.chain.chain_id, seconds, threshold,
            )
        self.metrics.set_ibc_client_time_before_expire(
            self.chain.chain_id, ch.port_id, ch.channel_id, ch.destination_chain_id, threshold, seconds
        )
        self.metrics.set_ibc_client_status(
            self.chain.chain_id, ch.port_id, ch.channel_id, ch.destination_chain_id, threshold, status
        )
        return seconds, status
