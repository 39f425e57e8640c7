import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from prometheus_client import start_http_server

from ibc_watcher.config import Config
from ibc_watcher.metrics import MetricsStore
from ibc_watcher.monitors import BacklogMonitor, ChannelMonitor, ClientMonitor, IntervalTicker
from ibc_watcher.query_client import QueryClient

logger = logging.getLogger(__name__)


def _log_task_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Task %s stopped", task.get_name(), exc_info=exc)
    else:
        logger.info("Task %s finished", task.get_name())


class IBCWatcher:
    def __init__(
        self,
        cfg: Config,
        client: Optional[QueryClient] = None,
        metrics: Optional[MetricsStore] = None,
        ticker_factory: Callable[[float], object] = IntervalTicker,
    ):
        self.cfg = cfg
        self.client = client or QueryClient()
        self.metrics = metrics or MetricsStore()
        self.ticker_factory = ticker_factory
        self.tasks: List[asyncio.Task] = []

        # one worker per monitor: a hung query only ever holds its own thread
        n_monitors = 2 * sum(len(chain.channels) for chain in cfg.chains)
        self.executor = ThreadPoolExecutor(
            max_workers=max(n_monitors, 1), thread_name_prefix="ibc-query",
        )

        # one backlog and one client monitor per configured channel
        self.monitors: List[ChannelMonitor] = []
        for chain in cfg.chains:
            for channel in chain.channels:
                for cls in (BacklogMonitor, ClientMonitor):
                    self.monitors.append(cls(
                        chain,
                        channel,
                        self.client,
                        self.metrics,
                        ticker=ticker_factory(channel.refresh),
                        executor=self.executor,
                    ))

    async def reset_metrics(self, ticker) -> None:
        async for _ in ticker:
            logger.info("reset metrics!")
            self.metrics.reset_all()

    async def serve(self) -> None:
        """Spawn every monitor (and the reset scheduler) and wait for all of them."""
        self.tasks = [asyncio.create_task(m.run(), name=m.name) for m in self.monitors]
        if self.cfg.reset is not None:
            self.tasks.append(asyncio.create_task(
                self.reset_metrics(self.ticker_factory(self.cfg.reset)), name='reset',
            ))
        for task in self.tasks:
            task.add_done_callback(_log_task_exit)
        logger.info(
            "Watching %d channel(s) on %d chain(s)",
            len(self.monitors) // 2, len(self.cfg.chains),
        )
        await asyncio.gather(*self.tasks, return_exceptions=True)

    def run(self):
        start_http_server(self.cfg.port, addr=self.cfg.host, registry=self.metrics.registry)
        logger.info("Started prometheus metrics server: http://%s:%s/metrics", self.cfg.host, self.cfg.port)
        try:
            asyncio.run(self.serve())
        finally:
            self.executor.shutdown(wait=False)
