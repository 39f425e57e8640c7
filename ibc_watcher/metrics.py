import threading
from typing import Dict, Iterable, List

from prometheus_client import CollectorRegistry, Gauge, generate_latest
from prometheus_client.core import Metric

CHANNEL_LABELS = ['chain_id', 'port_id', 'channel_id', 'destination_chain_id']

IBC_STATUS = 'ibc_status'
IBC_COUNT = 'ibc_count'
IBC_QUERY_STATUS = 'ibc_query_status'
IBC_CLIENT_STATUS = 'ibc_client_status'
IBC_CLIENT_TIME_BEFORE_EXPIRE = 'ibc_client_time_before_expire'

# name -> (documentation, discriminator label)
METRIC_DEFINITIONS = {
    IBC_STATUS: (
        'IBC Status. 0: total < min_total, 1: total >= min_total',
        'min_total',
    ),
    IBC_COUNT: (
        'Number of IBC packet commitments not yet relayed',
        'min_total',
    ),
    IBC_QUERY_STATUS: (
        'IBC query status. 0: endpoint reachable, 1: last query failed',
        'endpoint',
    ),
    IBC_CLIENT_STATUS: (
        'IBC client status. 0: (expiry_time - now) > min_time_before_expiration, 1: otherwise',
        'min_time_before_expiration',
    ),
    IBC_CLIENT_TIME_BEFORE_EXPIRE: (
        'Seconds left before the IBC client expires (0 if already expired)',
        'min_time_before_expiration',
    ),
}


class MetricsStore:
    """
    Process-wide store for the watcher gauges.

    One instance is built at startup and handed to every monitor task. All
    writes, resets and collections go through ``self._lock`` so a scrape never
    observes a half-applied ``reset_all``. ``registry`` is what the HTTP
    server serves; its only collector is this store.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._gauges_registry = CollectorRegistry()
        self.gauges: Dict[str, Gauge] = {
            name: Gauge(name, doc, CHANNEL_LABELS + [label], registry=self._gauges_registry)
            for name, (doc, label) in METRIC_DEFINITIONS.items()
        }
        self.registry = CollectorRegistry()
        self.registry.register(self)

    def collect(self) -> Iterable[Metric]:
        with self._lock:
            return list(self._gauges_registry.collect())

    def set(self, metric_name: str, labels: Dict[str, str], value: int) -> None:
        gauge = self.gauges[metric_name]
        with self._lock:
            gauge.labels(**labels).set(value)

    def reset_all(self) -> None:
        with self._lock:
            for gauge in self.gauges.values():
                gauge.clear()

    def render(self) -> str:
        return generate_latest(self.registry).decode('utf-8')

    def value(self, metric_name: str, labels: Dict[str, str]):
        """Current value of one series, or ``None`` when it is unset."""
        for metric in self.collect():
            if metric.name != metric_name:
                continue
            for sample in metric.samples:
                if sample.labels == labels:
                    return sample.value
        return None

    def series(self, metric_name: str) -> List[Dict[str, str]]:
        """Label sets of every series currently set for ``metric_name``."""
        for metric in self.collect():
            if metric.name == metric_name:
                return [dict(s.labels) for s in metric.samples]
        return []

    # Typed setters: every label is required, values are integers.

    def set_ibc_status(self, chain_id, port_id, channel_id, destination_chain_id, min_total, status: int):
        self.set(IBC_STATUS, dict(
            chain_id=chain_id, port_id=port_id, channel_id=channel_id,
            destination_chain_id=destination_chain_id, min_total=min_total,
        ), int(status))

    def set_ibc_count(self, chain_id, port_id, channel_id, destination_chain_id, min_total, count: int):
        self.set(IBC_COUNT, dict(
            chain_id=chain_id, port_id=port_id, channel_id=channel_id,
            destination_chain_id=destination_chain_id, min_total=min_total,
        ), int(count))

    def set_ibc_query_status(self, chain_id, port_id, channel_id, destination_chain_id, endpoint, status: int):
        self.set(IBC_QUERY_STATUS, dict(
            chain_id=chain_id, port_id=port_id, channel_id=channel_id,
            destination_chain_id=destination_chain_id, endpoint=endpoint,
        ), int(status))

    def set_ibc_client_status(self, chain_id, port_id, channel_id, destination_chain_id,
                              min_time_before_expiration, status: int):
        self.set(IBC_CLIENT_STATUS, dict(
            chain_id=chain_id, port_id=port_id, channel_id=channel_id,
            destination_chain_id=destination_chain_id,
            min_time_before_expiration=min_time_before_expiration,
        ), int(status))

    def set_ibc_client_time_before_expire(self, chain_id, port_id, channel_id, destination_chain_id,
                                          min_time_before_expiration, seconds: int):
        self.set(IBC_CLIENT_TIME_BEFORE_EXPIRE, dict(
            chain_id=chain_id, port_id=port_id, channel_id=channel_id,
            destination_chain_id=destination_chain_id,
            min_time_before_expiration=min_time_before_expiration,
        ), int(seconds))
