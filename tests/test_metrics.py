import importlib.util
import threading
from pathlib import Path

import pytest

from ibc_watcher.metrics import (
    IBC_CLIENT_STATUS,
    IBC_COUNT,
    IBC_QUERY_STATUS,
    IBC_STATUS,
    METRIC_DEFINITIONS,
    MetricsStore,
)


def labels(**extra):
    out = dict(chain_id="chain-1", port_id="transfer", channel_id="channel-0", destination_chain_id="chain-2")
    out.update(extra)
    return out


def test_gauges_have_channel_labels_plus_discriminator():
    store = MetricsStore()
    assert set(store.gauges) == set(METRIC_DEFINITIONS)
    assert store.gauges[IBC_STATUS]._labelnames == (
        "chain_id", "port_id", "channel_id", "destination_chain_id", "min_total",
    )
    assert store.gauges[IBC_QUERY_STATUS]._labelnames[-1] == "endpoint"
    assert store.gauges[IBC_CLIENT_STATUS]._labelnames[-1] == "min_time_before_expiration"


def test_stores_are_independent():
    a = MetricsStore()
    b = MetricsStore()
    a.set_ibc_count("chain-1", "transfer", "channel-0", "chain-2", "10", 5)
    assert a.value(IBC_COUNT, labels(min_total="10")) == 5
    assert b.value(IBC_COUNT, labels(min_total="10")) is None


def test_set_overwrites_per_label_set():
    store = MetricsStore()
    store.set(IBC_COUNT, labels(min_total="10"), 5)
    store.set(IBC_COUNT, labels(min_total="10"), 9)
    store.set(IBC_COUNT, labels(min_total="20"), 1)
    assert store.value(IBC_COUNT, labels(min_total="10")) == 9
    assert store.value(IBC_COUNT, labels(min_total="20")) == 1
    assert len(store.series(IBC_COUNT)) == 2


def test_set_is_idempotent_in_rendered_output():
    store = MetricsStore()
    store.set_ibc_status("chain-1", "transfer", "channel-0", "chain-2", "10", 1)
    first = store.render()
    store.set_ibc_status("chain-1", "transfer", "channel-0", "chain-2", "10", 1)
    assert sorted(store.render().splitlines()) == sorted(first.splitlines())


def test_set_rejects_wrong_labels():
    store = MetricsStore()
    with pytest.raises(ValueError):
        store.set(IBC_STATUS, labels(endpoint="x"), 1)


def test_render_lists_series():
    store = MetricsStore()
    store.set_ibc_query_status("chain-1", "transfer", "channel-0", "chain-2", "https://lcd", 1)
    text = store.render()
    assert "# TYPE ibc_query_status gauge" in text
    assert 'endpoint="https://lcd"' in text
    assert 'chain_id="chain-1"' in text


def test_reset_all_clears_every_series():
    store = MetricsStore()
    store.set_ibc_status("chain-1", "transfer", "channel-0", "chain-2", "10", 1)
    store.set_ibc_count("chain-1", "transfer", "channel-0", "chain-2", "10", 12)
    store.set_ibc_query_status("chain-1", "transfer", "channel-0", "chain-2", "https://lcd", 0)
    store.set_ibc_client_status("chain-1", "transfer", "channel-0", "chain-2", "200s", 0)
    store.set_ibc_client_time_before_expire("chain-1", "transfer", "channel-0", "chain-2", "200s", 500)

    store.reset_all()
    text = store.render()
    assert 'chain_id="chain-1"' not in text
    for name in METRIC_DEFINITIONS:
        assert store.series(name) == []

    # unset is not zero: a fresh write shows up again
    store.set_ibc_count("chain-1", "transfer", "channel-0", "chain-2", "10", 0)
    assert store.value(IBC_COUNT, labels(min_total="10")) == 0


def test_concurrent_writers_and_resets():
    store = MetricsStore()

    def writer(channel):
        for i in range(200):
            store.set_ibc_count("chain-1", "transfer", channel, "chain-2", "10", i)

    threads = [threading.Thread(target=writer, args=(f"channel-{n}",)) for n in range(4)]
    threads.append(threading.Thread(target=lambda: [store.reset_all() for _ in range(50)]))
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    store.reset_all()
    assert store.series(IBC_COUNT) == []
    for n in range(4):
        store.set_ibc_count("chain-1", "transfer", f"channel-{n}", "chain-2", "10", 199)
    assert len(store.series(IBC_COUNT)) == 4


def load_readme_script():
    path = Path(__file__).resolve().parents[1] / "scripts" / "generate_readme_metrics.py"
    spec = importlib.util.spec_from_file_location("generate_readme_metrics", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_readme_table_matches_gauges():
    script = load_readme_script()
    store = MetricsStore()
    rows = list(script.table_rows())[2:]
    assert len(rows) == len(store.gauges)
    for row in rows:
        name = row.split("`")[1]
        labels = tuple(row.rsplit("|", 2)[1].strip().split(", "))
        assert store.gauges[name]._labelnames == labels

    readme = (Path(__file__).resolve().parents[1] / "README.md").read_text()
    assert script.splice(readme, "\n".join(script.table_rows())) == readme
