import pytest
import toml

from ibc_watcher.config import (
    DEFAULT_REFRESH,
    ChainConfig,
    ChannelConfig,
    Config,
    format_duration,
    parse_duration,
)
from ibc_watcher.errors import ConfigError


def sample_data():
    return {
        'prometheus': {
            'host': '127.0.0.1',
            'port': 9100,
            'reset': '10m',
            'log_level': 'DEBUG',
        },
        'chains': [
            {
                'id': 'chain-1',
                'endpoint_address': 'https://lcd.chain-1',
                'channels': [
                    {
                        'port_id': 'transfer',
                        'channel_id': 'channel-0',
                        'destination_chain_id': 'chain-2',
                        'min_total': '10',
                        'refresh': '30s',
                        'min_time_before_client_expiration': '3d',
                    },
                    {
                        'port_id': 'transfer',
                        'channel_id': 'channel-1',
                        'destination_chain_id': 'chain-3',
                        'min_total': '0',
                    },
                ],
            }
        ],
    }


def write_config(tmp_path, data):
    p = tmp_path / 'chains.toml'
    p.write_text(toml.dumps(data))
    return p


def test_config_parsing(tmp_path):
    cfg = Config(write_config(tmp_path, sample_data()))
    assert cfg.host == '127.0.0.1'
    assert cfg.port == 9100
    assert cfg.reset == 600
    assert cfg.log_level == 'DEBUG'
    assert len(cfg.chains) == 1
    chain = cfg.chains[0]
    assert isinstance(chain, ChainConfig)
    assert chain.chain_id == 'chain-1'
    assert chain.endpoint_address == 'https://lcd.chain-1'
    first, second = chain.channels
    assert isinstance(first, ChannelConfig)
    assert first.min_total == '10'
    assert first.refresh == 30
    assert first.min_time_before_client_expiration == 3 * 86400
    assert second.refresh == DEFAULT_REFRESH == 120
    assert second.min_time_before_client_expiration is None
    assert cfg.chains_map() == {'chain-1': chain}


def test_defaults(tmp_path):
    cfg = Config(write_config(tmp_path, {}))
    assert cfg.host == '0.0.0.0'
    assert cfg.port == 9090
    assert cfg.reset is None
    assert cfg.chains == []


@pytest.mark.parametrize('min_total', ['-1', 'ten', '1.5', '', '18446744073709551616'])
def test_invalid_min_total(tmp_path, min_total):
    data = sample_data()
    data['chains'][0]['channels'][0]['min_total'] = min_total
    with pytest.raises(ConfigError):
        Config(write_config(tmp_path, data))


def test_min_total_must_be_string(tmp_path):
    data = sample_data()
    data['chains'][0]['channels'][0]['min_total'] = 10
    with pytest.raises(ConfigError):
        Config(write_config(tmp_path, data))


def test_unknown_fields_rejected(tmp_path):
    data = sample_data()
    data['chains'][0]['grpc_addr'] = 'https://grpc'
    with pytest.raises(ConfigError):
        Config(write_config(tmp_path, data))


def test_invalid_refresh(tmp_path):
    data = sample_data()
    data['chains'][0]['channels'][0]['refresh'] = 'soon'
    with pytest.raises(ConfigError):
        Config(write_config(tmp_path, data))
    data['chains'][0]['channels'][0]['refresh'] = '0s'
    with pytest.raises(ConfigError):
        Config(write_config(tmp_path, data))


def test_missing_file_and_bad_toml(tmp_path):
    with pytest.raises(ConfigError):
        Config(tmp_path / 'missing.toml')
    p = tmp_path / 'broken.toml'
    p.write_text('[prometheus\nport = ')
    with pytest.raises(ConfigError):
        Config(p)


def test_config_error_is_value_error(tmp_path):
    with pytest.raises(ValueError):
        Config(tmp_path / 'missing.toml')


def test_store_round_trip(tmp_path):
    cfg = Config(write_config(tmp_path, sample_data()))
    out = tmp_path / 'stored.toml'
    cfg.store(out)
    again = Config(out)
    assert again.reset == cfg.reset
    assert [c.to_dict() for c in again.chains] == [c.to_dict() for c in cfg.chains]


def test_parse_duration():
    assert parse_duration('120s') == 120
    assert parse_duration('2m') == 120
    assert parse_duration('1h 30m') == 5400
    assert parse_duration('1h30m10s') == 5410
    assert parse_duration('14days') == 14 * 86400
    assert parse_duration('500ms') == 0.5
    assert parse_duration('1209600.5s') == 1209600.5
    for bad in ['', '10', 'abc', '5 parsecs', '1h x']:
        with pytest.raises(ValueError):
            parse_duration(bad)


def test_format_duration():
    assert format_duration(200) == '200s'
    assert format_duration(1000 / 3) == '333s'


@pytest.mark.parametrize('text', [
    'prometheus = 5\n',
    'chains = [5]\n',
    'chains = "chain-1"\n',
    '[[chains]]\nid = "a-1"\nendpoint_address = "https://a"\nchannels = ["channel-0"]\n',
    '[[chains]]\nid = "a-1"\nendpoint_address = "https://a"\nchannels = 3\n',
])
def test_wrongly_typed_tables_are_config_errors(tmp_path, text):
    p = tmp_path / 'chains.toml'
    p.write_text(text)
    with pytest.raises(ConfigError):
        Config(p)


def test_invalid_utf8_is_config_error(tmp_path):
    p = tmp_path / 'chains.toml'
    p.write_bytes(b'[prometheus]\nhost = "\xff\xfe"\n')
    with pytest.raises(ConfigError):
        Config(p)
