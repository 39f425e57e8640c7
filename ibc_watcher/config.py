import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import toml

from ibc_watcher.errors import ConfigError

DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 9090
DEFAULT_REFRESH = 120.0
U64_MAX = 2 ** 64 - 1

_DURATION_PART_RE = re.compile(r"\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]+)")

_DURATION_UNITS = {
    'ns': 1e-9, 'nsec': 1e-9,
    'us': 1e-6, 'usec': 1e-6,
    'ms': 1e-3, 'msec': 1e-3,
    's': 1, 'sec': 1, 'secs': 1, 'second': 1, 'seconds': 1,
    'm': 60, 'min': 60, 'mins': 60, 'minute': 60, 'minutes': 60,
    'h': 3600, 'hr': 3600, 'hrs': 3600, 'hour': 3600, 'hours': 3600,
    'd': 86400, 'day': 86400, 'days': 86400,
    'w': 604800, 'week': 604800, 'weeks': 604800,
}


def parse_duration(text: str) -> float:
    """Parse a human readable duration such as ``"2m"``, ``"1h 30m"`` or
    ``"1209600.5s"`` into seconds.

    Raises ``ValueError`` when the text is empty or contains anything that is
    not a ``<number><unit>`` pair.
    """
    if not isinstance(text, str) or not text.strip():
        raise ValueError(f"invalid duration: {text!r}")
    total = 0.0
    pos = 0
    stripped = text.strip()
    while pos < len(stripped):
        m = _DURATION_PART_RE.match(stripped, pos)
        if not m:
            raise ValueError(f"invalid duration: {text!r}")
        unit = _DURATION_UNITS.get(m.group(2).lower())
        if unit is None:
            raise ValueError(f"unknown duration unit {m.group(2)!r} in {text!r}")
        total += float(m.group(1)) * unit
        pos = m.end()
    return total


def format_duration(seconds: float) -> str:
    """Render whole seconds the way thresholds appear in metric labels."""
    return f"{int(seconds)}s"


def _dump_duration(seconds: float) -> str:
    if float(seconds).is_integer():
        return format_duration(seconds)
    return f"{seconds}s"


def _table(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{where} must be a table")
    return value


def _array_of_tables(value: Any, where: str) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        raise ConfigError(f"{where} must be an array of tables")
    return [_table(item, f"{where}[{i}]") for i, item in enumerate(value)]


def _check_keys(table: Dict[str, Any], allowed: set, where: str) -> None:
    unknown = sorted(set(table) - allowed)
    if unknown:
        raise ConfigError(f"unknown field(s) {', '.join(unknown)} in {where}")


def _duration_field(table: Dict[str, Any], key: str, where: str) -> Optional[float]:
    raw = table.get(key)
    if raw is None:
        return None
    try:
        value = parse_duration(raw)
    except ValueError as e:
        raise ConfigError(f"{where}.{key}: {e}") from e
    return value


class ChannelConfig:
    def __init__(
        self,
        port_id: str,
        channel_id: str,
        destination_chain_id: str,
        min_total: str,
        refresh: float = DEFAULT_REFRESH,
        min_time_before_client_expiration: Optional[float] = None,
    ):
        self.port_id = port_id
        self.channel_id = channel_id
        self.destination_chain_id = destination_chain_id
        self.min_total = min_total
        self.refresh = refresh
        self.min_time_before_client_expiration = min_time_before_client_expiration

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], where: str) -> 'ChannelConfig':
        _table(raw, where)
        _check_keys(raw, {
            'port_id', 'channel_id', 'destination_chain_id', 'min_total',
            'refresh', 'min_time_before_client_expiration',
        }, where)
        for key in ('port_id', 'channel_id', 'destination_chain_id', 'min_total'):
            if not isinstance(raw.get(key), str):
                raise ConfigError(f"{where}.{key} is required and must be a string")
        min_total = raw['min_total']
        if not re.fullmatch(r"[0-9]+", min_total) or int(min_total) > U64_MAX:
            raise ConfigError(
                f"{where}.min_total must be a non-negative integer, got {min_total!r}"
            )
        refresh = _duration_field(raw, 'refresh', where)
        if refresh is None:
            refresh = DEFAULT_REFRESH
        elif refresh <= 0:
            raise ConfigError(f"{where}.refresh must be positive")
        return cls(
            port_id=raw['port_id'],
            channel_id=raw['channel_id'],
            destination_chain_id=raw['destination_chain_id'],
            min_total=min_total,
            refresh=refresh,
            min_time_before_client_expiration=_duration_field(
                raw, 'min_time_before_client_expiration', where
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            'port_id': self.port_id,
            'channel_id': self.channel_id,
            'destination_chain_id': self.destination_chain_id,
            'min_total': self.min_total,
            'refresh': _dump_duration(self.refresh),
        }
        if self.min_time_before_client_expiration is not None:
            out['min_time_before_client_expiration'] = _dump_duration(
                self.min_time_before_client_expiration
            )
        return out


class ChainConfig:
    def __init__(self, chain_id: str, endpoint_address: str, channels: List[ChannelConfig]):
        self.chain_id = chain_id
        self.endpoint_address = endpoint_address
        self.channels = channels

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], where: str) -> 'ChainConfig':
        _table(raw, where)
        _check_keys(raw, {'id', 'endpoint_address', 'channels'}, where)
        for key in ('id', 'endpoint_address'):
            if not isinstance(raw.get(key), str) or not raw[key]:
                raise ConfigError(f"{where}.{key} is required and must be a string")
        channels = [
            ChannelConfig.from_dict(ch, f"{where}.channels[{i}]")
            for i, ch in enumerate(_array_of_tables(raw.get('channels', []), f"{where}.channels"))
        ]
        return cls(raw['id'], raw['endpoint_address'], channels)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {'id': self.chain_id, 'endpoint_address': self.endpoint_address}
        if self.channels:
            out['channels'] = [ch.to_dict() for ch in self.channels]
        return out


class Config:
    def __init__(self, path: Path):
        try:
            data = toml.load(path)
        except FileNotFoundError as e:
            raise ConfigError(f"config file {path} not found") from e
        except (OSError, UnicodeDecodeError, toml.TomlDecodeError) as e:
            raise ConfigError(f"invalid configuration in {path}: {e}") from e
        _check_keys(data, {'prometheus', 'chains'}, 'config')

        prometheus = _table(data.get('prometheus', {}), 'prometheus')
        _check_keys(prometheus, {'host', 'port', 'reset', 'log_level'}, 'prometheus')
        self.host = prometheus.get('host', DEFAULT_HOST)
        self.port = prometheus.get('port', DEFAULT_PORT)
        if not isinstance(self.port, int) or not 0 <= self.port <= 65535:
            raise ConfigError(f"prometheus.port must be a TCP port, got {self.port!r}")
        self.reset = _duration_field(prometheus, 'reset', 'prometheus')
        if self.reset is not None and self.reset <= 0:
            raise ConfigError("prometheus.reset must be positive")
        self.log_level = prometheus.get('log_level', 'INFO')

        self.chains: List[ChainConfig] = [
            ChainConfig.from_dict(c, f"chains[{i}]")
            for i, c in enumerate(_array_of_tables(data.get('chains', []), 'chains'))
        ]

    def chains_map(self) -> Dict[str, ChainConfig]:
        return {c.chain_id: c for c in self.chains}

    def dumps(self) -> str:
        prometheus: Dict[str, Any] = {
            'host': self.host,
            'port': self.port,
            'log_level': self.log_level,
        }
        if self.reset is not None:
            prometheus['reset'] = _dump_duration(self.reset)
        data: Dict[str, Any] = {'prometheus': prometheus}
        if self.chains:
            data['chains'] = [c.to_dict() for c in self.chains]
        return toml.dumps(data)

    def store(self, path: Path) -> None:
        Path(path).write_text(self.dumps())
