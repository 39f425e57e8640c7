import argparse
import logging
import sys
from pathlib import Path

from ibc_watcher import DEFAULT_CONFIG_PATH
from ibc_watcher.config import Config
from ibc_watcher.errors import ConfigError
from ibc_watcher.watcher import IBCWatcher

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='ibc-watcher',
        description=(
            "Watch not yet relayed IBC packet commitments and client expiry "
            "per channel and expose them as Prometheus metrics"
        ),
    )
    sub = parser.add_subparsers(dest='command', required=True)
    start = sub.add_parser('start', help="start the ibc watcher process")
    start.add_argument(
        '--config', '-c', type=Path,
        default=Path(DEFAULT_CONFIG_PATH),
        help="Path to TOML configuration file",
    )
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO)
    logger.info("config file: %s", args.config)
    try:
        cfg = Config(args.config)
    except ConfigError as e:
        logger.error("%s", e)
        sys.exit(1)
    logging.getLogger().setLevel(getattr(logging, str(cfg.log_level).upper(), logging.INFO))
    IBCWatcher(cfg).run()


if __name__ == '__main__':
    main()
