import argparse
import logging
import sys
from logging.handlers import RotatingFileHandler

import requests
from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from hostrelay.model.Core.header import ConfigError, RelayConfig, load_config
from hostrelay.model.ProxyTester import ProxyTester
from hostrelay.model.RelayProxyServer import RelayProxyServer

logger = logging.getLogger("hostrelay")


def setup_logging(config: RelayConfig):
    """Console logging through rich, plus a rotating file when configured."""
    handlers = [RichHandler(show_path=False)]
    if config.log_file:
        file_handler = RotatingFileHandler(config.log_file, maxBytes=1048576, backupCount=3)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        handlers.append(file_handler)

    logging.basicConfig(
        level=config.log_level.upper(),
        format='%(message)s',
        handlers=handlers,
        force=True,
    )


def build_parser():
    parser = argparse.ArgumentParser(description="HostRelay forwarding proxy")
    parser.add_argument("-H", "--host", help="Bind address (default: 127.0.0.1)")
    parser.add_argument("-p", "--port", type=int, help="Port to listen on (default: 8080)")
    parser.add_argument("-c", "--config", help="JSON config file")
    parser.add_argument("--templates", help="Directory of <name>.http response templates")
    parser.add_argument("--chunk-size", type=int, help="Bytes per socket read")
    parser.add_argument("--connect-timeout", type=float, help="Upstream connect timeout in seconds")
    parser.add_argument("--log-file", help="Also log to this rotating file")
    parser.add_argument("--log-level", help="Logging level (default: INFO)")
    parser.add_argument("--check", metavar="URL", help="Send a GET for URL through a running proxy and exit")
    return parser


def resolve_config(args) -> RelayConfig:
    """Defaults, then the config file, then command line flags."""
    data = {}
    if args.config:
        data.update(vars(load_config(args.config)))

    overrides = {
        "listening_addr": args.host,
        "listening_port": args.port,
        "templates_dir": args.templates,
        "chunk_size": args.chunk_size,
        "connect_timeout": args.connect_timeout,
        "log_file": args.log_file,
        "log_level": args.log_level,
    }
    data.update({key: value for key, value in overrides.items() if value is not None})
    return RelayConfig.from_dict(data)


def run_check(config: RelayConfig, url: str, console: Console = None) -> int:
    console = console or Console()
    host = config.listening_addr
    if ":" in host:
        host = f"[{host}]"
    proxy_address = f"http://{host}:{config.listening_port}"

    with ProxyTester(proxy_address) as tester:
        try:
            response = tester.send_http(url)
        except requests.RequestException as e:
            console.print(f"[bold red]Request through {proxy_address} failed:[/bold red] {escape(str(e))}")
            return 1

    table = Table(title=f"{response.status_code} {response.reason}", box=box.SIMPLE)
    table.add_column("Header", style="bold cyan")
    table.add_column("Value")
    for key, value in response.headers.items():
        table.add_row(escape(key), escape(value))
    console.print(table)
    return 0


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.check:
        return run_check(config, args.check)

    setup_logging(config)
    proxy_server = RelayProxyServer(config)
    try:
        proxy_server.start()
    except OSError as e:
        logger.error(f"Failed to start server on {config.listening_addr}:{config.listening_port}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
