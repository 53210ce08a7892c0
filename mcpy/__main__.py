"""
Command-line entry point for mcpy.

Runs a small JSON-RPC server over stdin/stdout, one message per line.
It answers ping, echo and a streaming count method, which makes it handy
for poking at a client implementation by hand.
"""

import argparse
import logging
import sys

from .config import load_config
from .core.asyncops import generator
from .core.streaming import register_streaming_method
from .core.transport import StdioTransport, bind_endpoint
from .utils.logging import configure_logging

logger = logging.getLogger(__name__)


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="mcpy stdio demo server")
    parser.add_argument("--env-file", default=None, help="Path to a .env file to load")
    parser.add_argument("--log-level", default=None, help="Override MCPY_LOG_LEVEL")
    parser.add_argument("--strict", action="store_true",
                        help="Reject requests until initialize has completed")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


@generator
def _count(params, ctx):
    upto = params.get('upto', 10) if isinstance(params, dict) else 10
    for i in range(int(upto)):
        ctx.check_cancelled()
        yield i


def build_server(transport, config):
    """Bind an endpoint to transport and register the demo methods"""
    endpoint = bind_endpoint(transport, config=config)
    endpoint.set_initialize_handler(
        lambda params, ctx: {'serverInfo': {'name': 'mcpy-demo'}, 'capabilities': {'progress': True}}
    )
    endpoint.register("ping", lambda params, ctx: "pong")
    endpoint.register("echo", lambda params, ctx: params)
    register_streaming_method(
        endpoint.dispatcher, "count", _count,
        estimate_total=lambda params: int(params.get('upto', 10)) if isinstance(params, dict) else 10,
    )
    return endpoint


def main(argv=None) -> int:
    args = parse_arguments(argv)

    overrides = {}
    if args.log_level:
        overrides['log_level'] = args.log_level.upper()
    if args.debug:
        overrides['log_level'] = "DEBUG"
    if args.strict:
        overrides['strict_initialization'] = True
    config = load_config(args.env_file, **overrides)

    # stdout carries the protocol; logs go to stderr
    configure_logging(config.log_level, stream=sys.stderr)

    transport = StdioTransport()
    build_server(transport, config)
    logger.info("mcpy demo server listening on stdio")
    transport.start()
    try:
        transport.wait_closed()
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        transport.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
