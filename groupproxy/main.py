#!/usr/bin/env python3
import argparse
import logging
import ssl
import sys

import uvicorn

from groupproxy.config.settings import DEFAULT_CA_CERT_FILE, DEFAULT_PORT, load_config
from groupproxy.core.errors import ConfigError
from groupproxy.core.proxy_service import GroupProxyService
from groupproxy.utils.logs import configure_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Reverse proxy exposing the openshift.org API group on a Kubernetes API server',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Examples:
  groupproxy                            Run in-cluster with the service account token
  groupproxy -p 9000 --insecure         Listen on 9000 and skip upstream TLS checks
  groupproxy -t $TOKEN --cacert ca.crt  Use an explicit token and CA bundle""",
        prog='groupproxy'
    )
    parser.add_argument('-p', '--port', type=int, default=DEFAULT_PORT, help='port number')
    parser.add_argument('-t', '--token', default='', help='auth token (default: service account token)')
    parser.add_argument('--insecure', action='store_true', help='skip tls checks')
    parser.add_argument('--cacert', default=str(DEFAULT_CA_CERT_FILE), help='CA certificate bundle')
    parser.add_argument('--host', default='0.0.0.0', help='listen address')
    parser.add_argument(
        '--log-level',
        default='INFO',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        type=str.upper,
        help='logging level'
    )
    return parser


def main(argv=None):
    """Main entry point that processes CLI arguments"""
    args = build_parser().parse_args(argv)
    logger = configure_logging(args.log_level)

    try:
        config = load_config(
            token=args.token,
            insecure=args.insecure,
            ca_cert_path=args.cacert,
            host=args.host,
            port=args.port,
            log_level=args.log_level,
        )
        service = GroupProxyService(config)
    except (ConfigError, ssl.SSLError) as exc:
        logger.critical('%s', exc)
        sys.exit(1)

    logger.info('Proxying requests to %s', config.upstream_url)
    logger.info('Listening on port %d', config.port)

    uvicorn.run(
        service.app,
        host=config.host,
        port=config.port,
        log_level=logging.getLevelName(logger.getEffectiveLevel()).lower(),
        access_log=False,
        http='h11',
        timeout_keep_alive=60,
        limit_concurrency=500,
    )


if __name__ == '__main__':
    main()
