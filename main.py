import argparse
import sys

from PyQt5.QtWidgets import QApplication
import structlog

import config
from controller import MainController
from logconfig import add_context, clear_context, configure_logging
from products import CatalogStore
from services import create_session
from transactions import HttpTransport

logger = structlog.get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Point-of-sale front end for the sales sheet")
    parser.add_argument('--api-url', default=config.API_URL, help="sale submission endpoint")
    parser.add_argument('--catalog-url', default=config.CATALOG_URL, help="catalog endpoint (JSON or CSV)")
    parser.add_argument('--strategy', choices=config.STRATEGIES, default=config.CHECKOUT_STRATEGY,
                        help="how checkout sends sale lines")
    return parser.parse_args(argv)


def main(argv=None):
    configure_logging()
    args = parse_args(argv)
    add_context(strategy=args.strategy)
    logger.info("Starting point of sale")

    app = QApplication(sys.argv[:1])

    with create_session(catalog=CatalogStore(url=args.catalog_url),
                        transport=HttpTransport(url=args.api_url),
                        strategy=args.strategy) as session:
        window = MainController(session)
        window.show()
        window.load_catalog()
        code = app.exec_()

    logger.info("Point of sale closed", sales=len(session.sales_log), running_total=session.sales_log.running_total)
    clear_context()
    return code


if __name__ == "__main__":
    sys.exit(main())
