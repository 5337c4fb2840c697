r"""Mesos Kafka - Rebalance all the brokers and wait for it to finish.

Usage example:
    cookbook mesoskafka.rebalance

"""
import argparse
import logging

from spicerack.cookbook import CookbookBase

from cookbooks import ArgparseFormatter
from cookbooks.mesoskafka import MesosKafkaCookbookRunnerBase
from cookbooks.mesoskafka.libs.common import add_common_opts

LOGGER = logging.getLogger(__name__)


class Rebalance(CookbookBase):
    """Mesos Kafka cookbook to rebalance the partitions across all the brokers."""

    title = __doc__

    def argument_parser(self):
        """Parse the command line arguments for this cookbook."""
        parser = argparse.ArgumentParser(
            prog=__name__,
            description=__doc__,
            formatter_class=ArgparseFormatter,
        )
        add_common_opts(parser)

        return parser

    def get_runner(self, args: argparse.Namespace) -> MesosKafkaCookbookRunnerBase:
        """Get runner"""
        return RebalanceRunner(spicerack=self.spicerack, api_url=args.api_url)


class RebalanceRunner(MesosKafkaCookbookRunnerBase):
    """Runner for Rebalance"""

    def run(self) -> None:
        """Main entry point"""
        if self.spicerack.dry_run:
            LOGGER.info("[dry-run] Would have rebalanced, current status: %s", self.controller.get_rebalance_status())
            return

        self.controller.rebalance_and_wait()
