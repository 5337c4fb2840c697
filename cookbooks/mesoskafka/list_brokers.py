r"""Mesos Kafka - List the brokers of the cluster.

Usage example:
    cookbook mesoskafka.list_brokers \
        --api-url https://kafka-mesos.example.org:7000

"""
import argparse
import logging

from prettytable import PrettyTable
from spicerack.cookbook import CookbookBase

from cookbooks import ArgparseFormatter
from cookbooks.mesoskafka import MesosKafkaCookbookRunnerBase
from cookbooks.mesoskafka.libs.brokers import BrokerState
from cookbooks.mesoskafka.libs.common import add_common_opts

LOGGER = logging.getLogger(__name__)


class ListBrokers(CookbookBase):
    """Mesos Kafka cookbook to show the brokers and their settings."""

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
        return ListBrokersRunner(spicerack=self.spicerack, api_url=args.api_url)


class ListBrokersRunner(MesosKafkaCookbookRunnerBase):
    """Runner for ListBrokers"""

    @staticmethod
    def _table_row(broker: BrokerState) -> list:
        return [
            broker.broker_id,
            broker.active,
            "" if broker.cpus is None else f"{broker.cpus:g}",
            broker.mem or "",
            broker.heap or "",
            broker.constraints,
            broker.options,
            f"{broker.failover.delay or '-'}/{broker.failover.max_delay or '-'}/{broker.failover.max_tries or '-'}",
        ]

    def run(self) -> None:
        """Main entry point"""
        brokers = self.controller.list_brokers()
        table = PrettyTable()
        table.field_names = ["ID", "Active", "CPUs", "Mem", "Heap", "Constraints", "Options", "Failover"]
        for broker in brokers:
            table.add_row(self._table_row(broker))

        print(table)
        LOGGER.info("Got %d brokers from %s", len(brokers), self.config.api_url)
