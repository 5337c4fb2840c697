r"""Mesos Kafka - Add and start new brokers.

Every broker in the file is added, started and then the cluster rebalanced,
waiting for the rebalance to finish before going to the next broker.

Usage example:
    cookbook mesoskafka.create_brokers \
        --brokers-file new_brokers.yaml

"""
import argparse
import logging
from pathlib import Path
from typing import Optional

from spicerack import Spicerack
from spicerack.cookbook import CookbookBase

from cookbooks import ArgparseFormatter
from cookbooks.mesoskafka import MesosKafkaCookbookRunnerBase, load_broker_specs, parser_type_brokers_file
from cookbooks.mesoskafka.libs.common import add_common_opts

LOGGER = logging.getLogger(__name__)


class CreateBrokers(CookbookBase):
    """Mesos Kafka cookbook to add new brokers to the cluster."""

    title = __doc__

    def argument_parser(self):
        """Parse the command line arguments for this cookbook."""
        parser = argparse.ArgumentParser(
            prog=__name__,
            description=__doc__,
            formatter_class=ArgparseFormatter,
        )
        parser.add_argument(
            "--brokers-file",
            required=True,
            type=parser_type_brokers_file,
            help="Yaml file with the `brokers` to create.",
        )
        add_common_opts(parser)

        return parser

    def get_runner(self, args: argparse.Namespace) -> MesosKafkaCookbookRunnerBase:
        """Get runner"""
        return CreateBrokersRunner(spicerack=self.spicerack, brokers_file=args.brokers_file, api_url=args.api_url)


class CreateBrokersRunner(MesosKafkaCookbookRunnerBase):
    """Runner for CreateBrokers"""

    def __init__(self, spicerack: Spicerack, brokers_file: Path, api_url: Optional[str] = None):
        """Init"""
        super().__init__(spicerack=spicerack, api_url=api_url)
        self.specs = load_broker_specs(brokers_file)

    @property
    def runtime_description(self) -> str:
        """Return a nicely formatted string that represents the cookbook action."""
        return f"for {len(self.specs)} brokers on {self.config.api_url}"

    def run(self) -> None:
        """Main entry point"""
        if self.spicerack.dry_run:
            for spec in self.specs:
                LOGGER.info("[dry-run] Would have added and started broker '%s': %s", spec.broker_id, spec)
            return

        self.controller.create_brokers(self.specs)
        LOGGER.info("Created %d brokers.", len(self.specs))
