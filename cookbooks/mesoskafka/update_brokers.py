r"""Mesos Kafka - Update the settings of existing brokers.

Every broker in the file is stopped, updated, started again and then the
cluster rebalanced, one broker at a time. All the broker ids must be numeric.

Usage example:
    cookbook mesoskafka.update_brokers \
        --brokers-file brokers.yaml

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


class UpdateBrokers(CookbookBase):
    """Mesos Kafka cookbook to change the settings of brokers."""

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
            help="Yaml file with the `brokers` to update, with their full desired settings.",
        )
        add_common_opts(parser)

        return parser

    def get_runner(self, args: argparse.Namespace) -> MesosKafkaCookbookRunnerBase:
        """Get runner"""
        return UpdateBrokersRunner(spicerack=self.spicerack, brokers_file=args.brokers_file, api_url=args.api_url)


class UpdateBrokersRunner(MesosKafkaCookbookRunnerBase):
    """Runner for UpdateBrokers"""

    def __init__(self, spicerack: Spicerack, brokers_file: Path, api_url: Optional[str] = None):
        """Init"""
        super().__init__(spicerack=spicerack, api_url=api_url)
        self.specs = load_broker_specs(brokers_file)

    @property
    def runtime_description(self) -> str:
        """Return a nicely formatted string that represents the cookbook action."""
        return f"for brokers {','.join(spec.broker_id for spec in self.specs)} on {self.config.api_url}"

    def run(self) -> None:
        """Main entry point"""
        if self.spicerack.dry_run:
            for spec in self.specs:
                LOGGER.info(
                    "[dry-run] Would have restarted broker '%s' with: %s", spec.broker_id, spec.to_query_params()
                )
            return

        self.controller.update_brokers(self.specs)
        LOGGER.info("Updated %d brokers.", len(self.specs))
