r"""Mesos Kafka - Stop and remove brokers.

Each broker is stopped, removed and then the cluster rebalanced, waiting for
the rebalance to finish before going to the next broker.

Usage example:
    cookbook mesoskafka.delete_brokers 3 4

"""
import argparse
import logging
from typing import List, Optional

from spicerack import Spicerack
from spicerack.cookbook import CookbookBase
from wmflib.interactive import ask_confirmation

from cookbooks import ArgparseFormatter
from cookbooks.mesoskafka import MesosKafkaCookbookRunnerBase
from cookbooks.mesoskafka.libs.common import add_common_opts

LOGGER = logging.getLogger(__name__)


class DeleteBrokers(CookbookBase):
    """Mesos Kafka cookbook to remove brokers from the cluster."""

    title = __doc__

    def argument_parser(self):
        """Parse the command line arguments for this cookbook."""
        parser = argparse.ArgumentParser(
            prog=__name__,
            description=__doc__,
            formatter_class=ArgparseFormatter,
        )
        parser.add_argument("broker_ids", nargs="+", help="Ids of the brokers to remove, in order.")
        parser.add_argument(
            "--no-confirm",
            required=False,
            action="store_true",
            help="Do not ask for confirmation before removing the brokers.",
        )
        add_common_opts(parser)

        return parser

    def get_runner(self, args: argparse.Namespace) -> MesosKafkaCookbookRunnerBase:
        """Get runner"""
        return DeleteBrokersRunner(
            spicerack=self.spicerack,
            broker_ids=args.broker_ids,
            confirm=not args.no_confirm,
            api_url=args.api_url,
        )


class DeleteBrokersRunner(MesosKafkaCookbookRunnerBase):
    """Runner for DeleteBrokers"""

    def __init__(
        self, spicerack: Spicerack, broker_ids: List[str], confirm: bool = True, api_url: Optional[str] = None
    ):
        """Init"""
        super().__init__(spicerack=spicerack, api_url=api_url)
        self.broker_ids = broker_ids
        self.confirm = confirm

    @property
    def runtime_description(self) -> str:
        """Return a nicely formatted string that represents the cookbook action."""
        return f"for brokers {','.join(self.broker_ids)} on {self.config.api_url}"

    def run(self) -> None:
        """Main entry point"""
        if self.spicerack.dry_run:
            LOGGER.info("[dry-run] Would have stopped and removed brokers %s", ",".join(self.broker_ids))
            return

        if self.confirm:
            ask_confirmation(
                f"I'm going to stop and remove brokers {','.join(self.broker_ids)} from {self.config.api_url}."
            )

        self.controller.delete_brokers(self.broker_ids)
        LOGGER.info("Removed %d brokers.", len(self.broker_ids))
