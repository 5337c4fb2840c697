"""Mesos Kafka brokers operations

Kafka brokers running on the Mesos Kafka framework are managed through the
scheduler REST API (/api/broker/*). These cookbooks add, remove and update
brokers one at a time:
* add -> start -> rebalance
* stop -> remove -> rebalance
* stop -> update -> start -> rebalance

After every change a rebalance of all the brokers is triggered and the
cookbook waits until the scheduler reports it as idle before touching the
next broker, so only one structural change is in flight at any time.

The scheduler API url is read from the `mesoskafka.yaml` file in the
spicerack config directory (`api_url`), or passed with --api-url.
"""
import argparse
import logging
from pathlib import Path
from typing import List, Optional

from spicerack import Spicerack
from spicerack.cookbook import CookbookRunnerBase
from wmflib.config import load_yaml_config

from cookbooks.mesoskafka.libs.brokers import BrokerLifecycleController, BrokerSpec, MesosKafkaParseError
from cookbooks.mesoskafka.libs.common import load_mesoskafka_config

__title__ = __doc__
LOGGER = logging.getLogger(__name__)


def load_broker_specs(brokers_file: Path) -> List[BrokerSpec]:
    """Load the broker specs from a yaml file with a top level `brokers` list.

    Each entry uses the same keys as the scheduler api, ex.:

    brokers:
      - id: "0"
        cpus: 1.5
        mem: 2048
        heap: 1024
        options: "log.retention.hours=72"
        failover:
          delay: 1m
          maxDelay: 10m
    """
    brokers_dict = load_yaml_config(config_file=brokers_file)
    broker_entries = brokers_dict.get("brokers") if isinstance(brokers_dict, dict) else None
    if not isinstance(broker_entries, list):
        raise MesosKafkaParseError(f"The file {brokers_file} must have a top level `brokers` list.")

    return [BrokerSpec.from_dict(entry) for entry in broker_entries]


def parser_type_brokers_file(value: str) -> Path:
    """Validates datatype in argparser if a string is an existing file."""
    path = Path(value)
    if not path.is_file():
        raise argparse.ArgumentTypeError(f"'{value}' is not an existing file")

    return path


class MesosKafkaCookbookRunnerBase(CookbookRunnerBase):
    """Base runner for the mesos kafka cookbooks, sets up the controller."""

    def __init__(self, spicerack: Spicerack, api_url: Optional[str] = None):
        """Init"""
        self.spicerack = spicerack
        self.config = load_mesoskafka_config(config_dir=Path(spicerack.config_dir), api_url=api_url)
        session = spicerack.requests_session(__name__, timeout=self.config.request_timeout_seconds, tries=1)
        self.controller = BrokerLifecycleController.from_config(config=self.config, session=session)

    def run(self) -> Optional[int]:
        """Main entry point"""
        raise NotImplementedError
