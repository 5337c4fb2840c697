#!/usr/bin/env python3
"""Mesos Kafka common configuration and helpers."""
import argparse
import logging
from dataclasses import dataclass
from itertools import chain
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from wmflib.config import load_yaml_config

from cookbooks.mesoskafka.libs.api import DEFAULT_TIMEOUT_SECONDS, MesosKafkaError

LOGGER = logging.getLogger(__name__)
CONFIG_FILE_NAME = "mesoskafka.yaml"
DEFAULT_POLL_INTERVAL_SECONDS = 5
DEFAULT_MAX_POLL_FAILURES = 5


class MesosKafkaConfigError(MesosKafkaError):
    """Risen when the configuration is missing or invalid."""


@dataclass(frozen=True)
class MesosKafkaConfig:
    """Settings to reach and drive the Mesos Kafka scheduler API."""

    api_url: str
    request_timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS
    # None means never give up on failed rebalance status polls
    max_poll_failures: Optional[int] = DEFAULT_MAX_POLL_FAILURES

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any], api_url: Optional[str] = None) -> "MesosKafkaConfig":
        """Get the config from the contents of the config file, `api_url` overrides the file one if passed."""
        if not api_url:
            api_url = config_dict.get("api_url")

        if not api_url and config_dict.get("api_host"):
            api_url = f"https://{config_dict['api_host']}:{config_dict.get('api_port', 7000)}"

        if not api_url:
            raise MesosKafkaConfigError(
                f"No Mesos Kafka API url configured, pass --api-url or set `api_url` in {CONFIG_FILE_NAME}."
            )

        max_poll_failures = config_dict.get("max_poll_failures", DEFAULT_MAX_POLL_FAILURES)
        try:
            return cls(
                api_url=api_url,
                request_timeout_seconds=float(config_dict.get("request_timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
                poll_interval_seconds=int(config_dict.get("poll_interval_seconds", DEFAULT_POLL_INTERVAL_SECONDS)),
                max_poll_failures=int(max_poll_failures) if max_poll_failures is not None else None,
            )
        except (TypeError, ValueError) as error:
            raise MesosKafkaConfigError(f"Invalid {CONFIG_FILE_NAME} contents: {error}") from error


def load_mesoskafka_config(config_dir: Path, api_url: Optional[str] = None) -> MesosKafkaConfig:
    """Load the mesos kafka config from the given spicerack config directory."""
    config_file = config_dir / CONFIG_FILE_NAME
    LOGGER.debug("Loading mesos kafka config from %s", config_file)
    config_dict = load_yaml_config(config_file=config_file, raises=False)
    return MesosKafkaConfig.from_dict(config_dict=config_dict or {}, api_url=api_url)


def add_common_opts(parser: argparse.ArgumentParser) -> argparse.ArgumentParser:
    """Adds the common mesos kafka options to a cookbook parser."""
    parser.add_argument(
        "--api-url",
        required=False,
        default=None,
        help=f"Mesos Kafka scheduler API url (ex. https://kafka-mesos.example.org:7000), overrides {CONFIG_FILE_NAME}.",
    )

    return parser


class TestUtils:
    """Generic testing utilities."""

    @staticmethod
    def to_parametrize(test_cases: Dict[str, Dict[str, Any]]) -> Dict[str, Union[str, List[Any]]]:
        """Helper for parametrized tests.

        Use like:
        @pytest.mark.parametrize(**TestUtils.to_parametrize(
            {
                "Test case 1": {"param1": "value1", "param2": "value2"},
                # will set the value of the missing params as `None`
                "Test case 2": {"param1": "value1"},
                ...
            }
        ))
        """
        _param_names = sorted(set(chain(*[list(params.keys()) for params in test_cases.values()])))

        def _fill_up_params(test_case_params):
            return [test_case_params.get(must_param, None) for must_param in _param_names]

        if len(_param_names) == 1:
            argvalues = [_fill_up_params(test_case_params)[0] for test_case_params in test_cases.values()]

        else:
            argvalues = [_fill_up_params(test_case_params) for test_case_params in test_cases.values()]

        return {"argnames": ",".join(_param_names), "argvalues": argvalues, "ids": list(test_cases.keys())}
