#!/usr/bin/env python3
"""Mesos Kafka brokers related library functions and classes."""
import json
import logging
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, TypeVar
from unittest import mock
from urllib.parse import urlencode

import requests

from cookbooks.mesoskafka.libs.api import (
    MesosKafkaAPI,
    MesosKafkaDecodeError,
    MesosKafkaError,
    MesosKafkaTransportError,
    decode_json_object,
)
from cookbooks.mesoskafka.libs.common import (
    DEFAULT_MAX_POLL_FAILURES,
    DEFAULT_POLL_INTERVAL_SECONDS,
    MesosKafkaConfig,
    TestUtils,
)

LOGGER = logging.getLogger(__name__)
BROKER_LIST_PATH = "/api/broker/list"
BROKER_ADD_PATH = "/api/broker/add"
BROKER_START_PATH = "/api/broker/start"
BROKER_STOP_PATH = "/api/broker/stop"
BROKER_REMOVE_PATH = "/api/broker/remove"
BROKER_UPDATE_PATH = "/api/broker/update"
BROKER_REBALANCE_PATH = "/api/broker/rebalance"
# the scheduler expects a literal `*`, urlencode would escape it
REBALANCE_ALL_PATH = f"{BROKER_REBALANCE_PATH}?broker=*"
REBALANCE_IDLE_STATUS = "idle"
# optional sign and ascii digits only, like the scheduler parses ids
NUMERIC_ID_RE = re.compile(r"[+-]?[0-9]+")

_T = TypeVar("_T")


class MesosKafkaParseError(MesosKafkaError):
    """Risen when a broker identifier or a broker spec value is not valid for the requested operation."""


class MesosKafkaRebalanceError(MesosKafkaError):
    """Risen when the rebalance status could not be retrieved too many times in a row."""


def _optional(converter: Callable[[Any], _T], value: Any) -> Optional[_T]:
    if value is None or value == "":
        return None

    return converter(value)


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Expected a non negative integer, got {value!r}.")

    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"Expected a non negative integer, got {value!r}.")

        value = int(value)

    number = int(value)
    if number < 0:
        raise ValueError(f"Expected a non negative integer, got {value!r}.")

    return number


def _non_negative_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Expected a non negative number, got {value!r}.")

    number = float(value)
    if number < 0:
        raise ValueError(f"Expected a non negative number, got {value!r}.")

    return number


def _to_str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class Failover:
    """Restart policy applied by the scheduler when a broker process fails.

    Unset (None, empty or zero) values are left for the scheduler to default.
    """

    delay: Optional[str] = None
    max_delay: Optional[str] = None
    max_tries: Optional[int] = None

    @classmethod
    def from_json_data(cls, json_data: Optional[Dict[str, Any]]) -> "Failover":
        """Get the failover from the `failover` entry of a broker, as the api (and the brokers files) spell it."""
        if not json_data:
            return cls()

        return cls(
            delay=_optional(str, json_data.get("delay")),
            max_delay=_optional(str, json_data.get("maxDelay")),
            max_tries=_optional(_non_negative_int, json_data.get("maxTries")),
        )

    def to_query_params(self) -> Dict[str, str]:
        """Get the query parameters for the set values."""
        params = {}
        if self.delay:
            params["failoverDelay"] = self.delay

        if self.max_delay:
            params["failoverMaxDelay"] = self.max_delay

        if self.max_tries:
            params["failoverMaxTries"] = str(self.max_tries)

        return params


def _broker_fields_from_json(json_data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "broker_id": _to_str(json_data.get("id")),
        "cpus": _optional(_non_negative_float, json_data.get("cpus")),
        "mem": _optional(_non_negative_int, json_data.get("mem")),
        "heap": _optional(_non_negative_int, json_data.get("heap")),
        "jvm_options": _to_str(json_data.get("jvmOptions")),
        "log4j_options": _to_str(json_data.get("log4jOptions")),
        "options": _to_str(json_data.get("options")),
        "constraints": _to_str(json_data.get("constraints")),
        "failover": Failover.from_json_data(json_data.get("failover")),
    }


@dataclass(frozen=True)
class BrokerSpec:
    """Desired state for a single broker, as passed to add and update."""

    broker_id: str = ""
    cpus: Optional[float] = None
    mem: Optional[int] = None
    heap: Optional[int] = None
    jvm_options: str = ""
    log4j_options: str = ""
    options: str = ""
    constraints: str = ""
    failover: Failover = field(default_factory=Failover)

    @classmethod
    def from_dict(cls, spec_dict: Dict[str, Any]) -> "BrokerSpec":
        """Get a broker spec from a dict using the api key names (ex. from a brokers yaml file)."""
        try:
            return cls(**_broker_fields_from_json(spec_dict))
        except (AttributeError, TypeError, ValueError) as error:
            raise MesosKafkaParseError(f"Invalid broker spec {spec_dict}: {error}") from error

    def to_query_params(self) -> Dict[str, str]:
        """Get the sparse query parameters for this broker.

        Numeric values are only sent when non-zero, failover values only when set, so the scheduler applies its own
        defaults. The string options are always sent, even when empty.
        """
        params = {"broker": self.broker_id}
        if self.cpus:
            params["cpus"] = f"{self.cpus:.6f}"

        if self.mem:
            params["mem"] = str(self.mem)

        if self.heap:
            params["heap"] = str(self.heap)

        params["jvmOptions"] = self.jvm_options
        params["log4jOptions"] = self.log4j_options
        params["options"] = self.options
        params["constraints"] = self.constraints
        params.update(self.failover.to_query_params())
        return params

    def to_query_string(self) -> str:
        """Get the urlencoded query string, keys sorted."""
        return urlencode(sorted(self.to_query_params().items()))


@dataclass(frozen=True)
class BrokerState:
    """A broker as reported by the scheduler."""

    broker_id: str
    active: bool = False
    cpus: Optional[float] = None
    mem: Optional[int] = None
    heap: Optional[int] = None
    jvm_options: str = ""
    log4j_options: str = ""
    options: str = ""
    constraints: str = ""
    failover: Failover = field(default_factory=Failover)

    @classmethod
    def from_json_data(cls, json_data: Dict[str, Any]) -> "BrokerState":
        """Get a broker from one of the entries of the `brokers` list in the api responses."""
        try:
            return cls(active=bool(json_data.get("active", False)), **_broker_fields_from_json(json_data))
        except (AttributeError, TypeError, ValueError) as error:
            raise MesosKafkaDecodeError(f"Malformed broker entry: {json_data}: {error}") from error


def _brokers_from_json(json_data: Dict[str, Any]) -> List[BrokerState]:
    brokers = json_data.get("brokers") or []
    if not isinstance(brokers, list):
        raise MesosKafkaDecodeError(f"Was expecting a list of brokers, got: {json.dumps(brokers)}")

    return [BrokerState.from_json_data(broker) for broker in brokers]


@dataclass(frozen=True)
class ClusterStatus:
    """Point in time snapshot of all the brokers of the cluster."""

    brokers: List[BrokerState]

    @classmethod
    def from_json_data(cls, json_data: Dict[str, Any]) -> "ClusterStatus":
        """Get the cluster status from the output of the broker list api."""
        return cls(brokers=_brokers_from_json(json_data))

    def broker_ids(self) -> List[str]:
        """Get the ids of all the brokers, in the order the api returned them."""
        return [broker.broker_id for broker in self.brokers]

    def get_broker(self, broker_id: str) -> Optional[BrokerState]:
        """Get the broker with the given id if it's there."""
        return next((broker for broker in self.brokers if broker.broker_id == broker_id), None)


@dataclass(frozen=True)
class RebalanceStatus:
    """Status of the cluster rebalance operation."""

    status: str
    status_code: int = 0
    message: str = ""

    @classmethod
    def from_json_data(cls, json_data: Dict[str, Any]) -> "RebalanceStatus":
        """Get the status from the rebalance api output."""
        try:
            return cls(
                status=_to_str(json_data.get("status")),
                status_code=int(json_data.get("status_code") or 0),
                message=_to_str(json_data.get("message")),
            )
        except (TypeError, ValueError) as error:
            raise MesosKafkaDecodeError(f"Malformed rebalance status: {json_data}: {error}") from error

    @property
    def is_idle(self) -> bool:
        """Whether there's no rebalance going on."""
        return self.status == REBALANCE_IDLE_STATUS


@dataclass(frozen=True)
class MutationResult:
    """Acknowledgement of an action the scheduler runs asynchronously.

    It only tells that the request was accepted, not that the action finished.
    """

    result_dict: Dict[str, Any]

    @property
    def started(self) -> Any:
        """The `started` flag, if the api sent one."""
        return self.result_dict.get("started")


def _check_unique(broker_ids: Iterable[str]) -> None:
    seen: Set[str] = set()
    for broker_id in broker_ids:
        if broker_id in seen:
            raise MesosKafkaParseError(f"Broker {broker_id} was selected more than once.")

        seen.add(broker_id)


def _check_not_empty(broker_id: str) -> None:
    if not broker_id:
        raise MesosKafkaParseError("A broker id is required for this operation, got an empty one.")


class BrokerLifecycleController:
    """Controller for the brokers of a Mesos Kafka cluster.

    Every structural change (add, remove, update) is followed by a cluster rebalance, and the next change is only
    issued once the rebalance finished.
    """

    def __init__(
        self,
        api: MesosKafkaAPI,
        poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS,
        max_poll_failures: Optional[int] = DEFAULT_MAX_POLL_FAILURES,
    ):
        """Init.

        Arguments:
            api: the api client to use.
            poll_interval_seconds: how long to wait between rebalance status checks.
            max_poll_failures: how many rebalance status checks in a row can fail before giving up, None to never give
                up.

        """
        self._api = api
        self.poll_interval_seconds = poll_interval_seconds
        self.max_poll_failures = max_poll_failures

    @classmethod
    def from_config(
        cls, config: MesosKafkaConfig, session: Optional[requests.Session] = None
    ) -> "BrokerLifecycleController":
        """Get a controller for the api in the given config."""
        return cls(
            api=MesosKafkaAPI(base_url=config.api_url, session=session),
            poll_interval_seconds=config.poll_interval_seconds,
            max_poll_failures=config.max_poll_failures,
        )

    def _get(self, path: str) -> Dict[str, Any]:
        return decode_json_object(self._api.get_json(path), path)

    def _mutate(self, path: str, broker_id: str) -> MutationResult:
        return MutationResult(result_dict=self._get(f"{path}?{urlencode({'broker': broker_id})}"))

    def get_cluster_status(self) -> ClusterStatus:
        """Get the current status of all the brokers."""
        return ClusterStatus.from_json_data(self._get(BROKER_LIST_PATH))

    def list_brokers(self) -> List[BrokerState]:
        """Get the brokers currently in the cluster."""
        return self.get_cluster_status().brokers

    def add_broker(self, spec: BrokerSpec) -> List[BrokerState]:
        """Add a broker to the cluster (it will not be started), returns the added brokers."""
        LOGGER.info("Adding broker '%s'", spec.broker_id)
        return _brokers_from_json(self._get(f"{BROKER_ADD_PATH}?{spec.to_query_string()}"))

    def start_broker(self, broker_id: str) -> MutationResult:
        """Start the given broker."""
        LOGGER.info("Starting broker %s", broker_id)
        return self._mutate(BROKER_START_PATH, broker_id)

    def stop_broker(self, broker_id: str) -> MutationResult:
        """Stop the given broker."""
        _check_not_empty(broker_id)
        LOGGER.info("Stopping broker %s", broker_id)
        return self._mutate(BROKER_STOP_PATH, broker_id)

    def remove_broker(self, broker_id: str) -> MutationResult:
        """Remove the given broker from the cluster, it has to be stopped."""
        _check_not_empty(broker_id)
        LOGGER.info("Removing broker %s", broker_id)
        return self._mutate(BROKER_REMOVE_PATH, broker_id)

    def update_broker(self, spec: BrokerSpec) -> MutationResult:
        """Update the settings of a broker, it has to be stopped for them to be applied on next start."""
        _check_not_empty(spec.broker_id)
        LOGGER.info("Updating broker %s", spec.broker_id)
        return MutationResult(result_dict=self._get(f"{BROKER_UPDATE_PATH}?{spec.to_query_string()}"))

    def trigger_rebalance(self) -> MutationResult:
        """Start a rebalance of all the brokers, does not wait for it."""
        LOGGER.info("Triggering a rebalance of all the brokers")
        return MutationResult(result_dict=self._get(REBALANCE_ALL_PATH))

    def get_rebalance_status(self) -> RebalanceStatus:
        """Get the status of the current (or last) rebalance."""
        return RebalanceStatus.from_json_data(self._get(BROKER_REBALANCE_PATH))

    def rebalance_and_wait(self) -> None:
        """Trigger a rebalance and block until the cluster reports it's idle.

        There's no timeout, it keeps checking as long as the status can be retrieved. If more than
        `max_poll_failures` status checks fail in a row, MesosKafkaRebalanceError is raised.
        """
        self.trigger_rebalance()
        consecutive_failures = 0
        while True:
            try:
                rebalance_status = self.get_rebalance_status()

            except (MesosKafkaTransportError, MesosKafkaDecodeError) as error:
                consecutive_failures += 1
                if self.max_poll_failures is not None and consecutive_failures > self.max_poll_failures:
                    raise MesosKafkaRebalanceError(
                        f"Unable to get the rebalance status {consecutive_failures} times in a row, giving up: {error}"
                    ) from error

                LOGGER.warning(
                    "Unable to get the rebalance status (%d failures in a row), retrying in %ds: %s",
                    consecutive_failures,
                    self.poll_interval_seconds,
                    error,
                )

            else:
                consecutive_failures = 0
                if rebalance_status.is_idle:
                    LOGGER.info("Rebalance done, the cluster is idle.")
                    return

                LOGGER.info(
                    "Waiting for rebalance (status=%s, code=%d): %s, checking again in %ds...",
                    rebalance_status.status,
                    rebalance_status.status_code,
                    rebalance_status.message,
                    self.poll_interval_seconds,
                )

            time.sleep(self.poll_interval_seconds)

    def create_brokers(self, specs: List[BrokerSpec]) -> None:
        """Add, start and rebalance each of the given brokers, one after the other.

        Stops at the first failure, the brokers after it are not touched.
        """
        _check_unique(spec.broker_id for spec in specs if spec.broker_id)
        for spec in specs:
            added_brokers = self.add_broker(spec)
            # when no id was given, the scheduler assigns one
            broker_ids = [broker.broker_id for broker in added_brokers if broker.broker_id] or [spec.broker_id]
            for broker_id in broker_ids:
                self.start_broker(broker_id)

            self.rebalance_and_wait()

    def delete_brokers(self, broker_ids: List[str]) -> None:
        """Stop, remove and rebalance each of the given brokers, one after the other.

        Stops at the first failure, the brokers after it are not touched.
        """
        for broker_id in broker_ids:
            _check_not_empty(broker_id)

        _check_unique(broker_ids)
        for broker_id in broker_ids:
            self.stop_broker(broker_id)
            self.remove_broker(broker_id)
            self.rebalance_and_wait()

    def update_brokers(self, specs: List[BrokerSpec]) -> None:
        """Stop, update, start and rebalance each of the given brokers, one after the other.

        All the broker ids must be numeric, that is checked before touching any broker. Stops at the first failure,
        the brokers after it are not touched.
        """
        numeric_ids = []
        for spec in specs:
            if not NUMERIC_ID_RE.fullmatch(spec.broker_id):
                raise MesosKafkaParseError(f"Broker id '{spec.broker_id}' is not a number.")

            numeric_ids.append(str(int(spec.broker_id)))

        _check_unique(numeric_ids)
        for broker_id, spec in zip(numeric_ids, specs):
            # stop, update and start must all address the same broker
            self.stop_broker(broker_id)
            self.update_broker(replace(spec, broker_id=broker_id))
            self.start_broker(broker_id)
            self.rebalance_and_wait()


# Poor man's namespace to keep the test helpers close to the code they fake
class MesosKafkaTestUtils(TestUtils):
    """Utils to test mesos kafka related code."""

    @staticmethod
    def get_broker_dict(broker_id: str = "0", **overrides: Any) -> Dict[str, Any]:
        """Generate a broker entry like the ones the api returns."""
        broker_dict: Dict[str, Any] = {
            "id": broker_id,
            "active": True,
            "cpus": 1.0,
            "mem": 2048,
            "heap": 1024,
            "jvmOptions": "",
            "log4jOptions": "",
            "options": "",
            "constraints": "",
            "failover": {"delay": "1m", "maxDelay": "10m", "maxTries": 0},
        }
        broker_dict.update(overrides)
        return broker_dict

    @staticmethod
    def get_rebalance_status_dict(status: str = REBALANCE_IDLE_STATUS) -> Dict[str, Any]:
        """Generate a rebalance status like the api returns."""
        return {"status": status, "status_code": 0, "message": f"rebalance is {status}"}

    @staticmethod
    def get_fake_api(responses: Optional[List[Any]] = None) -> mock.MagicMock:
        """Create a fake api client.

        Every get_json call returns the next of the given responses json encoded, unless it's an exception, then it's
        raised.
        """
        fake_api = mock.create_autospec(spec=MesosKafkaAPI, spec_set=True, instance=True)
        fake_api.get_json.side_effect = [
            response if isinstance(response, Exception) else json.dumps(response).encode()
            for response in (responses if responses is not None else [])
        ]
        return fake_api

    @classmethod
    def get_controller(cls, responses: Optional[List[Any]] = None, **kwargs: Any) -> BrokerLifecycleController:
        """Get a controller using a fake api with the given responses."""
        return BrokerLifecycleController(api=cls.get_fake_api(responses=responses), **kwargs)
