from typing import Any, Dict, List, Optional
from unittest import mock

import pytest

from cookbooks.mesoskafka.libs.api import MesosKafkaDecodeError, MesosKafkaTransportError
from cookbooks.mesoskafka.libs.brokers import (
    BrokerLifecycleController,
    BrokerSpec,
    MesosKafkaParseError,
    MesosKafkaRebalanceError,
    MesosKafkaTestUtils,
)
from cookbooks.mesoskafka.libs.common import MesosKafkaConfig

IDLE = MesosKafkaTestUtils.get_rebalance_status_dict(status="idle")
RUNNING = MesosKafkaTestUtils.get_rebalance_status_dict(status="running")
STARTED = {"started": True}
# trigger + a single idle status poll
QUICK_REBALANCE = [STARTED, IDLE]


def parametrize(params: Dict[str, Any]):
    def decorator(decorated):
        return pytest.mark.parametrize(**MesosKafkaTestUtils.to_parametrize(params))(decorated)

    return decorator


def get_called_paths(controller: BrokerLifecycleController) -> List[str]:
    return [call.args[0] for call in controller._api.get_json.call_args_list]


def get_transport_error() -> MesosKafkaTransportError:
    return MesosKafkaTransportError("/api/broker/rebalance: Returned HTTP status: 503", status=503, body="")


def test_get_cluster_status_happy_path():
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[{"brokers": [MesosKafkaTestUtils.get_broker_dict("0"), MesosKafkaTestUtils.get_broker_dict("1")]}]
    )

    cluster_status = my_controller.get_cluster_status()

    assert cluster_status.broker_ids() == ["0", "1"]
    assert get_called_paths(my_controller) == ["/api/broker/list"]


def test_list_brokers_fetches_fresh_each_time():
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[
            {"brokers": [MesosKafkaTestUtils.get_broker_dict("0")]},
            {"brokers": []},
        ]
    )

    assert [broker.broker_id for broker in my_controller.list_brokers()] == ["0"]
    assert my_controller.list_brokers() == []


def test_get_cluster_status_raises_on_transport_error():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[get_transport_error()])

    with pytest.raises(MesosKafkaTransportError):
        my_controller.get_cluster_status()


@parametrize(
    {
        "Stop": {"method_name": "stop_broker", "expected_path": "/api/broker/stop?broker=7"},
        "Start": {"method_name": "start_broker", "expected_path": "/api/broker/start?broker=7"},
        "Remove": {"method_name": "remove_broker", "expected_path": "/api/broker/remove?broker=7"},
    }
)
def test_single_broker_primitives(method_name: str, expected_path: str):
    my_controller = MesosKafkaTestUtils.get_controller(responses=[STARTED])

    result = getattr(my_controller, method_name)("7")

    assert result.started is True
    assert get_called_paths(my_controller) == [expected_path]


@parametrize(
    {
        "Stop": {"method_name": "stop_broker"},
        "Remove": {"method_name": "remove_broker"},
    }
)
def test_single_broker_primitives_require_an_id(method_name: str):
    my_controller = MesosKafkaTestUtils.get_controller(responses=[])

    with pytest.raises(MesosKafkaParseError):
        getattr(my_controller, method_name)("")

    my_controller._api.get_json.assert_not_called()


def test_add_broker_sends_sparse_query_and_returns_added_brokers():
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[{"brokers": [MesosKafkaTestUtils.get_broker_dict("5", active=False)]}]
    )

    added = my_controller.add_broker(BrokerSpec(broker_id="5", mem=1024))

    assert [broker.broker_id for broker in added] == ["5"]
    assert get_called_paths(my_controller) == [
        "/api/broker/add?broker=5&constraints=&jvmOptions=&log4jOptions=&mem=1024&options="
    ]


def test_update_broker_sends_sparse_query():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[{}])

    my_controller.update_broker(BrokerSpec(broker_id="5", cpus=1.5))

    assert get_called_paths(my_controller) == [
        "/api/broker/update?broker=5&constraints=&cpus=1.500000&jvmOptions=&log4jOptions=&options="
    ]


def test_add_broker_raises_on_malformed_response():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[{"brokers": "nope"}])

    with pytest.raises(MesosKafkaDecodeError):
        my_controller.add_broker(BrokerSpec(broker_id="5"))


def test_rebalance_and_wait_polls_until_idle():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[STARTED, RUNNING, RUNNING, IDLE])

    with mock.patch("cookbooks.mesoskafka.libs.brokers.time.sleep") as fake_sleep:
        my_controller.rebalance_and_wait()

    assert get_called_paths(my_controller) == [
        "/api/broker/rebalance?broker=*",
        "/api/broker/rebalance",
        "/api/broker/rebalance",
        "/api/broker/rebalance",
    ]
    assert fake_sleep.call_args_list == [mock.call(5), mock.call(5)]


def test_rebalance_and_wait_raises_if_trigger_fails():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[get_transport_error()])

    with mock.patch("cookbooks.mesoskafka.libs.brokers.time.sleep") as fake_sleep, pytest.raises(
        MesosKafkaTransportError
    ):
        my_controller.rebalance_and_wait()

    fake_sleep.assert_not_called()
    assert get_called_paths(my_controller) == ["/api/broker/rebalance?broker=*"]


@parametrize(
    {
        "Transient transport failures are retried": {
            "responses": [STARTED, get_transport_error(), get_transport_error(), RUNNING, IDLE],
            "max_poll_failures": 2,
            "expected_sleeps": 3,
        },
        "Malformed status is retried": {
            "responses": [STARTED, {"status": "running", "status_code": "bad"}, IDLE],
            "max_poll_failures": 1,
            "expected_sleeps": 1,
        },
        "The failure count resets after a successful poll": {
            "responses": [STARTED, get_transport_error(), RUNNING, get_transport_error(), IDLE],
            "max_poll_failures": 1,
            "expected_sleeps": 3,
        },
        "Never gives up when there's no failure budget": {
            "responses": [STARTED] + [get_transport_error()] * 10 + [IDLE],
            "max_poll_failures": None,
            "expected_sleeps": 10,
        },
    }
)
def test_rebalance_and_wait_tolerates_poll_failures(
    responses: List[Any], max_poll_failures: Optional[int], expected_sleeps: int
):
    my_controller = MesosKafkaTestUtils.get_controller(responses=responses, max_poll_failures=max_poll_failures)

    with mock.patch("cookbooks.mesoskafka.libs.brokers.time.sleep") as fake_sleep:
        my_controller.rebalance_and_wait()

    assert fake_sleep.call_count == expected_sleeps


def test_rebalance_and_wait_raises_after_too_many_poll_failures():
    transport_error = get_transport_error()
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[STARTED, RUNNING] + [transport_error] * 3, max_poll_failures=2
    )

    with mock.patch("cookbooks.mesoskafka.libs.brokers.time.sleep"), pytest.raises(
        MesosKafkaRebalanceError
    ) as error:
        my_controller.rebalance_and_wait()

    assert error.value.__cause__ is transport_error
    assert len(get_called_paths(my_controller)) == 5


def test_create_brokers_with_no_specs_does_nothing():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[])

    my_controller.create_brokers([])

    my_controller._api.get_json.assert_not_called()


def test_create_brokers_happy_path():
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[
            {"brokers": [MesosKafkaTestUtils.get_broker_dict("0", active=False)]},
            STARTED,
            *QUICK_REBALANCE,
            {"brokers": [MesosKafkaTestUtils.get_broker_dict("1", active=False)]},
            STARTED,
            STARTED,
            RUNNING,
            IDLE,
        ]
    )

    with mock.patch("cookbooks.mesoskafka.libs.brokers.time.sleep") as fake_sleep:
        my_controller.create_brokers([BrokerSpec(broker_id="0"), BrokerSpec(broker_id="1", heap=512)])

    assert get_called_paths(my_controller) == [
        "/api/broker/add?broker=0&constraints=&jvmOptions=&log4jOptions=&options=",
        "/api/broker/start?broker=0",
        "/api/broker/rebalance?broker=*",
        "/api/broker/rebalance",
        "/api/broker/add?broker=1&constraints=&heap=512&jvmOptions=&log4jOptions=&options=",
        "/api/broker/start?broker=1",
        "/api/broker/rebalance?broker=*",
        "/api/broker/rebalance",
        "/api/broker/rebalance",
    ]
    fake_sleep.assert_called_once_with(5)


def test_create_brokers_starts_the_id_assigned_by_the_scheduler():
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[{"brokers": [MesosKafkaTestUtils.get_broker_dict("9", active=False)]}, STARTED, *QUICK_REBALANCE]
    )

    my_controller.create_brokers([BrokerSpec()])

    assert get_called_paths(my_controller)[1] == "/api/broker/start?broker=9"


def test_create_brokers_stops_when_add_fails():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[get_transport_error()])

    with pytest.raises(MesosKafkaTransportError):
        my_controller.create_brokers([BrokerSpec(broker_id="0"), BrokerSpec(broker_id="1")])

    assert len(get_called_paths(my_controller)) == 1


def test_create_brokers_propagates_rebalance_failures():
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[{"brokers": [MesosKafkaTestUtils.get_broker_dict("0")]}, STARTED, get_transport_error()]
    )

    with pytest.raises(MesosKafkaTransportError):
        my_controller.create_brokers([BrokerSpec(broker_id="0"), BrokerSpec(broker_id="1")])

    assert len(get_called_paths(my_controller)) == 3


def test_create_brokers_rejects_duplicated_ids():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[])

    with pytest.raises(MesosKafkaParseError):
        my_controller.create_brokers([BrokerSpec(broker_id="0"), BrokerSpec(broker_id="0")])

    my_controller._api.get_json.assert_not_called()


def test_delete_brokers_happy_path():
    my_controller = MesosKafkaTestUtils.get_controller(
        responses=[STARTED, STARTED, *QUICK_REBALANCE, STARTED, STARTED, *QUICK_REBALANCE]
    )

    my_controller.delete_brokers(["1", "2"])

    assert get_called_paths(my_controller) == [
        "/api/broker/stop?broker=1",
        "/api/broker/remove?broker=1",
        "/api/broker/rebalance?broker=*",
        "/api/broker/rebalance",
        "/api/broker/stop?broker=2",
        "/api/broker/remove?broker=2",
        "/api/broker/rebalance?broker=*",
        "/api/broker/rebalance",
    ]


def test_delete_brokers_stops_when_stop_fails():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[get_transport_error()])

    with pytest.raises(MesosKafkaTransportError):
        my_controller.delete_brokers(["1", "2"])

    assert get_called_paths(my_controller) == ["/api/broker/stop?broker=1"]


@parametrize(
    {
        "Empty id": {"broker_ids": ["1", ""]},
        "Duplicated id": {"broker_ids": ["1", "2", "1"]},
    }
)
def test_delete_brokers_validates_ids_before_any_call(broker_ids: List[str]):
    my_controller = MesosKafkaTestUtils.get_controller(responses=[])

    with pytest.raises(MesosKafkaParseError):
        my_controller.delete_brokers(broker_ids)

    my_controller._api.get_json.assert_not_called()


def test_update_brokers_happy_path():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[STARTED, {}, STARTED, *QUICK_REBALANCE])

    my_controller.update_brokers([BrokerSpec(broker_id="3", mem=4096)])

    assert get_called_paths(my_controller) == [
        "/api/broker/stop?broker=3",
        "/api/broker/update?broker=3&constraints=&jvmOptions=&log4jOptions=&mem=4096&options=",
        "/api/broker/start?broker=3",
        "/api/broker/rebalance?broker=*",
        "/api/broker/rebalance",
    ]


@parametrize(
    {
        "Non numeric id": {"specs": [BrokerSpec(broker_id="abc")]},
        "Non numeric id after a valid one": {"specs": [BrokerSpec(broker_id="1"), BrokerSpec(broker_id="abc")]},
        "Empty id": {"specs": [BrokerSpec()]},
        "Duplicated id": {"specs": [BrokerSpec(broker_id="1"), BrokerSpec(broker_id="1")]},
        "Duplicated id once normalized": {"specs": [BrokerSpec(broker_id="1"), BrokerSpec(broker_id="01")]},
        "Underscore separated id": {"specs": [BrokerSpec(broker_id="1_0")]},
        "Id with spaces": {"specs": [BrokerSpec(broker_id=" 7")]},
        "Non ascii digits": {"specs": [BrokerSpec(broker_id="\u0661\u0662")]},
        "Sign only": {"specs": [BrokerSpec(broker_id="-")]},
    }
)
def test_update_brokers_validates_ids_before_any_call(specs: List[BrokerSpec]):
    my_controller = MesosKafkaTestUtils.get_controller(responses=[])

    with pytest.raises(MesosKafkaParseError):
        my_controller.update_brokers(specs)

    my_controller._api.get_json.assert_not_called()


def test_update_brokers_stops_when_update_fails():
    my_controller = MesosKafkaTestUtils.get_controller(responses=[STARTED, get_transport_error()])

    with pytest.raises(MesosKafkaTransportError):
        my_controller.update_brokers([BrokerSpec(broker_id="3"), BrokerSpec(broker_id="4")])

    assert len(get_called_paths(my_controller)) == 2


@parametrize(
    {
        "Leading zero": {"broker_id": "07", "expected_id": "7"},
        "Plus sign": {"broker_id": "+7", "expected_id": "7"},
        "Already normalized": {"broker_id": "7", "expected_id": "7"},
    }
)
def test_update_brokers_sends_the_same_id_to_stop_update_and_start(broker_id: str, expected_id: str):
    my_controller = MesosKafkaTestUtils.get_controller(responses=[STARTED, {}, STARTED, *QUICK_REBALANCE])

    my_controller.update_brokers([BrokerSpec(broker_id=broker_id)])

    assert get_called_paths(my_controller)[:3] == [
        f"/api/broker/stop?broker={expected_id}",
        f"/api/broker/update?broker={expected_id}&constraints=&jvmOptions=&log4jOptions=&options=",
        f"/api/broker/start?broker={expected_id}",
    ]


@parametrize(
    {
        "Create when start fails": {
            "workflow": "create_brokers",
            "workflow_args": [BrokerSpec(broker_id="0"), BrokerSpec(broker_id="1")],
            "responses": [{"brokers": [MesosKafkaTestUtils.get_broker_dict("0", active=False)]}],
            "expected_paths": [
                "/api/broker/add?broker=0&constraints=&jvmOptions=&log4jOptions=&options=",
                "/api/broker/start?broker=0",
            ],
        },
        "Delete when remove fails": {
            "workflow": "delete_brokers",
            "workflow_args": ["1", "2"],
            "responses": [STARTED],
            "expected_paths": ["/api/broker/stop?broker=1", "/api/broker/remove?broker=1"],
        },
        "Update when the first stop fails": {
            "workflow": "update_brokers",
            "workflow_args": [BrokerSpec(broker_id="3"), BrokerSpec(broker_id="4")],
            "responses": [],
            "expected_paths": ["/api/broker/stop?broker=3"],
        },
    }
)
def test_workflows_stop_when_a_step_fails(
    workflow: str, workflow_args: List[Any], responses: List[Any], expected_paths: List[str]
):
    my_controller = MesosKafkaTestUtils.get_controller(responses=[*responses, get_transport_error()])

    with pytest.raises(MesosKafkaTransportError):
        getattr(my_controller, workflow)(workflow_args)

    assert get_called_paths(my_controller) == expected_paths


def test_from_config():
    my_controller = BrokerLifecycleController.from_config(
        config=MesosKafkaConfig(
            api_url="https://kafka-mesos.example.org:7000", poll_interval_seconds=1, max_poll_failures=None
        ),
        session=mock.MagicMock(),
    )

    assert my_controller.poll_interval_seconds == 1
    assert my_controller.max_poll_failures is None
    assert my_controller._api.base_url == "https://kafka-mesos.example.org:7000"
