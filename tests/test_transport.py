import pytest
import requests
from urllib3.exceptions import ConnectTimeoutError, MaxRetryError

from datadis_exporter.transport import RetryingTransport, sink_retry_policy


@pytest.fixture
def sleep(mocker):
    return mocker.patch('datadis_exporter.transport.time.sleep')


@pytest.mark.parametrize("status", [500, 502, 503, 504])
def test_retries_server_errors_then_succeeds(mocker, sleep, response_factory, status):
    """Three server errors then a 200 gives 4 attempts with 1s, 2s, 4s backoff"""
    session = requests.Session()
    send = mocker.patch.object(session, 'send', side_effect=[
        response_factory(status),
        response_factory(status),
        response_factory(status),
        response_factory(200, b"ok"),
    ])

    transport = RetryingTransport(session=session)
    response = transport.request("GET", "https://datadis.es/api")

    assert response.status_code == 200
    assert send.call_count == 4
    assert [c.args[0] for c in sleep.call_args_list] == [1, 2, 4]


@pytest.mark.parametrize("status", [400, 401, 403, 404, 429])
def test_client_errors_are_not_retried(mocker, sleep, response_factory, status):
    session = requests.Session()
    send = mocker.patch.object(session, 'send', return_value=response_factory(status))

    transport = RetryingTransport(session=session)
    response = transport.request("GET", "https://datadis.es/api")

    assert response.status_code == status
    send.assert_called_once()
    sleep.assert_not_called()


def test_connection_errors_are_retried(mocker, sleep, response_factory):
    session = requests.Session()
    send = mocker.patch.object(session, 'send', side_effect=[
        requests.ConnectionError("reset"),
        requests.Timeout("slow"),
        response_factory(200),
    ])

    transport = RetryingTransport(session=session)
    response = transport.request("GET", "https://datadis.es/api")

    assert response.status_code == 200
    assert send.call_count == 3
    assert [c.args[0] for c in sleep.call_args_list] == [1, 2]


def test_exhausted_connection_errors_raise(mocker, sleep):
    session = requests.Session()
    send = mocker.patch.object(session, 'send', side_effect=requests.ConnectionError("down"))

    transport = RetryingTransport(session=session)
    with pytest.raises(requests.ConnectionError):
        transport.request("GET", "https://datadis.es/api")

    assert send.call_count == 4
    assert sleep.call_count == 3


def test_exhausted_server_errors_return_last_response(mocker, sleep, response_factory):
    session = requests.Session()
    responses = [response_factory(503, b"busy") for _ in range(4)]
    send = mocker.patch.object(session, 'send', side_effect=responses)

    transport = RetryingTransport(session=session)
    response = transport.request("GET", "https://datadis.es/api")

    assert response is responses[-1]
    assert send.call_count == 4


def test_previous_response_is_released_before_retry(mocker, sleep, response_factory):
    session = requests.Session()
    failed = response_factory(502)
    close = mocker.patch.object(failed, 'close')
    mocker.patch.object(session, 'send', side_effect=[failed, response_factory(200)])

    RetryingTransport(session=session).request("GET", "https://datadis.es/api")

    close.assert_called_once()


def test_request_body_is_replayed_verbatim(mocker, sleep, response_factory):
    session = requests.Session()
    send = mocker.patch.object(session, 'send', side_effect=[
        response_factory(500),
        response_factory(200),
    ])

    transport = RetryingTransport(session=session)
    transport.request("POST", "https://datadis.es/api", json={"cups": ["ES001"]})

    bodies = [c.args[0].body for c in send.call_args_list]
    assert bodies[0] == bodies[1]
    assert b'"cups"' in bodies[0]


def test_timeout_is_applied_to_every_attempt(mocker, sleep, response_factory):
    session = requests.Session()
    send = mocker.patch.object(session, 'send', side_effect=[
        response_factory(504),
        response_factory(200),
    ])

    RetryingTransport(session=session, timeout=(5, 10)).request("GET", "https://datadis.es/api")

    assert all(c.kwargs['timeout'] == (5, 10) for c in send.call_args_list)


def test_streaming_body_is_rejected(mocker):
    session = requests.Session()
    send = mocker.patch.object(session, 'send')

    transport = RetryingTransport(session=session)
    with pytest.raises(ValueError):
        transport.request("POST", "https://datadis.es/api", data=iter([b"chunk"]))

    send.assert_not_called()


def test_environment_proxy_and_ca_bundle_are_used(mocker, monkeypatch, response_factory):
    for name in ("NO_PROXY", "no_proxy", "CURL_CA_BUNDLE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HTTPS_PROXY", "http://proxy.local:3128")
    monkeypatch.setenv("REQUESTS_CA_BUNDLE", "/etc/ssl/custom-ca.pem")
    session = requests.Session()
    send = mocker.patch.object(session, 'send', return_value=response_factory(200))

    RetryingTransport(session=session).request("GET", "https://datadis.es/api")

    kwargs = send.call_args.kwargs
    assert kwargs['proxies']['https'] == "http://proxy.local:3128"
    assert kwargs['verify'] == "/etc/ssl/custom-ca.pem"


def test_sink_retry_policy_backoff_schedule():
    """The urllib3 policy waits 1s, 2s, 4s and gives up after 3 retries"""
    policy = sink_retry_policy()
    assert policy.get_backoff_time() == 0

    delays = []
    for _ in range(3):
        policy = policy.increment(method="POST", url="/api/v2/write", error=ConnectTimeoutError("slow"))
        delays.append(policy.get_backoff_time())

    assert delays == [1.0, 2.0, 4.0]
    with pytest.raises(MaxRetryError):
        policy.increment(method="POST", url="/api/v2/write", error=ConnectTimeoutError("slow"))
