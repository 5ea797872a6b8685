import pytest
import requests
from pytest_socket import disable_socket


def pytest_runtest_setup():
    """
    Runs before every test.
    We disable network access. Every attempt to connect
    (HTTP, DNS, etc) will immediately raise a SocketBlockedError.
    """
    disable_socket(allow_unix_socket=True)


def make_response(status_code=200, body=b"", url="https://datadis.es/test"):
    """Build a requests.Response without touching the network."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    response = requests.Response()
    response.status_code = status_code
    response._content = body
    response.url = url
    response.encoding = "utf-8"
    return response


@pytest.fixture
def response_factory():
    return make_response
