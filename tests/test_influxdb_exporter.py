import pytest
from influxdb_client import WritePrecision
from influxdb_client.rest import ApiException

from datadis_exporter.influxdb_exporter import EmptyBatchError, InfluxDBExporter, UploadError
from datadis_exporter.transport import ExponentialRetry

LINES = [
    "datadis_consumption,cups=ES001,period=1 consumption=1.234 1714568400",
    "datadis_power,cups=ES001,period=2 max_power=3.300 1705089600",
]


@pytest.fixture
def influx_client(mocker):
    return mocker.patch('datadis_exporter.influxdb_exporter.InfluxDBClient')


@pytest.fixture
def exporter(influx_client):
    exporter = InfluxDBExporter(
        url="https://influx.example.com",
        token="influx-token",
        org="home",
        bucket="datadis",
    )
    exporter.connect()
    return exporter


def test_connect_enables_gzip(exporter, influx_client, mocker):
    influx_client.assert_called_once_with(
        url="https://influx.example.com",
        token="influx-token",
        org="home",
        enable_gzip=True,
        retries=mocker.ANY,
    )


def test_connect_retries_transient_write_failures(exporter, influx_client):
    retries = influx_client.call_args.kwargs['retries']

    assert isinstance(retries, ExponentialRetry)
    assert retries.total == 3
    assert set(retries.status_forcelist) == {500, 502, 503, 504}
    assert retries.allowed_methods is None
    assert retries.is_retry("POST", 503)
    assert not retries.is_retry("POST", 400)


def test_empty_batch_fails_without_network(influx_client):
    exporter = InfluxDBExporter(url="https://influx.example.com", token="t", org="o", bucket="b")

    with pytest.raises(EmptyBatchError):
        exporter.write_lines([])

    influx_client.assert_not_called()


def test_empty_batch_fails_without_write(exporter, influx_client):
    write_api = influx_client.return_value.write_api.return_value

    with pytest.raises(EmptyBatchError):
        exporter.write_lines([])

    write_api.write.assert_not_called()


def test_write_lines_single_request(exporter, influx_client):
    write_api = influx_client.return_value.write_api.return_value

    assert exporter.write_lines(LINES) == 2

    write_api.write.assert_called_once_with(
        bucket="datadis",
        org="home",
        record=LINES,
        write_precision=WritePrecision.S,
    )


def test_write_rejected_reports_body(exporter, influx_client):
    error = ApiException(status=400, reason="Bad Request")
    error.body = '{"code":"invalid","message":"unable to parse"}'
    influx_client.return_value.write_api.return_value.write.side_effect = error

    with pytest.raises(UploadError, match="unable to parse"):
        exporter.write_lines(LINES)


def test_write_transport_error(exporter, influx_client):
    influx_client.return_value.write_api.return_value.write.side_effect = OSError("unreachable")

    with pytest.raises(UploadError, match="unreachable"):
        exporter.write_lines(LINES)


def test_write_requires_connect(influx_client):
    exporter = InfluxDBExporter(url="https://influx.example.com", token="t", org="o", bucket="b")

    with pytest.raises(RuntimeError):
        exporter.write_lines(LINES)


def test_close(exporter, influx_client):
    exporter.close()

    influx_client.return_value.close.assert_called_once()
    with pytest.raises(RuntimeError):
        exporter.write_lines(LINES)
