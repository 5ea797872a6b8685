"""InfluxDB exporter module.

This module handles:
- Writing the line-protocol batch to InfluxDB in a single request
- Gzip-compressing the request body
- Retrying transient write failures with the provider calls' backoff
- Treating an empty batch or a rejected write as a failure
"""

import logging
from typing import List, Optional

from influxdb_client import InfluxDBClient, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS
from influxdb_client.rest import ApiException

from datadis_exporter.transport import sink_retry_policy

# Configure module logger
logger = logging.getLogger(__name__)


class UploadError(Exception):
    """Exception raised when the batch cannot be written."""
    pass


class EmptyBatchError(UploadError):
    """Exception raised when there is nothing to write."""
    pass


class InfluxDBExporter:
    """InfluxDB exporter for Datadis line-protocol batches.

    Lines carry second-precision timestamps and are written with
    gzip content encoding.

    Attributes:
        url: InfluxDB server URL
        token: InfluxDB API token
        org: InfluxDB organization
        bucket: InfluxDB bucket name
    """

    def __init__(
        self,
        url: str,
        token: str,
        org: str,
        bucket: str,
    ):
        self.url = url
        self.token = token
        self.org = org
        self.bucket = bucket
        self._client: Optional[InfluxDBClient] = None
        self._write_api = None

    def connect(self) -> None:
        """Create the InfluxDB client and its synchronous write API."""
        self._client = InfluxDBClient(
            url=self.url,
            token=self.token,
            org=self.org,
            enable_gzip=True,
            retries=sink_retry_policy(),
        )
        self._write_api = self._client.write_api(write_options=SYNCHRONOUS)
        logger.info(f"InfluxDB client ready for {self.url}")

    def close(self) -> None:
        """Close the InfluxDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._write_api = None
            logger.info("InfluxDB connection closed")

    def write_lines(self, lines: List[str]) -> int:
        """Write a line-protocol batch to the configured bucket.

        Args:
            lines: Line-protocol lines with second-precision timestamps

        Returns:
            Number of lines written

        Raises:
            EmptyBatchError: If lines is empty
            UploadError: If InfluxDB rejects the write or cannot be reached
            RuntimeError: If not connected to InfluxDB
        """
        if not lines:
            raise EmptyBatchError("No data to send")

        if not self._write_api:
            raise RuntimeError("Not connected to InfluxDB. Call connect() first.")

        try:
            self._write_api.write(
                bucket=self.bucket,
                org=self.org,
                record=lines,
                write_precision=WritePrecision.S,
            )
        except ApiException as e:
            logger.error(f"InfluxDB rejected the write with status {e.status}")
            raise UploadError(f"Error sending data (status {e.status}): {e.body}")
        except Exception as e:
            logger.error(f"Failed to write to InfluxDB: {e}")
            raise UploadError(f"Error sending data: {e}")

        logger.info(f"Wrote {len(lines)} lines to InfluxDB bucket {self.bucket}")
        return len(lines)
