"""Main entry point for Datadis Exporter.

This module handles:
- Loading configuration from environment variables, .env or a JSON file
- Running a single export, or scheduling daily exports with APScheduler
- Coordinating the Datadis client, orchestrator and InfluxDB exporter
- Reporting operational metrics to Prometheus in scheduled mode
"""

import argparse
import json
import logging
import os
import sys
import time
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv

from datadis_exporter.client import DatadisClient, DatadisError
from datadis_exporter.exporter import DatadisMetrics
from datadis_exporter.influxdb_exporter import InfluxDBExporter, UploadError
from datadis_exporter.orchestrator import AcquisitionOrchestrator, StageFailedError
from datadis_exporter.records import RecordParseError

# Configure module logger
logger = logging.getLogger(__name__)

# Global instances (shared across scheduled runs)
metrics: Optional[DatadisMetrics] = None
influxdb_exporter: Optional[InfluxDBExporter] = None

# Configuration from environment
config = {
    "username": "",
    "password": "",
    "cups": "",
    "distributor_code": "",
    "timezone": "UTC",
    "scrape_hour": 4,
    "exporter_port": 9121,
    # InfluxDB config
    "influxdb_host": "",
    "influxdb_token": "",
    "influxdb_org": "",
    "influxdb_bucket": "",
}

# Environment variable for each required setting
REQUIRED = {
    "username": "DATADIS_USERNAME",
    "password": "DATADIS_PASSWORD",
    "cups": "DATADIS_CUPS",
    "distributor_code": "DATADIS_DISTRIBUTOR_CODE",
    "influxdb_host": "INFLUXDB_HOST",
    "influxdb_token": "INFLUXDB_TOKEN",
    "influxdb_org": "INFLUXDB_ORG",
    "influxdb_bucket": "INFLUXDB_BUCKET",
}

# JSON config file keys
CONFIG_FILE_KEYS = {
    "DatadisUsername": "username",
    "DatadisPassword": "password",
    "Cups": "cups",
    "DistributorCode": "distributor_code",
    "InfluxDBHost": "influxdb_host",
    "InfluxDBApiToken": "influxdb_token",
    "Org": "influxdb_org",
    "Bucket": "influxdb_bucket",
}


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        logger.warning(f"Invalid {name}, using default: {default}")
        return default


def influxdb_url(host: str) -> str:
    """Build the InfluxDB URL from a host, defaulting to https."""
    if "://" in host:
        return host
    return f"https://{host}"


def load_config(config_file: Optional[str] = None) -> bool:
    """Load configuration from environment variables and an optional JSON file.

    Required:
        DATADIS_USERNAME: Datadis username
        DATADIS_PASSWORD: Datadis password
        DATADIS_CUPS: Supply point identifier
        DATADIS_DISTRIBUTOR_CODE: Distributor code of the supply point
        INFLUXDB_HOST: InfluxDB host (https:// is assumed without a scheme)
        INFLUXDB_TOKEN: InfluxDB API token
        INFLUXDB_ORG: InfluxDB organization
        INFLUXDB_BUCKET: InfluxDB bucket

    Optional:
        DATADIS_TIMEZONE: Timezone of Datadis timestamps (default: UTC)
        SCRAPE_HOUR: Hour to run the daily export (default: 4)
        EXPORTER_PORT: Prometheus port (default: 9121)

    Values from the JSON file take precedence over the environment.

    Returns:
        True if all required config loaded, False otherwise
    """
    for key, env_name in REQUIRED.items():
        config[key] = os.getenv(env_name, "")

    config["timezone"] = os.getenv("DATADIS_TIMEZONE", "UTC")
    config["scrape_hour"] = _int_env("SCRAPE_HOUR", 4)
    config["exporter_port"] = _int_env("EXPORTER_PORT", 9121)

    if config_file:
        try:
            with open(config_file, encoding="utf-8") as f:
                file_config = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error reading config file {config_file}: {e}")
            return False

        for file_key, key in CONFIG_FILE_KEYS.items():
            if file_config.get(file_key):
                config[key] = str(file_config[file_key])

    # Validate required config
    missing = [env_name for key, env_name in REQUIRED.items() if not config[key]]
    if missing:
        logger.error(f"Missing required configuration: {', '.join(missing)}")
        return False

    try:
        ZoneInfo(config["timezone"])
    except (ZoneInfoNotFoundError, ValueError):
        logger.error(f"Unknown DATADIS_TIMEZONE: {config['timezone']}")
        return False

    logger.info(f"Configuration loaded: CUPS={config['cups']}, "
                f"distributor={config['distributor_code']}, "
                f"influxdb_host={config['influxdb_host']}")
    return True


def run_export() -> bool:
    """Execute the fetch, transform and upload flow.

    This function:
    1. Creates a DatadisClient and an AcquisitionOrchestrator
    2. Logs in and fetches all data, producing line-protocol lines
    3. Writes the lines to InfluxDB
    4. Updates Prometheus operational metrics when enabled

    Returns:
        True if the export succeeded, False otherwise
    """
    logger.info("Starting export")
    start_time = time.time()
    lines: List[str] = []

    try:
        client = DatadisClient(
            username=config["username"],
            password=config["password"],
            cups=config["cups"],
            distributor_code=config["distributor_code"],
        )
        orchestrator = AcquisitionOrchestrator(client, cups=config["cups"], tz_name=config["timezone"])
        lines = orchestrator.run()

        influxdb_exporter.write_lines(lines)
        success = True
        logger.info("Export completed successfully")

    except StageFailedError as e:
        logger.error(f"Export failed at stage '{e.stage}': {e.cause}")
        success = False

    except UploadError as e:
        logger.error(f"Export failed at stage 'upload': {e}")
        success = False

    except (DatadisError, RecordParseError) as e:
        logger.error(f"Export failed: {e}")
        success = False

    except Exception as e:
        logger.error(f"Export failed (unexpected error): {e}")
        success = False

    if metrics:
        metrics.set_export_result(success, time.time() - start_time)
        if success:
            metrics.set_line_counts(lines)

    return success


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Datadis to InfluxDB exporter")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single export and exit with its status"
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Optional JSON config file (overrides environment variables)"
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point.

    1. Load .env file with python-dotenv
    2. Load and validate configuration
    3. Create the InfluxDB client
    4. With --once: run a single export and return its status
    5. Otherwise start Prometheus, schedule a daily export, run one
       at startup and block on the scheduler

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    global metrics, influxdb_exporter

    args = parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    logger.info("Datadis Exporter starting")

    load_dotenv()

    if not load_config(args.config):
        logger.error("Configuration failed, exiting")
        return 1

    influxdb_exporter = InfluxDBExporter(
        url=influxdb_url(config["influxdb_host"]),
        token=config["influxdb_token"],
        org=config["influxdb_org"],
        bucket=config["influxdb_bucket"],
    )
    influxdb_exporter.connect()

    if args.once:
        try:
            return 0 if run_export() else 1
        finally:
            influxdb_exporter.close()

    metrics = DatadisMetrics(port=config["exporter_port"])
    metrics.start()
    logger.info(f"Prometheus metrics available at http://localhost:{config['exporter_port']}/metrics")

    scheduler = BlockingScheduler()

    trigger = CronTrigger(hour=config["scrape_hour"], minute=0)
    scheduler.add_job(
        run_export,
        trigger=trigger,
        id="daily_export",
        name=f"Daily export at {config['scrape_hour']}:00"
    )
    logger.info(f"Scheduled daily export at {config['scrape_hour']}:00")

    logger.info("Running initial export at startup")
    run_export()

    logger.info("Starting scheduler, press Ctrl+C to exit")
    try:
        scheduler.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt, shutting down")
        scheduler.shutdown()
        influxdb_exporter.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
