"""Datadis InfluxDB Exporter package.

An exporter that authenticates with the Datadis private API, fetches
hourly consumption and maximum power data for a supply point, and writes
it to InfluxDB as line protocol.
"""

__version__ = "0.1.0"
