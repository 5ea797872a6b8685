"""Datadis API client module.

This module handles:
- Authentication with the Datadis private API (bearer token)
- Fetching supplies, contract, hourly consumption and maximum power data
- Detecting distributor errors embedded in successful responses
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence, TypeVar

import requests

from datadis_exporter.records import ConsumptionRecord, PowerRecord
from datadis_exporter.transport import RetryingTransport

# Configure module logger
logger = logging.getLogger(__name__)

T = TypeVar("T")


class DatadisError(Exception):
    """Base exception for Datadis client errors."""
    pass


class DatadisAuthError(DatadisError):
    """Exception raised when authentication fails."""
    pass


class DatadisRequestError(DatadisError):
    """Exception raised when a data request fails."""
    pass


class DatadisPayloadError(DatadisError):
    """Exception raised when a response cannot be decoded."""
    pass


class DatadisDistributorError(DatadisError):
    """Exception raised when the distributor reports an error."""
    pass


class EmptyResultError(DatadisError):
    """Exception raised when a required list comes back empty."""
    pass


@dataclass
class DistributorError:
    """Error entry reported by a distributor inside a 200 response."""
    code: str
    name: str
    error_code: str
    description: str

    @classmethod
    def from_json(cls, item: dict) -> "DistributorError":
        return cls(
            code=item.get("distributorCode", ""),
            name=item.get("distributorName", ""),
            error_code=item.get("errorCode", ""),
            description=item.get("errorDescription", ""),
        )


@dataclass
class Supply:
    """Supply point metadata.

    Attributes:
        point_type: Measuring point type code
    """
    point_type: float

    @classmethod
    def from_json(cls, item: dict) -> "Supply":
        return cls(point_type=item.get("pointType"))


@dataclass
class Contract:
    """Contract terms for a supply point.

    Attributes:
        province_code: Province code
        tariff_code: Access tariff code
        self_consumption_type: Self-consumption type code, None if absent
    """
    province_code: str
    tariff_code: str
    self_consumption_type: Optional[str] = None

    @classmethod
    def from_json(cls, item: dict) -> "Contract":
        return cls(
            province_code=item.get("provinciaCode"),
            tariff_code=item.get("tarifaAccesoCode"),
            self_consumption_type=item.get("tipoAutoConsumo"),
        )


def first_or_error(items: Sequence[T], what: str) -> T:
    """Return the first element of a provider list.

    Args:
        items: List returned by the provider
        what: Name of the list, used in messages

    Returns:
        The first element

    Raises:
        EmptyResultError: If the list is empty
    """
    if not items:
        raise EmptyResultError(f"No {what} returned by Datadis")
    if len(items) > 1:
        logger.warning(f"Datadis returned {len(items)} {what} entries, using the first one")
    return items[0]


class DatadisClient:
    """Client for the Datadis private API.

    Every call goes through a RetryingTransport. login() must succeed
    before any data call; the bearer token lives only as long as the
    client instance.

    Attributes:
        username: Datadis username (NIF)
        password: Datadis password
        cups: Supply point identifier
        distributor_code: Distributor identifier for the supply point
    """

    BASE_URL = "https://datadis.es"
    LOGIN_URL = f"{BASE_URL}/nikola-auth/tokens/login"
    SUPPLIES_URL = f"{BASE_URL}/api-private/api/get-supplies-v2"
    CONTRACT_URL = f"{BASE_URL}/api-private/supply-data/contractual-data"
    CONSUMPTION_URL = f"{BASE_URL}/api-private/supply-data/v2/time-curve-data/hours"
    POWER_URL = f"{BASE_URL}/api-private/api/get-max-power-v2"

    USER_AGENT = "Mozilla/5.0"
    DATE_FORMAT = "%Y/%m/%d"
    MONTH_FORMAT = "%Y/%m"

    def __init__(
        self,
        username: str,
        password: str,
        cups: str,
        distributor_code: str,
        transport: Optional[RetryingTransport] = None,
    ):
        self.username = username
        self.password = password
        self.cups = cups
        self.distributor_code = distributor_code
        self.transport = transport if transport is not None else RetryingTransport()
        self._token: Optional[str] = None

    def _headers(self, json_body: bool = False) -> dict:
        if not self._token:
            raise DatadisAuthError("Not authenticated - call login() first")
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {self._token}",
            "User-Agent": self.USER_AGENT,
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    def login(self) -> None:
        """Exchange the credentials for a bearer token.

        Raises:
            DatadisAuthError: If the login request fails or is rejected
        """
        logger.info("Authenticating with Datadis")

        try:
            response = self.transport.request(
                "POST",
                self.LOGIN_URL,
                data={
                    "username": self.username,
                    "password": self.password,
                    "origin": "'WEB'",
                },
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/x-www-form-urlencoded",
                    "User-Agent": self.USER_AGENT,
                },
            )
        except requests.RequestException as e:
            raise DatadisAuthError(f"Login request failed: {e}")

        if response.status_code != 200:
            raise DatadisAuthError(f"Login failed with status {response.status_code}: {response.text}")

        self._token = response.text.strip()
        if not self._token:
            raise DatadisAuthError("Login returned an empty token")

        logger.info("Authentication successful")

    def _request_json(self, what: str, method: str, url: str, **kwargs) -> dict:
        """Send an authenticated request and decode its JSON body.

        Raises:
            DatadisRequestError: On transport failure or non-200 status
            DatadisPayloadError: If the body is not a JSON object
            DatadisDistributorError: If the configured distributor reported an error
        """
        try:
            response = self.transport.request(method, url, **kwargs)
        except requests.RequestException as e:
            raise DatadisRequestError(f"Error requesting {what} data: {e}")

        if response.status_code != 200:
            raise DatadisRequestError(
                f"Error getting {what} data (status {response.status_code}): {response.text}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise DatadisPayloadError(f"Error decoding {what} response: {e}")

        if not isinstance(payload, dict):
            raise DatadisPayloadError(f"Unexpected {what} response: {response.text[:200]}")

        self._check_distributor_errors(what, payload)
        return payload

    def _check_distributor_errors(self, what: str, payload: dict) -> None:
        for item in payload.get("distributorError") or []:
            entry = DistributorError.from_json(item)
            if entry.code == self.distributor_code:
                raise DatadisDistributorError(
                    f"Error getting {what} data from distributor {entry.name or entry.code}: "
                    f"{entry.error_code} {entry.description}"
                )

    def get_supplies(self) -> List[Supply]:
        """Fetch the supply points of the account."""
        payload = self._request_json("supplies", "GET", self.SUPPLIES_URL, headers=self._headers())
        supplies = [Supply.from_json(item) for item in payload.get("supplies") or []]
        logger.info(f"Fetched {len(supplies)} supplies")
        return supplies

    def get_contract(self) -> List[Contract]:
        """Fetch the contract terms of the configured supply point."""
        payload = self._request_json(
            "contract",
            "POST",
            self.CONTRACT_URL,
            json={"cups": [self.cups], "distributor": self.distributor_code},
            headers=self._headers(json_body=True),
        )
        contracts = [Contract.from_json(item) for item in payload.get("response") or []]
        logger.info(f"Fetched {len(contracts)} contracts")
        return contracts

    def get_consumption(
        self,
        supply: Supply,
        contract: Contract,
        start: date,
        end: date,
    ) -> List[ConsumptionRecord]:
        """Fetch hourly consumption between two dates (inclusive).

        Args:
            supply: Supply providing the measuring point type
            contract: Contract providing province, tariff and self-consumption type
            start: First day of the range
            end: Last day of the range

        Returns:
            Consumption records in provider order
        """
        body = {
            "fechaInicial": start.strftime(self.DATE_FORMAT),
            "fechaFinal": end.strftime(self.DATE_FORMAT),
            "cups": [self.cups],
            "distributor": self.distributor_code,
            "fraccion": 0,
            "hasAutoConsumo": False,
            "provinceCode": contract.province_code,
            "tarifaCode": contract.tariff_code,
            "tipoPuntoMedida": supply.point_type,
            "tipoAutoConsumo": contract.self_consumption_type,
        }
        payload = self._request_json(
            "consumption",
            "POST",
            self.CONSUMPTION_URL,
            json=body,
            headers=self._headers(json_body=True),
        )

        response = payload.get("response") or {}
        if not isinstance(response, dict):
            raise DatadisPayloadError(f"Unexpected consumption response: {str(response)[:200]}")

        records = [ConsumptionRecord.from_json(item) for item in response.get("timeCurveList") or []]
        logger.info(f"Fetched {len(records)} consumption records from {body['fechaInicial']} to {body['fechaFinal']}")
        return records

    def get_max_power(self, start: date, end: date) -> List[PowerRecord]:
        """Fetch maximum demanded power per month between two dates.

        Only the year and month of start and end are sent.
        """
        params = {
            "cups": self.cups,
            "distributorCode": self.distributor_code,
            "startDate": start.strftime(self.MONTH_FORMAT),
            "endDate": end.strftime(self.MONTH_FORMAT),
        }
        payload = self._request_json(
            "power",
            "GET",
            self.POWER_URL,
            params=params,
            headers=self._headers(json_body=True),
        )
        records = [PowerRecord.from_json(item) for item in payload.get("maxPower") or []]
        logger.info(f"Fetched {len(records)} max power records from {params['startDate']} to {params['endDate']}")
        return records
