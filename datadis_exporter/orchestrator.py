"""Acquisition orchestration module.

This module handles:
- Running the login, then the two dependent fetch phases
- Running the calls of each phase concurrently and joining on both
- Collecting the line-protocol lines produced by each phase-2 task

Phase 1 fetches supplies and contract. Phase 2 fetches consumption
(which needs both phase-1 results) and maximum power. Each phase-2
task returns its own ordered list of lines; the lists are concatenated
once both tasks have finished.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from datadis_exporter.client import Contract, DatadisClient, DatadisError, Supply, first_or_error
from datadis_exporter.records import consumption_lines, power_lines

# Configure module logger
logger = logging.getLogger(__name__)


class StageFailedError(DatadisError):
    """Exception raised when a stage of the acquisition fails.

    Attributes:
        stage: Name of the failed stage
        cause: Exception raised by the stage
    """

    def __init__(self, stage: str, cause: BaseException):
        super().__init__(f"Stage '{stage}' failed: {cause}")
        self.stage = stage
        self.cause = cause


@dataclass
class StageOutcome:
    """Result of one concurrent stage: a value or the error it raised."""
    stage: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def one_month_before(day: date) -> date:
    """Return the same day one calendar month earlier.

    Days past the end of the previous month roll over into the
    following month.

    Example:
        >>> one_month_before(date(2024, 3, 31))
        datetime.date(2024, 3, 2)
    """
    if day.month == 1:
        year, month = day.year - 1, 12
    else:
        year, month = day.year, day.month - 1
    return date(year, month, 1) + timedelta(days=day.day - 1)


def consumption_range(today: date) -> Tuple[date, date]:
    """Rolling window from one month ago through today."""
    return one_month_before(today), today


def power_range(today: date) -> Tuple[date, date]:
    """The whole calendar year of today."""
    return date(today.year, 1, 1), date(today.year, 12, 31)


class AcquisitionOrchestrator:
    """Fetches all Datadis data for one supply point and renders it.

    Attributes:
        client: Datadis API client (not yet authenticated)
        cups: Supply point identifier used as line tag
        tz_name: Timezone of provider timestamps
        today: Reference day for the date ranges (default: today)
    """

    MAX_WORKERS = 2

    def __init__(
        self,
        client: DatadisClient,
        cups: str,
        tz_name: str = "UTC",
        today: Optional[date] = None,
    ):
        self.client = client
        self.cups = cups
        self.tz_name = tz_name
        self.today = today

    def _run_phase(
        self,
        executor: ThreadPoolExecutor,
        tasks: Dict[str, Callable[[], Any]],
    ) -> Dict[str, Any]:
        """Run tasks concurrently and wait for all of them.

        Returns:
            Mapping of stage name to the value it produced

        Raises:
            StageFailedError: For the first failed stage, once every task finished
        """
        futures = {stage: executor.submit(task) for stage, task in tasks.items()}
        wait(futures.values())

        outcomes = []
        for stage, future in futures.items():
            error = future.exception()
            if error is not None:
                outcomes.append(StageOutcome(stage, error=error))
            else:
                outcomes.append(StageOutcome(stage, value=future.result()))

        failures = [outcome for outcome in outcomes if not outcome.ok]
        # The first failure is reported by the caller
        for outcome in failures[1:]:
            logger.warning(f"Stage '{outcome.stage}' also failed: {outcome.error}")
        if failures:
            raise StageFailedError(failures[0].stage, failures[0].error) from failures[0].error

        return {outcome.stage: outcome.value for outcome in outcomes}

    def _fetch_supply(self) -> Supply:
        return first_or_error(self.client.get_supplies(), "supplies")

    def _fetch_contract(self) -> Contract:
        return first_or_error(self.client.get_contract(), "contracts")

    def _fetch_consumption(self, supply: Supply, contract: Contract) -> List[str]:
        start, end = consumption_range(self.today or date.today())
        records = self.client.get_consumption(supply, contract, start, end)
        return consumption_lines(records, self.cups, self.tz_name)

    def _fetch_power(self) -> List[str]:
        start, end = power_range(self.today or date.today())
        records = self.client.get_max_power(start, end)
        return power_lines(records, self.cups, self.tz_name)

    def run(self) -> List[str]:
        """Authenticate, fetch all data and return the line batch.

        Returns:
            Consumption lines followed by power lines, each in provider order

        Raises:
            StageFailedError: If any stage fails
        """
        try:
            self.client.login()
        except Exception as e:
            raise StageFailedError("login", e) from e

        with ThreadPoolExecutor(max_workers=self.MAX_WORKERS) as executor:
            phase1 = self._run_phase(executor, {
                "supplies": self._fetch_supply,
                "contract": self._fetch_contract,
            })

            phase2 = self._run_phase(executor, {
                "consumption": lambda: self._fetch_consumption(phase1["supplies"], phase1["contract"]),
                "power": self._fetch_power,
            })

        lines = phase2["consumption"] + phase2["power"]
        logger.info(
            f"Acquired {len(phase2['consumption'])} consumption and "
            f"{len(phase2['power'])} power lines for CUPS {self.cups}"
        )
        return lines
