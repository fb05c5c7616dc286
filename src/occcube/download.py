"""
Module: download.py
Project: GBIF occurrence cubes (occcube)

Description:
Requests a GBIF occurrence download for one country, waits until GBIF
has prepared it and streams the resulting ZIP archive to data/raw.

The predicate combines:
  - the country (ISO2 code),
  - coordinate availability and absence of geospatial issues,
  - occurrence status PRESENT.
The archive is requested in SIMPLE_CSV format (one tab-separated file).

Notes:
GBIF credentials are taken from GBIF_USER / GBIF_PASSWORD / GBIF_EMAIL
(see occcube.config.GbifCredentials).
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

import requests

from occcube.config import GbifCredentials
from occcube.errors import DownloadError

logger = logging.getLogger(__name__)

GBIF_REQUEST_URL = "https://api.gbif.org/v1/occurrence/download/request"
GBIF_STATUS_URL = "https://api.gbif.org/v1/occurrence/download/{key}"
GBIF_ZIP_URL = "https://api.gbif.org/v1/occurrence/download/request/{key}.zip"

FINISHED_FAILED = ("KILLED", "CANCELLED", "FAILED")


def build_predicate(country: str, year_min: Optional[int] = None, year_max: Optional[int] = None) -> dict:
    """GBIF download predicate for all georeferenced, present occurrences in a country."""
    predicates = [
        {"type": "equals", "key": "COUNTRY", "value": country.upper()},
        {"type": "equals", "key": "HAS_COORDINATE", "value": "TRUE"},
        {"type": "equals", "key": "HAS_GEOSPATIAL_ISSUE", "value": "FALSE"},
        {"type": "equals", "key": "OCCURRENCE_STATUS", "value": "PRESENT"},
    ]
    if year_min is not None:
        predicates.append({"type": "greaterThanOrEquals", "key": "YEAR", "value": str(year_min)})
    if year_max is not None:
        predicates.append({"type": "lessThanOrEquals", "key": "YEAR", "value": str(year_max)})
    return {"type": "and", "predicates": predicates}


class GbifDownloadClient:
    """Submit, poll and fetch GBIF occurrence downloads.

    Status polls are retried with exponential backoff on 429/5xx responses
    and network errors. Any other HTTP failure is raised as DownloadError.
    """

    def __init__(
        self,
        credentials: GbifCredentials,
        session: Optional[requests.Session] = None,
        max_retries: int = 5,
        base_backoff: float = 2.0,
    ):
        self.credentials = credentials
        self.session = session or requests.Session()
        self.max_retries = max_retries
        self.base_backoff = base_backoff

    def submit(self, predicate: dict) -> str:
        """Submit a download request; returns the GBIF download key."""
        body = {
            "creator": self.credentials.user,
            "notificationAddresses": [self.credentials.email],
            "sendNotification": True,
            "format": "SIMPLE_CSV",
            "predicate": predicate,
        }
        try:
            response = self.session.post(
                GBIF_REQUEST_URL,
                json=body,
                auth=(self.credentials.user, self.credentials.password),
                timeout=60,
            )
        except requests.RequestException as e:
            raise DownloadError(f"Error submitting download: {e}") from e
        if response.status_code == 420:
            raise DownloadError("Too many active downloads. Wait for some to finish in your GBIF profile.")
        if response.status_code != 201:
            raise DownloadError(f"Error submitting download: {response.status_code} {response.text[:200]}")

        key = response.text.strip().strip('"')
        if not key:
            raise DownloadError("GBIF returned an empty download key")
        logger.info(f"Download request submitted. Key: {key}")
        return key

    def status(self, key: str) -> dict:
        """Status document of a download, retried on transient failures."""
        url = GBIF_STATUS_URL.format(key=key)
        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                response = self.session.get(url, timeout=60)
            except requests.RequestException as e:
                if last_attempt:
                    raise DownloadError(f"Network error polling download {key}: {e}") from e
                logger.warning(f"Network error polling download {key}: {e}. Retrying...")
                time.sleep(self.base_backoff * (2 ** attempt))
                continue

            if response.status_code == 429 or response.status_code >= 500:
                if last_attempt:
                    break
                sleep_time = self.base_backoff * (2 ** attempt)
                logger.warning(
                    f"GBIF returned {response.status_code} for download {key}. "
                    f"Retrying in {sleep_time}s..."
                )
                time.sleep(sleep_time)
                continue

            if response.status_code != 200:
                raise DownloadError(f"Error polling download {key}: HTTP {response.status_code}")
            try:
                return response.json()
            except ValueError as e:
                raise DownloadError(f"Invalid status response for download {key}: {e}") from e

        raise DownloadError(f"Polling download {key} failed: max retries exceeded")

    def wait(self, key: str, poll_seconds: float = 20, timeout: float = 6 * 3600) -> dict:
        """Poll the download status until it SUCCEEDED; returns the status document."""
        deadline = time.monotonic() + timeout
        last_status = None
        while time.monotonic() < deadline:
            info = self.status(key)
            status = info.get("status")
            if status != last_status:
                logger.info(f"GBIF download {key} status: {status}")
                last_status = status

            if status == "SUCCEEDED":
                return info
            if status in FINISHED_FAILED:
                raise DownloadError(f"GBIF download {key} ended with status {status}")
            time.sleep(poll_seconds)

        raise DownloadError(f"GBIF download {key} not ready after {timeout}s (last status {last_status})")

    def fetch(self, key: str, target: Path) -> Path:
        """Stream the ZIP archive of a finished download to `target`."""
        target = Path(target)
        target.parent.mkdir(parents=True, exist_ok=True)
        url = GBIF_ZIP_URL.format(key=key)
        logger.info(f"Downloading data from: {url}")

        try:
            with self.session.get(url, stream=True, timeout=300) as r:
                r.raise_for_status()
                with open(target, "wb") as f:
                    for chunk in r.iter_content(chunk_size=8192):
                        if chunk:
                            f.write(chunk)
        except requests.RequestException as e:
            raise DownloadError(f"Error downloading {url}: {e}") from e
        return target

    def download_country(
        self,
        country: str,
        raw_dir: Path,
        poll_seconds: float = 20,
        year_min: Optional[int] = None,
        year_max: Optional[int] = None,
    ) -> Path:
        """Request, wait for and fetch all occurrences of `country`."""
        predicate = build_predicate(country, year_min=year_min, year_max=year_max)
        key = self.submit(predicate)
        self.wait(key, poll_seconds=poll_seconds)

        # Output filename (timestamped)
        date = datetime.now().strftime("%Y%m%d")
        target = Path(raw_dir) / f"GBIF_{country.upper()}_{date}_{key}.zip"
        self.fetch(key, target)
        logger.info(f"Saved GBIF download to: {target}")
        return target
