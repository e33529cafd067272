"""Google Ads lead-form submission lookup.

Lead-form assets collect a customer's email or phone inside the ad itself,
so a purchase can be tied to a click even when the tracking pixel never saw
the customer. Submissions are read through the Google Ads REST search
endpoint and matched locally on normalized identifiers.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

import httpx
from pydantic import BaseModel

from clickmatch.connectors.exceptions import AuthenticationError, LeadFormError
from clickmatch.conversions.identifiers import normalize_email, normalize_phone
from clickmatch.conversions.schema import ensure_utc, parse_timestamp

logger = logging.getLogger(__name__)

API_TIMEOUT = httpx.Timeout(30.0, connect=10.0)

SUBMISSIONS_QUERY = """
SELECT
    lead_form_submission_data.resource_name,
    lead_form_submission_data.gclid,
    lead_form_submission_data.campaign,
    lead_form_submission_data.submission_date_time,
    lead_form_submission_data.lead_form_submission_fields
FROM lead_form_submission_data
WHERE lead_form_submission_data.submission_date_time >= '{after}'
    AND lead_form_submission_data.submission_date_time <= '{before}'
ORDER BY lead_form_submission_data.submission_date_time DESC
"""


class LeadFormConfig(BaseModel):
    """Credentials and endpoint for the Google Ads REST API."""

    developer_token: str | None = None
    access_token: str | None = None
    customer_id: str | None = None
    login_customer_id: str | None = None
    api_version: str = "v17"
    base_url: str = "https://googleads.googleapis.com"

    @classmethod
    def from_env(cls) -> LeadFormConfig:
        """Load configuration from environment variables."""
        return cls(
            developer_token=os.getenv("GOOGLE_ADS_DEVELOPER_TOKEN"),
            access_token=os.getenv("GOOGLE_ADS_ACCESS_TOKEN"),
            customer_id=os.getenv("GOOGLE_ADS_CUSTOMER_ID"),
            login_customer_id=os.getenv("GOOGLE_ADS_LOGIN_CUSTOMER_ID"),
        )


@dataclass(frozen=True)
class LeadFormSubmission:
    """A single lead-form submission with its identity fields."""

    submission_id: str
    submitted_at: datetime
    gclid: str | None = None
    campaign: str | None = None
    email: str | None = None  # normalized
    phone: str | None = None  # normalized
    fields: dict[str, str] = field(default_factory=dict, compare=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> LeadFormSubmission:
        """Build from a `leadFormSubmissionData` JSON object."""
        fields = {
            item.get("fieldType", ""): item.get("fieldValue", "")
            for item in data.get("leadFormSubmissionFields", [])
        }
        return cls(
            submission_id=data.get("resourceName", ""),
            submitted_at=parse_timestamp(data.get("submissionDateTime"), "submissionDateTime"),
            gclid=data.get("gclid") or None,
            campaign=data.get("campaign") or None,
            email=normalize_email(fields.get("EMAIL")),
            phone=normalize_phone(fields.get("PHONE_NUMBER")),
            fields=fields,
        )


class LeadFormSource(Protocol):
    """Anything that can look up a lead-form submission by identity.

    `prefetch` is a hint that lookups inside the window are coming.
    """

    def find_submission(
        self,
        email: str | None,
        phone: str | None,
        after: datetime,
        before: datetime,
    ) -> LeadFormSubmission | None: ...

    def prefetch(self, after: datetime, before: datetime) -> None: ...


class GoogleAdsLeadFormClient:
    """Reads lead-form submissions from the Google Ads REST API.

    Required config:
        - developer_token
        - access_token (OAuth access token for the linked account)
        - customer_id

    Example:
        with GoogleAdsLeadFormClient(LeadFormConfig.from_env()) as client:
            submission = client.find_submission(
                email="jane@example.com",
                phone=None,
                after=datetime(2025, 1, 1, tzinfo=UTC),
                before=datetime(2025, 3, 1, tzinfo=UTC),
            )
    """

    def __init__(self, config: LeadFormConfig):
        """Initialize the client.

        Raises:
            AuthenticationError: If required credentials are missing.
        """
        missing = [
            name
            for name in ("developer_token", "access_token", "customer_id")
            if not getattr(config, name)
        ]
        if missing:
            raise AuthenticationError(
                f"Google Ads lead-form client requires: {', '.join(missing)}"
            )

        self.config = config
        self._client: httpx.Client | None = None
        # (after, before, submissions) windows already fetched
        self._windows: list[tuple[datetime, datetime, list[LeadFormSubmission]]] = []
        self._lock = threading.Lock()

    def __enter__(self) -> GoogleAdsLeadFormClient:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def customer_id(self) -> str:
        return self.config.customer_id.replace("-", "")

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of the HTTP client."""
        if self._client is None:
            headers = {
                "Authorization": f"Bearer {self.config.access_token}",
                "developer-token": self.config.developer_token,
                "Content-Type": "application/json",
            }
            if self.config.login_customer_id:
                headers["login-customer-id"] = self.config.login_customer_id.replace("-", "")
            self._client = httpx.Client(
                base_url=self.config.base_url,
                headers=headers,
                timeout=API_TIMEOUT,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client and drop cached submissions."""
        if self._client is not None:
            self._client.close()
            self._client = None
        with self._lock:
            self._windows.clear()

    def search_submissions(self, after: datetime, before: datetime) -> list[LeadFormSubmission]:
        """
        Fetch all submissions in a time window.

        Args:
            after: Earliest submission time (inclusive)
            before: Latest submission time (inclusive)

        Returns:
            Submissions, most recent first

        Raises:
            LeadFormError: If the API call fails
        """
        fmt = "%Y-%m-%d %H:%M:%S"
        query = SUBMISSIONS_QUERY.format(
            after=ensure_utc(after).strftime(fmt),
            before=ensure_utc(before).strftime(fmt),
        )
        path = f"/{self.config.api_version}/customers/{self.customer_id}/googleAds:search"

        submissions: list[LeadFormSubmission] = []
        page_token: str | None = None
        while True:
            body: dict[str, Any] = {"query": query}
            if page_token:
                body["pageToken"] = page_token

            try:
                response = self.client.post(path, json=body)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise LeadFormError(f"Lead-form search failed: {e}") from e

            data = response.json()
            for row in data.get("results", []):
                try:
                    submissions.append(LeadFormSubmission.from_api(row["leadFormSubmissionData"]))
                except (KeyError, ValueError) as e:
                    logger.warning(f"Skipping malformed lead-form submission: {e}")

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        submissions.sort(key=lambda s: s.submitted_at, reverse=True)
        return submissions

    def prefetch(self, after: datetime, before: datetime) -> None:
        """
        Load every submission in a window with one search.

        Later lookups whose window falls inside it are answered locally.

        Raises:
            LeadFormError: If the API call fails
        """
        after, before = ensure_utc(after), ensure_utc(before)
        if self._cached(after, before) is None:
            self._remember(after, before, self.search_submissions(after, before))

    def _cached(self, after: datetime, before: datetime) -> list[LeadFormSubmission] | None:
        with self._lock:
            for start, end, submissions in self._windows:
                if start <= after and before <= end:
                    return [s for s in submissions if after <= s.submitted_at <= before]
        return None

    def _remember(
        self,
        after: datetime,
        before: datetime,
        submissions: list[LeadFormSubmission],
    ) -> None:
        with self._lock:
            self._windows.append((after, before, submissions))
        logger.debug(f"Cached {len(submissions)} lead-form submissions from {after} to {before}")

    def find_submission(
        self,
        email: str | None,
        phone: str | None,
        after: datetime,
        before: datetime,
    ) -> LeadFormSubmission | None:
        """Most recent submission whose email or phone matches, if any."""
        if not email and not phone:
            return None

        after, before = ensure_utc(after), ensure_utc(before)
        submissions = self._cached(after, before)
        if submissions is None:
            submissions = self.search_submissions(after, before)
            self._remember(after, before, submissions)

        for submission in submissions:
            if (email and submission.email == email) or (phone and submission.phone == phone):
                return submission
        return None
