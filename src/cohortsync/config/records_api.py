"""Remote records API configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig

RECORDS_API_TIMEOUT_SECONDS = 20.0


@dataclass(frozen=True)
class RecordsApiConfig:
    """Holds the records API endpoint and credentials."""

    base_url: str
    api_token: str
    web_auth_token: str | None
    resilience: ResilienceConfig

    def auth_params(self) -> dict[str, str]:
        params = {"ckAPIToken": self.api_token}
        if self.web_auth_token:
            params["ckWebAuthToken"] = self.web_auth_token
        return params


def get_records_api_config(*, resilience: ResilienceConfig | None = None) -> RecordsApiConfig:
    values = require_env_vars(("COHORTSYNC_RECORDS_URL", "COHORTSYNC_API_TOKEN"))
    base_url = values["COHORTSYNC_RECORDS_URL"].rstrip("/") + "/"
    return RecordsApiConfig(
        base_url=base_url,
        api_token=values["COHORTSYNC_API_TOKEN"],
        web_auth_token=optional_env_var("COHORTSYNC_WEB_AUTH_TOKEN"),
        resilience=resilience
        or ResilienceConfig(
            name="records",
            base_url=base_url,
            timeout_seconds=RECORDS_API_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
        ),
    )
