"""
Job Trigger

(Re)starts an extraction job by calling the extraction function over HTTP.
The job itself runs elsewhere; this call only kicks it off and returns.
"""

import logging
from typing import Optional, Dict, Any

import requests

from vaultprogress.core.config import get_settings
from vaultprogress.core.errors import JobTriggerError

logger = logging.getLogger(__name__)


class HttpJobTrigger:
    """
    POSTs {"vault_id": ..., "resume": ...} to the extraction endpoint.

    Instances are callables, so anything that accepts a trigger function
    (the recovery controller, for one) accepts this too.
    """

    def __init__(self, url: Optional[str] = None, api_key: Optional[str] = None,
                 timeout: Optional[float] = None):
        trigger_settings = get_settings().trigger

        self.url = url or trigger_settings.extraction_url
        self.api_key = api_key or trigger_settings.api_key
        self.timeout = timeout or trigger_settings.timeout_seconds

        if not self.url:
            raise ValueError(
                "Extraction URL required. Set TRIGGER_EXTRACTION_URL env var "
                "or pass url parameter."
            )

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json'}
        if self.api_key:
            headers['Authorization'] = f"Bearer {self.api_key}"
        return headers

    def __call__(self, vault_id: str, resume: bool = False) -> Dict[str, Any]:
        """
        Start (or resume) the job for vault_id.

        Raises:
            JobTriggerError: on transport failure or a non-2xx response
        """
        payload = {'vault_id': vault_id, 'resume': resume}

        try:
            response = requests.post(
                self.url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout
            )
        except requests.RequestException as e:
            raise JobTriggerError(f"Could not reach extraction endpoint: {e}") from e

        if not 200 <= response.status_code < 300:
            raise JobTriggerError(
                f"Extraction endpoint returned {response.status_code}: {response.text[:200]}"
            )

        logger.info(f"Triggered extraction for {vault_id} (resume={resume})")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {}
