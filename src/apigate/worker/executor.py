import json
from typing import Any, Dict, Optional

import httpx
from loguru import logger


class WebhookSender:
    """POSTs one webhook delivery. A 2xx response is success; anything else, including transport errors, is failure."""

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.client = client or httpx.Client(timeout=timeout)

    def send(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> bool:
        try:
            response = self.client.post(
                url,
                content=json.dumps(body),
                headers={"Content-Type": "application/json", **headers},
            )
        except httpx.HTTPError as e:
            logger.warning(f"[webhook_sender] Request to {url} failed: {type(e).__name__} - {e}")
            return False

        if not response.is_success:
            logger.warning(f"[webhook_sender] {url} answered {response.status_code}")
            return False
        return True

    def close(self) -> None:
        self.client.close()
