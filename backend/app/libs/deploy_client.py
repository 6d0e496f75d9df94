"""
Deployment Webhook Client

Publishes a project's HTML through the hosting webhook. The webhook takes
``{htmlContent, siteName}`` and answers ``{success, url}`` or
``{success: false, error}``.
"""

import logging
import re
from typing import Any, Dict, Optional

import httpx

from app.libs.settings import get_settings

logger = logging.getLogger("stylo.deploy")


class DeploymentError(Exception):
    """Custom exception for deployment failures"""
    def __init__(self, message: str, status_code: Optional[int] = None, response: Optional[Dict] = None):
        self.message = message
        self.status_code = status_code
        self.response = response
        super().__init__(self.message)


def slugify(text: str) -> str:
    """Lower-case, hyphenated, at most 50 characters."""
    slug = str(text).lower().strip()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^\w-]+", "", slug)
    slug = re.sub(r"--+", "-", slug)
    return slug[:50]


class DeployClient:
    def __init__(self, webhook_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url or get_settings().deploy_webhook_url
        if not self.webhook_url:
            raise DeploymentError("Deployment webhook is not configured.")
        self.transport = transport

    async def deploy(self, html_content: str, site_name: str) -> str:
        """
        Publish a site.

        Returns:
            Public URL of the deployed site (with ``https://`` prefix)

        Raises:
            DeploymentError: If the webhook reports failure or cannot be reached
        """
        payload = {"htmlContent": html_content, "siteName": site_name}
        try:
            async with httpx.AsyncClient(timeout=120.0, follow_redirects=True, transport=self.transport) as client:
                response = await client.post(self.webhook_url, json=payload)
            result: Dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DeploymentError(f"Deployment failed: {e}")

        if not isinstance(result, dict):
            raise DeploymentError("Unexpected response from the deployment webhook.", response.status_code)
        if not result.get("success") or not result.get("url"):
            raise DeploymentError(result.get("error") or "Deployment failed.", response.status_code, result)

        logger.info("Deployed %s to %s", site_name, result.get("url"))
        return f"https://{result['url']}"
