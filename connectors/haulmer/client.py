"""Haulmer DTE registry client.

Downloads monthly document exports (delimited text) and period listings for
one tenant. The registry authorizes on the bearer token and on the
workspace/resource headers, so both are sent on every call.
"""

import json
from dataclasses import dataclass
from typing import Dict, List, Optional

import aiohttp
from pydantic import ValidationError

from connectors.auth import Credential, CredentialStore
from connectors.errors import AuthError, NotFoundError, TransportError
from connectors.haulmer.models import (
    DocumentType,
    PeriodListing,
    RawPayload,
    ResourceDescriptor,
    ResourceKind,
)
from connectors.http import DEFAULT_TIMEOUT_SECONDS, raise_for_status, send_request, session_scope
from core.config import DEFAULT_HAULMER_API_ROOT
from core.observability.logging import get_logger

logger = get_logger(__name__)


CLIENT_USER_AGENT = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15"
CLIENT_ORIGIN = "https://espacio.haulmer.com"


@dataclass
class HaulmerApiConfig:
    """Configuration for the registry client.

    Attributes:
        tenant_id: Tenant RUT used in every path
        workspace_id: Forwarded as `workspace` and `resource` headers
        api_root: Resource root of the registry
        timeout_seconds: Total timeout per request
    """
    tenant_id: str
    workspace_id: Optional[str] = None
    api_root: str = DEFAULT_HAULMER_API_ROOT
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    user_agent: str = CLIENT_USER_AGENT
    origin: str = CLIENT_ORIGIN

    def resource_url(self, descriptor: ResourceDescriptor) -> str:
        """Build the URL for a resource descriptor."""
        root = self.api_root.rstrip("/")
        segment = descriptor.doc_type.segment
        if descriptor.kind is ResourceKind.PERIODS:
            return f"{root}/{segment}/periodos/{self.tenant_id}"
        if not descriptor.period:
            raise ValueError("Export descriptors require a period")
        return f"{root}/{segment}/detalle/{self.tenant_id}/periodo/{descriptor.period}/csv"


class HaulmerClient:
    """Fetcher for the DTE registry.

    Usage:
        client = HaulmerClient(api_config, credentials)
        csv_text = await client.download_export(DocumentType.SALES, "202401")
        periods = await client.list_periods(DocumentType.PURCHASES)
    """

    def __init__(
        self,
        config: HaulmerApiConfig,
        credentials: CredentialStore,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.config = config
        self.credentials = credentials
        self.session = session

    def _headers(self, credential: Credential) -> Dict[str, str]:
        headers = {
            "Authorization": credential.authorization_header,
            "User-Agent": self.config.user_agent,
            "Origin": self.config.origin,
            "Referer": f"{self.config.origin}/",
        }
        if self.config.workspace_id:
            headers["workspace"] = self.config.workspace_id
            headers["resource"] = self.config.workspace_id
        return headers

    async def fetch(self, descriptor: ResourceDescriptor, credential: Credential) -> RawPayload:
        """Fetch one resource with the given credential.

        Raises:
            AuthError: 401 from the registry
            NotFoundError: 404 (no data for this unit)
            TransportError: Any other failure, including an empty body
        """
        url = self.config.resource_url(descriptor)
        logger.debug("haulmer_fetch_start", extra_fields={"url": url})

        async with session_scope(self.session) as session:
            response = await send_request(
                session,
                "GET",
                url,
                headers=self._headers(credential),
                timeout_seconds=self.config.timeout_seconds,
            )
        raise_for_status(response, url)

        if not isinstance(response.text, str) or not response.text.strip():
            raise TransportError(f"Invalid response from {url}: empty body", response.status)

        return RawPayload(text=response.text, url=url)

    async def fetch_with_refresh(self, descriptor: ResourceDescriptor) -> RawPayload:
        """Fetch with a valid credential, retrying once after a 401.

        The rejected credential is discarded and a fresh one is forced
        before the single retry. A second 401 propagates.
        """
        credential = await self.credentials.get_credential()
        try:
            return await self.fetch(descriptor, credential)
        except AuthError:
            logger.warning(
                "haulmer_unauthorized_refreshing",
                extra_fields={"unit": descriptor.unit_id},
            )
            self.credentials.invalidate()
            credential = await self.credentials.get_credential(force_refresh=True)
            return await self.fetch(descriptor, credential)

    async def download_export(self, doc_type: DocumentType, period: str) -> str:
        """Download the delimited export for one document type and period."""
        descriptor = ResourceDescriptor(doc_type=doc_type, period=period)
        payload = await self.fetch_with_refresh(descriptor)
        logger.info(
            "haulmer_download_success",
            extra_fields={"unit": descriptor.unit_id, "size": payload.size},
        )
        return payload.text

    async def list_periods(self, doc_type: DocumentType) -> List[str]:
        """List periods with at least one document.

        A 404, a malformed envelope or a failed request yields an empty list.
        """
        descriptor = ResourceDescriptor(doc_type=doc_type, kind=ResourceKind.PERIODS)
        try:
            payload = await self.fetch_with_refresh(descriptor)
        except NotFoundError:
            logger.info("haulmer_no_periods", extra_fields={"doc_type": doc_type.value})
            return []
        except (AuthError, TransportError) as e:
            logger.warning(
                "haulmer_period_listing_failed",
                extra_fields={"doc_type": doc_type.value, "error": str(e)},
            )
            return []

        try:
            listing = PeriodListing.model_validate(json.loads(payload.text))
        except (json.JSONDecodeError, ValidationError, TypeError) as e:
            logger.warning(
                "haulmer_period_listing_invalid",
                extra_fields={"doc_type": doc_type.value, "error": str(e)},
            )
            return []

        periods = listing.available_periods(doc_type)
        logger.info(
            "haulmer_periods_found",
            extra_fields={"doc_type": doc_type.value, "count": len(periods)},
        )
        return periods
