"""Cloud Load Balancers client over aiohttp.

Talks to a Rackspace-style Cloud Load Balancers API: authenticates with
username + API key against the identity service, picks the region's
load-balancer and compute endpoints from the service catalog, and
reads/updates balancer nodes. Node addresses are mapped back to server
names through the compute server list so operators can use host names
in chat.

Key classes:
    CloudLoadBalancerClient: BackendClient implementation.

Key functions:
    cloud_client_builder: Returns a ClientBuilder for ClientRegistry.
"""

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import aiohttp
import structlog

from ..exceptions import (
    AuthenticationError,
    BackendAPIError,
    BackendError,
    ConfigurationError,
    ErrorCategory,
    LBInconsistentState,
    LBNotFound,
    LBUnsafe,
    NodeNotFound,
)
from ..models import CredentialRecord, LbStatus, NodeCondition, NodeStatus
from .base import BackendClient, BackendId

logger = structlog.get_logger("lbcfg.backend")

DEFAULT_IDENTITY_URL = "https://identity.api.rackspacecloud.com/v2.0"
LB_SERVICE = "cloudLoadBalancers"
COMPUTE_SERVICE = "cloudServersOpenStack"

_OK_STATUSES = (200, 201, 202, 204)
_TRANSIENT_STATUSES = (413, 429, 500, 502, 503, 504)


class CloudLoadBalancerClient(BackendClient):
    """Load-balancer client for one region/environment pair.

    Args:
        env_key: ``<region>-<environment>`` key, used in errors and logs.
        credentials: Username, API key and provider region.
        identity_url: Base URL of the identity service. Must use HTTPS.
        timeout: Per-request timeout in seconds.
        max_retries: Attempts per request for transient failures.
        retry_delay: Base delay in seconds; attempt N waits N * delay.
        session: Optional shared aiohttp session (not closed by close()).

    Raises:
        ConfigurationError: If identity_url is not an HTTPS URL.
    """

    def __init__(
        self,
        env_key: str,
        credentials: CredentialRecord,
        identity_url: str = DEFAULT_IDENTITY_URL,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        parsed = urlparse(identity_url)
        if parsed.scheme != "https" or not parsed.hostname:
            logger.warning("insecure_identity_url", url=identity_url)
            raise ConfigurationError(
                "Identity URL must be an HTTPS URL",
                setting_name="backend.identity_url",
            )

        self.env_key = env_key
        self.region = credentials.region.upper()
        self._credentials = credentials
        self.identity_url = identity_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self._session = session
        self._owns_session = session is None
        self._lb_ids: List[BackendId] = []
        self._token: Optional[str] = None
        self._lb_endpoint: Optional[str] = None
        self._compute_endpoint: Optional[str] = None

    @property
    def targets(self) -> List[BackendId]:
        """Registered balancer ids, in registration order."""
        return list(self._lb_ids)

    def add_target(self, lb_id: BackendId) -> None:
        if lb_id not in self._lb_ids:
            self._lb_ids.append(lb_id)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    # --- HTTP plumbing ---

    def _error_for(self, status: int, body: str, resource: str) -> BackendError:
        """Map an HTTP failure to a BackendError subclass."""
        if status in (401, 403):
            self._token = None
            return AuthenticationError(
                f"The provider rejected the credentials for {self.env_key} ({status})",
                env_key=self.env_key,
            )
        if status == 404 and resource.startswith("loadbalancer"):
            return LBNotFound(
                f"The provider has no {resource} in {self.region}",
                env_key=self.env_key,
            )
        if status == 422:
            # Balancer is immutable while a previous change is applied
            return LBInconsistentState(
                f"{resource} is not accepting changes right now: {body}",
                env_key=self.env_key,
                category=ErrorCategory.TRANSIENT,
            )
        category = (
            ErrorCategory.TRANSIENT
            if status in _TRANSIENT_STATUSES
            else ErrorCategory.PERMANENT
        )
        return BackendAPIError(
            f"Unexpected response for {resource} ({status}): {body}",
            status=status,
            env_key=self.env_key,
            category=category,
        )

    async def _send(
        self,
        method: str,
        url: str,
        resource: str,
        payload: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> Dict[str, Any]:
        """Execute one API request, retrying transient failures.

        Returns:
            Decoded JSON body, or an empty dict for empty responses.

        Raises:
            BackendError: Once the request fails permanently or the
                retry budget is spent.
        """
        session = await self._get_session()
        headers = {"Accept": "application/json", **(headers or {})}

        for attempt in range(1, self.max_retries + 1):
            try:
                async with session.request(
                    method,
                    url,
                    json=payload,
                    headers=headers,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    if resp.status in _OK_STATUSES:
                        if resp.status == 204:
                            return {}
                        data = await resp.json(content_type=None)
                        return data or {}
                    body = (await resp.text())[:500]
                    error = self._error_for(resp.status, body, resource)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                error = BackendAPIError(
                    f"Request for {resource} failed: {str(e) or type(e).__name__}",
                    env_key=self.env_key,
                    category=ErrorCategory.TRANSIENT,
                )

            if not error.is_retryable or attempt == self.max_retries:
                logger.error(
                    "backend_request_failed",
                    env_key=self.env_key,
                    method=method,
                    resource=resource,
                    attempts=attempt,
                    error=str(error),
                    error_type=error.error_name,
                )
                raise error

            delay = self.retry_delay * attempt
            logger.warning(
                "backend_request_retry",
                env_key=self.env_key,
                method=method,
                resource=resource,
                attempt=attempt,
                retry_delay=delay,
                error=str(error),
            )
            await asyncio.sleep(delay)

        raise BackendAPIError(f"Request for {resource} was never sent", env_key=self.env_key)

    async def _authenticate(self) -> None:
        """Obtain a token and the regional service endpoints."""
        payload = {
            "auth": {
                "RAX-KSKEY:apiKeyCredentials": {
                    "username": self._credentials.username,
                    "apiKey": self._credentials.key,
                }
            }
        }
        data = await self._send(
            "POST", f"{self.identity_url}/tokens", "identity token", payload=payload
        )
        access = data.get("access", {})
        token = access.get("token", {}).get("id")
        if not token:
            raise AuthenticationError(
                f"The identity service returned no token for {self.env_key}",
                env_key=self.env_key,
            )

        catalog = access.get("serviceCatalog", [])
        self._lb_endpoint = self._find_endpoint(catalog, LB_SERVICE)
        self._compute_endpoint = self._find_endpoint(catalog, COMPUTE_SERVICE)
        if self._lb_endpoint is None:
            raise BackendAPIError(
                f"No {LB_SERVICE} endpoint in region {self.region}",
                env_key=self.env_key,
            )
        self._token = token
        logger.info(
            "backend_authenticated",
            env_key=self.env_key,
            region=self.region,
            has_compute=self._compute_endpoint is not None,
        )

    def _find_endpoint(self, catalog: List[dict], service: str) -> Optional[str]:
        for entry in catalog:
            if entry.get("name") != service:
                continue
            for endpoint in entry.get("endpoints", []):
                if str(endpoint.get("region", "")).upper() == self.region:
                    return endpoint.get("publicURL", "").rstrip("/") or None
        return None

    async def _api(
        self, method: str, path: str, resource: str, payload: Optional[dict] = None,
        base: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Authenticated request against a service endpoint."""
        if self._token is None:
            await self._authenticate()
        url = f"{base or self._lb_endpoint}{path}"
        try:
            return await self._send(
                method, url, resource, payload=payload,
                headers={"X-Auth-Token": self._token},
            )
        except AuthenticationError:
            # Token expired mid-session: authenticate once more and retry
            await self._authenticate()
            return await self._send(
                method, url, resource, payload=payload,
                headers={"X-Auth-Token": self._token},
            )

    # --- Provider operations ---

    async def _server_names(self) -> Dict[str, str]:
        """Map every server address in the region to its server name."""
        if self._compute_endpoint is None:
            return {}
        data = await self._api(
            "GET", "/servers/detail", "server list", base=self._compute_endpoint
        )
        names = {}
        for server in data.get("servers", []):
            for addresses in server.get("addresses", {}).values():
                for address in addresses:
                    if address.get("addr"):
                        names[address["addr"]] = server.get("name", address["addr"])
        return names

    async def status(self) -> List[LbStatus]:
        if not self._lb_ids:
            return []
        raw = [
            await self._api("GET", f"/loadbalancers/{lb_id}", f"loadbalancer {lb_id}")
            for lb_id in self._lb_ids
        ]
        names = await self._server_names()

        details = []
        for lb_id, data in zip(self._lb_ids, raw):
            lb = data.get("loadBalancer", {})
            nodes = [
                NodeStatus(
                    name=names.get(node.get("address", ""), node.get("address", "")),
                    condition=node.get("condition", ""),
                    ip=node.get("address", ""),
                    id=node.get("id", ""),
                )
                for node in lb.get("nodes", [])
            ]
            details.append(
                LbStatus(name=lb.get("name", str(lb_id)), id=lb.get("id", lb_id), nodes=nodes)
            )
        logger.debug("backend_status_fetched", env_key=self.env_key, balancers=len(details))
        return details

    async def update_node(self, node_name: str, condition: NodeCondition) -> None:
        """Change a node's condition on every registered balancer.

        The change is validated against all balancers before any of
        them is touched.

        Raises:
            LBNotFound: No balancers were registered.
            NodeNotFound: The node is missing from a balancer.
            LBInconsistentState: Balancers disagree on the node's condition.
            LBUnsafe: Draining would leave a balancer with no enabled node.
        """
        details = await self.status()
        if not details:
            raise LBNotFound(
                f"No load balancers registered for {self.env_key}", env_key=self.env_key
            )

        wanted = node_name.lower()
        matches = []
        for lb in details:
            node = next(
                (n for n in lb.nodes if n.name.lower() == wanted or n.ip == node_name),
                None,
            )
            if node is None:
                raise NodeNotFound(
                    f"{node_name} is not a node of {lb.name} ({lb.id})",
                    env_key=self.env_key,
                )
            matches.append((lb, node))

        conditions = {node.condition for _, node in matches}
        if len(conditions) > 1:
            raise LBInconsistentState(
                f"{node_name} has different conditions across balancers: "
                + ", ".join(f"{lb.name}={node.condition}" for lb, node in matches),
                env_key=self.env_key,
            )

        if condition == NodeCondition.DRAINING:
            for lb, node in matches:
                enabled = [
                    n for n in lb.nodes
                    if n.id != node.id and n.condition == NodeCondition.ENABLED.value
                ]
                if not enabled:
                    raise LBUnsafe(
                        f"Draining {node_name} would leave {lb.name} ({lb.id}) "
                        "without an enabled node",
                        env_key=self.env_key,
                    )

        for lb, node in matches:
            if node.condition == condition.value:
                logger.info(
                    "backend_node_unchanged",
                    env_key=self.env_key, lb_id=lb.id, node=node_name,
                    condition=condition.value,
                )
                continue
            await self._api(
                "PUT",
                f"/loadbalancers/{lb.id}/nodes/{node.id}",
                f"loadbalancer {lb.id}",
                payload={"node": {"condition": condition.value}},
            )
            logger.info(
                "backend_node_updated",
                env_key=self.env_key, lb_id=lb.id, node=node_name,
                condition=condition.value,
            )


def cloud_client_builder(
    identity_url: str = DEFAULT_IDENTITY_URL,
    timeout: float = 30.0,
    max_retries: int = 3,
):
    """Return a ClientBuilder producing CloudLoadBalancerClient instances."""
    def build(env_key: str, record: CredentialRecord) -> CloudLoadBalancerClient:
        return CloudLoadBalancerClient(
            env_key,
            record,
            identity_url=identity_url,
            timeout=timeout,
            max_retries=max_retries,
        )
    return build
