"""Reverse proxy that intercepts Kubernetes API requests inside the pod.

Application containers reach this proxy through KUBERNETES_SERVICE_HOST/PORT.
Their own credentials are dropped and the request is forwarded to the API
server with the sidecar's credentials.
"""

import asyncio
import logging
import ssl
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple, Union

import aiohttp
from aiohttp import web
from kubernetes import client

logger = logging.getLogger(__name__)

# Per-connection headers that must not be forwarded (RFC 7230 section 6.1)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
}


@dataclass
class Upstream:
    """API server the proxy forwards to."""

    base_url: str
    ssl_context: Union[ssl.SSLContext, bool] = True
    authorization: Callable[[], Optional[str]] = lambda: None

    @classmethod
    def from_configuration(cls, configuration: client.Configuration) -> "Upstream":
        """Build the upstream from a loaded kubernetes client configuration."""
        if configuration.verify_ssl:
            ssl_context = ssl.create_default_context(cafile=configuration.ssl_ca_cert)
            if configuration.cert_file:
                ssl_context.load_cert_chain(configuration.cert_file, configuration.key_file)
        else:
            ssl_context = False

        # Resolved per request so rotated service account tokens are picked up
        def authorization() -> Optional[str]:
            return configuration.get_api_key_with_prefix("authorization")

        return cls(base_url=configuration.host.rstrip("/"), ssl_context=ssl_context, authorization=authorization)


class KubeAPIProxy:
    """HTTP reverse proxy for a single Kubernetes API server."""

    def __init__(self, upstream: Upstream):
        self.upstream = upstream
        self.session: Optional[aiohttp.ClientSession] = None
        self.app = web.Application()
        self.app.router.add_route("*", "/{path:.*}", self.proxy_request)
        self.app.cleanup_ctx.append(self._client_session)

    async def _client_session(self, app: web.Application):
        # No total timeout: watch requests stay open indefinitely
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30)
        connector = aiohttp.TCPConnector(ssl=self.upstream.ssl_context)
        async with aiohttp.ClientSession(timeout=timeout, connector=connector, auto_decompress=False) as session:
            self.session = session
            yield
        self.session = None

    def _forward_headers(self, request: web.Request) -> List[Tuple[str, str]]:
        # Pairs rather than a dict so repeated headers are all forwarded
        headers = [
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() not in ("authorization", "host")
        ]

        authorization = self.upstream.authorization()
        if authorization:
            headers.append(("Authorization", authorization))
        return headers

    async def proxy_request(self, request: web.Request) -> web.StreamResponse:
        """Forward a request to the API server and stream the response back."""
        logger.info(f"{request.method} {request.path}")

        target_url = f"{self.upstream.base_url}{request.raw_path}"
        body = await request.read() if request.can_read_body else None
        response = None

        try:
            async with self.session.request(
                method=request.method,
                url=target_url,
                headers=self._forward_headers(request),
                data=body,
                allow_redirects=False,
            ) as upstream_response:
                response = web.StreamResponse(status=upstream_response.status, reason=upstream_response.reason)
                for name, value in upstream_response.headers.items():
                    if name.lower() not in HOP_BY_HOP_HEADERS and name.lower() != "content-length":
                        response.headers.add(name, value)

                await response.prepare(request)
                async for chunk in upstream_response.content.iter_any():
                    await response.write(chunk)
                await response.write_eof()
                return response

        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if response is not None and response.prepared:
                # Headers already went out; all we can do is end the stream
                logger.warning(f"Upstream stream for {request.method} {request.path} ended early: {e}")
                return response
            logger.error(f"Proxy error for {request.method} {request.path}: {e}")
            return web.json_response(
                {"kind": "Status", "apiVersion": "v1", "status": "Failure", "message": f"upstream unavailable: {e}"},
                status=502,
            )

    async def start_server(self, host: str, port: int, ssl_context: Optional[ssl.SSLContext] = None):
        """Serve the proxy until cancelled."""
        runner = web.AppRunner(self.app)
        await runner.setup()

        site = web.TCPSite(runner, host, port, ssl_context=ssl_context)
        await site.start()
        logger.info(f"MCA proxy listening on {host}:{port}")

        try:
            while True:
                await asyncio.sleep(3600)
        finally:
            await runner.cleanup()
