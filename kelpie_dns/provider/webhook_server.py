"""
Webhook server module for Kelpie-DNS.

Serves any provider over the external-dns webhook protocol so it can be used
from another process.
"""

import asyncio
import concurrent.futures
import json
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from threading import Thread
from typing import Optional

from pydantic import ValidationError

from kelpie_dns.exceptions import ProviderError
from kelpie_dns.models.domain_filter import DomainFilter
from kelpie_dns.provider.webhook_models import (
    MEDIA_TYPE,
    ChangesModel,
    FiltersModel,
    dump_endpoints,
    load_endpoints,
)


class WebhookRequestHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for the webhook endpoints.
    """

    def __init__(self, *args, **kwargs):
        self.logger = logging.getLogger("kelpie-dns.webhook-server")
        super().__init__(*args, **kwargs)

    def do_GET(self):
        """
        Handle GET requests.
        """
        if not self._accepts_media_type():
            self._send_error(406, f"client must accept {MEDIA_TYPE}")
        elif self.path == "/":
            domain_filter = self.server.domain_filter
            body = FiltersModel(
                filters=domain_filter.include, exclude=domain_filter.exclude
            ).model_dump()
            self._send_json(200, body)
        elif self.path == "/records":
            try:
                endpoints = self._call(self.server.provider.records())
            except ProviderError as e:
                self._send_error(500, str(e))
                return
            except Exception as e:
                self._send_unexpected_error(e)
                return
            self._send_json(200, dump_endpoints(endpoints))
        else:
            self._send_error(404, "Not Found")

    def do_POST(self):
        """
        Handle POST requests.
        """
        if self.path not in ("/records", "/adjustendpoints"):
            self._send_error(404, "Not Found")
            return
        content_type = self.headers.get("Content-Type", MEDIA_TYPE)
        if content_type.replace(" ", "") != MEDIA_TYPE:
            self._send_error(415, f"content type must be {MEDIA_TYPE}")
            return

        try:
            length = int(self.headers.get("Content-Length", 0))
            payload = json.loads(self.rfile.read(length) or b"null")
            if self.path == "/records":
                changes = ChangesModel.model_validate(payload).to_changes()
            else:
                endpoints = load_endpoints(payload)
        except (ValueError, TypeError, ValidationError) as e:
            self._send_error(400, f"invalid request body: {e}")
            return

        try:
            if self.path == "/records":
                self._call(self.server.provider.apply_changes(changes))
                self.send_response(204)
                self.end_headers()
            else:
                adjusted = self._call(self.server.provider.adjust_endpoints(endpoints))
                self._send_json(200, dump_endpoints(adjusted))
        except ProviderError as e:
            self._send_error(500, str(e))
        except Exception as e:
            self._send_unexpected_error(e)

    def _call(self, coroutine):
        future = asyncio.run_coroutine_threadsafe(coroutine, self.server.loop)
        try:
            return future.result(timeout=self.server.request_timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise ProviderError(
                f"Provider call timed out after {self.server.request_timeout}s"
            ) from e

    def _accepts_media_type(self) -> bool:
        accept = self.headers.get("Accept")
        if not accept:
            return True
        accepted = [part.split(";q=")[0].replace(" ", "") for part in accept.split(",")]
        return MEDIA_TYPE in accepted or "*/*" in accepted

    def _send_json(self, status: int, body) -> None:
        data = json.dumps(body).encode()
        self.send_response(status)
        self.send_header("Content-Type", MEDIA_TYPE)
        self.send_header("Vary", "Content-Type")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_error(self, status: int, message: str) -> None:
        self.logger.warning(f"{self.command} {self.path} -> {status}: {message}")
        data = message.encode()
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_unexpected_error(self, error: Exception) -> None:
        self.logger.exception(f"Unexpected error handling {self.command} {self.path}")
        self._send_error(500, f"internal error: {error}")

    def log_message(self, format, *args):
        """
        Override log_message to use the application logger.
        """
        self.logger.debug(format % args)


class WebhookServer:
    """
    HTTP server exposing a provider over the webhook protocol.
    """

    def __init__(
        self,
        provider,
        domain_filter: Optional[DomainFilter] = None,
        host: str = "127.0.0.1",
        port: int = 8888,
        request_timeout: float = 60.0,
    ):
        """
        Initialize a WebhookServer.

        Args:
            provider: Provider to serve
            domain_filter: Domain filter advertised on negotiation
            host: Host to bind to
            port: Port to bind to, 0 picks a free one
            request_timeout: Seconds a provider call may take
        """
        self.provider = provider
        self.domain_filter = domain_filter or DomainFilter()
        self.host = host
        self.port = port
        self.request_timeout = request_timeout
        self.server = None
        self.thread = None
        self.logger = logging.getLogger("kelpie-dns.webhook-server")

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Start the webhook server. Provider coroutines run on the given loop,
        which defaults to the running one.
        """
        self.server = ThreadingHTTPServer((self.host, self.port), WebhookRequestHandler)
        self.server.provider = self.provider
        self.server.domain_filter = self.domain_filter
        self.server.loop = loop or asyncio.get_running_loop()
        self.server.request_timeout = self.request_timeout
        self.port = self.server.server_address[1]
        self.thread = Thread(target=self.server.serve_forever)
        self.thread.daemon = True
        self.thread.start()
        self.logger.info(f"Webhook server listening on {self.host}:{self.port}")

    def stop(self):
        """
        Stop the webhook server.
        """
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.logger.info("Webhook server stopped")

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"
