"""
Health check module for Kelpie-DNS.

This module provides health check endpoints for monitoring the application.
"""

import json
import logging
import time
from http.server import BaseHTTPRequestHandler, HTTPServer
from threading import Thread

# Failed cycles in a row after which the service reports unhealthy
UNHEALTHY_AFTER_FAILURES = 3


class HealthCheckHandler(BaseHTTPRequestHandler):
    """
    HTTP request handler for health check endpoints.
    """

    def __init__(self, *args, **kwargs):
        self.logger = logging.getLogger("kelpie-dns.health")
        super().__init__(*args, **kwargs)

    def do_GET(self):
        """
        Handle GET requests.
        """
        if self.path == "/health":
            self._handle_health_check()
        elif self.path == "/metrics":
            self._handle_metrics()
        else:
            self.send_response(404)
            self.end_headers()
            self.wfile.write(b"Not Found")

    def _handle_health_check(self):
        """
        Handle health check requests. Unhealthy once reconciliation keeps failing.
        """
        controller = self.server.controller
        healthy = controller.consecutive_failures < UNHEALTHY_AFTER_FAILURES
        response = {
            "status": "healthy" if healthy else "unhealthy",
            "state": controller.state.value,
            "last_sync": controller.last_sync,
            "last_error": controller.last_error,
            "consecutive_failures": controller.consecutive_failures,
        }

        self.send_response(200 if healthy else 503)
        self.send_header("Content-type", "application/json")
        self.end_headers()
        self.wfile.write(json.dumps(response).encode())

    def _handle_metrics(self):
        """
        Handle metrics requests.
        """
        controller = self.server.controller
        self.send_response(200)
        self.send_header("Content-type", "text/plain")
        self.end_headers()

        metrics = [
            "# HELP kelpie_dns_up Whether the Kelpie-DNS service is up",
            "# TYPE kelpie_dns_up gauge",
            "kelpie_dns_up 1",
            "# HELP kelpie_dns_consecutive_failures Reconciliations failed in a row",
            "# TYPE kelpie_dns_consecutive_failures gauge",
            f"kelpie_dns_consecutive_failures {controller.consecutive_failures}",
        ]
        if controller.last_sync is not None:
            metrics += [
                "# HELP kelpie_dns_last_sync_timestamp_seconds Time of the last successful reconciliation",
                "# TYPE kelpie_dns_last_sync_timestamp_seconds gauge",
                f"kelpie_dns_last_sync_timestamp_seconds {controller.last_sync:.3f}",
                "# HELP kelpie_dns_last_sync_age_seconds Seconds since the last successful reconciliation",
                "# TYPE kelpie_dns_last_sync_age_seconds gauge",
                f"kelpie_dns_last_sync_age_seconds {time.time() - controller.last_sync:.3f}",
            ]

        self.wfile.write(("\n".join(metrics) + "\n").encode())

    def log_message(self, format, *args):
        """
        Override log_message to use the application logger.
        """
        self.logger.debug(format % args)


class HealthCheckServer:
    """
    HTTP server for health check endpoints.
    """

    def __init__(self, controller, host: str = "0.0.0.0", port: int = 8080):
        """
        Initialize a HealthCheckServer.

        Args:
            controller: Controller whose status is reported
            host: Host to bind to
            port: Port to bind to, 0 picks a free one
        """
        self.controller = controller
        self.host = host
        self.port = port
        self.server = None
        self.thread = None
        self.logger = logging.getLogger("kelpie-dns.health")

    def start(self):
        """
        Start the health check server.
        """
        self.server = HTTPServer((self.host, self.port), HealthCheckHandler)
        self.server.controller = self.controller
        self.port = self.server.server_address[1]
        self.thread = Thread(target=self.server.serve_forever)
        self.thread.daemon = True
        self.thread.start()
        self.logger.info(f"Health check: {self.host}:{self.port}/health")

    def stop(self):
        """
        Stop the health check server.
        """
        if self.server:
            self.server.shutdown()
            self.server.server_close()
            self.logger.info("Health check server stopped")
