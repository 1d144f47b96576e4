"""In-memory cluster double and sample manifests shared by the tests."""

import copy
import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional

from kubernetes.client.exceptions import ApiException


def api_error(status: int, reason: str, message: str) -> ApiException:
    """Build an ApiException carrying a Kubernetes Status body."""
    error = ApiException(status=status, reason=reason)
    error.body = json.dumps(
        {"kind": "Status", "status": "Failure", "message": message, "reason": reason, "code": status}
    )
    return error


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch."""
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result


class RecordingApiServer:
    """
    Local HTTP server standing in for the API server.

    Records every request and answers with a JSON object. Responses for
    specific (method, path) pairs can be set in ``responses``.
    """

    def __init__(self):
        self.requests: list[dict[str, Any]] = []
        self.responses: dict[tuple[str, str], tuple[int, dict[str, Any]]] = {}
        server = self

        class Handler(BaseHTTPRequestHandler):
            def handle_any(self):
                length = int(self.headers.get("Content-Length") or 0)
                raw = self.rfile.read(length) if length else b""
                server.requests.append(
                    {
                        "method": self.command,
                        "path": self.path,
                        "content_type": self.headers.get("Content-Type"),
                        "authorization": self.headers.get("Authorization"),
                        "body": json.loads(raw) if raw else None,
                    }
                )
                status, payload = server.responses.get(
                    (self.command, self.path), (200, {"kind": "Status", "status": "Success"})
                )
                data = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(data)))
                self.end_headers()
                self.wfile.write(data)

            do_GET = do_POST = do_PATCH = do_DELETE = handle_any

            def log_message(self, format, *args):
                pass

        self.httpd = HTTPServer(("127.0.0.1", 0), Handler)
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True)

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.httpd.server_port}"

    def __enter__(self):
        self.thread.start()
        return self

    def __exit__(self, *exc):
        self.httpd.shutdown()
        self.httpd.server_close()


class FakeCluster:
    """
    In-memory stand-in for ``ApiClient.call_api``.

    Objects are stored by item path. Every request is logged as
    ``(method, path)`` so tests can assert ordering and attempt counts.
    """

    def __init__(self):
        self.objects: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        self.headers: list[dict[str, str]] = []
        self._failures: dict[tuple[str, str], list] = {}

    def fail(self, method: str, path: str, error: Exception, times: Optional[int] = 1):
        """Make the next ``times`` matching requests raise ``error`` (None = always)."""
        self._failures.setdefault((method, path), []).append([error, times])

    def seed(self, path: str, body: dict[str, Any]):
        """Store an object as if it already existed."""
        self.objects[path] = copy.deepcopy(body)

    def requests_for(self, method: str) -> list[str]:
        return [path for m, path in self.requests if m == method]

    def _injected(self, method: str, path: str) -> Optional[Exception]:
        for entry in self._failures.get((method, path), []):
            error, times = entry
            if times is None:
                return error
            if times > 0:
                entry[1] = times - 1
                return error
        return None

    def call_api(self, resource_path, method, header_params=None, body=None, **kwargs):
        self.requests.append((method, resource_path))
        self.headers.append(dict(header_params or {}))

        error = self._injected(method, resource_path)
        if error is not None:
            raise error

        if method == "POST":
            name = body["metadata"]["name"]
            path = f"{resource_path}/{name}"
            if path in self.objects:
                raise api_error(409, "AlreadyExists", f'{body["kind"]} "{name}" already exists')
            self.objects[path] = copy.deepcopy(body)
            return copy.deepcopy(body)

        if resource_path not in self.objects:
            name = resource_path.rsplit("/", 1)[-1]
            raise api_error(404, "NotFound", f'"{name}" not found')

        if method == "GET":
            return copy.deepcopy(self.objects[resource_path])
        if method == "PATCH":
            self.objects[resource_path] = merge_patch(self.objects[resource_path], body)
            return copy.deepcopy(self.objects[resource_path])
        if method == "DELETE":
            del self.objects[resource_path]
            return {"kind": "Status", "status": "Success"}

        raise AssertionError(f"unexpected method {method}")


SAMPLE_BUNDLE = """apiVersion: v1
kind: Namespace
metadata:
  name: shop
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: web
spec:
  replicas: 2
  selector:
    matchLabels:
      app: web
  template:
    metadata:
      labels:
        app: web
    spec:
      containers:
        - name: web
          image: ghcr.io/example/web:1.4.2
---
apiVersion: v1
kind: Service
metadata:
  name: web
spec:
  selector:
    app: web
  ports:
    - port: 80
      targetPort: 8080
---
apiVersion: gateway.networking.k8s.io/v1
kind: HTTPRoute
metadata:
  name: web-route
spec:
  parentRefs:
    - name: public-gateway
      namespace: gateway-system
  rules:
    - backendRefs:
        - name: web
          port: 80
"""

NAMESPACE_PATH = "/api/v1/namespaces/shop"
DEPLOYMENT_PATH = "/apis/apps/v1/namespaces/shop/deployments/web"
SERVICE_PATH = "/api/v1/namespaces/shop/services/web"
ROUTE_PATH = "/apis/gateway.networking.k8s.io/v1/namespaces/shop/httproutes/web-route"

