"""
Web server for the mutual-fund NAV calculator.
Simple HTTP server using http.server with JSON API endpoints.
"""
from __future__ import annotations

import json
import logging
import os
import re
import urllib.parse
from http.server import HTTPServer, BaseHTTPRequestHandler

from backend import (
    CalculatorKind,
    get_point_return,
    get_scheme,
    run_calculation,
)
from errors import CalculatorError, ValidationError
from provider import NavProvider

logger = logging.getLogger(__name__)

HOST = os.environ.get("NAVCALC_HOST", "localhost")
PORT = int(os.environ.get("NAVCALC_PORT", "8000"))
LOG_LEVEL = os.environ.get("NAVCALC_LOG_LEVEL", "INFO")

SCHEME_ROUTE = re.compile(r"^/api/scheme/(?P<code>[^/]+)/?$")
CALCULATOR_ROUTE = re.compile(r"^/api/scheme/(?P<code>[^/]+)/(?P<kind>[a-z-]+)/?$")


HTML_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>NAV Calculator</title>
    <style>
        * { box-sizing: border-box; margin: 0; padding: 0; }

        body {
            font-family: 'Segoe UI', system-ui, -apple-system, sans-serif;
            background: #1a1a2e;
            color: #eee;
            padding: 12px;
            display: flex;
            flex-direction: column;
            gap: 8px;
        }

        .controls {
            display: flex;
            flex-wrap: wrap;
            gap: 8px;
            padding: 8px 12px;
            background: #16213e;
            border-radius: 6px;
            align-items: center;
        }

        .controls label { font-size: 0.85em; color: #aaa; }

        input, select, button, textarea {
            padding: 5px 10px;
            border: 1px solid #444;
            border-radius: 4px;
            background: #0f0f23;
            color: #eee;
            font-size: 13px;
        }

        button { background: #00d4ff; color: #000; font-weight: bold; cursor: pointer; }
        button:hover { background: #00b8e6; }

        textarea { width: 100%; height: 90px; font-family: monospace; }

        pre {
            background: #16213e;
            border-radius: 6px;
            padding: 12px;
            overflow: auto;
            font-size: 12px;
            flex: 1;
        }

        .error { color: #ff4d4d; }
    </style>
</head>
<body>
    <div class="controls">
        <label for="scheme">Scheme</label>
        <input id="scheme" value="119551" size="10">
        <label for="kind">Calculator</label>
        <select id="kind">
            <option value="lumpsum">Lumpsum</option>
            <option value="sip">SIP</option>
            <option value="step-up-sip">Step-up SIP</option>
            <option value="swp">SWP</option>
            <option value="step-up-swp">Step-up SWP</option>
            <option value="returns">Period returns</option>
            <option value="rolling-returns">Rolling returns</option>
            <option value="rolling-returns-series">Rolling returns series</option>
        </select>
        <button id="run">Calculate</button>
    </div>
    <textarea id="params">{"investment": 10000, "amount": 1000, "frequency": "monthly", "from": "2020-01-01", "to": "2023-01-01"}</textarea>
    <pre id="output">Pick a calculator and press Calculate.</pre>
    <script>
        const output = document.getElementById('output');

        document.getElementById('run').addEventListener('click', async () => {
            const code = encodeURIComponent(document.getElementById('scheme').value.trim());
            const kind = document.getElementById('kind').value;
            output.classList.remove('error');
            output.textContent = 'Loading...';
            try {
                const res = await fetch(`/api/scheme/${code}/${kind}`, {
                    method: 'POST',
                    headers: {'Content-Type': 'application/json'},
                    body: document.getElementById('params').value,
                });
                const data = await res.json();
                if (!res.ok) output.classList.add('error');
                output.textContent = JSON.stringify(data, null, 2);
            } catch (e) {
                output.classList.add('error');
                output.textContent = String(e);
            }
        });
    </script>
</body>
</html>
"""


class NavCalcHandler(BaseHTTPRequestHandler):
    """HTTP request handler for the NAV calculator API."""

    # None means the process-wide cached provider
    provider: NavProvider | None = None

    def log_message(self, format, *args):
        """Route access logs through the logging module."""
        logger.info("%s - %s", self.address_string(), format % args)

    def send_json(self, data: dict, status: int = 200) -> None:
        """Send JSON response."""
        body = json.dumps(data).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", len(body))
        self.end_headers()
        self.wfile.write(body)

    def send_html(self, html: str) -> None:
        """Send HTML response."""
        body = html.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", len(body))
        self.end_headers()
        self.wfile.write(body)

    def send_error_json(self, error: CalculatorError) -> None:
        if error.status >= 500:
            logger.warning("%s %s failed: %s", self.command, self.path, error.message)
        self.send_json(error.to_dict(), error.status)

    def parse_params(self) -> dict:
        """Parse query parameters from URL."""
        parsed = urllib.parse.urlparse(self.path)
        params = urllib.parse.parse_qs(parsed.query)
        return {k: v[0] if v else "" for k, v in params.items()}

    def read_json_body(self) -> dict:
        """Read and decode the JSON request body; malformed input is a ValidationError."""
        try:
            content_length = int(self.headers.get("Content-Length", 0))
        except ValueError:
            raise ValidationError("Invalid Content-Length header.", parameter="Content-Length") from None
        if content_length < 0:
            raise ValidationError("Invalid Content-Length header.", parameter="Content-Length")
        body = self.rfile.read(content_length) if content_length else b""
        if not body:
            return {}
        try:
            return json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationError("Invalid JSON format in request body.") from None

    def do_GET(self) -> None:
        """Handle GET requests."""
        path = urllib.parse.urlparse(self.path).path

        if path == "/":
            self.send_html(HTML_PAGE)
            return

        match = CALCULATOR_ROUTE.match(path)
        if match and match.group("kind") == CalculatorKind.PERIOD_RETURNS.value:
            params = self.parse_params()
            try:
                code = urllib.parse.unquote(match.group("code"))
                result = get_point_return(code, params.get("from"), params.get("to"), self.provider)
                self.send_json(result)
            except CalculatorError as e:
                self.send_error_json(e)
            except Exception:
                logger.exception("Unhandled error on %s", path)
                self.send_json({"error": "Internal Server Error"}, 500)
            return

        match = SCHEME_ROUTE.match(path)
        if match:
            try:
                result = get_scheme(urllib.parse.unquote(match.group("code")), self.provider)
                self.send_json(result)
            except CalculatorError as e:
                self.send_error_json(e)
            except Exception:
                logger.exception("Unhandled error on %s", path)
                self.send_json({"error": "Internal Server Error"}, 500)
            return

        self.send_json({"error": "Not Found"}, 404)

    def do_POST(self) -> None:
        """Handle POST requests."""
        path = urllib.parse.urlparse(self.path).path

        match = CALCULATOR_ROUTE.match(path)
        kinds = {k.value for k in CalculatorKind}
        if not match or match.group("kind") not in kinds:
            self.send_json({"error": "Not Found"}, 404)
            return

        try:
            params = self.read_json_body()
            code = urllib.parse.unquote(match.group("code"))
            result = run_calculation(match.group("kind"), code, params, self.provider)
            self.send_json(result)
        except CalculatorError as e:
            self.send_error_json(e)
        except Exception:
            logger.exception("Unhandled error on %s", path)
            self.send_json({"error": "Internal Server Error"}, 500)


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def run_server() -> None:
    """Start the HTTP server."""
    configure_logging()
    server = HTTPServer((HOST, PORT), NavCalcHandler)
    logger.info("NAV calculator running at http://%s:%s", HOST, PORT)
    logger.info("Press Ctrl+C to stop")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        server.shutdown()


if __name__ == "__main__":
    run_server()
