#!/usr/bin/env python3
"""Example token endpoint for local development.

Issues fake credentials in the shape ``HttpTokenProvider`` expects. Pair it
with ``LocalTransfer``, which ignores the credentials.
"""

import json
import logging
import uuid
from http.server import BaseHTTPRequestHandler, HTTPServer
from urllib.parse import parse_qs, urlparse

SUB_DIRECTORIES = {"1": "misc", "2": "monitor-video"}


class TokenHandler(BaseHTTPRequestHandler):
    """Answers GET /file/sts/token?fileType=&subCategory=&fileExtension=."""

    def do_GET(self):
        url = urlparse(self.path)
        if url.path != "/file/sts/token":
            self.send_error(404)
            return

        query = parse_qs(url.query)
        directory = SUB_DIRECTORIES.get(query.get("subCategory", ["1"])[0], "misc")
        ext = query.get("fileExtension", [""])[0]
        file_name = f"{directory}/{uuid.uuid4().hex}" + (f".{ext}" if ext else "")

        body = json.dumps(
            {
                "data": {
                    "region": "local",
                    "bucket": "dev-bucket",
                    "securityToken": "dev-token",
                    "accessKeyId": "dev",
                    "accessKeySecret": "dev",
                    "fileName": file_name,
                }
            }
        ).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


def main():
    """Run the token server."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    host = "0.0.0.0"
    port = 8080
    server = HTTPServer((host, port), TokenHandler)
    print(f"Token server running on http://{host}:{port}/file/sts/token")
    print("Press Ctrl+C to stop")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down server...")
        server.shutdown()


if __name__ == "__main__":
    main()
