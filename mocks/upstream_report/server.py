"""
Mock upstream reporting API serving an inventory report.
"""

import asyncio
import base64
import csv
import io
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel
import sys
import os

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.logging import get_logger


FAILURE_MODES = ("ok", "error", "unauthorized", "rate_limited", "malformed")


@dataclass
class MockReport:
    """Mock report contents and behavior."""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    mode: str = "ok"
    output: str = "json"
    latency_seconds: float = 0.0
    requests: int = 0


class ControlRequest(BaseModel):
    """Control payload for switching the mock's behavior."""
    mode: Optional[str] = None
    output: Optional[str] = None
    latency_seconds: Optional[float] = None
    rows: Optional[List[Dict[str, Any]]] = None


class MockUpstreamReportServer:
    """Mock upstream reporting API implementation."""

    def __init__(self, api_key: str = "mock-key", api_secret: str = "mock-secret", port: int = 8090):
        self.port = port
        self.api_key = api_key
        self.api_secret = api_secret
        self.logger = get_logger("mock.upstream_report")
        self.app = FastAPI(title="Mock Upstream Report", version="1.0.0")
        self.report = MockReport(rows=self._default_rows())

        self._setup_routes()

    @staticmethod
    def _default_rows() -> List[Dict[str, Any]]:
        """Report rows in the export spelling, including one row without a SKU."""
        return [
            {
                "Product ID": "WID-100",
                "Product URL": "/api/product/100",
                "Description": "Steel widget",
                "Units in stock": "120",
                "Average cost": "1.75",
                "Supplier 1": "Acme Supply",
                "Location": "Main",
                "Last modified": "2024-03-01T08:00:00Z",
            },
            {
                "Product ID": "GAD-200",
                "Product URL": "/api/product/200",
                "Description": "Brass gadget",
                "Units in stock": "0",
                "Average cost": "12.00",
                "Supplier 1": "Globex",
                "Location": "Main",
                "Last modified": "2024-03-02T08:00:00Z",
            },
            {
                "Product ID": "GIZ-300",
                "Product URL": "/api/product/300",
                "Description": "Gizmo kit",
                "Units in stock": "4",
                "Average cost": "7.5",
                "Supplier 1": "Acme Supply",
                "Location": "Overflow",
                "Last modified": "2024-03-03T08:00:00Z",
            },
            {
                "Product ID": "",
                "Description": "Unlabelled return",
                "Units in stock": "2",
            },
        ]

    def _authorized(self, authorization: Optional[str]) -> bool:
        if not authorization or not authorization.startswith("Basic "):
            return False
        try:
            decoded = base64.b64decode(authorization[6:]).decode("utf-8")
        except (ValueError, UnicodeDecodeError):
            return False
        return decoded == f"{self.api_key}:{self.api_secret}"

    def _render_csv(self) -> str:
        columns: List[str] = []
        for row in self.report.rows:
            for column in row:
                if column not in columns:
                    columns.append(column)
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=columns)
        writer.writeheader()
        writer.writerows(self.report.rows)
        return buffer.getvalue()

    def _setup_routes(self):
        """Set up API routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "mock-upstream-report",
                "status": "running",
                "mode": self.report.mode,
                "rows": len(self.report.rows)
            }

        @self.app.get("/report/inventory")
        @self.app.get("/report/pivotTable/{report_id}")
        async def inventory_report(
            request: Request,
            format: str = Query("jsonObject"),
            authorization: Optional[str] = Header(None),
        ):
            """Serve the inventory report according to the current mode."""
            self.report.requests += 1
            self.logger.info("Report requested", mode=self.report.mode, format=format, path=request.url.path)

            if self.report.latency_seconds:
                await asyncio.sleep(self.report.latency_seconds)

            if not self._authorized(authorization) or self.report.mode == "unauthorized":
                return JSONResponse(status_code=401, content={"error": "unauthorized"})
            if self.report.mode == "rate_limited":
                return JSONResponse(status_code=429, content={"error": "too many requests"}, headers={"Retry-After": "60"})
            if self.report.mode == "error":
                return JSONResponse(status_code=503, content={"error": "report engine unavailable"})
            if self.report.mode == "malformed":
                return JSONResponse(status_code=200, content={"message": "report queued"})

            if self.report.output == "csv":
                return Response(content=self._render_csv(), media_type="text/csv")
            return self.report.rows

        @self.app.post("/control")
        async def control(payload: ControlRequest):
            """Switch failure mode, output format, latency or rows."""
            if payload.mode is not None:
                if payload.mode not in FAILURE_MODES:
                    return JSONResponse(
                        status_code=400,
                        content={"error": f"unknown mode {payload.mode}", "modes": list(FAILURE_MODES)}
                    )
                self.report.mode = payload.mode
            if payload.output is not None:
                self.report.output = payload.output
            if payload.latency_seconds is not None:
                self.report.latency_seconds = payload.latency_seconds
            if payload.rows is not None:
                self.report.rows = payload.rows
            return {
                "mode": self.report.mode,
                "output": self.report.output,
                "latency_seconds": self.report.latency_seconds,
                "rows": len(self.report.rows)
            }

        @self.app.get("/control/stats")
        async def stats():
            """Requests served so far."""
            return {"requests": self.report.requests}


def create_app():
    """Create mock upstream report application."""
    server = MockUpstreamReportServer(
        api_key=os.getenv("INVENTORY_UPSTREAM_API_KEY", "mock-key"),
        api_secret=os.getenv("INVENTORY_UPSTREAM_API_SECRET", "mock-secret"),
    )
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8090)
