"""FastAPI application entrypoint and health reporting utilities.

Health detail is only exposed to authenticated users or allowlisted hosts.
"""

import ipaddress
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api.deps import get_optional_current_user
from app.api.router import api_router
from app.core.config import settings
from app.ingestion.observability import upstream_monitor
from app.jobs.schedule_registry import ensure_schedules
from app.models.user import User

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router, prefix=settings.api_prefix)


@app.on_event("startup")
async def _register_schedules() -> None:
    ensure_schedules()


REPEATED_FAILURE_THRESHOLD = 3


def _summarize_upstreams(snapshot: dict[str, Any]) -> dict[str, Any]:
    """Condense monitor state into per-source health and a flat issue list.

    Open circuits and repeated failures mark a source degraded.
    """
    issues: list[dict[str, Any]] = []
    sources: dict[str, Any] = {}
    for source, payload in snapshot.items():
        circuit = payload.get("circuit", {})
        remaining = float(circuit.get("remaining_cooldown") or 0.0)
        circuit_open = remaining > 0
        if circuit_open:
            issues.append({"source": source, "reason": "circuit_open", "remaining_cooldown": round(remaining, 2)})

        operations = payload.get("operations", {})
        failure_total = 0
        last_error: str | None = None
        for operation, metrics in operations.items():
            failed = int(metrics.get("failed") or 0)
            failure_total += failed
            if metrics.get("last_error"):
                last_error = metrics["last_error"]
                issues.append({"source": source, "operation": operation, "reason": "last_error", "error": last_error})
            if failed >= REPEATED_FAILURE_THRESHOLD:
                issues.append(
                    {"source": source, "operation": operation, "reason": "repeated_failures", "failed": failed}
                )

        sources[source] = {
            "state": "degraded" if circuit_open or last_error else "ok",
            "circuit_open": circuit_open,
            "circuit": circuit,
            "operations": operations,
            "failure_total": failure_total,
            "last_error": last_error,
        }
    return {"sources": sources, "issues": issues}


def _entry_matches(entry: str, candidate: str) -> bool:
    """Return True if an allowlist entry matches a candidate host/IP."""
    try:
        network = ipaddress.ip_network(entry, strict=False)
        return ipaddress.ip_address(candidate) in network
    except ValueError:
        return entry.casefold() == candidate.casefold()


def _ip_or_host_allowlisted(request: Request) -> bool:
    if not settings.health_allowlist:
        return False
    candidates: list[str] = []
    if request.client and request.client.host:
        candidates.append(request.client.host)
    host_header = request.headers.get("host")
    if host_header:
        candidates.append(host_header.split(":")[0])
    return any(entry and _entry_matches(entry, candidate) for candidate in candidates for entry in settings.health_allowlist)


@app.get("/health", tags=["internal"])
@app.get(f"{settings.api_prefix}/health", tags=["internal"])
async def health(request: Request, current_user: User | None = Depends(get_optional_current_user)) -> dict[str, Any]:
    """Return health status and, for trusted callers, upstream telemetry."""
    if not current_user and not _ip_or_host_allowlisted(request):
        return {"status": "ok"}

    telemetry = _summarize_upstreams(await upstream_monitor.snapshot())
    status = "ok" if not telemetry["issues"] else "degraded"
    return {"status": status, "upstreams": telemetry}
