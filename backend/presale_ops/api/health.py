from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health", summary="Health check")
async def health_check(request: Request):
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "presale": str(request.app.state.reader.config.presale_address),
    }


@router.get("/ready", summary="Readiness check")
async def readiness_check(request: Request):
    """
    Readiness check - verifies the RPC node answers and the poller is running.
    """
    checks = {}

    try:
        await request.app.state.solana_client.get_health()
        checks["solana_rpc"] = True
    except Exception:
        checks["solana_rpc"] = False

    checks["poller"] = request.app.state.poller.running
    checks["presale_loaded"] = request.app.state.reader.presale_snapshot.loaded

    all_healthy = all(checks.values())

    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
