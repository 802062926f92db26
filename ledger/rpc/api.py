from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from typing import Optional
import json
import logging

from protocol.types.action import Action
from protocol.types.common import LedgerError
from ..core.pool import MiningPool

logger = logging.getLogger(__name__)

app = FastAPI(title="Minepool RPC")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
pool: Optional[MiningPool] = None


def _require_pool() -> MiningPool:
    if not pool:
        raise HTTPException(status_code=503, detail="Pool not initialized")
    return pool


def _ledger_error(e: LedgerError) -> HTTPException:
    return HTTPException(status_code=400, detail=e.to_dict())


@app.get("/")
async def root():
    return {"message": "Minepool RPC", "version": "1.0"}


@app.get("/status")
async def get_status():
    p = _require_pool()
    ledger = p.state.ledger
    return {
        "network": p.config.network_id,
        "pool": p.economics.name,
        "initialized": ledger.initialized,
        "strategy": ledger.strategy.value,
        "sequence": ledger.sequence,
        "total_mining_power": ledger.total_mining_power,
        "vault": {asset: p.vault.balance(asset) for asset in p.economics.assets},
    }


@app.get("/ledger")
async def get_ledger():
    p = _require_pool()
    return p.state.ledger.model_dump(mode="json")


@app.get("/participants/{owner}")
async def get_participant(owner: str):
    p = _require_pool()
    part = p.state.get_participant(owner)
    if not part:
        raise HTTPException(status_code=404, detail="Participant not found")
    return part.model_dump(mode="json")


@app.get("/participants/{owner}/pending")
async def get_pending(owner: str, now: Optional[int] = None):
    """
    Preview of what Compound and Claim would consume at `now`.

    Used by the auto-compound keeper.
    """
    p = _require_pool()
    if not p.state.has_participant(owner):
        raise HTTPException(status_code=404, detail="Participant not found")
    at = now if now is not None else p.clock()
    try:
        return {
            "owner": owner,
            "timestamp": at,
            "pending_hash": p.engine.pending_hash(owner, at),
            "pending_earnings": p.engine.pending_earnings(owner, at),
            "hash_per_unit_power": p.state.ledger.params.hash_per_unit_power,
        }
    except LedgerError as e:
        raise _ledger_error(e)


@app.post("/actions")
async def submit_action(action: Action):
    """Submits an action. The pool stamps it with its own clock; any client timestamp is ignored."""
    p = _require_pool()
    try:
        result = p.submit(action)
    except LedgerError as e:
        raise _ledger_error(e)
    except ValueError as e:
        raise HTTPException(status_code=500, detail=f"Custody error: {e}")
    return result.model_dump(mode="json")


@app.get("/settlements")
async def get_settlements(since: int = 0, limit: int = 100):
    p = _require_pool()
    rows = p.db.get_settlements(since_sequence=since, limit=limit)
    return [
        {"sequence": seq, "action_hash": action_hash, "instruction": json.loads(data)}
        for seq, action_hash, data in rows
    ]


@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from ..observability.metrics import metrics_registry, update_metrics

    try:
        if pool:
            update_metrics(pool.state)
        metrics_data = generate_latest(metrics_registry)
        return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Metrics error: {str(e)}")


# ═══════════════════════════════════════════════════════════════════
# SNAPSHOT ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@app.get("/snapshots")
async def list_snapshots():
    p = _require_pool()
    if not p.snapshot_manager:
        raise HTTPException(status_code=503, detail="Snapshots not enabled on this pool")
    return [snap.model_dump() for snap in p.snapshot_manager.list_snapshots()]


def start_rpc_server(pool_instance: MiningPool, host: str = "127.0.0.1", port: int = 8000):
    global pool
    pool = pool_instance
    import uvicorn
    uvicorn.run(app, host=host, port=port)
