from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from typing import Optional
from ...protocol.types.call import SignedCall
from ...protocol.types.common import JobStatus
from ...protocol.types.errors import MarketError
from ..core.market import Marketplace
import logging

logger = logging.getLogger(__name__)

app = FastAPI(title="ProofMarket Node RPC")

# Enable CORS for dashboards
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
market: Optional[Marketplace] = None

# Error kind -> HTTP status
ERROR_STATUS = {
    "validation": 400,
    "authorization": 403,
    "not_found": 404,
    "state": 409,
    "external": 502,
}


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    content = exc.to_dict()
    if getattr(exc, "call_id", None):
        content["call_id"] = exc.call_id
    return JSONResponse(status_code=ERROR_STATUS.get(exc.kind, 400), content=content)


def _market() -> Marketplace:
    if not market:
        raise HTTPException(status_code=503, detail="Node not initialized")
    return market


@app.get("/")
async def root():
    return {"message": "ProofMarket Node RPC", "version": "1.0"}


@app.get("/status")
async def get_status():
    return _market().status()


@app.get("/job/{job_id}")
async def get_job(job_id: int):
    return _market().get_job(job_id)


@app.get("/jobs")
async def list_jobs(status: Optional[JobStatus] = None):
    jobs = _market().list_jobs(status)
    return {"count": len(jobs), "jobs": jobs}


@app.get("/provider/{address}")
async def get_provider(address: str):
    m = _market()
    info = m.get_provider(address)
    response = info.model_dump()
    response["success_rate"] = info.success_rate
    response["eligible"] = info.exists and info.stake_amount >= m.state.params.min_provider_stake
    return response


@app.get("/balance/{address}")
async def get_balance(address: str):
    m = _market()
    response = {
        "address": address,
        "balance": str(m.balance_of(address)),
        "nonce": m.get_nonce(address),
    }
    if m.stake_asset is not m.token:
        response["native_balance"] = str(m.balance_of(address, native=True))
    return response


@app.get("/nonce/{address}")
async def get_nonce(address: str):
    return {"address": address, "nonce": _market().get_nonce(address)}


@app.post("/call")
async def send_call(call: SignedCall):
    """
    Executes a signed call.

    The signature and nonce are checked first; marketplace errors come back
    as their structured dict with a status code per error kind.
    """
    m = _market()
    try:
        result = m.execute_signed(call)
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Malformed call params: {e}")
    logger.info(f"Call {call.method} from {call.caller} committed")
    if hasattr(result, "model_dump"):
        result = result.model_dump(mode="json")
    return {"status": "committed", "call_id": m.last_call_id, "result": result}


@app.get("/call/{call_id}/receipt")
async def get_call_receipt(call_id: str):
    receipt = _market().receipts.get(call_id)
    if not receipt:
        raise HTTPException(status_code=404, detail="Call not found")
    return receipt.to_dict()


@app.get("/events")
async def get_events(since: int = 0, event_type: Optional[str] = None, limit: int = 100):
    return {"events": _market().db.get_events(since_seq=since, event_type=event_type, limit=limit)}


@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from ..observability.metrics import metrics_registry, update_metrics

    update_metrics(_market())
    return Response(content=generate_latest(metrics_registry), media_type=CONTENT_TYPE_LATEST)
