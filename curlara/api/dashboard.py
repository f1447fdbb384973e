"""Protected dashboard route; AccessGateMiddleware has already let the request through."""
from fastapi import APIRouter, Request

router = APIRouter(tags=["dashboard"])


@router.get("/dashboard")
def dashboard(request: Request):
    decision = getattr(request.state, "gate_decision", None)
    return {
        "page": "dashboard",
        "userId": decision.subject_id if decision else None,
        "access": decision.state.value if decision else None,
    }
