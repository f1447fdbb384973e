from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse

from curlara.features.entitlements.gate import AccessGate, GateRequest


class AccessGateMiddleware(BaseHTTPMiddleware):
    """Redirect protected paths to the entry point unless the gate allows them.

    The gate is read from ``app.state.access_gate`` at request time when not
    passed in, so tests can swap it after the app is built.
    """

    def __init__(self, app, gate: AccessGate | None = None):
        super().__init__(app)
        self.gate = gate

    async def dispatch(self, request, call_next):
        gate = self.gate or getattr(request.app.state, "access_gate", None)
        path = request.url.path
        if gate is None or path.startswith("/api/") or not gate.protects(path):
            return await call_next(request)

        decision = gate.evaluate(
            GateRequest(
                path=path,
                cookies=dict(request.cookies),
                authorization=request.headers.get("authorization"),
            )
        )
        request.state.gate_decision = decision
        if not decision.allowed:
            return RedirectResponse(url=decision.redirect_to or "/", status_code=307)
        return await call_next(request)
