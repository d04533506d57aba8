from __future__ import annotations

import json
import logging

from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from stockline.core.errors import DomainError
from stockline.services.idempotency import IdempotencyGuard


logger = logging.getLogger(__name__)

KEY_HEADERS = ("idempotency-key", "x-idempotency-key")
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
REPLAY_HEADER = "Idempotent-Replayed"
# Response headers worth carrying over to a replay.
_REPLAYED_HEADERS = ("location", "content-type")


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """
    Replays the stored response for a retried mutating request instead of running it again.

    Requests without a key pass straight through unless their path is in `required_prefixes`.
    Server errors are not stored, so a retry after a 5xx runs the handler again.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        guard: IdempotencyGuard,
        path_prefix: str = "/api/v1",
        required_prefixes: tuple[str, ...] = (),
    ) -> None:
        super().__init__(app)
        self.guard = guard
        self.path_prefix = path_prefix
        self.required_prefixes = required_prefixes

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if request.method not in MUTATING_METHODS or not path.startswith(self.path_prefix):
            return await call_next(request)

        key = next((request.headers[h] for h in KEY_HEADERS if request.headers.get(h)), None)
        required = any(path.startswith(p) for p in self.required_prefixes)
        try:
            decision = await self.guard.before(key, method=request.method, path=path, required=required)
        except DomainError as e:
            return JSONResponse(status_code=e.status_code, content={"detail": e.to_detail()})

        if decision.replay is not None:
            headers = dict(decision.replay.headers)
            headers[REPLAY_HEADER] = "true"
            if decision.key:
                headers["X-Idempotency-Key"] = decision.key
            return JSONResponse(status_code=decision.replay.status_code, content=decision.replay.body, headers=headers)

        if decision.fingerprint is None:
            return await call_next(request)

        try:
            response = await call_next(request)
            body = b"".join([chunk async for chunk in response.body_iterator])  # type: ignore[attr-defined]
        except Exception:
            await self.guard.release(decision.fingerprint)
            raise

        stored = False
        if response.status_code < 500:
            try:
                payload = json.loads(body) if body else None
            except ValueError:
                logger.warning("Non-JSON response not stored for idempotent replay", extra={"path": path})
            else:
                await self.guard.after(
                    decision.fingerprint,
                    status_code=response.status_code,
                    body=payload,
                    headers={h: response.headers[h] for h in _REPLAYED_HEADERS if h in response.headers},
                )
                stored = True
        if not stored:
            await self.guard.release(decision.fingerprint)

        headers = dict(response.headers)
        headers["X-Idempotency-Key"] = decision.key or ""
        headers.pop("content-length", None)
        return Response(content=body, status_code=response.status_code, headers=headers)
