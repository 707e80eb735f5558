"""FastAPI app: webhook endpoint and OAuth redirect callback. Responds first, works after."""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse, Response

from action_gate.infrastructure import signing
from action_gate.orchestration.runtime import ServiceRuntime

logger = logging.getLogger(__name__)


def create_app(runtime: ServiceRuntime) -> FastAPI:
    platform = runtime.config.platform

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await runtime.shutdown()

    app = FastAPI(title=runtime.config.name, lifespan=lifespan)
    app.state.runtime = runtime

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post(platform.webhook_path)
    async def receive_webhook(request: Request, background: BackgroundTasks) -> Response:
        """
        Platform webhook.

        - Rejects bodies whose X-OUTBOUND-TOKEN does not match (when verification is on)
        - Answers verification challenges synchronously
        - Acknowledges everything else at once and gates/dispatches in the background
        """
        raw = await request.body()
        if platform.verify_signatures and not signing.verify(
            platform.webhook_secret, raw, request.headers.get(signing.SIGNATURE_HEADER)
        ):
            logger.warning("Webhook with invalid signature rejected")
            raise HTTPException(status_code=403, detail="Invalid signature")

        try:
            body = json.loads(raw)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON")

        if signing.is_challenge(body):
            payload, signature = signing.challenge_response(platform.webhook_secret, body)
            return Response(
                content=payload,
                media_type="application/json",
                headers={signing.SIGNATURE_HEADER: signature},
            )

        logger.debug("Received event %s", body.get("type") if isinstance(body, dict) else type(body).__name__)
        background.add_task(runtime.handle_event, body)
        return Response(status_code=200)

    @app.get("/oauth2callback")
    async def oauth_callback(
        background: BackgroundTasks,
        code: str = Query(default=""),
        state: str = Query(default=""),
    ) -> PlainTextResponse:
        """Provider redirect after login; `state` carries the user id."""
        logger.info("OAuth callback received for %s", state or "<no state>")
        background.add_task(runtime.handle_oauth_callback, code, state)
        return PlainTextResponse(runtime.config.callback_message)

    return app
