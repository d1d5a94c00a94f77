"""
Routes for the bulk send server.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Iterator

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse

from easysend.common.exceptions import AuthenticationError, EasySendError
from easysend.common.models import (
    ActivateRequest,
    IssueLicenseRequest,
    LoginRequest,
    SendMessagesRequest,
    SettingsRequest,
    SignupRequest,
    TemplateRequest,
    Topic,
    VerifyRequest,
)
from easysend.server.license_coordinator import public_user

if TYPE_CHECKING:
    from easysend.common.config import Config
    from easysend.common.models import UserRecord
    from easysend.server.accounts import AccountService
    from easysend.server.broadcaster import ProgressBroadcaster
    from easysend.server.license_coordinator import LicenseCoordinator
    from easysend.server.services import SendService
    from easysend.server.session_coordinator import SessionCoordinator

EVENT_POLL_SECONDS = 15.0


def _bearer(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        msg = "Access token required"
        raise AuthenticationError(msg)
    return authorization.removeprefix("Bearer ").strip()


class SendRoutes:
    """Handles FastAPI routes for the bulk send server."""

    def __init__(  # noqa: PLR0913
        self,
        config: Config,
        service: SendService,
        accounts: AccountService,
        licenses: LicenseCoordinator,
        session: SessionCoordinator,
        broadcaster: ProgressBroadcaster,
    ):
        self.config = config
        self.service = service
        self.accounts = accounts
        self.licenses = licenses
        self.session = session
        self.broadcaster = broadcaster

    def setup_routes(self, app: FastAPI) -> None:
        """Setup API routes on the FastAPI app."""

        @app.exception_handler(EasySendError)
        async def handle_domain_error(
            _request: Request, exc: EasySendError
        ) -> JSONResponse:
            return JSONResponse({"detail": str(exc)}, status_code=exc.status_code)

        app.get("/health")(self.health)
        app.get("/api/status")(self.status)
        app.get("/api/events")(self.events)

        app.post("/api/session/link")(self.request_link)
        app.post("/api/session/reset")(self.reset_session)
        app.post("/api/session/logout")(self.logout_session)

        app.post("/api/signup")(self.signup)
        app.post("/api/login")(self.login)
        app.get("/api/user/profile")(self.profile)

        app.post("/api/licenses/activate")(self.activate_license)
        app.post("/api/licenses/verify")(self.verify_license)
        app.post("/api/licenses/heartbeat")(self.heartbeat)

        app.post("/api/send-messages")(self.send_messages)
        app.get("/api/logs")(self.logs)
        app.get("/api/stats")(self.stats)

        app.get("/api/templates")(self.list_templates)
        app.post("/api/templates")(self.create_template)
        app.put("/api/templates/{template_id}")(self.update_template)
        app.delete("/api/templates/{template_id}")(self.delete_template)

        app.get("/api/admin/licenses")(self.admin_licenses)
        app.post("/api/admin/licenses")(self.admin_issue_license)
        app.post("/api/admin/sweep")(self.admin_sweep)
        app.get("/api/admin/stats")(self.admin_stats)
        app.get("/api/admin/users")(self.admin_users)
        app.get("/api/admin/settings")(self.admin_settings)
        app.post("/api/admin/settings")(self.admin_update_settings)
        app.get("/api/public/settings")(self.public_settings)

    def _user(self, authorization: str | None) -> UserRecord:
        return self.accounts.authenticate(_bearer(authorization))

    def _admin(self, authorization: str | None) -> UserRecord:
        return self.accounts.require_admin(_bearer(authorization))

    # Status

    async def health(self) -> dict[str, Any]:
        """Handle /health endpoint."""
        return self.service.health()

    async def status(self) -> dict[str, Any]:
        return self.service.status()

    async def events(self) -> StreamingResponse:
        """Server-sent events: current session state, then every new event."""
        subscription = self.broadcaster.subscribe()
        current = self.session.get_state().model_dump(mode="json")

        def stream() -> Iterator[str]:
            try:
                yield _sse(Topic.SESSION_STATE.value, current)
                while True:
                    event = subscription.get(timeout=EVENT_POLL_SECONDS)
                    if subscription.closed:
                        return
                    if event is None:
                        yield ": keep-alive\n\n"
                        continue
                    yield _sse(event.topic.value, event.payload)
            finally:
                subscription.close()

        return StreamingResponse(stream(), media_type="text/event-stream")

    # Session

    async def request_link(self) -> dict[str, Any]:
        started = self.session.request_link()
        return {"requested": started, "state": self.session.get_state().state.value}

    async def reset_session(self, authorization: str | None = Header(None)) -> dict:
        self._admin(authorization)
        self.session.reset()
        self.session.request_link()
        return {"state": self.session.get_state().state.value}

    async def logout_session(self, authorization: str | None = Header(None)) -> dict:
        self._user(authorization)
        self.session.logout()
        return {"success": True, "message": "Logged out successfully"}

    # Accounts

    async def signup(self, req: SignupRequest) -> dict[str, Any]:
        user, token = self.accounts.signup(req.email, req.password, req.name, req.phone)
        return {"success": True, "token": token, "user": self._profile(user)}

    async def login(self, req: LoginRequest) -> dict[str, Any]:
        user, token = self.accounts.login(req.email, req.password)
        return {"success": True, "token": token, "user": self._profile(user)}

    async def profile(self, authorization: str | None = Header(None)) -> dict:
        return self._profile(self._user(authorization))

    def _profile(self, user: UserRecord) -> dict[str, Any]:
        summary = self.licenses.license_summary(user.id)
        return {
            **public_user(user),
            "license_key": user.current_license_key,
            "license_expires_at": user.current_license_expires_at,
            "license": summary.model_dump(mode="json"),
        }

    # Licenses

    async def activate_license(
        self, req: ActivateRequest, authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        user = self._user(authorization)
        result = self.licenses.activate(req.license_key, user.id)
        return {"success": True, **result.model_dump(mode="json")}

    async def verify_license(self, req: VerifyRequest) -> dict[str, Any]:
        result = self.licenses.verify(req.license_key, req.machine_id)
        return {**result.model_dump(mode="json"), "offline": result.offline}

    async def heartbeat(self, req: VerifyRequest) -> dict[str, Any]:
        result = self.licenses.heartbeat(req.license_key, req.machine_id)
        return {"success": True, "expires_at": result.expires_at}

    # Dispatch

    async def send_messages(
        self, req: SendMessagesRequest, authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        user = self._user(authorization)
        accepted = self.service.send_messages(user, req)
        return {
            "success": True,
            "message": "Message sending started",
            "job_id": accepted.job_id,
            "total": accepted.total,
        }

    async def logs(
        self, limit: int = 100, authorization: str | None = Header(None)
    ) -> list[dict[str, Any]]:
        user = self._user(authorization)
        return [o.model_dump(mode="json") for o in self.service.logs(user, limit)]

    async def stats(self, authorization: str | None = Header(None)) -> dict:
        return self.service.stats(self._user(authorization))

    # Templates

    async def list_templates(self, authorization: str | None = Header(None)) -> list:
        user = self._user(authorization)
        return [t.model_dump(mode="json") for t in self.service.list_templates(user)]

    async def create_template(
        self, req: TemplateRequest, authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        user = self._user(authorization)
        return self.service.create_template(user, req.name, req.message).model_dump(
            mode="json"
        )

    async def update_template(
        self,
        template_id: int,
        req: TemplateRequest,
        authorization: str | None = Header(None),
    ) -> dict[str, Any]:
        user = self._user(authorization)
        template = self.service.update_template(template_id, user, req.name, req.message)
        return template.model_dump(mode="json")

    async def delete_template(
        self, template_id: int, authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        self.service.delete_template(template_id, self._user(authorization))
        return {"success": True}

    # Admin

    async def admin_licenses(self, authorization: str | None = Header(None)) -> list:
        self._admin(authorization)
        return [lic.model_dump(mode="json") for lic in self.licenses.list_licenses()]

    async def admin_issue_license(
        self, req: IssueLicenseRequest, authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        self._admin(authorization)
        lic = self.licenses.issue(
            req.plan_name or self.config.DEFAULT_PLAN_NAME,
            req.price if req.price is not None else self.config.DEFAULT_PLAN_PRICE,
            req.duration_days or self.config.DEFAULT_PLAN_DURATION_DAYS,
        )
        return lic.model_dump(mode="json")

    async def admin_sweep(self, authorization: str | None = Header(None)) -> dict:
        self._admin(authorization)
        return {"expired": self.licenses.sweep_expirations()}

    async def admin_stats(self, authorization: str | None = Header(None)) -> dict:
        self._admin(authorization)
        return self.licenses.stats()

    async def admin_users(self, authorization: str | None = Header(None)) -> list:
        self._admin(authorization)
        return [
            {
                **public_user(u),
                "license_key": u.current_license_key,
                "license_expires_at": u.current_license_expires_at,
            }
            for u in self.accounts.list_users()
        ]

    async def admin_settings(self, authorization: str | None = Header(None)) -> dict:
        self._admin(authorization)
        return self.service.settings()

    async def admin_update_settings(
        self, req: SettingsRequest, authorization: str | None = Header(None)
    ) -> dict[str, Any]:
        self._admin(authorization)
        return self.service.update_settings(req.settings)

    async def public_settings(self) -> dict[str, Any]:
        return self.service.settings()


def _sse(event: str, data: dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"
