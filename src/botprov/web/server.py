from __future__ import annotations
import logging
from flask import Flask, jsonify, request

from botprov.app.orchestrator import Provisioner
from botprov.core.auth import (
    AuthError, Cancelled, ConsentRequired, FatalPipelineError, InvalidCode,
    InvalidEndpoint, InvalidRequest, InvalidSession, InvalidState, UnexpectedUpstream
)
from botprov.http.errors import HttpError

log = logging.getLogger(__name__)

_STATUS = {
    InvalidSession: 401,
    InvalidCode: 400,
    InvalidEndpoint: 400,
    InvalidRequest: 400,
    InvalidState: 400,
    ConsentRequired: 403,
    FatalPipelineError: 502,
    UnexpectedUpstream: 502,
    Cancelled: 503,
}


def _status_for(err: AuthError) -> int:
    for cls in type(err).__mro__:
        if cls in _STATUS:
            return _STATUS[cls]
    return 500


def create_app(provisioner: Provisioner | None = None) -> Flask:
    app = Flask(__name__)
    prov = provisioner or Provisioner()
    app.extensions["provisioner"] = prov

    @app.errorhandler(AuthError)
    def _auth_error(err: AuthError):
        body = {"error": str(err), "code": err.code, "hint": err.hint}
        if isinstance(err, ConsentRequired):
            body["needsConsent"] = True
        if isinstance(err, FatalPipelineError):
            body["step"] = err.step
            body["details"] = err.payload
        return jsonify(body), _status_for(err)

    @app.errorhandler(HttpError)
    def _http_error(err: HttpError):
        log.error("Upstream call failed: HTTP %s %s", err.status, err.url)
        return jsonify({"error": str(err), "details": err.payload}), 502

    def _body() -> dict:
        return request.get_json(silent=True) or {}

    @app.get("/api/auth/start")
    def auth_start():
        res = prov.start_auth()
        return jsonify({"authUrl": res["auth_url"], "state": res["state"]})

    @app.post("/api/auth/callback")
    def auth_callback():
        b = _body()
        if not b.get("code"):
            return jsonify({"error": "Missing authorization code"}), 400
        res = prov.complete_auth(b["code"], b.get("state"))
        return jsonify({
            "sessionId": res["session_id"],
            "userInfo": {
                "username": res["user_info"]["username"],
                "tenantId": res["user_info"]["tenant_id"],
            },
        })

    @app.post("/api/auth/check-consent")
    def check_consent():
        result = prov.check_consent(_body().get("sessionId", ""))
        return jsonify(result.to_dict())

    @app.post("/api/check-sideloading")
    def check_sideloading():
        res = prov.check_sideloading(_body().get("sessionId", ""))
        return jsonify({"isSideloadingAllowed": res["is_sideloading_allowed"], "status": res["status"]})

    @app.post("/api/provision")
    def provision():
        b = _body()
        creds = prov.provision(b.get("sessionId", ""), b.get("appName", ""), b.get("messagingEndpoint", ""))
        return jsonify({"success": True, "updated": creds.bot_updated, "credentials": creds.to_dict()})

    @app.post("/api/provision/status")
    def provision_status():
        run = prov.progress(_body().get("sessionId", ""))
        return jsonify({
            "status": run["status"],
            "currentStep": run["step"],
            "completedSteps": run["completed"],
            "error": run["error"],
        })

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "sessions": len(prov.sessions)})

    return app
