#!/usr/bin/env python3
"""
NFTGATE Flask API
=================

REST and WebSocket boundary for the firewall rule editor.

Features:
- Ruleset listing with rendered display text per rule
- Add, edit and delete by kernel handle
- Default context and offered choices for new rules
- Privileged command log and audit log
- WebSocket push when the ruleset changes

Author: Team NFTGATE
"""

from datetime import datetime
from typing import Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_socketio import SocketIO, emit
from loguru import logger

from core.api_auth import APIAuthManager, Role, require_auth
from core.errors import ERR_GENERIC_INVALID_REQUEST, FirewallError
from core.mutation_orchestrator import Draft, MutationResult


WARNING_HEADER = "X-Start-Warning"

# Global SocketIO instance (initialized in create_app)
socketio = None


def create_app(config: dict, engine=None, auth_manager: Optional[APIAuthManager] = None) -> Flask:
    """
    Create and configure Flask application.

    Args:
        config: Application configuration dict
        engine: FirewallEngine instance
        auth_manager: APIAuthManager; built from config when omitted

    Returns:
        Configured Flask app
    """
    global socketio

    app = Flask(__name__)

    # Configuration
    api_config = config.get("api", {})
    app.config["SECRET_KEY"] = api_config.get("secret_key", "nftgate-secret-key")
    app.config["DEBUG"] = config.get("general", {}).get("debug", False)
    app.config["AUTH_MANAGER"] = auth_manager or APIAuthManager.from_config(config)

    # Enable CORS
    CORS(app, origins=api_config.get("cors_origins", "*"),
         expose_headers=[WARNING_HEADER])

    # Initialize SocketIO
    ws_config = api_config.get("websocket", {})
    socketio = SocketIO(
        app,
        cors_allowed_origins="*",
        ping_interval=ws_config.get("ping_interval", 25),
        ping_timeout=ws_config.get("ping_timeout", 120),
        async_mode="threading"
    )

    app.engine = engine
    app.config_data = config

    register_routes(app)
    register_error_handlers(app)
    register_socket_events(socketio, app)

    logger.info("Flask app created successfully")
    return app


def _client_ip() -> str:
    return request.headers.get("X-Forwarded-For", request.remote_addr or "").split(",")[0].strip()


def _current_user() -> str:
    return getattr(request, "user", {}).get("username", "anonymous")


def _mutation_response(result: MutationResult, status: int = 200):
    emit_ruleset_changed(result)
    body = result.to_dict()
    body["timestamp"] = datetime.now().isoformat()
    response = jsonify(body)
    response.status_code = status
    if result.snapshot is not None and result.snapshot.warning:
        response.headers[WARNING_HEADER] = result.snapshot.warning
    return response


def register_routes(app: Flask):
    """Register all REST API routes."""

    def not_initialized():
        return jsonify({"success": False, "error": "Not initialized"}), 503

    def request_body() -> dict:
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            raise FirewallError("Request body must be a JSON object",
                                code=ERR_GENERIC_INVALID_REQUEST)
        return data

    # =========================================================================
    # API Routes - Status
    # =========================================================================

    @app.route("/api/health")
    def health_check():
        """Health check endpoint."""
        return jsonify({
            "status": "healthy",
            "service": "NFTGATE",
            "version": app.config_data.get("general", {}).get("version", "1.0.0"),
            "timestamp": datetime.now().isoformat()
        })

    @app.route("/api/status")
    @require_auth()
    def get_status():
        """Get engine status."""
        if not app.engine:
            return not_initialized()

        return jsonify({
            "success": True,
            "data": app.engine.get_status(),
            "timestamp": datetime.now().isoformat()
        })

    # =========================================================================
    # API Routes - Auth
    # =========================================================================

    @app.route("/api/auth/login", methods=["POST"])
    def login():
        """Authenticate user and return JWT token."""
        data = request.get_json(silent=True) or {}
        manager: APIAuthManager = app.config["AUTH_MANAGER"]

        result = manager.login(data.get("username", ""), data.get("password", ""))
        if not result:
            return jsonify({"success": False, "error": "Invalid credentials"}), 401

        return jsonify({"success": True, **result})

    # =========================================================================
    # API Routes - Firewall
    # =========================================================================

    @app.route("/api/firewall", methods=["GET"])
    @require_auth()
    def list_rules():
        """List the live ruleset."""
        if not app.engine:
            return not_initialized()

        snapshot = app.engine.get_rules()
        response = jsonify({
            "success": True,
            "data": snapshot.ruleset.to_list(),
            "count": len(snapshot.ruleset),
            "degraded": snapshot.degraded,
            "timestamp": datetime.now().isoformat()
        })
        if snapshot.warning:
            response.headers[WARNING_HEADER] = snapshot.warning
        return response

    @app.route("/api/firewall", methods=["POST"])
    @require_auth(required_role=Role.OPERATOR)
    def add_rule():
        """Add a rule. Edits go through PUT /api/firewall/<handle>."""
        if not app.engine:
            return not_initialized()

        data = request_body()
        data.pop("origin_handle", None)
        draft = Draft.from_dict(data)
        result = app.engine.add(draft, user=_current_user(), ip_address=_client_ip())
        return _mutation_response(result, 201)

    @app.route("/api/firewall/<handle>", methods=["PUT"])
    @require_auth(required_role=Role.OPERATOR)
    def edit_rule(handle: str):
        """Replace the rule at ``handle`` with the submitted draft."""
        if not app.engine:
            return not_initialized()

        data = request_body()
        data["origin_handle"] = handle
        draft = Draft.from_dict(data)
        result = app.engine.submit(draft, user=_current_user(), ip_address=_client_ip())
        return _mutation_response(result)

    @app.route("/api/firewall", methods=["DELETE"])
    @require_auth(required_role=Role.OPERATOR)
    def delete_rule():
        """Delete a rule by family, table, chain and handle."""
        if not app.engine:
            return not_initialized()

        args = request.args
        result = app.engine.delete(
            args.get("family", ""), args.get("table", ""), args.get("chain", ""),
            args.get("handle", ""), user=_current_user(), ip_address=_client_ip())
        return _mutation_response(result)

    @app.route("/api/firewall/context")
    @require_auth()
    def get_context():
        """Default context for a new rule and the offered choices."""
        if not app.engine:
            return not_initialized()

        return jsonify({
            "success": True,
            "data": app.engine.get_context(),
            "timestamp": datetime.now().isoformat()
        })

    @app.route("/api/firewall/tables")
    @require_auth()
    def get_tables():
        """Tables with their chains."""
        if not app.engine:
            return not_initialized()

        tables = app.engine.get_tables()
        return jsonify({
            "success": True,
            "data": tables,
            "count": len(tables),
            "timestamp": datetime.now().isoformat()
        })

    @app.route("/api/firewall/commands")
    @require_auth(required_role=Role.ADMIN)
    def get_commands():
        """Recent privileged command executions."""
        if not app.engine:
            return not_initialized()

        limit = request.args.get("limit", 50, type=int)
        commands = app.engine.get_recent_commands(limit)
        return jsonify({
            "success": True,
            "data": commands,
            "count": len(commands)
        })

    # =========================================================================
    # API Routes - Audit
    # =========================================================================

    @app.route("/api/audit")
    @require_auth(required_role=Role.ADMIN)
    def get_audit():
        """Audit trail of rule changes."""
        if not app.engine:
            return not_initialized()

        entries = app.engine.audit_log.get_logs(
            action=request.args.get("action"),
            user=request.args.get("user"),
            limit=request.args.get("limit", 100, type=int),
        )
        return jsonify({
            "success": True,
            "data": entries,
            "count": len(entries)
        })


def register_error_handlers(app: Flask):
    """Translate engine exceptions to JSON."""

    @app.errorhandler(FirewallError)
    def firewall_error(e: FirewallError):
        status = e.http_status
        if e.code == ERR_GENERIC_INVALID_REQUEST:
            status = 400
        logger.warning(f"Request failed [{e.code}] {type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), status

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({
            "success": False,
            "error": "Not found"
        }), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({
            "success": False,
            "error": "Method not allowed"
        }), 405

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({
            "success": False,
            "error": "Internal server error"
        }), 500


def register_socket_events(socketio: SocketIO, app: Flask):
    """Register WebSocket event handlers."""

    @socketio.on("connect")
    def handle_connect():
        """Handle client connection."""
        logger.debug("WebSocket client connected")
        emit("connected", {
            "message": "Connected to NFTGATE",
            "timestamp": datetime.now().isoformat()
        })

    @socketio.on("disconnect")
    def handle_disconnect():
        """Handle client disconnection."""
        logger.debug("WebSocket client disconnected")

    @socketio.on("request_rules")
    def handle_rules_request():
        """Push the current ruleset to the asking client."""
        if app.engine:
            try:
                snapshot = app.engine.get_rules()
            except FirewallError as e:
                emit("error", e.to_dict())
                return
            emit("rules_update", snapshot.to_dict())


def emit_ruleset_changed(result: MutationResult):
    """Tell connected dashboards to re-fetch."""
    global socketio
    if socketio:
        socketio.emit("ruleset_changed", {
            "operation": result.operation,
            "handle": result.handle,
            "removed_handle": result.removed_handle,
            "timestamp": datetime.now().isoformat()
        })
