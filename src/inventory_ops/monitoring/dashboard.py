"""
Review dashboard (Flask).

Read-only views of health and circuit breakers, plus the one write the
agent accepts from humans: a review decision on a recommendation.

Set DASHBOARD_API_KEY to require an X-API-Key header (or api_key query
parameter) on every request. The server binds to localhost by default.
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import os
from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Coroutine, Dict, Optional

from flask import Flask, Response, abort, jsonify, request

from inventory_ops.errors import (
    InvalidTransitionError,
    PersistenceError,
    RecommendationNotFoundError,
)
from inventory_ops.storage.models import (
    RecommendationStatus,
    RecommendationType,
    Severity,
)

if TYPE_CHECKING:
    from inventory_ops.core.supervisor import SupervisorLoop

logger = logging.getLogger(__name__)

DASHBOARD_API_KEY = os.environ.get("DASHBOARD_API_KEY")

# Query parameters accepted by the recommendation listing
RECOMMENDATION_FILTERS = {
    "type": RecommendationType,
    "priority": Severity,
    "status": RecommendationStatus,
}

# Errors from the store or the loop bridge
BACKEND_ERRORS = (PersistenceError, RuntimeError, TimeoutError)


class Dashboard:
    """
    Flask front end over a SupervisorLoop.

    Endpoints:
        GET  /health                              Last known aggregate health
        GET  /api/breakers                        Circuit breaker states
        GET  /api/recommendations                 Recommendations (?type=&priority=&status=)
        POST /api/recommendations/<id>/status     Review decision {"status", "reviewed_by"}

    Flask serves from its own thread; coroutines are handed to event_loop,
    the loop that owns the asyncpg pool.

    Usage:
        dashboard = Dashboard(supervisor, event_loop=asyncio.get_running_loop())
        app = dashboard.create_app()
    """

    def __init__(
        self,
        supervisor: "SupervisorLoop",
        event_loop: Optional[asyncio.AbstractEventLoop] = None,
        call_timeout: float = 10.0,
    ) -> None:
        self._supervisor = supervisor
        self._event_loop = event_loop
        self._call_timeout = call_timeout

    def _await(self, coro: Coroutine[Any, Any, Any]) -> Any:
        """
        Run coro on the agent's loop and wait for its result.

        Without a loop (tests) it runs on a throwaway loop.

        Raises:
            RuntimeError: The loop has stopped (shutdown in progress)
            TimeoutError: No result within call_timeout
        """
        loop = self._event_loop
        if loop is None:
            return asyncio.run(coro)

        if loop.is_closed() or not loop.is_running():
            coro.close()
            raise RuntimeError("Agent event loop is not running")

        future = asyncio.run_coroutine_threadsafe(coro, loop)
        try:
            return future.result(timeout=self._call_timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise TimeoutError(f"No result after {self._call_timeout}s")

    def create_app(self, testing: bool = False) -> Flask:
        app = Flask(__name__)
        app.config["TESTING"] = testing
        app.before_request(self._check_api_key)

        app.add_url_rule("/health", view_func=self.health)
        app.add_url_rule("/api/breakers", view_func=self.breakers)
        app.add_url_rule("/api/recommendations", view_func=self.list_recommendations)
        app.add_url_rule(
            "/api/recommendations/<recommendation_id>/status",
            view_func=self.review_recommendation,
            methods=["POST"],
        )
        return app

    @staticmethod
    def _check_api_key() -> None:
        if not DASHBOARD_API_KEY:
            return
        supplied = request.headers.get("X-API-Key") or request.args.get("api_key")
        if supplied != DASHBOARD_API_KEY:
            logger.warning(f"Rejected dashboard request from {request.remote_addr}")
            abort(401)

    # =========================================================================
    # Views
    # =========================================================================

    def health(self) -> Response:
        """Last known health; stale data is served rather than nothing."""
        status = self._supervisor.get_health_status()
        if status is None:
            return jsonify({"status": "unknown", "message": "No health check completed yet"}), 503
        return jsonify(status.to_dict()), 503 if status.status.value == "critical" else 200

    def breakers(self) -> Response:
        snapshots = self._supervisor.context.breakers.snapshots()
        return jsonify({
            "breakers": {name: {**asdict(s), "state": s.state.value} for name, s in snapshots.items()}
        })

    def list_recommendations(self) -> Response:
        filters: Dict[str, Any] = {}
        for name, enum_cls in RECOMMENDATION_FILTERS.items():
            raw = request.args.get(name)
            if raw is None:
                continue
            try:
                filters[name] = enum_cls(raw)
            except ValueError:
                return jsonify({"error": f"Invalid {name}: {raw}"}), 400

        try:
            found = self._await(self._supervisor.get_recommendations(filters))
        except BACKEND_ERRORS as e:
            logger.error(f"Listing recommendations failed: {e}")
            return jsonify({"recommendations": [], "error": str(e)}), 500

        return jsonify({"recommendations": [r.model_dump(mode="json") for r in found]})

    def review_recommendation(self, recommendation_id: str) -> Response:
        body = request.get_json(silent=True) or {}
        try:
            status = RecommendationStatus(body.get("status"))
        except ValueError:
            return jsonify({"error": f"Invalid status: {body.get('status')}"}), 400

        try:
            updated = self._await(self._supervisor.update_recommendation_status(
                recommendation_id, status, body.get("reviewed_by")
            ))
        except RecommendationNotFoundError as e:
            return jsonify({"error": str(e)}), 404
        except InvalidTransitionError as e:
            return jsonify({"error": str(e)}), 409
        except BACKEND_ERRORS as e:
            logger.error(f"Review of {recommendation_id} failed: {e}")
            return jsonify({"error": str(e)}), 500

        return jsonify(updated.model_dump(mode="json"))
