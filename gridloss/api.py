from __future__ import annotations

import logging
import threading
from typing import Any, Optional

from flask import Flask, jsonify
from werkzeug.serving import make_server

from gridloss.config import parse_address
from gridloss.errors import DiagnosticsError

logger = logging.getLogger(__name__)


def create_app(service) -> Flask:
	"""Read-only diagnostics over a started GridLossService."""
	app = Flask(__name__)
	app.config['grid_service'] = service

	@app.get("/healthz")
	def healthz() -> Any:
		service = app.config['grid_service']
		ready = service.index is not None and service.topology_grid is not None
		return jsonify({"status": "ok" if ready else "starting"}), 200 if ready else 503

	@app.get("/snapshot")
	def snapshot() -> Any:
		service = app.config['grid_service']
		index = service.index
		grid = service.topology_grid
		dispatcher = service.dispatcher
		if index is None or grid is None:
			return jsonify({"error": "profiles not loaded"}), 503

		return jsonify({
			"equipment": len(index.equipment_by_id),
			"points": len(index.point_name_by_id),
			"subscribed_points": len(index.resource_by_point_id),
			"cb_checking_links": index.number_of_cb_checking_link,
			"nodes": grid.number_of_nodes(),
			"edges": grid.number_of_edges(),
			"feeders": grid.feeders(),
			"input_queue": dispatcher.input_data_queue.qsize() if dispatcher else 0,
			"output_queue": dispatcher.output_data_queue.qsize() if dispatcher else 0,
		})

	@app.get("/equipment/<int:equipment_id>")
	def equipment(equipment_id: int) -> Any:
		service = app.config['grid_service']
		index = service.index
		if index is None or equipment_id not in index.equipment_by_id:
			return jsonify({"error": f"unknown equipment {equipment_id}"}), 404

		body = index.equipment_by_id[equipment_id].to_dict()
		state = service.topology_grid.equipment_state(equipment_id) if service.topology_grid else None
		if state is not None:
			body["electrical_state"] = int(state.electrical_state)
			body["energized_from"] = sorted(state.energized_from)
			body["grounded_from"] = sorted(state.grounded_from)
			body["switch_state"] = service.topology_grid.switch_state(equipment_id)
		return jsonify(body)

	return app


class DiagnosticsServer:
	"""Serves the diagnostics app from a daemon thread."""

	def __init__(self, app: Flask, address: str) -> None:
		self.host, self.port = parse_address(address)
		try:
			self._server = make_server(self.host, self.port, app, threaded=True)
		except (OSError, SystemExit) as e:
			# werkzeug reports bind failures through sys.exit
			raise DiagnosticsError(f"cannot listen on {self.host}:{self.port}: {e!r}") from e
		self._thread: Optional[threading.Thread] = None

	def start(self) -> None:
		self._thread = threading.Thread(
			target=self._server.serve_forever,
			name="grid-http",
			daemon=True
		)
		self._thread.start()
		logger.info(f"Diagnostics API listening on {self.host}:{self.port}")

	def stop(self) -> None:
		if self._thread:
			self._server.shutdown()
			self._thread.join(timeout=5.0)
		self._server.server_close()
