"""
Flask web API for the MTP simulator.
Provides REST endpoints for browsing and writing tags, loading descriptors,
controlling the simulation and a server-sent event stream of value changes.
"""
import os
import json
import queue
import logging
import tempfile
import threading
from functools import wraps
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request, Response
from flask_cors import CORS
from flask_login import LoginManager, UserMixin, login_user, logout_user, current_user
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.utils import secure_filename

from interfaces import ValueSink
from models import DescriptorError, StorePersistenceError

logger = logging.getLogger("WebGUI")


class BroadcastSink(ValueSink):
    """
    Fans value changes out to connected stream clients (SRP - browser push only).
    Keeps the latest value per key so new clients start from current state.
    Each client gets a bounded queue; a full queue drops events for that client.
    """

    def __init__(self, max_queue: int = 1000):
        self._max_queue = max_queue
        self._clients: List[queue.Queue] = []
        self._latest: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def connect(self) -> queue.Queue:
        q = queue.Queue(maxsize=self._max_queue)
        with self._lock:
            for key, value in list(self._latest.items())[:self._max_queue]:
                q.put_nowait(('value', key, value))
            self._clients = self._clients + [q]
        logger.info(f"Stream client connected ({len(self._clients)} total)")
        return q

    def disconnect(self, q: queue.Queue) -> None:
        with self._lock:
            self._clients = [c for c in self._clients if c is not q]
        logger.info(f"Stream client disconnected ({len(self._clients)} total)")

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def latest(self) -> Dict[str, Any]:
        """Snapshot of the last value seen per key."""
        with self._lock:
            return dict(self._latest)

    def _publish(self, event: str, key: str, value: Any) -> None:
        for q in self._clients:
            try:
                q.put_nowait((event, key, value))
            except queue.Full:
                logger.debug(f"Stream client queue full, dropping {event} for {key}")

    def update_value(self, key: str, value: Any) -> None:
        with self._lock:
            self._latest[key] = value
        self._publish('value', key, value)

    def value_written(self, key: str, value: Any) -> None:
        self._publish('externalWrite', key, value)

    def tree_loaded(self, variables: list) -> None:
        with self._lock:
            self._latest = {}
        self._publish('variables', None, [info.to_dict() for info in variables])


def format_event(event: str, key: Optional[str], value: Any) -> str:
    """Encode one server-sent event. Events without a key carry the value as is."""
    data = value if key is None else {'nodeId': key, 'value': value}
    payload = json.dumps(data, default=str)
    return f"event: {event}\ndata: {payload}\n\n"


class User(UserMixin):
    """Simple user model (SRP - just user data)."""

    def __init__(self, id: str, username: str, password_hash: str, role: str = "viewer"):
        self.id = id
        self.username = username
        self.password_hash = password_hash
        self.role = role  # "admin" or "viewer"

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)


class UserStore:
    """
    Simple in-memory user store (SRP - just user storage).
    """

    def __init__(self):
        self._users = {}
        # Default users - passwords from env or defaults
        admin_pass = os.environ.get("ADMIN_PASSWORD", "admin123")
        viewer_pass = os.environ.get("VIEWER_PASSWORD", "viewer123")

        self.add_user("1", "admin", admin_pass, "admin")
        self.add_user("2", "viewer", viewer_pass, "viewer")

    def add_user(self, id: str, username: str, password: str, role: str = "viewer"):
        self._users[id] = User(id, username, generate_password_hash(password), role)
        self._users[username] = self._users[id]  # Index by username too

    def get_by_id(self, user_id: str) -> User:
        return self._users.get(user_id)

    def get_by_username(self, username: str) -> User:
        return self._users.get(username)


def create_app(simulator, broadcaster: BroadcastSink = None) -> Flask:
    """
    Factory function to create Flask app with injected simulator (DIP).
    """
    app = Flask(__name__)

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get("SECRET_KEY", "dev-secret-change-in-production")
    app.config['simulator'] = simulator
    app.config['broadcaster'] = broadcaster

    CORS(app, supports_credentials=True)

    # Setup Flask-Login
    login_manager = LoginManager()
    login_manager.init_app(app)

    # User store
    user_store = UserStore()
    app.config['user_store'] = user_store

    @login_manager.user_loader
    def load_user(user_id):
        return user_store.get_by_id(user_id)

    def api_login_required(f):
        """Decorator for API routes - returns JSON error instead of redirect."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401
            return f(*args, **kwargs)
        return decorated

    def admin_required(f):
        """Decorator for admin-only routes."""
        @wraps(f)
        def decorated(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401
            if current_user.role != 'admin':
                return jsonify({'error': 'Admin access required'}), 403
            return f(*args, **kwargs)
        return decorated

    # --- Auth Routes ---

    @app.route('/api/login', methods=['POST'])
    def login():
        """Log in with a JSON {username, password} body."""
        data = request.get_json(silent=True) or {}
        username = str(data.get('username', '')).strip()
        password = str(data.get('password', ''))

        user = user_store.get_by_username(username)
        if user and user.check_password(password):
            login_user(user, remember=bool(data.get('remember', False)))
            logger.info(f"User '{username}' logged in")
            return jsonify({'success': True, 'username': user.username, 'role': user.role})

        logger.warning(f"Failed login attempt for '{username}'")
        return jsonify({'error': 'Invalid username or password'}), 401

    @app.route('/api/logout', methods=['POST'])
    @api_login_required
    def logout():
        """Logout handler."""
        logger.info(f"User '{current_user.username}' logged out")
        logout_user()
        return jsonify({'success': True})

    @app.route('/api/user')
    @api_login_required
    def get_current_user():
        """Get current user info."""
        return jsonify({
            'username': current_user.username,
            'role': current_user.role
        })

    # --- REST API Routes (protected) ---

    @app.route('/api/status')
    @api_login_required
    def get_status():
        """Get simulator status."""
        return jsonify(app.config['simulator'].status())

    @app.route('/api/variables')
    @api_login_required
    def get_variables():
        """Get every variable leaf with its latest resolved value."""
        sim = app.config['simulator']
        return jsonify([info.to_dict() for info in sim.variables()])

    @app.route('/api/overrides')
    @api_login_required
    def get_overrides():
        """Get all persisted overrides."""
        sim = app.config['simulator']
        try:
            return jsonify(sim.overrides())
        except StorePersistenceError as e:
            logger.error(f"Listing overrides failed: {e}")
            return jsonify({'error': str(e)}), 500

    @app.route('/api/write', methods=['POST'])
    @admin_required
    def write_value():
        """Write a tag value (persisted override)."""
        sim = app.config['simulator']
        data = request.get_json(silent=True) or {}
        node_id = data.get('nodeId')
        if not node_id:
            return jsonify({'success': False, 'error': 'nodeId required'}), 400
        value = data.get('value')
        if value is None:
            value = ""

        try:
            key = sim.write(str(node_id), value)
        except StorePersistenceError as e:
            logger.error(f"Write of {node_id} failed: {e}")
            return jsonify({'success': False, 'error': str(e)}), 500

        logger.info(f"User '{current_user.username}' wrote {key} = {value!r}")
        return jsonify({'success': True, 'nodeId': key, 'value': value})

    @app.route('/api/mtp/upload', methods=['POST'])
    @admin_required
    def upload_mtp():
        """Load a descriptor uploaded as multipart/form-data."""
        sim = app.config['simulator']
        upload = next(iter(request.files.values()), None)
        if upload is None or not upload.filename:
            return jsonify({'success': False, 'error': 'file missing'}), 400

        filename = secure_filename(upload.filename) or "upload"
        suffix = os.path.splitext(filename)[1]
        fd, temp_path = tempfile.mkstemp(suffix=suffix)
        try:
            with os.fdopen(fd, 'wb') as f:
                upload.save(f)
            root = sim.load_file(temp_path, source=filename)
        except DescriptorError as e:
            logger.warning(f"Upload of {filename} rejected: {e}")
            return jsonify({'success': False, 'error': str(e)}), 400
        finally:
            os.unlink(temp_path)

        count = sum(1 for _ in sim.variables())
        logger.info(f"User '{current_user.username}' loaded {filename} ({count} variables)")
        return jsonify({'success': True, 'count': count, 'name': root.display_name})

    @app.route('/api/stream')
    @api_login_required
    def stream():
        """Server-sent events: 'value' and 'externalWrite'."""
        broadcaster = app.config['broadcaster']
        if broadcaster is None:
            return jsonify({'error': 'Streaming not enabled'}), 404
        client = broadcaster.connect()

        def generate():
            try:
                yield ": connected\n\n"
                while True:
                    try:
                        event, key, value = client.get(timeout=15)
                    except queue.Empty:
                        yield ": keep-alive\n\n"
                        continue
                    yield format_event(event, key, value)
            finally:
                broadcaster.disconnect(client)

        return Response(generate(), mimetype='text/event-stream',
                        headers={'Cache-Control': 'no-cache'})

    # --- Simulation Control Routes ---

    @app.route('/api/simulation/start', methods=['POST'])
    @admin_required
    def start_simulation():
        sim = app.config['simulator']
        sim.start()
        return jsonify({'success': True, 'running': True})

    @app.route('/api/simulation/stop', methods=['POST'])
    @admin_required
    def stop_simulation():
        sim = app.config['simulator']
        sim.stop()
        return jsonify({'success': True, 'running': False})

    # --- Admin Configuration Routes ---

    @app.route('/api/admin/config', methods=['GET'])
    @admin_required
    def get_config():
        """Get current simulation settings."""
        return jsonify(app.config['simulator'].config.describe())

    @app.route('/api/admin/config', methods=['POST'])
    @admin_required
    def update_config():
        """Update simulation settings and save them."""
        sim = app.config['simulator']
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'error': 'JSON object required'}), 400

        try:
            results = sim.update_config(data)
        except OSError as e:
            logger.error(f"Config save failed: {e}")
            return jsonify({'error': str(e)}), 500

        logger.info(f"Admin '{current_user.username}' updated simulation config")
        return jsonify({'success': all(results.values()), 'results': results,
                        'config': sim.config.to_dict()})

    return app


class WebServer:
    """
    Web server wrapper following ProtocolServer pattern (SRP).
    """

    def __init__(self, simulator, host: str = "0.0.0.0", port: int = 5288,
                 broadcaster: BroadcastSink = None):
        self._simulator = simulator
        self._host = host
        self._port = port
        self._broadcaster = broadcaster
        self._app = None
        self._server = None
        self._thread = None

    def start(self) -> None:
        """Start the web server in a background thread."""
        from werkzeug.serving import make_server

        self._app = create_app(self._simulator, self._broadcaster)
        self._server = make_server(self._host, self._port, self._app, threaded=True)
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="web-server",
            daemon=True
        )
        self._thread.start()
        logger.info(f"Web API started on http://{self._host}:{self._port}")

    def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.shutdown()
            self._server = None
        logger.info("Web server stopped")
