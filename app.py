import os
import random
import string
import threading
import uuid
import logging
import time
import qrcode
from datetime import datetime
from functools import wraps
from flask import Flask, jsonify, request, session
from flask_socketio import SocketIO
import base64
from io import BytesIO

from spin_engine import ConfigurationError, GameConfiguration, evaluate_daily_limits, run_spin
from storage import (
    CONFIG_FILE,
    PLAYS_FILE,
    REQUESTS_FILE,
    USERS_FILE,
    JsonDocumentStore,
    StorageError,
)

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - [%(name)s] - %(message)s',
    handlers=[
        logging.FileHandler('fortune_wheel.log'),
        logging.StreamHandler()
    ]
)

# App Configuration
DATA_DIR = os.environ.get('FORTUNE_WHEEL_DATA_DIR', 'data')
SECRET_KEY = os.environ.get('FORTUNE_WHEEL_SECRET_KEY', 'fortune-wheel-dev-key')
PORT = int(os.environ.get('FORTUNE_WHEEL_PORT', '5000'))
PASSWORD_LENGTH = 8
MIN_PASSWORD_LENGTH = 4

app = Flask(__name__)
app.config.update(
    SECRET_KEY=SECRET_KEY,
    MAX_CONTENT_LENGTH=2 * 1024 * 1024
)

socketio = SocketIO(app, cors_allowed_origins="*", ping_timeout=60, ping_interval=25)

store = JsonDocumentStore(DATA_DIR)
rng = random.SystemRandom()


def clock():
    """Single clock for 'today' and play timestamps (server local time)"""
    return datetime.now()


DEFAULT_CONFIG = {
    "wheel_name": "Fortune Wheel",
    "max_plays_per_user_per_day": 1,
    "max_global_wins_per_day": 5,
    "win_probability_percent": 5,
    "active": True,
    "prizes": [
        {"label": "Cono Gelato", "is_winning": True, "value": 3},
        {"label": "Ritenta", "is_winning": False, "value": 0},
        {"label": "Coppa Gelato", "is_winning": True, "value": 5},
        {"label": "Niente", "is_winning": False, "value": 0},
        {"label": "Granita", "is_winning": True, "value": 2},
        {"label": "Ritenta", "is_winning": False, "value": 0},
        {"label": "Frappè", "is_winning": True, "value": 4},
        {"label": "Niente", "is_winning": False, "value": 0}
    ]
}

DEFAULT_USERS = [
    {"user": "admin", "password": "admin", "role": "admin"}
]


class WheelState:
    """
    Process-wide bookkeeping for connected dashboards and session stats.

    spin_lock serializes spins so the play log read, the limit check and
    the append of the new play happen as one step.
    """
    def __init__(self):
        self.connected_clients = set()
        self.last_winner = None
        self.total_spins_session = 0
        self.spin_lock = threading.Lock()
        self._lock = threading.Lock()
        self.performance_metrics = {
            'start_time': time.time(),
            'total_connections': 0,
            'peak_concurrent': 0
        }

    def record_spin(self, username, prize_label, is_win):
        with self._lock:
            self.total_spins_session += 1
            if is_win:
                self.last_winner = f"{username}: {prize_label}"
            return self.total_spins_session

    def add_client(self, client_id):
        """Add connected client and update metrics"""
        with self._lock:
            self.connected_clients.add(client_id)
            self.performance_metrics['total_connections'] += 1
            self.performance_metrics['peak_concurrent'] = max(
                len(self.connected_clients),
                self.performance_metrics['peak_concurrent']
            )

    def remove_client(self, client_id):
        with self._lock:
            self.connected_clients.discard(client_id)

    def get_status(self):
        with self._lock:
            return {
                'connected_clients': len(self.connected_clients),
                'total_spins': self.total_spins_session,
                'last_winner': self.last_winner,
                'total_connections': self.performance_metrics['total_connections'],
                'peak_concurrent': self.performance_metrics['peak_concurrent'],
                'uptime_seconds': time.time() - self.performance_metrics['start_time']
            }


wheel_state = WheelState()

# ==============================================================================
# HELPERS
# ==============================================================================

def load_game_configuration():
    """Read config.json and turn it into a validated GameConfiguration"""
    return GameConfiguration.from_document(store.load(CONFIG_FILE, DEFAULT_CONFIG))


def current_user():
    return session.get('user')


def is_admin(user):
    return bool(user) and user.get('role') == 'admin'


def login_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        if not current_user():
            return jsonify({'error': 'Unauthorized', 'message': 'Login required'}), 401
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    @wraps(f)
    def decorated(*args, **kwargs):
        user = current_user()
        if not user:
            return jsonify({'error': 'Unauthorized', 'message': 'Login required'}), 401
        if not is_admin(user):
            logging.warning(f"🚫 Admin endpoint {request.path} refused for '{user.get('user')}'")
            return jsonify({'error': 'Forbidden', 'message': 'Administrator role required'}), 403
        return f(*args, **kwargs)
    return decorated


def public_user(user):
    """User document without the password"""
    return {key: value for key, value in user.items() if key != 'password'}


def prize_payload(chosen):
    return {
        'index': chosen.segment_index,
        'label': chosen.segment.label,
        'is_winning': chosen.segment.is_winning,
        'value': chosen.segment.value
    }


def play_matches(play, term):
    """Case-insensitive search over user, result, date and win code; null fields never match"""
    fields = (play.get('user'), play.get('result'), play.get('date'), play.get('win_code'))
    return any(term in str(value).lower() for value in fields if value is not None)


def generate_password(length=PASSWORD_LENGTH):
    alphabet = string.ascii_lowercase + string.digits
    return ''.join(rng.choice(alphabet) for _ in range(length))


def username_for_request(registration, users):
    """nome + first letter of cognome, lowercased, with a numeric suffix on clashes"""
    nome = ''.join(registration.get('nome', '').split()).lower()
    cognome = ''.join(registration.get('cognome', '').split()).lower()
    base = f"{nome}{cognome[:1]}"
    taken = {u.get('user') for u in users}
    username = base
    counter = 1
    while username in taken:
        username = f"{base}{counter}"
        counter += 1
    return username


def validate_registration(data):
    """Validate registration request data"""
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"
    for field in ['nome', 'cognome', 'email']:
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            return False, f"Missing required field: {field}"
    if '@' not in data['email']:
        return False, "Email address is not valid"
    return True, None


def get_dashboard_state():
    """Counts shown on the admin dashboard"""
    plays = store.load(PLAYS_FILE, [])
    requests_list = store.load(REQUESTS_FILE, [])
    users = store.load(USERS_FILE, DEFAULT_USERS)
    today = clock().strftime('%Y-%m-%d')

    todays_plays = [p for p in plays if p.get('date') == today]
    return {
        'stats': {
            'total_plays': len(plays),
            'plays_today': len(todays_plays),
            'wins_today': sum(1 for p in todays_plays if p.get('is_win')),
            'unclaimed_wins': sum(1 for p in plays if p.get('is_win') and not p.get('claimed')),
            'pending_requests': sum(1 for r in requests_list if not r.get('creato')),
            'users': len(users),
            'session_spins': wheel_state.total_spins_session,
            'last_winner': wheel_state.last_winner
        },
        'wheel_status': wheel_state.get_status()
    }


def broadcast_state():
    try:
        socketio.emit('state_update', get_dashboard_state())
    except Exception as e:
        logging.error(f"💥 State broadcast failed: {e}")

# ==============================================================================
# SESSION ENDPOINTS
# ==============================================================================

@app.route('/api/login', methods=['POST'])
def login():
    """Check credentials against users.json and open a session"""
    try:
        data = request.get_json(silent=True) or {}
        username = (data.get('username') or '').strip()
        password = data.get('password') or ''

        users = store.load(USERS_FILE, DEFAULT_USERS)
        account = next((u for u in users if u.get('user') == username and u.get('password') == password), None)
        if account is None:
            logging.warning(f"🔐 Failed login for '{username}'")
            return jsonify({'error': 'Invalid credentials'}), 401

        session.clear()
        session['user'] = {'user': account['user'], 'role': account.get('role', 'user')}
        session['rotation'] = 0
        logging.info(f"🔓 '{username}' logged in ({session['user']['role']})")
        return jsonify({'message': 'Login successful', 'user': public_user(account)})

    except Exception as e:
        logging.error(f"💥 Login error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/logout', methods=['POST'])
def logout():
    user = current_user()
    session.clear()
    if user:
        logging.info(f"🔒 '{user.get('user')}' logged out")
    return jsonify({'message': 'Logged out'})


@app.route('/api/me')
@login_required
def me():
    return jsonify({'user': current_user(), 'rotation': session.get('rotation', 0)})


@app.route('/api/password', methods=['POST'])
@login_required
def change_password():
    """Let the logged-in user replace their own password"""
    try:
        data = request.get_json(silent=True) or {}
        password = data.get('password')
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            return jsonify({'error': f'Password must be at least {MIN_PASSWORD_LENGTH} characters'}), 400

        username = current_user()['user']
        with store.lock:
            users = store.load(USERS_FILE, DEFAULT_USERS, strict=True)
            account = next((u for u in users if u.get('user') == username), None)
            if account is None:
                return jsonify({'error': 'User not found'}), 404
            account['password'] = password
            store.save(USERS_FILE, users)

        logging.info(f"🔑 Password changed for '{username}'")
        return jsonify({'message': 'Password updated'})

    except Exception as e:
        logging.error(f"💥 Password change error: {e}")
        return jsonify({'error': str(e)}), 500

# ==============================================================================
# GAME ENDPOINTS
# ==============================================================================

@app.route('/api/game')
@login_required
def game_state():
    """Wheel layout plus today's counters for the logged-in user"""
    try:
        user = current_user()
        config = load_game_configuration()
        counts = evaluate_daily_limits(user['user'], clock().date(), store.load(PLAYS_FILE, []), config)

        return jsonify({
            'wheel_name': config.wheel_name,
            'active': config.is_active,
            'segments': [
                {'index': s.segment_index, 'label': s.label, 'is_winning': s.is_winning, 'value': s.value}
                for s in config.segments
            ],
            'plays_today': counts.user_plays_today,
            'plays_remaining': max(0, config.max_plays_per_user_per_day - counts.user_plays_today),
            'can_play': counts.can_play,
            'rotation': session.get('rotation', 0)
        })
    except ConfigurationError as e:
        logging.error(f"🚨 Invalid game configuration: {e}")
        return jsonify({'error': 'configuration_error', 'message': str(e)}), 503
    except Exception as e:
        logging.error(f"💥 Game state error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/spin', methods=['POST'])
@login_required
def spin():
    """
    Evaluate a spin for the logged-in user and append it to the play log.

    The response carries the prize, the new absolute wheel rotation and the
    stored play record. A user with no plays left gets a 409 rejection.
    """
    user = current_user()
    username = user['user']

    try:
        config = load_game_configuration()
    except ConfigurationError as e:
        logging.error(f"🚨 Spin refused, invalid configuration: {e}")
        return jsonify({
            'success': False,
            'error': 'configuration_error',
            'message': str(e)
        }), 503

    if not config.is_active and not is_admin(user):
        logging.warning(f"⏸️ Spin from '{username}' BLOCKED: wheel is not active")
        return jsonify({
            'success': False,
            'error': 'wheel_inactive',
            'message': 'The wheel is currently disabled.'
        }), 403

    try:
        with wheel_state.spin_lock:
            try:
                plays = store.load(PLAYS_FILE, [], strict=True)
            except StorageError as e:
                logging.error(f"💥 Spin from '{username}' refused, play log unreadable: {e}")
                return jsonify({
                    'success': False,
                    'error': 'storage_error',
                    'message': str(e)
                }), 500

            result = run_spin(
                username,
                config,
                plays,
                current_rotation=session.get('rotation', 0),
                now=clock(),
                rng=rng
            )

            if not result.accepted:
                logging.info(f"🔄 Spin from '{username}' rejected: {result.reason}")
                return jsonify({
                    'success': False,
                    'error': result.reason,
                    'message': 'No plays left for today. Come back tomorrow!',
                    'plays_today': result.counts.user_plays_today,
                    'plays_remaining': 0,
                    'timestamp': datetime.now().isoformat()
                }), 409

            record = result.record.to_document()
            try:
                store.append(PLAYS_FILE, record)
            except StorageError as e:
                logging.error(f"💥 Play for '{username}' not persisted: {e}")
                return jsonify({
                    'success': False,
                    'error': 'storage_error',
                    'message': str(e),
                    'prize': prize_payload(result.chosen),
                    'rotation': result.rotation,
                    'record': record
                }), 500

        session['rotation'] = result.rotation
        spin_number = wheel_state.record_spin(username, record['result'], record['is_win'])
        logging.info(f"🏆 Spin #{spin_number}: '{username}' -> '{record['result']}' (win={record['is_win']})")

        socketio.emit('play_logged', record)
        broadcast_state()

        return jsonify({
            'success': True,
            'prize': prize_payload(result.chosen),
            'rotation': result.rotation,
            'record': record,
            'plays_remaining': max(0, config.max_plays_per_user_per_day - result.counts.user_plays_today - 1),
            'timestamp': datetime.now().isoformat()
        })

    except Exception as e:
        logging.error(f"💥 Spin error: {e}")
        import traceback
        logging.error(f"🔍 Full traceback: {traceback.format_exc()}")
        return jsonify({
            'success': False,
            'error': 'server_error',
            'message': str(e),
            'timestamp': datetime.now().isoformat()
        }), 500

# ==============================================================================
# ADMIN ENDPOINTS
# ==============================================================================

@app.route('/api/config', methods=['GET'])
@admin_required
def get_config():
    try:
        return jsonify({'config': store.load(CONFIG_FILE, DEFAULT_CONFIG)})
    except Exception as e:
        logging.error(f"💥 Get config error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/config', methods=['POST'])
@admin_required
def save_config():
    """Validate and replace the game configuration"""
    try:
        data = request.get_json(silent=True)
        try:
            config = GameConfiguration.from_document(data)
        except ConfigurationError as e:
            return jsonify({'error': str(e)}), 400

        document = config.to_document()
        # keys the game does not interpret are kept for the dashboard
        for key, value in data.items():
            document.setdefault(key, value)

        store.save(CONFIG_FILE, document)
        logging.info(
            f"⚙️ Configuration updated: {config.segment_count} segments, "
            f"{config.win_probability_percent}% win, caps {config.max_plays_per_user_per_day}/"
            f"{config.max_global_wins_per_day}, active={config.is_active}"
        )
        return jsonify({'message': 'Configuration saved successfully', 'config': document})

    except Exception as e:
        logging.error(f"💥 Save config error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/users', methods=['GET'])
@admin_required
def get_users():
    try:
        return jsonify({'users': store.load(USERS_FILE, DEFAULT_USERS)})
    except Exception as e:
        logging.error(f"💥 Get users error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/users', methods=['POST'])
@admin_required
def save_users():
    """Replace the whole user collection"""
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, list):
            return jsonify({'error': 'Users must be a JSON list'}), 400

        names = [u.get('user') for u in data if isinstance(u, dict)]
        if len(names) != len(data) or not all(isinstance(n, str) and n.strip() for n in names):
            return jsonify({'error': 'Every user needs a non-empty "user" name'}), 400
        if len(set(names)) != len(names):
            return jsonify({'error': 'Usernames must be unique'}), 400
        if not any(u.get('role') == 'admin' for u in data):
            return jsonify({'error': 'At least one admin account is required'}), 400

        store.save(USERS_FILE, data)
        logging.info(f"👥 User collection saved: {len(data)} users")
        return jsonify({'message': 'Users saved successfully', 'count': len(data)})

    except Exception as e:
        logging.error(f"💥 Save users error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/plays', methods=['GET'])
@admin_required
def get_plays():
    """Play log, newest first, optionally filtered by ?q="""
    try:
        plays = store.load(PLAYS_FILE, [])
        term = (request.args.get('q') or '').strip().lower()

        indexed = [dict(play, index=i) for i, play in enumerate(plays)]
        indexed.sort(key=lambda p: (str(p.get('date') or ''), str(p.get('time') or '')), reverse=True)
        if term:
            indexed = [p for p in indexed if play_matches(p, term)]

        return jsonify({'plays': indexed, 'count': len(indexed)})
    except Exception as e:
        logging.error(f"💥 Get plays error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/plays', methods=['POST'])
@admin_required
def save_plays():
    """Replace the whole play log"""
    try:
        data = request.get_json(silent=True)
        if not isinstance(data, list) or not all(isinstance(p, dict) for p in data):
            return jsonify({'error': 'Play log must be a JSON list of objects'}), 400

        with wheel_state.spin_lock:
            store.save(PLAYS_FILE, data)
        logging.info(f"📝 Play log replaced: {len(data)} entries")
        broadcast_state()
        return jsonify({'message': 'Play log saved successfully', 'count': len(data)})
    except Exception as e:
        logging.error(f"💥 Save plays error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/plays/<int:index>/claim', methods=['POST'])
@admin_required
def claim_play(index):
    """Mark a winning play as claimed"""
    try:
        with wheel_state.spin_lock:
            plays = store.load(PLAYS_FILE, [], strict=True)
            if not 0 <= index < len(plays):
                return jsonify({'error': 'Play not found'}), 404
            if not plays[index].get('is_win'):
                return jsonify({'error': 'Only winning plays can be claimed'}), 400

            plays[index]['claimed'] = True
            store.save(PLAYS_FILE, plays)

        logging.info(f"🎁 Prize claimed: {plays[index].get('win_code')} by '{plays[index].get('user')}'")
        broadcast_state()
        return jsonify({'message': 'Prize marked as claimed', 'play': plays[index]})
    except Exception as e:
        logging.error(f"💥 Claim error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/plays/<int:index>', methods=['DELETE'])
@admin_required
def delete_play(index):
    try:
        with wheel_state.spin_lock:
            plays = store.load(PLAYS_FILE, [], strict=True)
            if not 0 <= index < len(plays):
                return jsonify({'error': 'Play not found'}), 404
            deleted = plays.pop(index)
            store.save(PLAYS_FILE, plays)

        logging.info(f"🗑️ Play deleted: {deleted.get('user')} {deleted.get('date')} {deleted.get('time')}")
        broadcast_state()
        return jsonify({'message': 'Play log entry deleted', 'play': deleted})
    except Exception as e:
        logging.error(f"💥 Delete play error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/requests', methods=['GET'])
@admin_required
def get_requests():
    try:
        return jsonify({'requests': store.load(REQUESTS_FILE, [])})
    except Exception as e:
        logging.error(f"💥 Get requests error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/requests', methods=['POST'])
def add_request():
    """Public registration request from the login screen"""
    try:
        data = request.get_json(silent=True)
        is_valid, error_msg = validate_registration(data)
        if not is_valid:
            return jsonify({'error': error_msg}), 400

        registration = {
            'id': str(uuid.uuid4()),
            'nome': data['nome'].strip(),
            'cognome': data['cognome'].strip(),
            'email': data['email'].strip(),
            'telefono': (data.get('telefono') or '').strip(),
            'citta': (data.get('citta') or '').strip(),
            'creato': False,
            'data_richiesta': clock().isoformat()
        }
        if data.get('gdpr_consent'):
            registration['gdpr_consent'] = True
            registration['gdpr_consent_date'] = registration['data_richiesta']

        store.append(REQUESTS_FILE, registration)
        logging.info(f"📨 Registration request from {registration['nome']} {registration['cognome']}")
        broadcast_state()
        return jsonify({'message': 'Request received', 'request': registration}), 201

    except Exception as e:
        logging.error(f"💥 Add request error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/requests/<int:index>/create-user', methods=['POST'])
@admin_required
def create_user_from_request(index):
    """Create a player account from a registration request"""
    try:
        with store.lock:
            requests_list = store.load(REQUESTS_FILE, [], strict=True)
            if not 0 <= index < len(requests_list):
                return jsonify({'error': 'Request not found'}), 404
            registration = requests_list[index]
            if registration.get('creato'):
                return jsonify({'error': 'Account already created for this request'}), 409

            users = store.load(USERS_FILE, DEFAULT_USERS, strict=True)
            username = username_for_request(registration, users)
            password = generate_password()

            new_user = {
                'user': username,
                'password': password,
                'role': 'user',
                'email': registration.get('email', '')
            }
            for key in ('nome', 'cognome', 'telefono', 'citta', 'gdpr_consent', 'gdpr_consent_date'):
                if registration.get(key):
                    new_user[key] = registration[key]

            users.append(new_user)
            registration['creato'] = True
            registration['username'] = username

            store.save(USERS_FILE, users)
            store.save(REQUESTS_FILE, requests_list)

        logging.info(f"👤 User '{username}' created from request {registration.get('id')}")
        broadcast_state()
        return jsonify({
            'message': 'User created',
            'username': username,
            'password': password,
            'request': registration
        })

    except Exception as e:
        logging.error(f"💥 Create user error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/requests/<int:index>', methods=['DELETE'])
@admin_required
def delete_request(index):
    try:
        with store.lock:
            requests_list = store.load(REQUESTS_FILE, [], strict=True)
            if not 0 <= index < len(requests_list):
                return jsonify({'error': 'Request not found'}), 404
            deleted = requests_list.pop(index)
            store.save(REQUESTS_FILE, requests_list)

        logging.info(f"🗑️ Request deleted: {deleted.get('nome')} {deleted.get('cognome')}")
        broadcast_state()
        return jsonify({'message': 'Request deleted successfully'})
    except Exception as e:
        logging.error(f"💥 Delete request error: {e}")
        return jsonify({'error': str(e)}), 500


@app.route('/api/dashboard_data')
@admin_required
def get_dashboard_data():
    try:
        return jsonify(get_dashboard_state())
    except Exception as e:
        logging.error(f"💥 Dashboard data error: {e}")
        return jsonify({'error': str(e)}), 500


# QR Code generation for easy mobile access
@app.route('/api/qr_code')
def generate_qr_code():
    """QR code pointing players at the game"""
    try:
        url = request.host_url

        qr = qrcode.QRCode(version=1, box_size=10, border=5)
        qr.add_data(url)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white")

        buffer = BytesIO()
        img.save(buffer, format='PNG')
        img_str = base64.b64encode(buffer.getvalue()).decode()

        return jsonify({
            'qr_code': f"data:image/png;base64,{img_str}",
            'url': url
        })
    except Exception as e:
        logging.error(f"💥 QR Code generation failed: {e}")
        return jsonify({'error': 'Failed to generate QR code'}), 500

# ==============================================================================
# SOCKET.IO EVENT HANDLERS
# ==============================================================================

@socketio.on('connect')
def handle_connect():
    try:
        wheel_state.add_client(request.sid)
        logging.info(f"🔌 Client connected: {request.sid} (Total: {len(wheel_state.connected_clients)})")
        socketio.emit('connection_confirmed', {
            'client_id': request.sid,
            'server_time': datetime.now().isoformat(),
            'wheel_status': wheel_state.get_status()
        }, to=request.sid)
    except Exception as e:
        logging.error(f"💥 Connect handler error: {e}")


@socketio.on('disconnect')
def handle_disconnect():
    wheel_state.remove_client(request.sid)
    logging.info(f"🔌 Client disconnected: {request.sid} (Remaining: {len(wheel_state.connected_clients)})")


@socketio.on('request_state_update')
def handle_state_request():
    try:
        socketio.emit('state_update', get_dashboard_state(), to=request.sid)
    except Exception as e:
        logging.error(f"💥 State request error: {e}")

# ==============================================================================
# ERROR HANDLERS
# ==============================================================================

@app.errorhandler(500)
def internal_error(error):
    logging.error(f"💥 Internal server error: {error}")
    return jsonify({'error': 'Internal server error', 'message': str(error)}), 500


@app.errorhandler(404)
def not_found(error):
    return jsonify({'error': 'Not found', 'message': 'Endpoint not found'}), 404


@app.errorhandler(405)
def method_not_allowed(error):
    return jsonify({'error': 'Method not allowed', 'message': str(error)}), 405


@app.errorhandler(413)
def payload_too_large(error):
    return jsonify({'error': 'Payload too large', 'message': 'Request exceeds 2MB limit'}), 413


@app.errorhandler(400)
def bad_request(error):
    return jsonify({'error': 'Bad request', 'message': str(error)}), 400

# ==============================================================================
# STARTUP AND INITIALIZATION
# ==============================================================================

def initialize_default_files():
    """Create the JSON documents with defaults if they don't exist"""
    config = store.load(CONFIG_FILE, DEFAULT_CONFIG)
    users = store.load(USERS_FILE, DEFAULT_USERS)
    plays = store.load(PLAYS_FILE, [])
    requests_list = store.load(REQUESTS_FILE, [])

    try:
        GameConfiguration.from_document(config)
    except ConfigurationError as e:
        logging.warning(f"⚠️ Stored configuration is not playable yet: {e}")

    logging.info(
        f"🔒 Data initialized in '{DATA_DIR}': {len(users)} users, "
        f"{len(plays)} plays, {len(requests_list)} requests"
    )


if __name__ == '__main__':
    try:
        initialize_default_files()

        logging.info("🎡 FORTUNE WHEEL 🎡")
        logging.info("=" * 60)
        logging.info(f"🎲 Spin API:     http://0.0.0.0:{PORT}/api/spin")
        logging.info(f"📊 Dashboard:    http://0.0.0.0:{PORT}/api/dashboard_data")
        logging.info(f"📱 QR Code API:  http://0.0.0.0:{PORT}/api/qr_code")
        logging.info("=" * 60)

        socketio.run(app, host='0.0.0.0', port=PORT,
                     debug=False, allow_unsafe_werkzeug=True)

    except KeyboardInterrupt:
        logging.info("🛑 Server shutdown requested")
