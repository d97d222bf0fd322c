from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:5174",
    "http://127.0.0.1:5174",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)


def _build_channel(flask_app):
    from relay.sync import MemoryChannel
    from relay.sync.sql import SqlChannel
    if flask_app.config.get('RELAY_STORE') == 'memory':
        return MemoryChannel()
    return SqlChannel(db)


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    # Session services shared by the HTTP routes, socket handlers and timers
    from relay.services.registry import SeatRegistry
    from relay.services.sessions import SessionManager
    from relay.socketio_events import round_listener_factory
    manager = SessionManager.from_config(_build_channel(flask_app), flask_app.config)
    flask_app.extensions['relay'] = {
        'manager': manager,
        'seats': SeatRegistry(
            manager,
            listener_factory=round_listener_factory(flask_app),
            solo_retention=float(flask_app.config.get('SOLO_RETENTION_SEC', 600)),
        ),
    }

    from relay.main import main
    flask_app.register_blueprint(main)

    from relay.api.sessions import sessions
    from relay.api.rounds import rounds
    # Mount under /api to match the frontend API client
    flask_app.register_blueprint(sessions, url_prefix='/api/sessions')
    flask_app.register_blueprint(rounds, url_prefix='/api')

    from relay.socketio_events import register_socketio_handlers
    register_socketio_handlers(testing=flask_app.config.get('TESTING', False))

    @click.command('db-reset')
    def db_reset_command():
        """Drops and recreates the session store tables."""
        import relay.models  # noqa: F401
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            print('Session store has been reset!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
