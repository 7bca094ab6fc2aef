from flask import Flask, request, jsonify
from config import get_config
from models import db
from extensions import jwt, bcrypt, cors, limiter
from errors import register_error_handlers
from sqlalchemy import text
from datetime import datetime
import logging
from logging.handlers import RotatingFileHandler
import os

# ============================================
# Logging 設定
# ============================================

def setup_logging(app):
    """
    設定 logging 系統

    1. 分開 info 和 error logs
    2. 使用 RotatingFileHandler 避免 log 檔案過大
    3. 設定統一的 log format
    """
    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if app.debug or app.testing:
        return

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    root_logger.addHandler(info_handler)
    root_logger.addHandler(error_handler)

    app.logger.info('Application startup')

# ============================================
# JWT 錯誤處理
# ============================================

def register_jwt_callbacks(app):

    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        app.logger.warning(f"Expired token attempt from: {request.remote_addr}")
        return jsonify({'error': 'Invalid or expired token'}), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        app.logger.warning(f"Invalid token attempt from: {request.remote_addr}, error: {error}")
        return jsonify({'error': 'Invalid or expired token'}), 401

    @jwt.unauthorized_loader
    def unauthorized_callback(error):
        return jsonify({'error': 'Missing Authorization header'}), 401

# ============================================
# Request/Response Logging
# ============================================

def register_request_hooks(app):

    @app.before_request
    def log_request():
        app.logger.debug(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        return response

# ============================================
# 一般路由
# ============================================

def register_routes(app):

    @app.route('/health', methods=['GET'])
    def health_check():
        """健康檢查端點,確認資料庫連線"""
        try:
            db.session.execute(text('SELECT 1'))

            return jsonify({
                'status': 'healthy',
                'database': 'connected',
                'timestamp': datetime.utcnow().isoformat()
            }), 200
        except Exception as e:
            db.session.rollback()
            app.logger.error(f"Health check failed: {str(e)}")
            return jsonify({
                'status': 'unhealthy',
                'database': 'disconnected',
                'error': 'Database connection failed'
            }), 503

    @app.route('/')
    @limiter.limit('10 per minute')
    def home():
        """API 首頁"""
        return jsonify({
            'message': 'Task Tracker API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': {'path': '/health', 'methods': ['GET']},
                'auth': {
                    'login': {'path': '/api/auth/login', 'methods': ['POST']},
                    'me': {'path': '/api/auth/me', 'methods': ['GET']}
                },
                'users': {
                    'list': {'path': '/api/users', 'methods': ['GET', 'POST']},
                    'me': {'path': '/api/users/me', 'methods': ['GET']},
                    'detail': {'path': '/api/users/:id', 'methods': ['PUT', 'DELETE']}
                },
                'tasks': {
                    'list': {'path': '/api/tasks', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/api/tasks/:id', 'methods': ['GET', 'PUT', 'DELETE']},
                    'messages': {'path': '/api/tasks/:id/messages', 'methods': ['POST']},
                    'attachments': {'path': '/api/tasks/:id/attachments', 'methods': ['POST']},
                    'attachments_multiple': {'path': '/api/tasks/:id/attachments/multiple', 'methods': ['POST']}
                },
                'uploads': {'path': '/uploads/:filename', 'methods': ['GET']}
            }
        })

# ============================================
# App Factory
# ============================================

def create_app(config_class=None):
    """建立 Flask app,測試時傳入 TestingConfig"""
    config_class = config_class or get_config()
    config_class.validate()

    app = Flask(__name__)
    app.config.from_object(config_class)

    setup_logging(app)

    # 不要用 '*',只允許設定的來源
    cors.init_app(app,
                  supports_credentials=True,
                  origins=app.config['CORS_ORIGINS'],
                  methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
                  allow_headers=['Content-Type', 'Authorization'])

    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)

    app.extensions['bcrypt'] = bcrypt

    from uploads import uploads_bp, ensure_upload_folder
    ensure_upload_folder(app)

    from auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix='/api/auth')

    from users import users_bp
    app.register_blueprint(users_bp, url_prefix='/api/users')

    from tasks import tasks_bp
    app.register_blueprint(tasks_bp, url_prefix='/api/tasks')

    app.register_blueprint(uploads_bp, url_prefix=app.config['UPLOAD_URL_PATH'])

    register_error_handlers(app)
    register_jwt_callbacks(app)
    register_request_hooks(app)
    register_routes(app)

    from seed import register_commands
    register_commands(app)

    with app.app_context():
        db.create_all()
        app.logger.info('Database tables created')

    return app


if __name__ == '__main__':
    # production 環境應該用 gunicorn
    app = create_app()
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.getenv('FLASK_PORT', 8888))

    app.run(
        debug=debug_mode,
        port=port,
        host='0.0.0.0'
    )
