from functools import wraps
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import (
    create_access_token, decode_token, get_jwt, get_jwt_identity, jwt_required
)
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError
from marshmallow import Schema, fields, validate, EXCLUDE, ValidationError as SchemaValidationError
from models import db
from store import UserStore
from errors import AuthError, Forbidden, NotFound, ValidationError
from extensions import limiter
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class LoginSchema(Schema):
    """登入輸入驗證"""

    class Meta:
        unknown = EXCLUDE

    username = fields.Str(
        required=True,
        validate=validate.Length(min=1, error='username is required'),
        error_messages={'required': 'username is required'}
    )
    password = fields.Str(
        required=True,
        validate=validate.Length(min=1, error='password is required'),
        error_messages={'required': 'password is required'}
    )

# ============================================
# Helper Functions
# ============================================

def get_bcrypt():
    """從 Flask app extensions 取得 bcrypt 實例"""
    return current_app.extensions['bcrypt']


def hash_password(password):
    return get_bcrypt().generate_password_hash(password).decode('utf-8')


def validate_request_data(schema_class, data, **kwargs):
    """
    統一的輸入驗證函數

    Raises:
        ValidationError: 請求不是 JSON 或欄位驗證失敗
    """
    if data is None:
        raise ValidationError('Request body must be JSON')
    try:
        return schema_class(**kwargs).load(data)
    except SchemaValidationError as err:
        raise ValidationError('Validation failed', details=err.messages)


def serialize_user(user):
    """不回傳 password hash"""
    return {
        'id': user.id,
        'fullName': user.full_name,
        'email': user.email,
        'username': user.username,
        'phone': user.phone,
        'role': user.role,
        'avatarUrl': user.avatar_url,
        'createdAt': user.created_at.isoformat() if user.created_at else None,
        'updatedAt': user.updated_at.isoformat() if user.updated_at else None
    }

# ============================================
# Identity & Session
# ============================================

def issue_token(user):
    """token 裡帶 {id, role},驗證時不需要查資料庫"""
    return create_access_token(identity=user.id, additional_claims={'role': user.role})


def authenticate(username, password):
    """
    驗證帳號密碼並發 token

    使用者不存在和密碼錯誤回傳同樣的錯誤,避免帳號枚舉攻擊

    Returns:
        tuple: (token, user)
    """
    user = UserStore(db.session).find_by_username(username)

    if not user or not get_bcrypt().check_password_hash(user.password_hash, password):
        logger.warning(f"Failed login attempt for username: {username}")
        raise AuthError('Invalid credentials')

    logger.info(f"User logged in: {user.username}")
    return issue_token(user), user


def verify_token(token):
    """
    驗證 token

    Returns:
        dict: {'id': ..., 'role': ...}
    """
    try:
        claims = decode_token(token)
    except (JWTExtendedException, PyJWTError) as e:
        logger.warning(f"Token verification failed: {str(e)}")
        raise AuthError('Invalid or expired token')

    return {'id': claims['sub'], 'role': claims.get('role')}


def get_current_identity():
    """目前 request 的 {id, role},需要在 jwt_required 之後呼叫"""
    return {'id': get_jwt_identity(), 'role': get_jwt().get('role')}


def role_required(*roles):
    """需要登入,而且角色要在 roles 裡"""
    def decorator(fn):
        @wraps(fn)
        @jwt_required()
        def wrapper(*args, **kwargs):
            role = get_jwt().get('role')
            if role not in roles:
                raise Forbidden('Forbidden')
            return fn(*args, **kwargs)
        return wrapper
    return decorator

# ============================================
# 登入 API
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['LOGIN_RATE_LIMIT'])
def login():
    """
    使用者登入

    Returns:
        {token, user}
    """
    result = validate_request_data(LoginSchema, request.get_json(silent=True))
    token, user = authenticate(result['username'], result['password'])

    return jsonify({
        'token': token,
        'user': serialize_user(user)
    }), 200

# ============================================
# 取得當前使用者資訊
# ============================================

def load_current_user():
    """
    取得當前登入的使用者

    token 還有效但使用者已被刪除時回傳 404
    """
    user_id = get_jwt_identity()
    user = UserStore(db.session).find_by_id(user_id)

    if not user:
        logger.warning(f"Token valid but user not found: {user_id}")
        raise NotFound('User not found')

    return user


@auth_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    """取得當前登入使用者的資訊"""
    return jsonify(serialize_user(load_current_user())), 200
