from urllib.parse import quote
from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
from models import db, ROLES
from store import UserStore
from auth import hash_password, load_current_user, role_required, serialize_user, validate_request_data
import logging

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateUserSchema(Schema):
    """建立使用者驗證"""
    full_name = fields.Str(required=True, data_key='fullName', validate=validate.Length(min=1, max=255))
    email = fields.Email(required=True, error_messages={'invalid': 'Invalid email format'})
    phone = fields.Str(required=True, validate=validate.Length(min=1, max=20))
    role = fields.Str(required=True, validate=validate.OneOf(ROLES))
    username = fields.Str(required=True, validate=validate.Length(min=2, max=100))
    password = fields.Str(required=True, validate=validate.Length(min=6, max=128))


class UpdateUserSchema(Schema):
    """更新使用者驗證 (所有欄位都是選填)"""
    full_name = fields.Str(data_key='fullName', validate=validate.Length(min=1, max=255))
    email = fields.Email(error_messages={'invalid': 'Invalid email format'})
    phone = fields.Str(allow_none=True, validate=validate.Length(max=20))
    role = fields.Str(validate=validate.OneOf(ROLES))
    username = fields.Str(validate=validate.Length(min=2, max=100))
    password = fields.Str(validate=validate.Length(min=6, max=128))
    avatar_url = fields.Str(data_key='avatarUrl', allow_none=True, validate=validate.Length(max=500))

# ============================================
# 查詢
# ============================================

@users_bp.route('/me', methods=['GET'])
@jwt_required()
def get_me():
    """任何登入的使用者都可以查自己的資料"""
    return jsonify(serialize_user(load_current_user())), 200


@users_bp.route('', methods=['GET'])
@role_required('admin')
def list_users():
    """所有使用者 (新的在前)"""
    users = UserStore(db.session).find_all()
    return jsonify([serialize_user(user) for user in users]), 200

# ============================================
# 建立使用者
# ============================================

@users_bp.route('', methods=['POST'])
@role_required('admin')
def create_user():
    """
    建立使用者

    密碼用 bcrypt 加密,大頭貼依照 username 產生
    """
    result = validate_request_data(CreateUserSchema, request.get_json(silent=True))

    avatar_url = current_app.config['DEFAULT_AVATAR_URL'].format(username=quote(result['username']))
    user = UserStore(db.session).create(
        full_name=result['full_name'],
        email=result['email'],
        phone=result['phone'],
        role=result['role'],
        username=result['username'],
        password_hash=hash_password(result['password']),
        avatar_url=avatar_url
    )

    return jsonify(serialize_user(user)), 201

# ============================================
# 更新使用者
# ============================================

@users_bp.route('/<user_id>', methods=['PUT'])
@role_required('admin')
def update_user(user_id):
    """部分更新,有密碼時重新加密"""
    result = validate_request_data(UpdateUserSchema, request.get_json(silent=True))

    password = result.pop('password', None)
    if password:
        result['password_hash'] = hash_password(password)

    user = UserStore(db.session).update(user_id, result)
    return jsonify(serialize_user(user)), 200

# ============================================
# 刪除使用者
# ============================================

@users_bp.route('/<user_id>', methods=['DELETE'])
@role_required('admin')
def delete_user(user_id):
    """
    刪除使用者

    所有任務上的負責人關聯一起移除,歷史附件和聊天訊息保留
    """
    UserStore(db.session).delete(user_id)
    return '', 204
