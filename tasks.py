from datetime import date
from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required
from marshmallow import Schema, fields, validate
from models import db, PRIORITIES, STATUSES
from store import TaskStore
from auth import get_current_identity, role_required, validate_request_data
from errors import ValidationError
from uploads import save_upload
import policy
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class DueDate(fields.Field):
    """接受 YYYY-MM-DD 或完整的 ISO 時間字串,只保留日期"""

    default_error_messages = {'invalid': 'Invalid due date format'}

    def _serialize(self, value, attr, obj, **kwargs):
        return value.isoformat() if value else None

    def _deserialize(self, value, attr, data, **kwargs):
        if isinstance(value, str):
            try:
                return date.fromisoformat(value[:10])
            except ValueError:
                pass
        raise self.make_error('invalid')


class ChatMessageInputSchema(Schema):
    text = fields.Str(required=True, error_messages={'required': 'Message text is required'})


class CreateTaskSchema(Schema):
    """
    建立任務驗證

    必填欄位是否為空由 policy.authorize_task_creation 檢查
    """
    title = fields.Str(allow_none=True, validate=validate.Length(max=255))
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    priority = fields.Str(allow_none=True, validate=validate.OneOf(PRIORITIES))
    due_date = DueDate(allow_none=True, data_key='dueDate')
    status = fields.Str(allow_none=True, validate=validate.OneOf(STATUSES))
    notes = fields.Str(allow_none=True)
    assignee_ids = fields.List(fields.Str(), allow_none=True, data_key='assigneeIds')


class UpdateTaskSchema(Schema):
    """
    更新任務驗證

    所有欄位都是選填,只有請求裡出現的欄位才會交給 policy 判斷
    chatMessages 是要新增的訊息
    """
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    priority = fields.Str(validate=validate.OneOf(PRIORITIES))
    due_date = DueDate(data_key='dueDate')
    status = fields.Str(validate=validate.OneOf(STATUSES))
    notes = fields.Str(allow_none=True)
    assignee_ids = fields.List(fields.Str(), data_key='assigneeIds')
    chat_messages = fields.List(fields.Nested(ChatMessageInputSchema), data_key='chatMessages')


class CreateMessageSchema(Schema):
    text = fields.Str(required=True, error_messages={'required': 'Message text is required'})

# ============================================
# 輸出格式
# ============================================

def _isoformat(value):
    return value.isoformat() if value else None


def serialize_attachment(attachment):
    return {
        'id': attachment.id,
        'name': attachment.name,
        'url': attachment.url,
        'uploaderId': attachment.uploader_id,
        'createdAt': _isoformat(attachment.created_at)
    }


def serialize_message(message):
    return {
        'id': message.id,
        'userId': message.user_id,
        'text': message.text,
        'timestamp': _isoformat(message.timestamp)
    }


def serialize_task(task):
    return {
        'id': task.id,
        'title': task.title,
        'description': task.description,
        'priority': task.priority,
        'dueDate': _isoformat(task.due_date),
        'status': task.status,
        'notes': task.notes,
        'assigneeIds': task.assignee_ids,
        'attachments': [serialize_attachment(a) for a in task.attachments],
        'chatMessages': [serialize_message(m) for m in task.chat_messages],
        'completedAt': _isoformat(task.completed_at),
        'createdAt': _isoformat(task.created_at),
        'updatedAt': _isoformat(task.updated_at)
    }

# ============================================
# 查詢任務
# ============================================

@tasks_bp.route('', methods=['GET'])
@jwt_required()
def list_tasks():
    """
    任務列表

    admin / viewer 看到全部,staff 只看到自己負責的
    """
    identity = get_current_identity()
    scope = policy.visibility_scope(identity['role'], identity['id'])

    tasks = TaskStore(db.session).find_all(assignee_id=scope)
    return jsonify([serialize_task(task) for task in tasks]), 200


@tasks_bp.route('/<task_id>', methods=['GET'])
@jwt_required()
def get_task(task_id):
    identity = get_current_identity()
    task = TaskStore(db.session).find_by_id(task_id)
    policy.authorize_task_view(identity['role'], identity['id'], task)
    return jsonify(serialize_task(task)), 200

# ============================================
# 建立任務
# ============================================

@tasks_bp.route('', methods=['POST'])
@role_required('admin')
def create_task():
    """建立任務 (只有 admin)"""
    identity = get_current_identity()
    result = validate_request_data(CreateTaskSchema, request.get_json(silent=True))
    policy.authorize_task_creation(identity['role'], result)

    task = TaskStore(db.session).create(result)
    logger.info(f"Task created: {task.title} by user {identity['id']}")

    return jsonify(serialize_task(task)), 201

# ============================================
# 更新任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['PUT', 'PATCH'])
@jwt_required()
def update_task(task_id):
    """
    部分更新任務

    能改哪些欄位完全由 policy 決定,被拒絕時整個請求都不套用。
    角色和欄位名稱先檢查,欄位值後檢查,
    所以沒有權限的請求不論內容都是 403
    """
    identity = get_current_identity()
    store = TaskStore(db.session)
    task = store.get_or_404(task_id)

    data = request.get_json(silent=True)
    policy.authorize_task_fields(identity['role'], identity['id'], task, policy.request_fields(data))

    result = validate_request_data(UpdateTaskSchema, data)
    allowed = policy.authorize_task_mutation(identity['role'], identity['id'], task, result)

    task = store.update(task_id, allowed, actor_id=identity['id'])
    return jsonify(serialize_task(task)), 200

# ============================================
# 刪除任務
# ============================================

@tasks_bp.route('/<task_id>', methods=['DELETE'])
@role_required('admin')
def delete_task(task_id):
    """刪除任務 (附件和聊天訊息一起刪除)"""
    TaskStore(db.session).delete(task_id)
    return '', 204

# ============================================
# 聊天訊息
# ============================================

@tasks_bp.route('/<task_id>/messages', methods=['POST'])
@jwt_required()
def add_chat_message(task_id):
    """新增一則聊天訊息,文字會去掉前後空白"""
    identity = get_current_identity()
    store = TaskStore(db.session)
    task = store.find_by_id(task_id)
    policy.authorize_task_fields(identity['role'], identity['id'], task, {'chat_messages': None})

    result = validate_request_data(CreateMessageSchema, request.get_json(silent=True))
    allowed = policy.authorize_task_mutation(
        identity['role'], identity['id'], task, {'chat_messages': [result['text']]}
    )

    message = store.add_chat_message(task_id, identity['id'], allowed['chat_messages'][0])
    return jsonify(serialize_message(message)), 201

# ============================================
# 附件上傳
# ============================================

def _upload_attachments(task_id, uploaded):
    """任務和權限先檢查,再寫入檔案和資料庫"""
    identity = get_current_identity()
    store = TaskStore(db.session)
    task = store.find_by_id(task_id)
    policy.authorize_task_fields(identity['role'], identity['id'], task, {'attachments': None})

    uploaded = [f for f in uploaded if f and f.filename]
    if not uploaded:
        raise ValidationError('No file uploaded')

    files = [save_upload(f) for f in uploaded]
    return store.add_attachments(task_id, files, identity['id'])


@tasks_bp.route('/<task_id>/attachments', methods=['POST'])
@jwt_required()
def upload_attachment(task_id):
    """上傳單一附件 (欄位名稱 file)"""
    attachments = _upload_attachments(task_id, [request.files.get('file')])
    return jsonify(serialize_attachment(attachments[0])), 201


@tasks_bp.route('/<task_id>/attachments/multiple', methods=['POST'])
@jwt_required()
def upload_multiple_attachments(task_id):
    """一次上傳多個附件 (欄位名稱 files)"""
    attachments = _upload_attachments(task_id, request.files.getlist('files'))
    return jsonify([serialize_attachment(a) for a in attachments]), 201
