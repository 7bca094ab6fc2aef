"""
任務權限規則

角色與欄位的對照表集中在這裡,路由和資料層都不再自行判斷角色。
所有函式都是純函式,不碰資料庫也不碰 request。

    欄位                                    admin   staff (必須是負責人)   viewer
    title/description/priority/dueDate/
    assigneeIds                             寫入    -                      -
    notes                                   寫入    寫入                   -
    status                                  任意值  只能改成 done          -
    chatMessages (新增)                      寫入    寫入 (多位負責人時)     -
    attachments (新增)                       寫入    寫入                   -
"""
from errors import Forbidden, NotFound, ValidationError
import logging

logger = logging.getLogger(__name__)

ADMIN = 'admin'
STAFF = 'staff'
VIEWER = 'viewer'

ADMIN_FIELDS = frozenset({
    'title', 'description', 'priority', 'due_date', 'assignee_ids',
    'notes', 'status', 'chat_messages', 'attachments',
})
STAFF_FIELDS = frozenset({'status', 'notes', 'chat_messages', 'attachments'})
STAFF_STATUS = 'done'

REQUIRED_CREATE_FIELDS = ('title', 'description', 'priority', 'due_date', 'status')

# 回傳給前端時使用的欄位名稱
FIELD_LABELS = {
    'due_date': 'dueDate',
    'assignee_ids': 'assigneeIds',
    'chat_messages': 'chatMessages',
}
REQUEST_KEYS = {label: field for field, label in FIELD_LABELS.items()}


def _label(field):
    return FIELD_LABELS.get(field, field)


def is_assignee(actor_id, task):
    return actor_id in set(task.assignee_ids)


def clean_chat_text(text):
    """去掉前後空白,空訊息不允許新增"""
    cleaned = text.strip() if isinstance(text, str) else ''
    if not cleaned:
        raise ValidationError('Message text is required')
    return cleaned


def request_fields(data):
    """
    把請求 body 的 camelCase key 轉成內部欄位名稱

    body 不是 JSON 物件時回傳空 dict,交給 schema 回報格式錯誤
    """
    if not isinstance(data, dict):
        return {}
    return {REQUEST_KEYS.get(key, key): value for key, value in data.items()}


def authorize_task_fields(role, actor_id, existing_task, requested):
    """
    只看角色、負責人和欄位名稱的檢查,不需要欄位值先通過 schema

    requested 可以是原始請求 (經過 request_fields),
    所以 viewer 和非負責人的 staff 不論內容都是 Forbidden

    Raises:
        NotFound: 任務不存在 (先於角色檢查)
        Forbidden: 角色或負責人規則不允許,整個請求都不套用
        ValidationError: admin 送了不認得的欄位
    """
    if existing_task is None:
        raise NotFound('Task not found')

    fields = set(requested)

    if role == ADMIN:
        unknown = fields - ADMIN_FIELDS
        if unknown:
            raise ValidationError(
                f"Unknown fields: {', '.join(sorted(_label(f) for f in unknown))}"
            )

    elif role == STAFF:
        if not is_assignee(actor_id, existing_task):
            raise Forbidden('You can only modify tasks assigned to you')

        disallowed = fields - STAFF_FIELDS
        if disallowed:
            allowed = ', '.join(sorted(_label(f) for f in STAFF_FIELDS))
            rejected = ', '.join(sorted(_label(f) for f in disallowed))
            raise Forbidden(f"Staff can only update: {allowed}. Cannot update: {rejected}")

        if 'status' in requested and requested['status'] != STAFF_STATUS:
            raise Forbidden('Staff can only change status to "done"')

        if 'chat_messages' in requested and len(set(existing_task.assignee_ids)) < 2:
            raise Forbidden('Chat is only available on tasks with multiple assignees')

    else:
        raise Forbidden('Forbidden')


def authorize_task_mutation(role, actor_id, existing_task, requested):
    """
    檢查 role 是否可以對 existing_task 套用 requested 裡的欄位

    Args:
        role: 'admin' / 'staff' / 'viewer'
        actor_id: 發出請求的使用者 id
        existing_task: 目前的任務 (需要 assignee_ids),不存在時為 None
        requested: 已經過 schema 驗證的欄位 dict,只包含請求裡有的欄位

    Returns:
        dict: 允許寫入的欄位,chat_messages 已整理成去掉空白的字串 list

    Raises:
        NotFound: 任務不存在 (先於角色檢查)
        Forbidden: 角色或負責人規則不允許,整個請求都不套用
        ValidationError: 聊天訊息去掉空白後是空的
    """
    authorize_task_fields(role, actor_id, existing_task, requested)

    allowed = dict(requested)
    if 'chat_messages' in allowed:
        allowed['chat_messages'] = [
            clean_chat_text(message.get('text') if isinstance(message, dict) else message)
            for message in allowed['chat_messages']
        ]

    return allowed


def authorize_task_creation(role, data):
    """
    只有 admin 可以建立任務,必填欄位不能是空的

    Returns:
        dict: 原本的 data
    """
    if role != ADMIN:
        raise Forbidden('Forbidden')

    missing = [_label(field) for field in REQUIRED_CREATE_FIELDS
               if data.get(field) in (None, '')
               or (isinstance(data.get(field), str) and not data[field].strip())]
    if missing:
        raise ValidationError('Missing required fields', details={'missing': missing})

    return data


def authorize_task_view(role, actor_id, task):
    """staff 只能看自己負責的任務"""
    if task is None:
        raise NotFound('Task not found')
    if role == STAFF and not is_assignee(actor_id, task):
        raise Forbidden('You can only view tasks assigned to you')
    if role not in (ADMIN, STAFF, VIEWER):
        raise Forbidden('Forbidden')
    return task


def visibility_scope(role, actor_id):
    """
    任務列表的可見範圍

    Returns:
        None 代表全部任務,否則是只能看到的負責人 id
    """
    if role in (ADMIN, VIEWER):
        return None
    if role == STAFF:
        return actor_id
    raise Forbidden('Insufficient permissions')
