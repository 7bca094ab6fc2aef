from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event
from sqlalchemy.engine import Engine
from datetime import datetime
import sqlite3
import uuid

db = SQLAlchemy()

ROLES = ('admin', 'staff', 'viewer')
PRIORITIES = ('low', 'medium', 'high')
STATUSES = ('backlog', 'todo', 'doing', 'done', 'returned', 'approved', 'rejected')


def generate_id():
    return str(uuid.uuid4())


@event.listens_for(Engine, 'connect')
def enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite 預設不檢查外鍵,cascade 需要打開"""
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()

# ============================================
# 1. User 模型
# ============================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    full_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    username = db.Column(db.String(100), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(20))
    role = db.Column(db.String(20), nullable=False, default='staff')  # admin, staff, viewer
    avatar_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint(f"role IN {ROLES}", name='ck_user_role'),
    )

# ============================================
# 2. 多對多關聯表：任務與負責人
# ============================================
task_assignees = db.Table('task_assignees',
    db.Column('task_id', db.String(36), db.ForeignKey('tasks.id', ondelete='CASCADE'), primary_key=True),
    db.Column('user_id', db.String(36), db.ForeignKey('users.id', ondelete='CASCADE'), primary_key=True)
)

# ============================================
# 3. Task 模型
# ============================================
class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(20), nullable=False, default='medium')  # low, medium, high
    status = db.Column(db.String(20), nullable=False, default='backlog')
    notes = db.Column(db.Text, nullable=True)

    # 時間欄位
    due_date = db.Column(db.Date, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # 關聯
    assignees = db.relationship('User', secondary=task_assignees, lazy='selectin',
                                backref=db.backref('assigned_tasks', lazy=True))
    attachments = db.relationship('Attachment', backref='task', lazy='selectin',
                                  cascade='all,delete-orphan',
                                  order_by='Attachment.created_at')
    chat_messages = db.relationship('ChatMessage', backref='task', lazy='selectin',
                                    cascade='all,delete-orphan',
                                    order_by='ChatMessage.timestamp')

    __table_args__ = (
        db.CheckConstraint(f"priority IN {PRIORITIES}", name='ck_task_priority'),
        db.CheckConstraint(f"status IN {STATUSES}", name='ck_task_status'),
        db.Index('idx_task_status', 'status'),
        db.Index('idx_task_due_date', 'due_date'),
        db.Index('idx_task_created_at', 'created_at'),
    )

    @property
    def assignee_ids(self):
        return [user.id for user in self.assignees]

# ============================================
# 4. Attachment 模型
# ============================================
class Attachment(db.Model):
    __tablename__ = 'attachments'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    task_id = db.Column(db.String(36), db.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    url = db.Column(db.String(500), nullable=False)
    # 使用者刪除後保留歷史紀錄,所以這裡不設外鍵
    uploader_id = db.Column(db.String(36), nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

# ============================================
# 5. ChatMessage 模型
# ============================================
class ChatMessage(db.Model):
    __tablename__ = 'chat_messages'

    id = db.Column(db.String(36), primary_key=True, default=generate_id)
    task_id = db.Column(db.String(36), db.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False, index=True)
    user_id = db.Column(db.String(36), nullable=False)
    text = db.Column(db.Text, nullable=False)
    timestamp = db.Column(db.DateTime, default=datetime.utcnow)
