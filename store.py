"""
資料存取層

TaskStore / UserStore 接收 session,不直接使用全域的 db.session,
路由在每個 request 把 db.session 傳進來。多個 statement 的寫入都在
同一個 transaction 裡,失敗就 rollback 再往外丟。
"""
from datetime import datetime, timedelta
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from models import Task, User, Attachment, ChatMessage, task_assignees
from errors import NotFound, ValidationError, translate_integrity_error
import logging

logger = logging.getLogger(__name__)

TASK_SCALAR_FIELDS = ('title', 'description', 'priority', 'due_date', 'status', 'notes')


class TaskStore:
    """任務、負責人、附件、聊天訊息的存取"""

    def __init__(self, session):
        self.session = session

    # ============================================
    # 查詢
    # ============================================

    def find_all(self, assignee_id=None):
        """
        查詢任務列表 (新的在前)

        Args:
            assignee_id: None 代表全部,否則只回傳該使用者負責的任務
        """
        query = select(Task).order_by(Task.created_at.desc())
        if assignee_id is not None:
            query = query.join(task_assignees, task_assignees.c.task_id == Task.id) \
                         .where(task_assignees.c.user_id == assignee_id)
        return list(self.session.scalars(query).unique())

    def find_by_id(self, task_id):
        return self.session.get(Task, task_id)

    def get_or_404(self, task_id):
        task = self.find_by_id(task_id)
        if task is None:
            raise NotFound('Task not found')
        return task

    # ============================================
    # 寫入
    # ============================================

    def _resolve_assignees(self, assignee_ids):
        """負責人必須都是存在的使用者"""
        unique_ids = list(dict.fromkeys(assignee_ids))
        if not unique_ids:
            return []

        users = list(self.session.scalars(select(User).where(User.id.in_(unique_ids))))
        found = {user.id for user in users}
        missing = [user_id for user_id in unique_ids if user_id not in found]
        if missing:
            raise ValidationError('Unknown assignee ids', details={'assigneeIds': missing})
        return users

    def create(self, data):
        """建立任務和負責人,同一個 transaction"""
        try:
            task = Task(
                title=data['title'],
                description=data.get('description'),
                priority=data['priority'],
                due_date=data['due_date'],
                status=data.get('status', 'backlog'),
                notes=data.get('notes'),
            )
            task.assignees = self._resolve_assignees(data.get('assignee_ids') or [])
            if task.status == 'done':
                task.completed_at = datetime.utcnow()

            self.session.add(task)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise translate_integrity_error(e) from e
        except (SQLAlchemyError, ValidationError):
            self.session.rollback()
            raise

        logger.info(f"Task created: {task.id} ({task.title})")
        return task

    def update(self, task_id, fields, actor_id=None):
        """
        套用已經通過權限檢查的欄位

        assignee_ids 是整組取代 (先清空再寫入),沒有 optimistic locking,
        同時更新時以最後 commit 的為準
        """
        task = self.get_or_404(task_id)
        old_status = task.status

        try:
            for field in TASK_SCALAR_FIELDS:
                if field in fields:
                    setattr(task, field, fields[field])

            if 'assignee_ids' in fields:
                task.assignees = self._resolve_assignees(fields['assignee_ids'] or [])

            # 同一個請求裡的訊息時間依序遞增
            sent_at = datetime.utcnow()
            for offset, text in enumerate(fields.get('chat_messages', [])):
                task.chat_messages.append(ChatMessage(
                    user_id=actor_id, text=text, timestamp=sent_at + timedelta(microseconds=offset)
                ))

            # 狀態變更時自動更新 completed_at
            if 'status' in fields:
                if old_status != 'done' and task.status == 'done':
                    task.completed_at = datetime.utcnow()
                elif old_status == 'done' and task.status != 'done':
                    task.completed_at = None

            task.updated_at = datetime.utcnow()
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise translate_integrity_error(e) from e
        except (SQLAlchemyError, ValidationError):
            self.session.rollback()
            raise

        logger.info(f"Task {task_id} updated: {', '.join(sorted(fields)) or 'no fields'}")
        return task

    def add_attachment(self, task_id, name, url, uploader_id):
        return self.add_attachments(task_id, [(name, url)], uploader_id)[0]

    def add_attachments(self, task_id, files, uploader_id):
        """
        一次新增多個附件

        Args:
            files: [(name, url), ...]
        """
        task = self.get_or_404(task_id)
        try:
            attachments = [Attachment(name=name, url=url, uploader_id=uploader_id) for name, url in files]
            task.attachments.extend(attachments)
            task.updated_at = datetime.utcnow()
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise translate_integrity_error(e, missing_message='Task not found') from e
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"{len(attachments)} attachment(s) added to task {task_id} by user {uploader_id}")
        return attachments

    def add_chat_message(self, task_id, user_id, text):
        task = self.get_or_404(task_id)
        try:
            message = ChatMessage(user_id=user_id, text=text)
            task.chat_messages.append(message)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise translate_integrity_error(e, missing_message='Task not found') from e
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"Chat message added to task {task_id} by user {user_id}")
        return message

    def delete(self, task_id):
        """刪除任務 (附件和聊天訊息一起刪除)"""
        task = self.get_or_404(task_id)
        try:
            self.session.delete(task)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"Task deleted: {task_id}")


class UserStore:
    """使用者存取"""

    def __init__(self, session):
        self.session = session

    def find_all(self):
        return list(self.session.scalars(select(User).order_by(User.created_at.desc())))

    def find_by_id(self, user_id):
        return self.session.get(User, user_id)

    def find_by_username(self, username):
        return self.session.scalars(select(User).where(User.username == username)).first()

    def get_or_404(self, user_id):
        user = self.find_by_id(user_id)
        if user is None:
            raise NotFound('User not found')
        return user

    def create(self, **fields):
        user = User(**fields)
        try:
            self.session.add(user)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise translate_integrity_error(e, conflict_message='Email or username already exists') from e
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"User created: {user.username} ({user.role})")
        return user

    def update(self, user_id, fields):
        user = self.get_or_404(user_id)
        try:
            for field, value in fields.items():
                setattr(user, field, value)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise translate_integrity_error(e, conflict_message='Email or username already exists') from e
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"User updated: {user.username}")
        return user

    def delete(self, user_id):
        """
        刪除使用者

        先移除所有任務上的負責人關聯,附件和聊天訊息保留原本的 user id
        """
        user = self.get_or_404(user_id)
        tasks = list(user.assigned_tasks)
        try:
            for task in tasks:
                task.assignees.remove(user)
            self.session.delete(user)
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

        logger.info(f"User deleted: {user_id}, removed from {len(tasks)} task(s)")
