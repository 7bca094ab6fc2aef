"""
建立示範資料

    flask --app app:create_app seed           # 只在資料庫是空的時候寫入
    flask --app app:create_app seed --reset   # 清空後重新寫入
"""
from datetime import date, datetime, timedelta
import click
from models import db, User, Task, ChatMessage
from auth import hash_password
import logging

logger = logging.getLogger(__name__)

DEMO_PASSWORD = 'password123'

DEMO_USERS = [
    {'id': 'u1', 'full_name': 'Arash Admin', 'email': 'admin@example.com', 'phone': '09120000001',
     'role': 'admin', 'username': 'admin'},
    {'id': 'u2', 'full_name': 'Zahra Staff', 'email': 'zahra@example.com', 'phone': '09120000002',
     'role': 'staff', 'username': 'zahra'},
    {'id': 'u3', 'full_name': 'Babak Staff', 'email': 'babak@example.com', 'phone': '09120000003',
     'role': 'staff', 'username': 'babak'},
    {'id': 'u4', 'full_name': 'Vida Viewer', 'email': 'viewer@example.com', 'phone': '09120000004',
     'role': 'viewer', 'username': 'viewer'},
]

DEMO_TASKS = [
    {'id': 't1', 'title': 'Design login page', 'description': 'Mockups and final UI for the user login page.',
     'priority': 'high', 'due_date': '2024-08-15', 'assignee_ids': ['u2'], 'status': 'doing',
     'notes': 'First draft is ready in Figma.'},
    {'id': 't2', 'title': 'Prepare weekly report', 'description': 'Collect last week\'s sales and team performance data.',
     'priority': 'medium', 'due_date': '2024-08-12', 'assignee_ids': ['u3'], 'status': 'todo'},
    {'id': 't3', 'title': 'Fix date display bug', 'description': 'Birth date is shown incorrectly on the profile page.',
     'priority': 'high', 'due_date': '2024-08-11', 'assignee_ids': ['u2'], 'status': 'done'},
    {'id': 't4', 'title': 'Review and approve task #3', 'description': 'The date display fix needs a final review.',
     'priority': 'medium', 'due_date': '2024-08-12', 'assignee_ids': ['u1'], 'status': 'done'},
    {'id': 't5', 'title': 'Write API documentation', 'description': 'Document the user and task endpoints in Postman.',
     'priority': 'low', 'due_date': '2024-08-20', 'assignee_ids': ['u3'], 'status': 'backlog'},
    {'id': 't6', 'title': 'Answer support tickets', 'description': 'Reply to every ticket left open from last week.',
     'priority': 'high', 'due_date': '2024-08-10', 'assignee_ids': ['u2'], 'status': 'approved'},
    {'id': 't7', 'title': 'Plan next sprint', 'description': 'Meet the product team to prioritise next sprint.',
     'priority': 'medium', 'due_date': '2024-08-18', 'assignee_ids': ['u1'], 'status': 'todo'},
    {'id': 't8', 'title': 'Update project dependencies', 'description': 'Refresh frontend and backend packages.',
     'priority': 'low', 'due_date': '2024-08-25', 'assignee_ids': ['u3'], 'status': 'backlog'},
    {'id': 't9', 'title': 'Shared task test', 'description': 'Assigned jointly to Zahra and Babak.',
     'priority': 'medium', 'due_date': '2024-08-22', 'assignee_ids': ['u2', 'u3'], 'status': 'returned',
     'chat_messages': [('u2', 'I started on the first part.'), ('u3', 'Great, I will pick up the rest.')]},
]


def seed_database(reset=False):
    """
    寫入示範使用者和任務

    Returns:
        bool: 是否有寫入資料
    """
    if reset:
        db.drop_all()
        db.create_all()
    elif db.session.query(User).first() is not None:
        logger.info('Database already has users, skipping seed')
        return False

    try:
        password_hash = hash_password(DEMO_PASSWORD)
        users = {}
        for data in DEMO_USERS:
            user = User(
                password_hash=password_hash,
                avatar_url=f"https://i.pravatar.cc/150?u={data['username']}",
                **data
            )
            users[user.id] = user
            db.session.add(user)

        for data in DEMO_TASKS:
            task = Task(
                id=data['id'],
                title=data['title'],
                description=data['description'],
                priority=data['priority'],
                due_date=date.fromisoformat(data['due_date']),
                status=data['status'],
                notes=data.get('notes')
            )
            task.assignees = [users[user_id] for user_id in data['assignee_ids']]
            sent_at = datetime(2024, 8, 20, 9, 0)
            for offset, (user_id, text) in enumerate(data.get('chat_messages', [])):
                task.chat_messages.append(ChatMessage(
                    user_id=user_id, text=text, timestamp=sent_at + timedelta(minutes=offset)
                ))
            db.session.add(task)

        db.session.commit()
    except Exception:
        db.session.rollback()
        logger.error('Seeding failed', exc_info=True)
        raise

    logger.info(f"Seeded {len(DEMO_USERS)} users and {len(DEMO_TASKS)} tasks")
    return True


def register_commands(app):

    @app.cli.command('seed')
    @click.option('--reset', is_flag=True, help='Drop and recreate all tables first.')
    def seed_command(reset):
        """寫入示範資料"""
        if seed_database(reset=reset):
            click.echo(f"Seeded demo data. Password for every user: {DEMO_PASSWORD}")
        else:
            click.echo('Database already seeded, use --reset to start over.')
