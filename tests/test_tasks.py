import io
import os

import pytest

from models import db, Task, ChatMessage


NEW_TASK = {
    'title': 'Design login page',
    'description': 'Mockups for the login screen',
    'priority': 'high',
    'dueDate': '2024-08-15',
    'status': 'todo',
    'assigneeIds': ['u2'],
}


def stored_status(app, task_id):
    with app.app_context():
        return db.session.get(Task, task_id).status

# ============================================
# 查詢
# ============================================

def test_admin_and_viewer_see_all_tasks(client, admin, viewer):
    for headers in (admin, viewer):
        response = client.get('/api/tasks', headers=headers)
        assert response.status_code == 200
        assert len(response.get_json()) == 9


def test_staff_only_sees_assigned_tasks(client, staff):
    response = client.get('/api/tasks', headers=staff)

    assert response.status_code == 200
    ids = {task['id'] for task in response.get_json()}
    assert ids == {'t1', 't3', 't6', 't9'}


def test_task_payload_shape(client, admin):
    task = client.get('/api/tasks/t9', headers=admin).get_json()

    assert set(task['assigneeIds']) == {'u2', 'u3'}
    assert task['dueDate'] == '2024-08-22'
    assert task['status'] == 'returned'
    assert [m['text'] for m in task['chatMessages']] == [
        'I started on the first part.', 'Great, I will pick up the rest.'
    ]
    assert task['attachments'] == []


def test_staff_cannot_view_unassigned_task(client, staff):
    assert client.get('/api/tasks/t2', headers=staff).status_code == 403
    assert client.get('/api/tasks/t1', headers=staff).status_code == 200


def test_get_unknown_task(client, admin):
    response = client.get('/api/tasks/missing', headers=admin)
    assert response.status_code == 404
    assert response.get_json() == {'error': 'Task not found'}

# ============================================
# 建立
# ============================================

def test_admin_creates_task(client, admin):
    response = client.post('/api/tasks', json=NEW_TASK, headers=admin)

    assert response.status_code == 201
    task = response.get_json()
    assert task['assigneeIds'] == ['u2']
    assert task['status'] == 'todo'
    assert task['title'] == 'Design login page'
    assert task['chatMessages'] == []


def test_create_then_find_round_trip(client, admin):
    payload = dict(NEW_TASK, assigneeIds=['u3', 'u2'])
    created = client.post('/api/tasks', json=payload, headers=admin).get_json()

    found = client.get(f"/api/tasks/{created['id']}", headers=admin).get_json()
    assert found['title'] == payload['title']
    assert found['priority'] == payload['priority']
    assert found['dueDate'] == payload['dueDate']
    assert set(found['assigneeIds']) == {'u2', 'u3'}


def test_create_accepts_iso_datetime_due_date(client, admin):
    payload = dict(NEW_TASK, dueDate='2024-08-15T00:00:00.000Z')
    response = client.post('/api/tasks', json=payload, headers=admin)
    assert response.status_code == 201
    assert response.get_json()['dueDate'] == '2024-08-15'


def test_create_without_assignees(client, admin):
    payload = {k: v for k, v in NEW_TASK.items() if k != 'assigneeIds'}
    response = client.post('/api/tasks', json=payload, headers=admin)
    assert response.status_code == 201
    assert response.get_json()['assigneeIds'] == []


@pytest.mark.parametrize('role_fixture', ['staff', 'viewer'])
def test_non_admin_cannot_create(request, client, role_fixture):
    headers = request.getfixturevalue(role_fixture)
    response = client.post('/api/tasks', json=NEW_TASK, headers=headers)
    assert response.status_code == 403


@pytest.mark.parametrize('field', ['title', 'description', 'priority', 'dueDate', 'status'])
def test_create_requires_fields(client, admin, field):
    payload = dict(NEW_TASK)
    payload.pop(field)
    response = client.post('/api/tasks', json=payload, headers=admin)

    assert response.status_code == 400
    assert response.get_json()['error'] == 'Missing required fields'


def test_create_rejects_invalid_values(client, admin):
    response = client.post('/api/tasks', json=dict(NEW_TASK, priority='urgent'), headers=admin)
    assert response.status_code == 400
    assert 'priority' in response.get_json()['details']

    response = client.post('/api/tasks', json=dict(NEW_TASK, dueDate='tomorrow'), headers=admin)
    assert response.status_code == 400


def test_create_rejects_unknown_assignees(client, admin):
    response = client.post('/api/tasks', json=dict(NEW_TASK, assigneeIds=['u2', 'ghost']), headers=admin)

    assert response.status_code == 400
    assert response.get_json()['details'] == {'assigneeIds': ['ghost']}
    assert len(client.get('/api/tasks', headers=admin).get_json()) == 9

# ============================================
# 更新
# ============================================

def test_staff_cannot_approve(app, client, staff):
    response = client.put('/api/tasks/t1', json={'status': 'approved'}, headers=staff)

    assert response.status_code == 403
    assert stored_status(app, 't1') == 'doing'


def test_staff_marks_done(app, client, staff):
    response = client.put('/api/tasks/t1', json={'status': 'done'}, headers=staff)

    assert response.status_code == 200
    assert response.get_json()['status'] == 'done'
    assert response.get_json()['completedAt'] is not None
    assert stored_status(app, 't1') == 'done'


def test_staff_not_assignee_is_rejected(app, client, staff):
    response = client.put('/api/tasks/t2', json={'status': 'done'}, headers=staff)

    assert response.status_code == 403
    assert stored_status(app, 't2') == 'todo'


def test_staff_disallowed_field_rejects_whole_update(app, client, staff):
    response = client.put('/api/tasks/t1', json={'status': 'done', 'title': 'Renamed'}, headers=staff)

    assert response.status_code == 403
    assert 'title' in response.get_json()['error']
    with app.app_context():
        task = db.session.get(Task, 't1')
        assert task.status == 'doing'
        assert task.title == 'Design login page'


def test_staff_edits_notes(client, staff):
    response = client.put('/api/tasks/t1', json={'notes': 'Handed off to QA'}, headers=staff)
    assert response.status_code == 200
    assert response.get_json()['notes'] == 'Handed off to QA'


def test_viewer_cannot_update(app, client, viewer):
    response = client.put('/api/tasks/t1', json={'notes': 'x'}, headers=viewer)
    assert response.status_code == 403


@pytest.mark.parametrize('body', [
    {'status': 'bogus'}, {'title': ''}, {'dueDate': 'nope'}, {'foo': 1}, [], None,
])
def test_staff_not_assignee_is_forbidden_whatever_the_body(app, client, staff, body):
    response = client.put('/api/tasks/t2', json=body, headers=staff)

    assert response.status_code == 403
    assert stored_status(app, 't2') == 'todo'


@pytest.mark.parametrize('body', [{'status': 'bogus'}, {'priority': 'urgent'}, {'dueDate': 'nope'}, {}])
def test_viewer_is_forbidden_whatever_the_body(client, viewer, body):
    assert client.put('/api/tasks/t1', json=body, headers=viewer).status_code == 403


@pytest.mark.parametrize('body', [{'priority': 'urgent'}, {'title': ''}, {'foo': 1}, {'status': 'bogus'}])
def test_staff_disallowed_field_or_status_is_forbidden_before_value_checks(app, client, staff, body):
    response = client.put('/api/tasks/t1', json=body, headers=staff)

    assert response.status_code == 403
    assert stored_status(app, 't1') == 'doing'


def test_staff_allowed_field_with_invalid_value(client, staff):
    response = client.put('/api/tasks/t1', json={'notes': 42}, headers=staff)
    assert response.status_code == 400


def test_update_unknown_task(client, admin, staff):
    assert client.put('/api/tasks/nope', json={'status': 'done'}, headers=admin).status_code == 404
    assert client.put('/api/tasks/nope', json={'status': 'done'}, headers=staff).status_code == 404


def test_update_rejects_unknown_fields(client, admin):
    response = client.put('/api/tasks/t1', json={'colour': 'red'}, headers=admin)
    assert response.status_code == 400


def test_admin_updates_everything_and_replaces_assignees(client, admin):
    response = client.put('/api/tasks/t9', json={
        'title': 'Shared task',
        'priority': 'low',
        'dueDate': '2024-09-01',
        'status': 'approved',
        'assigneeIds': ['u3', 'u1'],
    }, headers=admin)

    assert response.status_code == 200
    task = response.get_json()
    assert task['title'] == 'Shared task'
    assert task['priority'] == 'low'
    assert task['dueDate'] == '2024-09-01'
    assert task['status'] == 'approved'
    assert set(task['assigneeIds']) == {'u1', 'u3'}


def test_admin_can_clear_assignees(client, admin, staff):
    response = client.put('/api/tasks/t1', json={'assigneeIds': []}, headers=admin)
    assert response.status_code == 200
    assert response.get_json()['assigneeIds'] == []

    ids = {task['id'] for task in client.get('/api/tasks', headers=staff).get_json()}
    assert 't1' not in ids


def test_reopening_done_task_clears_completed_at(client, admin):
    done = client.put('/api/tasks/t2', json={'status': 'done'}, headers=admin).get_json()
    assert done['completedAt'] is not None

    returned = client.put('/api/tasks/t2', json={'status': 'returned'}, headers=admin).get_json()
    assert returned['completedAt'] is None


def test_chat_messages_appended_through_update(client, other_staff):
    response = client.put('/api/tasks/t9', json={
        'status': 'done',
        'chatMessages': [{'text': '  all done  '}],
    }, headers=other_staff)

    assert response.status_code == 200
    messages = response.get_json()['chatMessages']
    assert len(messages) == 3
    assert messages[-1]['text'] == 'all done'
    assert messages[-1]['userId'] == 'u3'


def test_chat_messages_in_one_update_keep_their_order(client, admin):
    response = client.put('/api/tasks/t9', json={
        'chatMessages': [{'text': 'first'}, {'text': 'second'}, {'text': 'third'}],
    }, headers=admin)
    assert response.status_code == 200

    texts = [m['text'] for m in client.get('/api/tasks/t9', headers=admin).get_json()['chatMessages']]
    assert texts[-3:] == ['first', 'second', 'third']

# ============================================
# 聊天訊息
# ============================================

def test_add_chat_message(client, staff):
    response = client.post('/api/tasks/t9/messages', json={'text': '  Need a review  '}, headers=staff)

    assert response.status_code == 201
    message = response.get_json()
    assert message['text'] == 'Need a review'
    assert message['userId'] == 'u2'


@pytest.mark.parametrize('text', ['', '   ', '\n\t '])
def test_whitespace_message_is_never_persisted(app, client, admin, text):
    response = client.post('/api/tasks/t9/messages', json={'text': text}, headers=admin)

    assert response.status_code == 400
    with app.app_context():
        assert ChatMessage.query.filter_by(task_id='t9').count() == 2


def test_message_requires_text(client, admin):
    response = client.post('/api/tasks/t9/messages', json={}, headers=admin)
    assert response.status_code == 400


def test_staff_chat_needs_multiple_assignees(client, staff):
    response = client.post('/api/tasks/t1/messages', json={'text': 'hello'}, headers=staff)
    assert response.status_code == 403


def test_message_on_unknown_task(client, admin):
    response = client.post('/api/tasks/missing/messages', json={'text': 'hello'}, headers=admin)
    assert response.status_code == 404


def test_viewer_cannot_chat(client, viewer):
    response = client.post('/api/tasks/t9/messages', json={'text': 'hello'}, headers=viewer)
    assert response.status_code == 403


def test_message_on_unknown_task_is_checked_before_body(client, admin):
    response = client.post('/api/tasks/missing/messages', json={}, headers=admin)
    assert response.status_code == 404


@pytest.mark.parametrize('user', ['viewer', 'other_staff'])
def test_forbidden_chat_is_checked_before_body(request, client, user):
    # t1 只有 u2 一位負責人
    headers = request.getfixturevalue(user)
    assert client.post('/api/tasks/t1/messages', json={}, headers=headers).status_code == 403

# ============================================
# 附件
# ============================================

def test_upload_single_attachment(app, client, staff):
    response = client.post(
        '/api/tasks/t1/attachments',
        data={'file': (io.BytesIO(b'log line'), 'server log.txt')},
        headers=staff,
        content_type='multipart/form-data',
    )

    assert response.status_code == 201
    attachment = response.get_json()
    assert attachment['name'] == 'server log.txt'
    assert attachment['uploaderId'] == 'u2'
    assert attachment['url'].startswith('/uploads/')
    assert attachment['url'].endswith('server_log.txt')

    stored = os.path.join(app.config['UPLOAD_FOLDER'], attachment['url'].rsplit('/', 1)[1])
    assert os.path.exists(stored)

    served = client.get(attachment['url'])
    assert served.status_code == 200
    assert served.data == b'log line'


def test_upload_multiple_attachments(client, admin):
    response = client.post(
        '/api/tasks/t2/attachments/multiple',
        data={'files': [(io.BytesIO(b'a'), 'a.txt'), (io.BytesIO(b'b'), 'a.txt')]},
        headers=admin,
        content_type='multipart/form-data',
    )

    assert response.status_code == 201
    attachments = response.get_json()
    assert [a['name'] for a in attachments] == ['a.txt', 'a.txt']
    assert attachments[0]['url'] != attachments[1]['url']

    task = client.get('/api/tasks/t2', headers=admin).get_json()
    assert len(task['attachments']) == 2


def test_upload_without_file(client, admin):
    response = client.post('/api/tasks/t1/attachments', data={}, headers=admin,
                           content_type='multipart/form-data')
    assert response.status_code == 400
    assert response.get_json() == {'error': 'No file uploaded'}


def test_staff_upload_to_unassigned_task(app, client, staff):
    response = client.post(
        '/api/tasks/t2/attachments',
        data={'file': (io.BytesIO(b'x'), 'x.txt')},
        headers=staff,
        content_type='multipart/form-data',
    )
    assert response.status_code == 403
    assert os.listdir(app.config['UPLOAD_FOLDER']) == []


def test_upload_to_unknown_task(client, admin):
    response = client.post(
        '/api/tasks/missing/attachments',
        data={'file': (io.BytesIO(b'x'), 'x.txt')},
        headers=admin,
        content_type='multipart/form-data',
    )
    assert response.status_code == 404


def test_upload_checks_task_and_role_before_file(client, admin, viewer):
    response = client.post('/api/tasks/missing/attachments', data={}, headers=admin,
                           content_type='multipart/form-data')
    assert response.status_code == 404

    response = client.post('/api/tasks/t1/attachments', data={}, headers=viewer,
                           content_type='multipart/form-data')
    assert response.status_code == 403

# ============================================
# 刪除
# ============================================

def test_admin_deletes_task_with_children(app, client, admin):
    client.post(
        '/api/tasks/t9/attachments',
        data={'file': (io.BytesIO(b'x'), 'x.txt')},
        headers=admin,
        content_type='multipart/form-data',
    )

    assert client.delete('/api/tasks/t9', headers=admin).status_code == 204
    assert client.get('/api/tasks/t9', headers=admin).status_code == 404
    assert client.delete('/api/tasks/t9', headers=admin).status_code == 404

    with app.app_context():
        assert ChatMessage.query.filter_by(task_id='t9').count() == 0


def test_non_admin_cannot_delete_task(client, staff):
    assert client.delete('/api/tasks/t1', headers=staff).status_code == 403
