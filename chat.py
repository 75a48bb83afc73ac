"""
Group and direct chat for DCAM Classes
"""
from datetime import datetime

from firebase_config import db
from roles import display_name
from utils.errors import PermissionDenied, ValidationFailed
from utils.logger import logger

GROUP_COL = 'group_chat_messages'
DIRECT_COL = 'direct_messages'


def chat_id(uid_a, uid_b):
    return '_'.join(sorted([uid_a, uid_b]))


def participants(chat):
    return chat.split('_')


def _messages(query):
    return [{**doc.to_dict(), 'id': doc.id} for doc in query.order_by('createdAt').stream()]


def group_messages():
    return _messages(db.collection(GROUP_COL))


def post_group_message(profile, text='', image_url=''):
    text = (text or '').strip()
    if not text and not image_url:
        raise ValidationFailed('Message cannot be empty.')
    message = {
        'senderId': profile['id'],
        'senderName': display_name(profile),
        'createdAt': datetime.utcnow().isoformat(),
    }
    if text:
        message['text'] = text
    if image_url:
        message['imageUrl'] = image_url
    ref = db.collection(GROUP_COL).document()
    ref.set(message)
    logger.debug("group_message_posted", sender_id=profile['id'])
    return {**message, 'id': ref.id}


def _check_participant(chat, uid):
    if uid not in participants(chat):
        raise PermissionDenied('You are not part of this conversation.', chat_id=chat)


def direct_messages(chat, uid):
    _check_participant(chat, uid)
    return _messages(db.collection(DIRECT_COL).document(chat).collection('messages'))


def send_direct_message(chat, profile, text):
    _check_participant(chat, profile['id'])
    message = {
        'senderId': profile['id'],
        'senderName': display_name(profile),
        'text': text,
        'createdAt': datetime.utcnow().isoformat(),
    }
    ref = db.collection(DIRECT_COL).document(chat).collection('messages').document()
    ref.set(message)
    return {**message, 'id': ref.id}


def contacts(profile, teacher=False):
    """Teachers talk to students; everyone else talks to teachers"""
    role = 'student' if teacher else 'teacher'
    users = [{**doc.to_dict(), 'id': doc.id}
             for doc in db.collection('users').where('roleId', '==', role).stream()]
    users = [u for u in users if u['id'] != profile['id']]
    users.sort(key=lambda u: display_name(u).lower())
    return users
