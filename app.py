from flask import Flask, render_template, request, redirect, url_for, session, flash, jsonify, abort, g
from firebase_config import db
from firebase_admin import auth as admin_auth
from datetime import datetime
from utils import (
    PasswordManager, TokenManager, login_rate_limiter, logger, validate_schema, validate_email, DCAMError,
    NotFound, PaymentError, ValidationFailed,
    student_registration_schema, teacher_registration_schema, user_login_schema, profile_schema,
    exam_type_schema, class_schema, subject_schema, topic_schema, question_schema,
    official_test_schema, official_test_create_schema, custom_test_schema, content_schema,
    course_schema, group_message_schema, direct_message_schema, doubt_schema, doubt_answer_schema,
    study_requirement_schema, plan_schema, live_batch_schema, live_session_schema, password_reset_schema
)
from config import config
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_talisman import Talisman
from flask_mail import Mail, Message
import os
import json
from functools import wraps
import traceback
import hmac

import ai_assistant
import chat
import content
import curriculum
import doubts
import live_batches
import mock_tests
import notice_board
import practice
import question_bank
import roles
import study_requirements
import subscriptions
from session_engine import auto_select

# Initialize Flask app with configuration
env = os.environ.get('FLASK_ENV', 'production')
app = Flask(__name__)
config[env].init_app(app)

# Initialize rate limiter
disable_rate_limits = (
    env in ('development', 'testing') or
    os.environ.get('DISABLE_RATE_LIMITS', 'False').lower() == 'true'
)
limiter = Limiter(
    app=app,
    key_func=get_remote_address,
    default_limits=[config[env].RATE_LIMIT_DEFAULT],
    enabled=(not disable_rate_limits),
    storage_uri="memory://"
)
# Initialize security headers with Talisman
Talisman(app,
    force_https=config[env].SESSION_COOKIE_SECURE,
    strict_transport_security=True,
    strict_transport_security_max_age=31536000,
    content_security_policy={
        'default-src': "'self'",
        'script-src': ["'self'", "'unsafe-inline'", "https://cdn.tailwindcss.com", "https://checkout.razorpay.com"],
        'style-src': ["'self'", "'unsafe-inline'", "https://cdn.tailwindcss.com"],
        'img-src': ["'self'", "data:", "https:"],
        'frame-src': ["'self'", "https://www.youtube.com", "https://api.razorpay.com", "https:"],
        'connect-src': ["'self'", "https://api.razorpay.com", "https://lumberjack.razorpay.com"],
    },
    referrer_policy='strict-origin-when-cross-origin'
)
# Initialize Flask-Mail
mail = Mail(app)


# ============================================================================
# SESSION IDENTITY / DECORATORS
# ============================================================================

def require_login(f):
    @wraps(f)
    def wrapper(*args, **kwargs):
        if 'uid' not in session:
            return redirect(url_for('login'))
        return f(*args, **kwargs)
    return wrapper


def require_role(allowed_roles):
    """Teacher access needs the approval marker; admin access needs the admin marker"""
    def decorator(f):
        @wraps(f)
        def wrapper(*args, **kwargs):
            uid = session.get('uid')
            if not uid:
                return redirect(url_for('login'))
            allowed = (
                ('admin' in allowed_roles and roles.is_admin(uid)) or
                ('teacher' in allowed_roles and roles.is_teacher(uid))
            )
            if not allowed:
                abort(403)
            return f(*args, **kwargs)
        return wrapper
    return decorator


require_staff = require_role(['teacher', 'admin'])
require_admin = require_role(['admin'])


def current_profile():
    if 'profile' not in g:
        g.profile = roles.get_profile(session.get('uid'))
    if g.profile is None:
        abort(403)
    return g.profile


def _is_staff():
    if 'is_staff' not in g:
        g.is_staff = roles.is_staff(session.get('uid'))
    return g.is_staff


def _is_admin():
    if 'is_admin' not in g:
        g.is_admin = roles.is_admin(session.get('uid'))
    return g.is_admin


@app.context_processor
def inject_identity():
    uid = session.get('uid')
    if not uid:
        return {'current_uid': None, 'is_staff': False, 'is_admin': False}
    return {'current_uid': uid, 'is_staff': _is_staff(), 'is_admin': _is_admin()}


def csrf_token():
    if 'csrf_token' not in session:
        session['csrf_token'] = TokenManager.generate_csrf_token()
    return session['csrf_token']


app.jinja_env.globals['csrf_token'] = csrf_token


@app.before_request
def check_csrf():
    """Form posts must echo the session token; JSON calls cannot be sent cross-site without CORS"""
    if request.method != 'POST' or request.is_json or not app.config.get('WTF_CSRF_ENABLED'):
        return None
    sent = request.form.get('csrf_token', '')
    expected = session.get('csrf_token', '')
    if not expected or not hmac.compare_digest(sent, expected):
        logger.security_event("csrf_rejected", user_id=session.get('uid'), ip_address=request.remote_addr,
                              path=request.path)
        abort(400)
    return None


def _wants_json():
    return request.is_json or request.path.startswith('/api/')


def _form_errors(result):
    """Flatten marshmallow errors into one flash message"""
    messages = []
    for field, errors in result.items():
        if isinstance(errors, dict):
            errors = [str(e) for e in errors.values()]
        messages.append(f"{field}: {'; '.join(str(e) for e in errors)}")
    return ' | '.join(messages)


def send_notification(subject, recipient, body):
    if not recipient:
        return False
    try:
        msg = Message(
            subject=f"[DCAM Classes] {subject}",
            sender=app.config.get('MAIL_DEFAULT_SENDER'),
            recipients=[recipient],
            body=body
        )
        mail.send(msg)
        return True
    except Exception as e:
        logger.error("mail_send_error", error=str(e), subject=subject)
        return False


# ============================================================================
# AUTH ROUTES
# ============================================================================

@app.route('/')
def index():
    if 'uid' in session:
        return redirect(url_for('dashboard'))
    return render_template('landing.html')


def _create_account(schema, template, register):
    data = {
        'firstName': request.form.get('firstName', '').strip(),
        'lastName': request.form.get('lastName', '').strip(),
        'email': request.form.get('email', '').strip(),
        'password': request.form.get('password', ''),
    }
    if schema is teacher_registration_schema:
        data['phoneNumber'] = request.form.get('phoneNumber', '').strip()
    is_valid, result = validate_schema(schema, data)
    if not is_valid:
        flash(f'Validation error: {_form_errors(result)}', 'error')
        return render_template(template, form=data), 400
    email = result['email']
    password = result['password']
    if roles.is_email_blocked(email):
        logger.security_event("blocked_email_signup", ip_address=request.remote_addr)
        flash('This email has been blocked. Please contact support.', 'error')
        return redirect(url_for('login'))
    admin_email = app.config.get('ADMIN_EMAIL')
    try:
        try:
            existing = admin_auth.get_user_by_email(email)
            if schema is teacher_registration_schema and roles.is_designated_admin(email, admin_email):
                roles.promote_designated_admin(existing.uid, result.get('phoneNumber'))
                flash('Admin account updated. Please login.', 'success')
            else:
                flash('Email already exists. Please login.', 'error')
            return redirect(url_for('login'))
        except admin_auth.UserNotFoundError:
            pass
        user = admin_auth.create_user(email=email, password=password)
        uid = user.uid
        profile = register(uid, result, PasswordManager.hash_password(password), admin_email)
        logger.security_event("user_registered", user_id=uid, ip_address=request.remote_addr)
        is_strong, msg = PasswordManager.is_strong_password(password)
        if not is_strong:
            flash(f'Account created. For a safer password next time: {msg}.', 'info')
        if profile.get('teacherStatus') == 'pending':
            flash('Registration received. An admin will review your teacher account.', 'success')
            return redirect(url_for('login'))
        session['uid'] = uid
        session.permanent = True
        flash('Welcome to DCAM Classes!', 'success')
        return redirect(url_for('dashboard'))
    except Exception as e:
        logger.error("signup_error", error=str(e), email=email)
        flash('Error creating account: An error occurred during registration', 'error')
        return render_template(template, form=data), 500


@app.route('/register', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_SIGNUP)
def register():
    if request.method == 'POST':
        return _create_account(student_registration_schema, 'register.html', roles.register_student)
    return render_template('register.html', form={})


@app.route('/register/teacher', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_SIGNUP)
def register_teacher():
    if request.method == 'POST':
        return _create_account(teacher_registration_schema, 'register_teacher.html', roles.register_teacher)
    return render_template('register_teacher.html', form={})


@app.route('/login', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_LOGIN)
def login():
    if request.method == 'POST':
        client_ip = request.remote_addr
        if not login_rate_limiter.is_allowed(client_ip):
            flash('Too many login attempts. Please try again later.', 'error')
            logger.security_event("login_rate_limited", ip_address=client_ip)
            return redirect(url_for('login'))
        data = {
            'email': request.form.get('email'),
            'password': request.form.get('password')
        }
        is_valid, result = validate_schema(user_login_schema, data)
        if not is_valid:
            flash('Invalid email or password format', 'error')
            return redirect(url_for('login'))
        email = result['email']
        password = result['password']
        if roles.is_email_blocked(email):
            logger.security_event("blocked_login_attempt", ip_address=client_ip)
            flash('Your account has been blocked. Please contact support.', 'error')
            return redirect(url_for('login'))
        try:
            user = admin_auth.get_user_by_email(email)
            uid = user.uid
            profile = roles.get_profile(uid)
            if not profile:
                login_rate_limiter.record_attempt(client_ip)
                flash('Invalid email or password', 'error')
                return redirect(url_for('login'))
            stored_hash = profile.get('password_hash')
            if not stored_hash:
                flash('Please set a password for this account using Forgot password.', 'error')
                return redirect(url_for('forgot_password'))
            if not PasswordManager.verify_password(password, stored_hash):
                login_rate_limiter.record_attempt(client_ip)
                logger.security_event("failed_login", user_id=uid, ip_address=client_ip)
                flash('Invalid email or password', 'error')
                return redirect(url_for('login'))
            if profile.get('status') == 'blocked':
                logger.security_event("blocked_login_attempt", user_id=uid, ip_address=client_ip)
                flash('Your account has been blocked. Please contact support.', 'error')
                return redirect(url_for('login'))
            if profile.get('roleId') == 'teacher' and profile.get('teacherStatus') == 'pending':
                flash('Your teacher account is awaiting admin approval.', 'error')
                return redirect(url_for('login'))
            login_rate_limiter.reset_attempts(client_ip)
            session['uid'] = uid
            session.permanent = True
            logger.security_event("successful_login", user_id=uid, ip_address=client_ip)
            flash('Login successful!', 'success')
            return redirect(url_for('dashboard'))
        except admin_auth.UserNotFoundError:
            login_rate_limiter.record_attempt(client_ip)
            flash('Invalid email or password', 'error')
            return redirect(url_for('login'))
        except Exception as e:
            logger.error("login_error", error=str(e), email=email, ip=client_ip)
            flash('Login error: An error occurred during login', 'error')
            return redirect(url_for('login'))
    return render_template('login.html')


@app.route('/forgot-password', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_SIGNUP)
def forgot_password():
    if request.method == 'POST':
        email = request.form.get('email', '').strip()
        if not validate_email(email):
            flash('Please enter a valid email address.', 'error')
            return render_template('forgot_password.html'), 400
        # same answer whether or not the account exists
        generic = 'If that email is registered, a reset link is on its way.'
        if roles.is_email_blocked(email):
            logger.security_event("blocked_password_reset", ip_address=request.remote_addr)
            flash(generic, 'success')
            return redirect(url_for('login'))
        try:
            user = admin_auth.get_user_by_email(email)
        except admin_auth.UserNotFoundError:
            flash(generic, 'success')
            return redirect(url_for('login'))
        token = TokenManager.generate_secure_token()
        ttl = app.config.get('PASSWORD_RESET_TTL_MINUTES', 60)
        roles.create_password_reset(user.uid, token, ttl_minutes=ttl)
        link = url_for('reset_password', token=token, _external=True)
        send_notification(
            'Reset your password',
            email,
            f"Use this link within {ttl} minutes to choose a new password:\n{link}\n\n"
            "If you did not ask for a reset you can ignore this email."
        )
        flash(generic, 'success')
        return redirect(url_for('login'))
    return render_template('forgot_password.html')


@app.route('/reset-password/<token>', methods=['GET', 'POST'])
@limiter.limit(config[env].RATE_LIMIT_SIGNUP, methods=['POST'])
def reset_password(token):
    uid = roles.password_reset_user(token)
    if not uid:
        flash('This reset link is invalid or has expired. Please request a new one.', 'error')
        return redirect(url_for('forgot_password'))
    if request.method == 'POST':
        data = {
            'password': request.form.get('password', ''),
            'confirmPassword': request.form.get('confirmPassword', ''),
        }
        is_valid, result = validate_schema(password_reset_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('reset_password.html'), 400
        password = result['password']
        admin_auth.update_user(uid, password=password)
        roles.complete_password_reset(token, uid, PasswordManager.hash_password(password))
        login_rate_limiter.reset_attempts(request.remote_addr)
        is_strong, msg = PasswordManager.is_strong_password(password)
        if not is_strong:
            flash(f'For a safer password next time: {msg}.', 'info')
        flash('Password updated. Please login.', 'success')
        return redirect(url_for('login'))
    return render_template('reset_password.html')


@app.route('/logout')
def logout():
    session.clear()
    flash('Logged out successfully', 'success')
    return redirect(url_for('login'))


# ============================================================================
# DASHBOARDS / PROFILES
# ============================================================================

@app.route('/dashboard')
@require_login
def dashboard():
    profile = current_profile()
    uid = profile['id']
    if _is_staff():
        context = {
            'profile': profile,
            'open_doubts': doubts.count_open(),
            'open_requirements': len(study_requirements.requirements_by_status('Open')),
            'my_tests': [t for t in mock_tests.list_official_tests(include_drafts=True) if t.get('teacherId') == uid],
            'my_batches': live_batches.list_batches(include_hidden=True, teacher_id=uid),
            'pending_teachers': roles.list_pending_teachers() if _is_admin() else [],
        }
        return render_template('teacher_dashboard.html', **context)
    tests = mock_tests.list_official_tests()
    context = {
        'profile': profile,
        'progress': practice.progress_overview(uid),
        'recent_results': practice.recent_test_results(uid),
        'upcoming_tests': [t for t in tests if mock_tests.is_upcoming(t)],
        'enrolled_batches': live_batches.enrolled_batches(uid),
        'subscribed': roles.is_subscribed(profile),
    }
    return render_template('student_dashboard.html', **context)


@app.route('/profile', methods=['GET', 'POST'])
@require_login
def profile():
    user = current_profile()
    if request.method == 'POST':
        data = {
            'firstName': request.form.get('firstName', '').strip(),
            'lastName': request.form.get('lastName', '').strip(),
            'phoneNumber': request.form.get('phoneNumber', '').strip(),
            'about': request.form.get('about', '').strip(),
        }
        is_valid, result = validate_schema(profile_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return redirect(url_for('profile'))
        db.collection('users').document(user['id']).update(result)
        logger.info("profile_updated", user_id=user['id'])
        flash('Profile updated.', 'success')
        return redirect(url_for('profile'))
    return render_template('profile.html', profile=user, subscription=subscriptions.get_subscription(user['id']))


@app.route('/teachers/<teacher_id>')
def teacher_profile(teacher_id):
    teacher = roles.get_profile(teacher_id)
    if not teacher or not roles.is_teacher(teacher_id) or teacher.get('status') == 'blocked':
        abort(404)
    context = {
        'teacher': teacher,
        'courses': [c for c in content.list_courses(teacher_id=teacher_id) if c.get('accessLevel', 'free') == 'free'],
        'tests': [t for t in mock_tests.list_official_tests() if t.get('teacherId') == teacher_id],
        'batches': live_batches.list_batches(teacher_id=teacher_id),
    }
    return render_template('teacher_public.html', **context)


# ============================================================================
# ADMIN
# ============================================================================

@app.route('/admin/users')
@require_admin
def admin_users():
    role = request.args.get('role') or None
    return render_template('admin_users.html', users=roles.list_users(role), role=role,
                           pending=roles.list_pending_teachers())


@app.route('/admin/users/<uid>/role', methods=['POST'])
@require_admin
def admin_set_role(uid):
    roles.set_role(uid, request.form.get('role', ''))
    flash('Role updated.', 'success')
    return redirect(url_for('admin_users'))


@app.route('/admin/teachers/<uid>/approve', methods=['POST'])
@require_admin
def admin_approve_teacher(uid):
    roles.approve_teacher(uid)
    teacher = roles.get_profile(uid)
    send_notification(
        'Your teacher account is approved',
        teacher.get('email') if teacher else None,
        f"Hello {roles.display_name(teacher)},\n\nYour DCAM Classes teacher account has been approved. "
        "You can now log in and start creating content."
    )
    flash('Teacher approved.', 'success')
    return redirect(url_for('admin_users'))


@app.route('/admin/users/<uid>/block', methods=['POST'])
@require_admin
def admin_block_user(uid):
    if uid == session['uid']:
        flash('You cannot block yourself.', 'error')
        return redirect(url_for('admin_users'))
    roles.block_user(uid)
    flash('User blocked.', 'success')
    return redirect(url_for('admin_users'))


@app.route('/admin/blocked')
@require_admin
def admin_blocked():
    return render_template('admin_blocked.html', entries=roles.list_blocked_emails())


@app.route('/admin/blocked/unblock', methods=['POST'])
@require_admin
def admin_unblock():
    roles.unblock_email(request.form.get('email', ''))
    flash('Email unblocked.', 'success')
    return redirect(url_for('admin_blocked'))


@app.route('/admin/blocked/delete', methods=['POST'])
@require_admin
def admin_delete_blocked():
    uid = roles.delete_blocked_user(request.form.get('email', ''))
    if uid:
        try:
            admin_auth.delete_user(uid)
        except admin_auth.UserNotFoundError:
            pass
    flash('User deleted.', 'success')
    return redirect(url_for('admin_blocked'))


# ============================================================================
# CURRICULUM
# ============================================================================

CURRICULUM_FORMS = {
    'exam-type': (exam_type_schema, curriculum.add_exam_type),
    'class': (class_schema, curriculum.add_class),
    'subject': (subject_schema, curriculum.add_subject),
    'topic': (topic_schema, curriculum.add_topic),
}


@app.route('/admin/curriculum')
@require_staff
def admin_curriculum():
    return render_template(
        'curriculum.html',
        exam_types=curriculum.list_exam_types(),
        classes=curriculum.list_classes(),
        tree=curriculum.curriculum_tree(),
    )


@app.route('/admin/curriculum/<kind>', methods=['POST'])
@require_staff
def admin_curriculum_add(kind):
    if kind not in CURRICULUM_FORMS:
        abort(404)
    schema, add = CURRICULUM_FORMS[kind]
    is_valid, result = validate_schema(schema, request.form.to_dict())
    if not is_valid:
        flash(f'Validation error: {_form_errors(result)}', 'error')
    else:
        add(result)
        flash(f"Added {result['name']}.", 'success')
    return redirect(url_for('admin_curriculum'))


@app.route('/api/curriculum')
@require_login
def api_curriculum():
    return jsonify({
        'examTypes': curriculum.list_exam_types(),
        'classes': curriculum.list_classes(),
        'subjects': curriculum.curriculum_tree(),
    })


@app.cli.command('seed-curriculum')
def seed_curriculum_command():
    """Load the bundled JEE syllabus into Firestore"""
    created = curriculum.seed_default_curriculum()
    print(', '.join(f"{count} {kind}" for kind, count in created.items()) + ' created')


# ============================================================================
# PRACTICE
# ============================================================================

@app.route('/practice')
@require_login
def practice_library():
    tree = curriculum.curriculum_tree()
    names = curriculum.topic_names()
    questions = question_bank.library(names)
    return render_template('practice_library.html', tree=tree, questions=questions, topic_names=names)


def _question_form():
    form = request.form
    return {
        'questionText': form.get('questionText', '').strip(),
        'questionType': form.get('questionType', 'MCQ'),
        'options': form.getlist('options'),
        'correctAnswer': form.get('correctAnswer', '').strip(),
        'numericalAnswer': form.get('numericalAnswer') or None,
        'subjectId': form.get('subjectId', ''),
        'topicId': form.get('topicId', ''),
        'examTypeId': form.get('examTypeId', ''),
        'difficultyLevel': form.get('difficultyLevel', 'Easy'),
        'accessLevel': form.get('accessLevel', 'free'),
        'imageUrl': form.get('imageUrl', '').strip(),
        'explanationImageUrl': form.get('explanationImageUrl', '').strip(),
    }


@app.route('/practice/questions/new', methods=['GET', 'POST'])
@require_staff
def new_question():
    if request.method == 'POST':
        data = _question_form()
        is_valid, result = validate_schema(question_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('question_form.html', form=data, tree=curriculum.curriculum_tree()), 400
        question_bank.create_question(result, session['uid'])
        flash('Question added to the bank.', 'success')
        return redirect(url_for('practice_library'))
    return render_template('question_form.html', form={'options': ['', '', '', '']}, tree=curriculum.curriculum_tree())


@app.route('/api/ai/extract-mcq', methods=['POST'])
@require_staff
def api_extract_mcq():
    payload = request.get_json(silent=True) or {}
    extracted = ai_assistant.extract_mcq_from_image(payload.get('image', ''))
    if extracted.get('error'):
        return jsonify(extracted), 502
    return jsonify(question_bank.prefill_from_extraction(extracted))


@app.route('/practice/start')
@require_login
def start_practice():
    test_session = practice.start_practice_session(request.args)
    if test_session is None:
        return render_template('practice_empty.html'), 404
    mock_tests.save_session(session['uid'], test_session)
    logger.info("practice_started", user_id=session['uid'], session_id=test_session.session_id,
                questions=test_session.total)
    return redirect(url_for('take_session', session_id=test_session.session_id))


@app.route('/api/ai/learning-path', methods=['POST'])
@require_login
def api_learning_path():
    payload = request.get_json(silent=True) or {}
    weak = payload.get('weakSubjects')
    if not weak:
        weak = [t['topic'] for t in practice.progress_overview(session['uid'])['weak_topics']]
    return jsonify(ai_assistant.personalized_learning_path(weak))


# ============================================================================
# TEST SESSIONS (practice, custom and official share one engine)
# ============================================================================

def _record_result(test_session):
    uid = session['uid']
    if test_session.kind == 'practice':
        practice.record_practice_result(uid, test_session)
    else:
        mock_tests.record_test_result(uid, current_profile(), test_session)


def _run_session_action(session_id, action):
    """Apply one transition and persist the session even when it raises"""
    uid = session['uid']
    test_session = mock_tests.load_session(uid, session_id)
    was_finished = test_session.finished
    try:
        action(test_session)
    finally:
        mock_tests.save_session(uid, test_session)
        if test_session.finished and not was_finished:
            _record_result(test_session)
    return test_session


SESSION_ACTIONS = {
    'select': lambda s, body: s.select(int(body.get('index', -1))),
    'next': lambda s, body: s.save_and_next(),
    'mark': lambda s, body: s.mark_for_review(),
    'clear': lambda s, body: s.clear_response(),
    'answer': lambda s, body: s.answer(body.get('value')),
    'submit': lambda s, body: s.submit(),
}


@app.route('/sessions/<session_id>')
@require_login
def take_session(session_id):
    test_session = mock_tests.load_session(session['uid'], session_id)
    if test_session.finished:
        return redirect(url_for('session_result', session_id=session_id))
    return render_template('take_session.html', test_session=test_session, state=test_session.state())


@app.route('/api/sessions/<session_id>')
@require_login
def api_session_state(session_id):
    test_session = _run_session_action(session_id, lambda s: s.is_expired() and not s.finished and s.submit())
    return jsonify(test_session.state())


@app.route('/api/sessions/<session_id>/<action>', methods=['POST'])
@require_login
def api_session_action(session_id, action):
    if action not in SESSION_ACTIONS:
        abort(404)
    body = request.get_json(silent=True) or {}
    try:
        test_session = _run_session_action(session_id, lambda s: SESSION_ACTIONS[action](s, body))
    except (TypeError, ValueError):
        raise ValidationFailed('Malformed request body.', action=action)
    state = test_session.state()
    if test_session.finished:
        state['resultUrl'] = url_for('session_result', session_id=session_id)
    return jsonify(state)


@app.route('/sessions/<session_id>/result')
@require_login
def session_result(session_id):
    test_session = mock_tests.load_session(session['uid'], session_id)
    if not test_session.finished:
        return redirect(url_for('take_session', session_id=session_id))
    return render_template('session_result.html', test_session=test_session,
                           review=test_session.review(), percentage=test_session.percentage())


# ============================================================================
# MOCK TESTS
# ============================================================================

@app.route('/mock-tests')
@require_login
def list_mock_tests():
    profile = current_profile()
    staff = _is_staff()
    tests = mock_tests.list_official_tests(include_drafts=staff)
    rows = [{
        **t,
        'totalQuestions': mock_tests.total_questions(t),
        'totalDuration': mock_tests.total_duration(t),
        'upcoming': mock_tests.is_upcoming(t),
        'canTake': mock_tests.can_take(t, profile, staff),
    } for t in tests]
    custom = [{**t, 'totalQuestions': mock_tests.total_questions(t)} for t in mock_tests.list_custom_tests(profile['id'])]
    return render_template('mock_tests.html', tests=rows, custom_tests=custom)


def _official_test_form():
    form = request.form
    names = curriculum.subject_names()
    subjects = [
        {'subjectId': sid, 'subjectName': names.get(sid, 'Unknown Subject'), 'numQuestions': num, 'duration': dur}
        for sid, num, dur in zip(form.getlist('subjectId'), form.getlist('numQuestions'), form.getlist('duration'))
        if sid
    ]
    return {
        'title': form.get('title', '').strip(),
        'startTime': form.get('startTime', ''),
        'examCategory': form.get('examCategory', 'Both'),
        'accessLevel': form.get('accessLevel', 'free'),
        'subjects': subjects,
        'publicationStatus': form.get('publicationStatus', 'published'),
        'liveBatchId': form.get('liveBatchId', ''),
    }


@app.route('/mock-tests/new', methods=['GET', 'POST'])
@require_staff
def new_mock_test():
    if request.method == 'POST':
        data = _official_test_form()
        is_valid, result = validate_schema(official_test_create_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('mock_test_form.html', form=data, subjects=curriculum.list_subjects(),
                                   batches=live_batches.list_batches(include_hidden=True)), 400
        mock_tests.create_official_test(result, session['uid'])
        flash('Mock test created.', 'success')
        return redirect(url_for('list_mock_tests'))
    return render_template('mock_test_form.html', form={}, subjects=curriculum.list_subjects(),
                           batches=live_batches.list_batches(include_hidden=True))


@app.route('/mock-tests/<test_id>/edit', methods=['GET', 'POST'])
@require_staff
def edit_mock_test(test_id):
    test = mock_tests.get_official_test(test_id)
    if request.method == 'POST':
        data = _official_test_form()
        is_valid, result = validate_schema(official_test_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return redirect(url_for('edit_mock_test', test_id=test_id))
        mock_tests.update_official_test(test_id, result, session['uid'], admin=_is_admin())
        flash('Mock test updated.', 'success')
        return redirect(url_for('list_mock_tests'))
    form = {**test, 'subjects': (test.get('config') or {}).get('subjects', [])}
    return render_template('mock_test_form.html', form=form, test=test, subjects=curriculum.list_subjects(),
                           batches=live_batches.list_batches(include_hidden=True))


@app.route('/mock-tests/<test_id>/start', methods=['POST'])
@require_login
def start_mock_test(test_id):
    test = mock_tests.get_official_test(test_id)
    if test.get('publicationStatus', 'published') != 'published' and not _is_staff():
        abort(404)
    test_session = mock_tests.start_official_session(test, current_profile(), _is_staff())
    mock_tests.save_session(session['uid'], test_session)
    logger.info("mock_test_started", user_id=session['uid'], test_id=test_id, session_id=test_session.session_id)
    return redirect(url_for('take_session', session_id=test_session.session_id))


@app.route('/mock-tests/<test_id>/leaderboard')
@require_login
def mock_test_leaderboard(test_id):
    test = mock_tests.get_official_test(test_id)
    return render_template('leaderboard.html', test=test, groups=mock_tests.leaderboard(test_id))


def _custom_test_form():
    form = request.form
    return {
        'title': form.get('title', '').strip(),
        'accessLevel': form.get('accessLevel', 'free'),
        'duration': form.get('duration', ''),
        'totalQuestions': form.get('totalQuestions', ''),
        'subjectConfigs': [
            {'subjectId': sid, 'numQuestions': num}
            for sid, num in zip(form.getlist('subjectId'), form.getlist('numQuestions'))
        ],
        'questionIds': [q for q in form.getlist('questionIds') if q],
    }


@app.route('/custom-tests/new', methods=['GET', 'POST'])
@require_login
def new_custom_test():
    if request.method == 'POST':
        data = _custom_test_form()
        is_valid, result = validate_schema(custom_test_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('custom_test_form.html', form=data, subjects=curriculum.list_subjects()), 400
        mock_tests.create_custom_test(session['uid'], result)
        flash('Custom test saved.', 'success')
        return redirect(url_for('list_mock_tests'))
    return render_template('custom_test_form.html', form={}, subjects=curriculum.list_subjects())


@app.route('/custom-tests/<test_id>/edit', methods=['GET', 'POST'])
@require_login
def edit_custom_test(test_id):
    test = mock_tests.get_custom_test(session['uid'], test_id)
    if request.method == 'POST':
        data = _custom_test_form()
        is_valid, result = validate_schema(custom_test_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return redirect(url_for('edit_custom_test', test_id=test_id))
        mock_tests.update_custom_test(session['uid'], test_id, result)
        flash('Custom test updated.', 'success')
        return redirect(url_for('list_mock_tests'))
    config_ = test.get('config') or {}
    form = {'title': test.get('title'), 'accessLevel': test.get('accessLevel'), **config_}
    return render_template('custom_test_form.html', form=form, test=test, subjects=curriculum.list_subjects())


@app.route('/custom-tests/<test_id>/start', methods=['POST'])
@require_login
def start_custom_test(test_id):
    test = mock_tests.get_custom_test(session['uid'], test_id)
    test_session = mock_tests.start_custom_session(test)
    mock_tests.save_session(session['uid'], test_session)
    return redirect(url_for('take_session', session_id=test_session.session_id))


@app.route('/api/custom-tests/auto-select', methods=['POST'])
@require_login
def api_auto_select():
    payload = request.get_json(silent=True) or {}
    configs = payload.get('subjectConfigs') or []
    try:
        total = int(payload.get('totalQuestions') or 0)
        configs = [{'subjectId': c['subjectId'], 'numQuestions': int(c['numQuestions'])} for c in configs]
    except (KeyError, TypeError, ValueError):
        raise ValidationFailed('Each subject needs a subjectId and a question count.')
    access_level = payload.get('accessLevel') or None
    pool = []
    for cfg in configs:
        pool.extend(question_bank.fetch_questions(subjectId=cfg['subjectId']))
    question_ids = auto_select(pool, configs, total, access_level, curriculum.subject_names())
    return jsonify({'questionIds': question_ids})


# ============================================================================
# CONTENT / COURSES
# ============================================================================

CONTENT_FILTERS = ('examTypeId', 'classId', 'subjectId', 'topicId', 'type', 'difficultyLevel', 'accessLevel')


@app.route('/content')
@require_login
def list_content():
    profile = current_profile()
    filters = {key: request.args.get(key) for key in CONTENT_FILTERS if request.args.get(key)}
    subscribed = roles.is_subscribed(profile)
    items = [{**item, 'locked': content.is_locked(item, subscribed, _is_staff())}
             for item in content.list_content(**filters)]
    return render_template('content_list.html', items=items, filters=filters, tree=curriculum.curriculum_tree())


@app.route('/content/<content_id>')
@require_login
def view_content(content_id):
    item = content.get_content(content_id)
    locked = content.is_locked(item, roles.is_subscribed(current_profile()), _is_staff())
    kind, embed = (None, None) if locked else content.embed_url(item.get('videoUrl') or item.get('fileUrl'))
    return render_template('content_detail.html', item=item, locked=locked, embed_kind=kind, embed=embed)


def _content_form():
    return {key: request.form.get(key, '').strip() for key in (
        'title', 'description', 'type', 'videoUrl', 'fileUrl', 'examTypeId', 'classId',
        'subjectId', 'topicId', 'difficultyLevel', 'accessLevel')}


@app.route('/content/new', methods=['GET', 'POST'])
@require_staff
def new_content():
    if request.method == 'POST':
        data = _content_form()
        is_valid, result = validate_schema(content_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('content_form.html', form=data, exam_types=curriculum.list_exam_types(),
                                   classes=curriculum.list_classes(), tree=curriculum.curriculum_tree()), 400
        item = content.create_content(result, session['uid'])
        flash('Content published.', 'success')
        return redirect(url_for('view_content', content_id=item['id']))
    return render_template('content_form.html', form={}, exam_types=curriculum.list_exam_types(),
                           classes=curriculum.list_classes(), tree=curriculum.curriculum_tree())


@app.route('/content/<content_id>/edit', methods=['GET', 'POST'])
@require_staff
def edit_content(content_id):
    item = content.get_content(content_id)
    if request.method == 'POST':
        is_valid, result = validate_schema(content_schema, _content_form())
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return redirect(url_for('edit_content', content_id=content_id))
        content.update_content(content_id, result, session['uid'], admin=_is_admin())
        flash('Content updated.', 'success')
        return redirect(url_for('view_content', content_id=content_id))
    return render_template('content_form.html', form=item, item=item, exam_types=curriculum.list_exam_types(),
                           classes=curriculum.list_classes(), tree=curriculum.curriculum_tree())


@app.route('/content/<content_id>/delete', methods=['POST'])
@require_staff
def delete_content(content_id):
    content.delete_content(content_id, session['uid'], admin=_is_admin())
    flash('Content deleted.', 'success')
    return redirect(url_for('list_content'))


@app.route('/courses')
@require_login
def list_courses():
    return render_template('courses.html', courses=content.list_courses(include_drafts=_is_staff()))


@app.route('/courses/<course_id>')
@require_login
def view_course(course_id):
    course = content.get_course(course_id)
    if course.get('publicationStatus', 'published') != 'published' and not _is_staff():
        abort(404)
    subscribed = roles.is_subscribed(current_profile())
    items = [{**item, 'locked': content.is_locked(item, subscribed, _is_staff())}
             for item in content.course_content(course)]
    return render_template('course_detail.html', course=course, items=items,
                           locked=content.is_locked(course, subscribed, _is_staff()))


@app.route('/courses/new', methods=['GET', 'POST'])
@require_staff
def new_course():
    if request.method == 'POST':
        form = request.form
        data = {
            'title': form.get('title', '').strip(),
            'description': form.get('description', '').strip(),
            'price': form.get('price', '0'),
            'imageUrl': form.get('imageUrl', '').strip(),
            'classLevel': form.get('classLevel', ''),
            'subjectIds': form.getlist('subjectIds'),
            'contentIds': form.getlist('contentIds'),
            'accessLevel': form.get('accessLevel', 'free'),
            'publicationStatus': form.get('publicationStatus', 'published'),
        }
        is_valid, result = validate_schema(course_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('course_form.html', form=data, subjects=curriculum.list_subjects(),
                                   items=content.list_content()), 400
        course = content.create_course(result, session['uid'])
        flash('Course created.', 'success')
        return redirect(url_for('view_course', course_id=course['id']))
    return render_template('course_form.html', form={}, subjects=curriculum.list_subjects(),
                           items=content.list_content())


# ============================================================================
# CHAT
# ============================================================================

@app.route('/chat', methods=['GET', 'POST'])
@require_login
def group_chat():
    if request.method == 'POST':
        data = {'text': request.form.get('text', ''), 'imageUrl': request.form.get('imageUrl', '').strip()}
        is_valid, result = validate_schema(group_message_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
        else:
            chat.post_group_message(current_profile(), result['text'], result['imageUrl'])
        return redirect(url_for('group_chat'))
    return render_template('chat_group.html', messages=chat.group_messages())


@app.route('/chat/direct')
@require_login
def direct_contacts():
    return render_template('chat_contacts.html', contacts=chat.contacts(current_profile(), _is_staff()))


@app.route('/chat/direct/<other_uid>', methods=['GET', 'POST'])
@require_login
def direct_chat(other_uid):
    other = roles.get_profile(other_uid)
    if not other:
        abort(404)
    conversation = chat.chat_id(session['uid'], other_uid)
    if request.method == 'POST':
        is_valid, result = validate_schema(direct_message_schema, {'text': request.form.get('text', '').strip()})
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
        else:
            chat.send_direct_message(conversation, current_profile(), result['text'])
        return redirect(url_for('direct_chat', other_uid=other_uid))
    return render_template('chat_direct.html', other=other,
                           messages=chat.direct_messages(conversation, session['uid']))


# ============================================================================
# DOUBTS
# ============================================================================

@app.route('/doubts', methods=['GET', 'POST'])
@require_login
def student_doubts():
    profile = current_profile()
    if request.method == 'POST':
        data = {
            'topicId': request.form.get('topicId', ''),
            'question': request.form.get('question', '').strip(),
            'attachmentUrls': [u.strip() for u in request.form.getlist('attachmentUrls') if u.strip()],
        }
        is_valid, result = validate_schema(doubt_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
        else:
            doubts.ask_doubt(profile, result)
            flash('Your doubt has been posted.', 'success')
        return redirect(url_for('student_doubts'))
    return render_template('doubts.html', doubts=doubts.doubts_for_student(profile['id']),
                           tree=curriculum.curriculum_tree(), topic_names=curriculum.topic_names())


@app.route('/doubts/<doubt_id>/close', methods=['POST'])
@require_login
def close_doubt(doubt_id):
    doubts.close_doubt(doubt_id, session['uid'])
    flash('Doubt closed.', 'success')
    return redirect(url_for('student_doubts'))


@app.route('/teacher/doubts')
@require_staff
def teacher_doubts():
    return render_template('teacher_doubts.html', board=doubts.doubt_board(), topic_names=curriculum.topic_names())


@app.route('/teacher/doubts/<doubt_id>/answer', methods=['POST'])
@require_staff
def answer_doubt(doubt_id):
    data = {
        'answer': request.form.get('answer', '').strip(),
        'attachmentUrls': [u.strip() for u in request.form.getlist('attachmentUrls') if u.strip()],
    }
    is_valid, result = validate_schema(doubt_answer_schema, data)
    if not is_valid:
        flash(f'Validation error: {_form_errors(result)}', 'error')
        return redirect(url_for('teacher_doubts'))
    doubt = doubts.answer_doubt(doubt_id, current_profile(), result)
    student = roles.get_profile(doubt.get('studentId'))
    send_notification(
        'Your doubt has been answered',
        student.get('email') if student else None,
        f"Hello {doubt.get('studentName')},\n\n{doubt.get('teacherName')} answered your doubt:\n\n"
        f"Q: {doubt.get('question')}\n\nA: {doubt.get('answer')}"
    )
    flash('Answer posted.', 'success')
    return redirect(url_for('teacher_doubts'))


# ============================================================================
# STUDY REQUIREMENTS
# ============================================================================

@app.route('/requirements', methods=['GET', 'POST'])
@require_login
def student_requirements():
    profile = current_profile()
    if request.method == 'POST':
        data = {key: request.form.get(key, '').strip() for key in ('subject', 'examType', 'classPreference')}
        is_valid, result = validate_schema(study_requirement_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
        else:
            study_requirements.post_requirement(profile, result)
            flash('Requirement posted. Teachers will reach out to you.', 'success')
        return redirect(url_for('student_requirements'))
    items = [{**r, 'posted': study_requirements.posted_label(r.get('createdAt'))}
             for r in study_requirements.requirements_for_student(profile['id'])]
    return render_template('requirements.html', requirements=items)


@app.route('/requirements/<requirement_id>/delete', methods=['POST'])
@require_login
def delete_requirement(requirement_id):
    study_requirements.delete_requirement(requirement_id, session['uid'])
    flash('Requirement deleted.', 'success')
    return redirect(url_for('student_requirements'))


@app.route('/teacher/requirements')
@require_staff
def teacher_requirements():
    def labelled(status):
        return [{**r, 'posted': study_requirements.posted_label(r.get('createdAt'))}
                for r in study_requirements.requirements_by_status(status)]
    return render_template('teacher_requirements.html', open_items=labelled('Open'), closed_items=labelled('Closed'))


@app.route('/teacher/requirements/<requirement_id>/close', methods=['POST'])
@require_staff
def close_requirement(requirement_id):
    study_requirements.close_requirement(requirement_id, session['uid'])
    flash('Requirement marked as closed.', 'success')
    return redirect(url_for('teacher_requirements'))


# ============================================================================
# SUBSCRIPTIONS / CHECKOUT
# ============================================================================

PLAN_FIELDS = ('name', 'price', 'billingInterval', 'examTypeId', 'classId', 'subjectId', 'topicId',
               'features', 'numberOfLiveClasses', 'linkedContentType', 'linkedContentId')


def _plan_form():
    data = {key: request.form.get(key, '').strip() for key in PLAN_FIELDS}
    data['numberOfLiveClasses'] = data['numberOfLiveClasses'] or 0
    if request.form.get('sessionFee', '').strip():
        data['sessionFee'] = request.form['sessionFee'].strip()
    return data


@app.route('/subscriptions')
@require_login
def list_plans():
    profile = current_profile()
    return render_template('plans.html', plans=subscriptions.list_plans(),
                           current_plan_id=profile.get('subscriptionPlanId') if roles.is_subscribed(profile) else None)


@app.route('/teacher/plans/new', methods=['GET', 'POST'])
@require_staff
def new_plan():
    if request.method == 'POST':
        data = _plan_form()
        is_valid, result = validate_schema(plan_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('plan_form.html', form=data, exam_types=curriculum.list_exam_types()), 400
        subscriptions.create_plan(result, session['uid'])
        flash('Plan created.', 'success')
        return redirect(url_for('list_plans'))
    return render_template('plan_form.html', form={}, exam_types=curriculum.list_exam_types())


@app.route('/teacher/plans/<plan_id>/edit', methods=['GET', 'POST'])
@require_staff
def edit_plan(plan_id):
    plan = subscriptions.get_plan(plan_id)
    if request.method == 'POST':
        is_valid, result = validate_schema(plan_schema, _plan_form())
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return redirect(url_for('edit_plan', plan_id=plan_id))
        subscriptions.update_plan(plan_id, result, session['uid'])
        flash('Plan updated.', 'success')
        return redirect(url_for('list_plans'))
    form = {**plan, 'features': '\n'.join(plan.get('features') or [])}
    return render_template('plan_form.html', form=form, plan=plan, exam_types=curriculum.list_exam_types())


@app.route('/teacher/plans/<plan_id>/delete', methods=['POST'])
@require_staff
def delete_plan(plan_id):
    subscriptions.delete_plan(plan_id, session['uid'])
    flash('Plan deleted.', 'success')
    return redirect(url_for('list_plans'))


@app.route('/checkout/<plan_id>')
@require_login
def checkout(plan_id):
    plan = subscriptions.get_plan(plan_id)
    return render_template('checkout.html', plan=plan, key_id=app.config.get('RAZORPAY_KEY_ID'),
                           profile=current_profile())


@app.route('/api/checkout/order', methods=['POST'])
@require_login
def api_create_order():
    """Order for a plan, or for a number of live batch sessions"""
    payload = request.get_json(silent=True) or {}
    uid = session['uid']
    if payload.get('planId'):
        plan = subscriptions.get_plan(payload['planId'])
        amount = float(plan.get('price') or 0)
        target = {'planId': plan['id']}
    elif payload.get('batchId'):
        batch = live_batches.get_batch(payload['batchId'])
        try:
            count = int(payload.get('sessions') or 0)
        except (TypeError, ValueError):
            raise ValidationFailed('Number of sessions must be a whole number.')
        remaining = live_batches.purchasable_sessions(batch, live_batches.list_sessions(batch['id']))
        if count < 1 or count > remaining:
            raise ValidationFailed(f"You can purchase between 1 and {remaining} sessions.")
        amount = count * float(batch.get('perSessionFee') or 0)
        target = {'batchId': batch['id'], 'sessions': count}
    else:
        raise ValidationFailed('Nothing to pay for.')
    notes = {'userId': uid, **{key: str(value) for key, value in target.items()}}
    order = subscriptions.create_order(amount, receipt=f"rcpt_{uid[:8]}_{int(datetime.utcnow().timestamp())}",
                                       notes=notes)
    subscriptions.record_order(uid, order, target)
    return jsonify({
        'orderId': order['id'],
        'amount': order['amount'],
        'currency': order.get('currency', subscriptions.CURRENCY),
        'keyId': app.config.get('RAZORPAY_KEY_ID'),
    })


@app.route('/checkout/verify', methods=['POST'])
@require_login
def verify_checkout():
    """Fulfil a signed payment from the order stored when it was created"""
    form = request.form
    order_id = form.get('razorpay_order_id', '')
    payment_id = form.get('razorpay_payment_id', '')
    signature = form.get('razorpay_signature', '')
    uid = session['uid']
    if not subscriptions.verify_payment(order_id, payment_id, signature):
        logger.security_event("payment_signature_mismatch", user_id=uid, ip_address=request.remote_addr)
        return redirect(url_for('checkout_complete', status='error'))
    try:
        order = subscriptions.claim_order(uid, order_id, payment_id)
        if order.get('planId'):
            subscriptions.activate_subscription(uid, subscriptions.get_plan(order['planId']))
        elif order.get('batchId'):
            batch = live_batches.get_batch(order['batchId'])
            live_batches.purchase_sessions(uid, batch, live_batches.list_sessions(batch['id']),
                                           int(order.get('sessions') or 0), payment_id=payment_id)
        else:
            raise PaymentError('Payment did not reference a plan or batch.')
        subscriptions.mark_order_paid(uid, order_id, payment_id)
    except (DCAMError, ValueError) as e:
        logger.security_event("payment_fulfilment_refused", user_id=uid, ip_address=request.remote_addr,
                              order_id=order_id, payment_id=payment_id, error=str(e))
        return redirect(url_for('checkout_complete', status='error'))
    logger.info("payment_verified", user_id=uid, order_id=order_id, payment_id=payment_id)
    return redirect(url_for('checkout_complete', status='success'))


@app.route('/checkout/complete')
@require_login
def checkout_complete():
    status = request.args.get('status', 'error')
    return render_template('checkout_complete.html', success=(status == 'success'))


# ============================================================================
# LIVE BATCHES
# ============================================================================

@app.route('/live-batches')
@require_login
def list_live_batches():
    batches = live_batches.list_batches(include_hidden=_is_staff())
    return render_template('live_batches.html', batches=batches)


@app.route('/live-batches/<batch_id>')
@require_login
def view_live_batch(batch_id):
    staff = _is_staff()
    batch = live_batches.get_batch(batch_id, staff=staff)
    sessions = live_batches.list_sessions(batch_id)
    names = curriculum.subject_names()
    enrollment = live_batches.get_enrollment(session['uid'], batch_id)
    context = {
        'batch': batch,
        'sessions': sessions,
        'slots': live_batches.upcoming_slots(batch, sessions, live_batches.local_today(), names),
        'next_class': live_batches.next_class(batch, sessions, subject_names=names),
        'enrollment': enrollment,
        'remaining': live_batches.remaining_batch_sessions(batch, sessions),
        'remaining_paid': live_batches.remaining_paid_sessions(enrollment, sessions) if enrollment else 0,
        'has_access': live_batches.has_classroom_access(batch, enrollment, sessions, staff),
        'students': live_batches.batch_students(batch_id) if staff else [],
        'key_id': app.config.get('RAZORPAY_KEY_ID'),
    }
    return render_template('live_batch_detail.html', **context)


@app.route('/live-batches/<batch_id>/enroll', methods=['POST'])
@require_login
def enroll_live_batch(batch_id):
    batch = live_batches.get_batch(batch_id)
    live_batches.enroll_free(session['uid'], batch)
    flash('You are enrolled in this batch.', 'success')
    return redirect(url_for('view_live_batch', batch_id=batch_id))


@app.route('/live-batches/<batch_id>/classroom')
@require_login
def live_classroom(batch_id):
    staff = _is_staff()
    batch = live_batches.get_batch(batch_id, staff=staff)
    sessions = live_batches.list_sessions(batch_id)
    enrollment = live_batches.get_enrollment(session['uid'], batch_id)
    if not live_batches.has_classroom_access(batch, enrollment, sessions, staff):
        flash('Purchase sessions to enter the classroom.', 'error')
        return redirect(url_for('view_live_batch', batch_id=batch_id))
    return render_template('live_classroom.html', batch=batch,
                           meetings=live_batches.upcoming_meetings(sessions),
                           recordings=[s for s in sessions if s.get('type') == 'previous_session'],
                           notices=live_batches.schedule_notices(sessions))


def _live_batch_form():
    data = {key: request.form.get(key, '').strip() for key in (
        'title', 'description', 'outcomes', 'examTypeId', 'classId', 'batchStartDate',
        'accessLevel', 'totalSessions', 'perSessionFee', 'thumbnailUrl', 'publicationStatus')}
    data['totalSessions'] = data['totalSessions'] or 0
    data['perSessionFee'] = data['perSessionFee'] or 0
    data['subjectIds'] = request.form.getlist('subjectIds')
    try:
        data['subjectSchedules'] = json.loads(request.form.get('subjectSchedules') or '[]')
    except ValueError:
        raise ValidationFailed('Subject schedules are malformed.')
    return data


@app.route('/teacher/live-batches/new', methods=['GET', 'POST'])
@require_staff
def new_live_batch():
    if request.method == 'POST':
        data = _live_batch_form()
        is_valid, result = validate_schema(live_batch_schema, data)
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return render_template('live_batch_form.html', form=data, subjects=curriculum.list_subjects()), 400
        batch = live_batches.create_batch(result, current_profile())
        flash('Live batch created.', 'success')
        return redirect(url_for('view_live_batch', batch_id=batch['id']))
    return render_template('live_batch_form.html', form={}, subjects=curriculum.list_subjects())


@app.route('/teacher/live-batches/<batch_id>/edit', methods=['GET', 'POST'])
@require_staff
def edit_live_batch(batch_id):
    batch = live_batches.get_batch(batch_id, staff=True)
    if request.method == 'POST':
        is_valid, result = validate_schema(live_batch_schema, _live_batch_form())
        if not is_valid:
            flash(f'Validation error: {_form_errors(result)}', 'error')
            return redirect(url_for('edit_live_batch', batch_id=batch_id))
        live_batches.update_batch(batch_id, result, session['uid'], admin=_is_admin())
        flash('Live batch updated.', 'success')
        return redirect(url_for('view_live_batch', batch_id=batch_id))
    form = {**batch, 'subjectSchedules': json.dumps(batch.get('subjectSchedules') or [])}
    return render_template('live_batch_form.html', form=form, batch=batch, subjects=curriculum.list_subjects())


@app.route('/teacher/live-batches/<batch_id>/delete', methods=['POST'])
@require_staff
def delete_live_batch(batch_id):
    live_batches.delete_batch(batch_id, session['uid'], admin=_is_admin())
    flash('Live batch deleted.', 'success')
    return redirect(url_for('list_live_batches'))


@app.route('/teacher/live-batches/<batch_id>/sessions', methods=['POST'])
@require_staff
def add_live_session(batch_id):
    data = {key: request.form.get(key, '').strip() for key in (
        'type', 'date', 'holidayEndDate', 'meetingTime', 'meetingTitle', 'subjectId',
        'zoomLink', 'previousSessionUrl', 'reason', 'sessionLabel')}
    is_valid, result = validate_schema(live_session_schema, data)
    if not is_valid:
        flash(f'Validation error: {_form_errors(result)}', 'error')
    else:
        live_batches.add_session(batch_id, result, session['uid'], admin=_is_admin())
        flash('Schedule updated.', 'success')
    return redirect(url_for('view_live_batch', batch_id=batch_id))


@app.route('/teacher/live-sessions/<session_id>/delete', methods=['POST'])
@require_staff
def delete_live_session(session_id):
    live_batches.delete_session(session_id, session['uid'], admin=_is_admin())
    flash('Session removed.', 'success')
    return redirect(request.referrer or url_for('list_live_batches'))


# ============================================================================
# NOTICE BOARD
# ============================================================================

def _notice_board():
    assistant = ai_assistant.get_assistant()
    validator = ai_assistant.validate_notice_window if assistant.ai_available else None
    return notice_board.fetch_notice_board(validator=validator, ttl=app.config.get('NOTICE_BOARD_TTL'))


@app.route('/notice-board')
def notice_board_page():
    return render_template('notice_board.html', board=_notice_board())


@app.route('/api/notice-board')
def api_notice_board():
    return jsonify(_notice_board())


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.errorhandler(DCAMError)
def domain_error(error):
    """Domain errors become JSON for API calls and a flash plus redirect for pages"""
    logger.warning("domain_error", kind=error.kind, message=error.message, path=request.path,
                   user_id=session.get('uid'))
    if _wants_json():
        return jsonify(error.to_dict()), error.status_code
    if isinstance(error, NotFound):
        return render_template('error.html', error_code=404, error_message=error.message), 404
    flash(error.message, 'error')
    target = request.referrer if request.method == 'POST' else None
    return redirect(target or url_for('dashboard'))


@app.errorhandler(400)
def bad_request(error):
    """Handle bad request errors"""
    logger.warning("bad_request", error=str(error), path=request.path)
    if _wants_json():
        return jsonify({'error': 'Bad request', 'message': str(error)}), 400
    return render_template('error.html', error_code=400, error_message="Bad request"), 400


@app.errorhandler(403)
def forbidden(error):
    """Handle forbidden errors"""
    logger.security_event("forbidden_access", user_id=session.get('uid'), ip_address=request.remote_addr)
    if _wants_json():
        return jsonify({'error': 'Forbidden', 'message': 'Access denied'}), 403
    return render_template('error.html', error_code=403, error_message="Access denied"), 403


@app.errorhandler(404)
def not_found(error):
    """Handle 404 errors"""
    logger.warning("page_not_found", path=request.path, ip=request.remote_addr)
    if _wants_json():
        return jsonify({'error': 'Not found', 'message': 'Resource not found'}), 404
    return render_template('error.html', error_code=404, error_message="Page not found"), 404


@app.errorhandler(429)
def rate_limit_handler(error):
    """Handle rate limit exceeded"""
    logger.security_event("rate_limit_exceeded", user_id=session.get('uid'), ip_address=request.remote_addr)
    if _wants_json():
        return jsonify({'error': 'Too many requests', 'message': 'Rate limit exceeded. Please try again later.'}), 429
    return render_template('error.html', error_code=429, error_message="Too many requests. Please try again later."), 429


@app.errorhandler(500)
def internal_error(error):
    """Handle internal server errors"""
    logger.error("internal_server_error", error=str(error), path=request.path, traceback=traceback.format_exc())
    if _wants_json():
        return jsonify({'error': 'Internal server error', 'message': 'Something went wrong'}), 500
    return render_template('error.html', error_code=500, error_message="Internal server error"), 500


# ============================================================================
# REQUEST LOGGING
# ============================================================================

@app.before_request
def log_request():
    """Log all incoming requests"""
    logger.debug("request_started",
                 method=request.method,
                 path=request.path,
                 ip=request.remote_addr,
                 user_agent=str(request.user_agent))


@app.after_request
def log_response(response):
    """Log all responses"""
    logger.info("request_completed",
                method=request.method,
                path=request.path,
                status_code=response.status_code,
                ip=request.remote_addr)
    return response


if __name__ == '__main__':
    env = os.environ.get('FLASK_ENV', 'production')
    debug = env == 'development'
    logger.info("application_startup", environment=env, debug=debug)
    app.run(debug=debug, host='0.0.0.0', port=5000)
