"""
Input validation schemas for DCAM Classes
marshmallow schemas for every form the platform accepts
"""
import re
from datetime import datetime, timezone

from marshmallow import (
    EXCLUDE, Schema, ValidationError, fields, validate, validates, validates_schema
)

EMAIL_REGEX = re.compile(r'^[A-Za-z0-9._%+-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$')
YMD_REGEX = re.compile(r'^\d{4}-\d{2}-\d{2}$')
HM_REGEX = re.compile(r'^\d{1,2}:\d{2}$')

ACCESS_LEVELS = ['free', 'paid']
DIFFICULTY_LEVELS = ['Easy', 'Medium', 'Hard']
QUESTION_TYPES = ['MCQ', 'Numerical']
EXAM_CATEGORIES = ['JEE Main', 'JEE Advanced', 'Both']
PUBLICATION_STATUSES = ['draft', 'published']
CLASS_LEVELS = ['Class 11', 'Class 12', 'Dropper', 'All']
DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']
SESSION_TYPES = ['meeting', 'previous_session', 'holiday', 'cancelled']

_url = validate.URL(relative=False)


def validate_email(email):
    if not email or not isinstance(email, str):
        return False
    return bool(EMAIL_REGEX.match(email.strip()))


def _email(value):
    if not validate_email(value):
        raise ValidationError('Invalid email address')


def _url_or_blank(value):
    if value:
        _url(value)


def _ymd(value):
    if not YMD_REGEX.match(value or ''):
        raise ValidationError('Expected a date as YYYY-MM-DD')
    try:
        datetime.strptime(value, '%Y-%m-%d')
    except ValueError:
        raise ValidationError('Not a valid calendar date')


def _hm(value):
    if not HM_REGEX.match(value or ''):
        raise ValidationError('Expected a time as HH:MM')
    hours, minutes = (int(part) for part in value.split(':'))
    if hours > 23 or minutes > 59:
        raise ValidationError('Not a valid time of day')


class BaseSchema(Schema):
    class Meta:
        unknown = EXCLUDE


# ============================================================================
# AUTH
# ============================================================================

class StudentRegistrationSchema(BaseSchema):
    firstName = fields.String(required=True, validate=validate.Length(min=1, error='First name is required'))
    lastName = fields.String(required=True, validate=validate.Length(min=1, error='Last name is required'))
    email = fields.String(required=True, validate=_email)
    password = fields.String(required=True, validate=validate.Length(min=8, error='Password must be at least 8 characters'))


class TeacherRegistrationSchema(StudentRegistrationSchema):
    phoneNumber = fields.String(required=True, validate=validate.Length(min=10, error='A valid phone number is required'))


class UserLoginSchema(BaseSchema):
    email = fields.String(required=True, validate=_email)
    password = fields.String(required=True, validate=validate.Length(min=1, error='Password is required'))


class PasswordResetSchema(BaseSchema):
    password = fields.String(required=True, validate=validate.Length(min=8, error='Password must be at least 8 characters'))
    confirmPassword = fields.String(required=True)

    @validates_schema
    def validate_match(self, data, **kwargs):
        if data.get('password') != data.get('confirmPassword'):
            raise ValidationError('Passwords do not match', 'confirmPassword')


class ProfileSchema(BaseSchema):
    firstName = fields.String(required=True, validate=validate.Length(min=1))
    lastName = fields.String(required=True, validate=validate.Length(min=1))
    phoneNumber = fields.String(load_default='')
    about = fields.String(load_default='', validate=validate.Length(max=1000))


# ============================================================================
# CURRICULUM & QUESTIONS
# ============================================================================

class ExamTypeSchema(BaseSchema):
    name = fields.String(required=True, validate=validate.Length(min=2))


class ClassSchema(BaseSchema):
    name = fields.String(required=True, validate=validate.Length(min=1))
    examTypeId = fields.String(required=True, validate=validate.Length(min=1, error='You must select an exam type.'))


class SubjectSchema(BaseSchema):
    name = fields.String(required=True, validate=validate.Length(min=2, error='Subject name must be at least 2 characters.'))
    classId = fields.String(load_default='')


class TopicSchema(BaseSchema):
    name = fields.String(required=True, validate=validate.Length(min=3, error='Topic name must be at least 3 characters.'))
    description = fields.String(load_default='')
    subjectId = fields.String(required=True, validate=validate.Length(min=1, error='You must select a subject.'))


class QuestionSchema(BaseSchema):
    questionText = fields.String(required=True, validate=validate.Length(min=10, error='Question must be at least 10 characters.'))
    questionType = fields.String(load_default='MCQ', validate=validate.OneOf(QUESTION_TYPES))
    options = fields.List(fields.String(), load_default=list)
    correctAnswer = fields.String(load_default='')
    numericalAnswer = fields.Float(load_default=None, allow_none=True)
    subjectId = fields.String(required=True, validate=validate.Length(min=1))
    topicId = fields.String(required=True, validate=validate.Length(min=1, error='Topic is required.'))
    examTypeId = fields.String(load_default='')
    difficultyLevel = fields.String(load_default='Easy', validate=validate.OneOf(DIFFICULTY_LEVELS))
    accessLevel = fields.String(load_default='free', validate=validate.OneOf(ACCESS_LEVELS))
    imageUrl = fields.String(load_default='', validate=_url_or_blank)
    explanationImageUrl = fields.String(load_default='', validate=_url_or_blank)

    @validates_schema
    def check_answer_shape(self, data, **kwargs):
        if data.get('questionType') == 'MCQ':
            options = [o for o in data.get('options', []) if o.strip()]
            if len(options) < 2:
                raise ValidationError('An MCQ needs at least two options.', 'options')
            if data.get('correctAnswer') not in options:
                raise ValidationError('The correct answer must be one of the options.', 'correctAnswer')
        elif data.get('numericalAnswer') is None:
            raise ValidationError('A numerical question needs a numerical answer.', 'numericalAnswer')


# ============================================================================
# MOCK TESTS
# ============================================================================

class OfficialSubjectConfigSchema(BaseSchema):
    subjectId = fields.String(required=True, validate=validate.Length(min=1))
    subjectName = fields.String(required=True)
    numQuestions = fields.Integer(required=True, validate=validate.Range(min=1, max=100, error='Between 1 and 100 questions.'))
    duration = fields.Integer(required=True, validate=validate.Range(min=1, max=180, error='Duration must be 1 to 180 minutes.'))


class OfficialTestSchema(BaseSchema):
    title = fields.String(required=True, validate=validate.Length(min=5, error='Test title must be at least 5 characters long.'))
    startTime = fields.DateTime(required=True)
    examCategory = fields.String(load_default='Both', validate=validate.OneOf(EXAM_CATEGORIES))
    accessLevel = fields.String(load_default='free', validate=validate.OneOf(ACCESS_LEVELS))
    subjects = fields.List(
        fields.Nested(OfficialSubjectConfigSchema), required=True,
        validate=validate.Length(min=1, error='You must select at least one subject.')
    )
    publicationStatus = fields.String(load_default='published', validate=validate.OneOf(PUBLICATION_STATUSES))
    liveBatchId = fields.String(load_default='')


class OfficialTestCreateSchema(OfficialTestSchema):
    @validates('startTime')
    def start_in_future(self, value, **kwargs):
        now = datetime.now(timezone.utc) if value.tzinfo else datetime.utcnow()
        if value <= now:
            raise ValidationError('Start time must be in the future.')


class CustomSubjectConfigSchema(BaseSchema):
    subjectId = fields.String(required=True, validate=validate.Length(min=1, error='Please select a subject.'))
    numQuestions = fields.Integer(required=True, validate=validate.Range(min=1, error='Must be at least 1 question.'))


class CustomTestSchema(BaseSchema):
    title = fields.String(required=True, validate=validate.Length(min=5, error='Test title must be at least 5 characters long.'))
    accessLevel = fields.String(load_default='free', validate=validate.OneOf(ACCESS_LEVELS))
    duration = fields.Integer(required=True, validate=validate.Range(min=1, error='Duration must be at least 1 minute.'))
    totalQuestions = fields.Integer(required=True, validate=validate.Range(min=1, error='Total questions must be at least 1.'))
    subjectConfigs = fields.List(
        fields.Nested(CustomSubjectConfigSchema), required=True,
        validate=validate.Length(min=1, error='At least one subject must be configured.')
    )
    questionIds = fields.List(fields.String(), load_default=list)

    @validates_schema
    def check_totals(self, data, **kwargs):
        configs = data.get('subjectConfigs') or []
        total = data.get('totalQuestions')
        if sum(c['numQuestions'] for c in configs) != total:
            raise ValidationError(
                'The sum of questions from each subject must equal the total number of questions.',
                'totalQuestions'
            )
        if len(data.get('questionIds') or []) != total:
            raise ValidationError(
                'The number of selected questions must match the total questions configured.',
                'questionIds'
            )


# ============================================================================
# CONTENT & COURSES
# ============================================================================

class ContentSchema(BaseSchema):
    title = fields.String(required=True, validate=validate.Length(min=5, error='Title must be at least 5 characters long.'))
    description = fields.String(required=True, validate=validate.Length(min=10, error='Description must be at least 10 characters long.'))
    type = fields.String(required=True, validate=validate.OneOf(['video', 'pdf']))
    videoUrl = fields.String(load_default='', validate=_url_or_blank)
    fileUrl = fields.String(load_default='', validate=_url_or_blank)
    examTypeId = fields.String(required=True, validate=validate.Length(min=1, error='You must select an exam type.'))
    classId = fields.String(required=True, validate=validate.Length(min=1, error='You must select a class.'))
    subjectId = fields.String(required=True, validate=validate.Length(min=1, error='You must select a subject.'))
    topicId = fields.String(required=True, validate=validate.Length(min=1, error='You must select a topic.'))
    difficultyLevel = fields.String(load_default='Easy', validate=validate.OneOf(DIFFICULTY_LEVELS))
    accessLevel = fields.String(load_default='free', validate=validate.OneOf(ACCESS_LEVELS))

    @validates_schema
    def check_media(self, data, **kwargs):
        if data.get('type') == 'video' and not data.get('videoUrl'):
            raise ValidationError('Video URL is required for video content.', 'videoUrl')
        if data.get('type') == 'pdf' and not data.get('fileUrl'):
            raise ValidationError('PDF URL is required for PDF content.', 'fileUrl')


class CourseSchema(BaseSchema):
    title = fields.String(required=True, validate=validate.Length(min=5, error='Title must be at least 5 characters.'))
    description = fields.String(required=True, validate=validate.Length(min=20, error='Description must be at least 20 characters.'))
    price = fields.Float(required=True, validate=validate.Range(min=0, error='Price cannot be negative.'))
    imageUrl = fields.String(required=True, validate=_url)
    classLevel = fields.String(required=True, validate=validate.OneOf(CLASS_LEVELS))
    subjectIds = fields.List(fields.String(), required=True, validate=validate.Length(min=1, error='You have to select at least one subject.'))
    contentIds = fields.List(fields.String(), load_default=list)
    accessLevel = fields.String(load_default='free', validate=validate.OneOf(ACCESS_LEVELS))
    publicationStatus = fields.String(load_default='published', validate=validate.OneOf(PUBLICATION_STATUSES))


# ============================================================================
# COMMUNICATION
# ============================================================================

class GroupMessageSchema(BaseSchema):
    text = fields.String(load_default='', validate=validate.Length(max=500, error='Message is too long.'))
    imageUrl = fields.String(load_default='', validate=_url_or_blank)


class DirectMessageSchema(BaseSchema):
    text = fields.String(required=True, validate=validate.Length(min=1, max=500, error='Message must be 1 to 500 characters.'))


class DoubtSchema(BaseSchema):
    topicId = fields.String(required=True, validate=validate.Length(min=1, error='Please enter a topic.'))
    question = fields.String(required=True, validate=validate.Length(min=20, error='Your question must be at least 20 characters long.'))
    attachmentUrls = fields.List(fields.String(validate=_url), load_default=list)


class DoubtAnswerSchema(BaseSchema):
    answer = fields.String(required=True, validate=validate.Length(min=10, error='Please provide a detailed answer.'))
    attachmentUrls = fields.List(fields.String(validate=_url), load_default=list)


class StudyRequirementSchema(BaseSchema):
    subject = fields.String(required=True, validate=validate.Length(min=3, error='Subject must be at least 3 characters long.'))
    examType = fields.String(required=True, validate=validate.Length(min=2, error='Please specify the exam type.'))
    classPreference = fields.String(
        required=True,
        validate=validate.OneOf(['Online', 'Offline'], error='You need to select a class preference.')
    )


# ============================================================================
# SUBSCRIPTIONS & LIVE BATCHES
# ============================================================================

class PlanSchema(BaseSchema):
    name = fields.String(required=True, validate=validate.Length(min=3, error='Plan name must be at least 3 characters.'))
    price = fields.Float(required=True, validate=validate.Range(min=0, error='Price must be a positive number.'))
    billingInterval = fields.String(load_default='yearly', validate=validate.OneOf(['monthly', 'yearly']))
    examTypeId = fields.String(required=True, validate=validate.Length(min=1, error='You must select an exam type.'))
    classId = fields.String(load_default='')
    subjectId = fields.String(load_default='')
    topicId = fields.String(load_default='')
    features = fields.String(required=True, validate=validate.Length(min=10, error='Please list at least one feature (one per line).'))
    numberOfLiveClasses = fields.Integer(load_default=0, validate=validate.Range(min=0))
    linkedContentType = fields.String(load_default='', validate=validate.OneOf(['', 'course', 'mock_test', 'live_batch']))
    linkedContentId = fields.String(load_default='')
    sessionFee = fields.Float(load_default=None, allow_none=True, validate=validate.Range(min=0))


class SubjectScheduleSchema(BaseSchema):
    subjectId = fields.String(required=True, validate=validate.Length(min=1))
    daysOfWeek = fields.List(fields.String(validate=validate.OneOf(DAY_NAMES)), required=True)
    startTime = fields.String(load_default='', validate=lambda v: _hm(v) if v else None)
    endTime = fields.String(load_default='', validate=lambda v: _hm(v) if v else None)
    useDifferentTimingPerDay = fields.Boolean(load_default=False)
    dayTimings = fields.Dict(keys=fields.String(validate=validate.OneOf(DAY_NAMES)), values=fields.Dict(), load_default=dict)


class LiveBatchSchema(BaseSchema):
    title = fields.String(required=True, validate=validate.Length(min=5))
    description = fields.String(load_default='')
    outcomes = fields.String(load_default='')
    examTypeId = fields.String(load_default='')
    classId = fields.String(load_default='')
    batchStartDate = fields.String(required=True, validate=_ymd)
    subjectIds = fields.List(fields.String(), load_default=list)
    subjectSchedules = fields.List(fields.Nested(SubjectScheduleSchema), load_default=list)
    accessLevel = fields.String(load_default='free', validate=validate.OneOf(ACCESS_LEVELS))
    totalSessions = fields.Integer(load_default=0, validate=validate.Range(min=0))
    perSessionFee = fields.Float(load_default=0.0, validate=validate.Range(min=0))
    thumbnailUrl = fields.String(load_default='', validate=_url_or_blank)
    publicationStatus = fields.String(load_default='draft', validate=validate.OneOf(PUBLICATION_STATUSES))


class LiveSessionSchema(BaseSchema):
    type = fields.String(required=True, validate=validate.OneOf(SESSION_TYPES))
    date = fields.String(required=True, validate=_ymd)
    holidayEndDate = fields.String(load_default='', validate=lambda v: _ymd(v) if v else None)
    meetingTime = fields.String(load_default='', validate=lambda v: _hm(v) if v else None)
    meetingTitle = fields.String(load_default='')
    subjectId = fields.String(load_default='')
    zoomLink = fields.String(load_default='', validate=_url_or_blank)
    previousSessionUrl = fields.String(load_default='', validate=_url_or_blank)
    reason = fields.String(load_default='')
    sessionLabel = fields.String(load_default='')

    @validates_schema
    def check_meeting(self, data, **kwargs):
        if data.get('type') == 'meeting' and not data.get('meetingTime'):
            raise ValidationError('A meeting needs a start time.', 'meetingTime')


def validate_schema(schema, data):
    """Load data through a schema; returns (True, cleaned) or (False, errors)"""
    try:
        return True, schema.load(data)
    except ValidationError as err:
        return False, err.messages


student_registration_schema = StudentRegistrationSchema()
teacher_registration_schema = TeacherRegistrationSchema()
user_login_schema = UserLoginSchema()
password_reset_schema = PasswordResetSchema()
profile_schema = ProfileSchema()
exam_type_schema = ExamTypeSchema()
class_schema = ClassSchema()
subject_schema = SubjectSchema()
topic_schema = TopicSchema()
question_schema = QuestionSchema()
official_test_schema = OfficialTestSchema()
official_test_create_schema = OfficialTestCreateSchema()
custom_test_schema = CustomTestSchema()
content_schema = ContentSchema()
course_schema = CourseSchema()
group_message_schema = GroupMessageSchema()
direct_message_schema = DirectMessageSchema()
doubt_schema = DoubtSchema()
doubt_answer_schema = DoubtAnswerSchema()
study_requirement_schema = StudyRequirementSchema()
plan_schema = PlanSchema()
live_batch_schema = LiveBatchSchema()
live_session_schema = LiveSessionSchema()
