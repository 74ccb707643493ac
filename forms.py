"""
Validation forms for the JSON API.

Every form runs with CSRF disabled; the API layer checks CSRF itself for
cookie-authenticated requests. Payloads are fed in as formdata, so the
same validators cover JSON bodies and plain form posts.
"""
from datetime import datetime

from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms import BooleanField, DateField, Field, FloatField, IntegerField, SelectField, StringField, TextAreaField
from wtforms.validators import AnyOf, DataRequired, InputRequired, Length, NumberRange, Optional, Regexp, ValidationError

from app_models import CLASS_NAMES, GENDERS, SECTIONS, STAFF_POSITIONS, WEEK_DAYS

DATE_FORMATS = ['%Y-%m-%d', '%Y-%m-%dT%H:%M:%S', '%Y-%m-%dT%H:%M:%S.%f', '%Y-%m-%dT%H:%M:%SZ', '%Y-%m-%dT%H:%M:%S.%fZ']
EMAIL_PATTERN = r'^[^@\s]+@[^@\s]+\.[^@\s]+$'
PERIOD_TIME_FORMATS = ('%H:%M', '%I:%M %p', '%I:%M%p')


def _choices(values):
    return [(value, value) for value in values]


class JSONListField(Field):
    """Carries a JSON array through validation untouched"""

    def __init__(self, label=None, validators=None, **kwargs):
        kwargs.setdefault('default', list)
        super().__init__(label, validators, **kwargs)

    def process_formdata(self, valuelist):
        if valuelist:
            self.data = list(valuelist)


class JSONObjectField(Field):
    def __init__(self, label=None, validators=None, **kwargs):
        kwargs.setdefault('default', dict)
        super().__init__(label, validators, **kwargs)

    def process_formdata(self, valuelist):
        if not valuelist:
            return
        if not isinstance(valuelist[0], dict):
            self.data = None
            raise ValueError(self.gettext('Must be an object'))
        self.data = valuelist[0]


class FlagField(BooleanField):
    """Boolean that keeps its default when the key is absent"""

    false_values = (False, 'false', 'False', '0', '')

    def process_formdata(self, valuelist):
        if valuelist:
            super().process_formdata(valuelist)


class ApiForm(FlaskForm):
    class Meta:
        csrf = False


def clean_payload(payload):
    """Drop nulls and stringify numbers so text validators can measure them"""
    cleaned = {}
    for key, value in (payload or {}).items():
        if value is None:
            continue
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        cleaned[key] = value
    return cleaned


def bind_form(form_class, payload, existing=None):
    """Build a form from a JSON payload, merged over an existing record for updates"""
    data = dict(existing.to_dict()) if existing is not None else {}
    data.update(payload or {})
    return form_class(formdata=ImmutableMultiDict(clean_payload(data)))


def form_errors(form):
    return {name: list(messages) for name, messages in form.errors.items()}


# Content
class AnnouncementForm(ApiForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    content = TextAreaField('Content', validators=[DataRequired()])
    category = SelectField('Category', choices=_choices(['General', 'Academic', 'Event', 'Holiday', 'Emergency', 'Sports']), default='General')
    target_audience = SelectField('Audience', choices=_choices(['All', 'Students', 'Staff', 'Parents']), default='All')
    priority = SelectField('Priority', choices=_choices(['Low', 'Medium', 'High', 'Critical']), default='Medium')
    publish_date = DateField('Publish Date', format=DATE_FORMATS, validators=[Optional()])
    expiry_date = DateField('Expiry Date', format=DATE_FORMATS, validators=[Optional()])
    is_active = FlagField('Active', default=True)
    attachments = JSONListField('Attachments')

    def validate_expiry_date(self, field):
        if field.data and self.publish_date.data and field.data < self.publish_date.data:
            raise ValidationError('Expiry date cannot be before the publish date')


class EventForm(ApiForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    date = DateField('Date', format=DATE_FORMATS, validators=[DataRequired()])
    time = StringField('Time', validators=[Optional(), Length(max=50)], default='')
    location = StringField('Location', validators=[Optional(), Length(max=200)], default='')
    category = SelectField('Category', choices=_choices(['Academic', 'Sports', 'Cultural', 'Administrative', 'Other']), default='Other')
    description = TextAreaField('Description', default='')
    image_url = StringField('Image URL', validators=[Optional(), Length(max=500)], default='')
    image_file_id = StringField('Image File', validators=[Optional(), Length(max=300)], default='')


class GalleryImageForm(ApiForm):
    url = StringField('Image URL', validators=[DataRequired(), Length(max=500)])
    file_id = StringField('File', validators=[Optional(), Length(max=300)], default='')
    caption = StringField('Caption', validators=[Optional(), Length(max=300)], default='')
    category = SelectField('Category', choices=_choices(['Campus', 'Events', 'Activities', 'Other']), default='Campus')


class ResourceForm(ApiForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=100)])
    description = TextAreaField('Description', validators=[DataRequired(), Length(max=500)])
    type = SelectField('Type', choices=_choices(['policy', 'form', 'other']), default='other')
    file_path = StringField('File URL', validators=[DataRequired(), Length(max=500)])
    file_name = StringField('File Name', validators=[DataRequired(), Length(max=300)])
    file_id = StringField('File', validators=[DataRequired(), Length(max=300)])
    file_size = IntegerField('File Size', validators=[Optional(), NumberRange(min=0)])


class CourseMaterialForm(ApiForm):
    grade = StringField('Grade', validators=[DataRequired(), Length(max=20)])
    type = SelectField('Type', choices=_choices(['booklist', 'paper', 'syllabus', 'note', 'suggestion']), validators=[InputRequired()])
    title = StringField('Title', validators=[DataRequired(), Length(max=150)])
    description = TextAreaField('Description', validators=[Optional(), Length(max=400)], default='')
    subject = StringField('Subject', validators=[Optional(), Length(max=100)], default='General')
    year = StringField('Year', validators=[Optional(), Regexp(r'^\d{4}$', message='Year must have four digits')])
    file_path = StringField('File URL', validators=[DataRequired(), Length(max=500)])
    file_name = StringField('File Name', validators=[DataRequired(), Length(max=300)])
    file_id = StringField('File', validators=[DataRequired(), Length(max=300)])
    file_size = IntegerField('File Size', validators=[Optional(), NumberRange(min=0)])


class CalendarEventForm(ApiForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=200)])
    date = DateField('Date', format=DATE_FORMATS, validators=[DataRequired()])
    type = SelectField('Type', choices=_choices(['HOLIDAY', 'EXAM', 'ACTIVITY', 'MEETING', 'TERM']), default='ACTIVITY')
    description = TextAreaField('Description', validators=[Optional()])
    start_date = DateField('Start Date', format=DATE_FORMATS, validators=[Optional()])
    end_date = DateField('End Date', format=DATE_FORMATS, validators=[Optional()])
    start_time = StringField('Start Time', validators=[Optional(), Length(max=20)])
    end_time = StringField('End Time', validators=[Optional(), Length(max=20)])

    def validate_end_date(self, field):
        start = self.start_date.data or self.date.data
        if field.data and start and field.data < start:
            raise ValidationError('End date cannot be before the start date')


# People
class StaffForm(ApiForm):
    employee_id = StringField('Employee ID', validators=[DataRequired(), Length(max=50)])
    full_name = StringField('Full Name', validators=[DataRequired(), Length(max=200)])
    email = StringField('Email', validators=[DataRequired(), Regexp(EMAIL_PATTERN, message='Invalid email address')])
    phone_number = StringField('Phone', validators=[Optional(), Length(max=30)])
    gender = StringField('Gender', validators=[Optional(), AnyOf(GENDERS)])
    position = SelectField('Position', choices=_choices(STAFF_POSITIONS), default='Teacher')
    department = StringField('Department', validators=[DataRequired(), Length(max=100)])
    joining_date = DateField('Joining Date', format=DATE_FORMATS, validators=[Optional()])
    subjects = JSONListField('Subjects')
    is_active = FlagField('Active', default=True)
    profile_image = StringField('Profile Image', validators=[Optional(), Length(max=500)])


class StudentForm(ApiForm):
    student_id = StringField('Student ID', validators=[DataRequired(), Length(max=50)])
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    roll_number = StringField('Roll Number', validators=[DataRequired(), Length(max=20)])
    current_class = SelectField('Class', choices=_choices(CLASS_NAMES), validators=[InputRequired()])
    section = SelectField('Section', choices=_choices(SECTIONS), default='A')
    session = StringField('Session', validators=[Optional(), Length(max=20)], default='')
    gender = StringField('Gender', validators=[Optional(), AnyOf(GENDERS)])
    date_of_birth = DateField('Date of Birth', format=DATE_FORMATS, validators=[Optional()])
    guardian_name = StringField('Guardian Name', validators=[DataRequired(), Length(max=200)])
    guardian_phone = StringField('Guardian Phone', validators=[DataRequired(), Length(max=30)])
    address = StringField('Address', validators=[Optional(), Length(max=500)])
    photo_url = StringField('Photo', validators=[Optional(), Length(max=500)])
    status = SelectField('Status', choices=_choices(['Active', 'Inactive', 'Alumni', 'Suspended']), default='Active')


class AdmissionForm(ApiForm):
    student_name = StringField('Student Name', validators=[DataRequired(), Length(max=200)])
    email = StringField('Email', validators=[DataRequired(), Regexp(EMAIL_PATTERN, message='Invalid email address')])
    phone_number = StringField('Phone', validators=[DataRequired(), Length(max=30)])
    date_of_birth = DateField('Date of Birth', format=DATE_FORMATS, validators=[DataRequired()])
    gender = SelectField('Gender', choices=_choices(GENDERS), validators=[InputRequired()])
    address = StringField('Address', validators=[DataRequired(), Length(max=500)])
    guardian_name = StringField('Guardian Name', validators=[DataRequired(), Length(max=200)])
    guardian_phone = StringField('Guardian Phone', validators=[DataRequired(), Length(max=30)])
    previous_school = StringField('Previous School', validators=[Optional(), Length(max=200)])
    class_name = SelectField('Class', choices=_choices(CLASS_NAMES), validators=[InputRequired()])
    status = SelectField('Status', choices=_choices(['Pending', 'Approved', 'Rejected']), default='Pending')
    documents = JSONListField('Documents')


# Academics
class FeeStructureForm(ApiForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    current_class = StringField('Class', validators=[DataRequired(), AnyOf(CLASS_NAMES + ('ALL',))])
    amount = FloatField('Amount', validators=[InputRequired(), NumberRange(min=0)])
    type = SelectField('Type', choices=_choices(['Admission', 'Session', 'Exam', 'Development', 'Fine', 'Other']), default='Session')
    frequency = SelectField('Frequency', choices=_choices(['One-time', 'Monthly', 'Annually']), default='Annually')
    academic_year = StringField('Academic Year', validators=[DataRequired(), Regexp(r'^\d{4}$', message='Year must have four digits')])
    description = StringField('Description', validators=[Optional(), Length(max=500)])


class FeePaymentForm(ApiForm):
    student_id = IntegerField('Student', validators=[InputRequired()])
    fee_structure_id = IntegerField('Fee Structure', validators=[Optional()])
    amount_paid = FloatField('Amount Paid', validators=[InputRequired(), NumberRange(min=0.01)])
    payment_date = DateField('Payment Date', format=DATE_FORMATS, validators=[Optional()])
    payment_method = SelectField('Method', choices=_choices(['Cash', 'Online', 'Bank Transfer', 'UPI']), default='Cash')
    transaction_id = StringField('Transaction', validators=[Optional(), Length(max=100)])
    remarks = StringField('Remarks', validators=[Optional(), Length(max=300)])
    academic_year = StringField('Academic Year', validators=[Optional(), Regexp(r'^\d{4}$', message='Year must have four digits')])


class ExamForm(ApiForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    session = StringField('Session', validators=[DataRequired(), Length(max=20)])
    class_name = SelectField('Class', choices=_choices(CLASS_NAMES), validators=[InputRequired()])
    subjects = JSONListField('Subjects')
    start_date = DateField('Start Date', format=DATE_FORMATS, validators=[Optional()])
    end_date = DateField('End Date', format=DATE_FORMATS, validators=[Optional()])
    is_published = FlagField('Published', default=False)

    def validate_subjects(self, field):
        names = set()
        for subject in field.data or []:
            if not isinstance(subject, dict) or not subject.get('name'):
                raise ValidationError('Each subject needs a name')
            try:
                full_marks = float(subject.get('full_marks', 100))
                pass_marks = float(subject.get('pass_marks', 0))
            except (TypeError, ValueError):
                raise ValidationError(f"Marks for {subject['name']} must be numbers")
            if full_marks <= 0 or pass_marks < 0 or pass_marks > full_marks:
                raise ValidationError(f"Invalid marks for {subject['name']}")
            if subject['name'] in names:
                raise ValidationError(f"Duplicate subject {subject['name']}")
            names.add(subject['name'])


class HomeworkForm(ApiForm):
    title = StringField('Title', validators=[DataRequired(), Length(max=100)])
    description = TextAreaField('Description', validators=[DataRequired()])
    class_name = SelectField('Class', choices=_choices(CLASS_NAMES), validators=[InputRequired()])
    section = SelectField('Section', choices=_choices(SECTIONS), validators=[InputRequired()])
    subject = StringField('Subject', validators=[DataRequired(), Length(max=100)])
    due_date = DateField('Due Date', format=DATE_FORMATS, validators=[DataRequired()])
    attachments = JSONListField('Attachments')


def period_minutes(value):
    """'10:45', '10:45 AM' or '10:45AM' as minutes after midnight"""
    text = str(value or '').strip().upper()
    for fmt in PERIOD_TIME_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.hour * 60 + parsed.minute
    raise ValueError(f'Invalid time: {value}')


class RoutineForm(ApiForm):
    class_name = SelectField('Class', choices=_choices(CLASS_NAMES), validators=[InputRequired()])
    section = SelectField('Section', choices=_choices(SECTIONS), default='A')
    week_schedule = JSONListField('Week Schedule')

    def validate_week_schedule(self, field):
        days = set()
        schedule = []
        for entry in field.data or []:
            if not isinstance(entry, dict) or entry.get('day') not in WEEK_DAYS:
                raise ValidationError(f"Day must be one of {', '.join(WEEK_DAYS)}")
            if entry['day'] in days:
                raise ValidationError(f"{entry['day']} is listed twice")
            days.add(entry['day'])

            periods = []
            for period in entry.get('periods') or []:
                if not isinstance(period, dict) or not all(period.get(key) for key in ('start_time', 'end_time', 'subject')):
                    raise ValidationError(f"Every period on {entry['day']} needs start_time, end_time and subject")
                try:
                    start, end = period_minutes(period['start_time']), period_minutes(period['end_time'])
                except ValueError as e:
                    raise ValidationError(f"{entry['day']}: {e}")
                if end <= start:
                    raise ValidationError(f"{entry['day']}: the period at {period['start_time']} must end after it starts")
                periods.append({
                    'start_time': str(period['start_time']).strip(),
                    'end_time': str(period['end_time']).strip(),
                    'subject': str(period['subject']).strip(),
                    'teacher': str(period.get('teacher') or '').strip(),
                    'room_no': str(period.get('room_no') or '').strip(),
                })
            schedule.append({'day': entry['day'], 'periods': periods})
        field.data = schedule


class ResultMarksForm(ApiForm):
    student_id = IntegerField('Student', validators=[InputRequired()])
    exam_id = IntegerField('Exam', validators=[InputRequired()])
    marks = JSONObjectField('Marks')
    remarks = StringField('Remarks', validators=[Optional(), Length(max=300)])


# Daily operations
class MidDayMealForm(ApiForm):
    date = DateField('Date', format=DATE_FORMATS, validators=[Optional()])
    class_name = SelectField('Class', choices=_choices(CLASS_NAMES), validators=[InputRequired()])
    section = SelectField('Section', choices=_choices(SECTIONS), validators=[InputRequired()])
    student_ids = JSONListField('Students')
    total_count = IntegerField('Total', validators=[Optional(), NumberRange(min=0)])
    menu_item = StringField('Menu Item', validators=[Optional(), Length(max=100)], default='Standard Meal')


class LoginForm(ApiForm):
    email = StringField('Email', validators=[Optional()])
    student_id = StringField('Student ID', validators=[Optional()])
    password = StringField('Password', validators=[DataRequired()])

    def validate(self, extra_validators=None):
        if not super().validate(extra_validators):
            return False
        if not (self.email.data or self.student_id.data):
            self.email.errors.append('Email or student ID is required')
            return False
        return True


class PasswordChangeForm(ApiForm):
    current_password = StringField('Current Password', validators=[DataRequired()])
    new_password = StringField('New Password', validators=[DataRequired(), Length(min=8, max=72)])


# Site settings
class HeroImagesForm(ApiForm):
    hero_images = JSONListField('Hero Images')

    def validate_hero_images(self, field):
        images = []
        for image in field.data or []:
            if not isinstance(image, dict) or not str(image.get('url') or '').strip():
                raise ValidationError('Every hero image needs a url')
            images.append({
                'url': str(image['url']).strip(),
                'file_id': str(image.get('file_id') or ''),
                'caption': str(image.get('caption') or '')[:300],
            })
        field.data = images


class HeadmasterForm(ApiForm):
    name = StringField('Name', validators=[Optional(), Length(max=200)], default='')
    designation = StringField('Designation', validators=[Optional(), Length(max=100)], default='Headmaster')
    message = TextAreaField('Message', validators=[Optional(), Length(max=5000)], default='')
    photo_url = StringField('Photo', validators=[Optional(), Length(max=500)], default='')
    photo_file_id = StringField('Photo File', validators=[Optional(), Length(max=300)], default='')
