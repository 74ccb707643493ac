from datetime import datetime, date
import random

import bcrypt
from flask import current_app
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

USER_ROLES = ('admin', 'principal', 'vice principal', 'teacher', 'student')
STAFF_POSITIONS = ('Teacher', 'Admin', 'Principal', 'Vice Principal', 'Coordinator')
GENDERS = ('Male', 'Female', 'Other')
CLASS_NAMES = ('V', 'VI', 'VII', 'VIII', 'IX', 'X', 'XI', 'XII')
SECTIONS = ('A', 'B', 'C', 'Science', 'Arts', 'Commerce')


class SerializerMixin:
    """Column-driven JSON serialization shared by every model"""

    def to_dict(self):
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, column.name)
            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            data[column.name] = value
        return data


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Database Models
class User(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=True)
    student_id = db.Column(db.String(50), unique=True, nullable=True)  # Login key for students
    password_hash = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(30), nullable=False, default='student')
    is_active = db.Column(db.Boolean, default=True)

    def set_password(self, password):
        """Hash with bcrypt (72 byte input limit)"""
        rounds = current_app.config.get('BCRYPT_ROUNDS', 12)
        hashed = bcrypt.hashpw(password.encode('utf-8')[:72], bcrypt.gensalt(rounds=rounds))
        self.password_hash = hashed.decode('utf-8')

    def check_password(self, password):
        if not self.password_hash:
            return False
        return bcrypt.checkpw(password.encode('utf-8')[:72], self.password_hash.encode('utf-8'))

    def to_dict(self):
        data = super().to_dict()
        data.pop('password_hash', None)
        return data


class Staff(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    employee_id = db.Column(db.String(50), unique=True, nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    phone_number = db.Column(db.String(30))
    gender = db.Column(db.String(10))
    position = db.Column(db.String(30), nullable=False, default='Teacher')
    department = db.Column(db.String(100), nullable=False)
    joining_date = db.Column(db.Date)
    subjects = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True)
    profile_image = db.Column(db.String(500))

    user = db.relationship('User')


class StudentProfile(SerializerMixin, TimestampMixin, db.Model):
    __tablename__ = 'student_profile'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    student_id = db.Column(db.String(50), unique=True, nullable=False)  # e.g. ST-2024-001
    name = db.Column(db.String(200), nullable=False)
    roll_number = db.Column(db.String(20), nullable=False)
    current_class = db.Column(db.String(10), nullable=False)
    section = db.Column(db.String(20), nullable=False, default='A')
    session = db.Column(db.String(20), default='')  # e.g. 2024-2025
    gender = db.Column(db.String(10))
    date_of_birth = db.Column(db.Date)
    guardian_name = db.Column(db.String(200), nullable=False)
    guardian_phone = db.Column(db.String(30), nullable=False)
    address = db.Column(db.String(500))
    photo_url = db.Column(db.String(500))
    status = db.Column(db.String(20), default='Active')
    # Archive of past promotions
    previous_classes = db.Column(db.JSON, default=list)

    user = db.relationship('User')


class Announcement(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    content = db.Column(db.Text, nullable=False)
    category = db.Column(db.String(20), nullable=False, default='General')
    target_audience = db.Column(db.String(20), nullable=False, default='All')
    priority = db.Column(db.String(20), default='Medium')
    publish_date = db.Column(db.Date, default=date.today)
    expiry_date = db.Column(db.Date)
    author_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    author_name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    attachments = db.Column(db.JSON, default=list)  # [{file_id, filename, url, size, mimetype}]


class Event(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date, nullable=False)
    time = db.Column(db.String(50), default='')  # e.g. "9:00 AM - 4:00 PM"
    location = db.Column(db.String(200), default='')
    category = db.Column(db.String(20), default='Other')
    description = db.Column(db.Text, default='')
    image_url = db.Column(db.String(500), default='')
    image_file_id = db.Column(db.String(300), default='')
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'))


class GalleryImage(SerializerMixin, TimestampMixin, db.Model):
    __tablename__ = 'gallery_image'

    id = db.Column(db.Integer, primary_key=True)
    url = db.Column(db.String(500), nullable=False)
    file_id = db.Column(db.String(300), default='')
    caption = db.Column(db.String(300), default='')
    category = db.Column(db.String(20), default='Campus')
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'))


class SchoolResource(SerializerMixin, db.Model):
    __tablename__ = 'resource'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), nullable=False)
    type = db.Column(db.String(20), nullable=False, default='other')
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(300), nullable=False)
    file_id = db.Column(db.String(300), nullable=False)
    file_size = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)


class CourseMaterial(SerializerMixin, db.Model):
    __tablename__ = 'course_material'

    id = db.Column(db.Integer, primary_key=True)
    grade = db.Column(db.String(20), nullable=False)  # e.g. "Class X"
    type = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.String(400), default='')
    subject = db.Column(db.String(100), default='General')
    year = db.Column(db.String(4), default=lambda: str(date.today().year))
    file_path = db.Column(db.String(500), nullable=False)
    file_name = db.Column(db.String(300), nullable=False)
    file_id = db.Column(db.String(300), nullable=False)
    file_size = db.Column(db.Integer)
    uploaded_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (db.Index('ix_course_material_grade_type', 'grade', 'type'),)


class FeeStructure(SerializerMixin, TimestampMixin, db.Model):
    __tablename__ = 'fee_structure'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    current_class = db.Column(db.String(10), nullable=False)  # e.g. "V", "X" or "ALL"
    amount = db.Column(db.Float, nullable=False)
    type = db.Column(db.String(20), default='Session')
    frequency = db.Column(db.String(20), default='Annually')
    academic_year = db.Column(db.String(4), nullable=False, default=lambda: str(date.today().year))
    description = db.Column(db.String(500))

    # Prevent duplicate fee structures for same class/name/year
    __table_args__ = (db.UniqueConstraint('name', 'current_class', 'academic_year', name='unique_fee_structure'),)


class FeePayment(SerializerMixin, TimestampMixin, db.Model):
    __tablename__ = 'fee_payment'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False)
    fee_structure_id = db.Column(db.Integer, db.ForeignKey('fee_structure.id'), nullable=True)
    amount_paid = db.Column(db.Float, nullable=False)
    payment_date = db.Column(db.Date, default=date.today)
    payment_method = db.Column(db.String(20), default='Cash')
    transaction_id = db.Column(db.String(100))
    remarks = db.Column(db.String(300))
    collected_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    academic_year = db.Column(db.String(4), nullable=False)
    receipt_number = db.Column(db.String(30), unique=True, nullable=False)

    student = db.relationship('StudentProfile', backref='payments')
    fee_structure = db.relationship('FeeStructure')

    def to_dict(self):
        data = super().to_dict()
        if self.fee_structure:
            data['fee_structure'] = {'name': self.fee_structure.name, 'amount': self.fee_structure.amount}
        return data

    @staticmethod
    def generate_receipt_number(prefix='REC', digits=4):
        """Receipt numbers look like REC-2024-4821; retried until unused"""
        year = date.today().year
        low, high = 10 ** (digits - 1), 10 ** digits - 1
        while True:
            receipt_number = f"{prefix}-{year}-{random.randint(low, high)}"
            if not FeePayment.query.filter_by(receipt_number=receipt_number).first():
                return receipt_number


class Exam(SerializerMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)  # e.g. "Annual Exam 2024"
    session = db.Column(db.String(20), nullable=False)  # e.g. "2024-2025"
    class_name = db.Column(db.String(10), nullable=False)
    subjects = db.Column(db.JSON, default=list)  # [{name, full_marks, pass_marks}]
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)
    is_published = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def full_marks(self):
        return sum(float(subject.get('full_marks') or 0) for subject in self.subjects or [])


class ExamResult(SerializerMixin, db.Model):
    __tablename__ = 'exam_result'

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False)
    exam_id = db.Column(db.Integer, db.ForeignKey('exam.id'), nullable=False)
    marks = db.Column(db.JSON, default=dict)  # subject name -> marks obtained
    total_obtained = db.Column(db.Float, default=0)
    percentage = db.Column(db.Float, default=0)
    grade = db.Column(db.String(3), default='')
    rank = db.Column(db.Integer)
    remarks = db.Column(db.String(300))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    student = db.relationship('StudentProfile', backref='results')
    exam = db.relationship('Exam', backref='results')

    # Prevent duplicate results for same student & exam
    __table_args__ = (db.UniqueConstraint('student_id', 'exam_id', name='unique_student_exam'),)

    def recalculate(self):
        """Recompute totals against every subject of the exam"""
        marks = self.marks or {}
        self.total_obtained = sum(float(marks.get(subject['name']) or 0) for subject in self.exam.subjects or [])
        full_marks = self.exam.full_marks()
        percentage = (self.total_obtained / full_marks) * 100 if full_marks > 0 else 0
        self.percentage = round(percentage, 2)
        self.grade = grade_for(self.percentage)


def grade_for(percentage):
    if percentage >= 90:
        return 'A+'
    if percentage >= 80:
        return 'A'
    if percentage >= 70:
        return 'B+'
    if percentage >= 60:
        return 'B'
    if percentage >= 50:
        return 'C'
    if percentage >= 40:
        return 'D'
    return 'F'


class Homework(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, nullable=False)
    class_name = db.Column(db.String(10), nullable=False)
    section = db.Column(db.String(20), nullable=False)
    subject = db.Column(db.String(100), nullable=False)
    assigned_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    attachments = db.Column(db.JSON, default=list)  # [{file_id, filename, url}]

    __table_args__ = (db.Index('ix_homework_class_section_due', 'class_name', 'section', 'due_date'),)


class Attendance(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey('student_profile.id'), nullable=False)
    student_code = db.Column(db.String(50), nullable=False)  # Redundant, handy for QR display
    date = db.Column(db.Date, nullable=False)
    status = db.Column(db.String(20), default='Present')
    method = db.Column(db.String(20), default='Manual')
    marked_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    remarks = db.Column(db.String(300))
    # Snapshot of class/section at time of attendance
    class_name = db.Column(db.String(10))
    section = db.Column(db.String(20))

    __table_args__ = (db.UniqueConstraint('student_id', 'date', name='unique_student_day'),)


class MidDayMeal(SerializerMixin, TimestampMixin, db.Model):
    __tablename__ = 'mid_day_meal'

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, default=date.today)
    class_name = db.Column(db.String(10), nullable=False)
    section = db.Column(db.String(20), nullable=False)
    student_ids = db.Column(db.JSON, default=list)  # student codes, e.g. ST-2024-001
    total_count = db.Column(db.Integer, nullable=False, default=0)
    marked_by = db.Column(db.Integer, db.ForeignKey('user.id'))
    menu_item = db.Column(db.String(100), default='Standard Meal')

    __table_args__ = (db.UniqueConstraint('date', 'class_name', 'section', name='unique_meal_class_day'),)


class CalendarEvent(SerializerMixin, TimestampMixin, db.Model):
    __tablename__ = 'calendar_event'

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date, nullable=False)
    type = db.Column(db.String(20), nullable=False, default='ACTIVITY')
    description = db.Column(db.Text)
    start_date = db.Column(db.Date)
    end_date = db.Column(db.Date)  # For multi-day events like terms
    start_time = db.Column(db.String(20))
    end_time = db.Column(db.String(20))
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'))


class Admission(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    student_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    phone_number = db.Column(db.String(30), nullable=False)
    date_of_birth = db.Column(db.Date, nullable=False)
    gender = db.Column(db.String(10), nullable=False)
    address = db.Column(db.String(500), nullable=False)
    guardian_name = db.Column(db.String(200), nullable=False)
    guardian_phone = db.Column(db.String(30), nullable=False)
    previous_school = db.Column(db.String(200))
    class_name = db.Column(db.String(10), nullable=False)
    status = db.Column(db.String(20), default='Pending')
    documents = db.Column(db.JSON, default=list)  # [{file_id, name, url}]


WEEK_DAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday')


class Routine(SerializerMixin, TimestampMixin, db.Model):
    id = db.Column(db.Integer, primary_key=True)
    class_name = db.Column(db.String(10), nullable=False)
    section = db.Column(db.String(20), nullable=False, default='A')
    # [{day, periods: [{start_time, end_time, subject, teacher, room_no}]}]
    week_schedule = db.Column(db.JSON, default=list)

    __table_args__ = (db.UniqueConstraint('class_name', 'section', name='unique_class_routine'),)

    def periods_for(self, teacher):
        """Periods taught by ``teacher`` (case-insensitive), tagged with day and class"""
        wanted = teacher.strip().lower()
        periods = []
        for day in self.week_schedule or []:
            for period in day.get('periods') or []:
                if (period.get('teacher') or '').strip().lower() == wanted:
                    periods.append({**period, 'day': day.get('day'),
                                    'class_name': self.class_name, 'section': self.section})
        return periods


def default_headmaster():
    return {'name': '', 'designation': 'Headmaster', 'message': '', 'photo_url': '', 'photo_file_id': ''}


def default_school_info():
    return {'name': 'Baliadanga High School', 'tagline': 'Educating and inspiring since 1963',
            'established': '1963', 'logo_url': ''}


def default_contact():
    return {'phone': '', 'email': 'info@baliadangahs.edu',
            'address': 'Baliadanga Rd, P.O. Baliadanga, West Bengal 741152, India'}


def default_ticker():
    return {'active': True, 'messages': []}


class SiteSettings(SerializerMixin, TimestampMixin, db.Model):
    """Single row (key 'main') of homepage content"""
    __tablename__ = 'site_settings'

    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(20), unique=True, nullable=False, default='main')
    hero_images = db.Column(db.JSON, default=list)  # [{url, file_id, caption}]
    headmaster = db.Column(db.JSON, default=default_headmaster)
    school_info = db.Column(db.JSON, default=default_school_info)
    contact = db.Column(db.JSON, default=default_contact)
    ticker = db.Column(db.JSON, default=default_ticker)

    @classmethod
    def get_or_create(cls):
        settings = cls.query.filter_by(key='main').first()
        if settings is None:
            settings = cls(key='main', hero_images=[], headmaster=default_headmaster(),
                           school_info=default_school_info(), contact=default_contact(), ticker=default_ticker())
            db.session.add(settings)
            db.session.flush()
        return settings
