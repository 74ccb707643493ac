"""
Collection endpoints for the school's content and people, plus the homepage settings.
"""
import logging
from datetime import date, datetime, timedelta

from flask import Blueprint, current_app, jsonify, request

from app_models import (db, Admission, Announcement, Attendance, CalendarEvent, CourseMaterial, Event, ExamResult,
                        Exam, FeePayment, FeeStructure, GalleryImage, Homework, SchoolResource, SiteSettings,
                        Staff, StudentProfile, User, USER_ROLES)
from auth import ADMIN_ROLES, STAFF_ROLES, roles_required
from crud import commit_or_conflict, item_response, json_body, register_collection
from errors import ApiError
from forms import (AdmissionForm, AnnouncementForm, CalendarEventForm, CourseMaterialForm, EventForm, ExamForm,
                   FeeStructureForm, GalleryImageForm, HeadmasterForm, HeroImagesForm, HomeworkForm, ResourceForm,
                   StaffForm, StudentForm, bind_form, form_errors)
from uploads import file_id_from_url, get_file_store, referenced_files

logger = logging.getLogger(__name__)

api_bp = Blueprint('api', __name__, url_prefix='/api')

SETTINGS_ROLES = ('admin', 'principal')

STAFF_POSITION_ROLES = {
    'Admin': 'admin',
    'Principal': 'principal',
    'Vice Principal': 'vice principal',
}


# Announcements
def visible_announcements(query, user):
    if user is not None and user.role in STAFF_ROLES:
        return query
    today = date.today()
    return query.filter(
        Announcement.is_active.is_(True),
        db.or_(Announcement.expiry_date.is_(None), Announcement.expiry_date >= today),
    )


def stamp_author(item, user, payload, created):
    if created:
        item.author_id = user.id
        item.author_name = user.name
    if not item.publish_date:
        item.publish_date = date.today()


def owner_or_admin(item, user):
    return user.role == 'admin' or item.author_id == user.id


# Events, gallery, materials
def stamp_creator(item, user, payload, created):
    if created and user is not None:
        item.created_by = user.id


def stamp_uploader(item, user, payload, created):
    if created:
        item.uploaded_by = user.id
    if not item.year:
        item.year = str(date.today().year)


def stamp_assigner(item, user, payload, created):
    if created:
        item.assigned_by = user.id


def assigner_or_admin(item, user):
    return user.role in ADMIN_ROLES or item.assigned_by == user.id


def homework_for_user(query, user):
    if user.role != 'student':
        return query
    profile = StudentProfile.query.filter_by(user_id=user.id).first()
    if profile is None:
        return query.filter(db.false())
    return query.filter_by(class_name=profile.current_class, section=profile.section)


# Staff accounts
def sync_staff_account(item, user, payload, created):
    role = STAFF_POSITION_ROLES.get(item.position, 'teacher')
    if created:
        account = User(name=item.full_name, email=item.email.lower(), role=role, is_active=item.is_active)
        account.set_password(payload.get('password') or current_app.config['DEFAULT_STAFF_PASSWORD'])
        db.session.add(account)
        item.user = account
    elif item.user is not None:
        item.user.name = item.full_name
        item.user.email = item.email.lower()
        item.user.role = role
        item.user.is_active = item.is_active


def remove_staff_account(item, user):
    if item.user is not None:
        db.session.delete(item.user)


# Student accounts
def scope_students(query, user):
    class_name = request.args.get('class_name')
    if class_name and class_name.lower() != 'all':
        query = query.filter_by(current_class=class_name)
    return query


def sync_student_account(item, user, payload, created):
    if created:
        account = User(name=item.name, student_id=item.student_id, role='student')
        account.set_password(payload.get('password') or current_app.config['DEFAULT_STUDENT_PASSWORD'])
        db.session.add(account)
        item.user = account
    elif item.user is not None:
        item.user.name = item.name
        item.user.student_id = item.student_id
        item.user.is_active = item.status == 'Active'


def remove_student_records(item, user):
    Attendance.query.filter_by(student_id=item.id).delete()
    ExamResult.query.filter_by(student_id=item.id).delete()
    FeePayment.query.filter_by(student_id=item.id).delete()
    if item.user is not None:
        db.session.delete(item.user)


register_collection(api_bp, 'announcements', Announcement, AnnouncementForm,
                    order_by=(Announcement.publish_date.desc(), Announcement.created_at.desc()),
                    filters=('category', 'target_audience', 'priority'),
                    list_query=visible_announcements, before_save=stamp_author, can_modify=owner_or_admin,
                    file_list_fields=('attachments',))
register_collection(api_bp, 'events', Event, EventForm,
                    order_by=Event.date.desc(), filters=('category',),
                    before_save=stamp_creator, file_fields=('image_file_id',))
register_collection(api_bp, 'gallery', GalleryImage, GalleryImageForm, label='Image',
                    order_by=GalleryImage.created_at.desc(), filters=('category',),
                    before_save=stamp_creator, file_fields=('file_id',))
register_collection(api_bp, 'resources', SchoolResource, ResourceForm, label='Resource',
                    order_by=SchoolResource.created_at.desc(), filters=('type',),
                    create_roles=ADMIN_ROLES, write_roles=ADMIN_ROLES, file_fields=('file_id',))
register_collection(api_bp, 'course-materials', CourseMaterial, CourseMaterialForm, label='Course material',
                    order_by=CourseMaterial.created_at.desc(), filters=('grade', 'type', 'subject', 'year'),
                    before_save=stamp_uploader, file_fields=('file_id',))
register_collection(api_bp, 'staff', Staff, StaffForm,
                    order_by=Staff.full_name, filters=('position', 'department'),
                    read_roles=STAFF_ROLES, create_roles=ADMIN_ROLES, write_roles=ADMIN_ROLES,
                    before_save=sync_staff_account, before_delete=remove_staff_account,
                    file_url_fields=('profile_image',))
register_collection(api_bp, 'students', StudentProfile, StudentForm, label='Student',
                    order_by=(StudentProfile.current_class, StudentProfile.id),
                    filters=('current_class', 'section', 'status', 'session'), list_query=scope_students,
                    read_roles=STAFF_ROLES, create_roles=ADMIN_ROLES, write_roles=ADMIN_ROLES,
                    before_save=sync_student_account, before_delete=remove_student_records,
                    file_url_fields=('photo_url',))
register_collection(api_bp, 'admissions', Admission, AdmissionForm,
                    order_by=Admission.created_at.desc(), filters=('status', 'class_name'),
                    read_roles=ADMIN_ROLES, create_roles=None, write_roles=ADMIN_ROLES,
                    file_list_fields=('documents',))
register_collection(api_bp, 'calendar', CalendarEvent, CalendarEventForm, label='Calendar event',
                    order_by=CalendarEvent.date, filters=('type',),
                    create_roles=ADMIN_ROLES, write_roles=ADMIN_ROLES, before_save=stamp_creator)
register_collection(api_bp, 'fee-structures', FeeStructure, FeeStructureForm, label='Fee structure',
                    order_by=(FeeStructure.current_class, FeeStructure.name),
                    filters=('current_class', 'academic_year', 'type'),
                    read_roles=USER_ROLES, create_roles=ADMIN_ROLES, write_roles=ADMIN_ROLES)
register_collection(api_bp, 'exams', Exam, ExamForm,
                    order_by=Exam.created_at.desc(), filters=('class_name', 'session'),
                    read_roles=USER_ROLES, create_roles=ADMIN_ROLES, write_roles=ADMIN_ROLES)
register_collection(api_bp, 'homework', Homework, HomeworkForm,
                    order_by=Homework.due_date, filters=('class_name', 'section', 'subject'),
                    read_roles=USER_ROLES, list_query=homework_for_user,
                    before_save=stamp_assigner, can_modify=assigner_or_admin,
                    file_list_fields=('attachments',))


@api_bp.route('/students/bulk', methods=['POST'])
@roles_required(*ADMIN_ROLES)
def bulk_import_students():
    """Create many students at once; invalid rows are reported and skipped"""
    payload = request.get_json(silent=True)
    rows = payload.get('students') if isinstance(payload, dict) else payload
    if not isinstance(rows, list) or not rows:
        raise ApiError('A non-empty list of students is required', 400)

    created, errors, seen = [], [], set()
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            errors.append({'row': index, 'errors': {'row': ['Must be an object']}})
            continue
        form = bind_form(StudentForm, row)
        if not form.validate():
            errors.append({'row': index, 'errors': form_errors(form)})
            continue
        student_id = form.student_id.data
        taken = (student_id in seen
                 or StudentProfile.query.filter_by(student_id=student_id).first() is not None
                 or User.query.filter_by(student_id=student_id).first() is not None)
        if taken:
            errors.append({'row': index, 'errors': {'student_id': [f'{student_id} already exists']}})
            continue

        student = StudentProfile()
        form.populate_obj(student)
        sync_student_account(student, None, row, True)
        db.session.add(student)
        seen.add(student_id)
        created.append(student)

    commit_or_conflict('Student')
    logger.info("Bulk imported %s students (%s rejected)", len(created), len(errors))
    return jsonify({
        'success': True,
        'message': f'{len(created)} students imported',
        'count': len(created),
        'data': [student.to_dict() for student in created],
        'errors': errors,
    }), 201 if created else 200


@api_bp.route('/analytics/summary')
@roles_required(*ADMIN_ROLES)
def dashboard_summary():
    today = date.today()
    first_of_month = today.replace(day=1)
    week_ago = datetime.utcnow() - timedelta(days=7)

    present = Attendance.query.filter(Attendance.date == today, Attendance.status.in_(('Present', 'Late'))).count()
    marked = Attendance.query.filter(Attendance.date == today).count()
    month_fees = db.session.query(db.func.sum(FeePayment.amount_paid)).filter(
        FeePayment.payment_date >= first_of_month).scalar() or 0

    return jsonify({
        'success': True,
        'data': {
            'total_students': StudentProfile.query.filter_by(status='Active').count(),
            'total_staff': Staff.query.filter_by(is_active=True).count(),
            'pending_admissions': Admission.query.filter_by(status='Pending').count(),
            'active_announcements': visible_announcements(Announcement.query, None).count(),
            'recent_announcements': Announcement.query.filter(Announcement.created_at >= week_ago).count(),
            'upcoming_events': Event.query.filter(Event.date >= today).count(),
            'today_present_count': present,
            'today_attendance_percent': round(present / marked * 100) if marked else 0,
            'this_month_fees': month_fees,
        }
    })


# Site settings
def settings_files(settings):
    file_ids = referenced_files(settings, file_list_fields=('hero_images',))
    headmaster = settings.headmaster or {}
    photo = headmaster.get('photo_file_id') or file_id_from_url(headmaster.get('photo_url'))
    if photo:
        file_ids.add(photo)
    return file_ids


def save_settings(settings, old_files):
    commit_or_conflict('Site settings')
    store = get_file_store()
    for file_id in sorted(old_files - settings_files(settings)):
        store.delete(file_id)
    return item_response(settings, message='Site settings updated')


@api_bp.route('/site-settings')
def site_settings():
    settings = SiteSettings.get_or_create()
    commit_or_conflict('Site settings')
    return item_response(settings)


@api_bp.route('/site-settings/hero-images', methods=['PUT'])
@roles_required(*SETTINGS_ROLES)
def update_hero_images():
    payload = json_body()
    if not isinstance(payload.get('hero_images'), list):
        raise ApiError('hero_images must be a list', 400)
    form = bind_form(HeroImagesForm, payload)
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    settings = SiteSettings.get_or_create()
    old_files = settings_files(settings)
    settings.hero_images = form.hero_images.data
    logger.info("Hero images replaced (%s images)", len(settings.hero_images))
    return save_settings(settings, old_files)


@api_bp.route('/site-settings/headmaster', methods=['PUT'])
@roles_required(*SETTINGS_ROLES)
def update_headmaster():
    """Only the keys present in the body change"""
    payload = json_body()
    settings = SiteSettings.get_or_create()
    form = bind_form(HeadmasterForm, {**(settings.headmaster or {}), **payload})
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    old_files = settings_files(settings)
    # Reassign so the JSON column registers the change
    settings.headmaster = {name: form[name].data or '' for name in
                           ('name', 'designation', 'message', 'photo_url', 'photo_file_id')}
    return save_settings(settings, old_files)
