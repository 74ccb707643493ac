"""
Day-to-day school operations: attendance, mid-day meals and fee collection.
"""
import logging
from collections import OrderedDict
from datetime import date, datetime

from flask import Blueprint, g, jsonify, request

from app_models import db, Attendance, CLASS_NAMES, FeePayment, FeeStructure, MidDayMeal, StudentProfile
from auth import ADMIN_ROLES, STAFF_ROLES, login_required, roles_required
from crud import commit_or_conflict, get_or_404, item_response, json_body, list_response
from errors import ApiError
from forms import FeePaymentForm, MidDayMealForm, bind_form, form_errors

logger = logging.getLogger(__name__)

daily_ops_bp = Blueprint('daily_ops', __name__, url_prefix='/api')

ATTENDANCE_STATUSES = ('Present', 'Absent', 'Late', 'Holiday', 'Half-Day')
ATTENDANCE_METHODS = ('Manual', 'QR', 'Biometric')


def parse_date(value, default=None):
    """Accept YYYY-MM-DD or an ISO timestamp and keep only the calendar day"""
    if value in (None, ''):
        if default is None:
            raise ApiError('date is required', 400)
        return default
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ApiError(f'Invalid date: {value}', 400)


def ensure_student_access(user, student):
    """Students may only read their own records"""
    if user.role == 'student' and student.user_id != user.id:
        raise ApiError('Not authorized to view this student', 403)


def class_order(class_name):
    return CLASS_NAMES.index(class_name) if class_name in CLASS_NAMES else len(CLASS_NAMES)


# Attendance
def upsert_attendance(student, day, status, method, user, remarks=None):
    record = Attendance.query.filter_by(student_id=student.id, date=day).first()
    created = record is None
    if created:
        record = Attendance(student_id=student.id, date=day)
        db.session.add(record)
    record.student_code = student.student_id
    record.status = status
    record.method = method
    record.marked_by = user.id
    record.remarks = remarks
    record.class_name = student.current_class
    record.section = student.section
    return record, created


def resolve_student(item):
    if item.get('student_id') not in (None, ''):
        try:
            return db.session.get(StudentProfile, int(item['student_id']))
        except (TypeError, ValueError):
            return None
    if item.get('student_code'):
        return StudentProfile.query.filter_by(student_id=item['student_code']).first()
    return None


@daily_ops_bp.route('/attendance', methods=['POST'])
@roles_required(*STAFF_ROLES)
def mark_attendance():
    """Mark one or many students for a day; existing marks are overwritten"""
    payload = request.get_json(silent=True)
    items = payload if isinstance(payload, list) else [payload] if isinstance(payload, dict) else []
    if not items:
        raise ApiError('No attendance data provided', 400)

    results = {'success': 0, 'failed': 0, 'errors': []}
    for item in items:
        if not isinstance(item, dict):
            results['failed'] += 1
            results['errors'].append('Attendance entries must be objects')
            continue
        student = resolve_student(item)
        if student is None:
            results['failed'] += 1
            results['errors'].append(f"Student not found for ID: {item.get('student_id') or item.get('student_code')}")
            continue
        status = item.get('status') or 'Present'
        method = item.get('method') or 'Manual'
        if status not in ATTENDANCE_STATUSES or method not in ATTENDANCE_METHODS:
            results['failed'] += 1
            results['errors'].append(f'Invalid status or method for {student.student_id}')
            continue
        try:
            day = parse_date(item.get('date'), date.today())
        except ApiError as e:
            results['failed'] += 1
            results['errors'].append(f'{student.student_id}: {e.message}')
            continue
        upsert_attendance(student, day, status, method, g.current_user, item.get('remarks'))
        results['success'] += 1

    commit_or_conflict('Attendance')
    return jsonify({'success': True, 'message': 'Attendance processed', 'results': results})


@daily_ops_bp.route('/attendance/scan', methods=['POST'])
@roles_required(*STAFF_ROLES)
def scan_attendance():
    """Mark a student present from a scanned QR code"""
    payload = json_body()
    code = (payload.get('student_code') or '').strip()
    if not code:
        raise ApiError('student_code is required', 400)
    student = StudentProfile.query.filter_by(student_id=code).first()
    if student is None:
        raise ApiError(f'Student not found for code: {code}', 404)

    day = parse_date(payload.get('date'), date.today())
    existing = Attendance.query.filter_by(student_id=student.id, date=day).first()
    if existing is not None and existing.status == 'Present':
        return jsonify({
            'success': True,
            'already_marked': True,
            'message': f'{student.name} is already marked present',
            'data': existing.to_dict(),
        })

    record, _ = upsert_attendance(student, day, 'Present', 'QR', g.current_user)
    commit_or_conflict('Attendance')
    logger.info("QR attendance for %s on %s", student.student_id, day)
    return jsonify({
        'success': True,
        'already_marked': False,
        'message': f'{student.name} marked present',
        'data': record.to_dict(),
    }), 201


@daily_ops_bp.route('/attendance/class')
@roles_required(*STAFF_ROLES)
def class_attendance():
    """Register for a class on a day, including students not yet marked"""
    class_name = request.args.get('class_name')
    if not class_name or not request.args.get('date'):
        raise ApiError('class_name and date are required', 400)
    day = parse_date(request.args.get('date'))
    section = request.args.get('section')

    students = StudentProfile.query.filter_by(current_class=class_name, status='Active')
    if section:
        students = students.filter_by(section=section)
    students = students.order_by(StudentProfile.section, StudentProfile.id).all()
    marks = {record.student_id: record for record in
             Attendance.query.filter(Attendance.date == day,
                                     Attendance.student_id.in_([s.id for s in students])).all()}

    register = []
    for student in students:
        record = marks.get(student.id)
        register.append({
            'student': {'id': student.id, 'name': student.name, 'student_id': student.student_id,
                        'roll_number': student.roll_number, 'section': student.section},
            'status': record.status if record else None,
            'method': record.method if record else None,
            'attendance_id': record.id if record else None,
        })
    return jsonify({'success': True, 'date': day.isoformat(), 'count': len(register), 'data': register})


@daily_ops_bp.route('/attendance/student/<int:student_id>')
@login_required
def student_attendance(student_id):
    student = get_or_404(StudentProfile, student_id, 'Student')
    ensure_student_access(g.current_user, student)
    records = Attendance.query.filter_by(student_id=student.id).order_by(Attendance.date.desc()).all()

    summary = {status: 0 for status in ATTENDANCE_STATUSES}
    for record in records:
        summary[record.status] = summary.get(record.status, 0) + 1
    return jsonify({
        'success': True,
        'count': len(records),
        'summary': summary,
        'data': [record.to_dict() for record in records],
    })


# Mid-day meals
@daily_ops_bp.route('/mid-day-meal', methods=['POST'])
@roles_required(*STAFF_ROLES)
def mark_meal():
    """Record the day's meal count for a class section, replacing any earlier count"""
    payload = json_body()
    form = bind_form(MidDayMealForm, payload)
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    student_ids = list(form.student_ids.data or [])
    if form.total_count.data is None and not student_ids and 'student_ids' not in payload:
        raise ApiError('student_ids or total_count is required', 400)
    day = form.date.data or date.today()

    meal = MidDayMeal.query.filter_by(date=day, class_name=form.class_name.data, section=form.section.data).first()
    created = meal is None
    if created:
        meal = MidDayMeal(date=day, class_name=form.class_name.data, section=form.section.data)
        db.session.add(meal)
    meal.student_ids = student_ids
    meal.total_count = form.total_count.data if form.total_count.data is not None else len(student_ids)
    meal.menu_item = form.menu_item.data or 'Standard Meal'
    meal.marked_by = g.current_user.id
    commit_or_conflict('Meal record')
    logger.info("Meal count %s for %s-%s on %s", meal.total_count, meal.class_name, meal.section, day)
    return item_response(meal, 201 if created else 200)


@daily_ops_bp.route('/mid-day-meal')
@roles_required(*STAFF_ROLES)
def meal_report():
    query = MidDayMeal.query
    if request.args.get('date'):
        query = query.filter_by(date=parse_date(request.args['date']))
    if request.args.get('class_name'):
        query = query.filter_by(class_name=request.args['class_name'])
    records = sorted(query.all(), key=lambda meal: (meal.date, class_order(meal.class_name), meal.section))
    return list_response(records)


@daily_ops_bp.route('/mid-day-meal/summary')
@roles_required(*STAFF_ROLES)
def meal_summary():
    """Counts for one day grouped by class, with section counts and totals"""
    day = parse_date(request.args.get('date'), date.today())
    records = MidDayMeal.query.filter_by(date=day).all()

    classes = OrderedDict()
    for meal in sorted(records, key=lambda meal: (class_order(meal.class_name), meal.section)):
        entry = classes.setdefault(meal.class_name, {'class_name': meal.class_name, 'sections': OrderedDict(),
                                                     'class_total': 0})
        entry['sections'][meal.section] = meal.total_count
        entry['class_total'] += meal.total_count

    summary = list(classes.values())
    return jsonify({
        'success': True,
        'data': {
            'date': day.isoformat(),
            'classes': summary,
            'grand_total': sum(entry['class_total'] for entry in summary),
        }
    })


# Fees
@daily_ops_bp.route('/fees/pay', methods=['POST'])
@roles_required(*ADMIN_ROLES)
def record_payment():
    form = bind_form(FeePaymentForm, json_body())
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    student = get_or_404(StudentProfile, form.student_id.data, 'Student')
    if form.fee_structure_id.data:
        get_or_404(FeeStructure, form.fee_structure_id.data, 'Fee structure')

    payment = FeePayment()
    form.populate_obj(payment)
    payment.student_id = student.id
    payment.payment_date = payment.payment_date or date.today()
    payment.academic_year = payment.academic_year or str(date.today().year)
    payment.collected_by = g.current_user.id
    payment.receipt_number = FeePayment.generate_receipt_number('REC', 4)
    db.session.add(payment)
    commit_or_conflict('Payment')
    logger.info("Payment %s of %.2f recorded for %s", payment.receipt_number, payment.amount_paid, student.student_id)
    return item_response(payment, 201, 'Payment recorded successfully')


@daily_ops_bp.route('/fees/student/<int:student_id>')
@login_required
def student_payments(student_id):
    student = get_or_404(StudentProfile, student_id, 'Student')
    ensure_student_access(g.current_user, student)
    payments = FeePayment.query.filter_by(student_id=student.id).order_by(FeePayment.payment_date.desc()).all()
    return list_response(payments)


@daily_ops_bp.route('/fees/my-history')
@login_required
def my_payments():
    student = StudentProfile.query.filter_by(user_id=g.current_user.id).first()
    if student is None:
        raise ApiError('No student profile linked to this account', 404)
    payments = FeePayment.query.filter_by(student_id=student.id).order_by(FeePayment.payment_date.desc()).all()
    return list_response(payments)


@daily_ops_bp.route('/fees/dues/<student_code>')
@login_required
def student_dues(student_code):
    """Fees due this year for the student's class plus school-wide fees"""
    student = StudentProfile.query.filter_by(student_id=student_code).first()
    if student is None:
        raise ApiError('Student not found', 404)
    ensure_student_access(g.current_user, student)

    current_year = str(date.today().year)
    structures = FeeStructure.query.filter(
        FeeStructure.academic_year == current_year,
        FeeStructure.current_class.in_((student.current_class, 'ALL')),
    ).all()
    payments = FeePayment.query.filter_by(student_id=student.id, academic_year=current_year).all()

    total_fees = sum(structure.amount for structure in structures)
    total_paid = sum(payment.amount_paid for payment in payments)
    return jsonify({
        'success': True,
        'data': {
            'student': student.name,
            'roll': student.roll_number,
            'academic_year': current_year,
            'total_fees': total_fees,
            'total_paid': total_paid,
            'balance': total_fees - total_paid,
            'details': [structure.to_dict() for structure in structures],
        }
    })
