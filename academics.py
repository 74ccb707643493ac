"""
Exam results, class promotion and class routines.
"""
import logging
from datetime import date

from flask import Blueprint, g, jsonify, request

from app_models import db, CLASS_NAMES, WEEK_DAYS, Exam, ExamResult, FeePayment, Routine, StudentProfile
from auth import ADMIN_ROLES, STAFF_ROLES, login_required, roles_required
from crud import commit_or_conflict, get_or_404, item_response, json_body, list_response
from errors import ApiError
from forms import ResultMarksForm, RoutineForm, bind_form, form_errors, period_minutes

logger = logging.getLogger(__name__)

academics_bp = Blueprint('academics', __name__, url_prefix='/api')

PROMOTION_PASS_PERCENTAGE = 30


def student_summary(student):
    return {
        'id': student.id,
        'name': student.name,
        'student_id': student.student_id,
        'roll_number': student.roll_number,
        'class_name': student.current_class,
        'section': student.section,
        'session': student.session,
    }


def exam_summary(exam):
    return {
        'id': exam.id,
        'name': exam.name,
        'session': exam.session,
        'class_name': exam.class_name,
        'subjects': exam.subjects or [],
        'is_published': exam.is_published,
    }


def result_payload(result, with_student=False, with_exam=False):
    data = result.to_dict()
    if with_student:
        data['student'] = student_summary(result.student)
    if with_exam:
        data['exam'] = exam_summary(result.exam)
    return data


def parse_mark(value, subject):
    """Validate one mark against the subject's full marks"""
    try:
        mark = float(value)
    except (TypeError, ValueError):
        raise ApiError(f"Mark for {subject['name']} must be a number", 400)
    full_marks = float(subject.get('full_marks') or 100)
    if mark < 0 or mark > full_marks:
        raise ApiError(f"Mark for {subject['name']} must be between 0 and {full_marks:g}", 400)
    return mark


def upsert_result(student, exam, marks):
    result = ExamResult.query.filter_by(student_id=student.id, exam_id=exam.id).first()
    created = result is None
    if created:
        result = ExamResult(student=student, exam=exam, marks={})
        db.session.add(result)
    merged = dict(result.marks or {})
    merged.update(marks)
    # Reassign so the JSON column registers the change
    result.marks = merged
    result.recalculate()
    return result, created


@academics_bp.route('/results/marks', methods=['POST'])
@roles_required(*STAFF_ROLES)
def enter_marks():
    form = bind_form(ResultMarksForm, json_body())
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    student = get_or_404(StudentProfile, form.student_id.data, 'Student')
    exam = get_or_404(Exam, form.exam_id.data, 'Exam')
    subjects = {subject['name']: subject for subject in exam.subjects or []}

    marks = {}
    for name, value in (form.marks.data or {}).items():
        if name not in subjects:
            raise ApiError(f'{name} is not a subject of {exam.name}', 400)
        marks[name] = parse_mark(value, subjects[name])

    result, created = upsert_result(student, exam, marks)
    if form.remarks.data:
        result.remarks = form.remarks.data
    commit_or_conflict('Result')
    return jsonify({
        'success': True,
        'message': 'Marks saved',
        'data': result_payload(result),
    }), 201 if created else 200


@academics_bp.route('/results/bulk-marks', methods=['POST'])
@roles_required(*STAFF_ROLES)
def bulk_marks():
    """One subject's marks for many students of an exam"""
    payload = json_body()
    exam_id, subject_name, entries = payload.get('exam_id'), payload.get('subject'), payload.get('entries')
    if not exam_id or not subject_name or not isinstance(entries, list) or not entries:
        raise ApiError('exam_id, subject, and entries are required', 400)

    try:
        exam_id = int(exam_id)
    except (TypeError, ValueError):
        raise ApiError('exam_id must be an integer', 400)
    exam = get_or_404(Exam, exam_id, 'Exam')
    subject = next((s for s in exam.subjects or [] if s['name'] == subject_name), None)
    if subject is None:
        raise ApiError(f'{subject_name} is not a subject of {exam.name}', 400)

    created = updated = 0
    errors = []
    for entry in entries:
        student_id = entry.get('student_id') if isinstance(entry, dict) else None
        student = db.session.get(StudentProfile, int(student_id)) if str(student_id or '').isdigit() else None
        if student is None:
            errors.append(f'{student_id}: student not found')
            continue
        try:
            mark = parse_mark(entry.get('mark'), subject)
        except ApiError as e:
            errors.append(f'{student_id}: {e.message}')
            continue
        _, was_created = upsert_result(student, exam, {subject_name: mark})
        if was_created:
            created += 1
        else:
            updated += 1

    commit_or_conflict('Result')
    logger.info("Bulk marks for exam %s/%s: %s created, %s updated", exam.id, subject_name, created, updated)
    return jsonify({
        'success': True,
        'message': f'Bulk marks saved: {updated} updated, {created} created',
        'created': created,
        'updated': updated,
        'errors': errors,
    })


@academics_bp.route('/results/exam/<int:exam_id>')
@roles_required(*STAFF_ROLES)
def exam_results(exam_id):
    get_or_404(Exam, exam_id, 'Exam')
    results = (ExamResult.query.filter_by(exam_id=exam_id)
               .order_by(ExamResult.rank.is_(None), ExamResult.rank, ExamResult.total_obtained.desc())
               .all())
    return list_response(results, lambda result: result_payload(result, with_student=True))


@academics_bp.route('/results/publish/<int:exam_id>', methods=['POST'])
@roles_required(*ADMIN_ROLES)
def publish_results(exam_id):
    exam = get_or_404(Exam, exam_id, 'Exam')
    results = (ExamResult.query.filter_by(exam_id=exam_id)
               .order_by(ExamResult.total_obtained.desc(), ExamResult.id)
               .all())
    for position, result in enumerate(results, start=1):
        result.rank = position
    exam.is_published = True
    commit_or_conflict('Result')
    logger.info("Published exam %s with %s results", exam.id, len(results))
    return jsonify({
        'success': True,
        'message': f'Results published for {exam.name}',
        'count': len(results),
        'data': exam.to_dict(),
    })


def published_results(student):
    return (ExamResult.query.join(Exam)
            .filter(ExamResult.student_id == student.id, Exam.is_published.is_(True))
            .order_by(ExamResult.created_at.desc())
            .all())


@academics_bp.route('/results/my')
@login_required
def my_results():
    student = StudentProfile.query.filter_by(user_id=g.current_user.id).first()
    if student is None:
        raise ApiError('No student profile linked to this account', 404)
    return list_response(published_results(student), lambda result: result_payload(result, with_exam=True))


@academics_bp.route('/results/public')
def public_result():
    """Roll-number lookup for students and parents; published exams only"""
    roll_number = (request.args.get('roll_number') or '').strip()
    if not roll_number:
        raise ApiError('roll_number query param is required', 400)

    query = StudentProfile.query.filter_by(roll_number=roll_number)
    class_name = request.args.get('class_name')
    if class_name:
        query = query.filter_by(current_class=class_name)
    students = query.all()
    if not students:
        raise ApiError('No student found with that roll number', 404)
    if len(students) > 1:
        raise ApiError('Several students share that roll number; specify class_name', 400)

    student = students[0]
    return jsonify({
        'success': True,
        'student': {
            'name': student.name,
            'roll_number': student.roll_number,
            'class_name': student.current_class,
            'section': student.section,
        },
        'results': [result_payload(result, with_exam=True) for result in published_results(student)],
    })


@academics_bp.route('/results/report-card/<int:student_id>/<int:exam_id>')
@roles_required(*STAFF_ROLES)
def report_card(student_id, exam_id):
    student = get_or_404(StudentProfile, student_id, 'Student')
    exam = get_or_404(Exam, exam_id, 'Exam')
    result = ExamResult.query.filter_by(student_id=student.id, exam_id=exam.id).first()
    return jsonify({
        'success': True,
        'data': {
            'student': student_summary(student),
            'exam': exam_summary(exam),
            'result': None if result is None else {
                'marks': result.marks or {},
                'total_obtained': result.total_obtained,
                'full_marks': exam.full_marks(),
                'percentage': result.percentage,
                'grade': result.grade,
                'rank': result.rank,
            },
        },
    })


# Promotion
def find_student_by_code(student_code):
    student = StudentProfile.query.filter_by(student_id=student_code).first()
    if student is None:
        raise ApiError('Student not found', 404)
    return student


def next_roll_number(class_name, exclude_id=None):
    query = StudentProfile.query.filter_by(current_class=class_name)
    if exclude_id is not None:
        query = query.filter(StudentProfile.id != exclude_id)
    rolls = [int(student.roll_number) for student in query.all() if str(student.roll_number).isdigit()]
    return str(max(rolls, default=0) + 1)


@academics_bp.route('/promotion/check/<student_code>')
@roles_required(*STAFF_ROLES)
def check_promotion(student_code):
    student = find_student_by_code(student_code)
    latest = (ExamResult.query.filter_by(student_id=student.id)
              .order_by(ExamResult.created_at.desc(), ExamResult.id.desc())
              .first())
    if latest is None:
        return jsonify({
            'success': True,
            'eligible': False,
            'message': 'No exam results found for this student.',
            'student': student.to_dict(),
        })

    passed = latest.percentage >= PROMOTION_PASS_PERCENTAGE
    return jsonify({
        'success': True,
        'eligible': passed,
        'status': 'PASSED' if passed else 'FAILED',
        'message': 'Eligible for promotion' if passed else 'Student has failed the exam',
        'student': student.to_dict(),
        'result_summary': {
            'total': latest.total_obtained,
            'percentage': latest.percentage,
            'grade': latest.grade,
        },
    })


@academics_bp.route('/promotion/promote', methods=['POST'])
@roles_required(*ADMIN_ROLES)
def promote_student():
    payload = json_body()
    student = find_student_by_code(payload.get('student_id'))
    new_class = payload.get('new_class')
    if new_class not in CLASS_NAMES:
        raise ApiError('new_class must be one of ' + ', '.join(CLASS_NAMES), 400)
    if new_class == student.current_class:
        raise ApiError(f'Student is already in class {new_class}', 400)
    try:
        amount = float(payload.get('payment_amount', 0))
    except (TypeError, ValueError):
        raise ApiError('payment_amount must be a number', 400)
    if amount < 0:
        raise ApiError('payment_amount cannot be negative', 400)

    year = str(date.today().year)
    payment = FeePayment(
        student=student,
        amount_paid=amount,
        payment_method=payload.get('payment_method') or 'Cash',
        remarks=f'Admission/Promotion Fee to Class {new_class}',
        collected_by=g.current_user.id,
        academic_year=year,
        receipt_number=FeePayment.generate_receipt_number('SLIP', 5),
    )
    db.session.add(payment)

    old_class, old_roll = student.current_class, student.roll_number
    student.previous_classes = list(student.previous_classes or []) + [{
        'class_name': old_class,
        'section': student.section,
        'roll_number': old_roll,
        'session': student.session,
        'promoted_on': date.today().isoformat(),
    }]
    student.roll_number = next_roll_number(new_class, exclude_id=student.id)
    student.current_class = new_class
    student.section = 'A'
    commit_or_conflict('Promotion')
    logger.info("Promoted %s from %s to %s", student.student_id, old_class, new_class)

    return jsonify({
        'success': True,
        'message': f'Student promoted to Class {new_class}',
        'slip_data': {
            'receipt_no': payment.receipt_number,
            'date': payment.payment_date.isoformat() if payment.payment_date else date.today().isoformat(),
            'student_name': student.name,
            'student_id': student.student_id,
            'old_class': old_class,
            'new_class': new_class,
            'new_roll': student.roll_number,
            'amount_paid': amount,
        },
        'data': student.to_dict(),
    })


# Routines
def routine_order(routine):
    rank = CLASS_NAMES.index(routine.class_name) if routine.class_name in CLASS_NAMES else len(CLASS_NAMES)
    return rank, routine.section


def find_teacher_clash(class_name, section, week_schedule, exclude_id=None):
    """First period of another class/section that double-books a teacher, or None"""
    others = Routine.query.filter(db.or_(Routine.class_name != class_name, Routine.section != section))
    if exclude_id is not None:
        others = others.filter(Routine.id != exclude_id)
    others = others.all()

    for day in week_schedule:
        for period in day['periods']:
            teacher = period['teacher'].lower()
            if not teacher:
                continue
            start, end = period_minutes(period['start_time']), period_minutes(period['end_time'])
            for other in others:
                other_day = next((d for d in other.week_schedule or [] if d.get('day') == day['day']), None)
                for booked in (other_day or {}).get('periods') or []:
                    if (booked.get('teacher') or '').strip().lower() != teacher:
                        continue
                    if start < period_minutes(booked['end_time']) and end > period_minutes(booked['start_time']):
                        return (f"{period['teacher']} is already assigned to Class {other.class_name}-{other.section} "
                                f"on {day['day']} ({booked['start_time']} - {booked['end_time']})")
    return None


def save_routine(routine, form):
    clash = find_teacher_clash(form.class_name.data, form.section.data, form.week_schedule.data, routine.id)
    if clash:
        raise ApiError(f'Conflict detected: {clash}', 409)
    form.populate_obj(routine)
    if routine.id is None:
        db.session.add(routine)
    commit_or_conflict('Routine')


@academics_bp.route('/routines')
def list_routines():
    query = Routine.query
    if request.args.get('class_name'):
        query = query.filter_by(class_name=request.args['class_name'])
    if request.args.get('section'):
        query = query.filter_by(section=request.args['section'])
    return list_response(sorted(query.all(), key=routine_order))


@academics_bp.route('/routines', methods=['POST'])
@roles_required(*ADMIN_ROLES)
def upsert_routine():
    """Create the routine for a class section, or replace its week schedule"""
    form = bind_form(RoutineForm, json_body())
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))

    routine = Routine.query.filter_by(class_name=form.class_name.data, section=form.section.data).first()
    created = routine is None
    if created:
        routine = Routine()
    save_routine(routine, form)
    logger.info("%s routine for %s-%s", 'Created' if created else 'Updated', routine.class_name, routine.section)
    return item_response(routine, 201 if created else 200, 'Routine saved')


@academics_bp.route('/routines/<int:routine_id>')
def get_routine(routine_id):
    return item_response(get_or_404(Routine, routine_id, 'Routine'))


@academics_bp.route('/routines/<int:routine_id>', methods=['PUT'])
@roles_required(*ADMIN_ROLES)
def update_routine(routine_id):
    routine = get_or_404(Routine, routine_id, 'Routine')
    form = bind_form(RoutineForm, json_body(), existing=routine)
    if not form.validate():
        raise ApiError('Validation failed', 400, form_errors(form))
    save_routine(routine, form)
    return item_response(routine, message='Routine updated')


@academics_bp.route('/routines/<int:routine_id>', methods=['DELETE'])
@roles_required(*ADMIN_ROLES)
def delete_routine(routine_id):
    routine = get_or_404(Routine, routine_id, 'Routine')
    try:
        db.session.delete(routine)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Deleted routine %s", routine_id)
    return jsonify({'success': True, 'message': 'Routine deleted', 'data': {'id': routine_id}})


@academics_bp.route('/routines/teacher/<teacher_name>')
def teacher_routine(teacher_name):
    """A teacher's week across every class, matched case-insensitively"""
    routines = [routine for routine in Routine.query.all() if routine.periods_for(teacher_name)]
    periods = [period for routine in routines for period in routine.periods_for(teacher_name)]
    periods.sort(key=lambda period: (WEEK_DAYS.index(period['day']), period_minutes(period['start_time'])))
    return jsonify({
        'success': True,
        'count': len(routines),
        'data': [routine.to_dict() for routine in sorted(routines, key=routine_order)],
        'periods': periods,
    })
