"""
Admin screens as configuration, plus the flows that are not plain collections.
"""
import logging
from datetime import date

from api_client import ApiError
from capabilities import LoggingNotifier
from resource_manager import MB, AttachmentPolicy, AttachmentRejected, ResourceManager, ResourceSpec

logger = logging.getLogger(__name__)

DOCUMENTS = AttachmentPolicy(max_bytes=10 * MB, extensions=('pdf', 'doc', 'docx'))
PDF_ONLY = AttachmentPolicy(max_bytes=15 * MB, extensions=('pdf',))
IMAGES = AttachmentPolicy(max_bytes=5 * MB, extensions=('png', 'jpg', 'jpeg', 'gif', 'webp'))
PDF_OR_IMAGE = AttachmentPolicy(max_bytes=15 * MB, extensions=('pdf', 'png', 'jpg', 'jpeg'))

RESOURCE_SPECS = {spec.name: spec for spec in (
    ResourceSpec('announcements', 'Announcement', 'announcements',
                 required_fields=('title', 'content'), search_fields=('title', 'content', 'author_name'),
                 facet_fields=('category', 'target_audience', 'priority'), date_field='publish_date',
                 attachment=PDF_OR_IMAGE, insert_position='prepend'),
    ResourceSpec('events', 'Event', 'events',
                 required_fields=('title', 'date'), search_fields=('title', 'location', 'description'),
                 facet_fields=('category',), date_field='date', attachment=IMAGES, insert_position='prepend'),
    ResourceSpec('gallery', 'Image', 'gallery',
                 required_fields=('url',), search_fields=('caption',), facet_fields=('category',),
                 attachment=IMAGES, insert_position='prepend'),
    ResourceSpec('resources', 'Resource', 'resources',
                 required_fields=('title', 'description', 'file_path'), search_fields=('title', 'description'),
                 facet_fields=('type',), attachment=DOCUMENTS, insert_position='prepend'),
    ResourceSpec('course-materials', 'Course material', 'course-materials',
                 required_fields=('grade', 'type', 'title', 'file_path'),
                 search_fields=('title', 'description', 'subject'), facet_fields=('grade', 'type', 'subject', 'year'),
                 attachment=PDF_ONLY, insert_position='prepend'),
    ResourceSpec('fee-structures', 'Fee structure', 'fee-structures',
                 required_fields=('name', 'current_class', 'amount', 'academic_year'), search_fields=('name',),
                 facet_fields=('current_class', 'academic_year', 'type')),
    ResourceSpec('exams', 'Exam', 'exams',
                 required_fields=('name', 'session', 'class_name'), search_fields=('name', 'session'),
                 facet_fields=('class_name', 'session', 'is_published'), date_field='start_date',
                 insert_position='prepend'),
    ResourceSpec('homework', 'Homework', 'homework',
                 required_fields=('title', 'description', 'class_name', 'section', 'subject', 'due_date'),
                 search_fields=('title', 'subject', 'description'), facet_fields=('class_name', 'section', 'subject'),
                 date_field='due_date', attachment=PDF_OR_IMAGE),
    ResourceSpec('staff', 'Staff member', 'staff',
                 required_fields=('employee_id', 'full_name', 'email', 'department'),
                 search_fields=('full_name', 'email', 'employee_id', 'department'),
                 facet_fields=('position', 'department'), attachment=IMAGES,
                 sort_key=lambda record: (record.get('full_name') or '').lower()),
    ResourceSpec('students', 'Student', 'students',
                 required_fields=('student_id', 'name', 'roll_number', 'current_class', 'guardian_name',
                                  'guardian_phone'),
                 search_fields=('name', 'student_id', 'roll_number', 'guardian_name'),
                 facet_fields=('current_class', 'section', 'status'), attachment=IMAGES),
    ResourceSpec('calendar', 'Calendar event', 'calendar',
                 required_fields=('title', 'date'), search_fields=('title', 'description'),
                 facet_fields=('type',), date_field='date',
                 sort_key=lambda record: record.get('date') or ''),
    ResourceSpec('admissions', 'Admission', 'admissions',
                 required_fields=('student_name', 'email', 'phone_number', 'date_of_birth', 'gender', 'address',
                                  'guardian_name', 'guardian_phone', 'class_name'),
                 search_fields=('student_name', 'email', 'guardian_name'), facet_fields=('status', 'class_name'),
                 attachment=PDF_OR_IMAGE, insert_position='prepend'),
    ResourceSpec('routines', 'Routine', 'routines',
                 required_fields=('class_name', 'section'), search_fields=('class_name', 'section'),
                 facet_fields=('class_name', 'section')),
)}


def open_manager(client, name, params=None, **capabilities):
    """Build the manager for one admin screen; capabilities are passed through"""
    try:
        spec = RESOURCE_SPECS[name]
    except KeyError:
        raise ValueError(f'Unknown resource screen: {name}') from None
    collection = client.collection(spec.path)
    if params:
        collection.params.update(params)
    return ResourceManager(spec, collection, **capabilities)


class SiteSettingsEditor:
    """Homepage hero images and the headmaster's message"""

    def __init__(self, client, notifier=None):
        self.client = client
        self.notifier = notifier or LoggingNotifier()
        self.settings = None

    def _call(self, action, method, path, **kwargs):
        try:
            payload = getattr(self.client, method)(path, **kwargs)
        except ApiError as e:
            logger.error("Failed to %s: %s", action, e)
            self.notifier.notify('error', f'Failed to {action}: {e.message}')
            return None
        self.settings = payload.get('data') or self.settings
        return self.settings

    def load(self):
        return self._call('load site settings', 'get', 'site-settings')

    @property
    def hero_images(self):
        return list((self.settings or {}).get('hero_images') or [])

    def set_hero_images(self, images):
        payload = {'hero_images': list(images)}
        if self._call('update hero images', 'put', 'site-settings/hero-images', json=payload) is None:
            return None
        self.notifier.notify('success', 'Hero images updated')
        return self.settings

    def add_hero_image(self, filename, content, mimetype, caption=''):
        try:
            IMAGES.check(filename, len(content))
        except AttachmentRejected as e:
            self.notifier.notify('error', str(e))
            return None
        try:
            reference = self.client.upload(filename, content, mimetype, folder='site')
        except ApiError as e:
            logger.error("Hero image upload failed: %s", e)
            self.notifier.notify('error', f'Failed to upload {filename}: {e.message}')
            return None
        image = {'url': reference['url'], 'file_id': reference['file_id'], 'caption': caption}
        return self.set_hero_images(self.hero_images + [image])

    def remove_hero_image(self, index):
        images = self.hero_images
        if not 0 <= index < len(images):
            self.notifier.notify('warning', 'No such hero image')
            return None
        del images[index]
        return self.set_hero_images(images)

    def update_headmaster(self, **fields):
        if self._call('update headmaster', 'put', 'site-settings/headmaster', json=fields) is None:
            return None
        self.notifier.notify('success', 'Headmaster details updated')
        return self.settings


class QRAttendanceSession:
    """Marks each scanned student present once per session"""

    def __init__(self, client, scanner, notifier=None, day=None):
        self.client = client
        self.scanner = scanner
        self.notifier = notifier or LoggingNotifier()
        self.day = day or date.today()
        self.seen = set()
        self.marked = []
        self.failed = []

    def handle(self, code):
        if code in self.seen:
            self.notifier.notify('info', f'{code} already scanned')
            return False
        self.seen.add(code)
        try:
            payload = self.client.post('attendance/scan', json={'student_code': code, 'date': self.day.isoformat()})
        except ApiError as e:
            # Let the student scan again after a failure
            self.seen.discard(code)
            self.failed.append(code)
            logger.error("Attendance scan for %s failed: %s", code, e)
            self.notifier.notify('error', f'{code}: {e.message}')
            return False

        self.marked.append(code)
        self.notifier.notify('info' if payload.get('already_marked') else 'success', payload.get('message', code))
        return True

    def run(self):
        for code in self.scanner.scan():
            self.handle(code)
        return {'marked': list(self.marked), 'failed': list(self.failed), 'scanned': len(self.seen)}


def lookup_result(client, roll_number, class_name=None, notifier=None):
    """Public result lookup by roll number; None when nothing could be shown"""
    notifier = notifier or LoggingNotifier()
    roll_number = (roll_number or '').strip()
    if not roll_number:
        notifier.notify('warning', 'Please enter a roll number')
        return None
    params = {'roll_number': roll_number}
    if class_name:
        params['class_name'] = class_name
    try:
        payload = client.get('results/public', params=params)
    except ApiError as e:
        logger.info("Result lookup for %s failed: %s", roll_number, e)
        notifier.notify('error', e.message)
        return None
    if not payload.get('results'):
        notifier.notify('info', 'No published results yet')
    return payload
