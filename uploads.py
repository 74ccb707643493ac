import logging
import mimetypes
import os
import uuid
from dataclasses import dataclass
from urllib.parse import urlsplit

from flask import Blueprint, current_app, jsonify, request, send_from_directory, url_for
from werkzeug.security import safe_join
from werkzeug.utils import secure_filename

from auth import STAFF_ROLES, require_user
from errors import ApiError

logger = logging.getLogger(__name__)

uploads_bp = Blueprint('uploads', __name__)

UPLOADS_PREFIX = '/uploads/'


@dataclass
class StoredFile:
    file_id: str
    filename: str
    size: int
    mimetype: str


class LocalFileStore:
    """Files kept under the upload folder, addressed by '<folder>/<uuid>_<name>' ids"""

    def __init__(self, root):
        self.root = root

    def save(self, storage, folder='general'):
        filename = secure_filename(storage.filename or '')
        if not filename:
            raise ApiError('Invalid file name', 400)
        folder = secure_filename(folder or '') or 'general'
        file_id = f"{folder}/{uuid.uuid4().hex}_{filename}"

        os.makedirs(os.path.join(self.root, folder), exist_ok=True)
        destination = self.path(file_id)
        storage.save(destination)
        mimetype = storage.mimetype or mimetypes.guess_type(filename)[0] or 'application/octet-stream'
        return StoredFile(file_id=file_id, filename=filename, size=os.path.getsize(destination), mimetype=mimetype)

    def path(self, file_id):
        path = safe_join(self.root, file_id)
        if path is None:
            raise ApiError('Invalid file id', 400)
        return path

    def exists(self, file_id):
        return os.path.isfile(self.path(file_id))

    def delete(self, file_id):
        """Remove a stored file; missing files are not an error"""
        if not file_id:
            return False
        path = self.path(file_id)
        if not os.path.isfile(path):
            return False
        os.remove(path)
        logger.info("Deleted stored file %s", file_id)
        return True


def init_file_store(app):
    app.extensions['file_store'] = LocalFileStore(app.config['UPLOAD_FOLDER'])


def get_file_store():
    return current_app.extensions['file_store']


def file_id_from_url(url):
    """'/uploads/<file_id>' (absolute or relative) back to the stored file id"""
    if not url or not isinstance(url, str):
        return None
    path = urlsplit(url).path
    if not path.startswith(UPLOADS_PREFIX):
        return None
    return path[len(UPLOADS_PREFIX):] or None


def referenced_files(item, file_fields=(), file_list_fields=(), file_url_fields=()):
    """Stored file ids an item points at

    ``file_fields`` hold ids, ``file_url_fields`` hold served URLs and
    ``file_list_fields`` hold JSON lists of ``{file_id, url, ...}`` entries.
    """
    file_ids = set()
    for name in file_fields:
        value = getattr(item, name, None)
        if value:
            file_ids.add(value)
    for name in file_url_fields:
        file_id = file_id_from_url(getattr(item, name, None))
        if file_id:
            file_ids.add(file_id)
    for name in file_list_fields:
        for entry in getattr(item, name, None) or []:
            if not isinstance(entry, dict):
                continue
            file_id = entry.get('file_id') or file_id_from_url(entry.get('url'))
            if file_id:
                file_ids.add(file_id)
    return file_ids


def allowed_file(filename):
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in current_app.config['ALLOWED_UPLOAD_EXTENSIONS']


@uploads_bp.route('/api/upload', methods=['POST'])
def upload_file():
    require_user(STAFF_ROLES)

    storage = request.files.get('file')
    if storage is None or not storage.filename:
        raise ApiError('Please upload a file', 400)
    if not allowed_file(storage.filename):
        allowed = ', '.join(sorted(current_app.config['ALLOWED_UPLOAD_EXTENSIONS']))
        raise ApiError(f'File type not allowed. Allowed types: {allowed}', 400)

    stored = get_file_store().save(storage, request.form.get('folder', 'general'))
    logger.info("Stored upload %s (%s bytes)", stored.file_id, stored.size)
    return jsonify({
        'success': True,
        'url': url_for('uploads.serve_file', file_id=stored.file_id),
        'file_id': stored.file_id,
        'filename': stored.filename,
        'size': stored.size,
        'mimetype': stored.mimetype,
    }), 201


@uploads_bp.route('/uploads/<path:file_id>')
def serve_file(file_id):
    return send_from_directory(get_file_store().root, file_id)
