"""
Generic REST collections.

``register_collection`` wires the five conventional routes for one model:

    GET    /<name>          list, optionally scoped by query params
    POST   /<name>          create (201)
    GET    /<name>/<id>     fetch one
    PUT    /<name>/<id>     update
    DELETE /<name>/<id>     delete

Payloads are validated with the model's WTForms form. Hooks let a
collection attach accounts, authors or ownership rules without copying
the route bodies.
"""
import logging

from flask import jsonify, request
from sqlalchemy.exc import IntegrityError

from app_models import db
from auth import STAFF_ROLES, load_current_user, require_user
from errors import ApiError
from forms import bind_form, form_errors
from uploads import get_file_store, referenced_files

logger = logging.getLogger(__name__)

SKIP_FILTER_VALUES = (None, '', 'all', 'All')


def list_response(items, serialize=None):
    serialize = serialize or (lambda item: item.to_dict())
    data = [serialize(item) for item in items]
    return jsonify({'success': True, 'count': len(data), 'data': data})


def item_response(item, status=200, message=None):
    payload = {'success': True, 'data': item.to_dict()}
    if message:
        payload['message'] = message
    return jsonify(payload), status


def json_body():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ApiError('Request body must be a JSON object', 400)
    return payload


def get_or_404(model, item_id, label=None):
    item = db.session.get(model, item_id)
    if item is None:
        raise ApiError(f'{label or model.__name__} not found', 404)
    return item


def commit_or_conflict(label):
    """Commit the session, mapping uniqueness violations to 409"""
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        logger.info("Conflict saving %s: %s", label, e.orig)
        raise ApiError(f'{label} already exists', 409)
    except Exception:
        db.session.rollback()
        raise


def register_collection(bp, name, model, form_class, label=None, order_by=None,
                        read_roles=None, create_roles=STAFF_ROLES, write_roles=STAFF_ROLES,
                        filters=(), list_query=None, before_save=None, before_delete=None,
                        can_modify=None, file_fields=(), file_list_fields=(), file_url_fields=()):
    """Register list/create/get/update/delete routes for one model on ``bp``

    ``read_roles`` or ``create_roles`` of ``None`` make that route public.
    ``before_save(item, user, payload, created)`` runs inside the transaction.
    ``can_modify(item, user)`` returning False turns an update or delete into 403.
    Stored files referenced through ``file_fields`` (ids), ``file_url_fields``
    (served URLs) or ``file_list_fields`` (attachment lists) are removed once
    a delete commits or an update drops them.
    """
    label = label or model.__name__

    def stored_files(item):
        return referenced_files(item, file_fields, file_list_fields, file_url_fields)

    def remove_files(file_ids):
        store = get_file_store()
        for file_id in sorted(file_ids):
            store.delete(file_id)

    def current_reader():
        if read_roles is None:
            return load_current_user()
        return require_user(read_roles)

    def check_modify(item, user):
        if can_modify is not None and not can_modify(item, user):
            raise ApiError(f'Not authorized to modify this {label.lower()}', 403)

    def list_items():
        user = current_reader()
        query = model.query
        for field in filters:
            value = request.args.get(field)
            if value not in SKIP_FILTER_VALUES:
                query = query.filter(getattr(model, field) == value)
        if list_query is not None:
            query = list_query(query, user)
        if order_by is not None:
            query = query.order_by(*order_by) if isinstance(order_by, (list, tuple)) else query.order_by(order_by)
        return list_response(query.all())

    def get_item(item_id):
        current_reader()
        return item_response(get_or_404(model, item_id, label))

    def create_item():
        user = require_user(create_roles) if create_roles is not None else load_current_user()
        payload = json_body()
        form = bind_form(form_class, payload)
        if not form.validate():
            raise ApiError('Validation failed', 400, form_errors(form))

        item = model()
        form.populate_obj(item)
        try:
            if before_save is not None:
                before_save(item, user, payload, True)
            db.session.add(item)
        except Exception:
            db.session.rollback()
            raise
        commit_or_conflict(label)
        logger.info("Created %s %s", label, item.id)
        return item_response(item, 201, f'{label} created')

    def update_item(item_id):
        user = require_user(write_roles)
        item = get_or_404(model, item_id, label)
        check_modify(item, user)
        payload = json_body()
        form = bind_form(form_class, payload, existing=item)
        if not form.validate():
            raise ApiError('Validation failed', 400, form_errors(form))

        old_files = stored_files(item)
        form.populate_obj(item)
        try:
            if before_save is not None:
                before_save(item, user, payload, False)
        except Exception:
            db.session.rollback()
            raise
        commit_or_conflict(label)

        remove_files(old_files - stored_files(item))
        return item_response(item, message=f'{label} updated')

    def delete_item(item_id):
        user = require_user(write_roles)
        item = get_or_404(model, item_id, label)
        check_modify(item, user)
        attached = stored_files(item)
        try:
            if before_delete is not None:
                before_delete(item, user)
            db.session.delete(item)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        remove_files(attached)
        logger.info("Deleted %s %s", label, item_id)
        return jsonify({'success': True, 'message': f'{label} deleted', 'data': {'id': item_id}})

    bp.add_url_rule(f'/{name}', f'{name}_list', list_items, methods=['GET'])
    bp.add_url_rule(f'/{name}', f'{name}_create', create_item, methods=['POST'])
    bp.add_url_rule(f'/{name}/<int:item_id>', f'{name}_get', get_item, methods=['GET'])
    bp.add_url_rule(f'/{name}/<int:item_id>', f'{name}_update', update_item, methods=['PUT'])
    bp.add_url_rule(f'/{name}/<int:item_id>', f'{name}_delete', delete_item, methods=['DELETE'])
