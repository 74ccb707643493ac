"""
Client-side controller for one admin collection.

A ``ResourceManager`` mirrors a remote collection locally: ``load`` fetches
it, ``set_filter`` narrows what is visible without touching the network,
and ``create``/``update``/``delete`` call the API and splice the result into
the local list only after the server accepts it. Failures never escape the
manager; they are logged and reported through the injected ``Notifier``.

Managers of the same resource can share a ``ResourceStore`` so that a
mutation made through one is applied to all of them.
"""
import csv
import io
import logging
import mimetypes
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from api_client import ApiError
from capabilities import LoggingNotifier, PromptConfirmer

logger = logging.getLogger(__name__)

MB = 1024 * 1024
EMPTY_FACETS = (None, '', 'all', 'All')


class ManagerState(str, Enum):
    IDLE = 'idle'
    LOADING = 'loading'
    SUBMITTING = 'submitting'
    ERROR = 'error'


class AttachmentRejected(Exception):
    """File refused before upload"""


@dataclass(frozen=True)
class AttachmentPolicy:
    max_bytes: int = 15 * MB
    extensions: Sequence[str] = ('pdf',)

    def check(self, filename: str, size: int) -> None:
        extension = filename.rsplit('.', 1)[-1].lower() if '.' in filename else ''
        if extension not in self.extensions:
            allowed = ', '.join(ext.upper() for ext in self.extensions)
            raise AttachmentRejected(f'{filename}: only {allowed} files are allowed')
        if size > self.max_bytes:
            raise AttachmentRejected(f'{filename} is {size / MB:.1f}MB; the limit is {self.max_bytes / MB:g}MB')


@dataclass(frozen=True)
class ResourceSpec:
    """How one resource type is listed, searched and validated"""

    name: str
    label: str
    path: str
    required_fields: Sequence[str] = ()
    search_fields: Sequence[str] = ('title',)
    facet_fields: Sequence[str] = ()
    date_field: Optional[str] = None
    attachment: Optional[AttachmentPolicy] = None
    insert_position: str = 'append'
    sort_key: Optional[Callable[[Dict[str, Any]], Any]] = None
    id_field: str = 'id'

    def record_id(self, record: Mapping[str, Any]):
        if self.id_field in record:
            return record[self.id_field]
        return record.get('_id')


@dataclass(frozen=True)
class FilterCriteria:
    search: str = ''
    facets: Mapping[str, Any] = field(default_factory=dict)
    date_from: Optional[date] = None
    date_to: Optional[date] = None


def _as_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        return None
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        return None


def matches(record: Mapping[str, Any], criteria: FilterCriteria, spec: ResourceSpec) -> bool:
    """Filter predicate; never modifies the record"""
    term = (criteria.search or '').strip().lower()
    if term and not any(term in str(record.get(name) or '').lower() for name in spec.search_fields):
        return False

    for name, wanted in criteria.facets.items():
        if wanted in EMPTY_FACETS:
            continue
        if record.get(name) != wanted:
            return False

    if spec.date_field and (criteria.date_from or criteria.date_to):
        value = _as_date(record.get(spec.date_field))
        if value is None:
            return False
        if criteria.date_from and value < criteria.date_from:
            return False
        if criteria.date_to and value > criteria.date_to:
            return False
    return True


def is_blank(value) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set)):
        return not value
    return False


# Splices applied after the server has accepted a mutation
def splice_created(items, record, spec):
    record_id = spec.record_id(record)
    if any(spec.record_id(item) == record_id for item in items):
        return splice_updated(items, record, spec)
    return [record] + list(items) if spec.insert_position == 'prepend' else list(items) + [record]


def splice_updated(items, record, spec):
    record_id = spec.record_id(record)
    if not any(spec.record_id(item) == record_id for item in items):
        return splice_created(items, record, spec)
    return [record if spec.record_id(item) == record_id else item for item in items]


def splice_removed(items, record_id, spec):
    return [item for item in items if spec.record_id(item) != record_id]


class ResourceStore:
    """Shared cache keyed by resource name; managers publish and subscribe"""

    def __init__(self):
        self._snapshots: Dict[str, List[Dict[str, Any]]] = {}
        self._subscribers: Dict[str, List[Callable]] = {}

    def snapshot(self, name):
        items = self._snapshots.get(name)
        return None if items is None else list(items)

    def subscribe(self, name, callback):
        self._subscribers.setdefault(name, []).append(callback)

        def unsubscribe():
            self._subscribers[name].remove(callback)
        return unsubscribe

    def publish(self, name, event, payload, spec, source=None):
        current = self._snapshots.get(name, [])
        if event == 'snapshot':
            self._snapshots[name] = list(payload)
        elif event == 'created':
            self._snapshots[name] = splice_created(current, payload, spec)
        elif event == 'updated':
            self._snapshots[name] = splice_updated(current, payload, spec)
        elif event == 'deleted':
            self._snapshots[name] = splice_removed(current, payload, spec)
        else:
            raise ValueError(f'Unknown store event: {event}')

        for callback in list(self._subscribers.get(name, [])):
            if callback != source:
                callback(event, payload)


class ResourceManager:
    def __init__(self, spec: ResourceSpec, collection, notifier=None, confirmer=None,
                 downloader=None, store: Optional[ResourceStore] = None):
        self.spec = spec
        self.collection = collection
        self.notifier = notifier or LoggingNotifier()
        self.confirmer = confirmer or PromptConfirmer()
        self.downloader = downloader
        self.store = store

        self._items: List[Dict[str, Any]] = []
        self.criteria = FilterCriteria()
        self.state = ManagerState.IDLE
        self.pending = False
        self.last_error: Optional[str] = None
        self.draft: Optional[Dict[str, Any]] = None

        self._unsubscribe = None
        if store is not None:
            self._unsubscribe = store.subscribe(spec.name, self._on_store_event)
            cached = store.snapshot(spec.name)
            if cached is not None:
                self._items = cached

    @property
    def items(self) -> List[Dict[str, Any]]:
        return list(self._items)

    @property
    def ids(self) -> List[Any]:
        return [self.spec.record_id(item) for item in self._items]

    @property
    def visible(self) -> List[Dict[str, Any]]:
        subset = [item for item in self._items if matches(item, self.criteria, self.spec)]
        if self.spec.sort_key is not None:
            subset = sorted(subset, key=self.spec.sort_key)
        return subset

    def close(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    # Local state
    def set_filter(self, criteria: Optional[FilterCriteria] = None, **changes) -> List[Dict[str, Any]]:
        """Replace or adjust the criteria and return the visible subset"""
        if criteria is None:
            facets = dict(self.criteria.facets)
            facets.update(changes.pop('facets', {}))
            criteria = FilterCriteria(
                search=changes.get('search', self.criteria.search),
                facets=facets,
                date_from=changes.get('date_from', self.criteria.date_from),
                date_to=changes.get('date_to', self.criteria.date_to),
            )
        self.criteria = criteria
        return self.visible

    def _on_store_event(self, event, payload):
        if event == 'snapshot':
            self._items = list(payload)
        elif event == 'created':
            self._items = splice_created(self._items, payload, self.spec)
        elif event == 'updated':
            self._items = splice_updated(self._items, payload, self.spec)
        elif event == 'deleted':
            self._items = splice_removed(self._items, payload, self.spec)

    def _publish(self, event, payload):
        if self.store is not None:
            self.store.publish(self.spec.name, event, payload, self.spec, source=self._on_store_event)

    def _begin(self, state):
        if self.pending:
            self.notifier.notify('warning', f'Please wait, the previous {self.spec.label.lower()} request is still in progress')
            return False
        self.pending = True
        self.state = state
        return True

    def _succeed(self, message=None):
        self.pending = False
        self.state = ManagerState.IDLE
        self.last_error = None
        if message:
            self.notifier.notify('success', message)

    def _fail(self, action, error):
        self.pending = False
        self.state = ManagerState.ERROR
        self.last_error = getattr(error, 'message', None) or str(error)
        logger.error("Failed to %s %s: %s", action, self.spec.label.lower(), error)
        self.notifier.notify('error', f'Failed to {action} {self.spec.label.lower()}: {self.last_error}')

    def _remote(self, action, call, *args):
        """Run one network call; returns (ok, result) and never raises"""
        try:
            return True, call(*args)
        except ApiError as e:
            self._fail(action, e)
        except Exception as e:
            logger.exception("Unexpected error while trying to %s %s", action, self.spec.label.lower())
            self._fail(action, e)
        return False, None

    def _missing_required(self, fields, partial=False):
        missing = []
        for name in self.spec.required_fields:
            if partial and name not in fields:
                continue
            if is_blank(fields.get(name)):
                missing.append(name)
        return missing

    # Remote operations
    def load(self, params: Optional[Dict[str, Any]] = None) -> bool:
        if not self._begin(ManagerState.LOADING):
            return False
        ok, records = self._remote('load', self.collection.list, params)
        if not ok:
            return False
        self._items = list(records)
        self._succeed()
        self._publish('snapshot', self._items)
        return True

    def create(self, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        missing = self._missing_required(fields)
        if missing:
            self.draft = dict(fields)
            self.notifier.notify('warning', 'Please fill in: ' + ', '.join(missing))
            return None
        if not self._begin(ManagerState.SUBMITTING):
            return None

        self.draft = dict(fields)
        ok, record = self._remote('create', self.collection.create, fields)
        if not ok:
            return None
        self._items = splice_created(self._items, record, self.spec)
        self.draft = None
        self._succeed(f'{self.spec.label} created successfully')
        self._publish('created', record)
        return record

    def update(self, record_id, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        missing = self._missing_required(fields, partial=True)
        if missing:
            self.notifier.notify('warning', 'Please fill in: ' + ', '.join(missing))
            return None
        if not self._begin(ManagerState.SUBMITTING):
            return None

        ok, record = self._remote('update', self.collection.update, record_id, fields)
        if not ok:
            return None
        self._items = splice_updated(self._items, record, self.spec)
        self._succeed(f'{self.spec.label} updated successfully')
        self._publish('updated', record)
        return record

    def delete(self, record_id) -> bool:
        if not self.confirmer.confirm(f'Are you sure you want to delete this {self.spec.label.lower()}?'):
            return False
        if not self._begin(ManagerState.SUBMITTING):
            return False

        ok, _ = self._remote('delete', self.collection.delete, record_id)
        if not ok:
            return False
        self._items = splice_removed(self._items, record_id, self.spec)
        self._succeed(f'{self.spec.label} deleted successfully')
        self._publish('deleted', record_id)
        return True

    def upload_attachment(self, filename: str, content: bytes, mimetype: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Upload a file and return its reference for a later create/update"""
        policy = self.spec.attachment or AttachmentPolicy()
        try:
            policy.check(filename, len(content))
        except AttachmentRejected as e:
            logger.warning("Rejected attachment for %s: %s", self.spec.name, e)
            self.notifier.notify('error', str(e))
            return None
        if not self._begin(ManagerState.SUBMITTING):
            return None

        mimetype = mimetype or mimetypes.guess_type(filename)[0] or 'application/octet-stream'
        ok, reference = self._remote('upload', self.collection.upload, filename, content, mimetype)
        if not ok:
            return None
        self._succeed('File uploaded successfully')
        return reference

    # Exports
    def export_csv(self, filename: Optional[str] = None, columns: Optional[Sequence[str]] = None) -> Optional[str]:
        """Write the visible subset as CSV through the downloader"""
        if self.downloader is None:
            self.notifier.notify('error', 'No download target configured')
            return None
        rows = self.visible
        if columns is None:
            columns = []
            for row in rows:
                columns.extend(key for key in row if key not in columns)

        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(columns)
        for row in rows:
            writer.writerow(['' if row.get(column) is None else row.get(column) for column in columns])

        filename = filename or f'{self.spec.name}_{date.today().isoformat()}.csv'
        path = self.downloader.save(filename, output.getvalue().encode('utf-8'))
        self.notifier.notify('success', f'Exported {len(rows)} {self.spec.label.lower()} records')
        return path
