"""SyncChannel persisted through Flask-SQLAlchemy.

The tree is flattened into one ``StoreNode`` row per leaf. Every call must
run inside an application context. Change notifications reach observers in
this process only; cross-process fan-out happens through Socket.IO.
"""

import json
import logging
import threading
import time

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from relay.errors import StoreFailure
from relay.models import StoreNode
from .channel import SyncChannel, compact, join_path, split_path

logger = logging.getLogger(__name__)


def flatten(path, value):
    """Yield ``(leaf_path, leaf_value)`` pairs for a compacted value."""
    if isinstance(value, dict):
        for key, child in value.items():
            yield from flatten(join_path(path, key), child)
    elif value is not None:
        yield path, value


class SqlChannel(SyncChannel):

    def __init__(self, db):
        super().__init__()
        self.db = db
        # Covers backends without row locks (SQLite) inside one process
        self._increment_lock = threading.Lock()

    def _subtree(self, path):
        return StoreNode.query.filter(
            or_(StoreNode.path == path, StoreNode.path.startswith(path + '/', autoescape=True))
        )

    def _clear(self, path):
        """Delete the subtree at ``path`` and any ancestor leaf shadowing it."""
        parts = split_path(path)
        ancestors = [join_path(*parts[:i]) for i in range(1, len(parts))]
        if ancestors:
            StoreNode.query.filter(StoreNode.path.in_(ancestors)).delete(synchronize_session='fetch')
        self._subtree(path).delete(synchronize_session='fetch')

    def _put(self, path, value):
        now = time.time()
        for leaf_path, leaf in flatten(path, compact(value)):
            self.db.session.add(StoreNode(path=leaf_path, value=json.dumps(leaf), updated_at=now))

    def _fail(self, op, path, exc):
        self.db.session.rollback()
        logger.error(f"[store-fail] op={op} path={path} error={exc}")
        return StoreFailure(f'store {op} failed for {path}')

    def read(self, path):
        path = join_path(*split_path(path))
        try:
            rows = self._subtree(path).all()
        except SQLAlchemyError as exc:
            raise self._fail('read', path, exc) from exc
        if not rows:
            return None
        tree = {}
        for row in rows:
            if row.path == path:
                return row.decoded
            rel = row.path[len(path) + 1:].split('/')
            node = tree
            for part in rel[:-1]:
                node = node.setdefault(part, {})
            node[rel[-1]] = row.decoded
        return tree

    def write(self, path, value):
        path = join_path(*split_path(path))
        try:
            self._clear(path)
            self._put(path, value)
            self.db.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail('write', path, exc) from exc
        self._notify(path)

    def merge(self, path, fields):
        path = join_path(*split_path(path))
        try:
            for key, value in (fields or {}).items():
                child = join_path(path, key)
                self._clear(child)
                self._put(child, value)
            self.db.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail('merge', path, exc) from exc
        self._notify(path)

    def remove(self, path):
        path = join_path(*split_path(path))
        try:
            self._clear(path)
            self.db.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail('remove', path, exc) from exc
        self._notify(path)

    def increment(self, path, delta):
        path = join_path(*split_path(path))
        with self._increment_lock:
            new_value = self._increment(path, delta)
        self._notify(path)
        return new_value

    def _increment(self, path, delta):
        try:
            # Row lock serialises concurrent increments on backends that support it
            row = StoreNode.query.filter_by(path=path).with_for_update().first()
            if row is None:
                if self._subtree(path).first() is not None:
                    self.db.session.rollback()
                    raise StoreFailure(f'{path} is not a numeric leaf')
                new_value = delta
                self._clear(path)
                self.db.session.add(StoreNode(path=path, value=json.dumps(new_value), updated_at=time.time()))
            else:
                current = row.decoded
                if not isinstance(current, (int, float)):
                    self.db.session.rollback()
                    raise StoreFailure(f'{path} is not a numeric leaf')
                new_value = current + delta
                row.value = json.dumps(new_value)
            self.db.session.commit()
        except SQLAlchemyError as exc:
            raise self._fail('increment', path, exc) from exc
        return new_value

    def create_if_absent(self, path, value):
        path = join_path(*split_path(path))
        try:
            if self._subtree(path).first() is not None:
                return False
            self._put(path, value)
            self.db.session.commit()
        except IntegrityError:
            # A concurrent writer claimed one of the same leaf paths first
            self.db.session.rollback()
            logger.info(f"[claim-lost] path={path}")
            return False
        except SQLAlchemyError as exc:
            raise self._fail('create', path, exc) from exc
        self._notify(path)
        return True
