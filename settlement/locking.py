import threading
import weakref
from contextlib import contextmanager

from settlement.extensions import db
from settlement.models import User

_registry_guard = threading.Lock()
# Entries disappear once no caller holds the lock object.
_talent_locks = weakref.WeakValueDictionary()


def _lock_for(talent_id):
    with _registry_guard:
        lock = _talent_locks.get(talent_id)
        if lock is None:
            lock = threading.Lock()
            _talent_locks[talent_id] = lock
        return lock


@contextmanager
def talent_lock(talent_id):
    """Single writer per talent ledger.

    The process-local lock covers workers sharing one process; the row lock on the
    talent covers other processes on databases that support SELECT ... FOR UPDATE.
    The caller must commit or roll back before leaving the block.
    """
    lock = _lock_for(talent_id)
    with lock:
        db.session.query(User.id).filter(User.id == talent_id).with_for_update().first()
        try:
            yield
        except Exception:
            db.session.rollback()
            raise
