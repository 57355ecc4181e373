"""String key/value stores that save data is written to."""
from pixelsingularity.models import SaveEntry, db


class Storage:
    """Interface for save storage. Values are strings."""

    def get(self, key):
        raise NotImplementedError

    def set(self, key, value):
        raise NotImplementedError

    def remove(self, key):
        raise NotImplementedError


class MemoryStorage(Storage):
    """Dict-backed storage, used for tests and headless games."""

    def __init__(self, data=None):
        self.data = dict(data or {})

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def remove(self, key):
        self.data.pop(key, None)

    def __contains__(self, key):
        return key in self.data


class SqlStorage(Storage):
    """Storage on the SaveEntry table. Needs an application context."""

    def get(self, key):
        entry = db.session.get(SaveEntry, key)
        return entry.value if entry else None

    def set(self, key, value):
        entry = db.session.get(SaveEntry, key)
        if entry is None:
            db.session.add(SaveEntry(key=key, value=value))
        else:
            entry.value = value
        self._commit()

    def remove(self, key):
        entry = db.session.get(SaveEntry, key)
        if entry is None:
            return
        db.session.delete(entry)
        self._commit()

    def _commit(self):
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
