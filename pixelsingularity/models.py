"""Database models for persisted game saves."""
from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

class SaveEntry(db.Model):
    """One key/value pair of save storage (main save, backup, emergency backup)."""
    __tablename__ = 'save_entries'

    key = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        """Convert to dictionary."""
        return {
            'key': self.key,
            'size': len(self.value),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None
        }
