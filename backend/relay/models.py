from relay import db
import json
import time


class StoreNode(db.Model):
    """One leaf of the replicated session tree, addressed by its full path."""
    __tablename__ = 'store_node'
    path = db.Column(db.String(255), primary_key=True)
    value = db.Column(db.Text, nullable=False)  # JSON-encoded leaf
    updated_at = db.Column(db.Float, nullable=False, default=time.time, onupdate=time.time)

    @property
    def decoded(self):
        return json.loads(self.value)

    def to_dict(self):
        return {
            'path': self.path,
            'value': self.decoded,
            'updated_at': self.updated_at,
        }
