"""
BinWatch — Bin Registry
Read access to per-bin configuration, plus seeding for fresh stores.
"""
import logging

from alerting.models import BINS, USERS, Bin, User, utcnow, to_iso
from config.bins import BINS as SEED_BINS

logger = logging.getLogger(__name__)


class BinRegistry:

    def __init__(self, store):
        self.store = store

    def get(self, bin_id):
        doc = self.store.get(BINS, bin_id)
        return Bin.from_document(doc) if doc else None

    def all_bins(self):
        return [Bin.from_document(d) for d in self.store.query(BINS)]

    def active_bins(self):
        return [Bin.from_document(d) for d in self.store.query(BINS, filters={"active": True})]

    def register(self, bin_id, **fields):
        """Create or replace a bin document."""
        bin_ = Bin(id=bin_id, **fields)
        doc = bin_.to_document()
        now = to_iso(utcnow())
        doc.setdefault("createdAt", now)
        doc["updatedAt"] = now
        self.store.set(BINS, bin_id, doc)
        return bin_

    def seed(self, bins=None):
        """Register seed bins that do not exist yet. Returns how many were created."""
        created = 0
        for bin_id, info in (bins or SEED_BINS).items():
            if self.store.get(BINS, bin_id) is not None:
                continue
            self.register(bin_id, **info)
            logger.info("Created bin %s (%s)", bin_id, info.get("location", "Unknown"))
            created += 1
        return created


def find_user_by_token(store, token):
    docs = store.query(USERS, filters={"token": token}, limit=1)
    return User.from_document(docs[0]) if docs else None


def ensure_user(store, user_id, token, name="", role="operator"):
    """Create the user if missing (startup seeding of the admin account)."""
    if store.get(USERS, user_id) is None:
        store.set(USERS, user_id, User(name=name, role=role, token=token).to_document())
        logger.info("Created user %s (%s)", user_id, role)
