import uuid
from datetime import datetime, timezone

from flask_login import UserMixin

from biblioteca import db

ROLE_ADMIN = "Admin"
ROLE_EDITOR = "Editor"
ROLE_USER = "User"
ROLES = (ROLE_ADMIN, ROLE_EDITOR, ROLE_USER)

AUDIT_ACTIONS = ("create", "update", "delete", "role_change")
ENTITY_TYPES = ("Document", "Category", "Folder", "User", "Tag")


def utcnow():
    return datetime.now(timezone.utc)


def _new_uid():
    return uuid.uuid4().hex


class Account(UserMixin, db.Model):
    """Sign-in identity. ``claims`` holds the signed custom claims (role)."""

    __tablename__ = "accounts"

    id = db.Column(db.String(128), primary_key=True, default=_new_uid)
    email = db.Column(db.String(254), unique=True, nullable=False)
    display_name = db.Column(db.String(120))
    photo_url = db.Column(db.String(500))
    password_hash = db.Column(db.String(200), nullable=False)
    claims = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    @property
    def claim_role(self):
        return (self.claims or {}).get("role")

    def __repr__(self):
        return f"<Account {self.email}>"


class User(db.Model):
    """Profile record mirrored from the account; ``role`` follows the claims."""

    __tablename__ = "users"

    id = db.Column(db.String(128), db.ForeignKey("accounts.id"), primary_key=True)
    name = db.Column(db.String(120))
    email = db.Column(db.String(254), nullable=False)
    role = db.Column(db.String(20), nullable=False, default=ROLE_USER)
    avatar_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    last_activity = db.Column(db.DateTime)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "avatarUrl": self.avatar_url,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "lastActivity": (
                self.last_activity.isoformat() if self.last_activity else None
            ),
        }

    def __repr__(self):
        return f"<User {self.email} ({self.role})>"


class Category(db.Model):
    __tablename__ = "categories"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")

    def __repr__(self):
        return f"<Category {self.name}>"


class Folder(db.Model):
    """Folder inside a category; ``parent_folder_id`` is None for root folders."""

    __tablename__ = "folders"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True
    )
    # Plain column: deleting a parent leaves children pointing at a missing id
    parent_folder_id = db.Column(db.Integer, nullable=True, index=True)
    created_by = db.Column(db.String(128), nullable=False)

    category = db.relationship("Category", backref="folders")

    def __repr__(self):
        return f"<Folder {self.name}>"


document_tags = db.Table(
    "document_tags",
    db.Column("document_id", db.Integer, db.ForeignKey("documents.id"), primary_key=True),
    db.Column("tag_id", db.Integer, db.ForeignKey("tags.id"), primary_key=True),
)


class Tag(db.Model):
    __tablename__ = "tags"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(60), unique=True, nullable=False)

    def __repr__(self):
        return f"<Tag {self.name}>"


class Document(db.Model):
    """Catalogue entry for an academic document."""

    __tablename__ = "documents"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(300), nullable=False)
    author = db.Column(db.String(200), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    subject = db.Column(db.String(200))
    version = db.Column(db.String(20), default="1.0")
    file_url = db.Column(db.String(500), nullable=False)
    thumbnail_url = db.Column(db.String(500))
    category_id = db.Column(
        db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True
    )
    folder_id = db.Column(
        db.Integer, db.ForeignKey("folders.id"), nullable=True, index=True
    )
    created_by = db.Column(db.String(128), nullable=False, index=True)
    last_updated = db.Column(db.DateTime, nullable=False, default=utcnow)

    category = db.relationship("Category", backref="documents")
    folder = db.relationship("Folder", backref="documents")
    tags = db.relationship("Tag", secondary=document_tags, lazy="subquery",
                           backref=db.backref("documents", lazy=True))

    def __repr__(self):
        return f"<Document {self.title}>"


class AuditLog(db.Model):
    """Append-only history. ``id`` is the server-assigned ordering key."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    timestamp = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    user_id = db.Column(db.String(128), nullable=False, index=True)
    user_name = db.Column(db.String(254), nullable=False)
    action = db.Column(db.String(20), nullable=False)
    entity_type = db.Column(db.String(20), nullable=False)
    entity_id = db.Column(db.String(128), nullable=False)
    entity_name = db.Column(db.String(300), nullable=False, default="")
    details = db.Column(db.Text, nullable=False, default="")

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}:{self.entity_id}>"
