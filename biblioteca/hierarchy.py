"""
Category → folder → document hierarchy.

Every mutation checks the caller's permission, enforces the hierarchy
invariants, appends an audit entry and commits in one transaction. Nothing
is written when a check fails.
"""

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError

from biblioteca import db
from biblioteca import audit
from biblioteca.exceptions import (
    HierarchyError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from biblioteca.models import Category, Document, Folder, Tag, utcnow

logger = logging.getLogger(__name__)

ROOT_LABEL = "category root"


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  HELPERS                                                           ║
# ╚══════════════════════════════════════════════════════════════════════╝


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Database write failed")
        raise InternalError("Could not save your changes. Please try again.")


def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def next_timestamp(previous):
    """Current UTC time, bumped past ``previous`` if the clock has not moved."""
    now = utcnow()
    if previous is None:
        return now
    floor = _as_utc(previous) + timedelta(microseconds=1)
    return now if now >= floor else floor


def _is_url(value):
    if value.startswith("/files/"):
        return True
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _get_category(category_id):
    category = db.session.get(Category, _to_int(category_id, "category"))
    if category is None:
        raise NotFoundError("That category does not exist.")
    return category


def _get_folder(folder_id):
    folder = db.session.get(Folder, _to_int(folder_id, "folder"))
    if folder is None:
        raise NotFoundError("That folder does not exist.")
    return folder


def _to_int(value, label):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {label} id.")


def _require(allowed, message):
    if not allowed:
        raise PermissionDeniedError(message)


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  LISTINGS                                                          ║
# ╚══════════════════════════════════════════════════════════════════════╝


def root_folders(category_id):
    return (
        Folder.query.filter_by(category_id=category_id, parent_folder_id=None)
        .order_by(Folder.name)
        .all()
    )


def root_documents(category_id):
    return (
        Document.query.filter_by(category_id=category_id, folder_id=None)
        .order_by(Document.last_updated.desc())
        .all()
    )


def subfolders(folder_id):
    return (
        Folder.query.filter_by(parent_folder_id=folder_id)
        .order_by(Folder.name)
        .all()
    )


def folder_documents(folder_id):
    return (
        Document.query.filter_by(folder_id=folder_id)
        .order_by(Document.last_updated.desc())
        .all()
    )


def folder_path(folder):
    """Folders from the category root down to ``folder`` (inclusive)."""
    path = [folder]
    seen = {folder.id}
    parent_id = folder.parent_folder_id
    while parent_id is not None and parent_id not in seen:
        parent = db.session.get(Folder, parent_id)
        if parent is None:
            break
        path.append(parent)
        seen.add(parent.id)
        parent_id = parent.parent_folder_id
    return list(reversed(path))


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  CATEGORIES                                                        ║
# ╚══════════════════════════════════════════════════════════════════════╝


def _clean_category(name, description):
    name = (name or "").strip()
    description = (description or "").strip()
    if len(name) < 3:
        raise ValidationError("The name must be at least 3 characters.")
    if len(description) < 10:
        raise ValidationError("The description must be at least 10 characters.")
    return name, description


def create_category(ctx, name, description):
    _require(ctx.can_manage_categories, "Only admins and editors can manage categories.")
    name, description = _clean_category(name, description)
    category = Category(name=name, description=description)
    db.session.add(category)
    db.session.flush()
    audit.record(ctx, "create", "Category", category.id, name,
                 f"Created category '{name}'.")
    _commit()
    return category


def update_category(ctx, category, name, description):
    _require(ctx.can_manage_categories, "Only admins and editors can manage categories.")
    name, description = _clean_category(name, description)
    category.name = name
    category.description = description
    audit.record(ctx, "update", "Category", category.id, name,
                 f"Updated category '{name}'.")
    _commit()
    return category


def delete_category(ctx, category):
    _require(ctx.can_manage_categories, "Only admins and editors can manage categories.")
    in_use = (
        Folder.query.filter_by(category_id=category.id).count()
        + Document.query.filter_by(category_id=category.id).count()
    )
    if in_use:
        raise HierarchyError(
            f"Category '{category.name}' still contains folders or documents. "
            "Move or delete them first."
        )
    name = category.name
    audit.record(ctx, "delete", "Category", category.id, name,
                 f"Deleted category '{name}'.")
    db.session.delete(category)
    _commit()


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  FOLDERS                                                           ║
# ╚══════════════════════════════════════════════════════════════════════╝


def create_folder(ctx, name, category_id, parent_folder_id=None):
    """Any signed-in user may create a folder, at a category root or nested."""
    name = (name or "").strip()
    if len(name) < 3:
        raise ValidationError("The folder name must be at least 3 characters.")
    category = _get_category(category_id)

    parent = None
    if parent_folder_id not in (None, ""):
        parent = _get_folder(parent_folder_id)
        if parent.category_id != category.id:
            raise HierarchyError("The parent folder belongs to a different category.")

    folder = Folder(
        name=name,
        category_id=category.id,
        parent_folder_id=parent.id if parent else None,
        created_by=ctx.uid,
    )
    db.session.add(folder)
    db.session.flush()
    audit.record(ctx, "create", "Folder", folder.id, name,
                 f"Created folder '{name}' in '{category.name}'.")
    _commit()
    return folder


def delete_folder(ctx, folder):
    """Delete ``folder`` unless a document sits directly in it.

    Sub-folders are not inspected; they keep pointing at the deleted id.
    """
    _require(ctx.can_manage_folder(folder),
             "Only the folder's creator, admins and editors can delete it.")

    contained = Document.query.filter_by(folder_id=folder.id).count()
    if contained:
        raise HierarchyError(
            f"Folder '{folder.name}' is not empty ({contained} document(s)). "
            "Move or delete its documents first."
        )

    name = folder.name
    audit.record(ctx, "delete", "Folder", folder.id, name, f"Deleted folder '{name}'.")
    db.session.delete(folder)
    _commit()
    logger.info("Folder %s deleted by %s", name, ctx.email)


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  DOCUMENTS                                                         ║
# ╚══════════════════════════════════════════════════════════════════════╝


def resolve_tags(names):
    """Tags for the given names, creating the missing ones."""
    tags = []
    for raw in names or []:
        name = raw.strip()
        if not name or any(t.name == name for t in tags):
            continue
        tag = Tag.query.filter_by(name=name).first()
        if tag is None:
            tag = Tag(name=name)
            db.session.add(tag)
        tags.append(tag)
    return tags


def clean_document_fields(data):
    """Validate raw form/JSON values and return normalised document fields."""
    title = (data.get("title") or "").strip()
    author = (data.get("author") or "").strip()
    description = (data.get("description") or "").strip()
    file_url = (data.get("file_url") or "").strip()
    thumbnail_url = (data.get("thumbnail_url") or "").strip()

    if len(title) < 3:
        raise ValidationError("The title must be at least 3 characters.")
    if len(author) < 3:
        raise ValidationError("The author must be at least 3 characters.")
    try:
        year = int(data.get("year"))
    except (TypeError, ValueError):
        raise ValidationError("The year must be a number.")
    if year < 1900:
        raise ValidationError("The year must be valid.")
    if year > datetime.now(timezone.utc).year + 1:
        raise ValidationError("The year cannot be in the future.")
    if len(description) < 10:
        raise ValidationError("The description must be at least 10 characters.")
    if not file_url or not _is_url(file_url):
        raise ValidationError("Provide a URL or upload a valid file.")
    if thumbnail_url and not _is_url(thumbnail_url):
        raise ValidationError("The thumbnail must be a valid URL.")
    if data.get("category_id") in (None, ""):
        raise ValidationError("You must choose a category.")

    tags = data.get("tags") or []
    if isinstance(tags, str):
        tags = tags.split(",")

    return {
        "title": title,
        "author": author,
        "year": year,
        "description": description,
        "file_url": file_url,
        "thumbnail_url": thumbnail_url or None,
        "subject": (data.get("subject") or "").strip() or None,
        "version": (data.get("version") or "").strip() or "1.0",
        "category_id": _to_int(data.get("category_id"), "category"),
        "tags": tags,
    }


def _check_folder_in_category(folder_id, category_id):
    if folder_id in (None, ""):
        return None
    folder = _get_folder(folder_id)
    if folder.category_id != category_id:
        raise HierarchyError("The folder does not belong to the chosen category.")
    return folder


def create_document(ctx, data, folder_id=None):
    fields = clean_document_fields(data)
    category = _get_category(fields["category_id"])
    folder = _check_folder_in_category(folder_id, category.id)

    document = Document(
        title=fields["title"],
        author=fields["author"],
        year=fields["year"],
        description=fields["description"],
        subject=fields["subject"],
        version=fields["version"],
        file_url=fields["file_url"],
        thumbnail_url=fields["thumbnail_url"],
        category_id=category.id,
        folder_id=folder.id if folder else None,
        created_by=ctx.uid,
        last_updated=utcnow(),
    )
    document.tags = resolve_tags(fields["tags"])
    db.session.add(document)
    db.session.flush()
    audit.record(ctx, "create", "Document", document.id, document.title,
                 f"Created document '{document.title}'.")
    _commit()
    return document


def update_document(ctx, document, data):
    """Edit metadata. The folder is kept unless the category changes."""
    _require(ctx.can_manage_document(document),
             "Only the document's creator, admins and editors can edit it.")
    fields = clean_document_fields(data)
    category = _get_category(fields["category_id"])

    if category.id != document.category_id:
        document.folder_id = None
    for key in ("title", "author", "year", "description", "subject",
                "version", "file_url", "thumbnail_url"):
        setattr(document, key, fields[key])
    document.category_id = category.id
    document.tags = resolve_tags(fields["tags"])
    document.last_updated = next_timestamp(document.last_updated)

    audit.record(ctx, "update", "Document", document.id, document.title,
                 f"Updated document '{document.title}'.")
    _commit()
    return document


def delete_document(ctx, document):
    _require(ctx.can_manage_document(document),
             "Only the document's creator, admins and editors can delete it.")
    title = document.title
    audit.record(ctx, "delete", "Document", document.id, title,
                 f"Deleted document '{title}'.")
    db.session.delete(document)
    _commit()


def move_document(ctx, document, category_id, folder_id=None):
    """Relocate ``document`` to a category root or a folder of that category."""
    _require(ctx.can_manage_document(document),
             "Only the document's creator, admins and editors can move it.")
    category = _get_category(category_id)
    folder = _check_folder_in_category(folder_id, category.id)

    document.category_id = category.id
    document.folder_id = folder.id if folder else None
    document.last_updated = next_timestamp(document.last_updated)

    destination = f"{category.name} / {folder.name if folder else ROOT_LABEL}"
    audit.record(ctx, "update", "Document", document.id, document.title,
                 f"Document moved to: {destination}")
    _commit()
    logger.info("Document %s moved to %s by %s", document.id, destination, ctx.email)
    return document
