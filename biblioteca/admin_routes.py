from flask import (
    Blueprint,
    render_template,
    redirect,
    url_for,
    flash,
    request,
    current_app,
)
from flask_login import current_user

from biblioteca import audit, hierarchy, identity, storage
from biblioteca.decorators import admin_required, manager_required
from biblioteca.exceptions import LibraryError
from biblioteca.identity import get_session_context
from biblioteca.models import ROLES, AuditLog, Category, Document, Folder, User

admin_bp = Blueprint("admin", __name__, url_prefix="/admin")


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  ADMIN DASHBOARD                                                   ║
# ╚══════════════════════════════════════════════════════════════════════╝

@admin_bp.route("/")
@manager_required
def dashboard():
    ctx = get_session_context()
    stats = {
        "documents": Document.query.count(),
        "categories": Category.query.count(),
        "folders": Folder.query.count(),
    }
    role_counts = {}
    if ctx.can_list_all_users:
        stats["users"] = User.query.count()
        role_counts = {role: User.query.filter_by(role=role).count() for role in ROLES}

    recent = (
        Document.query.order_by(Document.last_updated.desc()).limit(5).all()
    )
    return render_template(
        "admin/dashboard.html",
        stats=stats,
        role_counts=role_counts,
        recent=recent,
        recent_activity=AuditLog.query.order_by(AuditLog.id.desc()).limit(5).all()
        if ctx.is_admin
        else [],
    )


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  CATEGORIES                                                        ║
# ╚══════════════════════════════════════════════════════════════════════╝

@admin_bp.route("/categories")
@manager_required
def categories():
    cats = Category.query.order_by(Category.name).all()
    return render_template("admin/categories.html", categories=cats)


@admin_bp.route("/categories/new", methods=["GET", "POST"])
@manager_required
def new_category():
    if request.method == "POST":
        try:
            created = hierarchy.create_category(
                get_session_context(),
                request.form.get("name"),
                request.form.get("description"),
            )
        except LibraryError as e:
            flash(e.message, "danger")
            return render_template("admin/category_form.html", category=None,
                                   form=request.form)
        flash(f'Category "{created.name}" created.', "success")
        return redirect(url_for("admin.categories"))

    return render_template("admin/category_form.html", category=None, form={})


@admin_bp.route("/categories/<int:category_id>/edit", methods=["GET", "POST"])
@manager_required
def edit_category(category_id):
    cat = Category.query.get_or_404(category_id)

    if request.method == "POST":
        try:
            hierarchy.update_category(
                get_session_context(),
                cat,
                request.form.get("name"),
                request.form.get("description"),
            )
        except LibraryError as e:
            flash(e.message, "danger")
            return render_template("admin/category_form.html", category=cat,
                                   form=request.form)
        flash("Category updated.", "success")
        return redirect(url_for("admin.categories"))

    form = {"name": cat.name, "description": cat.description}
    return render_template("admin/category_form.html", category=cat, form=form)


@admin_bp.route("/categories/<int:category_id>/delete", methods=["POST"])
@manager_required
def delete_category(category_id):
    cat = Category.query.get_or_404(category_id)
    name = cat.name

    try:
        hierarchy.delete_category(get_session_context(), cat)
        flash(f'Category "{name}" deleted.', "success")
    except LibraryError as e:
        flash(e.message, "danger")

    return redirect(url_for("admin.categories"))


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  DOCUMENTS                                                         ║
# ╚══════════════════════════════════════════════════════════════════════╝

@admin_bp.route("/documents")
@manager_required
def documents():
    docs = Document.query.order_by(Document.last_updated.desc()).all()
    return render_template("admin/documents.html", documents=docs)


@admin_bp.route("/documents/<int:doc_id>/delete", methods=["POST"])
@manager_required
def delete_document(doc_id):
    doc = Document.query.get_or_404(doc_id)
    title, file_url = doc.title, doc.file_url

    try:
        hierarchy.delete_document(get_session_context(), doc)
    except LibraryError as e:
        flash(e.message, "danger")
        return redirect(url_for("admin.documents"))

    storage.remove_file(file_url)
    flash(f'"{title}" deleted.', "success")
    return redirect(url_for("admin.documents"))


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  USERS / ROLES                                                     ║
# ╚══════════════════════════════════════════════════════════════════════╝

@admin_bp.route("/users")
@admin_required
def users():
    profiles = User.query.order_by(User.created_at).all()
    return render_template("admin/users.html", users=profiles, roles=ROLES)


@admin_bp.route("/users/<uid>/role", methods=["POST"])
@admin_required
def change_role(uid):
    # Prevent self-demotion
    if uid == current_user.id:
        flash("You cannot change your own role.", "warning")
        return redirect(url_for("admin.users"))

    try:
        result = identity.set_role(
            identity.account_claims(current_user._get_current_object()),
            {"uid": uid, "role": request.form.get("role")},
        )
        flash(result["message"], "success")
    except LibraryError as e:
        current_app.logger.warning("Role change for %s refused: %s", uid, e.code)
        flash(e.message, "danger")

    return redirect(url_for("admin.users"))


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  HISTORY                                                           ║
# ╚══════════════════════════════════════════════════════════════════════╝

@admin_bp.route("/history")
@admin_required
def history():
    return render_template(
        "history.html", entries=audit.global_history(), title="Global activity"
    )
