from flask import (
    Blueprint,
    render_template,
    redirect,
    url_for,
    flash,
    request,
    current_app,
    abort,
    send_from_directory,
)
from flask_login import login_user, logout_user, login_required, current_user

from biblioteca import db, bcrypt, limiter
from biblioteca import audit, hierarchy, search, storage
from biblioteca.exceptions import LibraryError
from biblioteca.identity import get_session_context, initial_claims
from biblioteca.models import Account, Category, Document, Folder

main = Blueprint("main", __name__)


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  HELPERS                                                           ║
# ╚══════════════════════════════════════════════════════════════════════╝

def _location_url(category_id, folder_id=None):
    """Where to land after working inside a category or folder."""
    if folder_id:
        return url_for("main.folder", folder_id=folder_id)
    if category_id:
        return url_for("main.category", category_id=category_id)
    return url_for("main.my_documents")


def _document_form_data():
    """Form values plus the URL of an uploaded file, if one was sent."""
    data = request.form.to_dict()
    file = request.files.get("file")
    if file and file.filename:
        ctx = get_session_context()
        data["file_url"] = storage.upload_file(
            file,
            ctx.uid,
            on_progress=lambda fraction: current_app.logger.debug(
                "upload %s: %.0f%%", file.filename, fraction * 100
            ),
        )
    return data


def _discard_new_upload(data, keep=None):
    """Remove a file stored for a form that was then rejected."""
    file_url = data.get("file_url")
    if file_url and file_url not in (keep, request.form.get("file_url")):
        storage.remove_file(file_url)


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  HOME / CATEGORIES                                                 ║
# ╚══════════════════════════════════════════════════════════════════════╝

@main.route("/")
def home():
    if not current_user.is_authenticated:
        return redirect(url_for("main.login"))
    categories = Category.query.order_by(Category.name).all()
    recent = Document.query.order_by(Document.last_updated.desc()).limit(8).all()
    return render_template("index.html", categories=categories, recent=recent)


@main.route("/category/<int:category_id>")
@login_required
def category(category_id):
    cat = Category.query.get_or_404(category_id)
    return render_template(
        "category.html",
        category=cat,
        folders=hierarchy.root_folders(cat.id),
        documents=hierarchy.root_documents(cat.id),
    )


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  AUTHENTICATION                                                    ║
# ╚══════════════════════════════════════════════════════════════════════╝

@main.route("/signup", methods=["GET", "POST"])
def register():
    if current_user.is_authenticated:
        return redirect(url_for("main.home"))

    if request.method == "POST":
        name = request.form.get("name", "").strip()
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "").strip()
        confirm = request.form.get("confirm_password", "").strip()

        # ── Validation ───────────────────────────────────────────────
        if not email or not password:
            flash("Email and password are required.", "danger")
            return redirect(url_for("main.register"))

        if "@" not in email or len(email) > 254:
            flash("Please enter a valid email address.", "danger")
            return redirect(url_for("main.register"))

        if len(password) < 6:
            flash("Password must be at least 6 characters.", "danger")
            return redirect(url_for("main.register"))

        if password != confirm:
            flash("Passwords do not match.", "danger")
            return redirect(url_for("main.register"))

        if Account.query.filter_by(email=email).first():
            flash("An account with that email already exists.", "danger")
            return redirect(url_for("main.register"))

        # ── Create account ───────────────────────────────────────────
        hashed = bcrypt.generate_password_hash(password).decode("utf-8")
        account = Account(
            email=email,
            display_name=name or None,
            password_hash=hashed,
            claims=initial_claims(),
        )

        try:
            db.session.add(account)
            db.session.commit()
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Sign-up failed for %s", email)
            flash("Registration failed. Please try again.", "danger")
            return redirect(url_for("main.register"))

        login_user(account, remember=True)
        flash("Account created! Welcome to the library.", "success")
        return redirect(url_for("main.home"))

    return render_template("register.html")


@main.route("/login", methods=["GET", "POST"])
def login():
    if current_user.is_authenticated:
        return redirect(url_for("main.home"))

    if request.method == "POST":
        email = request.form.get("email", "").strip().lower()
        password = request.form.get("password", "").strip()

        account = Account.query.filter_by(email=email).first()

        if account and bcrypt.check_password_hash(account.password_hash, password):
            login_user(account, remember=True)
            next_page = request.args.get("next")
            if not next_page or not next_page.startswith("/"):
                next_page = url_for("main.home")
            return redirect(next_page)

        flash("Invalid email or password.", "danger")
        return redirect(url_for("main.login"))

    return render_template("login.html")


@main.route("/logout")
@login_required
def logout():
    logout_user()
    flash("You have been logged out.", "info")
    return redirect(url_for("main.login"))


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  FOLDERS                                                           ║
# ╚══════════════════════════════════════════════════════════════════════╝

@main.route("/folders/<int:folder_id>")
@login_required
def folder(folder_id):
    current = Folder.query.get_or_404(folder_id)
    return render_template(
        "folder.html",
        folder=current,
        path=hierarchy.folder_path(current),
        subfolders=hierarchy.subfolders(current.id),
        documents=hierarchy.folder_documents(current.id),
    )


@main.route("/folders/new", methods=["GET", "POST"])
@login_required
def new_folder():
    category_id = request.values.get("category_id", type=int)
    parent_folder_id = request.values.get("parent_folder_id", type=int)
    if category_id is None:
        flash("Could not create the folder: no category was given.", "danger")
        return redirect(url_for("main.home"))

    if request.method == "POST":
        try:
            created = hierarchy.create_folder(
                get_session_context(),
                request.form.get("name"),
                category_id,
                parent_folder_id,
            )
        except LibraryError as e:
            flash(e.message, "danger")
            return render_template(
                "folder_form.html",
                category_id=category_id,
                parent_folder_id=parent_folder_id,
                name=request.form.get("name", ""),
            )
        flash(f'Folder "{created.name}" created.', "success")
        return redirect(_location_url(category_id, parent_folder_id))

    return render_template(
        "folder_form.html",
        category_id=category_id,
        parent_folder_id=parent_folder_id,
        name="",
    )


@main.route("/folders/<int:folder_id>/delete", methods=["POST"])
@login_required
def delete_folder(folder_id):
    target = Folder.query.get_or_404(folder_id)
    category_id, parent_id = target.category_id, target.parent_folder_id

    try:
        hierarchy.delete_folder(get_session_context(), target)
    except LibraryError as e:
        flash(e.message, "danger")
        return redirect(url_for("main.folder", folder_id=folder_id))

    flash("Folder deleted.", "success")
    return redirect(_location_url(category_id, parent_id))


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  DOCUMENTS                                                         ║
# ╚══════════════════════════════════════════════════════════════════════╝

@main.route("/documents/<int:doc_id>")
@login_required
def document(doc_id):
    doc = Document.query.get_or_404(doc_id)
    path = hierarchy.folder_path(doc.folder) if doc.folder else []
    return render_template("document.html", document=doc, path=path)


@main.route("/documents/new", methods=["GET", "POST"])
@login_required
def new_document():
    folder_id = request.values.get("folder_id", type=int)
    categories = Category.query.order_by(Category.name).all()

    if request.method == "POST":
        data = {}
        try:
            data = _document_form_data()
            created = hierarchy.create_document(get_session_context(), data, folder_id)
        except LibraryError as e:
            _discard_new_upload(data)
            flash(e.message, "danger")
            return render_template(
                "document_form.html",
                document=None,
                form=request.form,
                categories=categories,
                folder_id=folder_id,
            )
        flash(f'"{created.title}" was added to the library.', "success")
        return redirect(_location_url(created.category_id, created.folder_id))

    form = {"category_id": request.args.get("category_id", ""), "version": "1.0"}
    return render_template(
        "document_form.html",
        document=None,
        form=form,
        categories=categories,
        folder_id=folder_id,
    )


@main.route("/documents/<int:doc_id>/edit", methods=["GET", "POST"])
@login_required
def edit_document(doc_id):
    doc = Document.query.get_or_404(doc_id)
    ctx = get_session_context()
    if not ctx.can_manage_document(doc):
        abort(403)
    categories = Category.query.order_by(Category.name).all()

    if request.method == "POST":
        previous_url = doc.file_url
        data = {}
        try:
            data = _document_form_data()
            hierarchy.update_document(ctx, doc, data)
        except LibraryError as e:
            _discard_new_upload(data, keep=previous_url)
            flash(e.message, "danger")
            return render_template(
                "document_form.html",
                document=doc,
                form=request.form,
                categories=categories,
                folder_id=doc.folder_id,
            )
        if doc.file_url != previous_url:
            storage.remove_file(previous_url)
        flash("Document updated.", "success")
        return redirect(url_for("main.document", doc_id=doc.id))

    form = {
        "title": doc.title,
        "author": doc.author,
        "year": doc.year,
        "description": doc.description,
        "subject": doc.subject or "",
        "version": doc.version or "",
        "file_url": doc.file_url,
        "thumbnail_url": doc.thumbnail_url or "",
        "category_id": str(doc.category_id),
        "tags": ", ".join(t.name for t in doc.tags),
    }
    return render_template(
        "document_form.html",
        document=doc,
        form=form,
        categories=categories,
        folder_id=doc.folder_id,
    )


@main.route("/documents/<int:doc_id>/move", methods=["GET", "POST"])
@login_required
def move_document(doc_id):
    doc = Document.query.get_or_404(doc_id)
    ctx = get_session_context()
    if not ctx.can_manage_document(doc):
        abort(403)

    if request.method == "POST":
        target_category = request.form.get("category_id", type=int)
        target_folder = request.form.get("folder_id", "")
        target_folder = None if target_folder in ("", "root") else target_folder
        try:
            hierarchy.move_document(ctx, doc, target_category, target_folder)
        except LibraryError as e:
            flash(e.message, "danger")
            return redirect(url_for("main.move_document", doc_id=doc.id,
                                    category_id=target_category))
        flash(f'"{doc.title}" was moved.', "success")
        return redirect(_location_url(doc.category_id, doc.folder_id))

    target_category = request.args.get("category_id", type=int) or doc.category_id
    return render_template(
        "move_document.html",
        document=doc,
        categories=Category.query.order_by(Category.name).all(),
        target_category_id=target_category,
        folders=Folder.query.filter_by(category_id=target_category)
        .order_by(Folder.name)
        .all(),
    )


@main.route("/documents/<int:doc_id>/delete", methods=["POST"])
@login_required
def delete_document(doc_id):
    doc = Document.query.get_or_404(doc_id)
    file_url = doc.file_url
    category_id, folder_id = doc.category_id, doc.folder_id

    try:
        hierarchy.delete_document(get_session_context(), doc)
    except LibraryError as e:
        flash(e.message, "danger")
        return redirect(url_for("main.document", doc_id=doc_id))

    # Clean up the stored file (best-effort after the commit)
    storage.remove_file(file_url)

    flash("Document deleted.", "success")
    return redirect(_location_url(category_id, folder_id))


@main.route("/my-documents")
@login_required
def my_documents():
    docs = (
        Document.query.filter_by(created_by=get_session_context().uid)
        .order_by(Document.last_updated.desc())
        .all()
    )
    return render_template("my_documents.html", documents=docs)


@main.route("/files/<path:path>")
@login_required
def uploaded_file(path):
    return send_from_directory(current_app.config["UPLOAD_FOLDER"], path)


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  HISTORY / PROFILE                                                 ║
# ╚══════════════════════════════════════════════════════════════════════╝

@main.route("/history")
@login_required
def history():
    entries = audit.user_history(get_session_context().uid)
    return render_template("history.html", entries=entries, title="My activity")


@main.route("/profile", methods=["GET", "POST"])
@login_required
def profile():
    ctx = get_session_context()

    if request.method == "POST":
        name = request.form.get("name", "").strip()
        avatar_url = request.form.get("avatar_url", "").strip() or None
        if len(name) < 2:
            flash("The name must be at least 2 characters.", "danger")
            return redirect(url_for("main.profile"))

        account = current_user._get_current_object()
        account.display_name = name
        account.photo_url = avatar_url
        ctx.profile.name = name
        ctx.profile.avatar_url = avatar_url
        audit.record(ctx, "update", "User", ctx.uid, name, "Updated profile.")
        try:
            db.session.commit()
            flash("Profile updated.", "success")
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Profile update failed for %s", ctx.uid)
            flash("Failed to update profile.", "danger")
        return redirect(url_for("main.profile"))

    return render_template("profile.html", profile=ctx.profile)


# ╔══════════════════════════════════════════════════════════════════════╗
# ║  SEARCH                                                            ║
# ╚══════════════════════════════════════════════════════════════════════╝

@main.route("/search")
@login_required
def search_page():
    query = request.args.get("q", "").strip()
    result = {"query": query, "terms": [], "results": [], "notice": None}
    if query:
        result["results"] = search.search_library(query)
    return render_template("search.html", ai=False, **result)


@main.route("/search/ai", methods=["POST"])
@login_required
@limiter.limit("20 per minute")
def ai_search():
    query = request.form.get("q", "").strip()
    if not query:
        flash("Type something to search for.", "warning")
        return redirect(url_for("main.search_page"))
    result = search.enhance_search(query)
    return render_template("search.html", ai=True, **result)
