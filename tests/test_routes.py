import io
import os

from biblioteca import db
from biblioteca.models import Account, AuditLog, Document, Folder, User

from conftest import login, make_account, make_category, make_document, make_folder


def _seed_users(app):
    with app.app_context():
        make_account("admin@example.org", role="Admin", uid="admin")
        make_account("editor@example.org", role="Editor", uid="editor")
        make_account("user@example.org", uid="user")
        make_account("other@example.org", uid="other")


def test_anonymous_home_redirects_to_login(client):
    response = client.get("/")
    assert response.status_code == 302
    assert "/login" in response.headers["Location"]


def test_first_signup_becomes_admin_and_second_is_user(app, client):
    form = {"name": "Primera", "email": "first@example.org",
            "password": "secret123", "confirm_password": "secret123"}
    response = client.post("/signup", data=form, follow_redirects=True)
    assert response.status_code == 200
    client.get("/logout")

    form.update(name="Segunda", email="second@example.org")
    client.post("/signup", data=form, follow_redirects=True)

    with app.app_context():
        first = Account.query.filter_by(email="first@example.org").one()
        second = Account.query.filter_by(email="second@example.org").one()
        assert first.claims == {"role": "Admin"}
        assert db.session.get(User, first.id).role == "Admin"
        assert second.claims == {}
        assert db.session.get(User, second.id).role == "User"


def test_signup_rejects_mismatched_passwords(app, client):
    response = client.post(
        "/signup",
        data={"email": "x@example.org", "password": "secret123", "confirm_password": "nope"},
        follow_redirects=True,
    )
    assert b"Passwords do not match." in response.data
    with app.app_context():
        assert Account.query.count() == 0


def test_login_with_wrong_password(app, client):
    _seed_users(app)
    response = client.post(
        "/login", data={"email": "user@example.org", "password": "wrong"},
        follow_redirects=True,
    )
    assert b"Invalid email or password." in response.data


def test_category_page_lists_root_content(app, client):
    _seed_users(app)
    with app.app_context():
        cat = make_category()
        make_folder(cat, name="Cardiología")
        inner = make_folder(cat, name="Pediatría")
        make_document(cat, title="Documento raíz")
        make_document(cat, inner, title="Documento interno")
        cat_id = cat.id

    login(client, "user@example.org")
    body = client.get(f"/category/{cat_id}").get_data(as_text=True)

    assert "Cardiología" in body
    assert "Documento raíz" in body
    assert "Documento interno" not in body


def test_admin_area_is_gated_by_role(app, client):
    _seed_users(app)

    login(client, "user@example.org")
    assert client.get("/admin/").status_code == 403
    client.get("/logout")

    login(client, "editor@example.org")
    assert client.get("/admin/").status_code == 200
    assert client.get("/admin/categories").status_code == 200
    assert client.get("/admin/users").status_code == 403
    client.get("/logout")

    login(client, "admin@example.org")
    assert client.get("/admin/users").status_code == 200
    assert client.get("/admin/history").status_code == 200


def test_admin_changes_role_from_users_page(app, client):
    _seed_users(app)
    login(client, "admin@example.org")
    client.get("/")

    response = client.post("/admin/users/user/role", data={"role": "Editor"},
                           follow_redirects=True)

    assert b"Successfully set user user to the role of Editor." in response.data
    with app.app_context():
        assert db.session.get(Account, "user").claims["role"] == "Editor"
        assert db.session.get(User, "user").role == "Editor"


def test_admin_cannot_change_own_role(app, client):
    _seed_users(app)
    login(client, "admin@example.org")

    response = client.post("/admin/users/admin/role", data={"role": "User"},
                           follow_redirects=True)

    assert b"change your own role" in response.data
    with app.app_context():
        assert db.session.get(Account, "admin").claims["role"] == "Admin"


def test_non_empty_folder_delete_is_refused(app, client):
    _seed_users(app)
    with app.app_context():
        cat = make_category()
        folder = make_folder(cat, created_by="user")
        make_document(cat, folder)
        folder_id = folder.id

    login(client, "user@example.org")
    response = client.post(f"/folders/{folder_id}/delete", follow_redirects=True)

    assert b"is not empty" in response.data
    with app.app_context():
        assert db.session.get(Folder, folder_id) is not None


def test_create_folder_and_document_with_upload(app, client):
    _seed_users(app)
    with app.app_context():
        cat_id = make_category().id

    login(client, "user@example.org")
    response = client.post(
        "/folders/new",
        data={"name": "Mis apuntes", "category_id": cat_id},
    )
    assert response.status_code == 302
    with app.app_context():
        folder_id = Folder.query.filter_by(name="Mis apuntes").one().id

    response = client.post(
        f"/documents/new?folder_id={folder_id}",
        data={
            "title": "Apuntes de anatomía",
            "author": "Estudiante Uno",
            "year": "2023",
            "description": "Resumen de anatomía humana del primer semestre.",
            "category_id": str(cat_id),
            "tags": "anatomía",
            "file": (io.BytesIO(b"%PDF-1.4 test"), "anatomia.pdf"),
        },
        content_type="multipart/form-data",
    )
    assert response.status_code == 302
    assert f"/folders/{folder_id}" in response.headers["Location"]

    with app.app_context():
        doc = Document.query.filter_by(title="Apuntes de anatomía").one()
        assert doc.folder_id == folder_id
        assert doc.created_by == "user"
        assert doc.file_url.startswith("/files/documents/user/")
        file_url = doc.file_url
        actions = [(e.action, e.entity_type) for e in AuditLog.query.order_by(AuditLog.id)]
        assert actions == [("create", "Folder"), ("create", "Document")]

    assert client.get(file_url).data == b"%PDF-1.4 test"


def test_move_document_through_the_form(app, client):
    _seed_users(app)
    with app.app_context():
        source = make_category("Medicina")
        target = make_category("Psicología")
        folder = make_folder(target, name="Clínica")
        doc = make_document(source, created_by="user")
        doc_id, target_id, folder_id = doc.id, target.id, folder.id

    login(client, "user@example.org")
    assert client.get(f"/documents/{doc_id}/move?category_id={target_id}").status_code == 200
    response = client.post(
        f"/documents/{doc_id}/move",
        data={"category_id": target_id, "folder_id": folder_id},
    )

    assert response.status_code == 302
    with app.app_context():
        moved = db.session.get(Document, doc_id)
        assert (moved.category_id, moved.folder_id) == (target_id, folder_id)


def test_user_cannot_edit_or_delete_someone_elses_document(app, client):
    _seed_users(app)
    with app.app_context():
        doc_id = make_document(make_category(), created_by="other").id

    login(client, "user@example.org")
    assert client.get(f"/documents/{doc_id}/edit").status_code == 403
    client.post(f"/documents/{doc_id}/delete", follow_redirects=True)

    with app.app_context():
        assert db.session.get(Document, doc_id) is not None


def test_editor_deletes_any_document(app, client):
    _seed_users(app)
    with app.app_context():
        doc_id = make_document(make_category(), created_by="other").id

    login(client, "editor@example.org")
    client.post(f"/documents/{doc_id}/delete")

    with app.app_context():
        assert db.session.get(Document, doc_id) is None


def test_search_page_and_history(app, client):
    _seed_users(app)
    with app.app_context():
        make_document(make_category(), title="Virus del Zika")

    login(client, "user@example.org")
    assert "Virus del Zika" in client.get("/search?q=virus").get_data(as_text=True)

    client.post("/profile", data={"name": "Usuaria"})
    body = client.get("/history").get_data(as_text=True)
    assert "Updated profile." in body


def _stored_files(app):
    root = os.path.join(app.config["UPLOAD_FOLDER"], "documents")
    return sorted(
        name for _, _, names in os.walk(root) for name in names
    )


def _upload_form(cat_id, filename, **overrides):
    form = {
        "title": "Apuntes de anatomía",
        "author": "Estudiante Uno",
        "year": "2023",
        "description": "Resumen de anatomía humana del primer semestre.",
        "category_id": str(cat_id),
        "file": (io.BytesIO(b"%PDF-1.4 " + filename.encode()), filename),
    }
    form.update(overrides)
    return form


def test_rejected_create_discards_the_uploaded_file(app, client):
    _seed_users(app)
    with app.app_context():
        cat_id = make_category().id

    login(client, "user@example.org")
    response = client.post(
        "/documents/new",
        data=_upload_form(cat_id, "a.pdf", title="x"),
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    assert b"title must be at least 3 characters" in response.data
    with app.app_context():
        assert Document.query.count() == 0
    assert _stored_files(app) == []


def test_edit_with_new_upload_replaces_the_stored_file(app, client):
    _seed_users(app)
    with app.app_context():
        cat_id = make_category().id

    login(client, "user@example.org")
    client.post("/documents/new", data=_upload_form(cat_id, "a.pdf"),
                content_type="multipart/form-data")
    with app.app_context():
        doc_id = Document.query.one().id

    response = client.post(
        f"/documents/{doc_id}/edit",
        data=_upload_form(cat_id, "b.pdf"),
        content_type="multipart/form-data",
    )

    assert response.status_code == 302
    files = _stored_files(app)
    assert len(files) == 1
    assert files[0].endswith("-b.pdf")
    with app.app_context():
        assert db.session.get(Document, doc_id).file_url.endswith("-b.pdf")


def test_rejected_edit_keeps_the_original_file(app, client):
    _seed_users(app)
    with app.app_context():
        cat_id = make_category().id

    login(client, "user@example.org")
    client.post("/documents/new", data=_upload_form(cat_id, "a.pdf"),
                content_type="multipart/form-data")
    with app.app_context():
        doc_id = Document.query.one().id

    response = client.post(
        f"/documents/{doc_id}/edit",
        data=_upload_form(cat_id, "b.pdf", description="short"),
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    files = _stored_files(app)
    assert len(files) == 1
    assert files[0].endswith("-a.pdf")
    with app.app_context():
        assert db.session.get(Document, doc_id).file_url.endswith("-a.pdf")
