from __future__ import annotations

from pathlib import Path

from fastapi.testclient import TestClient

from agencycrm.config import Config
from agencycrm.mock_repository import MockRepository
from agencycrm.server import create_app
from agencycrm.service import UserService


def test_home_page_renders(client: TestClient) -> None:
    response = client.get("/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert 'href="/users"' in response.text


def test_users_page_loads_script(client: TestClient) -> None:
    response = client.get("/users")
    assert response.status_code == 200
    assert 'id="create-user-form"' in response.text
    assert "/static/js/users.js" in response.text


def test_static_assets_are_served(client: TestClient) -> None:
    response = client.get("/static/js/users.js")
    assert response.status_code == 200
    assert "/api/v1/users" in response.text


def test_missing_templates_directory(tmp_path: Path, caplog) -> None:
    config = Config(templates_dir=tmp_path / "missing", static_dir=tmp_path / "also-missing")

    with caplog.at_level("WARNING", logger="agencycrm.web"):
        app = create_app(service=UserService(MockRepository()), config=config)
    client = TestClient(app)

    response = client.get("/")
    assert response.status_code == 500
    assert response.text == "Templates not available"
    assert client.get("/static/js/users.js").status_code == 404
    # The JSON API keeps working without the front end.
    assert client.get("/api/v1/users").status_code == 200
    assert any("Templates directory does not exist" in r.getMessage() for r in caplog.records)


def test_custom_templates_directory(tmp_path: Path) -> None:
    pages = tmp_path / "pages"
    pages.mkdir()
    (pages / "index.html").write_text("<h1>Custom home</h1>", encoding="utf-8")
    (pages / "users.html").write_text("<h1>Custom users</h1>", encoding="utf-8")

    config = Config(templates_dir=tmp_path, static_dir=tmp_path / "static")
    client = TestClient(create_app(service=UserService(MockRepository()), config=config))

    assert "Custom home" in client.get("/").text
    assert "Custom users" in client.get("/users").text
