"""
HTTP API Tests
==============
Stateless endpoints, the wizard routes and the HTML pages.
"""
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlmodel import Session

from storybook.db.models import PublicStory
from storybook.main import create_app
from storybook.web import session_routes

from conftest import DRAGON_PAGES, PNG_BYTES, PNG_URI, FakeWriter


class TestGenerationEndpoints:

    def test_generate_outline(self, client):
        response = client.post("/api/generate-outline", json={"prompt": "A kind dragon", "title": "Ember"})
        assert response.status_code == 200
        pages = response.json()
        assert len(pages) == 6
        assert pages[0] == {"page": 1, "text": DRAGON_PAGES[0]}

    def test_generate_outline_requires_prompt(self, client):
        response = client.post("/api/generate-outline", json={"prompt": " "})
        assert response.status_code == 400
        assert "error" in response.json()

    def test_generate_outline_failure(self, client, services):
        services.writer = FakeWriter(error="Oh no! Our story-writing magic fizzled. Please try again.")
        response = client.post("/api/generate-outline", json={"prompt": "A kind dragon"})
        assert response.status_code == 500
        assert response.json() == {"error": "Oh no! Our story-writing magic fizzled. Please try again."}

    def test_identify_characters(self, client):
        pages = [{"page": i + 1, "text": t} for i, t in enumerate(DRAGON_PAGES)]
        response = client.post("/api/identify-characters", json={"pages": pages})
        assert response.status_code == 200
        data = response.json()
        assert data["characters"][0]["name"] == "Ember the Dragon"
        assert data["pagesWithCharacters"][0] == {"page": 1, "characters": ["Ember the Dragon"]}

    def test_generate_character_image(self, client):
        response = client.post("/api/generate-character-image", json={"description": "A red dragon"})
        assert response.status_code == 200
        assert response.json() == {"imageUrl": PNG_URI, "imageMimeType": "image/png"}

    def test_generate_page_image(self, client, services):
        body = {
            "page": {"page": 1, "text": "Ember flies.", "characters": ["Ember"]},
            "allCharacters": [{"name": "Ember", "description": "", "imageUrl": PNG_URI, "imageMimeType": "image/png"}],
        }
        response = client.post("/api/generate-page-image", json=body)
        assert response.status_code == 200
        assert response.json()["imageUrl"].startswith("data:image/png;base64,")
        page, characters = services.illustrator.calls[0]
        assert characters[0].image_mime_type == "image/png"

    def test_generate_page_image_requires_page(self, client):
        response = client.post("/api/generate-page-image", json={"allCharacters": []})
        assert response.status_code == 400

    def test_generate_audio(self, client):
        response = client.post("/api/generate-audio", json={"text": "Hello"})
        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.content == b"ID3Hello"

    def test_generate_audio_requires_text(self, client):
        response = client.post("/api/generate-audio", json={"text": ""})
        assert response.status_code == 400


class TestUpload:

    def test_upload_html(self, client, media):
        response = client.post("/api/upload", json={"fileContent": "<h1>Ember</h1>", "mimeType": "text/html", "isHtml": True})
        assert response.status_code == 200
        url = response.json()["publicUrl"]
        assert "/media/stories/" in url
        assert media.read(url) == b"<h1>Ember</h1>"

    def test_uploaded_file_is_served(self, client):
        url = client.post(
            "/api/upload", json={"fileContent": "<p>hi</p>", "mimeType": "text/html", "isHtml": True}
        ).json()["publicUrl"]
        response = client.get(url.replace("http://testserver", ""))
        assert response.status_code == 200
        assert response.text == "<p>hi</p>"

    def test_only_html_is_accepted(self, client):
        response = client.post("/api/upload", json={"fileContent": "abc", "mimeType": "image/png", "isHtml": False})
        assert response.status_code == 400
        assert response.json() == {"error": "This endpoint only accepts HTML files."}

    def test_missing_content(self, client):
        response = client.post("/api/upload", json={"mimeType": "text/html", "isHtml": True})
        assert response.status_code == 400


class TestStories:

    def test_save_story(self, client):
        body = {"title": "Ember", "author": "Sam", "coverImageUrl": "http://x/c.png", "htmlUrl": "http://x/s.html"}
        response = client.post("/api/stories", json=body)
        assert response.status_code == 201
        data = response.json()
        assert data["id"]
        assert data["createdAt"]
        assert data["title"] == "Ember"

    def test_save_story_missing_fields(self, client):
        response = client.post("/api/stories", json={"title": "Ember", "author": ""})
        assert response.status_code == 400
        assert response.json() == {"error": "Missing required story data."}

    def test_latest_first_and_limited(self, client, engine, services):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        with Session(engine) as session:
            for i in range(25):
                session.add(PublicStory(
                    title=f"Story {i}",
                    author="Sam",
                    cover_image_url="http://x/c.png",
                    html_url="http://x/s.html",
                    created_at=start + timedelta(days=i),
                ))
            session.commit()

        stories = client.get("/api/stories").json()

        assert len(stories) == services.settings.GALLERY_LIMIT == 20
        assert stories[0]["title"] == "Story 24"
        assert stories[-1]["title"] == "Story 5"


class TestWizardRoutes:

    def test_full_flow(self, client):
        session = client.post("/api/sessions").json()
        sid = session["id"]
        assert session["stage"] == "prompt"

        session = client.post(f"/api/sessions/{sid}/submit", json={"premise": "A kind dragon", "title": "Ember"}).json()
        assert session["stage"] == "outline"

        session = client.delete(f"/api/sessions/{sid}/pages/5").json()
        assert [p["page"] for p in session["pages"]] == [1, 2, 3, 4, 5]

        session = client.post(f"/api/sessions/{sid}/confirm").json()
        assert session["stage"] == "character_creation"
        assert session["charactersReady"] is False

        response = client.post(f"/api/sessions/{sid}/complete")
        assert response.status_code == 400

        session = client.post(
            f"/api/sessions/{sid}/characters/Ember the Dragon/upload",
            files={"image": ("ember.png", PNG_BYTES, "image/png")},
        ).json()
        assert session["charactersReady"] is True

        session = client.post(f"/api/sessions/{sid}/complete").json()
        assert session["stage"] == "creating_pages"

        for _ in range(5):
            session = client.post(f"/api/sessions/{sid}/illustrate").json()
            assert session["illustration"]["imageUrl"]
            session = client.post(f"/api/sessions/{sid}/approve").json()
        assert session["stage"] == "finished"

        result = client.post(f"/api/sessions/{sid}/audiobook").json()
        assert result["calls"] == 5
        assert client.post(f"/api/sessions/{sid}/audiobook").json()["calls"] == 0

        response = client.get(f"/api/sessions/{sid}/export/html")
        assert response.headers["content-type"] == "application/zip"
        assert 'filename="ember.zip"' in response.headers["content-disposition"]

        response = client.get(f"/api/sessions/{sid}/export/pdf")
        assert response.content.startswith(b"%PDF")

        response = client.post(f"/api/sessions/{sid}/publish", json={"author": "Sam", "consent": True})
        assert response.status_code == 201
        assert client.get("/api/stories").json()[0]["author"] == "Sam"

    def test_invalid_transition_is_409(self, client):
        sid = client.post("/api/sessions").json()["id"]
        response = client.post(f"/api/sessions/{sid}/approve")
        assert response.status_code == 409
        assert "error" in response.json()

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/nope").status_code == 404

    def test_gallery_round_trip(self, client):
        sid = client.post("/api/sessions").json()["id"]
        session = client.post(f"/api/sessions/{sid}/gallery/open").json()
        assert session["stage"] == "gallery"
        session = client.post(f"/api/sessions/{sid}/gallery/close").json()
        assert session["stage"] == "prompt"


class TestSessionRegistry:

    def test_idle_session_is_evicted(self, client):
        sid = client.post("/api/sessions").json()["id"]
        assert client.get(f"/api/sessions/{sid}").status_code == 200

        session_routes.last_seen[sid] -= session_routes.SESSION_IDLE_SECONDS + 1

        assert client.get(f"/api/sessions/{sid}").status_code == 404
        assert sid not in session_routes.story_sessions
        assert sid not in session_routes.last_seen

    def test_active_session_survives_pruning(self, client):
        sid = client.post("/api/sessions").json()["id"]
        session_routes.prune_sessions()
        assert client.get(f"/api/sessions/{sid}").status_code == 200

    def test_least_recently_used_is_evicted_when_full(self, client, monkeypatch):
        monkeypatch.setattr(session_routes, "MAX_SESSIONS", 2)
        first = client.post("/api/sessions").json()["id"]
        second = client.post("/api/sessions").json()["id"]
        # Touching the first makes the second the oldest
        assert client.get(f"/api/sessions/{first}").status_code == 200
        third = client.post("/api/sessions").json()["id"]

        assert list(session_routes.story_sessions) == [first, third]
        assert client.get(f"/api/sessions/{second}").status_code == 404
        assert client.get(f"/api/sessions/{first}").status_code == 200

    def test_delete_forgets_session(self, client):
        sid = client.post("/api/sessions").json()["id"]
        assert client.delete(f"/api/sessions/{sid}").status_code == 204
        assert sid not in session_routes.last_seen
        assert client.get(f"/api/sessions/{sid}").status_code == 404


class TestAppLifecycle:

    def test_media_is_mounted_once_across_restarts(self, services):
        app = create_app(services=services)
        with TestClient(app):
            pass
        with TestClient(app) as client:
            assert client.get("/media/missing.mp3").status_code == 404

        assert [getattr(route, "name", None) for route in app.routes].count("media") == 1


class TestPages:

    def test_home(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "AI Storybook Creator" in response.text

    def test_gallery_page(self, client, gallery):
        gallery.add("Moon Cat", "Ana", "http://x/cover.png", "http://x/story.html")
        response = client.get("/gallery")
        assert response.status_code == 200
        assert "Moon Cat" in response.text
        assert "by Ana" in response.text
