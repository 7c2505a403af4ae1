"""
End-to-end tests for the storefront.

Sessions, CSRF, uploads, identity resolution, error pages, rate limiting
and security headers, driven through the full middleware stack with the
in-memory Redis and recording object storage from conftest.
"""
import logging
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from storefront.core.rate_limit_config import limiter
from storefront.models.session_state import Session

from conftest import TEST_PASSWORD, TEST_UPLOAD_LIMIT, csrf_token, login, seed_identity, session_id_from

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


class TestSessions:
    """Session cookie issuance and store behaviour"""

    def test_first_visit_sets_cookie_once(self, client, fake_redis):
        first = client.get("/")
        assert first.status_code == 200
        cookie_header = first.headers.get("set-cookie", "").lower()
        assert cookie_header.startswith("shop.sid=")
        assert "httponly" in cookie_header
        assert "samesite=lax" in cookie_header
        assert "path=/" in cookie_header

        second = client.get("/")
        assert second.status_code == 200
        assert "set-cookie" not in second.headers

        session_id = session_id_from(client)
        assert f"sess:{session_id}" in fake_redis.data

    def test_forged_cookie_starts_new_session(self, client, fake_redis):
        client.cookies.set("shop.sid", "made-up-id.bogus-signature")

        response = client.get("/")

        assert response.status_code == 200
        assert "set-cookie" in response.headers
        assert "sess:made-up-id" not in fake_redis.data

    def test_session_data_survives_requests(self, client):
        token = csrf_token(client)

        client.post("/cart", data={"productId": "p1", "_csrf": token})
        response = client.get("/")

        assert response.json()["cart"] == ["p1"]

    def test_expired_record_behaves_like_no_cookie(self, client, fake_redis):
        client.get("/")
        old_id = session_id_from(client)

        key = f"sess:{old_id}"
        session = Session.model_validate_json(fake_redis.data[key])
        session.expires_at = session.created_at - timedelta(seconds=1)
        fake_redis.data[key] = session.model_dump_json()

        response = client.get("/")

        assert response.status_code == 200
        assert "set-cookie" in response.headers
        assert session_id_from(client) != old_id

    def test_session_store_down_on_load(self, client, fake_redis):
        client.get("/")
        fake_redis.fail_prefix = "sess:"

        response = client.get("/")

        assert response.status_code == 500
        assert response.json()["path"] == "/500"
        assert "redis" not in response.text.lower()

    def test_session_store_down_on_first_visit(self, client, fake_redis):
        fake_redis.fail_prefix = "sess:"

        response = client.get("/")

        assert response.status_code == 500
        assert "set-cookie" not in response.headers

    def test_health_check_creates_no_session(self, client, fake_redis):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["services"]["RedisService"]["healthy"] is True
        assert "set-cookie" not in response.headers
        assert not [k for k in fake_redis.data if k.startswith("sess:")]


class TestCsrf:
    """Anti-forgery protection on mutating requests"""

    def test_post_without_token_is_forbidden(self, client):
        client.get("/")

        response = client.post("/cart", data={"productId": "p1"})

        assert response.status_code == 403
        assert response.json()["pageTitle"] == "Forbidden"
        assert client.get("/").json()["cart"] == []

    def test_post_without_any_session_is_forbidden(self, client):
        response = client.post("/cart", data={"productId": "p1", "_csrf": "x.y"})

        assert response.status_code == 403
        # The rejection still hands out a session for the next attempt
        assert "set-cookie" in response.headers

    def test_token_is_reusable(self, client):
        token = csrf_token(client)

        first = client.post("/cart", data={"productId": "p1", "_csrf": token})
        second = client.post("/cart", data={"productId": "p2", "_csrf": token})

        assert first.status_code == 200
        assert second.status_code == 200
        assert second.json()["cart"] == ["p1", "p2"]

    def test_token_in_header(self, client):
        token = csrf_token(client)

        response = client.post("/cart", data={"productId": "p1"}, headers={"X-CSRF-Token": token})

        assert response.status_code == 200

    def test_token_from_other_session_is_forbidden(self, app, client):
        foreign_token = csrf_token(client)

        other = TestClient(app)
        other.get("/")
        response = other.post("/cart", data={"productId": "p1", "_csrf": foreign_token})

        assert response.status_code == 403

    def test_safe_methods_need_no_token(self, client):
        assert client.get("/").status_code == 200
        assert client.get("/login").status_code == 200

    def test_token_is_rendered_into_every_page(self, client):
        assert client.get("/").json()["csrfToken"]
        assert client.get("/login").json()["csrfToken"]


class TestAuthentication:
    """Login, logout, signup and identity resolution"""

    def test_login_resolves_identity(self, client, fake_redis):
        identity = seed_identity(fake_redis)

        response = login(client)

        assert response.status_code == 200
        body = response.json()
        assert body["isAuthenticated"] is True
        assert body["user"]["id"] == identity.id
        assert body["user"]["email"] == "shopper@example.com"
        assert "password_hash" not in body["user"]

    def test_login_rotates_csrf_secret(self, client, fake_redis):
        seed_identity(fake_redis)
        token_before_login = csrf_token(client)

        login(client)

        rejected = client.post("/cart", data={"productId": "p1", "_csrf": token_before_login})
        assert rejected.status_code == 403

        accepted = client.post("/cart", data={"productId": "p1", "_csrf": csrf_token(client)})
        assert accepted.status_code == 200

    def test_failed_login_flashes_error(self, client, fake_redis):
        seed_identity(fake_redis)

        response = client.post(
            "/login",
            data={"email": "shopper@example.com", "password": "wrong", "_csrf": csrf_token(client)},
            follow_redirects=False
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/login"

        page = client.get("/login").json()
        assert page["errorMessage"] == "Invalid email or password."
        assert page["isAuthenticated"] is False

        # Flash messages are shown once
        assert client.get("/login").json()["errorMessage"] is None

    def test_logout_destroys_session(self, app, client, fake_redis):
        seed_identity(fake_redis)
        login(client)
        old_cookie = client.cookies.get("shop.sid")
        old_id = session_id_from(client)

        response = client.post("/logout", headers={"X-CSRF-Token": csrf_token(client)}, follow_redirects=False)

        assert response.status_code == 303
        assert f"sess:{old_id}" not in fake_redis.data

        replay = TestClient(app)
        replay.cookies.set("shop.sid", old_cookie)
        page = replay.get("/")

        assert page.status_code == 200
        assert page.json()["isAuthenticated"] is False
        assert page.json()["user"] is None
        assert "set-cookie" in page.headers

    def test_deleted_user_continues_anonymous(self, client, fake_redis):
        identity = seed_identity(fake_redis)
        login(client)
        del fake_redis.data[f"user:{identity.id}"]

        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["user"] is None
        assert response.json()["isAuthenticated"] is False
        assert client.get("/does-not-exist").json()["isAuthenticated"] is False

    def test_login_issues_new_session_id(self, app, client, fake_redis):
        identity = seed_identity(fake_redis)
        client.get("/")
        planted_cookie = client.cookies.get("shop.sid")
        planted_id = session_id_from(client)

        response = client.post(
            "/login",
            data={"email": "shopper@example.com", "password": TEST_PASSWORD, "_csrf": csrf_token(client)},
            follow_redirects=False
        )

        assert response.status_code == 303
        assert "set-cookie" in response.headers
        new_id = session_id_from(client)
        assert new_id != planted_id
        assert f"sess:{planted_id}" not in fake_redis.data
        assert f"sess:{new_id}" in fake_redis.data

        # Whoever still holds the pre-login cookie does not ride along
        other = TestClient(app)
        other.cookies.set("shop.sid", planted_cookie)
        page = other.get("/").json()
        assert page["isAuthenticated"] is False
        assert page["user"] is None

        assert client.get("/").json()["user"]["id"] == identity.id

    def test_session_contents_survive_login(self, client, fake_redis):
        seed_identity(fake_redis)
        client.post("/cart", data={"productId": "p1", "_csrf": csrf_token(client)})

        page = login(client)

        assert page.json()["cart"] == ["p1"]

    def test_identity_store_down_is_server_error(self, client, fake_redis):
        seed_identity(fake_redis)
        login(client)
        fake_redis.fail_prefix = "user:"

        response = client.get("/")

        assert response.status_code == 500
        assert response.json()["path"] == "/500"

    def test_anonymous_request_never_touches_identity_store(self, client, fake_redis):
        fake_redis.fail_prefix = "user:"

        assert client.get("/").status_code == 200

    def test_signup_then_login(self, client):
        token = csrf_token(client)

        response = client.post(
            "/signup",
            data={
                "email": "new@example.com",
                "password": "a-new-password",
                "confirmPassword": "a-new-password",
                "_csrf": token
            },
            follow_redirects=False
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/login"
        assert client.get("/login").json()["messages"] == ["Account created, please log in."]

        page = login(client, email="new@example.com", password="a-new-password")
        assert page.json()["user"]["email"] == "new@example.com"

    def test_signup_password_mismatch(self, client):
        response = client.post(
            "/signup",
            data={"email": "new@example.com", "password": "a", "confirmPassword": "b", "_csrf": csrf_token(client)}
        )

        assert response.status_code == 422
        assert response.json()["errorMessage"] == "Passwords have to match!"

    def test_signup_duplicate_email(self, client, fake_redis):
        seed_identity(fake_redis, email="taken@example.com")

        response = client.post(
            "/signup",
            data={
                "email": "taken@example.com",
                "password": TEST_PASSWORD,
                "confirmPassword": TEST_PASSWORD,
                "_csrf": csrf_token(client)
            }
        )

        assert response.status_code == 422
        assert response.json()["errorMessage"] == "E-Mail exists already"


class TestUploads:
    """Image uploads on the add-product form"""

    def add_product(self, client, files, token=None):
        return client.post(
            "/admin/add-product",
            data={"title": "Mug", "price": "9.99", "_csrf": token or csrf_token(client)},
            files=files,
            follow_redirects=False
        )

    def test_png_is_stored_and_key_published(self, client, fake_redis, storage):
        identity = seed_identity(fake_redis)
        login(client)

        response = self.add_product(client, {"image": ("mug.png", PNG, "image/png")})

        assert response.status_code == 201
        product = response.json()["product"]
        assert product["imageKey"].endswith(".png")
        assert "mug" not in product["imageKey"]
        assert product["imageUrl"].endswith(product["imageKey"])
        assert product["userId"] == identity.id
        assert storage.calls == [(product["imageKey"], {"fieldName": "image"}, "image/png")]
        assert storage.objects[product["imageKey"]] == PNG

    def test_jpeg_is_stored(self, client, fake_redis, storage):
        seed_identity(fake_redis)
        login(client)

        response = self.add_product(client, {"image": ("mug.jpeg", b"\xff\xd8\xff", "image/jpeg")})

        assert response.status_code == 201
        assert response.json()["product"]["imageKey"].endswith(".jpg")

    def test_disallowed_type_reaches_route_without_key(self, client, fake_redis, storage):
        seed_identity(fake_redis)
        login(client)

        response = self.add_product(client, {"image": ("anim.gif", b"GIF89a", "image/gif")})

        assert response.status_code == 422
        assert response.json()["errorMessage"] == "Attached file is not an image."
        assert storage.calls == []

    def test_disallowed_type_does_not_fail_other_routes(self, client, storage):
        response = client.post(
            "/cart",
            data={"productId": "p1", "_csrf": csrf_token(client)},
            files={"image": ("anim.gif", b"GIF89a", "image/gif")}
        )

        assert response.status_code == 200
        assert storage.calls == []

    def test_csrf_failure_stores_nothing(self, client, fake_redis, storage):
        seed_identity(fake_redis)
        login(client)

        response = self.add_product(client, {"image": ("mug.png", PNG, "image/png")}, token="forged.token")

        assert response.status_code == 403
        assert storage.calls == []

    def test_file_in_unexpected_field_is_rejected(self, client, storage):
        token = csrf_token(client)

        response = self.add_product(client, {"avatar": ("me.png", PNG, "image/png")}, token=token)

        assert response.status_code == 400
        assert storage.calls == []

    def test_storage_failure_is_server_error(self, client, fake_redis, storage):
        seed_identity(fake_redis)
        login(client)
        storage.fail = True

        response = self.add_product(client, {"image": ("mug.png", PNG, "image/png")})

        assert response.status_code == 500
        assert "imageKey" not in response.text

    def test_anonymous_add_product_redirects_to_login(self, client):
        response = self.add_product(client, {"image": ("mug.png", PNG, "image/png")})

        assert response.status_code == 303
        assert response.headers["location"] == "/login"

    def test_file_at_the_limit_is_stored(self, client, fake_redis, storage):
        seed_identity(fake_redis)
        login(client)
        image = PNG + b"\x00" * (TEST_UPLOAD_LIMIT - len(PNG))

        response = self.add_product(client, {"image": ("mug.png", image, "image/png")})

        assert response.status_code == 201
        assert storage.objects[response.json()["product"]["imageKey"]] == image

    def test_oversized_file_is_rejected(self, client, fake_redis, storage):
        seed_identity(fake_redis)
        login(client)
        image = PNG + b"\x00" * TEST_UPLOAD_LIMIT

        response = self.add_product(client, {"image": ("huge.png", image, "image/png")})

        assert response.status_code == 413
        assert response.json()["pageTitle"] == "Payload Too Large"
        assert response.json()["detail"] == "The uploaded file is too large."
        assert storage.calls == []

    def test_oversized_body_is_rejected_before_decoding(self, client, fake_redis, storage):
        seed_identity(fake_redis)
        login(client)
        image = PNG + b"\x00" * (4 * TEST_UPLOAD_LIMIT)

        response = self.add_product(client, {"image": ("huge.png", image, "image/png")})

        assert response.status_code == 413
        assert storage.calls == []

    def test_form_without_content_length_is_refused(self, client, storage):
        token = csrf_token(client)

        response = client.post(
            "/cart",
            content=iter([f"productId=p1&_csrf={token}".encode()]),
            headers={"content-type": "application/x-www-form-urlencoded"}
        )

        assert response.status_code == 411
        assert response.json()["pageTitle"] == "Length Required"
        assert client.get("/").json()["cart"] == []


class TestErrorPages:

    def test_500_page(self, client):
        response = client.get("/500")

        assert response.status_code == 500
        assert response.json()["pageTitle"] == "Server Error"

    def test_404_page(self, client):
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.json()["pageTitle"] == "Page Not Found"
        assert response.json()["isAuthenticated"] is False

    def test_security_headers_on_every_response(self, client):
        for path in ("/", "/does-not-exist", "/500", "/health"):
            response = client.get(path)
            assert response.headers["X-Content-Type-Options"] == "nosniff"
            assert response.headers["X-Frame-Options"] == "DENY"


class TestRateLimiting:

    @pytest.fixture
    def rate_limited(self):
        limiter.enabled = True
        limiter.reset()
        yield
        limiter.reset()
        limiter.enabled = False

    def test_login_attempts_are_limited(self, client, rate_limited):
        token = csrf_token(client)
        form = {"email": "shopper@example.com", "password": "guess", "_csrf": token}

        statuses = [client.post("/login", data=form, follow_redirects=False).status_code for _ in range(11)]

        assert statuses[:10] == [303] * 10
        assert statuses[10] == 429


class TestFailureLogging:
    """Rejections and outages are logged as different families"""

    def test_rejection_and_outage_carry_different_tags(self, client, fake_redis, caplog):
        client.get("/")

        with caplog.at_level(logging.WARNING):
            client.post("/cart", data={"productId": "p1"})
            fake_redis.fail_prefix = "sess:"
            client.get("/")

        tagged = [(r.levelno, r.failure) for r in caplog.records if hasattr(r, "failure")]
        assert (logging.WARNING, "validation") in tagged
        assert (logging.ERROR, "infrastructure") in tagged
        assert (logging.WARNING, "infrastructure") not in tagged
        assert (logging.ERROR, "validation") not in tagged
