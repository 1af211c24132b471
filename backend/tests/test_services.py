"""Service logic tests"""
import pytest
import hashlib
from datetime import datetime, timezone, timedelta
from unittest.mock import Mock, patch

import httpx

from app.core.security import hash_identifier, normalize_email
from app.models.billing import BillingPrice, BillingSubscription
from app.models.entitlement import Entitlement, PlanLimit
from app.services.captcha_service import verify_turnstile
from app.services.email_service import send_contact_email, validate_email_config
from app.services.entitlement_service import get_effective_limits, sync_entitlement
from app.services.identity_service import get_auth_user_email, get_user_from_access_token
from app.services.revalidation_service import revalidate_artist_cache
from app.utils.templates import (
    build_contact_subject, escape_html, render_contact_text, strip_newlines
)


@pytest.mark.critical
class TestIdentifierHashing:
    """Peppered hashing of sender identifiers"""

    def test_hash_is_sha256_of_value_and_pepper(self):
        expected = hashlib.sha256(b"alex@example.compepper").hexdigest()
        assert hash_identifier("alex@example.com", "pepper") == expected

    def test_pepper_changes_hash(self):
        assert hash_identifier("alex@example.com", "a") != hash_identifier("alex@example.com", "b")

    def test_normalize_email(self):
        assert normalize_email("  Alex@Example.COM ") == "alex@example.com"


@pytest.mark.high
class TestTemplates:
    """Email rendering and header safety"""

    def test_escape_html_escapes_ampersand_first(self):
        assert escape_html("&lt;") == "&amp;lt;"
        assert escape_html("<a href=\"x\">'</a>") == "&lt;a href=&quot;x&quot;&gt;&#039;&lt;/a&gt;"

    def test_strip_newlines(self):
        assert strip_newlines("a\r\nb\nc\rd") == "abcd"

    def test_subject_uses_sanitized_name(self):
        assert build_contact_subject("Alex <b>&</b>", "a@x.io") == "Sun Road: New message from Alex b /b"

    def test_subject_truncates_long_name(self):
        subject = build_contact_subject("A" * 60, "a@x.io")
        assert subject == f"Sun Road: New message from {'A' * 40}"

    def test_subject_falls_back_to_email(self):
        assert build_contact_subject("<>&", "a@x.io") == "Sun Road: New message from a@x.io"

    def test_text_body_drops_nul(self):
        text = render_contact_text("Alex", "a@x.io", "Hi", "  hello\0 world  ", "https://sunroad.io/artists/jane")
        assert "hello world" in text
        assert "\0" not in text


@pytest.mark.high
class TestEmailService:
    """Resend delivery"""

    def test_missing_api_key_is_reported(self, test_settings):
        test_settings.RESEND_API_KEY = ""
        is_valid, error = validate_email_config(test_settings)
        assert is_valid is False
        assert "RESEND_API_KEY" in error

    def test_send_contact_email(self, test_settings, mock_email_service):
        resend_id = send_contact_email(
            artist_email="delivered@resend.dev",
            artist_handle="jane-doe",
            from_name="Alex",
            from_email="alex@example.com",
            subject="Hello",
            message="A message long enough",
            settings=test_settings,
        )

        assert resend_id == "email_test123"
        params = mock_email_service.Emails.send.call_args[0][0]
        assert params["from"] == "Sun Road <notifications@auth.sunroad.io>"
        assert params["reply_to"] == "alex@example.com"
        assert "https://sunroad.io/artists/jane-doe" in params["html"]
        assert "https://sunroad.io/artists/jane-doe" in params["text"]

    def test_response_without_id_is_failure(self, test_settings, mock_email_service):
        mock_email_service.Emails.send.return_value = {}
        assert send_contact_email("delivered@resend.dev", "jane-doe", "Alex", "alex@example.com",
                                  "Hello", "A message long enough", test_settings) is None


@pytest.mark.critical
class TestCaptchaService:
    """Turnstile verification"""

    @patch('app.services.captcha_service.httpx.post')
    def test_success(self, mock_post, test_settings):
        mock_post.return_value = Mock(status_code=200, json=Mock(return_value={"success": True}))

        assert verify_turnstile("tok", "203.0.113.7", test_settings) == (True, None)
        form = mock_post.call_args.kwargs["data"]
        assert form == {"secret": "turnstile_test_secret", "response": "tok", "remoteip": "203.0.113.7"}

    @patch('app.services.captcha_service.httpx.post')
    def test_rejected_token(self, mock_post, test_settings):
        mock_post.return_value = Mock(
            status_code=200,
            json=Mock(return_value={"success": False, "error-codes": ["invalid-input-response"]})
        )
        assert verify_turnstile("tok", None, test_settings) == (False, "turnstile_failed")
        assert "remoteip" not in mock_post.call_args.kwargs["data"]

    @patch('app.services.captcha_service.httpx.post')
    def test_http_error(self, mock_post, test_settings):
        mock_post.return_value = Mock(status_code=503)
        assert verify_turnstile("tok", None, test_settings) == (False, "turnstile_http_error")

    @patch('app.services.captcha_service.httpx.post')
    def test_network_error(self, mock_post, test_settings):
        mock_post.side_effect = httpx.ConnectError("boom")
        assert verify_turnstile("tok", None, test_settings) == (False, "turnstile_http_error")


@pytest.mark.high
class TestIdentityService:
    """Supabase Auth lookups"""

    @pytest.fixture
    def auth_settings(self, test_settings):
        test_settings.SUPABASE_URL = "https://proj.supabase.co"
        test_settings.SUPABASE_SERVICE_ROLE_KEY = "service-role"
        return test_settings

    @patch('app.services.identity_service.httpx.get')
    def test_admin_email_lookup(self, mock_get, auth_settings):
        mock_get.return_value = Mock(status_code=200, json=Mock(return_value={"id": "u1", "email": "a@x.io"}))

        assert get_auth_user_email("u1", auth_settings) == "a@x.io"
        assert mock_get.call_args[0][0] == "https://proj.supabase.co/auth/v1/admin/users/u1"
        assert mock_get.call_args.kwargs["headers"]["Authorization"] == "Bearer service-role"

    @patch('app.services.identity_service.httpx.get')
    def test_admin_email_lookup_wrapped_user(self, mock_get, auth_settings):
        mock_get.return_value = Mock(status_code=200, json=Mock(return_value={"user": {"email": "b@x.io"}}))

        assert get_auth_user_email("u1", auth_settings) == "b@x.io"

    @patch('app.services.identity_service.httpx.get')
    def test_admin_lookup_uses_given_settings(self, mock_get, test_settings):
        test_settings.SUPABASE_URL = ""

        assert get_auth_user_email("u1", test_settings) is None
        mock_get.assert_not_called()

    @pytest.mark.parametrize("body", [
        Mock(status_code=200, json=Mock(side_effect=ValueError("not json"))),
        Mock(status_code=200, json=Mock(return_value={"user": None})),
        Mock(status_code=200, json=Mock(return_value=["a@x.io"])),
        Mock(status_code=200, json=Mock(return_value={"id": "u1", "email": None})),
    ])
    @patch('app.services.identity_service.httpx.get')
    def test_unreadable_admin_response_means_no_email(self, mock_get, body, auth_settings):
        mock_get.return_value = body

        assert get_auth_user_email("u1", auth_settings) is None

    @patch('app.services.identity_service.settings')
    @patch('app.services.identity_service.httpx.get')
    def test_access_token_rejected(self, mock_get, mock_settings):
        mock_settings.SUPABASE_URL = "https://proj.supabase.co"
        mock_get.return_value = Mock(status_code=401)

        assert get_user_from_access_token("Bearer bad") is None

    @patch('app.services.identity_service.settings')
    @patch('app.services.identity_service.httpx.get')
    def test_access_token_non_json_body(self, mock_get, mock_settings):
        mock_settings.SUPABASE_URL = "https://proj.supabase.co"
        mock_get.return_value = Mock(status_code=200, json=Mock(side_effect=ValueError("not json")))

        assert get_user_from_access_token("Bearer tok") is None


@pytest.mark.critical
class TestEntitlementService:
    """Plan resolution and entitlement sync"""

    def test_no_entitlement_means_free_plan(self, db_session, free_plan):
        limits = get_effective_limits("u1", db_session)
        assert limits.plan_key == "free"
        assert limits.can_receive_contact is False

    def test_missing_plan_limits_disables_contact(self, db_session):
        db_session.add(Entitlement(auth_user_id="u1", plan_key="legacy"))
        db_session.commit()

        assert get_effective_limits("u1", db_session).can_receive_contact is False

    def test_sync_uses_active_subscription(self, db_session, free_plan, pro_plan):
        db_session.add(BillingSubscription(
            stripe_subscription_id="sub_1", auth_user_id="u1", stripe_customer_id="cus_1",
            stripe_price_id="price_pro_monthly", status="active"
        ))
        db_session.commit()

        entitlement = sync_entitlement("u1", db_session)

        assert entitlement.plan_key == "pro"
        assert entitlement.source == "stripe"
        assert entitlement.stripe_subscription_id == "sub_1"
        assert get_effective_limits("u1", db_session).can_receive_contact is True

    @pytest.mark.parametrize("status", ["canceled", "past_due", "incomplete"])
    def test_sync_falls_back_to_free(self, db_session, free_plan, pro_plan, status):
        db_session.add(Entitlement(auth_user_id="u1", plan_key="pro", source="stripe"))
        db_session.add(BillingSubscription(
            stripe_subscription_id="sub_1", auth_user_id="u1", stripe_customer_id="cus_1",
            stripe_price_id="price_pro_monthly", status=status
        ))
        db_session.commit()

        entitlement = sync_entitlement("u1", db_session)

        assert entitlement.plan_key == "free"
        assert entitlement.source == "free"
        assert entitlement.stripe_subscription_id is None

    def test_sync_ignores_unknown_price(self, db_session, free_plan):
        db_session.add(BillingSubscription(
            stripe_subscription_id="sub_1", auth_user_id="u1", stripe_customer_id="cus_1",
            stripe_price_id="price_unknown", status="active"
        ))
        db_session.commit()

        assert sync_entitlement("u1", db_session).plan_key == "free"


@pytest.mark.medium
class TestRevalidationService:
    """Best-effort artist page revalidation"""

    @patch('app.services.revalidation_service.settings')
    @patch('app.services.revalidation_service.httpx.post')
    def test_posts_artist_tag(self, mock_post, mock_settings, db_session, artist):
        mock_settings.PUBLIC_SITE_URL = "https://sunroad.io"
        mock_settings.REVALIDATE_SECRET = "reval-secret"
        mock_settings.REVALIDATE_TIMEOUT_SECONDS = 5.0
        mock_post.return_value = Mock(status_code=200)

        assert revalidate_artist_cache(artist.auth_user_id, db_session) is True

        mock_post.assert_called_once_with(
            "https://sunroad.io/api/revalidate",
            json={"tags": ["artist:jane-doe"], "handle": "jane-doe"},
            headers={"x-revalidate-secret": "reval-secret"},
            timeout=5.0
        )

    @patch('app.services.revalidation_service.settings')
    @patch('app.services.revalidation_service.httpx.post')
    def test_timeout_is_swallowed(self, mock_post, mock_settings, db_session, artist):
        mock_settings.PUBLIC_SITE_URL = "https://sunroad.io"
        mock_settings.REVALIDATE_SECRET = "reval-secret"
        mock_settings.REVALIDATE_TIMEOUT_SECONDS = 5.0
        mock_post.side_effect = httpx.ReadTimeout("slow")

        assert revalidate_artist_cache(artist.auth_user_id, db_session) is False

    @patch('app.services.revalidation_service.settings')
    @patch('app.services.revalidation_service.httpx.post')
    def test_skipped_without_secret(self, mock_post, mock_settings, db_session, artist):
        mock_settings.PUBLIC_SITE_URL = "https://sunroad.io"
        mock_settings.REVALIDATE_SECRET = ""

        assert revalidate_artist_cache(artist.auth_user_id, db_session) is False
        mock_post.assert_not_called()
