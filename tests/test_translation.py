#!/usr/bin/env python3
"""
Translation backend tests (no network: requests sessions are faked).

Usage:
    python -m pytest tests/test_translation.py -v
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        import requests
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


class TestTranslateOrOriginal:
    """The conversion step never fails because of translation."""

    def test_failure_returns_original(self):
        from evalcore.translation import TranslationError, Translator, translate_or_original

        class Broken(Translator):
            def translate(self, text, target_lang="en"):
                raise TranslationError("down")

        assert translate_or_original(Broken(), "bonjour") == "bonjour"

    def test_unexpected_exception_returns_original(self):
        from evalcore.translation import Translator, translate_or_original

        class Buggy(Translator):
            def translate(self, text, target_lang="en"):
                raise KeyError("translations")

        assert translate_or_original(Buggy(), "bonjour") == "bonjour"

    def test_empty_result_returns_original(self):
        from evalcore.translation import Translator, translate_or_original

        class Empty(Translator):
            def translate(self, text, target_lang="en"):
                return ""

        assert translate_or_original(Empty(), "bonjour") == "bonjour"

    def test_success(self):
        from evalcore.translation import Translator, translate_or_original

        class Echo(Translator):
            def translate(self, text, target_lang="en"):
                return f"{target_lang}:{text}"

        assert translate_or_original(Echo(), "bonjour", "en") == "en:bonjour"


class TestGoogleTranslator:
    """Google Cloud Translation v2 backend."""

    def test_translated_text_is_extracted(self):
        from evalcore.translation import GOOGLE_TRANSLATE_URL, GoogleTranslator

        session = FakeSession(FakeResponse(payload={
            "data": {"translations": [{"translatedText": "Where is my parcel?"}]}
        }))
        translator = GoogleTranslator("key-123", session=session)

        assert translator.translate("Wo ist mein Paket?") == "Where is my parcel?"
        url, kwargs = session.calls[0]
        assert url == GOOGLE_TRANSLATE_URL
        assert kwargs["params"]["target"] == "en"
        assert kwargs["params"]["key"] == "key-123"

    def test_missing_key_raises(self):
        import pytest
        from evalcore.translation import GoogleTranslator, TranslationError

        session = FakeSession(FakeResponse(payload={}))
        with pytest.raises(TranslationError):
            GoogleTranslator("", session=session).translate("hola")
        assert session.calls == []

    def test_http_error_raises_translation_error(self):
        import pytest
        from evalcore.translation import GoogleTranslator, TranslationError

        session = FakeSession(FakeResponse(status_code=403, payload={"error": "denied"}))
        with pytest.raises(TranslationError):
            GoogleTranslator("key", session=session).translate("hola")

    def test_malformed_response_raises_translation_error(self):
        import pytest
        from evalcore.translation import GoogleTranslator, TranslationError

        session = FakeSession(FakeResponse(payload={"data": {}}))
        with pytest.raises(TranslationError):
            GoogleTranslator("key", session=session).translate("hola")

    def test_connection_error_raises_translation_error(self):
        import pytest
        import requests
        from evalcore.translation import GoogleTranslator, TranslationError

        session = FakeSession(error=requests.exceptions.ConnectionError("refused"))
        with pytest.raises(TranslationError):
            GoogleTranslator("key", session=session).translate("hola")


class TestDeepLTranslator:
    """DeepL backend."""

    def test_free_and_pro_endpoints(self):
        from evalcore.translation import DEEPL_API_URL, DEEPL_API_URL_PRO, detect_api_type

        assert detect_api_type("abc:fx") == DEEPL_API_URL
        assert detect_api_type("abc") == DEEPL_API_URL_PRO

    def test_english_target_is_regional(self):
        from evalcore.translation import DeepLTranslator

        session = FakeSession(FakeResponse(payload={"translations": [{"text": "Hello"}]}))
        assert DeepLTranslator("abc:fx", session=session).translate("Hallo") == "Hello"

        url, kwargs = session.calls[0]
        assert kwargs["json"]["target_lang"] == "EN-US"
        assert kwargs["json"]["text"] == ["Hallo"]
        assert kwargs["headers"]["Authorization"] == "DeepL-Auth-Key abc:fx"

    def test_quota_exceeded(self):
        import pytest
        from evalcore.translation import DeepLTranslator, TranslationError

        session = FakeSession(FakeResponse(status_code=456))
        with pytest.raises(TranslationError, match="QUOTA_EXCEEDED"):
            DeepLTranslator("abc", session=session).translate("Hallo")

    def test_whitespace_only_text_is_not_sent(self):
        from evalcore.translation import DeepLTranslator

        session = FakeSession(FakeResponse(payload={}))
        assert DeepLTranslator("abc", session=session).translate("   ") == "   "
        assert session.calls == []


class TestBuildTranslator:
    """Provider selection from TranslationConfig."""

    def test_providers(self):
        from evalcore.config import TranslationConfig
        from evalcore.translation import (
            DeepLTranslator, GoogleTranslator, NullTranslator, build_translator,
        )

        assert isinstance(build_translator(TranslationConfig(provider="google")), GoogleTranslator)
        assert isinstance(build_translator(TranslationConfig(provider="DeepL")), DeepLTranslator)
        assert isinstance(build_translator(TranslationConfig(provider="none")), NullTranslator)

    def test_unknown_provider(self):
        import pytest
        from evalcore.config import ConfigurationError, TranslationConfig
        from evalcore.translation import build_translator

        with pytest.raises(ConfigurationError):
            build_translator(TranslationConfig(provider="babelfish"))

    def test_non_ascii_heuristic(self):
        from evalcore.translation import might_not_be_english

        assert might_not_be_english("ça va") is True
        assert might_not_be_english("all ascii") is False
