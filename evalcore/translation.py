"""
Translation backends used when converting datasets.

The evaluation service expects English conversations, so every row goes
through a translator on its way into JSONL. Translation is best effort:
translate_or_original() never lets a failure escape and hands back the
original text instead.

Backends:
    - google: Google Cloud Translation v2 (GOOGLE_API_KEY)
    - deepl:  DeepL free/pro API (DEEPL_API_KEY)
    - none:   returns the text unchanged
"""

import re
from typing import Optional

import requests

from evalcore.config import ConfigurationError, TranslationConfig
from evalcore.logging_config import DebugLogger

log = DebugLogger("translation")

GOOGLE_TRANSLATE_URL = "https://translation.googleapis.com/language/translate/v2"
DEEPL_API_URL = "https://api-free.deepl.com/v2/translate"  # Free API endpoint
DEEPL_API_URL_PRO = "https://api.deepl.com/v2/translate"   # Pro API endpoint

NON_ASCII_RE = re.compile(r"[^\x00-\x7F]")


class TranslationError(Exception):
    """A translation call could not produce a result."""


def might_not_be_english(text: str) -> bool:
    """Cheap heuristic: any non-ASCII character."""
    return bool(NON_ASCII_RE.search(text))


def clean_text_for_api(text: str) -> str:
    """Clean text to avoid API errors."""
    text = text.replace('\x00', '')
    # Normalize whitespace but preserve newlines
    text = re.sub(r'[^\S\n]+', ' ', text)
    # Remove any control characters except newline and tab
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


class Translator:
    """Base translator. Subclasses raise TranslationError on failure."""

    name = "base"

    def translate(self, text: str, target_lang: str = "en") -> str:
        raise NotImplementedError


class NullTranslator(Translator):
    name = "none"

    def translate(self, text: str, target_lang: str = "en") -> str:
        return text


class GoogleTranslator(Translator):
    name = "google"

    def __init__(self, api_key: str, timeout: float = 60, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def translate(self, text: str, target_lang: str = "en") -> str:
        if not self.api_key:
            raise TranslationError("Google API key not found, skipping translation")

        params = {
            "q": text,
            "target": target_lang,
            "format": "text",
            "key": self.api_key,
        }
        try:
            response = self.session.post(GOOGLE_TRANSLATE_URL, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()["data"]["translations"][0]["translatedText"]
        except requests.exceptions.RequestException as e:
            raise TranslationError(f"Google translation request failed: {e}") from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise TranslationError(f"Unexpected Google translation response: {e}") from e


def detect_api_type(api_key: str) -> str:
    """Detect if API key is free or pro based on suffix."""
    # Free API keys end with ":fx"
    if api_key.strip().endswith(":fx"):
        return DEEPL_API_URL
    return DEEPL_API_URL_PRO


class DeepLTranslator(Translator):
    name = "deepl"

    def __init__(self, api_key: str, timeout: float = 60, session: Optional[requests.Session] = None):
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def translate(self, text: str, target_lang: str = "en") -> str:
        if not self.api_key:
            raise TranslationError("DeepL API key not found, skipping translation")

        clean_text = clean_text_for_api(text)
        if not clean_text:
            return text

        headers = {
            "Authorization": f"DeepL-Auth-Key {self.api_key}",
            "Content-Type": "application/json",
        }
        # DeepL wants EN-US / EN-GB for English targets
        target = target_lang.upper()
        if target == "EN":
            target = "EN-US"
        data = {
            "text": [clean_text],
            "target_lang": target,
            "preserve_formatting": True,
        }

        try:
            response = self.session.post(
                detect_api_type(self.api_key), headers=headers, json=data, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise TranslationError(f"DeepL request failed: {e}") from e

        if response.status_code == 456:
            raise TranslationError("QUOTA_EXCEEDED")
        if response.status_code == 403:
            raise TranslationError("UNAUTHORIZED")
        if response.status_code == 400:
            try:
                detail = response.json().get("message", "Unknown")
            except ValueError:
                detail = response.text[:200]
            raise TranslationError(f"400 Bad Request: {detail}")
        if response.status_code >= 400:
            raise TranslationError(f"DeepL error {response.status_code}")

        try:
            return response.json()["translations"][0]["text"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise TranslationError(f"Unexpected DeepL response: {e}") from e


def build_translator(config: TranslationConfig) -> Translator:
    """Pick a translation backend from configuration."""
    provider = (config.provider or "none").lower()
    if provider == "google":
        return GoogleTranslator(config.google_api_key, timeout=config.timeout)
    if provider == "deepl":
        return DeepLTranslator(config.deepl_api_key, timeout=config.timeout)
    if provider == "none":
        return NullTranslator()
    raise ConfigurationError(f"Unknown translation provider: {config.provider}")


def translate_or_original(translator: Translator, text: str, target_lang: str = "en") -> str:
    """
    Translate text, falling back to the original on any failure.

    A translator that returns an empty string for non-empty input is treated
    as a failure too.
    """
    if not text:
        return text
    try:
        translated = translator.translate(text, target_lang)
    except Exception as e:
        log.warning(f"Translation error ({translator.name}): {e}; keeping original text")
        return text
    if not translated:
        log.warning(f"Empty translation from {translator.name}; keeping original text")
        return text
    log.translate("done", provider=translator.name, chars=len(text))
    return translated
