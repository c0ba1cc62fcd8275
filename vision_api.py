"""
AI vision client for cover analysis.
Sends a cover photo to OpenAI or Gemini and returns normalized catalog
metadata. Gemini calls go through a model cascade with a per-model cooldown
after rate limit hits.
"""

import base64
import io
import time

import requests
from PIL import Image, UnidentifiedImageError

from config import AISettings
from errors import AnalysisError, AnalysisTimeout, InvalidKey, MalformedResponse, RateLimited
from helpers import parse_ai_response

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
GEMINI_BASE = "https://generativelanguage.googleapis.com/v1beta"

ANALYSIS_MAX_SIZE = 1600
ANALYSIS_JPEG_QUALITY = 60

GEMINI_MODEL_MAP = {
    "flash": "gemini-1.5-flash",
    "pro": "gemini-1.5-pro",
    "flash-2": "gemini-2.0-flash-exp",
}

GEMINI_PREFERRED_ORDER = (
    "gemini-1.5-pro",
    "gemini-1.5-flash",
    "gemini-2.0-flash-exp",
)

GEMINI_FALLBACK_MODELS = ("gemini-1.5-flash", "gemini-1.5-pro")

METADATA_KEYS = (
    "- artist\n"
    "- title\n"
    "- genre\n"
    "- year (original release)\n"
    "- tracks (full list, newline separated)\n"
    "- group_members (key members, comma separated)\n"
    '- average_cost (Euro range, e.g. "€20-30", or "€150-200" for a rare first press. '
    'Never "Varies". If unsure use "€15-25".)\n'
    "- condition (visual estimate: Good/Fair/Mint)\n"
    '- label (record label, e.g. "Blue Note")\n'
    '- catalog_number (catalog ID on spine or back, e.g. "PCS 7027")\n'
    '- edition (e.g. "1st Press", "Reissue", "Red Vinyl", "Japanese Import")\n'
    "- notes (history of the album, trivia, recording context; 300-500 words)\n"
)

OPENAI_SYSTEM_PROMPT = (
    "You are an expert musicologist and professional vinyl appraiser. "
    "If the image shows a tracklist, transcribe it exactly as printed. "
    "Identify the edition from catalog numbers, barcodes, label logos and copyright dates. "
    "Value the record in EURO as a curated record store would, assuming VG+ to Near Mint. "
    "Common reissues are €20-35, vintage 70s/80s pressings €35-75, rare first presses €100 and up. "
    'Never answer "Varies", "Unknown" or use "$". Always return a Euro range.'
)


def _hint_text(hint) -> str:
    if not hint:
        return "Identify the album from the artwork."
    return f"The user states this is: '{hint}'. Verify this against the cover image."


def gemini_prompt(hint=None) -> str:
    return (
        f"Identify this vinyl album. {_hint_text(hint)}\n"
        "Once identified, use your knowledge of Discogs/MusicBrainz to fill in the metadata.\n"
        "If the image contains a tracklist, trust the image over the standard album version.\n"
        "Return JSON with these keys:\n"
        f"{METADATA_KEYS}"
        "Raw JSON only."
    )


def openai_prompt(hint=None) -> str:
    hint_line = f'Hint: "{hint}"' if hint else ""
    return (
        f"Analyze this vinyl record image. {hint_line}\n"
        "Return a single JSON object with these keys:\n"
        f"{METADATA_KEYS}"
        "If tracks are not visible, list the standard original LP tracks. "
        "Justify the price estimate in notes."
    )


def resize_for_analysis(data: bytes, max_size: int = ANALYSIS_MAX_SIZE,
                        quality: int = ANALYSIS_JPEG_QUALITY) -> bytes:
    """Fit the image into max_size x max_size and re-encode as JPEG."""
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise AnalysisError(f"Could not read image: {e}") from e

    img = img.convert("RGB")
    img.thumbnail((max_size, max_size), Image.LANCZOS)
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def _error_message(resp) -> str:
    try:
        data = resp.json()
    except ValueError:
        data = None
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return err["message"]
    return resp.reason or f"HTTP {resp.status_code}"


def _is_quota_message(msg: str) -> bool:
    msg = msg.lower()
    return "quota" in msg or "limit" in msg


def classify_http_error(status: int, msg: str) -> AnalysisError:
    """Map a provider error response to an AnalysisError subtype."""
    if status == 429 or _is_quota_message(msg):
        return RateLimited(msg)
    if status in (401, 403) or "api key" in msg.lower():
        return InvalidKey(msg)
    return AnalysisError(msg)


def filter_discovered_models(models) -> list:
    """
    Names of listed models usable for analysis: must support generateContent,
    Gemma, legacy 1.0 / gemini-pro and 8b variants are left out.
    """
    names = []
    for m in models or []:
        name = m.get("name") or ""
        methods = m.get("supportedGenerationMethods") or []
        if "generateContent" not in methods:
            continue
        if "gemma" in name.lower() or name.endswith("/gemini-pro") or "gemini-1.0" in name or "8b" in name:
            continue
        names.append(name.replace("models/", ""))
    return names


class GeminiModelCascade:
    """
    Ordered Gemini model candidates with a cooldown per model.

    A model that hits a rate limit is skipped until its cooldown expires.
    If every candidate is cooling down, all cooldowns are cleared and the
    preferred list is tried again.
    """

    def __init__(self, model_pref: str = "auto", cooldown: float = 60.0, clock=time.monotonic):
        self.cooldown = cooldown
        self.clock = clock
        self.cooldowns = {}
        self.preferred = list(GEMINI_PREFERRED_ORDER)
        forced = GEMINI_MODEL_MAP.get(model_pref)
        if forced:
            self.preferred = [forced] + [m for m in self.preferred if m != forced]

    def _rank(self, model: str) -> int:
        for i, p in enumerate(self.preferred):
            if p in model:
                return i
        return len(self.preferred)

    def ordered(self, available=None) -> list:
        """Discovered models sorted by preference, else the preferred list."""
        if available:
            return sorted(available, key=self._rank)
        return list(self.preferred) or list(GEMINI_FALLBACK_MODELS)

    def is_cooling(self, model: str) -> bool:
        expiry = self.cooldowns.get(model)
        return expiry is not None and self.clock() < expiry

    def cool_down(self, model: str):
        self.cooldowns[model] = self.clock() + self.cooldown

    def candidates(self, available=None) -> list:
        models = self.ordered(available)
        ready = []
        for m in models:
            if self.is_cooling(m):
                left = self.cooldowns[m] - self.clock()
                print(f"Skipping cooled-down model: {m} (active for {left:.0f}s)")
                continue
            ready.append(m)
        if not ready:
            print("All models in cooldown. Resetting and retrying preferred models.")
            self.cooldowns.clear()
            ready = list(self.preferred)
        return ready


class VisionAnalyzer:
    """
    Cover analysis against the configured provider.

    Raises RateLimited, InvalidKey, AnalysisTimeout or MalformedResponse
    (all AnalysisError) so the batch scheduler can decide whether to retry.
    """

    def __init__(self, settings: AISettings = None, session: requests.Session = None, clock=time.monotonic):
        self.settings = settings or AISettings()
        self.session = session or requests.Session()
        self.cascade = GeminiModelCascade(self.settings.gemini_model, self.settings.model_cooldown, clock)

    @property
    def provider(self) -> str:
        return self.settings.provider

    @property
    def has_api_key(self) -> bool:
        return bool(self.settings.api_key.strip())

    @property
    def is_turbo(self) -> bool:
        return self.settings.is_turbo

    # ---- entry points ----

    def analyze(self, image: bytes, mime_type: str = "image/jpeg", hint=None) -> dict:
        """Analyze raw image bytes. Returns normalized metadata."""
        if not self.has_api_key:
            raise InvalidKey(f"Missing {self.provider} API key")
        payload = base64.b64encode(resize_for_analysis(image)).decode("ascii")
        if self.provider == "openai":
            return self._analyze_openai(payload, "image/jpeg", hint)
        return self._analyze_gemini(payload, "image/jpeg", hint)

    def analyze_url(self, url: str, hint=None) -> dict:
        """Download an attached cover and analyze it."""
        sep = "&" if "?" in url else "?"
        try:
            r = self.session.get(f"{url}{sep}t={int(time.time() * 1000)}", timeout=self.settings.request_timeout)
            r.raise_for_status()
        except requests.Timeout as e:
            raise AnalysisTimeout(f"Image download timed out: {e}") from e
        except requests.RequestException as e:
            raise AnalysisError(f"Could not download image: {e}") from e
        mime = (r.headers.get("Content-Type") or "image/jpeg").split(";")[0]
        return self.analyze(r.content, mime, hint)

    def test_connection(self, provider: str = None, api_key: str = None) -> bool:
        """Minimal round trip with the given (or configured) provider and key."""
        provider = provider or self.provider
        key = (api_key if api_key is not None else (
            self.settings.openai_api_key if provider == "openai" else self.settings.gemini_api_key)).strip()
        if not key:
            raise InvalidKey("No API key provided")

        if provider == "openai":
            resp = self._post(OPENAI_URL, {
                "model": "gpt-4o-mini",
                "messages": [{"role": "user", "content": "Say 'OK'"}],
                "max_tokens": 5,
            }, headers={"Authorization": f"Bearer {key}"})
        else:
            model = GEMINI_MODEL_MAP["flash"]
            resp = self._post(f"{GEMINI_BASE}/models/{model}:generateContent", {
                "contents": [{"parts": [{"text": "Say OK"}]}],
            }, params={"key": key})

        if not resp.ok:
            raise classify_http_error(resp.status_code, _error_message(resp))
        return True

    # ---- providers ----

    def _post(self, url, body, headers=None, params=None):
        try:
            return self.session.post(url, json=body, headers=headers, params=params,
                                     timeout=self.settings.request_timeout)
        except requests.Timeout as e:
            raise AnalysisTimeout(f"Request timed out after {self.settings.request_timeout:g}s") from e
        except requests.RequestException as e:
            raise AnalysisError(f"Request failed: {e}") from e

    def list_gemini_models(self) -> list:
        """Models available to this key. Empty list when discovery fails."""
        key = self.settings.gemini_api_key.strip()
        try:
            r = self.session.get(f"{GEMINI_BASE}/models", params={"key": key},
                                 timeout=self.settings.request_timeout)
            models = filter_discovered_models(r.json().get("models"))
        except (requests.RequestException, ValueError) as e:
            print(f"Failed to list Gemini models, using built-in list: {e}")
            return []
        if models:
            print(f"Discovered Gemini models: {', '.join(models)}")
        return models

    def _analyze_gemini(self, b64: str, mime_type: str, hint=None) -> dict:
        key = self.settings.gemini_api_key.strip()
        available = self.list_gemini_models() if self.settings.discover_models else []
        candidates = self.cascade.candidates(available)
        body = {
            "contents": [{
                "parts": [
                    {"text": gemini_prompt(hint)},
                    {"inline_data": {"mime_type": mime_type, "data": b64}},
                ]
            }],
            "generationConfig": {"response_mime_type": "application/json", "temperature": 0},
        }

        last_error = None
        for model in candidates:
            print(f"Trying Gemini model: {model}...")
            try:
                resp = self._post(f"{GEMINI_BASE}/models/{model}:generateContent", body, params={"key": key})
                if not resp.ok:
                    msg = _error_message(resp)
                    if resp.status_code == 404 or "not found" in msg or "not supported" in msg:
                        print(f"Model {model} unavailable: {msg}. Trying next model...")
                        last_error = AnalysisError(msg)
                        continue
                    raise classify_http_error(resp.status_code, msg)

                data = resp.json()
                if data.get("error"):
                    raise classify_http_error(resp.status_code, data["error"].get("message", ""))
                try:
                    text = data["candidates"][0]["content"]["parts"][0]["text"]
                except (KeyError, IndexError, TypeError):
                    text = None
                if not text:
                    raise MalformedResponse("Empty response from AI")

                print(f"Success with model: {model}")
                return parse_ai_response(text)
            except InvalidKey:
                raise
            except RateLimited as e:
                print(f"Model {model} rate limited: {e}. Cooling down for {self.cascade.cooldown:g}s.")
                self.cascade.cool_down(model)
                last_error = e
            except ValueError as e:
                print(f"Model {model} returned invalid JSON: {e}")
                last_error = MalformedResponse(str(e))
            except AnalysisError as e:
                print(f"Model {model} failed: {e}")
                last_error = e

        if last_error is None:
            raise AnalysisError("All models failed. Check API key permissions")
        raise type(last_error)(f"All models failed. Last error: {last_error}")

    def _analyze_openai(self, b64: str, mime_type: str, hint=None) -> dict:
        key = self.settings.openai_api_key.strip()
        print(f"[OpenAI] Sending request (hint: {hint}, mime: {mime_type})")
        resp = self._post(OPENAI_URL, {
            "model": self.settings.openai_model,
            "messages": [
                {"role": "system", "content": OPENAI_SYSTEM_PROMPT},
                {"role": "user", "content": [
                    {"type": "text", "text": openai_prompt(hint)},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}", "detail": "high"}},
                ]},
            ],
            "response_format": {"type": "json_object"},
            "max_tokens": 3000,
            "temperature": 0.1,
        }, headers={"Authorization": f"Bearer {key}"})

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not resp.ok or data.get("error"):
            raise classify_http_error(resp.status_code, _error_message(resp))

        try:
            choice = data["choices"][0]
        except (KeyError, IndexError, TypeError):
            raise MalformedResponse("OpenAI returned no choices")
        message = choice.get("message") or {}
        if not message.get("content"):
            if message.get("refusal"):
                raise MalformedResponse(f"OpenAI refusal: {message['refusal']}")
            raise MalformedResponse(f"OpenAI returned empty content. Reason: {choice.get('finish_reason')}")
        if choice.get("finish_reason") == "length":
            raise MalformedResponse("AI response truncated. Try a simpler image.")
        return parse_ai_response(message["content"])
