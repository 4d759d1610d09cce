import os
from pathlib import Path
from dotenv import load_dotenv
from pydantic import BaseModel

# Load .env from project root (parent of renewer/)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


LOGIN_URL = os.getenv("VPS_LOGIN_URL", "https://secure.xserver.ne.jp/xapanel/login/xvps/")
RECOGNIZER = os.getenv("RECOGNIZER", "http")
RECOGNIZER_URL = os.getenv("RECOGNIZER_URL", "https://captcha-120546510085.asia-northeast1.run.app")
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
MODEL_NAME = os.getenv("MODEL_NAME", "gemini-3-flash-preview")
CREDENTIALS_PATH = Path(
    os.getenv("CREDENTIALS_PATH", str(Path.home() / ".vps_renewer" / "credentials.json"))
).expanduser()
MAX_TIME_SECONDS = int(os.getenv("MAX_TIME_SECONDS", "600"))
TOKEN_TIMEOUT_SECONDS = float(os.getenv("TOKEN_TIMEOUT_SECONDS", "60"))
SUBMIT_ON_TOKEN_TIMEOUT = _env_bool("SUBMIT_ON_TOKEN_TIMEOUT", True)
HEADLESS = _env_bool("HEADLESS", False)


class SiteSelectors(BaseModel):
    """Where things live on the control panel pages."""

    # Login
    member_id: str = "#memberid"
    password: str = "#user_password"
    login_form: str = "#login_area"
    login_error: str = ".errorMessage"
    login_function: str = "loginFunc"

    # Dashboard (class names, matched with BeautifulSoup)
    free_server_marker: str = "freeServerIco"
    expiry_class: str = "contract__term"
    detail_link_prefix: str = "/xapanel/xvps/server/detail?id="

    # Renewal request
    extend_button: str = '[formaction="/xapanel/xvps/server/freevps/extend/conf"]'

    # Challenge submit
    cloudflare_blockers: str = (
        '#cf-please-wait, #challenge-running, iframe[src*="challenges.cloudflare.com"]'
    )
    captcha_images: list[str] = ['img[src^="data:image"]', 'img[src^="data:"]']
    captcha_inputs: list[str] = [
        '[placeholder*="上の画像"]',
        '[name="authcode"]',
        'input[type="text"][maxlength="4"]',
    ]
    token_input: str = '[name="cf-turnstile-response"]'
    token_getter: str = (
        "() => { try { return window.turnstile?.getResponse?.() ?? null; } catch (e) { return null; } }"
    )
    submit_buttons: list[str] = ["#submit_button", 'input[type="submit"], button[type="submit"]']


class Settings(BaseModel):
    login_url: str = LOGIN_URL
    recognizer: str = RECOGNIZER
    recognizer_url: str = RECOGNIZER_URL
    gemini_api_key: str | None = GEMINI_API_KEY
    model_name: str = MODEL_NAME
    credentials_path: Path = CREDENTIALS_PATH
    timezone: str = "Asia/Tokyo"
    headless: bool = HEADLESS
    max_time_seconds: int = MAX_TIME_SECONDS

    # Recognition
    recognition_attempts: int = 3
    min_code_length: int = 4
    recognition_timeout: float = 30.0

    # Waits (seconds)
    cloudflare_timeout: float = 60.0
    cloudflare_poll_interval: float = 0.5
    token_timeout: float = TOKEN_TIMEOUT_SECONDS
    token_poll_interval: float = 1.0
    navigation_timeout: float = 30.0
    manual_login_timeout: float = 300.0
    navigation_poll_interval: float = 0.25

    # Fixed delays mirroring the panel's own pacing (seconds)
    login_submit_delay: float = 0.5
    navigation_delay: float = 1.0
    renewal_settle_delay: float = 1.0
    renewal_click_delay: float = 0.8
    submit_delay: float = 1.0
    status_clear_delay: float = 3.0

    # Submit even when the Turnstile token never shows up
    submit_on_token_timeout: bool = SUBMIT_ON_TOKEN_TIMEOUT
    max_page_runs: int = 10

    selectors: SiteSelectors = SiteSelectors()


def load_settings(**overrides) -> Settings:
    """Settings from the environment, with keyword overrides on top."""
    return Settings(**overrides)
