"""Recognition backends: turn the CAPTCHA image data URL into text."""
import aiohttp

from errors import RecognitionError


class HttpRecognizer:
    """Plain-text HTTP recognition service.

    The request body is the image data URL as text; a 200 response carries the
    recognised characters.
    """

    def __init__(self, url: str, timeout: float = 30.0):
        self.url = url
        self.timeout = timeout
        self.session: aiohttp.ClientSession | None = None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.session

    async def recognize(self, image_data: str) -> str:
        session = await self._get_session()
        print(f"    [recognizer] sending {len(image_data)} chars to {self.url}", flush=True)
        async with session.post(
            self.url,
            data=image_data.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
        ) as resp:
            if resp.status != 200:
                raise RecognitionError(f"API error: {resp.status}")
            text = (await resp.text()).strip()
        print(f"    [recognizer] received: {text!r}", flush=True)
        return text

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None


def build_recognizer(settings):
    """Pick the backend named by ``settings.recognizer``."""
    if settings.recognizer == "http":
        return HttpRecognizer(settings.recognizer_url, timeout=settings.recognition_timeout)
    if settings.recognizer == "gemini":
        if not settings.gemini_api_key:
            raise ValueError("RECOGNIZER=gemini requires GEMINI_API_KEY")
        from vision import VisionRecognizer
        return VisionRecognizer(settings.gemini_api_key, model_name=settings.model_name)
    raise ValueError(f"Unknown recognizer: {settings.recognizer!r}")
