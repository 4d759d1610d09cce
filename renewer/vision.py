import base64
import binascii
import json
from pydantic import BaseModel, ValidationError
from google import genai
from google.genai import types

from errors import RecognitionError


class CaptchaReading(BaseModel):
    text: str
    confidence: float = 0.0


PROMPT = """This image is a short CAPTCHA made of distorted characters (usually 4 digits or letters).
Read the characters exactly as shown, left to right, without spaces.

JSON response (no markdown):
{"text": "characters you read", "confidence": 0.0-1.0}"""


def decode_data_url(data_url: str) -> tuple[str, bytes]:
    """Split ``data:<mime>;base64,<payload>`` into (mime type, raw bytes)."""
    if not data_url.startswith("data:") or "," not in data_url:
        raise RecognitionError("image source is not a data URL")
    header, payload = data_url[5:].split(",", 1)
    parts = header.split(";")
    if "base64" not in parts[1:]:
        raise RecognitionError("only base64 data URLs are supported")
    mime_type = parts[0] or "image/png"
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RecognitionError(f"bad base64 payload: {e}") from e


def parse_reading(text: str) -> CaptchaReading:
    text = text.strip()
    # Remove markdown code blocks if present
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0].strip()
    try:
        return CaptchaReading(**json.loads(text))
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        raise RecognitionError(f"unparseable vision response: {e}") from e


class VisionRecognizer:
    """Gemini-backed alternative to the HTTP recognition service."""

    def __init__(self, api_key: str, model_name: str = "gemini-3-flash-preview"):
        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name

    async def recognize(self, image_data: str) -> str:
        mime_type, image_bytes = decode_data_url(image_data)
        print(f"    [vision] sending: {len(image_bytes)} byte {mime_type}, model={self.model_name}", flush=True)

        response = await self.client.aio.models.generate_content(
            model=self.model_name,
            contents=[
                types.Content(
                    role="user",
                    parts=[
                        types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                        types.Part.from_text(text=PROMPT),
                    ]
                )
            ],
            config=types.GenerateContentConfig(
                temperature=0.0,
                response_mime_type="application/json",
            )
        )

        usage = response.usage_metadata
        if usage is not None:
            print(f"    [vision] received: {usage.prompt_token_count} in / "
                  f"{usage.candidates_token_count} out tokens", flush=True)

        reading = parse_reading(response.text or "")
        print(f"    [vision] parsed: text={reading.text!r}, confidence={reading.confidence}", flush=True)
        return reading.text.strip()

    async def close(self) -> None:
        pass
