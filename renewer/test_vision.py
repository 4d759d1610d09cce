import base64
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from errors import RecognitionError
from vision import CaptchaReading, VisionRecognizer, decode_data_url, parse_reading

PNG = b"\x89PNG\r\n\x1a\nfake"
DATA_URL = "data:image/png;base64," + base64.b64encode(PNG).decode()


def test_decode_data_url():
    mime, data = decode_data_url(DATA_URL)
    assert mime == "image/png"
    assert data == PNG


@pytest.mark.parametrize("bad", [
    "https://example.com/captcha.png",
    "data:image/png,rawtext",
    "data:image/png;base64,***",
])
def test_decode_rejects_bad_input(bad):
    with pytest.raises(RecognitionError):
        decode_data_url(bad)


def test_parse_reading_plain_json():
    reading = parse_reading('{"text": "4821", "confidence": 0.9}')
    assert reading == CaptchaReading(text="4821", confidence=0.9)


def test_parse_reading_strips_markdown_fence():
    reading = parse_reading('```json\n{"text": "AB12"}\n```')
    assert reading.text == "AB12"
    assert reading.confidence == 0.0


@pytest.mark.parametrize("bad", ["not json", '{"confidence": 1}', "[1, 2]"])
def test_parse_reading_rejects_garbage(bad):
    with pytest.raises(RecognitionError):
        parse_reading(bad)


@pytest.mark.asyncio
async def test_recognize_sends_image_and_returns_text():
    with patch("vision.genai.Client"):
        recognizer = VisionRecognizer(api_key="test-key", model_name="test-model")

    response = SimpleNamespace(
        text='{"text": " 4821 ", "confidence": 0.8}',
        usage_metadata=SimpleNamespace(prompt_token_count=10, candidates_token_count=5),
    )
    generate = AsyncMock(return_value=response)
    recognizer.client.aio.models.generate_content = generate

    assert await recognizer.recognize(DATA_URL) == "4821"

    kwargs = generate.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["config"].temperature == 0.0
    image_part = kwargs["contents"][0].parts[0]
    assert image_part.inline_data.data == PNG
    assert image_part.inline_data.mime_type == "image/png"


@pytest.mark.asyncio
async def test_recognize_raises_on_unparseable_reply():
    with patch("vision.genai.Client"):
        recognizer = VisionRecognizer(api_key="test-key")
    recognizer.client.aio.models.generate_content = AsyncMock(
        return_value=SimpleNamespace(text="I cannot read this", usage_metadata=None)
    )

    with pytest.raises(RecognitionError):
        await recognizer.recognize(DATA_URL)
