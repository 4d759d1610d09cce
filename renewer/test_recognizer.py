import pytest
from aiohttp import test_utils, web

from config import load_settings
from errors import RecognitionError
from recognizer import HttpRecognizer, build_recognizer


async def serve(handler):
    app = web.Application()
    app.router.add_post("/", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    return server


@pytest.mark.asyncio
async def test_posts_image_as_plain_text():
    seen = {}

    async def handler(request):
        seen["content_type"] = request.headers["Content-Type"]
        seen["body"] = await request.text()
        return web.Response(text=" 4821\n")

    server = await serve(handler)
    recognizer = HttpRecognizer(str(server.make_url("/")))
    try:
        assert await recognizer.recognize("data:image/png;base64,AAAA") == "4821"
    finally:
        await recognizer.close()
        await server.close()

    assert seen["content_type"].startswith("text/plain")
    assert seen["body"] == "data:image/png;base64,AAAA"


@pytest.mark.asyncio
async def test_non_200_is_recognition_error():
    async def handler(request):
        return web.Response(status=503, text="busy")

    server = await serve(handler)
    recognizer = HttpRecognizer(str(server.make_url("/")))
    try:
        with pytest.raises(RecognitionError, match="503"):
            await recognizer.recognize("data:image/png;base64,AAAA")
    finally:
        await recognizer.close()
        await server.close()


@pytest.mark.asyncio
async def test_close_is_safe_without_session():
    recognizer = HttpRecognizer("http://127.0.0.1:1/")
    await recognizer.close()
    assert recognizer.session is None


def test_build_http_recognizer():
    settings = load_settings(recognizer="http", recognizer_url="http://solver.local/")
    recognizer = build_recognizer(settings)
    assert isinstance(recognizer, HttpRecognizer)
    assert recognizer.url == "http://solver.local/"


def test_build_gemini_requires_key():
    with pytest.raises(ValueError):
        build_recognizer(load_settings(recognizer="gemini", gemini_api_key=None))


def test_build_unknown_recognizer():
    with pytest.raises(ValueError):
        build_recognizer(load_settings(recognizer="ocr"))
