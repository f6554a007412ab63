import asyncio
import io
from unittest.mock import patch

import pytest
import pytesseract
from PIL import Image

from exam_insight.core.exceptions import OcrEngineError
from exam_insight.services.ocr_engine import OcrEngineProvider, TesseractOcrEngine


def png_bytes() -> bytes:
    out = io.BytesIO()
    Image.new("RGB", (20, 10), "white").save(out, format="PNG")
    return out.getvalue()


@pytest.mark.anyio
async def test_concurrent_first_use_builds_one_engine(make_ocr_engine):
    built = []

    def factory():
        engine = make_ocr_engine(text="x")
        built.append(engine)
        return engine

    provider = OcrEngineProvider(factory)
    engines = await asyncio.gather(*(provider.get() for _ in range(5)))

    assert len(built) == 1
    assert built[0].init_calls == 1
    assert all(e is built[0] for e in engines)
    assert provider.ready


@pytest.mark.anyio
async def test_failed_init_is_retried_on_next_use(make_ocr_engine):
    attempts = []

    class Flaky:
        async def init(self):
            attempts.append(1)
            if len(attempts) == 1:
                raise OcrEngineError("not yet")

        async def recognize(self, image):
            raise NotImplementedError

        async def shutdown(self):
            pass

    provider = OcrEngineProvider(Flaky)
    with pytest.raises(OcrEngineError):
        await provider.get()
    assert not provider.ready

    await provider.get()
    assert provider.ready
    assert len(attempts) == 2


@pytest.mark.anyio
async def test_shutdown_releases_engine(ocr_provider, fake_ocr_engine):
    await ocr_provider.get()
    await ocr_provider.shutdown()

    assert fake_ocr_engine.shutdown_calls == 1
    assert not ocr_provider.ready
    # shutting down twice is harmless
    await ocr_provider.shutdown()
    assert fake_ocr_engine.shutdown_calls == 1


@pytest.mark.anyio
async def test_tesseract_init_without_binary():
    engine = TesseractOcrEngine()
    with patch(
        "exam_insight.services.ocr_engine.pytesseract.get_tesseract_version",
        side_effect=pytesseract.TesseractNotFoundError(),
    ):
        with pytest.raises(OcrEngineError):
            await engine.init()


@pytest.mark.anyio
async def test_tesseract_recognize_before_init():
    with pytest.raises(OcrEngineError):
        await TesseractOcrEngine().recognize(png_bytes())


@pytest.mark.anyio
async def test_tesseract_rebuilds_lines_and_averages_confidence():
    data = {
        "text": ["Explain", "stacks", "", "Define", "queues"],
        "block_num": [1, 1, 1, 1, 1],
        "par_num": [1, 1, 1, 2, 2],
        "line_num": [1, 1, 1, 1, 1],
        "conf": [90, 80, -1, 70, "60"],
    }
    engine = TesseractOcrEngine(language="eng")
    engine.version = "5.3.0"

    with patch(
        "exam_insight.services.ocr_engine.pytesseract.image_to_data", return_value=data
    ) as image_to_data:
        result = await engine.recognize(png_bytes())

    assert result.text == "Explain stacks\n\nDefine queues"
    assert result.confidence == 75
    assert image_to_data.call_args.kwargs["lang"] == "eng"
