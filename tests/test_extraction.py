"""Tests for result extraction and output truncation."""

import base64
import threading

import pytest

from podstudio.jobs.extraction import ResultExtractor, decode_base64, truncate_output
from podstudio.results import LocalResultStore

from conftest import png_base64


@pytest.fixture
def results(tmp_path):
    return LocalResultStore(tmp_path / "results", public_prefix="/results")


class TestTruncation:
    def test_long_string_truncated(self):
        value = "a" * 1500
        assert truncate_output(value) == "a" * 100 + "... (1500 characters)"

    def test_boundary_kept_verbatim(self):
        value = "b" * 1000
        assert truncate_output(value) == value

    def test_recursive(self):
        output = {"image": "c" * 2000, "meta": {"seed": 42, "log": ["d" * 1001, "short"]}}
        truncated = truncate_output(output)
        assert truncated["image"].endswith("... (2000 characters)")
        assert truncated["meta"]["seed"] == 42
        assert truncated["meta"]["log"][0] == "d" * 100 + "... (1001 characters)"
        assert truncated["meta"]["log"][1] == "short"


class TestDecodeBase64:
    def test_rejects_short_urls_and_paths(self):
        assert decode_base64("aGVsbG8=") is None
        assert decode_base64("https://cdn.example/" + "x" * 200) is None
        assert decode_base64("/runpod-volume/output/" + "x" * 200) is None

    def test_rejects_non_base64(self):
        assert decode_base64("not base64 at all! " * 10) is None

    def test_data_uri(self):
        raw = b"\x00" * 200
        value = "data:image/png;base64," + base64.b64encode(raw).decode()
        assert decode_base64(value) == raw


class TestExtractor:
    @pytest.mark.asyncio(loop_scope="function")
    async def test_base64_beats_url(self, results):
        extractor = ResultExtractor(results)
        output = {"image_url": "https://cdn.example/x.png", "image": png_base64()}

        extracted = await extractor.extract("job1", output, ".png")

        assert extracted.source == "base64"
        assert extracted.result_url == "/results/job1.png"
        assert (results.base_dir / "job1.png").read_bytes().startswith(b"\x89PNG")

    @pytest.mark.asyncio(loop_scope="function")
    async def test_direct_url(self, results):
        extracted = await ResultExtractor(results).extract(
            "job2", {"video_url": "https://cdn.example/v.mp4"}, ".mp4"
        )
        assert extracted.source == "url"
        assert extracted.result_url == "https://cdn.example/v.mp4"

    @pytest.mark.asyncio(loop_scope="function")
    async def test_output_url(self, results):
        extracted = await ResultExtractor(results).extract(
            "job3", {"output_url": "https://cdn.example/out"}, ".png"
        )
        assert extracted.source == "output_url"
        assert extracted.to_options()["outputField"] == "output_url"

    @pytest.mark.asyncio(loop_scope="function")
    async def test_volume_path_downloaded(self, results):
        downloaded = []

        def download(key):
            downloaded.append(key)
            return b"video-bytes"

        extractor = ResultExtractor(results, download=download)
        extracted = await extractor.extract(
            "job4", {"video_path": "/runpod-volume/output/upscaled.mp4"}, ".mp4"
        )

        assert downloaded == ["output/upscaled.mp4"]
        assert extracted.source == "volume"
        assert extracted.result_url == "/results/job4.mp4"
        assert (results.base_dir / "job4.mp4").read_bytes() == b"video-bytes"

    @pytest.mark.asyncio(loop_scope="function")
    async def test_volume_download_failure_falls_back_to_placeholder(self, results):
        def download(key):
            raise RuntimeError("connection reset")

        extracted = await ResultExtractor(results, download=download).extract(
            "job5", {"video": "/runpod-volume/output/v.mp4"}, ".mp4"
        )
        assert extracted.source == "unidentified"
        assert extracted.result_url == "/api/results/job5.mp4"
        assert "connection reset" in extracted.notes[0]

    @pytest.mark.asyncio(loop_scope="function")
    async def test_unidentified_placeholder(self, results):
        extracted = await ResultExtractor(results).extract("job6", {"status": "done"}, ".png")

        assert extracted.result_url == "/api/results/job6.png"
        assert extracted.to_options() == {"outputSource": "unidentified"}

    @pytest.mark.asyncio(loop_scope="function")
    async def test_plain_string_output(self, results):
        extracted = await ResultExtractor(results).extract("job7", "https://cdn.example/r.png")
        assert extracted.source == "url"


class ThreadRecordingResults(LocalResultStore):
    def __init__(self, base_dir):
        super().__init__(base_dir)
        self.threads = []

    def save(self, file_name, data):
        self.threads.append(threading.get_ident())
        return super().save(file_name, data)


@pytest.mark.asyncio(loop_scope="function")
async def test_results_written_off_the_event_loop(tmp_path):
    results = ThreadRecordingResults(tmp_path / "results")
    extractor = ResultExtractor(results, download=lambda key: b"video-bytes")
    loop_thread = threading.get_ident()

    await extractor.extract("job8", {"image": png_base64()}, ".png")
    await extractor.extract("job9", {"video_path": "/runpod-volume/output/v.mp4"}, ".mp4")

    assert len(results.threads) == 2
    assert loop_thread not in results.threads
