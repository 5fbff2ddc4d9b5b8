"""
Tests for dataset.py, pdf.py and content_probe.py (the file-system and
plain-HTTP side of a run).
"""

import asyncio
import json

import pytest
import requests

from sitescan import content_probe as content_probe_module
from sitescan import pdf as pdf_module
from sitescan.content_probe import ContentProbe, is_downloadable_response
from sitescan.dataset import Dataset
from sitescan.pdf import PdfDownloader, download_pdf

from fakes import FakeHttpResponse, fake_get

PDF_URL = "https://example.com/files/guide.pdf"


class TestDataset:

    def test_records_are_content_addressed(self, tmp_path):
        ds = Dataset(str(tmp_path), "run")
        key = ds.push_data({"url": "https://example.com/", "pageTitle": "Home"})

        assert (tmp_path / "run" / "datasets" / f"{key}.json").exists()
        assert ds.keys() == [key]
        assert list(ds.records()) == [{"url": "https://example.com/", "pageTitle": "Home"}]

    def test_same_record_same_key(self, tmp_path):
        ds = Dataset(str(tmp_path), "run")
        first = ds.push_data({"b": 1, "a": 2})
        second = ds.push_data({"a": 2, "b": 1})
        assert first == second
        assert len(ds) == 2
        assert len(list((tmp_path / "run" / "datasets").glob("*.json"))) == 1

    def test_index_keeps_insertion_order(self, tmp_path):
        ds = Dataset(str(tmp_path), "run")
        keys = [ds.push_data({"n": i}) for i in range(5)]
        assert ds.keys() == keys
        assert [r["n"] for r in ds.records()] == list(range(5))

    def test_empty(self, tmp_path):
        ds = Dataset(str(tmp_path), "run")
        assert len(ds) == 0
        assert list(ds.records()) == []

    def test_stored_json_is_canonical(self, tmp_path):
        ds = Dataset(str(tmp_path), "run")
        key = ds.push_data({"z": 1, "a": 1})
        text = (ds.path / f"{key}.json").read_text(encoding="utf-8")
        assert text == json.dumps({"a": 1, "z": 1})


class TestDownloadPdf:

    def test_valid_pdf(self, tmp_path, monkeypatch):
        monkeypatch.setattr(pdf_module.requests, "get", fake_get({
            PDF_URL: FakeHttpResponse(content=b"%PDF-1.4\n%%EOF"),
        }))
        handoff = download_pdf(PDF_URL, tmp_path)
        assert handoff.url == PDF_URL
        with open(handoff.downloaded_file_path, "rb") as fh:
            assert fh.read().startswith(b"%PDF")
        assert handoff.to_dict() == {"url": PDF_URL, "downloadedFilePath": handoff.downloaded_file_path}

    def test_html_masquerading_as_pdf(self, tmp_path, monkeypatch):
        monkeypatch.setattr(pdf_module.requests, "get", fake_get({
            PDF_URL: FakeHttpResponse(content=b"<!doctype html>"),
        }))
        assert download_pdf(PDF_URL, tmp_path) is None
        assert list(tmp_path.iterdir()) == []

    @pytest.mark.parametrize("route", [None, requests.ConnectionError("reset")])
    def test_failed_request(self, tmp_path, monkeypatch, route):
        routes = {} if route is None else {PDF_URL: route}
        monkeypatch.setattr(pdf_module.requests, "get", fake_get(routes))
        assert download_pdf(PDF_URL, tmp_path) is None
        assert list(tmp_path.iterdir()) == []

    def test_downloader_collects_handoffs(self, tmp_path, monkeypatch):
        monkeypatch.setattr(pdf_module.requests, "get", fake_get({
            PDF_URL: FakeHttpResponse(content=b"%PDF-1.7"),
        }))
        seen = []
        downloader = PdfDownloader(str(tmp_path), "run", on_downloaded=seen.append)

        handoff = asyncio.run(downloader.download_async(PDF_URL))

        assert downloader.handoffs == [handoff]
        assert seen == [handoff]
        assert handoff.downloaded_file_path.startswith(str(tmp_path / "run" / "pdfs"))


class TestContentProbe:

    @pytest.mark.parametrize("headers,expected", [
        ({"content-type": "text/html; charset=utf-8"}, False),
        ({"content-type": "text/plain"}, False),
        ({"content-type": "application/pdf"}, True),
        ({"content-type": "image/png"}, True),
        ({"content-type": "text/html", "content-disposition": "attachment; filename=x.html"}, True),
        ({}, False),
    ])
    def test_is_downloadable_response(self, headers, expected):
        assert is_downloadable_response(headers) is expected

    def test_results_are_cached(self, monkeypatch):
        calls = []

        def head(url, **kwargs):
            calls.append(url)
            return FakeHttpResponse(headers={"content-type": "application/octet-stream"})

        monkeypatch.setattr(content_probe_module.requests, "head", head)
        probe = ContentProbe()
        assert probe.is_processible("https://example.com/download") is False
        assert probe.is_processible("https://example.com/download") is False
        assert calls == ["https://example.com/download"]

    def test_zip_magic_bytes(self, monkeypatch):
        monkeypatch.setattr(content_probe_module.requests, "head",
                            lambda url, **kw: FakeHttpResponse(headers={"content-type": "text/html"}))
        monkeypatch.setattr(content_probe_module.requests, "get", fake_get({
            "https://example.com/bundle.zip": FakeHttpResponse(content=b"PK\x03\x04rest"),
        }))
        assert ContentProbe().is_processible("https://example.com/bundle.zip") is False

    def test_probe_failure_counts_as_processible(self, monkeypatch):
        def refuse(url, **kwargs):
            raise requests.Timeout("slow")
        monkeypatch.setattr(content_probe_module.requests, "head", refuse)
        assert asyncio.run(ContentProbe().is_processible_async("https://example.com/")) is True
