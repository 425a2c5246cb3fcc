"""Tests for large streams, long lines and many interruptions."""

import gzip
import json

import pytest

from jsonl_stream import FileLocation, Record, StreamConfig, stream_jsonl

URL = "https://data.example.com/large.jsonl"

COUNT = 10_000


@pytest.fixture(scope="module")
def large_body() -> bytes:
    """JSONL body with 10,000 records."""
    return b"".join(
        json.dumps({"id": i, "data": f"content_{i}"}).encode() + b"\n" for i in range(COUNT)
    )


@pytest.fixture(scope="module")
def variable_body() -> bytes:
    """JSONL body with a mix of short, medium and very long lines."""
    lines = []
    for i in range(2_000):
        if i % 100 == 0:
            data = "x" * 10_000
        elif i % 10 == 0:
            data = "y" * 1000
        else:
            data = f"short_{i}"
        lines.append(json.dumps({"id": i, "data": data}).encode() + b"\n")
    return b"".join(lines)


@pytest.fixture
def read_all(client_for, clock):
    """Collect every record of a FakeServer resource."""

    async def read(server, url=URL, **options) -> list[Record]:
        config = StreamConfig(url=url, **options)
        stream = stream_jsonl(config, client=client_for(server), sleep=clock.sleep, clock=clock)
        async with stream:
            return [record async for record in stream]

    return read


class TestLargeStream:
    """Tests for streaming many records."""

    async def test_streams_10k_records(self, make_server, read_all, large_body):
        records = await read_all(make_server(large_body, chunk_size=4096))

        assert len(records) == COUNT
        assert [r.value["id"] for r in records] == list(range(COUNT))
        assert records[-1].location == FileLocation(line=COUNT, byte_offset=len(large_body))

    async def test_locations_match_line_ends(self, make_server, read_all, large_body):
        """Every byte_offset points right after a newline of the body."""
        records = await read_all(make_server(large_body, chunk_size=777))

        for record in records[::250]:
            offset = record.location.byte_offset
            assert large_body[offset - 1 : offset] == b"\n"
            assert large_body[:offset].count(b"\n") == record.location.line

    @pytest.mark.parametrize("chunk_size", [1, 13, 4096, 65536])
    async def test_chunk_size_independent(self, make_server, read_all, large_body, chunk_size):
        body = large_body[:20_000]
        expected = await read_all(make_server(body, chunk_size=len(body)))
        assert await read_all(make_server(body, chunk_size=chunk_size)) == expected


class TestVariableLengthLines:
    """Tests for lines much longer than a network chunk."""

    async def test_long_lines_intact(self, make_server, read_all, variable_body):
        records = await read_all(make_server(variable_body, chunk_size=997))

        assert len(records) == 2_000
        assert records[0].value["data"] == "x" * 10_000
        assert records[10].value["data"] == "y" * 1000
        assert records[11].value["data"] == "short_11"

    async def test_resume_after_long_line(self, make_server, read_all, variable_body):
        full = await read_all(make_server(variable_body, chunk_size=8192))
        start = full[100].location

        resumed = await read_all(
            make_server(variable_body, chunk_size=8192), starting_location=start
        )
        assert resumed == full[101:]

    async def test_multibyte_characters_split_across_chunks(self, make_server, read_all):
        """UTF-8 sequences cut by chunk boundaries decode correctly."""
        texts = ["héllo", "日本語テキスト", "emoji 🎉🚀", "ÄÖÜß" * 50]
        body = b"".join(
            json.dumps({"text": t}, ensure_ascii=False).encode() + b"\n" for t in texts * 25
        )
        records = await read_all(make_server(body, chunk_size=3))

        assert [r.value["text"] for r in records] == texts * 25


class TestManyResumes:
    """Tests for resuming a large stream at many points."""

    @pytest.mark.parametrize("index", [0, 1, 999, 5_000, 9_998, 9_999])
    async def test_resume_at_record(self, make_server, read_all, large_body, index):
        """Resuming after record N yields exactly the records after it."""
        full = await read_all(make_server(large_body, chunk_size=8192))

        resumed = await read_all(
            make_server(large_body, chunk_size=8192),
            starting_location=full[index].location,
        )
        assert resumed == full[index + 1 :]

    async def test_many_connection_resets(self, make_server, read_all, large_body):
        """Twenty dropped connections lose and duplicate nothing."""
        server = make_server(large_body, chunk_size=1024)
        for _ in range(20):
            server.reset_after(15_000)
        records = await read_all(server)

        assert [r.value["id"] for r in records] == list(range(COUNT))
        assert len(server.gets) == 21
        assert all(r == f"bytes={15_000 * n}-" for n, r in enumerate(server.ranges) if n)

    async def test_gzip_with_resets(self, make_server, read_all, large_body):
        """Compressed streams replay from the start and skip delivered lines."""
        compressed = gzip.compress(large_body)
        server = make_server(compressed, chunk_size=1024, content_type="application/gzip")
        server.reset_after(len(compressed) // 3).reset_after(2 * len(compressed) // 3)

        records = await read_all(server, url=URL + ".gz")

        assert [r.value["id"] for r in records] == list(range(COUNT))
        assert records[-1].location == FileLocation(line=COUNT, byte_offset=len(large_body))
        assert server.ranges == [None, None, None]

    async def test_gzip_resume_at_record(self, make_server, read_all, large_body):
        compressed = gzip.compress(large_body)
        full = await read_all(
            make_server(compressed, chunk_size=4096, content_type="application/gzip"),
            url=URL + ".gz",
        )

        resumed = await read_all(
            make_server(compressed, chunk_size=4096, content_type="application/gzip"),
            url=URL + ".gz",
            starting_location=full[7_000].location,
        )
        assert [r.value["id"] for r in resumed] == list(range(7_001, COUNT))
