import asyncio
import io
import zipfile
import zlib

import aiofiles
import pytest

import zipflow
from zipflow import consts

pytestmark = pytest.mark.asyncio


class MemorySink:
    """
    async sink keeping every accepted chunk
    """

    def __init__(self, fail_on=None):
        self.chunks = []
        self.closed = False
        self.fail_on = fail_on

    async def write(self, chunk):
        await asyncio.sleep(0)
        if self.fail_on is not None and len(self.chunks) >= self.fail_on:
            raise ConnectionResetError("peer went away")
        self.chunks.append(bytes(chunk))

    async def close(self):
        self.closed = True

    def getvalue(self):
        return b"".join(self.chunks)


class DrainSink:
    """
    asyncio.StreamWriter like sink
    """

    def __init__(self):
        self.buf = io.BytesIO()
        self.drained = 0
        self.closed = False

    def write(self, chunk):
        self.buf.write(chunk)

    async def drain(self):
        self.drained += 1

    def close(self):
        self.closed = True

    async def wait_closed(self):
        pass


def read_zip(data):
    zf = zipfile.ZipFile(io.BytesIO(data))
    return dict((zi.filename, zf.read(zi.filename)) for zi in zf.infolist())


async def async_content(*parts):
    for part in parts:
        await asyncio.sleep(0)
        yield part


async def test_hello():
    sink = MemorySink()
    zw = zipflow.AioZipWriter(sink)
    await zw.add_file("a.txt", async_content(b"hel", b"lo"))
    await zw.finalize()
    assert sink.closed
    res = sink.getvalue()
    zf = zipfile.ZipFile(io.BytesIO(res))
    info = zf.getinfo("a.txt")
    assert info.compress_type == zipfile.ZIP_DEFLATED
    assert info.CRC == zlib.crc32(b"hello")
    assert zf.read("a.txt") == b"hello"
    cd_size = int.from_bytes(res[-10:-6], "little")
    assert cd_size == 46 + 5


async def test_offsets_follow_sink():
    sink = MemorySink()
    zw = zipflow.AioZipWriter(sink, close_sink=False)
    await zw.add_file("dir/a.txt", [b"aaaa" * 100])
    first_end = zw.offset
    assert first_end == len(sink.getvalue())
    await zw.add_file("dir/b.txt", async_content(b"b" * 10, b"c" * 10))
    assert zw.offset == len(sink.getvalue())
    await zw.finalize()
    assert not sink.closed

    res = sink.getvalue()
    infos = zipfile.ZipFile(io.BytesIO(res)).infolist()
    assert [i.filename for i in infos] == ["dir/a.txt", "dir/b.txt"]
    assert infos[0].header_offset == 0
    assert infos[1].header_offset == first_end
    assert res[first_end:first_end + 4] == consts.LF_MAGIC


async def test_large_content_one_byte_chunks():
    data = bytes(range(256)) * 20
    single = MemorySink()
    async with zipflow.AioZipWriter(single, queuesize=1) as zw:
        await zw.add_file("data.bin", [data])
    split = MemorySink()
    async with zipflow.AioZipWriter(split, queuesize=1) as zw:
        await zw.add_file(
            "data.bin", async_content(*(data[i:i + 1] for i in range(len(data)))))
    for sink in (single, split):
        info = zipfile.ZipFile(io.BytesIO(sink.getvalue())).getinfo("data.bin")
        assert info.CRC == zlib.crc32(data)
        assert read_zip(sink.getvalue()) == {"data.bin": data}


async def test_stream_writer_sink():
    sink = DrainSink()
    async with zipflow.AioZipWriter(sink) as zw:
        await zw.add_file("a.txt", [b"hello"])
    assert sink.closed
    assert sink.drained >= 3
    assert read_zip(sink.buf.getvalue()) == {"a.txt": b"hello"}


async def test_bytesio_sink():
    out = io.BytesIO()
    async with zipflow.AioZipWriter(out, close_sink=False) as zw:
        await zw.add_file("a.txt", io.BytesIO(b"line one\nline two\n"))
    assert read_zip(out.getvalue()) == {"a.txt": b"line one\nline two\n"}


async def test_aiofiles_sink(tmp_path):
    path = tmp_path / "out.zip"
    async with aiofiles.open(path, mode="wb") as fh:
        zw = zipflow.AioZipWriter(fh, close_sink=False)
        await zw.add_file("x/y.txt", async_content(b"foo ", b"bar"))
        await zw.finalize()
    with zipfile.ZipFile(path) as zf:
        assert zf.read("x/y.txt") == b"foo bar"


async def test_empty_archive():
    sink = MemorySink()
    zw = zipflow.AioZipWriter(sink)
    await zw.finalize()
    assert len(sink.getvalue()) == 22
    assert zipfile.ZipFile(io.BytesIO(sink.getvalue())).infolist() == []
    with pytest.raises(zipflow.InvalidStateError):
        await zw.finalize()
    with pytest.raises(zipflow.InvalidStateError):
        await zw.add_file("a.txt", [b"late"])


async def test_invalid_filename_writes_nothing():
    sink = MemorySink()
    zw = zipflow.AioZipWriter(sink)
    for name in ["", "a/../b?", "dir//a", "c:\\x", "a*"]:
        with pytest.raises(zipflow.InvalidFilenameError):
            await zw.add_file(name, [b"x"])
    assert sink.chunks == []
    assert zw.offset == 0
    await zw.add_file("ok.txt", [b"x"])
    await zw.finalize()
    assert read_zip(sink.getvalue()) == {"ok.txt": b"x"}


async def test_content_error_breaks_writer():
    async def content():
        yield b"first part"
        raise OSError("read failed")

    sink = MemorySink()
    zw = zipflow.AioZipWriter(sink)
    with pytest.raises(zipflow.ContentReadError) as exc_info:
        await zw.add_file("a.txt", content())
    assert isinstance(exc_info.value.__cause__, OSError)
    assert zw.file_count == 0
    with pytest.raises(zipflow.InvalidStateError):
        await zw.add_file("b.txt", [b"x"])
    with pytest.raises(zipflow.InvalidStateError):
        await zw.finalize()


async def test_non_bytes_chunk():
    zw = zipflow.AioZipWriter(MemorySink())
    with pytest.raises(zipflow.ContentReadError):
        await zw.add_file("a.txt", async_content("text"))


async def test_sink_error_stops_feeding():
    consumed = []

    async def content():
        for n in range(1000):
            consumed.append(n)
            yield bytes(range(256)) * 64

    sink = MemorySink(fail_on=2)
    zw = zipflow.AioZipWriter(sink, queuesize=1, compresslevel=0)
    with pytest.raises(zipflow.SinkWriteError) as exc_info:
        await zw.add_file("a.bin", content())
    assert isinstance(exc_info.value.__cause__, ConnectionResetError)
    # feed side was stopped by bounded queue, not run to the end
    assert len(consumed) < 1000
    assert zw.offset == len(sink.getvalue())
    with pytest.raises(zipflow.InvalidStateError):
        await zw.finalize()


async def test_concurrent_add_file_is_serialized():
    sink = MemorySink()
    zw = zipflow.AioZipWriter(sink)
    names = ["f%d.txt" % n for n in range(5)]
    await asyncio.gather(*(
        zw.add_file(name, async_content(name.encode() * 50, b"end"))
        for name in names))
    await zw.finalize()
    assert read_zip(sink.getvalue()) == dict(
        (name, name.encode() * 50 + b"end") for name in names)


async def test_aio_stream_sources(tmp_path):
    path = tmp_path / "plain.txt"
    path.write_bytes(b"foo baz bar")

    async def sources():
        yield {"file": str(path)}
        yield {"stream": async_content(b"async ", b"data"), "name": "a/async.txt"}
        yield {"stream": [b"sync ", b"data"], "name": "a/sync.txt"}

    zs = zipflow.AioZipStream(sources(), chunksize=3)
    res = b""
    async for chunk in zs.stream():
        res += chunk
    assert zs.offset == len(res)
    assert read_zip(res) == {
        "plain.txt": b"foo baz bar",
        "a/async.txt": b"async data",
        "a/sync.txt": b"sync data",
    }


async def test_aio_stream_list_into_aiofiles(tmp_path):
    out = tmp_path / "out.zip"
    files = [{"stream": [b"%d" % n] * 10, "name": "f%d" % n} for n in range(3)]
    zs = zipflow.AioZipStream(files)
    async with aiofiles.open(out, mode="wb") as fh:
        async for chunk in zs.stream():
            await fh.write(chunk)
    with zipfile.ZipFile(out) as zf:
        assert zf.namelist() == ["f0", "f1", "f2"]
        assert zf.read("f2") == b"2" * 10


async def test_aio_stream_error_propagates():
    async def content():
        yield b"data"
        raise ValueError("broken source")

    zs = zipflow.AioZipStream([
        {"stream": [b"ok"], "name": "ok.txt"},
        {"stream": content(), "name": "bad.txt"},
    ])
    res = b""
    with pytest.raises(zipflow.ContentReadError):
        async for chunk in zs.stream():
            res += chunk
    assert res.startswith(consts.LF_MAGIC)
    assert consts.CD_END_MAGIC not in res


async def test_aio_stream_counts_taken_chunks():
    files = [{"stream": async_content(b"%d" % n * 500, b"tail"),
              "name": "d/f%d.txt" % n} for n in range(3)]
    zs = zipflow.AioZipStream(files, queuesize=2)
    chunks = zs.stream()
    first = await chunks.__anext__()
    second = await chunks.__anext__()
    # second chunk is not taken until next one is requested
    assert zs.offset == len(first)
    res = first + second
    async for chunk in chunks:
        res += chunk
    assert zs.offset == len(res)
    assert zs.file_count == 3
    assert read_zip(res) == dict(
        ("d/f%d.txt" % n, b"%d" % n * 500 + b"tail") for n in range(3))


async def test_aio_stream_offset_kept_on_failure():
    async def content():
        yield b"data"
        raise ValueError("broken source")

    zs = zipflow.AioZipStream([
        {"stream": [b"ok"], "name": "ok.txt"},
        {"stream": content(), "name": "bad.txt"},
    ])
    res = b""
    with pytest.raises(zipflow.ContentReadError):
        async for chunk in zs.stream():
            res += chunk
    assert zs.offset == len(res)
    assert zs.file_count == 1


async def test_bytes_content_rejected_before_write():
    sink = MemorySink()
    zw = zipflow.AioZipWriter(sink)
    for content in (b"hello", memoryview(b"hello"), "hello"):
        with pytest.raises(zipflow.ContentReadError):
            await zw.add_file("a.txt", content)
    assert sink.chunks == []
    await zw.add_file("a.txt", [b"hello"])
    await zw.finalize()
    assert read_zip(sink.getvalue()) == {"a.txt": b"hello"}
