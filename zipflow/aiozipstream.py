#
# ZIP File streaming
# based on official ZIP File Format Specification version 6.3.4
# https://pkware.cachefly.net/webdocs/casestudies/APPNOTE.TXT
#
import asyncio
import inspect
import logging
from concurrent import futures

import aiofiles

from .errors import ContentReadError, SinkWriteError, ZipFlowError
from .zipstream import BYTES_TYPES, Processor, ZipBase


__all__ = ("AioZipWriter", "AioZipStream")

log = logging.getLogger(__name__)

# end of compressed data in feed -> drain queue
_EOF = None


class AioZipWriter(ZipBase):
    """
    Asynchronous version of ZipWriter

    sink - object with write(bytes) method, which can be a coroutine
           (aiofiles), a plain method followed by drain() coroutine
           (asyncio.StreamWriter) or a plain method (io.BytesIO)
    close_sink - close sink after archive is finalized
    queuesize - how many compressed chunks can wait for the sink
    """

    def __init__(self, sink, close_sink=True, queuesize=4, **kwargs):
        super(AioZipWriter, self).__init__(**kwargs)
        self._sink = sink
        self.close_sink = close_sink
        self.queuesize = queuesize
        # add_file and finalize never run interleaved
        self._lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            await self.finalize()
        else:
            self._shutdown_executor()

    def __get_executor(self):
        # get thread pool executor
        try:
            return self.__tpex
        except AttributeError:
            self.__tpex = futures.ThreadPoolExecutor(max_workers=1)
            return self.__tpex

    def _shutdown_executor(self):
        try:
            tpex = self.__tpex
        except AttributeError:
            return
        del self.__tpex
        tpex.shutdown(wait=False)

    async def _execute_aio_task(self, task, *args):
        # run synchronous task in separate thread and await for result
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self.__get_executor(), task, *args)

    async def _write(self, chunk):
        try:
            result = self._sink.write(chunk)
            if inspect.isawaitable(result):
                await result
            drain = getattr(self._sink, 'drain', None)
            if drain is not None:
                await drain()
        except Exception as e:
            raise SinkWriteError('Writing to sink failed: %s' % e) from e
        self._offset_add(len(chunk))

    async def _close_sink(self):
        try:
            result = self._sink.close()
            if inspect.isawaitable(result):
                await result
            wait_closed = getattr(self._sink, 'wait_closed', None)
            if wait_closed is not None:
                await wait_closed()
        except Exception as e:
            raise SinkWriteError('Closing sink failed: %s' % e) from e

    async def data_generator(self, src):
        """
        Read sync or async content source exactly once, failures are
        reported as ContentReadError
        """
        try:
            if hasattr(src, '__aiter__'):
                async for chunk in src:
                    yield self._check_chunk(chunk)
            else:
                for chunk in src:
                    yield self._check_chunk(chunk)
        except ZipFlowError:
            raise
        except Exception as e:
            raise ContentReadError('Reading content failed: %s' % e) from e

    @staticmethod
    def _check_chunk(chunk):
        if not isinstance(chunk, BYTES_TYPES):
            raise ContentReadError(
                'Content chunk must be bytes, got %s' % type(chunk).__name__)
        return chunk

    async def _feed(self, content, pcs, queue):
        """
        read content into crc and compressor, pass compressed data on
        """
        chunks = self.data_generator(content)
        try:
            async for chunk in chunks:
                chunk = await self._execute_aio_task(pcs.process, chunk)
                if len(chunk) > 0:
                    await queue.put(chunk)
        finally:
            await chunks.aclose()
        chunk = await self._execute_aio_task(pcs.tail)
        if len(chunk) > 0:
            await queue.put(chunk)
        await queue.put(_EOF)

    async def _drain(self, queue):
        """
        send compressed data to sink as soon as it is available
        """
        while True:
            chunk = await queue.get()
            if chunk is _EOF:
                return
            await self._write(chunk)

    async def _stream_content(self, content, pcs):
        queue = asyncio.Queue(maxsize=self.queuesize)
        tasks = [asyncio.ensure_future(self._feed(content, pcs, queue)),
                 asyncio.ensure_future(self._drain(queue))]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            # one side failed, other one may wait forever on the queue
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def add_file(self, name, content, mtime=None):
        """
        Compress and write single file.

        name - path of file inside archive, '/' separated
        content - sync or async iterable of bytes chunks, read once
        mtime - modification time, datetime or timestamp, now by default
        """
        async with self._lock:
            file_struct = self._create_file_struct(name, mtime, content)
            try:
                await self._write(self._make_local_file_header(file_struct))
                pcs = Processor(self.compresslevel)
                await self._stream_content(content, pcs)
                await self._write(
                    self._make_data_descriptor(file_struct, *pcs.state()))
            except BaseException as e:
                self._abort(e)
                self._shutdown_executor()
                raise
            self._add_file_to_cdir(file_struct)

    async def finalize(self):
        """
        Write central directory and close the archive
        """
        async with self._lock:
            self._check_open()
            try:
                for chunk in self._make_end_structures():
                    await self._write(chunk)
                if self.close_sink:
                    await self._close_sink()
            except BaseException as e:
                self._abort(e)
                raise
            finally:
                self._shutdown_executor()
            self._set_finalized()
            log.debug("Finalized archive with %d files, %d bytes",
                      self.file_count, self.offset)


class _QueueSink:
    """
    Sink handing chunks over to AioZipStream.stream consumer
    """

    def __init__(self):
        self.queue = asyncio.Queue(maxsize=1)

    async def write(self, chunk):
        await self.queue.put(chunk)

    async def close(self):
        await self.queue.put(_EOF)


class AioZipStream(ZipBase):
    """
    Archive produced as an asynchronous generator of chunks.
    Sources are described the same way as for ZipStream, 'file'
    entries are read with aiofiles, 'stream' can be sync or async
    iterable. files can be a list, generator or async generator.

    queuesize - how many compressed chunks wait for the consumer
    """

    def __init__(self, files=(), queuesize=4, **kwargs):
        super(AioZipStream, self).__init__(**kwargs)
        self._source_of_files = files
        self._writer_kwargs = dict(kwargs, queuesize=queuesize)
        self._writer = None

    @property
    def file_count(self):
        # central directory is kept by the writer feeding the stream
        if self._writer is None:
            return 0
        return self._writer.file_count

    async def _sources(self):
        if hasattr(self._source_of_files, '__aiter__'):
            async for source in self._source_of_files:
                yield source
        else:
            for source in self._source_of_files:
                yield source

    async def _file_generator(self, path):
        async with aiofiles.open(path, "rb") as fh:
            while True:
                part = await fh.read(self.chunksize)
                if not part:
                    break
                yield part

    async def _produce(self, writer, sink):
        try:
            async for source in self._sources():
                name, src, stype, mtime = self._parse_source(source)
                if stype == 'f':
                    src = self._file_generator(src)
                await writer.add_file(name, src, mtime)
            await writer.finalize()
        except Exception:
            # wake up consumer, it will pick the error from this task
            await sink.queue.put(_EOF)
            raise

    async def stream(self):
        self._check_open()
        sink = _QueueSink()
        writer = self._writer = AioZipWriter(sink, **self._writer_kwargs)
        producer = asyncio.ensure_future(self._produce(writer, sink))
        try:
            while True:
                chunk = await sink.queue.get()
                if chunk is _EOF:
                    break
                yield chunk
                # consumer asked for more, so chunk was taken
                self._offset_add(len(chunk))
            await producer
        except BaseException as e:
            self._abort(e)
            raise
        finally:
            if not producer.done():
                producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)
        self._set_finalized()
