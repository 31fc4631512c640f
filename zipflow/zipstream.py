#
# ZIP File streaming
# based on official ZIP File Format Specification version 6.3.4
# https://pkware.cachefly.net/webdocs/casestudies/APPNOTE.TXT
#
import datetime
import logging
import os
import re
import time
import zlib
from . import consts
from .errors import (CompressionError, ContentReadError, InvalidFilenameError,
                     InvalidStateError, SinkWriteError, ZipFlowError,
                     ZipLimitError)


__all__ = ("ZipWriter", "ZipStream")

log = logging.getLogger(__name__)

# slash separated, non empty segments without characters unsafe on extraction
FILENAME_RE = re.compile(r'[^\\?%*:|"<>/]+(?:/[^\\?%*:|"<>/]+)*')

BYTES_TYPES = (bytes, bytearray, memoryview)

# writer lifecycle
STATE_OPEN = 'open'
STATE_BROKEN = 'broken'
STATE_FINALIZED = 'finalized'


def validate_filename(name):
    """
    Check name of archive entry, return it encoded in utf-8
    """
    if not isinstance(name, str):
        raise InvalidFilenameError(
            'Filename must be a string, got %s' % type(name).__name__)
    if not FILENAME_RE.fullmatch(name):
        raise InvalidFilenameError('Invalid filename %r' % name)
    fname = name.encode('utf-8')
    if len(fname) > consts.FNAME_MAX_LEN:
        raise InvalidFilenameError(
            'Filename is longer than %d bytes' % consts.FNAME_MAX_LEN)
    return fname


def dos_datetime(mtime=None):
    """
    Convert mtime (datetime, timestamp or None for now)
    to dos (time, date) pair
    """
    if mtime is None:
        dt = time.localtime()
    elif isinstance(mtime, datetime.datetime):
        dt = mtime.timetuple()
    else:
        dt = time.localtime(mtime)
    if dt[0] < 1980:
        # dos dates start at 1980-01-01
        return 0, (1 << 5 | 1)
    dosdate = ((dt[0] - 1980) << 9 | dt[1] << 5 | dt[2]) \
        & 0xffff
    dostime = (dt[3] << 11 | dt[4] << 5 | (dt[5] // 2)) \
        & 0xffff
    return dostime, dosdate


class Processor:
    """
    Running crc32 and sizes of a single file, plus its deflate compressor
    """

    def __init__(self, compresslevel=5):
        self.crc = 0
        self.o_size = self.c_size = 0
        self.compr = zlib.compressobj(compresslevel, zlib.DEFLATED, -15)

    def process(self, chunk):
        self.o_size += len(chunk)
        self.crc = zlib.crc32(chunk, self.crc)
        try:
            chunk = self.compr.compress(chunk)
        except zlib.error as e:
            raise CompressionError('Deflate failed: %s' % e) from e
        self.c_size += len(chunk)
        return chunk

    def tail(self):
        try:
            chunk = self.compr.flush(zlib.Z_FINISH)
        except zlib.error as e:
            raise CompressionError('Deflate flush failed: %s' % e) from e
        self.c_size += len(chunk)
        return chunk

    # after processing counters and crc
    def state(self):
        return self.crc, self.o_size, self.c_size


class ZipBase:

    def __init__(self, compresslevel=5, chunksize=1024):
        """
        compresslevel - zlib compression level used for every file
        chunksize - size of data block read from files given by path
        """
        self.compresslevel = compresslevel
        self.chunksize = chunksize
        self.__version = consts.ZIP32_VERSION
        # encoded central directory records, joined once at the end
        self.__cdir = []
        self.__cdir_size = self.__offset = 0
        self.__state = STATE_OPEN

    @property
    def offset(self):
        """
        Number of bytes already accepted by the output
        """
        return self.__offset

    @property
    def file_count(self):
        return len(self.__cdir)

    def zip64_required(self, reason):
        raise ZipLimitError("Zip64 is not supported: %s" % reason)

    # lifecycle

    def _check_open(self):
        if self.__state == STATE_FINALIZED:
            raise InvalidStateError('Archive is already finalized')
        if self.__state == STATE_BROKEN:
            raise InvalidStateError(
                'Archive is unusable after an earlier write failure')

    def _abort(self, exc):
        if self.__state == STATE_OPEN:
            log.warning("Aborting archive at offset %d: %r",
                        self.__offset, exc)
        self.__state = STATE_BROKEN

    def _set_finalized(self):
        self.__state = STATE_FINALIZED

    def _parse_source(self, data):
        """
        Unpack source dict used by ZipStream and AioZipStream
        into (name, src, stype, mtime)
        """
        if 'file' in data:
            src, stype = data['file'], 'f'
            name = data.get('name') or os.path.basename(data['file'])
        elif 'stream' in data:
            src, stype = data['stream'], 's'
            if 'name' not in data:
                raise InvalidFilenameError("Stream source requires 'name'")
            name = data['name']
        else:
            raise ContentReadError('No file or stream in source')
        return name, src, stype, data.get('mtime')

    def _create_file_struct(self, name, mtime=None, content=None):
        """
        Validate new entry and collect everything its headers need.
        Nothing is changed in writer state.
        """
        self._check_open()
        fname = validate_filename(name)
        if isinstance(content, BYTES_TYPES + (str,)):
            # iterating them would give ints or characters, not chunks
            raise ContentReadError(
                'Content must be an iterable of bytes chunks, not %s, '
                'wrap it in a list' % type(content).__name__)
        if len(self.__cdir) >= consts.ZIP32_MAX_ENTRIES:
            self.zip64_required('more than %d files' % consts.ZIP32_MAX_ENTRIES)
        if self.__offset >= consts.ZIP32_LIMIT:
            self.zip64_required('file header offset beyond 4GiB')
        dostime, dosdate = dos_datetime(mtime)
        return {'name': name,
                'fname': fname,
                'mod_time': dostime,
                'mod_date': dosdate,
                'crc': 0,  # will be calculated during data streaming
                'size': 0,
                'csize': 0,
                'offset': self.__offset,  # file header offset in zip file
                'flags': consts.DD_FLAG | consts.UTF8_FLAG,
                'cmpr_id': consts.COMPRESSION_DEFLATE}

    # zip structures creation

    def _make_local_file_header(self, file_struct):
        """
        Create file header, crc and sizes are sent in data descriptor
        """
        fields = {"signature": consts.LF_MAGIC,
                  "version": self.__version,
                  "flags": file_struct['flags'],
                  "compression": file_struct['cmpr_id'],
                  "mod_time": file_struct['mod_time'],
                  "mod_date": file_struct['mod_date'],
                  "crc": 0,
                  "uncomp_size": 0,
                  "comp_size": 0,
                  "fname_len": len(file_struct['fname']),
                  "extra_len": 0}
        head = consts.LF_TUPLE(**fields)
        head = consts.LF_STRUCT.pack(*head)
        head += file_struct['fname']
        return head

    def _make_data_descriptor(self, file_struct, crc, org_size, compr_size):
        """
        Create file descriptor.
        This function also updates size and crc fields of file_struct
        """
        # 0xffffffff itself marks zip64 fields for readers
        if org_size >= consts.ZIP32_LIMIT or compr_size >= consts.ZIP32_LIMIT:
            self.zip64_required('%r is larger than 4GiB' % file_struct['name'])
        file_struct['crc'] = crc & 0xffffffff
        file_struct['size'] = org_size
        file_struct['csize'] = compr_size
        fields = {"uncomp_size": file_struct['size'],
                  "comp_size": file_struct['csize'],
                  "crc": file_struct['crc']}
        descriptor = consts.DD_TUPLE(**fields)
        return consts.DD_STRUCT.pack(*descriptor)

    def _make_cdir_file_header(self, file_struct):
        """
        Create central directory file header
        """
        fields = {"signature": consts.CDFH_MAGIC,
                  "version": self.__version,
                  "system": consts.SYSTEM_UNIX,
                  "version_ndd": self.__version,
                  "flags": file_struct['flags'],
                  "compression": file_struct['cmpr_id'],
                  "mod_time": file_struct['mod_time'],
                  "mod_date": file_struct['mod_date'],
                  "uncomp_size": file_struct['size'],
                  "comp_size": file_struct['csize'],
                  "offset": file_struct['offset'],  # < file header offset
                  "crc": file_struct['crc'],
                  "fname_len": len(file_struct['fname']),
                  "extra_len": 0,
                  "fcomm_len": 0,  # comment length
                  "disk_start": 0,
                  "attrs_int": 0,
                  "attrs_ext": consts.FILE_ATTRS}
        cdfh = consts.CDLF_TUPLE(**fields)
        cdfh = consts.CDLF_STRUCT.pack(*cdfh)
        cdfh += file_struct['fname']
        return cdfh

    def _make_cdend(self, cd_offset):
        """
        make end of central directory record,
        cd_offset is archive offset where central directory starts
        """
        if cd_offset >= consts.ZIP32_LIMIT:
            self.zip64_required('central directory offset beyond 4GiB')
        if self.__cdir_size >= consts.ZIP32_LIMIT:
            self.zip64_required('central directory larger than 4GiB')
        fields = {"signature": consts.CD_END_MAGIC,
                  "disk_num": 0,
                  "disk_cdstart": 0,
                  "disk_entries": len(self.__cdir),
                  "total_entries": len(self.__cdir),
                  "cd_size": self.__cdir_size,
                  "cd_offset": cd_offset,
                  "comment_len": 0}
        cdend = consts.CD_END_TUPLE(**fields)
        cdend = consts.CD_END_STRUCT.pack(*cdend)
        return cdend

    def _make_end_structures(self):
        """
        cdir and cdend structures are saved at the end of zip file.
        Offset must not change until both chunks are written.
        """
        cd_offset = self._offset_get()
        cdir = b''.join(self.__cdir)
        if cdir:
            yield cdir
        yield self._make_cdend(cd_offset)

    def _offset_add(self, value):
        self.__offset += value

    def _offset_get(self):
        return self.__offset

    def _add_file_to_cdir(self, file_struct):
        # only complete files, crc and sizes must be known
        chunk = self._make_cdir_file_header(file_struct)
        self.__cdir.append(chunk)
        self.__cdir_size += len(chunk)
        log.debug("Added %r at offset %d (%d bytes, %d compressed)",
                  file_struct['name'], file_struct['offset'],
                  file_struct['size'], file_struct['csize'])

    # file streaming

    def data_generator(self, src, src_type='s'):
        """
        Read content source exactly once, failures are reported
        as ContentReadError
        """
        try:
            if src_type == 'f':
                with open(src, "rb") as fh:
                    while True:
                        part = fh.read(self.chunksize)
                        if not part:
                            break
                        yield part
                return
            for chunk in src:
                if not isinstance(chunk, BYTES_TYPES):
                    raise ContentReadError(
                        'Content chunk must be bytes, got %s'
                        % type(chunk).__name__)
                yield chunk
        except ZipFlowError:
            raise
        except Exception as e:
            raise ContentReadError('Reading content failed: %s' % e) from e

    def _stream_single_file(self, file_struct, chunks):
        """
        stream single zip file with header and descriptor at the end
        """
        yield self._make_local_file_header(file_struct)
        pcs = Processor(self.compresslevel)
        for chunk in chunks:
            chunk = pcs.process(chunk)
            if len(chunk) > 0:
                yield chunk
        chunk = pcs.tail()
        if len(chunk) > 0:
            yield chunk
        yield self._make_data_descriptor(file_struct, *pcs.state())


class ZipWriter(ZipBase):
    """
    Writes archive into sink, one file at a time.

    sink - any object with write(bytes) method, e.g. file opened in
           binary mode, io.BytesIO or socket file
    close_sink - close sink after archive is finalized

        with open('out.zip', 'wb') as fh:
            with ZipWriter(fh, close_sink=False) as zw:
                zw.add_file('a.txt', [b'hello'])
    """

    def __init__(self, sink, close_sink=True, **kwargs):
        super(ZipWriter, self).__init__(**kwargs)
        self._sink = sink
        self.close_sink = close_sink

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.finalize()

    def _write(self, chunk):
        try:
            self._sink.write(chunk)
        except Exception as e:
            raise SinkWriteError('Writing to sink failed: %s' % e) from e
        self._offset_add(len(chunk))

    def add_file(self, name, content, mtime=None):
        """
        Compress and write single file.

        name - path of file inside archive, '/' separated
        content - iterable of bytes chunks, read once
        mtime - modification time, datetime or timestamp, now by default
        """
        file_struct = self._create_file_struct(name, mtime, content)
        try:
            chunks = self.data_generator(content)
            for chunk in self._stream_single_file(file_struct, chunks):
                self._write(chunk)
        except BaseException as e:
            self._abort(e)
            raise
        self._add_file_to_cdir(file_struct)

    def finalize(self):
        """
        Write central directory and close the archive
        """
        self._check_open()
        try:
            for chunk in self._make_end_structures():
                self._write(chunk)
            if self.close_sink:
                try:
                    self._sink.close()
                except Exception as e:
                    raise SinkWriteError('Closing sink failed: %s' % e) from e
        except BaseException as e:
            self._abort(e)
            raise
        self._set_finalized()
        log.debug("Finalized archive with %d files, %d bytes",
                  self.file_count, self.offset)


class ZipStream(ZipBase):
    """
    Archive produced as a generator of chunks.

    files - list of files, or generator returning files
            each file entry should be represented as dict with
            parameters:
            file - full path to file name
            name - (optional) name of file in zip archive
                   if not used, filename stripped from 'file' will be used
            stream - (optional) can be used as replacement for 'file'
                     entry, will be treated as iterable returning
                     chunks of data that will be streamed in archive.
                     If used, then 'name' entry is required.
            mtime - (optional) modification time of file
    """

    def __init__(self, files=(), **kwargs):
        super(ZipStream, self).__init__(**kwargs)
        self._source_of_files = files

    def stream(self):
        """
        Stream complete archive
        """
        self._check_open()
        try:
            for source in self._source_of_files:
                name, src, stype, mtime = self._parse_source(source)
                file_struct = self._create_file_struct(
                    name, mtime, src if stype == 's' else None)
                chunks = self.data_generator(src, stype)
                for chunk in self._stream_single_file(file_struct, chunks):
                    yield chunk
                    # consumer asked for more, so chunk was taken
                    self._offset_add(len(chunk))
                self._add_file_to_cdir(file_struct)
            # stream zip structures
            for chunk in self._make_end_structures():
                yield chunk
                self._offset_add(len(chunk))
        except BaseException as e:
            self._abort(e)
            raise
        self._set_finalized()
