#!/usr/bin/env python3
#
#  Every client connecting to port 8888 receives a zip archive
#  of given directory, e.g.: nc localhost 8888 > out.zip
#
import asyncio
import os
import sys
from zipflow import AioZipStream, AioZipWriter


def files_to_stream(dirname):
    for f in sorted(os.listdir(dirname)):
        fp = os.path.join(dirname, f)
        if os.path.isfile(fp):
            yield {'file': fp}


async def send_zip(reader, writer):
    # StreamWriter is used as sink, every write is drained
    aiozip = AioZipWriter(writer)
    zs = AioZipStream(files_to_stream(sys.argv[1]), chunksize=32768)
    # archive of directory is stored as a single file inside outer zip
    await aiozip.add_file('directory.zip', zs.stream())
    await aiozip.finalize()


async def main():
    server = await asyncio.start_server(send_zip, '127.0.0.1', 8888)
    async with server:
        await server.serve_forever()


asyncio.run(main())
