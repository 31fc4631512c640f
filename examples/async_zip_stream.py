#!/usr/bin/env python3
import asyncio
import random
import aiofiles
from zipflow import AioZipWriter


async def generated_content(size):
    """
    asynchronous source of random data of unknown length,
    which we stream inside zip
    """
    chars = '0123456789 abcdefghijklmnopqrstuvwxyz \n'
    for m in range(size):
        t = ""
        for n in range(random.randint(20, 200)):
            t += random.choice(chars)
        yield bytes(t, 'ascii')
        await asyncio.sleep(0)


async def zip_async(zipname):
    async with aiofiles.open(zipname, mode='wb') as z:
        async with AioZipWriter(z, close_sink=False) as aiozip:
            for n in range(5):
                await aiozip.add_file('random/%d.txt' % n,
                                      generated_content(50))


asyncio.run(zip_async('example.zip'))
