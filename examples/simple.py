#!/usr/bin/env python3
import sys
from zipflow import ZipStream

# usage: simple.py out.zip file [file ...]
files = [
    {'stream': [b'this\n', b'is\n', b'stream\n', b'of\n', b'data\n'],
     'name': 'docs/a.txt'},
]
files.extend({'file': path} for path in sys.argv[2:])

zs = ZipStream(files, chunksize=32768)

with open(sys.argv[1], "wb") as fout:
    for data in zs.stream():
        fout.write(data)
