#!/usr/bin/env python3
from setuptools import setup, find_packages
# To use a consistent encoding
from codecs import open
import os

here = os.path.abspath(os.path.dirname(__file__))

# Get the long description from the README file
with open(os.path.join(here, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

setup(
    name='zipflow',
    version='0.1.0',

    description='Writing zip archives into streams, one file at a time',
    long_description=long_description,
    long_description_content_type='text/markdown',

    license='BSD',

    # See https://pypi.python.org/pypi?%3Aaction=list_classifiers
    classifiers=[
        'Intended Audience :: Developers',
        'Topic :: System :: Archiving :: Compression',
        'License :: OSI Approved :: BSD License',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3 :: Only',
    ],

    keywords='zip streaming asyncio',

    python_requires='>=3.10',
    install_requires=['aiofiles'],
    extras_require={
        'test': ['pytest', 'pytest-asyncio'],
    },

    # You can just specify the packages manually here if your project is
    # simple. Or you can use find_packages().
    packages=find_packages(exclude=['examples', 'tests']),
)
