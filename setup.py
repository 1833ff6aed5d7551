#!/usr/bin/env python
""" Batch Plan: load object graphs and upsert records without N+1 round trips """

from setuptools import setup, find_packages

setup(
    name='batchplan',
    version='1.0.0',

    license='BSD',
    description=__doc__,
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    keywords=['sqlalchemy', 'nplus1', 'upsert', 'batch'],

    packages=find_packages(exclude=('tests',)),
    scripts=[],
    entry_points={},

    python_requires='>= 3.7',
    install_requires=[
        'sqlalchemy >= 1.4.0',
        'funcy',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    include_package_data=True,

    platforms='any',
    classifiers=[
        # https://pypi.python.org/pypi?%3Aaction=list_classifiers
        'Programming Language :: Python :: 3',
        'Development Status :: 5 - Production/Stable',
        'Intended Audience :: Developers',
        'Operating System :: OS Independent',
    ],
)
