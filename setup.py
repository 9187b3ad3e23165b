#!/usr/bin/env python

from setuptools import setup, find_packages
from os import path

this_directory = path.abspath(path.dirname(__file__))
with open(path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

requirements = [
    'urllib3',
    'aiohttp>=3.6.0',  # For async HTTP support
]

test_requirements = [
    'pytest>=3',
    'pytest-asyncio>=0.10.0',
]

setup(
    name='gbsdk',
    version='0.3.0',
    author="GrowthBook",
    author_email='hello@growthbook.io',
    python_requires='>=3.8',
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.8',
        'Programming Language :: Python :: 3.9',
        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
    ],
    description="Deterministic feature flag and A/B experiment evaluation",
    long_description=long_description,
    long_description_content_type='text/markdown',
    install_requires=requirements,
    extras_require={'test': test_requirements},
    license="MIT",
    include_package_data=True,
    packages=find_packages(include=['gbsdk', 'gbsdk.*']),
    package_data={"gbsdk": ["py.typed"]},
    keywords='feature-flags ab-testing',
    tests_require=test_requirements,
)
