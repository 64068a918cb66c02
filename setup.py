#!/usr/bin/env python3

from setuptools import setup, find_packages


setup(
    name='dumbster',
    version='0.1.0',

    description='In-process dummy SMTP server for testing mail senders',

    url='https://github.com/mjcaley/dumbster',

    author='Michael Caley',
    author_email='mjcaley@darkarctic.com',

    license='MIT',

    classifiers=[
        'Development Status :: 4 - Beta',

        'Programming Language :: Python :: 3.10',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',

        'Intended Audience :: Developers',

        'License :: OSI Approved :: MIT License',

        'Topic :: Communications :: Email :: Mail Transport Agents',
        'Topic :: Software Development :: Testing :: Mocking',
    ],

    keywords='smtp testing fake dummy mail server',

    packages=find_packages(exclude=['tests']),

    python_requires='>=3.10',
    install_requires=['toml',
                      'aiofiles',
                      'aiologger'],
    extras_require={
        'test': ['pytest-asyncio>=0.21', 'pytest-cov', 'pytest>=7.0', 'aiosmtplib'],
    },
    entry_points={
        'console_scripts': ['dumbster=dumbster.daemon:main'],
    },
)
