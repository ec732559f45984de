from setuptools import setup, find_packages


setup(
    name="datachunk",
    version="0.1",
    packages=find_packages(),
    description="Embed text and binary data inside literate documents as encoded data chunks.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    entry_points={
        "console_scripts": [
            "datachunk=datachunk.cli:main",
        ]
    },
)
