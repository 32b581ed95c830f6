import os
import re
import setuptools


with open("README.md", "r") as description_file:
    long_description = description_file.read()

with open("requirements.txt", "r") as requirements_file:
    requirements = [line for line in requirements_file.read().split("\n") if line]

ver_path = os.path.join("hlsdownload", "hlsdownload.py")
with open(ver_path, encoding="utf8") as ver_file:
    version = re.search(r'__version__ = "(.+)"', ver_file.read()).group(1)

setuptools.setup(
    name="hlsdownload",
    version=version,
    description="hlsdownload downloads and decrypts HLS playlists into a single file.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=["hlsdownload"],
    install_requires=requirements,
    extras_require={
        "test": ["pytest", "requests-mock"]
    },
    python_requires=">=3.8",
    entry_points={
        "console_scripts": ["hlsdownload=hlsdownload.hlsdownload:cli"]
    },
    classifiers=[
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Natural Language :: English"
    ]
)
